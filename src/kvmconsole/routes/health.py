"""Service health endpoint."""

from fastapi import APIRouter

from kvmconsole.dependencies import BridgesDep
from kvmconsole.models import HealthResponse

router = APIRouter(tags=["health"])


@router.get("/api/health")
async def health(bridges: BridgesDep) -> HealthResponse:
    return HealthResponse(status="ok", active_sessions=bridges.active_sessions)
