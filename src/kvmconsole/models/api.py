"""API request/response schemas for FastAPI endpoints."""

from pydantic import BaseModel


# VM schemas
class VmResponse(BaseModel):
    name: str
    running: bool
    display_port: int | None = None


class DisplayResponse(BaseModel):
    name: str
    host: str
    port: int


# Service schemas
class HealthResponse(BaseModel):
    status: str
    active_sessions: int
