"""FastAPI dependency injection providers for services."""

from typing import TYPE_CHECKING, Annotated

from fastapi import Depends, Request, WebSocket

if TYPE_CHECKING:
    from kvmconsole.services import (
        BridgeManager,
        PortResolver,
        SessionAdmission,
        VmRegistry,
    )


def get_registry(request: Request) -> "VmRegistry":
    """Get the VM registry from app state."""
    return request.app.state.registry


def get_resolver(request: Request) -> "PortResolver":
    """Get the port resolver from app state."""
    return request.app.state.resolver


def get_bridges(request: Request) -> "BridgeManager":
    """Get the bridge manager from app state."""
    return request.app.state.bridges


# WebSocket-specific dependencies (WebSocket routes don't have Request)
def get_admission_ws(websocket: WebSocket) -> "SessionAdmission":
    """Get the session admission service from app state (for WebSocket routes)."""
    return websocket.app.state.admission


def get_bridges_ws(websocket: WebSocket) -> "BridgeManager":
    """Get the bridge manager from app state (for WebSocket routes)."""
    return websocket.app.state.bridges


RegistryDep = Annotated["VmRegistry", Depends(get_registry)]
ResolverDep = Annotated["PortResolver", Depends(get_resolver)]
BridgesDep = Annotated["BridgeManager", Depends(get_bridges)]

# WebSocket-specific dependencies
AdmissionWsDep = Annotated["SessionAdmission", Depends(get_admission_ws)]
BridgesWsDep = Annotated["BridgeManager", Depends(get_bridges_ws)]
