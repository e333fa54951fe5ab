from .health import router as health_router
from .tunnel import router as tunnel_router
from .vms import router as vms_router

__all__ = [
    "health_router",
    "tunnel_router",
    "vms_router",
]
