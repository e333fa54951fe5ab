from .api import DisplayResponse, HealthResponse, VmResponse
from .vm import AUTO_PORT, DisplayConfig, VmInfo, VmSpec, VmState

__all__ = [
    # API schemas
    "DisplayResponse",
    "HealthResponse",
    "VmResponse",
    # Domain models
    "AUTO_PORT",
    "DisplayConfig",
    "VmInfo",
    "VmSpec",
    "VmState",
]
