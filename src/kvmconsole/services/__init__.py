from .admission import AdmissionDecision, AdmissionRecord, SessionAdmission
from .bridge import BridgeState, StreamBridge
from .bridge_manager import BridgeManager
from .registry import InMemoryRegistry, VmRegistry
from .resolver import PortResolver, ResolvedTarget
from .session import SessionPhase, TunnelSession, WebSocketSession

__all__ = [
    "AdmissionDecision",
    "AdmissionRecord",
    "SessionAdmission",
    "BridgeState",
    "StreamBridge",
    "BridgeManager",
    "InMemoryRegistry",
    "VmRegistry",
    "PortResolver",
    "ResolvedTarget",
    "SessionPhase",
    "TunnelSession",
    "WebSocketSession",
]
