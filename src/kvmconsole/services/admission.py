"""Admission of tunnel requests before the WebSocket upgrade."""

import logging
from dataclasses import dataclass
from enum import Enum

from kvmconsole.errors import AdmissionError, MalformedRequestPathError, ServerBusyError
from kvmconsole.services.bridge_manager import BridgeManager
from kvmconsole.services.resolver import PortResolver
from kvmconsole.services.session import SessionPhase, TunnelSession

logger = logging.getLogger(__name__)


class Decision(str, Enum):
    ACCEPT = "accept"
    REJECT = "reject"


@dataclass(frozen=True)
class AdmissionRecord:
    session_id: str
    vm_id: str | None
    port: int | None
    decision: Decision
    reason: str | None = None


@dataclass(frozen=True)
class AdmissionDecision:
    vm_id: str | None
    port: int | None = None
    error: AdmissionError | None = None

    @property
    def accepted(self) -> bool:
        return self.error is None

    @property
    def busy(self) -> bool:
        return isinstance(self.error, ServerBusyError)


def vm_id_from_path(path: str) -> str:
    """Return the final segment of a tunnel request path.

    Raises:
        MalformedRequestPathError: The final segment is empty.
    """
    vm_id = path.rsplit("/", 1)[-1]
    if not vm_id:
        raise MalformedRequestPathError(path)
    return vm_id


class SessionAdmission:
    """Decides whether a tunnel request can be served.

    A request is admitted only when its VM's display port resolves and a
    tunnel slot is free; anything else is refused before any socket is
    opened.
    """

    def __init__(self, resolver: PortResolver, bridges: BridgeManager) -> None:
        self._resolver = resolver
        self._bridges = bridges

    async def admit(self, session: TunnelSession) -> AdmissionDecision:
        vm_id: str | None = None
        try:
            vm_id = vm_id_from_path(session.path)
            port = await self._resolver.resolve_port(vm_id)
            if not self._bridges.reserve(session.id):
                raise ServerBusyError("No free tunnel slot")
        except AdmissionError as e:
            self._record(AdmissionRecord(session.id, vm_id, None, Decision.REJECT, str(e)))
            return AdmissionDecision(vm_id=vm_id, error=e)
        except Exception as e:
            logger.exception(f"Port resolution failed for VM {vm_id}")
            error = AdmissionError(f"Port resolution failed: {e}")
            self._record(AdmissionRecord(session.id, vm_id, None, Decision.REJECT, str(error)))
            return AdmissionDecision(vm_id=vm_id, error=error)

        session.attributes["vm_id"] = vm_id
        session.attributes["port"] = port
        session.phase = SessionPhase.ADMITTED
        self._record(AdmissionRecord(session.id, vm_id, port, Decision.ACCEPT))
        return AdmissionDecision(vm_id=vm_id, port=port)

    def _record(self, record: AdmissionRecord) -> None:
        level = logging.INFO if record.decision is Decision.ACCEPT else logging.WARNING
        logger.log(
            level,
            f"Admission {record.decision.value}: VM={record.vm_id} port={record.port}"
            + (f" ({record.reason})" if record.reason else ""),
            extra={
                "session_id": record.session_id,
                "vm_id": record.vm_id,
                "port": record.port,
                "decision": record.decision.value,
            },
        )
