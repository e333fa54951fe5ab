"""Exception hierarchy for the console tunnel."""


class KvmConsoleError(Exception):
    """Base exception for all kvmconsole errors."""


# ── Admission ───────────────────────────────────────────────────


class AdmissionError(KvmConsoleError):
    """A tunnel request cannot be served and must be refused before upgrade."""


class VmNotFoundError(AdmissionError):
    """No VM with the requested identifier is registered."""

    def __init__(self, vm_id: str) -> None:
        super().__init__(f"VM not found: {vm_id}")
        self.vm_id = vm_id


class NoDisplayConfiguredError(AdmissionError):
    """The VM has no VNC display stanza."""

    def __init__(self, vm_id: str) -> None:
        super().__init__(f"VM {vm_id} has no VNC display configured")
        self.vm_id = vm_id


class NotRunningError(AdmissionError):
    """The VM uses an auto-assigned display port but is not running."""

    def __init__(self, vm_id: str) -> None:
        super().__init__(f"VM {vm_id} is not running")
        self.vm_id = vm_id


class MalformedRequestPathError(AdmissionError):
    """The tunnel request path carries no VM identifier."""

    def __init__(self, path: str) -> None:
        super().__init__(f"No VM identifier in request path: {path!r}")
        self.path = path


class ServerBusyError(AdmissionError):
    """Every tunnel slot is taken."""


# ── Registry ────────────────────────────────────────────────────


class VmStateError(KvmConsoleError):
    """A registry operation was attempted on a VM in the wrong state."""


# ── Transport ───────────────────────────────────────────────────


class DialError(KvmConsoleError):
    """The TCP connection to a display server could not be established."""

    def __init__(self, host: str, port: int, reason: str) -> None:
        super().__init__(f"Cannot connect to {host}:{port}: {reason}")
        self.host = host
        self.port = port


class StreamError(KvmConsoleError):
    """A stream broke mid-session."""


class TransportClosedError(StreamError):
    """The browser-side transport is already gone."""
