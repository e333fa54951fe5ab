"""Display port resolution for VMs."""

import logging
from typing import NamedTuple

from kvmconsole.errors import NoDisplayConfiguredError, NotRunningError
from kvmconsole.services.registry import VmRegistry

logger = logging.getLogger(__name__)


class ResolvedTarget(NamedTuple):
    host: str
    port: int


class PortResolver:
    """Maps a VM identifier to the TCP port of its VNC server.

    Read-only: each call queries the registry afresh, so a VM that was
    restarted (and handed a new auto port) is honored on the next lookup.
    """

    def __init__(
        self,
        registry: VmRegistry,
        host: str = "localhost",
        base_port: int = 5900,
    ) -> None:
        self._registry = registry
        self._host = host
        self._base_port = base_port

    @property
    def host(self) -> str:
        return self._host

    async def resolve_port(self, vm_id: str) -> int:
        """Return the display port for *vm_id*.

        Raises:
            VmNotFoundError: No such VM is registered.
            NoDisplayConfiguredError: The VM has no VNC graphics stanza.
            NotRunningError: The port is auto-assigned and the VM is not running.
        """
        vm = await self._registry.get_vm(vm_id)
        if vm.display is None:
            raise NoDisplayConfiguredError(vm_id)

        if not vm.display.is_auto:
            return vm.display.port

        # Auto ports only exist while the domain is live
        if not vm.running or vm.instance_id is None:
            raise NotRunningError(vm_id)
        port = self._base_port + vm.instance_id
        logger.debug(f"VM {vm_id} auto display port: {port}")
        return port

    async def resolve(self, vm_id: str) -> ResolvedTarget:
        return ResolvedTarget(self._host, await self.resolve_port(vm_id))
