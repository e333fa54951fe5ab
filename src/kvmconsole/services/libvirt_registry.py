"""VM registry backed by a libvirt hypervisor connection.

libvirt's Python bindings are blocking, so every call is pushed to a worker
thread with ``asyncio.to_thread``.
"""

import asyncio
import logging

import libvirt

from kvmconsole.errors import VmNotFoundError, VmStateError
from kvmconsole.models import VmInfo, VmSpec
from kvmconsole.services.domain_xml import build_domain_xml, parse_display

logger = logging.getLogger(__name__)


class LibvirtRegistry:
    def __init__(self, uri: str, conn: "libvirt.virConnect | None" = None) -> None:
        self._uri = uri
        self._connection = conn

    @property
    def _conn(self) -> "libvirt.virConnect":
        if self._connection is None:
            raise RuntimeError("LibvirtRegistry not connected")
        return self._connection

    async def connect(self) -> None:
        """Open the hypervisor connection."""
        if self._connection is None:
            self._connection = await asyncio.to_thread(libvirt.open, self._uri)
            logger.info(f"Connected to hypervisor: {self._uri}")

    async def list_vms(self) -> list[VmInfo]:
        return await asyncio.to_thread(self._list_vms)

    async def get_vm(self, name: str) -> VmInfo:
        return await asyncio.to_thread(self._get_vm, name)

    async def start(self, name: str) -> None:
        await asyncio.to_thread(self._call, name, "create")
        logger.info(f"Started VM {name}")

    async def stop(self, name: str, graceful: bool = True) -> None:
        await asyncio.to_thread(self._call, name, "shutdown" if graceful else "destroy")
        logger.info(f"Stopped VM {name} ({'shutdown' if graceful else 'destroy'})")

    async def delete(self, name: str) -> None:
        await asyncio.to_thread(self._call, name, "undefine")
        logger.info(f"Deleted VM {name}")

    async def create(self, spec: VmSpec) -> VmInfo:
        xml = build_domain_xml(spec)
        try:
            domain = await asyncio.to_thread(self._conn.defineXML, xml)
        except libvirt.libvirtError as e:
            raise VmStateError(f"Cannot define VM {spec.name}: {e}") from e
        logger.info(f"Created VM {spec.name}")
        return await asyncio.to_thread(self._info, domain)

    async def close(self) -> None:
        if self._connection is not None:
            await asyncio.to_thread(self._connection.close)
            self._connection = None
            logger.info("Hypervisor connection closed")

    # ── internals (run in worker threads) ──────────────────────

    def _lookup(self, name: str) -> "libvirt.virDomain":
        try:
            return self._conn.lookupByName(name)
        except libvirt.libvirtError as e:
            if e.get_error_code() == libvirt.VIR_ERR_NO_DOMAIN:
                raise VmNotFoundError(name) from e
            raise

    def _info(self, domain: "libvirt.virDomain") -> VmInfo:
        running = domain.isActive() == 1
        # Live XML of a running domain carries the port actually assigned
        return VmInfo(
            name=domain.name(),
            running=running,
            instance_id=domain.ID() if running else None,
            display=parse_display(domain.XMLDesc(0)),
        )

    def _list_vms(self) -> list[VmInfo]:
        return [self._info(domain) for domain in self._conn.listAllDomains(0)]

    def _get_vm(self, name: str) -> VmInfo:
        return self._info(self._lookup(name))

    def _call(self, name: str, operation: str) -> None:
        domain = self._lookup(name)
        try:
            getattr(domain, operation)()
        except libvirt.libvirtError as e:
            if e.get_error_code() == libvirt.VIR_ERR_OPERATION_INVALID:
                raise VmStateError(f"Cannot {operation} VM {name}: {e}") from e
            raise
