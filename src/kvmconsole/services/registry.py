import asyncio
import dataclasses
import itertools
import json
import logging
from typing import Any, Protocol

from kvmconsole.errors import VmNotFoundError, VmStateError
from kvmconsole.models import AUTO_PORT, DisplayConfig, VmInfo, VmSpec

logger = logging.getLogger(__name__)


class VmRegistry(Protocol):
    """What the tunnel needs from a VM registry, plus its lifecycle surface."""

    async def connect(self) -> None: ...

    async def list_vms(self) -> list[VmInfo]: ...

    async def get_vm(self, name: str) -> VmInfo: ...

    async def start(self, name: str) -> None: ...

    async def stop(self, name: str, graceful: bool = True) -> None: ...

    async def delete(self, name: str) -> None: ...

    async def create(self, spec: VmSpec) -> VmInfo: ...

    async def close(self) -> None: ...


class InMemoryRegistry:
    """VM registry kept in process memory.

    Runtime instance ids are handed out from a monotonic counter on ``start``
    and cleared on ``stop``, mirroring how a hypervisor numbers live domains.
    """

    def __init__(self) -> None:
        self._vms: dict[str, VmInfo] = {}
        self._ids = itertools.count(1)
        self._lock = asyncio.Lock()

    @classmethod
    def from_json(cls, raw: str) -> "InMemoryRegistry":
        """Build a registry seeded from a JSON list of VM entries."""
        registry = cls()
        entries: list[dict[str, Any]] = []
        try:
            parsed = json.loads(raw)
            if isinstance(parsed, list):
                entries = parsed
        except (json.JSONDecodeError, TypeError):
            logger.warning("Ignoring malformed VM seed configuration")

        for entry in entries:
            name = entry.get("name", "") if isinstance(entry, dict) else ""
            if not name:
                logger.warning("Skipping VM entry with no name")
                continue
            registry._put(
                name=name,
                display_port=entry.get("display_port", AUTO_PORT),
                running=bool(entry.get("running", False)),
                instance_id=entry.get("instance_id"),
            )
        return registry

    async def connect(self) -> None:
        pass

    async def add(
        self,
        name: str,
        display_port: int | None = AUTO_PORT,
        running: bool = False,
        instance_id: int | None = None,
    ) -> VmInfo:
        """Register a VM directly, replacing any entry with the same name."""
        async with self._lock:
            return _snapshot(self._put(name, display_port, running, instance_id))

    async def list_vms(self) -> list[VmInfo]:
        async with self._lock:
            return [_snapshot(vm) for vm in self._vms.values()]

    async def get_vm(self, name: str) -> VmInfo:
        async with self._lock:
            return _snapshot(self._require(name))

    async def start(self, name: str) -> None:
        async with self._lock:
            vm = self._require(name)
            if vm.running:
                raise VmStateError(f"VM {name} is already running")
            vm.running = True
            vm.instance_id = next(self._ids)
            logger.info(f"Started VM {name} (id {vm.instance_id})")

    async def stop(self, name: str, graceful: bool = True) -> None:
        async with self._lock:
            vm = self._require(name)
            if not vm.running:
                raise VmStateError(f"VM {name} is not running")
            vm.running = False
            vm.instance_id = None
            logger.info(f"Stopped VM {name} ({'shutdown' if graceful else 'destroy'})")

    async def delete(self, name: str) -> None:
        async with self._lock:
            vm = self._require(name)
            if vm.running:
                raise VmStateError(f"Cannot delete running VM {name}")
            del self._vms[name]
            logger.info(f"Deleted VM {name}")

    async def create(self, spec: VmSpec) -> VmInfo:
        async with self._lock:
            if spec.name in self._vms:
                raise VmStateError(f"VM {spec.name} already exists")
            vm = VmInfo(name=spec.name, display=_display_for(spec.display_port))
            self._vms[spec.name] = vm
            logger.info(f"Created VM {spec.name}")
            return _snapshot(vm)

    async def close(self) -> None:
        pass

    def _put(
        self,
        name: str,
        display_port: int | None,
        running: bool,
        instance_id: int | None,
    ) -> VmInfo:
        if running and instance_id is None:
            instance_id = next(self._ids)
        vm = VmInfo(
            name=name,
            running=running,
            instance_id=instance_id if running else None,
            display=_display_for(display_port),
        )
        self._vms[name] = vm
        logger.info(f"Registered VM: {name} ({vm.state.value})")
        return vm

    def _require(self, name: str) -> VmInfo:
        vm = self._vms.get(name)
        if vm is None:
            raise VmNotFoundError(name)
        return vm


def _display_for(port: int | None) -> DisplayConfig | None:
    if port is None:
        return None
    return DisplayConfig(port=port, autoport=port == AUTO_PORT)


def _snapshot(vm: VmInfo) -> VmInfo:
    """Copy handed to callers; the registry keeps mutating its own entries under the lock."""
    display = dataclasses.replace(vm.display) if vm.display is not None else None
    return dataclasses.replace(vm, display=display)
