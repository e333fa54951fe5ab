"""VM registry domain models."""

from dataclasses import dataclass
from enum import Enum

from pydantic import BaseModel

# Port value meaning "assign a port when the VM starts"
AUTO_PORT = -1


class VmState(str, Enum):
    RUNNING = "running"
    STOPPED = "stopped"


@dataclass
class DisplayConfig:
    type: str = "vnc"
    port: int = AUTO_PORT
    autoport: bool = True
    listen: str | None = None

    @property
    def is_auto(self) -> bool:
        return self.port == AUTO_PORT


@dataclass
class VmInfo:
    name: str
    running: bool = False
    instance_id: int | None = None  # Runtime numeric id, only set while running
    display: DisplayConfig | None = None

    @property
    def state(self) -> VmState:
        return VmState.RUNNING if self.running else VmState.STOPPED


class VmSpec(BaseModel):
    name: str
    memory_mb: int = 1024
    vcpus: int = 1
    iso_path: str | None = None
    disk_path: str | None = None
    display_port: int | None = AUTO_PORT  # None = no display stanza
