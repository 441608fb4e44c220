from dataclasses import dataclass, field
from enum import Enum

from console_gateway.schemas import ComputeNode, Container, VirtualMachine


CURRENT_SNAPSHOT = "current"


class EntityKind(str, Enum):
    VM = "vm"
    CONTAINER = "container"

    @property
    def resource_type(self) -> str:
        """Value of the ``type`` filter on the cluster resources endpoint."""
        return "vm" if self is EntityKind.VM else "lxc"

    @property
    def path_segment(self) -> str:
        return "qemu" if self is EntityKind.VM else "lxc"

    @classmethod
    def from_resource_type(cls, value: str) -> "EntityKind":
        if value in {"vm", "qemu"}:
            return cls.VM
        if value in {"lxc", "container"}:
            return cls.CONTAINER
        raise ValueError(f"unknown resource type {value!r}")


class EntityStatus(str, Enum):
    RUNNING = "running"
    STOPPED = "stopped"
    SUSPENDED = "suspended"


class Action(str, Enum):
    START = "start"
    STOP = "stop"
    RESET = "reset"
    ROLLBACK_SNAPSHOT = "rollback-snapshot"
    OPEN_CONSOLE = "open-console"


@dataclass(frozen=True)
class SessionCredential:
    ticket: str
    csrf_token: str
    username: str

    def __post_init__(self) -> None:
        if not self.ticket or not self.csrf_token:
            raise ValueError("ticket and csrf token must be present together")

    def headers(self) -> dict[str, str]:
        return {
            "Authorization": f"PVEAuthCookie={self.ticket}",
            "CSRFPreventionToken": self.csrf_token,
        }

    def to_upstream(self) -> dict[str, str]:
        return {
            "ticket": self.ticket,
            "CSRFPreventionToken": self.csrf_token,
            "username": self.username,
        }


@dataclass(frozen=True)
class EntityRef:
    vmid: int
    node: str
    kind: EntityKind
    status: EntityStatus
    name: str | None = None

    @property
    def label(self) -> str:
        prefix = "VM" if self.kind is EntityKind.VM else "LXC"
        return f"{prefix} {self.vmid}"


@dataclass(frozen=True)
class LifecycleCommand:
    action: Action
    target: EntityRef
    snapshot_name: str | None = None


@dataclass
class DispatchResult:
    action: Action
    target: EntityRef
    task_id: str | None = None
    console_url: str | None = None
    refresh_after_sec: float | None = None
    expected_status: EntityStatus | None = None


@dataclass
class AggregateSnapshot:
    nodes: list[ComputeNode] = field(default_factory=list)
    vms: list[VirtualMachine] = field(default_factory=list)
    containers: list[Container] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
