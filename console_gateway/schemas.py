from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class UpstreamModel(BaseModel):
    # Unknown upstream fields pass through to the UI untouched.
    model_config = ConfigDict(extra="allow")

    def to_upstream(self) -> dict:
        return self.model_dump(mode="json", exclude_unset=True)


class ComputeNode(UpstreamModel):
    node: str
    status: Literal["online", "offline"]
    cpu: float = 0.0
    mem: int = 0
    maxmem: int = 0
    disk: int = 0
    maxdisk: int = 0
    uptime: int = 0


class ComputeEntity(UpstreamModel):
    vmid: int
    node: str
    name: str | None = None
    cpu: float = 0.0
    mem: int = 0
    maxmem: int = 0
    disk: int = 0
    maxdisk: int = 0
    uptime: int | None = None
    template: bool | None = None
    type: str | None = None


class VirtualMachine(ComputeEntity):
    status: Literal["running", "stopped", "suspended"]


class Container(ComputeEntity):
    status: Literal["running", "stopped"]


class Snapshot(UpstreamModel):
    name: str
    description: str | None = None
    snaptime: int | None = None
    vmstate: bool | None = None
    parent: str | None = None


class AuthRequest(BaseModel):
    username: str = Field(min_length=1)
    password: str


class ActionRequest(BaseModel):
    action: Literal["start", "stop", "reset", "rollback-snapshot", "open-console"]
    type: Literal["vm", "lxc"]
    node: str = Field(min_length=1)
    vmid: int = Field(ge=1)
    status: Literal["running", "stopped", "suspended"]
    name: str | None = None
    snapname: str | None = None


class ActionResponse(BaseModel):
    action: str
    vmid: int
    node: str
    task_id: str | None = None
    console_url: str | None = None
    refresh_after_sec: float | None = None
    expected_status: str | None = None


class DashboardResponse(BaseModel):
    nodes: list[dict]
    vms: list[dict]
    containers: list[dict]
    warnings: list[str] = Field(default_factory=list)
