import asyncio

import httpx
import pytest

from console_gateway.clients.upstream import UpstreamGateway
from console_gateway.config import Settings
from console_gateway.errors import UpstreamError, ValidationError
from console_gateway.models import (
    Action,
    EntityKind,
    EntityRef,
    EntityStatus,
    LifecycleCommand,
    SessionCredential,
)
from console_gateway.schemas import Snapshot
from console_gateway.services.dispatcher import LifecycleDispatcher, restorable
from console_gateway.session import CredentialHolder


def _dispatcher(calls: list[httpx.Request], response: httpx.Response | None = None):
    def handler(request):
        calls.append(request)
        if response is not None:
            return response
        if request.method == "GET":
            return httpx.Response(
                200,
                json={
                    "data": [
                        {"name": "current", "description": "You are here!"},
                        {"name": "before-upgrade", "snaptime": 1700000000},
                    ]
                },
            )
        return httpx.Response(200, json={"data": "UPID:pve1:00001:task:100:root@pam:"})

    gateway = UpstreamGateway(
        Settings(console_host="http://guac.test:8080/"),
        CredentialHolder(SessionCredential("PVE:root@pam:01", "01:csrf", "root@pam")),
        transport=httpx.MockTransport(handler),
    )
    return LifecycleDispatcher(gateway)


def _dispatch(dispatcher: LifecycleDispatcher, command: LifecycleCommand):
    async def runner():
        async with dispatcher.gateway:
            return await dispatcher.dispatch(command)

    return asyncio.run(runner())


def _target(kind: EntityKind, status: EntityStatus, vmid: int = 100) -> EntityRef:
    return EntityRef(vmid=vmid, node="pve1", kind=kind, status=status)


@pytest.mark.parametrize("kind", [EntityKind.VM, EntityKind.CONTAINER])
def test_start_running_entity_is_rejected(kind):
    calls: list[httpx.Request] = []
    command = LifecycleCommand(Action.START, _target(kind, EntityStatus.RUNNING))
    with pytest.raises(ValidationError):
        _dispatch(_dispatcher(calls), command)
    assert calls == []


@pytest.mark.parametrize("kind", [EntityKind.VM, EntityKind.CONTAINER])
def test_start_stopped_entity_calls_upstream(kind):
    calls: list[httpx.Request] = []
    command = LifecycleCommand(Action.START, _target(kind, EntityStatus.STOPPED))
    result = _dispatch(_dispatcher(calls), command)
    assert len(calls) == 1
    assert calls[0].url.path == (
        f"/api2/json/nodes/pve1/{kind.path_segment}/100/status/start"
    )
    assert result.task_id == "UPID:pve1:00001:task:100:root@pam:"
    assert result.refresh_after_sec == 2.0
    assert result.expected_status is EntityStatus.RUNNING


def test_start_suspended_vm_is_allowed():
    calls: list[httpx.Request] = []
    command = LifecycleCommand(Action.START, _target(EntityKind.VM, EntityStatus.SUSPENDED))
    _dispatch(_dispatcher(calls), command)
    assert len(calls) == 1


@pytest.mark.parametrize("status", list(EntityStatus))
def test_reset_container_is_always_rejected(status):
    calls: list[httpx.Request] = []
    command = LifecycleCommand(Action.RESET, _target(EntityKind.CONTAINER, status, 200))
    with pytest.raises(ValidationError):
        _dispatch(_dispatcher(calls), command)
    assert calls == []


@pytest.mark.parametrize("action", [Action.STOP, Action.RESET])
def test_stop_and_reset_require_running(action):
    calls: list[httpx.Request] = []
    command = LifecycleCommand(action, _target(EntityKind.VM, EntityStatus.STOPPED))
    with pytest.raises(ValidationError):
        _dispatch(_dispatcher(calls), command)
    assert calls == []


def test_reset_running_vm_dispatches():
    calls: list[httpx.Request] = []
    command = LifecycleCommand(Action.RESET, _target(EntityKind.VM, EntityStatus.RUNNING))
    _dispatch(_dispatcher(calls), command)
    assert calls[0].url.path.endswith("/qemu/100/status/reset")


def test_rollback_requires_vm_and_snapshot_name():
    calls: list[httpx.Request] = []
    dispatcher = _dispatcher(calls)
    for command in (
        LifecycleCommand(
            Action.ROLLBACK_SNAPSHOT,
            _target(EntityKind.CONTAINER, EntityStatus.STOPPED, 200),
            "before-upgrade",
        ),
        LifecycleCommand(Action.ROLLBACK_SNAPSHOT, _target(EntityKind.VM, EntityStatus.RUNNING)),
        LifecycleCommand(
            Action.ROLLBACK_SNAPSHOT, _target(EntityKind.VM, EntityStatus.RUNNING), "current"
        ),
    ):
        with pytest.raises(ValidationError):
            dispatcher.validate(command)
    assert calls == []


def test_rollback_dispatches_regardless_of_run_state():
    calls: list[httpx.Request] = []
    command = LifecycleCommand(
        Action.ROLLBACK_SNAPSHOT,
        _target(EntityKind.VM, EntityStatus.STOPPED),
        "before-upgrade",
    )
    result = _dispatch(_dispatcher(calls), command)
    assert calls[0].method == "POST"
    assert calls[0].url.path.endswith("/qemu/100/snapshot/before-upgrade/rollback")
    assert result.task_id is not None


def test_open_console_returns_url_without_network():
    calls: list[httpx.Request] = []
    command = LifecycleCommand(
        Action.OPEN_CONSOLE, _target(EntityKind.CONTAINER, EntityStatus.RUNNING, 200)
    )
    result = _dispatch(_dispatcher(calls), command)
    assert result.console_url == "http://guac.test:8080/guacamole/#/client/200"
    assert result.task_id is None
    assert calls == []


def test_upstream_rejection_stays_upstream_error():
    calls: list[httpx.Request] = []
    dispatcher = _dispatcher(calls, httpx.Response(500, text="can't lock file"))
    command = LifecycleCommand(Action.STOP, _target(EntityKind.VM, EntityStatus.RUNNING))
    with pytest.raises(UpstreamError):
        _dispatch(dispatcher, command)
    assert len(calls) == 1


def test_restorable_snapshots_excludes_current():
    calls: list[httpx.Request] = []
    dispatcher = _dispatcher(calls)

    async def runner():
        async with dispatcher.gateway:
            return await dispatcher.restorable_snapshots("pve1", 100)

    snapshots = asyncio.run(runner())
    assert [s.name for s in snapshots] == ["before-upgrade"]
    assert snapshots[0].snaptime == 1700000000


def test_restorable_filter():
    snapshots = [Snapshot(name="current"), Snapshot(name="nightly", vmstate=True)]
    assert [s.name for s in restorable(snapshots)] == ["nightly"]

