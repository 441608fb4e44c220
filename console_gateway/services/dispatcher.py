import logging

from console_gateway.clients.upstream import UpstreamGateway
from console_gateway.errors import ValidationError
from console_gateway.metrics import metrics
from console_gateway.models import (
    CURRENT_SNAPSHOT,
    Action,
    DispatchResult,
    EntityKind,
    EntityStatus,
    LifecycleCommand,
)
from console_gateway.schemas import Snapshot
from console_gateway.state_machine import (
    VM_ONLY_ACTIONS,
    allowed_statuses,
    can_transition,
    next_state,
)


logger = logging.getLogger(__name__)

REFRESH_AFTER_SEC = 2.0


def restorable(snapshots: list[Snapshot]) -> list[Snapshot]:
    return [snap for snap in snapshots if snap.name != CURRENT_SNAPSHOT]


def build_console_url(console_host: str, vmid: int) -> str:
    return f"{console_host.rstrip('/')}/guacamole/#/client/{vmid}"


class LifecycleDispatcher:
    """Validates lifecycle commands locally and routes them to the gateway.

    Upstream task ids are returned as-is; callers re-fetch state after
    ``refresh_after_sec`` instead of waiting here.
    """

    def __init__(self, gateway: UpstreamGateway, console_host: str | None = None):
        self.gateway = gateway
        self.console_host = console_host or gateway.settings.console_host

    def validate(self, command: LifecycleCommand) -> None:
        target = command.target
        action = command.action
        if target.status.value not in allowed_statuses(target.kind):
            raise ValidationError(
                f"Status {target.status.value} is not valid for {target.label}"
            )
        if action.value in VM_ONLY_ACTIONS and target.kind is not EntityKind.VM:
            raise ValidationError(f"Cannot {action.value} {target.label}: VM only")
        if action is Action.OPEN_CONSOLE:
            return
        if action is Action.ROLLBACK_SNAPSHOT:
            name = (command.snapshot_name or "").strip()
            if not name or name == CURRENT_SNAPSHOT:
                raise ValidationError(
                    f"Cannot rollback {target.label}: choose a snapshot from the listing"
                )
            return
        if not can_transition(target.kind, target.status.value, action.value):
            raise ValidationError(
                f"Cannot {action.value} {target.label} while {target.status.value}"
            )

    async def dispatch(self, command: LifecycleCommand) -> DispatchResult:
        target = command.target
        try:
            self.validate(command)
        except ValidationError:
            metrics.inc("actions_rejected_total", action=command.action.value)
            logger.info(
                "action rejected action=%s type=%s vmid=%s status=%s",
                command.action.value,
                target.kind.value,
                target.vmid,
                target.status.value,
            )
            raise

        if command.action is Action.OPEN_CONSOLE:
            return DispatchResult(
                action=command.action,
                target=target,
                console_url=build_console_url(self.console_host, target.vmid),
            )

        if command.action is Action.ROLLBACK_SNAPSHOT:
            task_id = await self.gateway.rollback_snapshot(
                target.node, target.vmid, (command.snapshot_name or "").strip()
            )
        else:
            task_id = await self.gateway.change_state(
                target.node, target.kind, target.vmid, command.action
            )
        metrics.inc("actions_dispatched_total", action=command.action.value)
        return DispatchResult(
            action=command.action,
            target=target,
            task_id=task_id,
            refresh_after_sec=REFRESH_AFTER_SEC,
            expected_status=EntityStatus(
                next_state(target.status.value, command.action.value)
            ),
        )

    async def restorable_snapshots(self, node: str, vmid: int) -> list[Snapshot]:
        return restorable(await self.gateway.list_snapshots(node, vmid))
