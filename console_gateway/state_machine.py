from console_gateway.models import Action, EntityKind, EntityStatus


# Actions that drive the entity through a run-state edge, keyed by the state
# they leave from. Console and snapshot rollback are handled separately.
ALLOWED_TRANSITIONS: dict[EntityKind, dict[str, set[str]]] = {
    EntityKind.VM: {
        EntityStatus.STOPPED.value: {Action.START.value},
        EntityStatus.SUSPENDED.value: {Action.START.value},
        EntityStatus.RUNNING.value: {Action.STOP.value, Action.RESET.value},
    },
    EntityKind.CONTAINER: {
        EntityStatus.STOPPED.value: {Action.START.value},
        EntityStatus.RUNNING.value: {Action.STOP.value},
    },
}

RESULTING_STATE: dict[str, str] = {
    Action.START.value: EntityStatus.RUNNING.value,
    Action.STOP.value: EntityStatus.STOPPED.value,
    Action.RESET.value: EntityStatus.RUNNING.value,
}

VM_ONLY_ACTIONS = {Action.RESET.value, Action.ROLLBACK_SNAPSHOT.value}


def allowed_statuses(kind: EntityKind) -> set[str]:
    return set(ALLOWED_TRANSITIONS[kind])


def can_transition(kind: EntityKind, status: str, action: str) -> bool:
    return action in ALLOWED_TRANSITIONS[kind].get(status, set())


def next_state(status: str, action: str) -> str:
    return RESULTING_STATE.get(action, status)
