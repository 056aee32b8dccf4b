# Overview: Status constants and the single transition table per ledger entity.

"""
Document lifecycle for orders and returns.

STATE MACHINES:
    Order:   ACTIVE -> CANCELLED            (terminal, never reversed)
    Return:  ACTIVE -> ANNULLED -> ACTIVE   (toggle)

Every status change in the order and return engines goes through
require_transition(); nothing else flips a status column.
"""

from __future__ import annotations

from typing import Literal

from .errors import StateError, ValidationError


ORDER_KIND_PURCHASE = "PURCHASE"
ORDER_KIND_SALE = "SALE"
ORDER_KINDS = {ORDER_KIND_PURCHASE, ORDER_KIND_SALE}

ORDER_STATUS_ACTIVE = "ACTIVE"
ORDER_STATUS_CANCELLED = "CANCELLED"

RETURN_STATUS_ACTIVE = "ACTIVE"
RETURN_STATUS_ANNULLED = "ANNULLED"

Entity = Literal["order", "return"]

TRANSITIONS: dict[str, set[tuple[str, str]]] = {
    "order": {
        (ORDER_STATUS_ACTIVE, ORDER_STATUS_CANCELLED),
    },
    "return": {
        (RETURN_STATUS_ACTIVE, RETURN_STATUS_ANNULLED),
        (RETURN_STATUS_ANNULLED, RETURN_STATUS_ACTIVE),
    },
}

VALID_STATUSES: dict[str, set[str]] = {
    entity: {status for pair in pairs for status in pair}
    for entity, pairs in TRANSITIONS.items()
}

# Message used when a transition is refused, keyed by (entity, from_status)
_REFUSALS = {
    ("order", ORDER_STATUS_CANCELLED): "{label} {entity_id} is already cancelled",
    ("return", RETURN_STATUS_ANNULLED): "{label} {entity_id} is already annulled",
    ("return", RETURN_STATUS_ACTIVE): "{label} {entity_id} is already active",
}


def validate_status(entity: Entity, status: str) -> None:
    if entity not in TRANSITIONS:
        raise ValidationError(f"Unknown entity '{entity}'")
    if status not in VALID_STATUSES[entity]:
        raise ValidationError(
            f"Invalid {entity} status '{status}'. Must be one of: {', '.join(sorted(VALID_STATUSES[entity]))}"
        )


def can_transition(entity: Entity, from_status: str, to_status: str) -> bool:
    """Same-state moves are not transitions and are refused."""
    validate_status(entity, from_status)
    validate_status(entity, to_status)
    return (from_status, to_status) in TRANSITIONS[entity]


def require_transition(
    entity: Entity,
    from_status: str,
    to_status: str,
    *,
    entity_id: int | None = None,
    label: str | None = None,
) -> None:
    """Raise StateError unless from_status -> to_status is in the entity's table."""
    if can_transition(entity, from_status, to_status):
        return

    label = label or entity.capitalize()
    template = _REFUSALS.get(
        (entity, from_status),
        "Cannot move {label} {entity_id} from {from_status} to {to_status}",
    )
    raise StateError(
        template.format(
            label=label,
            entity_id=entity_id,
            from_status=from_status,
            to_status=to_status,
        ),
        details={
            "entity": entity,
            "entity_id": entity_id,
            "from_status": from_status,
            "to_status": to_status,
        },
    )


def next_return_status(current: str) -> str:
    """Target status for a toggle."""
    validate_status("return", current)
    if current == RETURN_STATUS_ACTIVE:
        return RETURN_STATUS_ANNULLED
    return RETURN_STATUS_ACTIVE
