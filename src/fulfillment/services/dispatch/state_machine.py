"""Assignment lifecycle.

    Pending --accept--> Accepted --pick--> Picked --deliver--> Delivered
    Pending --cancel--> Cancelled
    Accepted --cancel--> Cancelled
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from ...errors import InvalidState
from ...models.domain import AssignmentStatus

S = AssignmentStatus

TRANSITIONS: dict[AssignmentStatus, frozenset[AssignmentStatus]] = {
    S.PENDING: frozenset({S.ACCEPTED, S.CANCELLED}),
    S.ACCEPTED: frozenset({S.PICKED, S.CANCELLED}),
    S.PICKED: frozenset({S.DELIVERED}),
    S.DELIVERED: frozenset(),
    S.CANCELLED: frozenset(),
}

TERMINAL_STATUSES = frozenset(status for status, targets in TRANSITIONS.items() if not targets)

# Timestamp stamped when an assignment enters the status.
_STAMPS = {
    S.ACCEPTED: "accepted_at",
    S.PICKED: "picked_at",
    S.DELIVERED: "delivered_at",
    S.CANCELLED: "cancelled_at",
}


def can_transition(current: AssignmentStatus, target: AssignmentStatus) -> bool:
    return target in TRANSITIONS[current]


def ensure_transition(current: AssignmentStatus, target: AssignmentStatus) -> None:
    if current == S.CANCELLED:
        raise InvalidState("Assignment is cancelled.", status=current.value)
    if not can_transition(current, target):
        raise InvalidState(
            f"Cannot move assignment from {current.value} to {target.value}.",
            status=current.value,
            requested=target.value,
        )


def transition_changes(target: AssignmentStatus, now: datetime) -> dict[str, Any]:
    """Fields written when entering ``target``."""

    changes: dict[str, Any] = {"status": target, "updated_at": now}
    stamp = _STAMPS.get(target)
    if stamp:
        changes[stamp] = now
    return changes
