"""Pickup statuses and the one-way transition table."""

from enum import Enum


class PickupStatus(str, Enum):
    PENDING = "pending"
    SOLD = "sold"
    EXPIRED = "expired"
    RETURNED = "returned"
    TRANSFERRED = "transferred"


TERMINAL_STATUSES = frozenset(
    {PickupStatus.SOLD, PickupStatus.EXPIRED, PickupStatus.RETURNED, PickupStatus.TRANSFERRED}
)

# Every transition leaves `pending`; nothing re-enters it.
ALLOWED_TRANSITIONS: dict[PickupStatus, frozenset[PickupStatus]] = {
    PickupStatus.PENDING: TERMINAL_STATUSES,
    PickupStatus.SOLD: frozenset(),
    PickupStatus.EXPIRED: frozenset(),
    PickupStatus.RETURNED: frozenset(),
    PickupStatus.TRANSFERRED: frozenset(),
}

STATUS_LABELS = {
    PickupStatus.PENDING: "Pending",
    PickupStatus.SOLD: "Sold",
    PickupStatus.EXPIRED: "Expired",
    PickupStatus.RETURNED: "Returned",
    PickupStatus.TRANSFERRED: "Transferred",
}


def is_terminal(status: str | PickupStatus) -> bool:
    return PickupStatus(status) in TERMINAL_STATUSES


def can_transition(current: str | PickupStatus, target: str | PickupStatus) -> bool:
    return PickupStatus(target) in ALLOWED_TRANSITIONS[PickupStatus(current)]


def status_label(status: str | PickupStatus) -> str:
    return STATUS_LABELS[PickupStatus(status)]
