"""Leave request lifecycle.

    pending ──► approved
        ├─────► rejected
        └─────► cancelled

Approved, rejected and cancelled are terminal.
"""

from __future__ import annotations

from lms.common.constants import LeaveStatus
from lms.common.exceptions import NotPending

TRANSITIONS: dict[LeaveStatus, frozenset[LeaveStatus]] = {
    LeaveStatus.pending: frozenset({
        LeaveStatus.approved,
        LeaveStatus.rejected,
        LeaveStatus.cancelled,
    }),
    LeaveStatus.approved: frozenset(),
    LeaveStatus.rejected: frozenset(),
    LeaveStatus.cancelled: frozenset(),
}


def can_transition(current: LeaveStatus, target: LeaveStatus) -> bool:
    return target in TRANSITIONS[current]


def ensure_transition(current: LeaveStatus, target: LeaveStatus) -> None:
    """Raise ``NotPending`` unless *current* → *target* is allowed."""
    if not can_transition(current, target):
        raise NotPending(current)
