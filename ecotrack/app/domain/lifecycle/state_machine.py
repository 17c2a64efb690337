"""
Report lifecycle state machine.

    pending -> assigned -> in_progress -> collected -> resolved

cancelled is reachable from every non-terminal status. Two backward edges
exist: in_progress -> assigned (failed pickup attempt) and
assigned|in_progress -> pending (collector deactivated).
"""

from typing import Dict, FrozenSet

from ecotrack.app.core.exceptions import InvalidTransitionError
from ecotrack.app.models.report_enums import ReportStatus


ALLOWED_TRANSITIONS: Dict[ReportStatus, FrozenSet[ReportStatus]] = {
    ReportStatus.PENDING: frozenset({
        ReportStatus.ASSIGNED,
        ReportStatus.CANCELLED,
    }),
    ReportStatus.ASSIGNED: frozenset({
        ReportStatus.IN_PROGRESS,
        ReportStatus.PENDING,
        ReportStatus.CANCELLED,
    }),
    ReportStatus.IN_PROGRESS: frozenset({
        ReportStatus.COLLECTED,
        ReportStatus.ASSIGNED,
        ReportStatus.PENDING,
        ReportStatus.CANCELLED,
    }),
    ReportStatus.COLLECTED: frozenset({
        ReportStatus.RESOLVED,
        ReportStatus.CANCELLED,
    }),
    ReportStatus.RESOLVED: frozenset(),
    ReportStatus.CANCELLED: frozenset(),
}

_missing = set(ReportStatus) - set(ALLOWED_TRANSITIONS)
if _missing:
    raise RuntimeError(f"Transition table missing statuses: {sorted(s.value for s in _missing)}")


def can_transition(current: ReportStatus, target: ReportStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def ensure_transition(current: ReportStatus, target: ReportStatus) -> None:
    """
    Validate a status change.

    Raises:
        InvalidTransitionError: if target is not reachable from current
    """
    if not can_transition(current, target):
        raise InvalidTransitionError(current.value, target.value)
