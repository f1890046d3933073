"""Meeting status state machine.

Every status write in the pipeline goes through :func:`transition` and a
compare-and-swap on the store, so an out-of-order write (``done -> processing``)
or a lost race between two invocations is rejected instead of silently applied.
"""
from __future__ import annotations

from enum import Enum
from typing import Dict, FrozenSet, Optional, TYPE_CHECKING

from meetingbrain.utils import get_logger

from .errors import InvalidTransitionError, NotFoundError, StatusConflictError

if TYPE_CHECKING:  # pragma: no cover - typing only
    from meetingbrain.storage.base import MeetingStore

LOGGER = get_logger("meeting.status")


class MeetingStatus(str, Enum):
    RECORDING = "recording"
    PROCESSING = "processing"
    ANALYZING = "analyzing"
    LINKING = "linking"
    DONE = "done"
    FAILED = "failed"

    def __str__(self) -> str:
        return self.value


TRANSITIONS: Dict[MeetingStatus, FrozenSet[MeetingStatus]] = {
    MeetingStatus.RECORDING: frozenset({MeetingStatus.PROCESSING}),
    MeetingStatus.PROCESSING: frozenset({MeetingStatus.ANALYZING, MeetingStatus.FAILED}),
    MeetingStatus.ANALYZING: frozenset({MeetingStatus.LINKING, MeetingStatus.FAILED}),
    # Linking never fails the meeting.
    MeetingStatus.LINKING: frozenset({MeetingStatus.DONE}),
    # Manual retry re-enters the stage that failed.
    MeetingStatus.FAILED: frozenset({MeetingStatus.PROCESSING, MeetingStatus.ANALYZING}),
    # Manual re-link of a finished meeting.
    MeetingStatus.DONE: frozenset({MeetingStatus.LINKING}),
}

TERMINAL_STATUSES = frozenset({MeetingStatus.DONE, MeetingStatus.FAILED})


def coerce_status(value: object) -> MeetingStatus:
    if isinstance(value, MeetingStatus):
        return value
    try:
        return MeetingStatus(str(value).strip().lower())
    except ValueError as exc:
        raise ValueError(f"unknown meeting status: {value!r}") from exc


def can_transition(current: object, target: object) -> bool:
    return coerce_status(target) in TRANSITIONS[coerce_status(current)]


def transition(current: object, target: object) -> MeetingStatus:
    """Return ``target`` when the move is allowed, raise otherwise."""
    current_status = coerce_status(current)
    target_status = coerce_status(target)
    if target_status not in TRANSITIONS[current_status]:
        raise InvalidTransitionError(current_status, target_status)
    return target_status


class StatusMachine:
    """Applies validated, compare-and-swap status changes to a store."""

    def __init__(self, store: "MeetingStore") -> None:
        self._store = store

    def current(self, meeting_id: str) -> MeetingStatus:
        meeting = self._store.get_meeting(meeting_id)
        if meeting is None:
            raise NotFoundError(f"meeting not found: {meeting_id}")
        return meeting.status

    def advance(
        self,
        meeting_id: str,
        expected: MeetingStatus,
        target: MeetingStatus,
    ) -> MeetingStatus:
        target = transition(expected, target)
        failed_from: Optional[MeetingStatus] = expected if target is MeetingStatus.FAILED else None
        swapped = self._store.compare_and_set_status(
            meeting_id,
            expected,
            target,
            failed_from=failed_from,
        )
        if not swapped:
            raise StatusConflictError(
                f"meeting {meeting_id} is no longer {expected}; refusing to set {target}"
            )
        LOGGER.info("meeting %s status %s -> %s", meeting_id, expected, target)
        return target


__all__ = [
    "MeetingStatus",
    "TRANSITIONS",
    "TERMINAL_STATUSES",
    "StatusMachine",
    "can_transition",
    "coerce_status",
    "transition",
]
