"""Shared plumbing for the three pipeline stages.

A stage run is a single linear pass:

1. claim the meeting: take its stage lock (one stage at a time per meeting),
   then check the status, which must be the stage's entry status, a retryable
   ``failed`` from that stage, or a re-enterable status such as ``done`` for
   linking;
2. execute the stage body, recording progress in a :class:`StepTrace`;
3. advance the status on success, or apply the stage's failure policy.

Retries belong to the caller (:mod:`meetingbrain.agents.meeting.pipeline`).
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Dict, FrozenSet, List, Optional, TypeVar

from meetingbrain.utils import get_logger

from .audit import MeetingAuditLogger
from .config import PipelineConfig
from .errors import InvalidStateError, NotFoundError, PipelineError, StatusConflictError
from .models import Meeting
from .status import MeetingStatus, StatusMachine

if TYPE_CHECKING:  # pragma: no cover - typing only
    from meetingbrain.storage.base import MeetingStore

    from .gateway import AIGateway

LOGGER = get_logger("meeting.stages")

T = TypeVar("T")


class StepTrace:
    """Ordered, human-readable progress log returned with every stage result."""

    def __init__(self, stage: str) -> None:
        self.stage = stage
        self._lines: List[str] = []
        self._counter = 0

    def step(self, title: str) -> None:
        self._counter += 1
        self._append(f"{self._counter}. {title}")

    def detail(self, message: str) -> None:
        self._append(f"   {message}")

    def error(self, message: str) -> None:
        self._append(f"ERROR: {message}")

    def _append(self, line: str) -> None:
        self._lines.append(line)
        LOGGER.debug("[%s] %s", self.stage, line)

    @property
    def lines(self) -> List[str]:
        return list(self._lines)


@dataclass
class StageResult:
    stage: str
    meeting_id: str
    success: bool
    counts: Dict[str, int] = field(default_factory=dict)
    steps: List[str] = field(default_factory=list)
    error: Optional[str] = None
    error_type: Optional[str] = None
    retryable: bool = False
    http_status: int = 200
    status_after: Optional[MeetingStatus] = None

    def to_payload(self) -> Dict[str, Any]:
        if self.success:
            return {"success": True, **self.counts, "steps": list(self.steps)}
        return {"error": self.error, "steps": list(self.steps)}


def run_noncritical(
    name: str,
    action: Callable[[], T],
    steps: Optional[StepTrace] = None,
) -> Optional[T]:
    """Run best-effort work; a failure is logged and traced, never raised."""
    try:
        return action()
    except Exception as exc:
        LOGGER.warning("non-critical step '%s' failed: %s", name, exc)
        if steps is not None:
            steps.detail(f"{name} failed (ignored): {exc}")
        return None


class PipelineStage:
    """Template for one independently invocable pipeline stage."""

    name: str = "stage"
    entry_status: MeetingStatus = MeetingStatus.PROCESSING
    success_status: MeetingStatus = MeetingStatus.DONE
    # Statuses (besides entry and a matching ``failed``) the stage may re-enter from.
    reentry_statuses: FrozenSet[MeetingStatus] = frozenset()
    # Once claimed, a failure reports this HTTP status instead of the error's own.
    failure_http_status: Optional[int] = None

    def __init__(
        self,
        store: "MeetingStore",
        gateway: "AIGateway",
        config: PipelineConfig,
        *,
        audit: Optional[MeetingAuditLogger] = None,
    ) -> None:
        self.store = store
        self.gateway = gateway
        self.config = config
        self.status = StatusMachine(store)
        self.audit = audit or MeetingAuditLogger.from_config(config)

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------
    def run(self, meeting_id: str) -> StageResult:
        LOGGER.info("%s stage start: meeting=%s", self.name, meeting_id)
        steps = StepTrace(self.name)
        claimed = False
        try:
            meeting = self.claim(meeting_id, steps)
            claimed = True
            counts = self.execute(meeting, steps)
            status_after = self.finish(meeting_id, steps)
        except Exception as exc:
            result = self._failure(meeting_id, steps, exc, claimed=claimed)
        else:
            result = StageResult(
                stage=self.name,
                meeting_id=meeting_id,
                success=True,
                counts=counts,
                steps=steps.lines,
                status_after=status_after,
            )
            LOGGER.info("%s stage finished: meeting=%s counts=%s", self.name, meeting_id, counts)
        if claimed:
            self._release(meeting_id)
        self._record(result)
        return result

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------
    def execute(self, meeting: Meeting, steps: StepTrace) -> Dict[str, int]:
        raise NotImplementedError

    def finish(self, meeting_id: str, steps: StepTrace) -> MeetingStatus:
        steps.step(f"Setting status to {self.success_status}")
        status = self.status.advance(meeting_id, self.entry_status, self.success_status)
        steps.detail("Status updated")
        return status

    def on_failure(self, meeting_id: str, steps: StepTrace) -> Optional[MeetingStatus]:
        """Default policy: mark the meeting ``failed`` (best-effort)."""
        advanced = run_noncritical(
            "mark meeting failed",
            lambda: self.status.advance(meeting_id, self.entry_status, MeetingStatus.FAILED),
            steps,
        )
        return advanced

    # ------------------------------------------------------------------
    # Claiming
    # ------------------------------------------------------------------
    def claim(self, meeting_id: str, steps: StepTrace) -> Meeting:
        """Take the meeting's stage lock, then check and move its status.

        Only one stage may run on a meeting at a time; a concurrent caller
        fails with :class:`StatusConflictError` before writing anything.
        """
        steps.step("Fetching meeting")
        if self.store.get_meeting(meeting_id) is None:
            raise NotFoundError(f"meeting not found: {meeting_id}")
        if not self.store.acquire_stage_lock(meeting_id, self.name):
            raise StatusConflictError(f"meeting {meeting_id} is already being processed")
        try:
            return self._claim_locked(meeting_id, steps)
        except Exception:
            self._release(meeting_id)
            raise

    def _claim_locked(self, meeting_id: str, steps: StepTrace) -> Meeting:
        meeting = self.store.get_meeting(meeting_id)
        if meeting is None:
            raise NotFoundError(f"meeting not found: {meeting_id}")

        current = meeting.status
        if current is MeetingStatus.FAILED and meeting.failed_from is self.entry_status:
            steps.detail(f"Retrying after failure in {self.entry_status}")
            self.status.advance(meeting_id, MeetingStatus.FAILED, self.entry_status)
        elif current in self.reentry_statuses:
            steps.detail(f"Re-entering from {current}")
            self.status.advance(meeting_id, current, self.entry_status)
        elif current is not self.entry_status:
            raise InvalidStateError(
                f"{self.name} requires status {self.entry_status}, meeting {meeting_id} is {current}"
            )
        meeting.status = self.entry_status
        meeting.failed_from = None
        return meeting

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _release(self, meeting_id: str) -> None:
        run_noncritical(
            "release stage lock",
            lambda: self.store.release_stage_lock(meeting_id, self.name),
        )

    def _failure(
        self,
        meeting_id: str,
        steps: StepTrace,
        exc: Exception,
        *,
        claimed: bool,
    ) -> StageResult:
        message = str(exc) or exc.__class__.__name__
        steps.error(message)
        if isinstance(exc, PipelineError):
            LOGGER.warning("%s stage failed for %s: %s", self.name, meeting_id, message)
            retryable = exc.retryable
            http_status = exc.http_status
        else:
            LOGGER.exception("%s stage crashed for %s", self.name, meeting_id)
            retryable = True
            http_status = 500

        status_after: Optional[MeetingStatus] = None
        if claimed:
            status_after = self.on_failure(meeting_id, steps)
            if self.failure_http_status is not None:
                http_status = self.failure_http_status
        return StageResult(
            stage=self.name,
            meeting_id=meeting_id,
            success=False,
            steps=steps.lines,
            error=message,
            error_type=exc.__class__.__name__,
            retryable=retryable,
            http_status=http_status,
            status_after=status_after,
        )

    def _record(self, result: StageResult) -> None:
        self.audit.record(
            {
                "meeting_id": result.meeting_id,
                "stage": result.stage,
                "success": result.success,
                "error": result.error,
                "counts": result.counts,
                "status_after": result.status_after.value if result.status_after else None,
                "steps": result.steps,
            }
        )


__all__ = ["PipelineStage", "StageResult", "StepTrace", "run_noncritical"]
