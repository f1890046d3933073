"""Pipeline orchestrator for meeting transcription, analysis and graph linking."""
from __future__ import annotations

import time
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

from meetingbrain.utils import get_logger

from .analysis import AnalysisStage
from .audit import MeetingAuditLogger
from .config import PipelineConfig
from .errors import InvalidStateError, NotFoundError
from .linking import LinkingStage
from .models import Meeting, SearchHit
from .search import DEFAULT_LIMIT, MeetingSearch
from .stages import PipelineStage, StageResult
from .status import MeetingStatus, StatusMachine
from .transcription import TranscriptionStage

if TYPE_CHECKING:  # pragma: no cover - typing only
    from meetingbrain.storage.base import AudioStorage, MeetingStore

    from .gateway import AIGateway

LOGGER = get_logger("meeting.pipeline")

STAGE_ALIASES = {
    "transcribe": "transcription",
    "transcribe-meeting": "transcription",
    "analyze": "analysis",
    "analyse": "analysis",
    "analyze-meeting": "analysis",
    "link": "linking",
    "link-to-graph": "linking",
}


def describe_meeting(store: "MeetingStore", meeting_id: str) -> Dict[str, Any]:
    """Status view of a meeting plus counts of everything derived from it."""
    meeting = store.get_meeting(meeting_id)
    if meeting is None:
        raise NotFoundError(f"meeting not found: {meeting_id}")
    node_ids = store.list_node_ids_for_meeting(meeting_id)
    return {
        "id": meeting.id,
        "user_id": meeting.user_id,
        "title": meeting.title,
        "language_code": meeting.language_code,
        "status": meeting.status.value,
        "failed_from": meeting.failed_from.value if meeting.failed_from else None,
        "segments_count": len(store.list_segments(meeting_id)),
        "has_note": store.get_note(meeting_id) is not None,
        "action_items_count": len(store.list_action_items(meeting_id)),
        "nodes_count": len(node_ids),
        "edges_count": len(store.list_edges(node_ids)) if node_ids else 0,
    }


class PipelineOrchestrator:
    """Dispatches stages by meeting status.

    Each dispatch moves a meeting at most one stage forward. ``invoke`` adds
    the invocation-layer retry loop (linear backoff, retryable errors only);
    the stages themselves stay single-pass.
    """

    def __init__(
        self,
        store: "MeetingStore",
        audio_storage: "AudioStorage",
        gateway: "AIGateway",
        config: Optional[PipelineConfig] = None,
        *,
        audit: Optional[MeetingAuditLogger] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.store = store
        self.gateway = gateway
        self.config = config or PipelineConfig.from_env()
        self.audit = audit or MeetingAuditLogger.from_config(self.config)
        self.status = StatusMachine(store)
        self._sleep = sleep
        self._stages: Dict[str, PipelineStage] = {
            "transcription": TranscriptionStage(
                store, gateway, audio_storage, self.config, audit=self.audit
            ),
            "analysis": AnalysisStage(store, gateway, self.config, audit=self.audit),
            "linking": LinkingStage(store, gateway, self.config, audit=self.audit),
        }
        self._by_entry = {stage.entry_status: stage for stage in self._stages.values()}

    # ------------------------------------------------------------------
    # Stage lookup
    # ------------------------------------------------------------------
    @property
    def stage_names(self) -> List[str]:
        return list(self._stages)

    def stage(self, name: str) -> PipelineStage:
        key = (name or "").strip().lower()
        key = STAGE_ALIASES.get(key, key)
        try:
            return self._stages[key]
        except KeyError:
            raise ValueError(f"unknown pipeline stage: {name}") from None

    def next_stage(self, meeting: Meeting) -> Optional[PipelineStage]:
        return self._by_entry.get(meeting.status)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------
    def start(self, meeting_id: str) -> MeetingStatus:
        """Hand a recorded meeting to the pipeline (``recording -> processing``)."""
        meeting = self._require(meeting_id)
        if not meeting.audio_path:
            raise InvalidStateError(f"meeting {meeting_id} has no audio to process")
        return self.status.advance(meeting_id, MeetingStatus.RECORDING, MeetingStatus.PROCESSING)

    def invoke(self, stage_name: str, meeting_id: str) -> StageResult:
        stage = self.stage(stage_name)
        attempts = self.config.invoke_attempts
        result = stage.run(meeting_id)
        attempt = 1
        while not result.success and result.retryable and attempt < attempts:
            delay = self.config.invoke_backoff_seconds * attempt
            LOGGER.warning(
                "%s failed for %s (attempt %d/%d): %s; retrying in %.1fs",
                stage.name,
                meeting_id,
                attempt,
                attempts,
                result.error,
                delay,
            )
            self._sleep(delay)
            attempt += 1
            result = stage.run(meeting_id)
        return result

    def advance(self, meeting_id: str) -> Optional[StageResult]:
        """Run the stage the meeting's status points at; ``None`` when idle."""
        meeting = self._require(meeting_id)
        stage = self.next_stage(meeting)
        if stage is None:
            LOGGER.info("meeting %s is %s; nothing to run", meeting_id, meeting.status)
            return None
        return self.invoke(stage.name, meeting_id)

    def run(self, meeting_id: str) -> List[StageResult]:
        """Drive a meeting until it is ``done``, ``failed`` or idle."""
        meeting = self._require(meeting_id)
        if meeting.status is MeetingStatus.RECORDING:
            self.start(meeting_id)
        results: List[StageResult] = []
        for _ in range(len(self._stages)):
            result = self.advance(meeting_id)
            if result is None:
                break
            results.append(result)
            if not result.success and result.stage != "linking":
                break
        return results

    def retry(self, meeting_id: str) -> StageResult:
        """Re-run the stage a ``failed`` meeting failed in, from its top."""
        meeting = self._require(meeting_id)
        if meeting.status is not MeetingStatus.FAILED:
            raise InvalidStateError(f"meeting {meeting_id} is {meeting.status}, not failed")
        stage = self._by_entry.get(meeting.failed_from) if meeting.failed_from else None
        if stage is None:
            raise InvalidStateError(f"meeting {meeting_id} has no retryable stage recorded")
        LOGGER.info("retrying %s for meeting %s", stage.name, meeting_id)
        return self.invoke(stage.name, meeting_id)

    def search(self, query: str, user_id: str, limit: int = DEFAULT_LIMIT) -> List[SearchHit]:
        return MeetingSearch(self.store, self.gateway).search(query, user_id, limit)

    def describe(self, meeting_id: str) -> Dict[str, Any]:
        return describe_meeting(self.store, meeting_id)

    def _require(self, meeting_id: str) -> Meeting:
        meeting = self.store.get_meeting(meeting_id)
        if meeting is None:
            raise NotFoundError(f"meeting not found: {meeting_id}")
        return meeting


__all__ = ["PipelineOrchestrator", "STAGE_ALIASES", "describe_meeting"]
