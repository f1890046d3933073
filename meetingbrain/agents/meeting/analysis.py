"""Analysis stage: transcript text to summary, decisions and action items."""
from __future__ import annotations

import json
import re
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, ValidationError, field_validator

from meetingbrain.utils import get_logger

from .config import DEGRADED_SUMMARY_CHARS
from .errors import NoTranscriptError, ParseError
from .models import DEFAULT_PRIORITY, PRIORITIES, ActionItem, Meeting, MeetingNote, TranscriptSegment
from .stages import PipelineStage, StepTrace
from .status import MeetingStatus
from .transcription import language_name

LOGGER = get_logger("meeting.analysis")

NO_SUMMARY_TEXT = "No summary generated"

_FENCE_OPEN = re.compile(r"```json\s*", re.IGNORECASE)
_FENCE_ANY = re.compile(r"```\s*")


def normalize_priority(value: Any) -> str:
    candidate = str(value or "").strip().lower()
    return candidate if candidate in PRIORITIES else DEFAULT_PRIORITY


def _optional_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _string_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    items: List[str] = []
    for entry in value:
        if entry is None or isinstance(entry, (dict, list)):
            continue
        text = str(entry).strip()
        if text:
            items.append(text)
    return items


class ActionItemPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    task: str
    owner: Optional[str] = None
    priority: str = DEFAULT_PRIORITY
    deadline: Optional[str] = None

    @field_validator("task", mode="before")
    @classmethod
    def _task_required(cls, value: Any) -> str:
        text = _optional_text(value)
        if text is None:
            raise ValueError("action item task is empty")
        return text

    @field_validator("owner", "deadline", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Optional[str]:
        return _optional_text(value)

    @field_validator("priority", mode="before")
    @classmethod
    def _normalize_priority(cls, value: Any) -> str:
        return normalize_priority(value)


class AnalysisPayload(BaseModel):
    """Structured analysis returned by the model, validated leniently.

    Malformed action items are dropped individually and non-list arrays become
    empty, so one bad field never discards the rest of the analysis.
    """

    model_config = ConfigDict(extra="ignore")

    summary: str = ""
    action_items: List[ActionItemPayload] = Field(default_factory=list)
    decisions: List[str] = Field(default_factory=list)
    open_questions: List[str] = Field(default_factory=list)
    # Decoded JSON exactly as the model returned it; empty when degraded.
    _raw: Dict[str, Any] = PrivateAttr(default_factory=dict)

    @property
    def raw(self) -> Dict[str, Any]:
        return self._raw

    @field_validator("summary", mode="before")
    @classmethod
    def _summary_text(cls, value: Any) -> str:
        if value is None:
            return ""
        return value.strip() if isinstance(value, str) else str(value)

    @field_validator("action_items", mode="before")
    @classmethod
    def _keep_valid_items(cls, value: Any) -> List[ActionItemPayload]:
        if not isinstance(value, list):
            return []
        kept: List[ActionItemPayload] = []
        for entry in value:
            try:
                kept.append(ActionItemPayload.model_validate(entry))
            except ValidationError as exc:
                LOGGER.debug("dropping malformed action item %r: %s", entry, exc)
        return kept

    @field_validator("decisions", "open_questions", mode="before")
    @classmethod
    def _strings(cls, value: Any) -> List[str]:
        return _string_list(value)


def build_transcript_text(segments: Sequence[TranscriptSegment]) -> str:
    return "\n".join(segment.render() for segment in segments)


def build_analysis_prompt(transcript: str, lang_name: str) -> str:
    return f"""You are an expert meeting analyst. Analyze the following meeting transcript and extract structured information.

The transcript is in {lang_name}. Respond in the SAME language as the transcript.

Return your analysis as valid JSON with this exact structure:
{{
  "summary": "A concise 2-4 sentence summary of the meeting's key points and outcomes",
  "action_items": [
    {{
      "task": "Description of the task",
      "owner": "Person responsible (use speaker label if name unknown, or null)",
      "priority": "high" | "medium" | "low",
      "deadline": null
    }}
  ],
  "decisions": [
    "Decision 1 that was made",
    "Decision 2 that was made"
  ],
  "open_questions": [
    "Unresolved question 1",
    "Unresolved question 2"
  ]
}}

Rules:
- Output ONLY valid JSON, no markdown code fences, no extra text
- If no action items/decisions/open questions were found, use empty arrays []
- Priority should be "high" for urgent/critical items, "medium" for standard tasks, "low" for nice-to-haves
- Keep the summary focused and actionable
- Preserve the original language of the transcript in your analysis

Transcript:
{transcript}"""


def strip_code_fences(raw: str) -> str:
    """Remove markdown code fences (```json ... ```) wherever they appear."""
    return _FENCE_ANY.sub("", _FENCE_OPEN.sub("", raw or "")).strip()


def decode_analysis(raw: str) -> AnalysisPayload:
    """Strict decode; raises :class:`ParseError` for anything unusable."""
    cleaned = strip_code_fences(raw)
    try:
        data = json.loads(cleaned)
    except ValueError as exc:
        raise ParseError(f"analysis is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ParseError(f"analysis JSON is a {type(data).__name__}, expected an object")
    try:
        payload = AnalysisPayload.model_validate(data)
    except ValidationError as exc:
        raise ParseError(f"analysis JSON failed validation: {exc}") from exc
    payload._raw = data
    return payload


def degraded_analysis(raw: str) -> AnalysisPayload:
    return AnalysisPayload(summary=(raw or "")[:DEGRADED_SUMMARY_CHARS])


def parse_analysis(raw: str, steps: Optional[StepTrace] = None) -> AnalysisPayload:
    """Decode the model response, degrading to a summary-only payload."""
    try:
        return decode_analysis(raw)
    except ParseError as exc:
        LOGGER.warning("analysis response unparseable, keeping raw text as summary: %s", exc)
        if steps is not None:
            steps.detail("Parse error, using raw response as summary")
        return degraded_analysis(raw)


class AnalysisStage(PipelineStage):
    name = "analysis"
    entry_status = MeetingStatus.ANALYZING
    success_status = MeetingStatus.LINKING

    def execute(self, meeting: Meeting, steps: StepTrace) -> Dict[str, int]:
        steps.step("Fetching transcripts")
        segments = self.store.list_segments(meeting.id)
        if not segments:
            raise NoTranscriptError("No transcripts found for this meeting")
        steps.detail(f"Segments: {len(segments)}")
        transcript = build_transcript_text(segments)
        steps.detail(f"Transcript chars: {len(transcript)}")
        language = segments[0].language or meeting.language_code or "en-US"

        steps.step("Calling model for analysis")
        raw = self.gateway.generate(build_analysis_prompt(transcript, language_name(language)))
        steps.detail(f"Response chars: {len(raw)}")

        steps.step("Parsing analysis")
        analysis = parse_analysis(raw, steps)
        steps.detail(f"Summary length: {len(analysis.summary)}")
        steps.detail(f"Action items: {len(analysis.action_items)}")
        steps.detail(f"Decisions: {len(analysis.decisions)}")
        steps.detail(f"Open questions: {len(analysis.open_questions)}")

        steps.step("Saving meeting note")
        self.store.upsert_note(
            MeetingNote(
                meeting_id=meeting.id,
                summary=analysis.summary or NO_SUMMARY_TEXT,
                model_version=self.config.analysis_model,
                decisions=list(analysis.decisions),
                open_questions=list(analysis.open_questions),
                raw_analysis=dict(analysis.raw),
            )
        )
        steps.detail("Note saved")

        steps.step("Saving action items")
        removed = self.store.delete_action_items(meeting.id)
        if removed:
            steps.detail(f"Replaced {removed} existing action items")
        items = [
            ActionItem(
                meeting_id=meeting.id,
                task=item.task,
                owner=item.owner,
                priority=item.priority,
                deadline=item.deadline,
                status="open",
            )
            for item in analysis.action_items
        ]
        if items:
            self.store.insert_action_items(items)
        steps.detail(f"Action items saved: {len(items)}")

        return {
            "summary_length": len(analysis.summary),
            "action_items_count": len(items),
            "decisions_count": len(analysis.decisions),
        }


__all__ = [
    "ActionItemPayload",
    "AnalysisPayload",
    "AnalysisStage",
    "build_analysis_prompt",
    "build_transcript_text",
    "decode_analysis",
    "normalize_priority",
    "parse_analysis",
    "strip_code_fences",
]
