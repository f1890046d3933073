"""Dataclasses describing the meeting pipeline records."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from .status import MeetingStatus


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class NodeType(str, Enum):
    MEETING = "meeting"
    NOTE = "note"
    DECISION = "decision"
    ACTION = "action"


class Relation(str, Enum):
    CONTINUES = "continues"
    REFERENCES = "references"
    CONTRADICTS = "contradicts"
    RESOLVES = "resolves"


PRIORITIES = ("high", "medium", "low")
DEFAULT_PRIORITY = "medium"
ACTION_STATUSES = ("open", "done", "cancelled")


@dataclass
class Meeting:
    id: str
    user_id: str
    title: str
    language_code: str = "my-MM"
    status: MeetingStatus = MeetingStatus.RECORDING
    audio_path: Optional[str] = None
    organization_id: Optional[str] = None
    failed_from: Optional[MeetingStatus] = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)


@dataclass
class TranscriptSegment:
    meeting_id: str
    text: str
    language: str
    speaker_label: Optional[str] = None
    start_seconds: float = 0.0
    end_seconds: float = 0.0
    confidence: Optional[float] = None
    position: int = 0
    id: Optional[str] = None

    def render(self) -> str:
        return f"{self.speaker_label}: {self.text}" if self.speaker_label else self.text


@dataclass
class MeetingNote:
    meeting_id: str
    summary: str
    model_version: str
    decisions: List[str] = field(default_factory=list)
    open_questions: List[str] = field(default_factory=list)
    raw_analysis: Dict[str, Any] = field(default_factory=dict)
    embedding: Optional[List[float]] = None
    id: Optional[str] = None
    updated_at: datetime = field(default_factory=_utcnow)


@dataclass
class ActionItem:
    meeting_id: str
    task: str
    owner: Optional[str] = None
    priority: str = DEFAULT_PRIORITY
    deadline: Optional[str] = None
    status: str = "open"
    id: Optional[str] = None


@dataclass
class GraphNode:
    user_id: str
    node_type: NodeType
    title: str
    content: str
    embedding: Optional[List[float]] = None
    source_meeting_id: Optional[str] = None
    id: Optional[str] = None
    created_at: datetime = field(default_factory=_utcnow)


@dataclass
class GraphEdge:
    from_node: str
    to_node: str
    relation: Relation
    strength: float
    id: Optional[str] = None

    def __post_init__(self) -> None:
        if not 0.0 <= self.strength <= 1.0:
            raise ValueError(f"edge strength must be within [0, 1], got {self.strength}")


@dataclass
class NodeMatch:
    """One nearest-neighbour hit returned by ``MeetingStore.search_nodes``."""

    id: str
    user_id: str
    node_type: NodeType
    title: str
    content: str
    source_meeting_id: Optional[str]
    similarity: float


@dataclass
class SearchHit:
    match: NodeMatch
    meeting_title: Optional[str] = None
    meeting_date: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.match.id,
            "node_type": self.match.node_type.value,
            "title": self.match.title,
            "content": self.match.content,
            "source_meeting_id": self.match.source_meeting_id,
            "similarity": self.match.similarity,
            "meeting_title": self.meeting_title,
            "meeting_date": self.meeting_date.isoformat() if self.meeting_date else None,
        }
