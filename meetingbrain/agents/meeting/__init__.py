"""Meeting pipeline: transcription, analysis and knowledge-graph linking."""

from .analysis import AnalysisStage
from .config import PipelineConfig
from .errors import (
    InvalidStateError,
    NotFoundError,
    ParseError,
    PersistenceError,
    PipelineError,
    UpstreamError,
)
from .linking import LinkingStage
from .models import (
    ActionItem,
    GraphEdge,
    GraphNode,
    Meeting,
    MeetingNote,
    NodeMatch,
    NodeType,
    Relation,
    SearchHit,
    TranscriptSegment,
)
from .pipeline import PipelineOrchestrator
from .search import MeetingSearch, search_meetings
from .stages import StageResult
from .status import MeetingStatus, StatusMachine
from .transcription import TranscriptionStage

__all__ = [
    "ActionItem",
    "AnalysisStage",
    "GraphEdge",
    "GraphNode",
    "InvalidStateError",
    "LinkingStage",
    "Meeting",
    "MeetingNote",
    "MeetingSearch",
    "MeetingStatus",
    "NodeMatch",
    "NodeType",
    "NotFoundError",
    "ParseError",
    "PersistenceError",
    "PipelineConfig",
    "PipelineError",
    "PipelineOrchestrator",
    "Relation",
    "SearchHit",
    "StageResult",
    "StatusMachine",
    "TranscriptSegment",
    "TranscriptionStage",
    "UpstreamError",
    "search_meetings",
]
