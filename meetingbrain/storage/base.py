"""Storage protocols consumed by the meeting pipeline."""
from __future__ import annotations

from typing import Iterable, List, Optional, Protocol, Sequence

from meetingbrain.agents.meeting.models import (
    ActionItem,
    GraphEdge,
    GraphNode,
    Meeting,
    MeetingNote,
    NodeMatch,
    TranscriptSegment,
)
from meetingbrain.agents.meeting.status import MeetingStatus


class MeetingStore(Protocol):
    """Row store holding meetings and everything derived from them.

    Implementations give row-level durability only; the pipeline never relies
    on a transaction spanning more than one call.
    """

    def add_meeting(self, meeting: Meeting) -> Meeting:
        ...

    def get_meeting(self, meeting_id: str) -> Optional[Meeting]:
        ...

    def list_meetings(self, user_id: Optional[str] = None) -> List[Meeting]:
        ...

    def delete_meeting(self, meeting_id: str) -> None:
        ...

    def compare_and_set_status(
        self,
        meeting_id: str,
        expected: MeetingStatus,
        target: MeetingStatus,
        *,
        failed_from: Optional[MeetingStatus] = None,
    ) -> bool:
        """Set ``target`` only if the stored status is still ``expected``."""
        ...

    def acquire_stage_lock(self, meeting_id: str, stage: str) -> bool:
        """Mark ``stage`` as running on the meeting unless a stage already is."""
        ...

    def release_stage_lock(self, meeting_id: str, stage: str) -> None:
        ...

    def list_segments(self, meeting_id: str) -> List[TranscriptSegment]:
        """Segments ordered by start offset, then insertion order."""
        ...

    def insert_segments(self, segments: Sequence[TranscriptSegment]) -> List[TranscriptSegment]:
        ...

    def delete_segments(self, meeting_id: str) -> int:
        ...

    def get_note(self, meeting_id: str) -> Optional[MeetingNote]:
        ...

    def upsert_note(self, note: MeetingNote) -> MeetingNote:
        ...

    def list_action_items(self, meeting_id: str) -> List[ActionItem]:
        ...

    def insert_action_items(self, items: Sequence[ActionItem]) -> List[ActionItem]:
        ...

    def delete_action_items(self, meeting_id: str) -> int:
        ...

    def list_node_ids_for_meeting(self, meeting_id: str) -> List[str]:
        ...

    def delete_edges_touching(self, node_ids: Iterable[str]) -> int:
        ...

    def delete_nodes_for_meeting(self, meeting_id: str) -> int:
        ...

    def insert_nodes(self, nodes: Sequence[GraphNode]) -> List[GraphNode]:
        """Persist nodes and return them with their assigned identifiers."""
        ...

    def insert_edges(self, edges: Sequence[GraphEdge]) -> List[GraphEdge]:
        ...

    def list_nodes(
        self,
        *,
        user_id: Optional[str] = None,
        source_meeting_id: Optional[str] = None,
    ) -> List[GraphNode]:
        ...

    def list_edges(self, node_ids: Optional[Iterable[str]] = None) -> List[GraphEdge]:
        ...

    def search_nodes(
        self,
        embedding: Sequence[float],
        user_id: str,
        match_count: int,
        threshold: float,
    ) -> List[NodeMatch]:
        """Nearest neighbours of ``embedding`` among the user's nodes."""
        ...


class AudioStorage(Protocol):
    """Object storage holding raw recording bytes."""

    def download(self, audio_path: str) -> bytes:
        ...
