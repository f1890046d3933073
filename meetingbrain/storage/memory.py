"""Thread-safe in-memory store used by tests and local runs."""
from __future__ import annotations

import copy
import threading
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Sequence
from uuid import uuid4

from meetingbrain.agents.meeting.errors import PersistenceError
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

from .similarity import rank_nodes


class InMemoryMeetingStore:
    """Dictionary-backed ``MeetingStore``; returned records are copies."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._meetings: Dict[str, Meeting] = {}
        self._segments: Dict[str, TranscriptSegment] = {}
        self._notes: Dict[str, MeetingNote] = {}
        self._actions: Dict[str, ActionItem] = {}
        self._nodes: Dict[str, GraphNode] = {}
        self._edges: Dict[str, GraphEdge] = {}
        self._stage_locks: Dict[str, str] = {}
        self._sequence = 0

    # ------------------------------------------------------------------
    # Meetings
    # ------------------------------------------------------------------
    def add_meeting(self, meeting: Meeting) -> Meeting:
        with self._lock:
            stored = copy.deepcopy(meeting)
            if not stored.id:
                stored.id = uuid4().hex
            self._meetings[stored.id] = stored
            return copy.deepcopy(stored)

    def get_meeting(self, meeting_id: str) -> Optional[Meeting]:
        with self._lock:
            meeting = self._meetings.get(meeting_id)
            return copy.deepcopy(meeting) if meeting else None

    def list_meetings(self, user_id: Optional[str] = None) -> List[Meeting]:
        with self._lock:
            return [
                copy.deepcopy(meeting)
                for meeting in self._meetings.values()
                if user_id is None or meeting.user_id == user_id
            ]

    def delete_meeting(self, meeting_id: str) -> None:
        with self._lock:
            self.delete_segments(meeting_id)
            self.delete_action_items(meeting_id)
            self._notes.pop(meeting_id, None)
            node_ids = self.list_node_ids_for_meeting(meeting_id)
            self.delete_edges_touching(node_ids)
            for node_id in node_ids:
                self._nodes[node_id].source_meeting_id = None
            self._stage_locks.pop(meeting_id, None)
            self._meetings.pop(meeting_id, None)

    def compare_and_set_status(
        self,
        meeting_id: str,
        expected: MeetingStatus,
        target: MeetingStatus,
        *,
        failed_from: Optional[MeetingStatus] = None,
    ) -> bool:
        with self._lock:
            meeting = self._meetings.get(meeting_id)
            if meeting is None or meeting.status != expected:
                return False
            meeting.status = target
            meeting.failed_from = failed_from
            meeting.updated_at = datetime.now(timezone.utc)
            return True

    def acquire_stage_lock(self, meeting_id: str, stage: str) -> bool:
        with self._lock:
            if meeting_id in self._stage_locks:
                return False
            self._stage_locks[meeting_id] = stage
            return True

    def release_stage_lock(self, meeting_id: str, stage: str) -> None:
        with self._lock:
            if self._stage_locks.get(meeting_id) == stage:
                del self._stage_locks[meeting_id]

    # ------------------------------------------------------------------
    # Transcript
    # ------------------------------------------------------------------
    def list_segments(self, meeting_id: str) -> List[TranscriptSegment]:
        with self._lock:
            rows = [seg for seg in self._segments.values() if seg.meeting_id == meeting_id]
            rows.sort(key=lambda seg: (seg.start_seconds, seg.position))
            return copy.deepcopy(rows)

    def insert_segments(self, segments: Sequence[TranscriptSegment]) -> List[TranscriptSegment]:
        with self._lock:
            stored = []
            for segment in segments:
                row = copy.deepcopy(segment)
                row.id = row.id or uuid4().hex
                row.position = self._next_sequence()
                self._segments[row.id] = row
                stored.append(copy.deepcopy(row))
            return stored

    def delete_segments(self, meeting_id: str) -> int:
        with self._lock:
            doomed = [key for key, seg in self._segments.items() if seg.meeting_id == meeting_id]
            for key in doomed:
                del self._segments[key]
            return len(doomed)

    # ------------------------------------------------------------------
    # Notes and action items
    # ------------------------------------------------------------------
    def get_note(self, meeting_id: str) -> Optional[MeetingNote]:
        with self._lock:
            note = self._notes.get(meeting_id)
            return copy.deepcopy(note) if note else None

    def upsert_note(self, note: MeetingNote) -> MeetingNote:
        with self._lock:
            row = copy.deepcopy(note)
            existing = self._notes.get(note.meeting_id)
            row.id = existing.id if existing else (row.id or uuid4().hex)
            row.updated_at = datetime.now(timezone.utc)
            self._notes[note.meeting_id] = row
            return copy.deepcopy(row)

    def list_action_items(self, meeting_id: str) -> List[ActionItem]:
        with self._lock:
            return [copy.deepcopy(item) for item in self._actions.values() if item.meeting_id == meeting_id]

    def insert_action_items(self, items: Sequence[ActionItem]) -> List[ActionItem]:
        with self._lock:
            stored = []
            for item in items:
                row = copy.deepcopy(item)
                row.id = row.id or uuid4().hex
                self._actions[row.id] = row
                stored.append(copy.deepcopy(row))
            return stored

    def delete_action_items(self, meeting_id: str) -> int:
        with self._lock:
            doomed = [key for key, item in self._actions.items() if item.meeting_id == meeting_id]
            for key in doomed:
                del self._actions[key]
            return len(doomed)

    # ------------------------------------------------------------------
    # Graph
    # ------------------------------------------------------------------
    def list_node_ids_for_meeting(self, meeting_id: str) -> List[str]:
        with self._lock:
            return [key for key, node in self._nodes.items() if node.source_meeting_id == meeting_id]

    def delete_edges_touching(self, node_ids: Iterable[str]) -> int:
        targets = set(node_ids)
        if not targets:
            return 0
        with self._lock:
            doomed = [
                key
                for key, edge in self._edges.items()
                if edge.from_node in targets or edge.to_node in targets
            ]
            for key in doomed:
                del self._edges[key]
            return len(doomed)

    def delete_nodes_for_meeting(self, meeting_id: str) -> int:
        with self._lock:
            doomed = self.list_node_ids_for_meeting(meeting_id)
            for key in doomed:
                del self._nodes[key]
            return len(doomed)

    def insert_nodes(self, nodes: Sequence[GraphNode]) -> List[GraphNode]:
        with self._lock:
            stored = []
            for node in nodes:
                row = copy.deepcopy(node)
                row.id = row.id or uuid4().hex
                self._nodes[row.id] = row
                stored.append(copy.deepcopy(row))
            return stored

    def insert_edges(self, edges: Sequence[GraphEdge]) -> List[GraphEdge]:
        with self._lock:
            stored = []
            for edge in edges:
                if edge.from_node not in self._nodes or edge.to_node not in self._nodes:
                    raise PersistenceError(
                        f"edge references unknown node: {edge.from_node} -> {edge.to_node}"
                    )
                row = copy.deepcopy(edge)
                row.id = row.id or uuid4().hex
                self._edges[row.id] = row
                stored.append(copy.deepcopy(row))
            return stored

    def list_nodes(
        self,
        *,
        user_id: Optional[str] = None,
        source_meeting_id: Optional[str] = None,
    ) -> List[GraphNode]:
        with self._lock:
            return [
                copy.deepcopy(node)
                for node in self._nodes.values()
                if (user_id is None or node.user_id == user_id)
                and (source_meeting_id is None or node.source_meeting_id == source_meeting_id)
            ]

    def list_edges(self, node_ids: Optional[Iterable[str]] = None) -> List[GraphEdge]:
        with self._lock:
            if node_ids is None:
                return copy.deepcopy(list(self._edges.values()))
            targets = set(node_ids)
            return [
                copy.deepcopy(edge)
                for edge in self._edges.values()
                if edge.from_node in targets or edge.to_node in targets
            ]

    def search_nodes(
        self,
        embedding: Sequence[float],
        user_id: str,
        match_count: int,
        threshold: float,
    ) -> List[NodeMatch]:
        with self._lock:
            owned = [node for node in self._nodes.values() if node.user_id == user_id]
            return rank_nodes(embedding, owned, match_count=match_count, threshold=threshold)

    def _next_sequence(self) -> int:
        self._sequence += 1
        return self._sequence
