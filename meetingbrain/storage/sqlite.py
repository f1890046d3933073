"""Persistent ``MeetingStore`` backed by SQLite."""
from __future__ import annotations

import json
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Iterator, List, Optional, Sequence
from uuid import uuid4

from meetingbrain.agents.meeting.errors import PersistenceError
from meetingbrain.agents.meeting.models import (
    ActionItem,
    GraphEdge,
    GraphNode,
    Meeting,
    MeetingNote,
    NodeMatch,
    NodeType,
    Relation,
    TranscriptSegment,
)
from meetingbrain.agents.meeting.status import MeetingStatus
from meetingbrain.utils import get_logger

from .similarity import rank_nodes

LOGGER = get_logger("storage.sqlite")

_SCHEMA = """
CREATE TABLE IF NOT EXISTS meetings (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    organization_id TEXT,
    title TEXT NOT NULL,
    language_code TEXT NOT NULL,
    status TEXT NOT NULL,
    audio_path TEXT,
    failed_from TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS stage_locks (
    meeting_id TEXT PRIMARY KEY,
    stage TEXT NOT NULL,
    acquired_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS transcripts (
    id TEXT PRIMARY KEY,
    meeting_id TEXT NOT NULL,
    speaker_label TEXT,
    text TEXT NOT NULL,
    start_seconds REAL NOT NULL DEFAULT 0,
    end_seconds REAL NOT NULL DEFAULT 0,
    confidence REAL,
    language TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS meeting_notes (
    meeting_id TEXT PRIMARY KEY,
    id TEXT NOT NULL,
    summary TEXT NOT NULL,
    decisions TEXT NOT NULL DEFAULT '[]',
    open_questions TEXT NOT NULL DEFAULT '[]',
    raw_analysis TEXT,
    embedding TEXT,
    model_version TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS action_items (
    id TEXT PRIMARY KEY,
    meeting_id TEXT NOT NULL,
    task TEXT NOT NULL,
    owner TEXT,
    priority TEXT NOT NULL DEFAULT 'medium',
    deadline TEXT,
    status TEXT NOT NULL DEFAULT 'open'
);
CREATE TABLE IF NOT EXISTS nodes (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    node_type TEXT NOT NULL,
    title TEXT NOT NULL,
    content TEXT,
    embedding TEXT,
    source_meeting_id TEXT,
    created_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS edges (
    id TEXT PRIMARY KEY,
    from_node TEXT NOT NULL REFERENCES nodes(id) ON DELETE CASCADE,
    to_node TEXT NOT NULL REFERENCES nodes(id) ON DELETE CASCADE,
    relation TEXT NOT NULL,
    strength REAL NOT NULL CHECK (strength >= 0.0 AND strength <= 1.0)
);
CREATE INDEX IF NOT EXISTS idx_transcripts_meeting_id ON transcripts(meeting_id);
CREATE INDEX IF NOT EXISTS idx_action_items_meeting_id ON action_items(meeting_id);
CREATE INDEX IF NOT EXISTS idx_nodes_user_id ON nodes(user_id);
CREATE INDEX IF NOT EXISTS idx_nodes_source_meeting ON nodes(source_meeting_id);
CREATE INDEX IF NOT EXISTS idx_edges_from ON edges(from_node);
CREATE INDEX IF NOT EXISTS idx_edges_to ON edges(to_node);
"""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _dumps(value: Any) -> Optional[str]:
    return None if value is None else json.dumps(value, ensure_ascii=False)


def _loads(raw: Optional[str], default: Any = None) -> Any:
    if raw is None:
        return default
    return json.loads(raw)


def _placeholders(count: int) -> str:
    return ",".join("?" for _ in range(count))


class SQLiteMeetingStore:
    """Single-file store; vectors are kept as JSON and ranked with numpy."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._init_db()

    # ------------------------------------------------------------------
    # Connection helpers
    # ------------------------------------------------------------------
    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            conn = sqlite3.connect(self.db_path)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys = ON")
            try:
                yield conn
                conn.commit()
            except sqlite3.Error as exc:
                conn.rollback()
                raise PersistenceError(f"sqlite store error: {exc}") from exc
            finally:
                conn.close()

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.executescript(_SCHEMA)
        LOGGER.debug("sqlite meeting store ready at %s", self.db_path)

    # ------------------------------------------------------------------
    # Meetings
    # ------------------------------------------------------------------
    def add_meeting(self, meeting: Meeting) -> Meeting:
        meeting_id = meeting.id or uuid4().hex
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO meetings(id, user_id, organization_id, title, language_code,
                                     status, audio_path, failed_from, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    meeting_id,
                    meeting.user_id,
                    meeting.organization_id,
                    meeting.title,
                    meeting.language_code,
                    meeting.status.value,
                    meeting.audio_path,
                    meeting.failed_from.value if meeting.failed_from else None,
                    meeting.created_at.isoformat(),
                    meeting.updated_at.isoformat(),
                ),
            )
        return self.get_meeting(meeting_id)  # type: ignore[return-value]

    def get_meeting(self, meeting_id: str) -> Optional[Meeting]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM meetings WHERE id=?", (meeting_id,)).fetchone()
        return self._meeting_from_row(row) if row else None

    def list_meetings(self, user_id: Optional[str] = None) -> List[Meeting]:
        with self._connect() as conn:
            if user_id is None:
                rows = conn.execute("SELECT * FROM meetings ORDER BY created_at").fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM meetings WHERE user_id=? ORDER BY created_at", (user_id,)
                ).fetchall()
        return [self._meeting_from_row(row) for row in rows]

    def delete_meeting(self, meeting_id: str) -> None:
        node_ids = self.list_node_ids_for_meeting(meeting_id)
        self.delete_edges_touching(node_ids)
        with self._connect() as conn:
            conn.execute("DELETE FROM transcripts WHERE meeting_id=?", (meeting_id,))
            conn.execute("DELETE FROM action_items WHERE meeting_id=?", (meeting_id,))
            conn.execute("DELETE FROM meeting_notes WHERE meeting_id=?", (meeting_id,))
            conn.execute(
                "UPDATE nodes SET source_meeting_id=NULL WHERE source_meeting_id=?", (meeting_id,)
            )
            conn.execute("DELETE FROM stage_locks WHERE meeting_id=?", (meeting_id,))
            conn.execute("DELETE FROM meetings WHERE id=?", (meeting_id,))

    def compare_and_set_status(
        self,
        meeting_id: str,
        expected: MeetingStatus,
        target: MeetingStatus,
        *,
        failed_from: Optional[MeetingStatus] = None,
    ) -> bool:
        with self._connect() as conn:
            cur = conn.execute(
                "UPDATE meetings SET status=?, failed_from=?, updated_at=? WHERE id=? AND status=?",
                (
                    target.value,
                    failed_from.value if failed_from else None,
                    _now(),
                    meeting_id,
                    expected.value,
                ),
            )
            return cur.rowcount == 1

    def acquire_stage_lock(self, meeting_id: str, stage: str) -> bool:
        with self._connect() as conn:
            cur = conn.execute(
                "INSERT OR IGNORE INTO stage_locks(meeting_id, stage, acquired_at) VALUES (?, ?, ?)",
                (meeting_id, stage, _now()),
            )
            return cur.rowcount == 1

    def release_stage_lock(self, meeting_id: str, stage: str) -> None:
        with self._connect() as conn:
            conn.execute(
                "DELETE FROM stage_locks WHERE meeting_id=? AND stage=?", (meeting_id, stage)
            )

    # ------------------------------------------------------------------
    # Transcript
    # ------------------------------------------------------------------
    def list_segments(self, meeting_id: str) -> List[TranscriptSegment]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT rowid AS position, * FROM transcripts WHERE meeting_id=? "
                "ORDER BY start_seconds, rowid",
                (meeting_id,),
            ).fetchall()
        return [
            TranscriptSegment(
                id=row["id"],
                meeting_id=row["meeting_id"],
                speaker_label=row["speaker_label"],
                text=row["text"],
                start_seconds=row["start_seconds"],
                end_seconds=row["end_seconds"],
                confidence=row["confidence"],
                language=row["language"],
                position=row["position"],
            )
            for row in rows
        ]

    def insert_segments(self, segments: Sequence[TranscriptSegment]) -> List[TranscriptSegment]:
        rows = [
            (
                segment.id or uuid4().hex,
                segment.meeting_id,
                segment.speaker_label,
                segment.text,
                segment.start_seconds,
                segment.end_seconds,
                segment.confidence,
                segment.language,
            )
            for segment in segments
        ]
        with self._connect() as conn:
            conn.executemany(
                """
                INSERT INTO transcripts(id, meeting_id, speaker_label, text, start_seconds,
                                        end_seconds, confidence, language)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                rows,
            )
        inserted_ids = {row[0] for row in rows}
        meeting_ids = {segment.meeting_id for segment in segments}
        stored: List[TranscriptSegment] = []
        for meeting_id in meeting_ids:
            stored.extend(seg for seg in self.list_segments(meeting_id) if seg.id in inserted_ids)
        return stored

    def delete_segments(self, meeting_id: str) -> int:
        with self._connect() as conn:
            return conn.execute("DELETE FROM transcripts WHERE meeting_id=?", (meeting_id,)).rowcount

    # ------------------------------------------------------------------
    # Notes and action items
    # ------------------------------------------------------------------
    def get_note(self, meeting_id: str) -> Optional[MeetingNote]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM meeting_notes WHERE meeting_id=?", (meeting_id,)
            ).fetchone()
        if row is None:
            return None
        return MeetingNote(
            id=row["id"],
            meeting_id=row["meeting_id"],
            summary=row["summary"],
            decisions=_loads(row["decisions"], []),
            open_questions=_loads(row["open_questions"], []),
            raw_analysis=_loads(row["raw_analysis"], {}),
            embedding=_loads(row["embedding"]),
            model_version=row["model_version"],
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    def upsert_note(self, note: MeetingNote) -> MeetingNote:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO meeting_notes(meeting_id, id, summary, decisions, open_questions,
                                          raw_analysis, embedding, model_version, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(meeting_id)
                DO UPDATE SET summary=excluded.summary,
                              decisions=excluded.decisions,
                              open_questions=excluded.open_questions,
                              raw_analysis=excluded.raw_analysis,
                              embedding=excluded.embedding,
                              model_version=excluded.model_version,
                              updated_at=excluded.updated_at
                """,
                (
                    note.meeting_id,
                    note.id or uuid4().hex,
                    note.summary,
                    _dumps(list(note.decisions)),
                    _dumps(list(note.open_questions)),
                    _dumps(note.raw_analysis),
                    _dumps(note.embedding),
                    note.model_version,
                    _now(),
                ),
            )
        return self.get_note(note.meeting_id)  # type: ignore[return-value]

    def list_action_items(self, meeting_id: str) -> List[ActionItem]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM action_items WHERE meeting_id=? ORDER BY rowid", (meeting_id,)
            ).fetchall()
        return [
            ActionItem(
                id=row["id"],
                meeting_id=row["meeting_id"],
                task=row["task"],
                owner=row["owner"],
                priority=row["priority"],
                deadline=row["deadline"],
                status=row["status"],
            )
            for row in rows
        ]

    def insert_action_items(self, items: Sequence[ActionItem]) -> List[ActionItem]:
        stored = [
            ActionItem(
                id=item.id or uuid4().hex,
                meeting_id=item.meeting_id,
                task=item.task,
                owner=item.owner,
                priority=item.priority,
                deadline=item.deadline,
                status=item.status,
            )
            for item in items
        ]
        with self._connect() as conn:
            conn.executemany(
                """
                INSERT INTO action_items(id, meeting_id, task, owner, priority, deadline, status)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (item.id, item.meeting_id, item.task, item.owner, item.priority, item.deadline, item.status)
                    for item in stored
                ],
            )
        return stored

    def delete_action_items(self, meeting_id: str) -> int:
        with self._connect() as conn:
            return conn.execute("DELETE FROM action_items WHERE meeting_id=?", (meeting_id,)).rowcount

    # ------------------------------------------------------------------
    # Graph
    # ------------------------------------------------------------------
    def list_node_ids_for_meeting(self, meeting_id: str) -> List[str]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT id FROM nodes WHERE source_meeting_id=? ORDER BY rowid", (meeting_id,)
            ).fetchall()
        return [row["id"] for row in rows]

    def delete_edges_touching(self, node_ids: Iterable[str]) -> int:
        ids = list(node_ids)
        if not ids:
            return 0
        marks = _placeholders(len(ids))
        with self._connect() as conn:
            removed = conn.execute(f"DELETE FROM edges WHERE from_node IN ({marks})", ids).rowcount
            removed += conn.execute(f"DELETE FROM edges WHERE to_node IN ({marks})", ids).rowcount
        return removed

    def delete_nodes_for_meeting(self, meeting_id: str) -> int:
        with self._connect() as conn:
            return conn.execute("DELETE FROM nodes WHERE source_meeting_id=?", (meeting_id,)).rowcount

    def insert_nodes(self, nodes: Sequence[GraphNode]) -> List[GraphNode]:
        stored = [
            GraphNode(
                id=node.id or uuid4().hex,
                user_id=node.user_id,
                node_type=node.node_type,
                title=node.title,
                content=node.content,
                embedding=list(node.embedding) if node.embedding is not None else None,
                source_meeting_id=node.source_meeting_id,
                created_at=node.created_at,
            )
            for node in nodes
        ]
        with self._connect() as conn:
            conn.executemany(
                """
                INSERT INTO nodes(id, user_id, node_type, title, content, embedding,
                                  source_meeting_id, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        node.id,
                        node.user_id,
                        node.node_type.value,
                        node.title,
                        node.content,
                        _dumps(node.embedding),
                        node.source_meeting_id,
                        node.created_at.isoformat(),
                    )
                    for node in stored
                ],
            )
        return stored

    def insert_edges(self, edges: Sequence[GraphEdge]) -> List[GraphEdge]:
        stored = [
            GraphEdge(
                id=edge.id or uuid4().hex,
                from_node=edge.from_node,
                to_node=edge.to_node,
                relation=edge.relation,
                strength=edge.strength,
            )
            for edge in edges
        ]
        with self._connect() as conn:
            conn.executemany(
                "INSERT INTO edges(id, from_node, to_node, relation, strength) VALUES (?, ?, ?, ?, ?)",
                [
                    (edge.id, edge.from_node, edge.to_node, edge.relation.value, edge.strength)
                    for edge in stored
                ],
            )
        return stored

    def list_nodes(
        self,
        *,
        user_id: Optional[str] = None,
        source_meeting_id: Optional[str] = None,
    ) -> List[GraphNode]:
        clauses: List[str] = []
        params: List[Any] = []
        if user_id is not None:
            clauses.append("user_id=?")
            params.append(user_id)
        if source_meeting_id is not None:
            clauses.append("source_meeting_id=?")
            params.append(source_meeting_id)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._connect() as conn:
            rows = conn.execute(f"SELECT * FROM nodes{where} ORDER BY rowid", params).fetchall()
        return [self._node_from_row(row) for row in rows]

    def list_edges(self, node_ids: Optional[Iterable[str]] = None) -> List[GraphEdge]:
        with self._connect() as conn:
            if node_ids is None:
                rows = conn.execute("SELECT * FROM edges ORDER BY rowid").fetchall()
            else:
                ids = list(node_ids)
                if not ids:
                    return []
                marks = _placeholders(len(ids))
                rows = conn.execute(
                    f"SELECT * FROM edges WHERE from_node IN ({marks}) OR to_node IN ({marks}) "
                    "ORDER BY rowid",
                    ids + ids,
                ).fetchall()
        return [
            GraphEdge(
                id=row["id"],
                from_node=row["from_node"],
                to_node=row["to_node"],
                relation=Relation(row["relation"]),
                strength=row["strength"],
            )
            for row in rows
        ]

    def search_nodes(
        self,
        embedding: Sequence[float],
        user_id: str,
        match_count: int,
        threshold: float,
    ) -> List[NodeMatch]:
        nodes = [node for node in self.list_nodes(user_id=user_id) if node.embedding is not None]
        return rank_nodes(embedding, nodes, match_count=match_count, threshold=threshold)

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------
    @staticmethod
    def _meeting_from_row(row: sqlite3.Row) -> Meeting:
        return Meeting(
            id=row["id"],
            user_id=row["user_id"],
            organization_id=row["organization_id"],
            title=row["title"],
            language_code=row["language_code"],
            status=MeetingStatus(row["status"]),
            audio_path=row["audio_path"],
            failed_from=MeetingStatus(row["failed_from"]) if row["failed_from"] else None,
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    @staticmethod
    def _node_from_row(row: sqlite3.Row) -> GraphNode:
        return GraphNode(
            id=row["id"],
            user_id=row["user_id"],
            node_type=NodeType(row["node_type"]),
            title=row["title"],
            content=row["content"] or "",
            embedding=_loads(row["embedding"]),
            source_meeting_id=row["source_meeting_id"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )


__all__ = ["SQLiteMeetingStore"]
