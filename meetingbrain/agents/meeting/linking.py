"""Linking stage: turn an analysed meeting into knowledge-graph nodes and edges.

Every run fully replaces the meeting's nodes (and any edge touching them),
embeds the new nodes, and links each embedded node to its nearest neighbours
among the same user's nodes. Linking is best-effort: the meeting ends ``done``
even when this stage fails.
"""
from __future__ import annotations

import math
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Dict, FrozenSet, List, Optional, Sequence, Set

from meetingbrain.utils import get_logger

from .config import (
    EMBED_INPUT_CHARS,
    MAX_RELATED,
    MEETING_CONTENT_TRANSCRIPT_ONLY_CHARS,
    MEETING_CONTENT_WITH_SUMMARY_CHARS,
    NODE_TITLE_CHARS,
    RESOLVES_THRESHOLD,
    SIMILARITY_THRESHOLD,
)
from .models import (
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
from .stages import PipelineStage, StepTrace, run_noncritical
from .status import MeetingStatus

LOGGER = get_logger("meeting.linking")

# Extra neighbours requested per node so self-matches and duplicates still leave room.
SEARCH_HEADROOM = 5

NeighbourSearch = Callable[[GraphNode], List[NodeMatch]]


def truncate_title(text: str, limit: int = NODE_TITLE_CHARS) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


def build_meeting_content(summary: Optional[str], segments: Sequence[TranscriptSegment]) -> str:
    full_text = " ".join(segment.text for segment in segments)
    if summary:
        return f"{summary}\n\n{full_text[:MEETING_CONTENT_WITH_SUMMARY_CHARS]}"
    return full_text[:MEETING_CONTENT_TRANSCRIPT_ONLY_CHARS]


def action_content(item: ActionItem) -> str:
    return f"{item.task} (owner: {item.owner or 'unassigned'}, priority: {item.priority})"


def build_candidate_nodes(
    meeting: Meeting,
    note: Optional[MeetingNote],
    actions: Sequence[ActionItem],
    segments: Sequence[TranscriptSegment],
) -> List[GraphNode]:
    """Meeting node first, then summary, decisions and actions, in that order."""
    summary = note.summary if note and note.summary else None

    def node(node_type: NodeType, title: str, content: str) -> GraphNode:
        return GraphNode(
            user_id=meeting.user_id,
            node_type=node_type,
            title=title,
            content=content,
            source_meeting_id=meeting.id,
        )

    nodes = [node(NodeType.MEETING, meeting.title, build_meeting_content(summary, segments))]
    if summary:
        nodes.append(node(NodeType.NOTE, f"Summary: {meeting.title}", summary))
    for decision in (note.decisions if note else []):
        nodes.append(node(NodeType.DECISION, truncate_title(decision), decision))
    for item in actions:
        nodes.append(node(NodeType.ACTION, truncate_title(item.task), action_content(item)))
    return nodes


def derive_relation(source_type: NodeType, target_type: NodeType, similarity: float) -> Relation:
    if source_type is NodeType.MEETING and target_type is NodeType.MEETING:
        return Relation.CONTINUES
    if source_type is NodeType.DECISION and target_type is NodeType.DECISION:
        return Relation.RESOLVES if similarity > RESOLVES_THRESHOLD else Relation.REFERENCES
    return Relation.REFERENCES


def round_strength(similarity: float) -> float:
    """Two-decimal half-up rounding, clamped into the edge strength range."""
    rounded = math.floor(float(similarity) * 100 + 0.5) / 100
    return min(1.0, max(0.0, rounded))


def build_edges(
    nodes: Sequence[GraphNode],
    search: NeighbourSearch,
    *,
    max_edges: int,
) -> List[GraphEdge]:
    """Link each embedded node to its neighbours.

    An unordered pair is linked at most once per run, a node never links to
    itself, and no edge is added once ``max_edges`` is reached.
    """
    edges: List[GraphEdge] = []
    linked: Set[FrozenSet[str]] = set()
    for node in nodes:
        if node.embedding is None or node.id is None:
            continue
        for match in search(node):
            if len(edges) >= max_edges:
                return edges
            if match.id == node.id:
                continue
            pair = frozenset((node.id, match.id))
            if pair in linked:
                continue
            linked.add(pair)
            edges.append(
                GraphEdge(
                    from_node=node.id,
                    to_node=match.id,
                    relation=derive_relation(node.node_type, match.node_type, match.similarity),
                    strength=round_strength(match.similarity),
                )
            )
    return edges


class LinkingStage(PipelineStage):
    name = "linking"
    entry_status = MeetingStatus.LINKING
    success_status = MeetingStatus.DONE
    reentry_statuses = frozenset({MeetingStatus.DONE})
    failure_http_status = 500

    def execute(self, meeting: Meeting, steps: StepTrace) -> Dict[str, int]:
        steps.step("Gathering note, action items and transcript")
        note = self.store.get_note(meeting.id)
        actions = self.store.list_action_items(meeting.id)
        segments = self.store.list_segments(meeting.id)
        steps.detail(
            f"Note: {'yes' if note else 'no'}, Actions: {len(actions)}, Segments: {len(segments)}"
        )

        steps.step("Removing old nodes/edges for this meeting")
        old_ids = self.store.list_node_ids_for_meeting(meeting.id)
        if old_ids:
            removed_edges = self.store.delete_edges_touching(old_ids)
            removed_nodes = self.store.delete_nodes_for_meeting(meeting.id)
            steps.detail(f"Removed {removed_nodes} old nodes and {removed_edges} edges")

        steps.step("Creating nodes + embeddings")
        candidates = build_candidate_nodes(meeting, note, actions, segments)
        embedded = self.embed_nodes(candidates)
        steps.detail(f"Total nodes: {len(candidates)}, embedded: {embedded}")

        steps.step("Saving nodes")
        inserted = self.store.insert_nodes(candidates)
        steps.detail(f"Saved {len(inserted)} nodes")

        steps.step("Finding related nodes")

        def neighbours(node: GraphNode) -> List[NodeMatch]:
            return self.store.search_nodes(
                node.embedding or [],
                meeting.user_id,
                MAX_RELATED + SEARCH_HEADROOM,
                SIMILARITY_THRESHOLD,
            )

        edges = build_edges(inserted, neighbours, max_edges=MAX_RELATED * len(candidates))
        steps.detail(f"Found {len(edges)} edges")

        if edges:
            steps.step("Saving edges")
            self.store.insert_edges(edges)
            steps.detail(f"Saved {len(edges)} edges")
        else:
            steps.step("No edges to save")

        return {"nodes_count": len(inserted), "edges_count": len(edges)}

    def embed_nodes(self, nodes: Sequence[GraphNode]) -> int:
        """Embed node contents concurrently; failed nodes keep a null embedding."""
        if not nodes:
            return 0
        workers = max(1, min(self.config.embed_concurrency, len(nodes)))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            future_map = {
                executor.submit(self._embed_one, node.content): idx
                for idx, node in enumerate(nodes)
            }
            for future in as_completed(future_map):
                nodes[future_map[future]].embedding = future.result()
        return sum(1 for node in nodes if node.embedding is not None)

    def _embed_one(self, content: str) -> Optional[List[float]]:
        vector = run_noncritical(
            "embed node",
            lambda: self.gateway.embed(content[:EMBED_INPUT_CHARS]),
        )
        return list(vector) if vector else None

    def on_failure(self, meeting_id: str, steps: StepTrace) -> Optional[MeetingStatus]:
        steps.detail("Setting status to done (linking is best-effort)")
        return run_noncritical(
            "mark meeting done after linking failure",
            lambda: self.status.advance(meeting_id, self.entry_status, MeetingStatus.DONE),
            steps,
        )


__all__ = [
    "LinkingStage",
    "action_content",
    "build_candidate_nodes",
    "build_edges",
    "build_meeting_content",
    "derive_relation",
    "round_strength",
    "truncate_title",
]
