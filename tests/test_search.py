from __future__ import annotations

import pytest

from meetingbrain.agents.meeting import MeetingSearch, search_meetings
from meetingbrain.agents.meeting.models import GraphNode, NodeType


def _seed_nodes(store, meeting_id: str) -> None:
    store.insert_nodes(
        [
            GraphNode(
                user_id="user-1",
                node_type=NodeType.DECISION,
                title="Launch Monday",
                content="Launch on Monday",
                embedding=[1.0, 0.0],
                source_meeting_id=meeting_id,
            ),
            GraphNode(
                user_id="user-1",
                node_type=NodeType.ACTION,
                title="Budget",
                content="Budget review",
                embedding=[0.0, 1.0],
                source_meeting_id=meeting_id,
            ),
            GraphNode(
                user_id="user-1",
                node_type=NodeType.NOTE,
                title="Orphan",
                content="Detached note",
                embedding=[0.9, 0.1],
                source_meeting_id=None,
            ),
            GraphNode(
                user_id="user-2",
                node_type=NodeType.DECISION,
                title="Someone else",
                content="Launch on Monday",
                embedding=[1.0, 0.0],
            ),
        ]
    )


def test_search_returns_enriched_hits(store, gateway, make_meeting) -> None:
    meeting = make_meeting(title="Launch planning")
    _seed_nodes(store, meeting.id)
    gateway.embeddings = {"when do we launch": [1.0, 0.0]}

    hits = MeetingSearch(store, gateway).search("  when do we launch  ", "user-1")

    assert [hit.match.title for hit in hits] == ["Launch Monday", "Orphan"]
    first = hits[0].to_dict()
    assert first["node_type"] == "decision"
    assert first["meeting_title"] == "Launch planning"
    assert first["meeting_date"] == meeting.created_at.isoformat()
    assert first["similarity"] == pytest.approx(1.0)
    assert hits[1].meeting_title is None
    assert hits[1].meeting_date is None
    assert gateway.embedded == ["when do we launch"]


def test_search_truncates_query_and_respects_limit(store, gateway, make_meeting) -> None:
    meeting = make_meeting()
    _seed_nodes(store, meeting.id)
    gateway.default_embedding = (1.0, 0.0)

    hits = search_meetings(store, gateway, "q" * 5000, "user-1", limit=1)

    assert len(hits) == 1
    assert len(gateway.embedded[0]) == 2000


@pytest.mark.parametrize("query,user_id", [("", "user-1"), ("   ", "user-1"), ("launch", "")])
def test_search_requires_query_and_user(store, gateway, query, user_id) -> None:
    with pytest.raises(ValueError):
        MeetingSearch(store, gateway).search(query, user_id)
    assert gateway.embedded == []
