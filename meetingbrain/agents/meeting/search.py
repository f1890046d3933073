"""Semantic search over a user's knowledge-graph nodes."""
from __future__ import annotations

from typing import TYPE_CHECKING, Dict, List, Optional

from meetingbrain.utils import get_logger

from .config import SEARCH_QUERY_CHARS, SIMILARITY_THRESHOLD
from .models import Meeting, SearchHit

if TYPE_CHECKING:  # pragma: no cover - typing only
    from meetingbrain.storage.base import MeetingStore

    from .gateway import AIGateway

LOGGER = get_logger("meeting.search")

DEFAULT_LIMIT = 10


class MeetingSearch:
    """Embeds a free-text query and returns the closest nodes.

    Uses the same threshold as graph linking; each hit carries its source
    meeting's title and creation time when that meeting still exists.
    """

    def __init__(self, store: "MeetingStore", gateway: "AIGateway") -> None:
        self.store = store
        self.gateway = gateway

    def search(self, query: str, user_id: str, limit: int = DEFAULT_LIMIT) -> List[SearchHit]:
        text = (query or "").strip()
        if not text or not user_id:
            raise ValueError("query and user_id required")
        limit = int(limit) if limit else DEFAULT_LIMIT

        embedding = self.gateway.embed(text[:SEARCH_QUERY_CHARS])
        matches = self.store.search_nodes(embedding, user_id, limit, SIMILARITY_THRESHOLD)
        LOGGER.info("search user=%s limit=%d hits=%d", user_id, limit, len(matches))

        meetings: Dict[str, Optional[Meeting]] = {}
        hits: List[SearchHit] = []
        for match in matches:
            meeting: Optional[Meeting] = None
            if match.source_meeting_id:
                if match.source_meeting_id not in meetings:
                    meetings[match.source_meeting_id] = self.store.get_meeting(match.source_meeting_id)
                meeting = meetings[match.source_meeting_id]
            hits.append(
                SearchHit(
                    match=match,
                    meeting_title=meeting.title if meeting else None,
                    meeting_date=meeting.created_at if meeting else None,
                )
            )
        return hits


def search_meetings(
    store: "MeetingStore",
    gateway: "AIGateway",
    query: str,
    user_id: str,
    limit: int = DEFAULT_LIMIT,
) -> List[SearchHit]:
    return MeetingSearch(store, gateway).search(query, user_id, limit)


__all__ = ["DEFAULT_LIMIT", "MeetingSearch", "search_meetings"]
