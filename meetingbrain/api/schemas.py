"""Pydantic models for the pipeline HTTP routes."""
from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field


class StageRequest(BaseModel):
    meeting_id: Optional[str] = None


class SearchRequest(BaseModel):
    query: Optional[str] = None
    user_id: Optional[str] = None
    limit: int = 10


class SearchResult(BaseModel):
    id: str
    node_type: str
    title: str
    content: str
    source_meeting_id: Optional[str] = None
    similarity: float
    meeting_title: Optional[str] = None
    meeting_date: Optional[str] = None


class SearchResponse(BaseModel):
    results: List[SearchResult] = Field(default_factory=list)
    count: int = 0


class ErrorResponse(BaseModel):
    error: str
    steps: List[str] = Field(default_factory=list)


class MeetingView(BaseModel):
    id: str
    user_id: str
    title: str
    language_code: str
    status: str
    failed_from: Optional[str] = None
    segments_count: int
    has_note: bool
    action_items_count: int
    nodes_count: int
    edges_count: int


class RunResponse(BaseModel):
    meeting_id: str
    status: str
    stages: List[dict] = Field(default_factory=list)
