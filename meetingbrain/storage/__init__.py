"""Persistence backends for meetings, transcripts, notes and the knowledge graph."""

from .audio import InMemoryAudioStorage, LocalAudioStorage
from .base import AudioStorage, MeetingStore
from .memory import InMemoryMeetingStore
from .similarity import cosine_similarity, rank_nodes
from .sqlite import SQLiteMeetingStore

__all__ = [
    "AudioStorage",
    "MeetingStore",
    "InMemoryAudioStorage",
    "LocalAudioStorage",
    "InMemoryMeetingStore",
    "SQLiteMeetingStore",
    "cosine_similarity",
    "rank_nodes",
]
