"""MeetingBrain: meeting audio to transcript, analysis and knowledge graph."""

__version__ = "0.3.0"
