"""Pipeline configuration and fixed algorithm constants."""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from meetingbrain.utils import get_logger

LOGGER = get_logger("meeting.config")

# Transfer strategy
INLINE_AUDIO_LIMIT_BYTES = 4 * 1024 * 1024
UPLOAD_POLL_ATTEMPTS = 30
UPLOAD_POLL_INTERVAL_SECONDS = 2.0

# Graph linking
SIMILARITY_THRESHOLD = 0.65
MAX_RELATED = 5
RESOLVES_THRESHOLD = 0.85
EMBED_INPUT_CHARS = 4000
SEARCH_QUERY_CHARS = 2000
NODE_TITLE_CHARS = 80
MEETING_CONTENT_WITH_SUMMARY_CHARS = 2000
MEETING_CONTENT_TRANSCRIPT_ONLY_CHARS = 3000

# Analysis
DEGRADED_SUMMARY_CHARS = 500

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com"
DEFAULT_TRANSCRIBE_MODEL = "gemini-3-flash-preview"
DEFAULT_ANALYSIS_MODEL = "gemini-2.5-flash"
DEFAULT_EMBEDDING_MODEL = "gemini-embedding-001"


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        LOGGER.warning("Invalid integer for %s=%s; using %s", name, raw, default)
        return default


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        LOGGER.warning("Invalid float for %s=%s; using %s", name, raw, default)
        return default


@dataclass
class PipelineConfig:
    """Everything a stage needs from its environment, injected at construction."""

    api_key: Optional[str] = None
    base_url: str = DEFAULT_BASE_URL
    transcribe_model: str = DEFAULT_TRANSCRIBE_MODEL
    analysis_model: str = DEFAULT_ANALYSIS_MODEL
    embedding_model: str = DEFAULT_EMBEDDING_MODEL
    transcribe_temperature: float = 0.0
    transcribe_max_tokens: int = 16384
    analysis_temperature: float = 0.1
    analysis_max_tokens: int = 4096
    http_timeout: float = 120.0
    embed_concurrency: int = 4
    invoke_attempts: int = 3
    invoke_backoff_seconds: float = 2.0
    audit_log: Optional[Path] = None

    def __post_init__(self) -> None:
        self.base_url = (self.base_url or DEFAULT_BASE_URL).rstrip("/")
        self.embed_concurrency = max(1, int(self.embed_concurrency))
        self.invoke_attempts = max(1, int(self.invoke_attempts))
        self.invoke_backoff_seconds = max(0.0, float(self.invoke_backoff_seconds))

    @classmethod
    def from_env(cls) -> "PipelineConfig":
        audit = os.getenv("MEETING_AUDIT_LOG")
        return cls(
            api_key=os.getenv("GEMINI_API_KEY") or None,
            base_url=os.getenv("GEMINI_BASE_URL") or DEFAULT_BASE_URL,
            transcribe_model=os.getenv("MEETING_TRANSCRIBE_MODEL") or DEFAULT_TRANSCRIBE_MODEL,
            analysis_model=os.getenv("MEETING_ANALYSIS_MODEL") or DEFAULT_ANALYSIS_MODEL,
            embedding_model=os.getenv("MEETING_EMBEDDING_MODEL") or DEFAULT_EMBEDDING_MODEL,
            http_timeout=_float_env("MEETING_HTTP_TIMEOUT", 120.0),
            embed_concurrency=_int_env("MEETING_EMBED_CONCURRENCY", 4),
            invoke_attempts=_int_env("MEETING_INVOKE_ATTEMPTS", 3),
            invoke_backoff_seconds=_float_env("MEETING_INVOKE_BACKOFF", 2.0),
            audit_log=Path(audit).expanduser() if audit else None,
        )

    @classmethod
    def from_settings(cls, settings: Any) -> "PipelineConfig":
        audit = getattr(settings, "MEETING_AUDIT_LOG", None)
        return cls(
            api_key=getattr(settings, "GEMINI_API_KEY", None),
            base_url=getattr(settings, "GEMINI_BASE_URL", None) or DEFAULT_BASE_URL,
            transcribe_model=getattr(settings, "TRANSCRIBE_MODEL", None) or DEFAULT_TRANSCRIBE_MODEL,
            analysis_model=getattr(settings, "ANALYSIS_MODEL", None) or DEFAULT_ANALYSIS_MODEL,
            embedding_model=getattr(settings, "EMBEDDING_MODEL", None) or DEFAULT_EMBEDDING_MODEL,
            http_timeout=float(getattr(settings, "HTTP_TIMEOUT", 120.0) or 120.0),
            embed_concurrency=int(getattr(settings, "EMBED_CONCURRENCY", 4) or 4),
            audit_log=Path(audit).expanduser() if audit else None,
        )
