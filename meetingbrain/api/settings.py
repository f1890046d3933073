"""Configuration object for the meeting pipeline HTTP service and CLI."""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from meetingbrain.agents.meeting.config import (
    DEFAULT_ANALYSIS_MODEL,
    DEFAULT_BASE_URL,
    DEFAULT_EMBEDDING_MODEL,
    DEFAULT_TRANSCRIBE_MODEL,
)
from meetingbrain.utils import get_logger

LOGGER = get_logger("api.settings")

DEFAULT_HOME = Path("~/.meetingbrain")


def _coerce_int(value: object, name: str, default: int) -> int:
    if value is None or (isinstance(value, str) and not value.strip()):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        LOGGER.warning("Invalid integer for %s=%s; using %s", name, value, default)
        return default


def _coerce_float(value: object, name: str, default: float) -> float:
    if value is None or (isinstance(value, str) and not value.strip()):
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        LOGGER.warning("Invalid float for %s=%s; using %s", name, value, default)
        return default


@dataclass
class Settings:
    """Keyword overrides win; anything left unset is read from the environment."""

    TESTING: bool = False
    STARTUP_LOAD: bool = True
    GEMINI_API_KEY: Optional[str] = None
    GEMINI_BASE_URL: str = DEFAULT_BASE_URL
    TRANSCRIBE_MODEL: str = DEFAULT_TRANSCRIBE_MODEL
    ANALYSIS_MODEL: str = DEFAULT_ANALYSIS_MODEL
    EMBEDDING_MODEL: str = DEFAULT_EMBEDDING_MODEL
    STORE_PATH: Path = DEFAULT_HOME / "meetings.db"
    AUDIO_ROOT: Path = DEFAULT_HOME / "audio"
    MEETING_AUDIT_LOG: Optional[Path] = None
    EMBED_CONCURRENCY: int = 4
    HTTP_TIMEOUT: float = 120.0

    def __init__(
        self,
        TESTING: bool | None = None,
        STARTUP_LOAD: bool | None = None,
        GEMINI_API_KEY: Optional[str] = None,
        GEMINI_BASE_URL: Optional[str] = None,
        TRANSCRIBE_MODEL: Optional[str] = None,
        ANALYSIS_MODEL: Optional[str] = None,
        EMBEDDING_MODEL: Optional[str] = None,
        STORE_PATH: Optional[Path] = None,
        AUDIO_ROOT: Optional[Path] = None,
        MEETING_AUDIT_LOG: Optional[Path] = None,
        EMBED_CONCURRENCY: Optional[int] = None,
        HTTP_TIMEOUT: Optional[float] = None,
    ) -> None:
        if TESTING is not None:
            self.TESTING = bool(TESTING)
        else:
            self.TESTING = os.getenv("APP_TESTING", "0") == "1"

        if STARTUP_LOAD is not None:
            self.STARTUP_LOAD = bool(STARTUP_LOAD)
        else:
            self.STARTUP_LOAD = os.getenv("APP_STARTUP_LOAD", "1") != "0"

        self.GEMINI_API_KEY = GEMINI_API_KEY or os.getenv("GEMINI_API_KEY") or None
        self.GEMINI_BASE_URL = GEMINI_BASE_URL or os.getenv("GEMINI_BASE_URL") or DEFAULT_BASE_URL
        self.TRANSCRIBE_MODEL = (
            TRANSCRIBE_MODEL or os.getenv("MEETING_TRANSCRIBE_MODEL") or DEFAULT_TRANSCRIBE_MODEL
        )
        self.ANALYSIS_MODEL = ANALYSIS_MODEL or os.getenv("MEETING_ANALYSIS_MODEL") or DEFAULT_ANALYSIS_MODEL
        self.EMBEDDING_MODEL = (
            EMBEDDING_MODEL or os.getenv("MEETING_EMBEDDING_MODEL") or DEFAULT_EMBEDDING_MODEL
        )

        store_env = STORE_PATH or os.getenv("MEETING_STORE_PATH")
        self.STORE_PATH = Path(store_env).expanduser() if store_env else (DEFAULT_HOME / "meetings.db").expanduser()
        audio_env = AUDIO_ROOT or os.getenv("MEETING_AUDIO_ROOT")
        self.AUDIO_ROOT = Path(audio_env).expanduser() if audio_env else (DEFAULT_HOME / "audio").expanduser()
        audit_env = MEETING_AUDIT_LOG or os.getenv("MEETING_AUDIT_LOG")
        self.MEETING_AUDIT_LOG = Path(audit_env).expanduser() if audit_env else None

        concurrency = EMBED_CONCURRENCY if EMBED_CONCURRENCY is not None else os.getenv("MEETING_EMBED_CONCURRENCY")
        self.EMBED_CONCURRENCY = _coerce_int(concurrency, "MEETING_EMBED_CONCURRENCY", 4)
        timeout = HTTP_TIMEOUT if HTTP_TIMEOUT is not None else os.getenv("MEETING_HTTP_TIMEOUT")
        self.HTTP_TIMEOUT = _coerce_float(timeout, "MEETING_HTTP_TIMEOUT", 120.0)


__all__ = ["Settings"]
