"""Audit log helpers for meeting pipeline stage runs."""
from __future__ import annotations

import json
import os
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from meetingbrain.utils import get_logger

if TYPE_CHECKING:  # pragma: no cover - typing only
    from .config import PipelineConfig

LOGGER = get_logger("meeting.audit")


@dataclass
class AuditConfig:
    enabled: bool
    log_path: Optional[Path] = None

    @classmethod
    def from_env(cls) -> "AuditConfig":
        path = os.getenv("MEETING_AUDIT_LOG")
        return cls.for_path(Path(path).expanduser() if path else None)

    @classmethod
    def for_path(cls, log_path: Optional[Path]) -> "AuditConfig":
        if log_path is None:
            return cls(enabled=False)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        return cls(enabled=True, log_path=log_path)


class MeetingAuditLogger:
    """JSONL audit logger recording one line per stage run."""

    def __init__(self, config: AuditConfig) -> None:
        self._config = config
        self._lock = threading.Lock()

    @classmethod
    def from_env(cls) -> "MeetingAuditLogger":
        return cls(AuditConfig.from_env())

    @classmethod
    def from_config(cls, config: "PipelineConfig") -> "MeetingAuditLogger":
        return cls(AuditConfig.for_path(config.audit_log))

    def is_enabled(self) -> bool:
        return self._config.enabled and self._config.log_path is not None

    def record(self, payload: Dict[str, Any]) -> None:
        if not self.is_enabled():
            return
        data = dict(payload)
        data.setdefault("schema_version", 1)
        data.setdefault("event_type", "meeting_pipeline.stage")
        data.setdefault("recorded_at", datetime.now(timezone.utc).isoformat())
        try:
            with self._lock, self._config.log_path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(data, ensure_ascii=False) + "\n")
        except Exception as exc:  # pragma: no cover - logged only
            LOGGER.warning("failed to write audit log: %s", exc)

    def read(self) -> List[Dict[str, Any]]:
        if not self.is_enabled() or not self._config.log_path.exists():
            return []
        entries: List[Dict[str, Any]] = []
        for line in self._config.log_path.read_text(encoding="utf-8").splitlines():
            try:
                entries.append(json.loads(line))
            except json.JSONDecodeError:
                continue
        return entries


__all__ = ["AuditConfig", "MeetingAuditLogger"]
