"""Audio object storage implementations."""
from __future__ import annotations

import shutil
import threading
from pathlib import Path
from typing import Dict
from uuid import uuid4

from meetingbrain.agents.meeting.errors import NotFoundError, PersistenceError


class LocalAudioStorage:
    """Stores recordings below a root directory; paths are root-relative."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root).expanduser()
        self.root.mkdir(parents=True, exist_ok=True)

    def _resolve(self, audio_path: str) -> Path:
        candidate = (self.root / audio_path).resolve()
        if self.root.resolve() not in candidate.parents:
            raise NotFoundError(f"audio path escapes storage root: {audio_path}")
        return candidate

    def download(self, audio_path: str) -> bytes:
        path = self._resolve(audio_path)
        if not path.is_file():
            raise NotFoundError(f"audio not found: {audio_path}")
        try:
            return path.read_bytes()
        except OSError as exc:
            raise PersistenceError(f"failed to read audio {audio_path}: {exc}") from exc

    def import_file(self, source: Path, *, owner: str) -> str:
        source = Path(source).expanduser()
        if not source.is_file():
            raise NotFoundError(f"audio file not found: {source}")
        relative = f"{owner}/{uuid4().hex}{source.suffix.lower()}"
        target = self._resolve(relative)
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(source, target)
        return relative


class InMemoryAudioStorage:
    """Dictionary of path to bytes."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._blobs: Dict[str, bytes] = {}

    def put(self, audio_path: str, data: bytes) -> str:
        with self._lock:
            self._blobs[audio_path] = bytes(data)
        return audio_path

    def download(self, audio_path: str) -> bytes:
        with self._lock:
            data = self._blobs.get(audio_path)
        if data is None:
            raise NotFoundError(f"audio not found: {audio_path}")
        return data
