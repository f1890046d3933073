"""Pytest configuration helpers."""
from __future__ import annotations

import sys
import threading
from pathlib import Path
from typing import Callable, Dict, Generator, List, Optional, Sequence, Tuple

import pytest
from fastapi.testclient import TestClient

PROJECT_ROOT = Path(__file__).resolve().parent.parent
root_str = str(PROJECT_ROOT)
if root_str not in sys.path:
    sys.path.insert(0, root_str)

from meetingbrain.agents.meeting.config import PipelineConfig
from meetingbrain.agents.meeting.errors import UpstreamError
from meetingbrain.agents.meeting.gateway import AudioSource, UploadedFile
from meetingbrain.agents.meeting.models import Meeting
from meetingbrain.agents.meeting.pipeline import PipelineOrchestrator
from meetingbrain.agents.meeting.status import MeetingStatus
from meetingbrain.api import Settings, create_app
from meetingbrain.storage import InMemoryAudioStorage, InMemoryMeetingStore


class FakeGateway:
    """Scripted AI gateway.

    ``embeddings`` maps a substring to a vector; the first key contained in the
    embedded text wins, otherwise ``default_embedding`` is used (or the call
    fails when that is ``None``).
    """

    def __init__(
        self,
        *,
        transcript: str = "",
        analysis: str = "",
        embeddings: Optional[Dict[str, Sequence[float]]] = None,
        default_embedding: Optional[Sequence[float]] = (1.0, 0.0, 0.0),
    ) -> None:
        self.transcript = transcript
        self.analysis = analysis
        self.embeddings: Dict[str, Sequence[float]] = dict(embeddings or {})
        self.default_embedding = default_embedding
        self.transcribe_errors: List[Exception] = []
        self.generate_errors: List[Exception] = []
        self.fail_delete = False
        self.audio_sources: List[AudioSource] = []
        self.prompts: List[str] = []
        self.embedded: List[str] = []
        self.uploads: List[Tuple[int, str, str]] = []
        self.deleted: List[UploadedFile] = []
        self._lock = threading.Lock()

    def transcribe(self, audio: AudioSource, prompt: str) -> str:
        self.audio_sources.append(audio)
        self.prompts.append(prompt)
        if self.transcribe_errors:
            raise self.transcribe_errors.pop(0)
        return self.transcript

    def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.generate_errors:
            raise self.generate_errors.pop(0)
        return self.analysis

    def embed(self, text: str) -> List[float]:
        with self._lock:
            self.embedded.append(text)
        for key, vector in self.embeddings.items():
            if key in text:
                return list(vector)
        if self.default_embedding is None:
            raise UpstreamError(f"no embedding scripted for {text[:40]!r}")
        return list(self.default_embedding)

    def upload_file(self, data: bytes, mime_type: str, display_name: str) -> UploadedFile:
        self.uploads.append((len(data), mime_type, display_name))
        return UploadedFile(
            name="files/upload-1",
            uri="https://example.test/v1beta/files/upload-1",
            state="ACTIVE",
        )

    def delete_file(self, uploaded: UploadedFile) -> None:
        if self.fail_delete:
            raise UpstreamError("delete refused")
        self.deleted.append(uploaded)


@pytest.fixture
def store() -> InMemoryMeetingStore:
    return InMemoryMeetingStore()


@pytest.fixture
def audio_storage() -> InMemoryAudioStorage:
    return InMemoryAudioStorage()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def config() -> PipelineConfig:
    return PipelineConfig(api_key="test-key", embed_concurrency=2, invoke_attempts=3)


@pytest.fixture
def sleeps() -> List[float]:
    return []


@pytest.fixture
def orchestrator(store, audio_storage, gateway, config, sleeps) -> PipelineOrchestrator:
    return PipelineOrchestrator(store, audio_storage, gateway, config, sleep=sleeps.append)


@pytest.fixture
def make_meeting(store, audio_storage) -> Callable[..., Meeting]:
    counter = {"value": 0}

    def factory(
        *,
        status: MeetingStatus = MeetingStatus.PROCESSING,
        audio: Optional[bytes] = b"fake-audio",
        audio_path: Optional[str] = None,
        user_id: str = "user-1",
        title: str = "Weekly sync",
        language_code: str = "my-MM",
    ) -> Meeting:
        counter["value"] += 1
        meeting_id = f"meeting-{counter['value']}"
        path = audio_path
        if audio is not None:
            path = path or f"{user_id}/{meeting_id}.m4a"
            audio_storage.put(path, audio)
        return store.add_meeting(
            Meeting(
                id=meeting_id,
                user_id=user_id,
                title=title,
                language_code=language_code,
                status=status,
                audio_path=path,
            )
        )

    return factory


@pytest.fixture
def client(orchestrator) -> Generator[TestClient, None, None]:
    settings = Settings(TESTING=True, STARTUP_LOAD=False)
    app = create_app(settings=settings, orchestrator_provider=lambda: orchestrator)

    with TestClient(app) as test_client:
        test_client.app.state.orchestrator = orchestrator
        yield test_client
