"""AI gateway abstraction: transcription, generation and embedding."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Protocol

from ..config import PipelineConfig

LOGGER = logging.getLogger(__name__)


@dataclass
class AudioSource:
    """Audio handed to the transcription call, either inline or pre-uploaded."""

    mime_type: str
    data: Optional[bytes] = None
    file_uri: Optional[str] = None

    @property
    def is_inline(self) -> bool:
        return self.file_uri is None


@dataclass
class UploadedFile:
    """Remote file produced by the resumable upload protocol."""

    name: str
    uri: str
    state: str = "PROCESSING"

    @property
    def is_active(self) -> bool:
        return self.state.upper() == "ACTIVE"


class AIGateway(Protocol):
    """Black-box model provider. Callers own retries and backoff."""

    def transcribe(self, audio: AudioSource, prompt: str) -> str:
        ...

    def generate(self, prompt: str) -> str:
        ...

    def embed(self, text: str) -> List[float]:
        ...

    def upload_file(self, data: bytes, mime_type: str, display_name: str) -> UploadedFile:
        ...

    def delete_file(self, uploaded: UploadedFile) -> None:
        ...


def create_gateway(name: Optional[str], config: PipelineConfig, **kwargs) -> AIGateway:
    """Instantiate the configured gateway.

    Parameters
    ----------
    name:
        Identifier for the provider. Supported values: ``"gemini"`` (default).
    config:
        Injected pipeline configuration (API key, models, timeouts).
    kwargs:
        Forwarded to the gateway constructor (``transport``, ``sleep``).
    """

    normalized = (name or "gemini").lower().strip()
    if normalized in {"gemini", "google"}:
        from .gemini import GeminiGateway

        return GeminiGateway(config, **kwargs)

    LOGGER.error("unsupported AI gateway '%s'", name)
    raise ValueError(f"unsupported AI gateway: {name}")


__all__ = ["AIGateway", "AudioSource", "UploadedFile", "create_gateway"]
