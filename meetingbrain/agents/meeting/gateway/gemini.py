"""Gemini REST gateway built on httpx."""
from __future__ import annotations

import base64
import time
from typing import Any, Callable, Dict, List, Optional

import httpx

from meetingbrain.utils import get_logger

from ..config import UPLOAD_POLL_ATTEMPTS, UPLOAD_POLL_INTERVAL_SECONDS, PipelineConfig
from ..errors import UpstreamError
from . import AudioSource, UploadedFile

LOGGER = get_logger("meeting.gateway.gemini")


def _excerpt(text: str, limit: int = 500) -> str:
    return (text or "")[:limit]


class GeminiGateway:
    """Talks to the Generative Language API with an API key.

    ``transport`` and ``sleep`` exist so tests can run the upload protocol
    without network access or real waiting.
    """

    def __init__(
        self,
        config: PipelineConfig,
        *,
        transport: Optional[httpx.BaseTransport] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if not config.api_key:
            raise UpstreamError("GEMINI_API_KEY is not configured")
        self.config = config
        self._sleep = sleep
        self._client = httpx.Client(timeout=config.http_timeout, transport=transport)

    def close(self) -> None:
        self._client.close()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def transcribe(self, audio: AudioSource, prompt: str) -> str:
        if audio.is_inline:
            encoded = base64.b64encode(audio.data or b"").decode("ascii")
            audio_part: Dict[str, Any] = {"inlineData": {"mimeType": audio.mime_type, "data": encoded}}
        else:
            audio_part = {"fileData": {"mimeType": audio.mime_type, "fileUri": audio.file_uri}}
        return self._generate_content(
            self.config.transcribe_model,
            [audio_part, {"text": prompt}],
            temperature=self.config.transcribe_temperature,
            max_output_tokens=self.config.transcribe_max_tokens,
        )

    def generate(self, prompt: str) -> str:
        return self._generate_content(
            self.config.analysis_model,
            [{"text": prompt}],
            temperature=self.config.analysis_temperature,
            max_output_tokens=self.config.analysis_max_tokens,
        )

    def embed(self, text: str) -> List[float]:
        model = self.config.embedding_model
        data = self._request_json(
            "POST",
            f"{self.config.base_url}/v1beta/models/{model}:embedContent",
            json={"model": f"models/{model}", "content": {"parts": [{"text": text}]}},
            what="embedding",
        )
        values = (data.get("embedding") or {}).get("values")
        if not values:
            raise UpstreamError("embedding response contained no values")
        return [float(value) for value in values]

    def upload_file(self, data: bytes, mime_type: str, display_name: str) -> UploadedFile:
        start = self._send(
            "POST",
            f"{self.config.base_url}/upload/v1beta/files",
            headers={
                "X-Goog-Upload-Protocol": "resumable",
                "X-Goog-Upload-Command": "start",
                "X-Goog-Upload-Header-Content-Length": str(len(data)),
                "X-Goog-Upload-Header-Content-Type": mime_type,
                "Content-Type": "application/json",
            },
            json={"file": {"displayName": display_name}},
            what="file upload start",
        )
        upload_url = start.headers.get("X-Goog-Upload-URL")
        if not upload_url:
            raise UpstreamError("file upload start returned no upload URL")

        finished = self._send(
            "PUT",
            upload_url,
            headers={
                "Content-Length": str(len(data)),
                "X-Goog-Upload-Offset": "0",
                "X-Goog-Upload-Command": "upload, finalize",
            },
            content=data,
            what="file upload",
            keyed=False,
        )
        info = self._parse_json(finished, "file upload")
        file_info = info.get("file") or {}
        uri = file_info.get("uri")
        if not uri:
            raise UpstreamError(f"file upload returned no URI: {_excerpt(finished.text)}")
        uploaded = UploadedFile(
            name=file_info.get("name") or "",
            uri=uri,
            state=file_info.get("state") or "PROCESSING",
        )
        if uploaded.name:
            uploaded.state = self._wait_until_active(uploaded.name)
        return uploaded

    def delete_file(self, uploaded: UploadedFile) -> None:
        file_id = uploaded.uri.rstrip("/").split("/")[-1]
        self._send("DELETE", f"{self.config.base_url}/v1beta/files/{file_id}", what="file delete")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _wait_until_active(self, name: str) -> str:
        state = "UNKNOWN"
        for attempt in range(1, UPLOAD_POLL_ATTEMPTS + 1):
            try:
                response = self._client.get(
                    f"{self.config.base_url}/v1beta/{name}", params={"key": self.config.api_key}
                )
            except httpx.HTTPError as exc:
                LOGGER.warning("file state poll %d failed: %s", attempt, exc)
            else:
                if response.is_success:
                    try:
                        state = str(response.json().get("state") or "UNKNOWN")
                    except ValueError:
                        state = "UNKNOWN"
                    if state.upper() == "ACTIVE":
                        return state
                    if state.upper() == "FAILED":
                        LOGGER.warning("file %s processing failed (poll %d); continuing", name, attempt)
                        return state
                    LOGGER.debug("file %s state %s (poll %d)", name, state, attempt)
            if attempt < UPLOAD_POLL_ATTEMPTS:
                self._sleep(UPLOAD_POLL_INTERVAL_SECONDS)
        LOGGER.warning(
            "file %s not active after %d polls (last state %s); continuing",
            name,
            UPLOAD_POLL_ATTEMPTS,
            state,
        )
        return state

    def _generate_content(
        self,
        model: str,
        parts: List[Dict[str, Any]],
        *,
        temperature: float,
        max_output_tokens: int,
    ) -> str:
        data = self._request_json(
            "POST",
            f"{self.config.base_url}/v1beta/models/{model}:generateContent",
            json={
                "contents": [{"parts": parts}],
                "generationConfig": {
                    "temperature": temperature,
                    "maxOutputTokens": max_output_tokens,
                },
            },
            what=f"{model} generateContent",
        )
        candidates = data.get("candidates") or []
        if not candidates:
            raise UpstreamError(f"{model} returned no candidates: {_excerpt(str(data))}")
        candidate = candidates[0] or {}
        LOGGER.debug("%s finishReason=%s", model, candidate.get("finishReason"))
        content_parts = (candidate.get("content") or {}).get("parts") or []
        if not content_parts:
            return ""
        return str(content_parts[0].get("text") or "")

    def _request_json(self, method: str, url: str, *, what: str, **kwargs) -> Dict[str, Any]:
        response = self._send(method, url, what=what, **kwargs)
        return self._parse_json(response, what)

    def _send(
        self,
        method: str,
        url: str,
        *,
        what: str,
        keyed: bool = True,
        **kwargs,
    ) -> httpx.Response:
        params = {"key": self.config.api_key} if keyed else None
        try:
            response = self._client.request(method, url, params=params, **kwargs)
        except httpx.HTTPError as exc:
            raise UpstreamError(f"{what} request failed: {exc}") from exc
        if not response.is_success:
            raise UpstreamError(f"{what} failed ({response.status_code}): {_excerpt(response.text)}")
        return response

    @staticmethod
    def _parse_json(response: httpx.Response, what: str) -> Dict[str, Any]:
        try:
            payload = response.json()
        except ValueError as exc:
            raise UpstreamError(f"{what} returned invalid JSON: {_excerpt(response.text)}") from exc
        if not isinstance(payload, dict):
            raise UpstreamError(f"{what} returned unexpected payload")
        return payload


__all__ = ["GeminiGateway"]
