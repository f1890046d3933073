from __future__ import annotations

import base64
import json
from typing import Dict, List, Optional

import httpx
import pytest

from meetingbrain.agents.meeting.config import UPLOAD_POLL_ATTEMPTS, PipelineConfig
from meetingbrain.agents.meeting.errors import UpstreamError
from meetingbrain.agents.meeting.gateway import AudioSource, UploadedFile, create_gateway
from meetingbrain.agents.meeting.gateway.gemini import GeminiGateway

BASE = "https://gemini.test"


def _config(**overrides) -> PipelineConfig:
    values = {"api_key": "secret", "base_url": BASE + "/"}
    values.update(overrides)
    return PipelineConfig(**values)


def _gateway(handler, sleeps: Optional[List[float]] = None) -> GeminiGateway:
    recorder = sleeps if sleeps is not None else []
    return GeminiGateway(_config(), transport=httpx.MockTransport(handler), sleep=recorder.append)


def _text_response(text: str) -> httpx.Response:
    return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": text}]}, "finishReason": "STOP"}]})


def test_inline_transcription_request() -> None:
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return _text_response("Speaker 1: hi")

    gateway = _gateway(handler)
    text = gateway.transcribe(AudioSource(mime_type="audio/wav", data=b"abc"), "transcribe please")

    assert text == "Speaker 1: hi"
    request = seen[0]
    assert request.method == "POST"
    assert request.url.path == "/v1beta/models/gemini-3-flash-preview:generateContent"
    assert request.url.params["key"] == "secret"
    body = json.loads(request.content)
    parts = body["contents"][0]["parts"]
    assert parts[0] == {"inlineData": {"mimeType": "audio/wav", "data": base64.b64encode(b"abc").decode()}}
    assert parts[1] == {"text": "transcribe please"}
    assert body["generationConfig"] == {"temperature": 0.0, "maxOutputTokens": 16384}


def test_uploaded_audio_is_referenced_by_uri() -> None:
    bodies: List[Dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return _text_response("ok")

    gateway = _gateway(handler)
    gateway.transcribe(AudioSource(mime_type="audio/mp4", file_uri="https://files/abc"), "p")

    assert bodies[0]["contents"][0]["parts"][0] == {
        "fileData": {"mimeType": "audio/mp4", "fileUri": "https://files/abc"}
    }


def test_generate_uses_analysis_model() -> None:
    paths: List[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        paths.append(request.url.path)
        body = json.loads(request.content)
        assert body["generationConfig"] == {"temperature": 0.1, "maxOutputTokens": 4096}
        return _text_response('{"summary": "x"}')

    assert _gateway(handler).generate("analyse") == '{"summary": "x"}'
    assert paths == ["/v1beta/models/gemini-2.5-flash:generateContent"]


def test_no_candidates_is_an_upstream_error() -> None:
    gateway = _gateway(lambda request: httpx.Response(200, json={"candidates": []}))
    with pytest.raises(UpstreamError):
        gateway.generate("p")


def test_empty_parts_yield_empty_text() -> None:
    gateway = _gateway(lambda request: httpx.Response(200, json={"candidates": [{"content": {"parts": []}}]}))
    assert gateway.generate("p") == ""


def test_non_success_status_carries_body_excerpt() -> None:
    gateway = _gateway(lambda request: httpx.Response(429, text="quota exceeded"))
    with pytest.raises(UpstreamError) as excinfo:
        gateway.generate("p")
    assert "429" in str(excinfo.value)
    assert "quota exceeded" in str(excinfo.value)
    assert excinfo.value.retryable is True


def test_transport_error_is_wrapped() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(UpstreamError):
        _gateway(handler).embed("hello")


def test_embed_returns_values() -> None:
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"embedding": {"values": [0.1, 0.2, 0.3]}})

    assert _gateway(handler).embed("hello") == [0.1, 0.2, 0.3]
    assert seen[0].url.path == "/v1beta/models/gemini-embedding-001:embedContent"
    assert json.loads(seen[0].content) == {
        "model": "models/gemini-embedding-001",
        "content": {"parts": [{"text": "hello"}]},
    }


def test_embed_without_values_fails() -> None:
    gateway = _gateway(lambda request: httpx.Response(200, json={"embedding": {}}))
    with pytest.raises(UpstreamError):
        gateway.embed("hello")


def test_resumable_upload_polls_until_active() -> None:
    calls: List[httpx.Request] = []
    states = iter(["PROCESSING", "PROCESSING", "ACTIVE"])
    sleeps: List[float] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if request.method == "POST":
            return httpx.Response(200, headers={"X-Goog-Upload-URL": f"{BASE}/resumable/session-1"})
        if request.method == "PUT":
            return httpx.Response(
                200,
                json={"file": {"name": "files/abc", "uri": f"{BASE}/v1beta/files/abc", "state": "PROCESSING"}},
            )
        return httpx.Response(200, json={"state": next(states)})

    uploaded = _gateway(handler, sleeps).upload_file(b"audio-bytes", "audio/mp4", "meeting-1.m4a")

    assert uploaded == UploadedFile(name="files/abc", uri=f"{BASE}/v1beta/files/abc", state="ACTIVE")
    start, put = calls[0], calls[1]
    assert start.url.path == "/upload/v1beta/files"
    assert start.url.params["key"] == "secret"
    assert start.headers["X-Goog-Upload-Protocol"] == "resumable"
    assert start.headers["X-Goog-Upload-Header-Content-Length"] == str(len(b"audio-bytes"))
    assert json.loads(start.content) == {"file": {"displayName": "meeting-1.m4a"}}
    assert put.url.path == "/resumable/session-1"
    assert "key" not in put.url.params
    assert put.headers["X-Goog-Upload-Command"] == "upload, finalize"
    assert put.content == b"audio-bytes"
    polls = [c for c in calls if c.method == "GET"]
    assert len(polls) == 3
    assert polls[0].url.path == "/v1beta/files/abc"
    assert sleeps == [2.0, 2.0]


def test_upload_that_never_activates_still_returns() -> None:
    sleeps: List[float] = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            return httpx.Response(200, headers={"X-Goog-Upload-URL": f"{BASE}/resumable/s"})
        if request.method == "PUT":
            return httpx.Response(200, json={"file": {"name": "files/x", "uri": f"{BASE}/v1beta/files/x"}})
        return httpx.Response(200, json={"state": "PROCESSING"})

    uploaded = _gateway(handler, sleeps).upload_file(b"a", "audio/mp4", "m.m4a")

    assert uploaded.state == "PROCESSING"
    assert not uploaded.is_active
    assert len(sleeps) == UPLOAD_POLL_ATTEMPTS - 1


def test_upload_stops_polling_once_processing_failed() -> None:
    sleeps: List[float] = []
    polls: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            return httpx.Response(200, headers={"X-Goog-Upload-URL": f"{BASE}/resumable/s"})
        if request.method == "PUT":
            return httpx.Response(200, json={"file": {"name": "files/x", "uri": f"{BASE}/v1beta/files/x"}})
        polls.append(request)
        return httpx.Response(200, json={"state": "PROCESSING" if len(polls) == 1 else "FAILED"})

    uploaded = _gateway(handler, sleeps).upload_file(b"a", "audio/mp4", "m.m4a")

    assert uploaded.state == "FAILED"
    assert len(polls) == 2
    assert sleeps == [2.0]


def test_upload_start_without_session_url_fails() -> None:
    gateway = _gateway(lambda request: httpx.Response(200))
    with pytest.raises(UpstreamError):
        gateway.upload_file(b"a", "audio/mp4", "m.m4a")


def test_delete_targets_file_id_from_uri() -> None:
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={})

    _gateway(handler).delete_file(UploadedFile(name="files/abc", uri=f"{BASE}/v1beta/files/abc"))

    assert seen[0].method == "DELETE"
    assert seen[0].url.path == "/v1beta/files/abc"


def test_missing_api_key_is_rejected() -> None:
    with pytest.raises(UpstreamError):
        GeminiGateway(PipelineConfig(api_key=None))


def test_create_gateway_factory() -> None:
    gateway = create_gateway("Gemini", _config(), transport=httpx.MockTransport(lambda r: httpx.Response(200)))
    assert isinstance(gateway, GeminiGateway)
    gateway.close()
    with pytest.raises(ValueError):
        create_gateway("openai", _config())
