from __future__ import annotations

import threading

import pytest

from meetingbrain.agents.meeting.config import INLINE_AUDIO_LIMIT_BYTES
from meetingbrain.agents.meeting.errors import PersistenceError, UpstreamError
from meetingbrain.agents.meeting.models import Meeting, TranscriptSegment
from meetingbrain.agents.meeting.pipeline import PipelineOrchestrator
from meetingbrain.agents.meeting.status import MeetingStatus
from meetingbrain.agents.meeting.transcription import (
    NO_SPEECH_TEXT,
    TRANSFER_INLINE,
    TRANSFER_UPLOAD,
    build_transcription_prompt,
    language_name,
    mime_type_for,
    parse_transcript,
    select_transfer_mode,
)
from meetingbrain.storage import InMemoryMeetingStore

from conftest import FakeGateway


def test_transfer_mode_boundary() -> None:
    assert INLINE_AUDIO_LIMIT_BYTES == 4 * 1024 * 1024
    assert select_transfer_mode(0) == TRANSFER_INLINE
    assert select_transfer_mode(4 * 1024 * 1024) == TRANSFER_INLINE
    assert select_transfer_mode(4 * 1024 * 1024 + 1) == TRANSFER_UPLOAD


def test_parse_speaker_and_plain_lines() -> None:
    segments = parse_transcript("Speaker 1: Hello\nHello back", "m1", "en-US")
    assert [(s.speaker_label, s.text) for s in segments] == [("Speaker 1", "Hello"), (None, "Hello back")]
    assert all(s.language == "en-US" and s.meeting_id == "m1" for s in segments)


def test_parse_skips_blank_lines_and_keeps_matched_label() -> None:
    text = "\n  speaker 2 :  hi there \n\n   \nSpeaker10:bye\n"
    segments = parse_transcript(text, "m1", "my-MM")
    assert [(s.speaker_label, s.text) for s in segments] == [
        ("speaker 2", "hi there"),
        ("Speaker10", "bye"),
    ]


@pytest.mark.parametrize("raw", ["[inaudible]", "  [inaudible]  \n", "", "   \n\n"])
def test_parse_no_speech_sentinel(raw: str) -> None:
    segments = parse_transcript(raw, "m1", "my-MM")
    assert len(segments) == 1
    assert segments[0].text == NO_SPEECH_TEXT
    assert segments[0].speaker_label is None


def test_language_names_and_prompt() -> None:
    assert language_name("my-MM") == "Burmese"
    assert language_name("en-US") == "English"
    assert language_name("en-AU") == "English"
    assert language_name("pt-BR") == "Portuguese"
    assert language_name("it") == "Italian"
    assert language_name("ms_MY") == "Malay"
    assert language_name("xx-YY") == "xx-YY"
    prompt = build_transcription_prompt("my-MM")
    assert "Burmese" in prompt
    assert "Speaker 1:" in prompt
    assert "[inaudible]" in prompt


def test_mime_types() -> None:
    assert mime_type_for("u/a.wav") == "audio/wav"
    assert mime_type_for("u/a.WAV") == "audio/wav"
    assert mime_type_for("u/a.m4a") == "audio/mp4"
    assert mime_type_for("u/a") == "audio/mp4"


def test_small_audio_is_sent_inline(orchestrator, gateway, make_meeting, store) -> None:
    gateway.transcript = "Speaker 1: Hello\nSpeaker 2: Hi"
    meeting = make_meeting(audio=b"x" * 1024)

    result = orchestrator.stage("transcription").run(meeting.id)

    assert result.success, result.steps
    assert result.counts == {"segments_count": 2}
    assert result.status_after is MeetingStatus.ANALYZING
    assert store.get_meeting(meeting.id).status is MeetingStatus.ANALYZING
    assert gateway.uploads == []
    source = gateway.audio_sources[-1]
    assert source.is_inline and source.data == b"x" * 1024
    assert source.mime_type == "audio/mp4"
    segments = store.list_segments(meeting.id)
    assert [s.speaker_label for s in segments] == ["Speaker 1", "Speaker 2"]
    assert {s.language for s in segments} == {"my-MM"}
    payload = result.to_payload()
    assert payload["success"] is True and payload["segments_count"] == 2
    assert payload["steps"][0] == "1. Fetching meeting"


def test_missing_audio_fails_without_segments(orchestrator, gateway, make_meeting, store) -> None:
    meeting = make_meeting(audio=None)

    result = orchestrator.stage("transcription").run(meeting.id)

    assert not result.success
    assert result.http_status == 409
    assert result.retryable is False
    assert "error" in result.to_payload()
    stored = store.get_meeting(meeting.id)
    assert stored.status is MeetingStatus.FAILED
    assert stored.failed_from is MeetingStatus.PROCESSING
    assert store.list_segments(meeting.id) == []
    assert gateway.audio_sources == []


def test_unknown_meeting_is_not_found(orchestrator) -> None:
    result = orchestrator.stage("transcription").run("nope")
    assert not result.success
    assert result.http_status == 404


def test_wrong_status_is_rejected_without_failure_write(orchestrator, make_meeting, store) -> None:
    meeting = make_meeting(status=MeetingStatus.DONE)
    result = orchestrator.stage("transcription").run(meeting.id)
    assert result.http_status == 409
    assert store.get_meeting(meeting.id).status is MeetingStatus.DONE


def test_rerun_replaces_existing_segments(orchestrator, gateway, make_meeting, store) -> None:
    meeting = make_meeting()
    store.insert_segments(
        [TranscriptSegment(meeting_id=meeting.id, text=f"stale {i}", language="my-MM") for i in range(3)]
    )
    gateway.transcript = "fresh line"

    result = orchestrator.stage("transcription").run(meeting.id)

    assert result.success
    assert [s.text for s in store.list_segments(meeting.id)] == ["fresh line"]


def test_large_audio_uses_upload_and_deletes_it(orchestrator, gateway, make_meeting) -> None:
    gateway.transcript = "hello"
    meeting = make_meeting(audio=b"\0" * (INLINE_AUDIO_LIMIT_BYTES + 1), audio_path="user-1/big.wav")

    result = orchestrator.stage("transcription").run(meeting.id)

    assert result.success
    assert gateway.uploads == [(INLINE_AUDIO_LIMIT_BYTES + 1, "audio/wav", f"{meeting.id}.wav")]
    source = gateway.audio_sources[-1]
    assert not source.is_inline
    assert source.file_uri == "https://example.test/v1beta/files/upload-1"
    assert len(gateway.deleted) == 1


def test_upload_is_deleted_even_when_transcription_fails(orchestrator, gateway, make_meeting, store) -> None:
    gateway.transcribe_errors.append(UpstreamError("model unavailable"))
    meeting = make_meeting(audio=b"\0" * (INLINE_AUDIO_LIMIT_BYTES + 10))

    result = orchestrator.stage("transcription").run(meeting.id)

    assert not result.success
    assert result.retryable is True
    assert result.http_status == 502
    assert len(gateway.deleted) == 1
    assert store.get_meeting(meeting.id).status is MeetingStatus.FAILED


def test_upload_delete_failure_is_swallowed(orchestrator, gateway, make_meeting) -> None:
    gateway.fail_delete = True
    gateway.transcript = "hello"
    meeting = make_meeting(audio=b"\0" * (INLINE_AUDIO_LIMIT_BYTES + 1))

    result = orchestrator.stage("transcription").run(meeting.id)

    assert result.success
    assert any("delete uploaded audio failed" in line for line in result.steps)


def test_failed_meeting_can_be_rerun(orchestrator, gateway, make_meeting, store) -> None:
    gateway.transcribe_errors.append(UpstreamError("boom"))
    gateway.transcript = "second try"
    meeting = make_meeting()
    stage = orchestrator.stage("transcription")

    assert not stage.run(meeting.id).success
    assert store.get_meeting(meeting.id).status is MeetingStatus.FAILED

    result = stage.run(meeting.id)
    assert result.success
    assert store.get_meeting(meeting.id).status is MeetingStatus.ANALYZING
    assert [s.text for s in store.list_segments(meeting.id)] == ["second try"]


class _BlockingGateway(FakeGateway):
    """Holds the first transcription call open until released."""

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self.entered = threading.Event()
        self.release = threading.Event()

    def transcribe(self, audio, prompt: str) -> str:
        self.entered.set()
        assert self.release.wait(timeout=5)
        return super().transcribe(audio, prompt)


def test_concurrent_run_is_rejected_without_writes(store, audio_storage, config, make_meeting) -> None:
    gateway = _BlockingGateway(transcript="Hello\nHello back")
    orchestrator = PipelineOrchestrator(store, audio_storage, gateway, config, sleep=lambda _: None)
    meeting = make_meeting()
    results = []

    worker = threading.Thread(target=lambda: results.append(orchestrator.stage("transcription").run(meeting.id)))
    worker.start()
    assert gateway.entered.wait(timeout=5)

    second = orchestrator.stage("transcription").run(meeting.id)
    gateway.release.set()
    worker.join(timeout=5)

    assert not second.success
    assert second.http_status == 409
    assert second.error_type == "StatusConflictError"
    assert second.status_after is None
    assert results[0].success
    assert [s.text for s in store.list_segments(meeting.id)] == ["Hello", "Hello back"]
    assert store.get_meeting(meeting.id).status is MeetingStatus.ANALYZING
    assert len(gateway.audio_sources) == 1


def test_lock_is_released_after_each_run(orchestrator, gateway, make_meeting, store) -> None:
    gateway.transcribe_errors.append(UpstreamError("boom"))
    meeting = make_meeting()

    orchestrator.stage("transcription").run(meeting.id)

    assert store.acquire_stage_lock(meeting.id, "analysis")


class _FailedWriteStore(InMemoryMeetingStore):
    def compare_and_set_status(self, meeting_id, expected, target, *, failed_from=None) -> bool:
        if target is MeetingStatus.FAILED:
            raise PersistenceError("status table locked")
        return super().compare_and_set_status(meeting_id, expected, target, failed_from=failed_from)


def test_failure_write_is_best_effort(audio_storage, gateway, config) -> None:
    store = _FailedWriteStore()
    audio_storage.put("user-1/m1.m4a", b"fake-audio")
    store.add_meeting(
        Meeting(
            id="m1",
            user_id="user-1",
            title="Weekly sync",
            language_code="my-MM",
            status=MeetingStatus.PROCESSING,
            audio_path="user-1/m1.m4a",
        )
    )
    gateway.transcribe_errors.append(UpstreamError("model unavailable"))
    orchestrator = PipelineOrchestrator(store, audio_storage, gateway, config, sleep=lambda _: None)

    result = orchestrator.stage("transcription").run("m1")

    assert not result.success
    assert result.error == "model unavailable"
    assert result.http_status == 502
    assert result.status_after is None
    assert any("mark meeting failed failed (ignored)" in line for line in result.steps)
    assert store.get_meeting("m1").status is MeetingStatus.PROCESSING
