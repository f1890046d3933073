"""Transcription stage: audio bytes to speaker-labelled transcript segments."""
from __future__ import annotations

import re
from pathlib import PurePosixPath
from typing import TYPE_CHECKING, Dict, List, Optional

from meetingbrain.utils import get_logger

from .audit import MeetingAuditLogger
from .config import INLINE_AUDIO_LIMIT_BYTES, PipelineConfig
from .errors import MissingAudioError
from .gateway import AudioSource, UploadedFile
from .models import Meeting, TranscriptSegment
from .stages import PipelineStage, StepTrace, run_noncritical
from .status import MeetingStatus

if TYPE_CHECKING:  # pragma: no cover - typing only
    from meetingbrain.storage.base import AudioStorage, MeetingStore

    from .gateway import AIGateway

LOGGER = get_logger("meeting.transcription")

SPEAKER_PREFIX = re.compile(r"^(Speaker\s*\d+)\s*:\s*", re.IGNORECASE)
INAUDIBLE_TOKEN = "[inaudible]"
NO_SPEECH_TEXT = "[No speech detected in this recording]"

TRANSFER_INLINE = "inline"
TRANSFER_UPLOAD = "upload"

LANGUAGE_NAMES = {
    "my-MM": "Burmese",
    "en-US": "English",
    "en-GB": "English",
    "ko-KR": "Korean",
    "ja-JP": "Japanese",
    "zh-CN": "Chinese",
    "zh-TW": "Chinese",
    "th-TH": "Thai",
    "vi-VN": "Vietnamese",
    "id-ID": "Indonesian",
    "hi-IN": "Hindi",
    "fr-FR": "French",
    "de-DE": "German",
    "es-ES": "Spanish",
}

# Fallback by primary subtag for codes without a regional entry above.
PRIMARY_LANGUAGE_NAMES = {
    "ar": "Arabic",
    "bn": "Bengali",
    "cs": "Czech",
    "da": "Danish",
    "de": "German",
    "el": "Greek",
    "en": "English",
    "es": "Spanish",
    "fa": "Persian",
    "fi": "Finnish",
    "fil": "Filipino",
    "fr": "French",
    "he": "Hebrew",
    "hi": "Hindi",
    "hu": "Hungarian",
    "id": "Indonesian",
    "it": "Italian",
    "ja": "Japanese",
    "km": "Khmer",
    "ko": "Korean",
    "lo": "Lao",
    "ms": "Malay",
    "my": "Burmese",
    "ne": "Nepali",
    "nl": "Dutch",
    "no": "Norwegian",
    "pl": "Polish",
    "pt": "Portuguese",
    "ro": "Romanian",
    "ru": "Russian",
    "sv": "Swedish",
    "ta": "Tamil",
    "th": "Thai",
    "tl": "Tagalog",
    "tr": "Turkish",
    "uk": "Ukrainian",
    "ur": "Urdu",
    "vi": "Vietnamese",
    "zh": "Chinese",
}

MIME_TYPES = {
    ".wav": "audio/wav",
    ".m4a": "audio/mp4",
    ".mp4": "audio/mp4",
    ".mp3": "audio/mpeg",
    ".webm": "audio/webm",
    ".ogg": "audio/ogg",
    ".flac": "audio/flac",
}
DEFAULT_MIME_TYPE = "audio/mp4"


def language_name(language_code: Optional[str]) -> str:
    """Human-readable language for prompts (``my-MM`` -> ``Burmese``)."""
    code = (language_code or "").strip()
    if not code:
        return "English"
    if code in LANGUAGE_NAMES:
        return LANGUAGE_NAMES[code]
    primary = code.replace("_", "-").split("-")[0].lower()
    return PRIMARY_LANGUAGE_NAMES.get(primary, code)


def mime_type_for(audio_path: str) -> str:
    suffix = PurePosixPath(audio_path or "").suffix.lower()
    return MIME_TYPES.get(suffix, DEFAULT_MIME_TYPE)


def select_transfer_mode(size_bytes: int) -> str:
    """Inline up to and including 4 MiB, resumable upload above."""
    return TRANSFER_INLINE if size_bytes <= INLINE_AUDIO_LIMIT_BYTES else TRANSFER_UPLOAD


def build_transcription_prompt(language_code: str) -> str:
    return (
        "Transcribe this audio recording accurately. "
        f"The primary language is {language_name(language_code)} ({language_code}). "
        "Output ONLY the transcription text. Preserve the original language. "
        "If multiple speakers, prefix with Speaker 1:, Speaker 2:, etc. "
        f"If unclear or silent, output {INAUDIBLE_TOKEN}."
    )


def parse_transcript(text: str, meeting_id: str, language: str) -> List[TranscriptSegment]:
    """Split model output into one segment per non-blank line.

    ``Speaker <N>:`` prefixes become the segment's speaker label. Empty output
    or a bare ``[inaudible]`` yields a single no-speech segment.
    """
    segments: List[TranscriptSegment] = []
    stripped = (text or "").strip()
    if stripped and stripped != INAUDIBLE_TOKEN:
        for raw_line in stripped.splitlines():
            line = raw_line.strip()
            if not line:
                continue
            match = SPEAKER_PREFIX.match(line)
            segments.append(
                TranscriptSegment(
                    meeting_id=meeting_id,
                    speaker_label=match.group(1) if match else None,
                    text=line[match.end():].strip() if match else line,
                    language=language,
                )
            )

    if not segments:
        segments.append(
            TranscriptSegment(
                meeting_id=meeting_id,
                speaker_label=None,
                text=NO_SPEECH_TEXT,
                language=language,
            )
        )
    return segments


class TranscriptionStage(PipelineStage):
    name = "transcription"
    entry_status = MeetingStatus.PROCESSING
    success_status = MeetingStatus.ANALYZING

    def __init__(
        self,
        store: "MeetingStore",
        gateway: "AIGateway",
        audio_storage: "AudioStorage",
        config: PipelineConfig,
        *,
        audit: Optional[MeetingAuditLogger] = None,
    ) -> None:
        super().__init__(store, gateway, config, audit=audit)
        self.audio_storage = audio_storage

    def execute(self, meeting: Meeting, steps: StepTrace) -> Dict[str, int]:
        if not meeting.audio_path:
            raise MissingAudioError("No audio uploaded")
        steps.detail(f"audio: {meeting.audio_path}")

        steps.step("Downloading audio from storage")
        audio_bytes = self.audio_storage.download(meeting.audio_path)
        size = len(audio_bytes)
        steps.detail(f"Size: {size} bytes ({size / (1024 * 1024):.2f} MB)")
        mime_type = mime_type_for(meeting.audio_path)

        uploaded: Optional[UploadedFile] = None
        try:
            if select_transfer_mode(size) == TRANSFER_INLINE:
                steps.step("Encoding inline audio (small file)")
                source = AudioSource(mime_type=mime_type, data=audio_bytes)
            else:
                steps.step("Uploading audio to file API (large file)")
                LOGGER.info("meeting %s audio is %d bytes; using resumable upload", meeting.id, size)
                suffix = PurePosixPath(meeting.audio_path).suffix or ".m4a"
                uploaded = self.gateway.upload_file(audio_bytes, mime_type, f"{meeting.id}{suffix}")
                steps.detail(f"Uploaded: {uploaded.uri}")
                steps.detail(f"File state: {uploaded.state}")
                source = AudioSource(mime_type=mime_type, file_uri=uploaded.uri)

            steps.step("Calling model for transcription")
            transcript = self.gateway.transcribe(source, build_transcription_prompt(meeting.language_code))
            steps.detail(f"Chars: {len(transcript)}")
            if transcript:
                steps.detail(f"Preview: {transcript[:200]}")
        finally:
            if uploaded is not None:
                self.cleanup_upload(uploaded, steps)

        steps.step("Parsing")
        segments = parse_transcript(transcript, meeting.id, meeting.language_code)
        steps.detail(f"Segments: {len(segments)}")

        steps.step("Saving")
        removed = self.store.delete_segments(meeting.id)
        if removed:
            steps.detail(f"Replaced {removed} existing segments")
        self.store.insert_segments(segments)
        steps.detail("Saved")
        return {"segments_count": len(segments)}

    def cleanup_upload(self, uploaded: UploadedFile, steps: StepTrace) -> None:
        """Delete the remote copy of a large upload; never fails the stage."""
        run_noncritical("delete uploaded audio", lambda: self.gateway.delete_file(uploaded), steps)


__all__ = [
    "TranscriptionStage",
    "build_transcription_prompt",
    "language_name",
    "mime_type_for",
    "parse_transcript",
    "select_transfer_mode",
]
