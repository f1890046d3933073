from __future__ import annotations

import json
from pathlib import Path

import pytest

from meetingbrain.agents.meeting import cli as meeting_cli
from meetingbrain.agents.meeting.pipeline import PipelineOrchestrator
from meetingbrain.agents.meeting.status import MeetingStatus
from meetingbrain.storage import LocalAudioStorage, SQLiteMeetingStore

from conftest import FakeGateway


@pytest.fixture
def cli_paths(tmp_path: Path):
    audio = tmp_path / "standup.wav"
    audio.write_bytes(b"RIFF....WAVE")
    return {
        "store": tmp_path / "meetings.db",
        "audio_root": tmp_path / "audio",
        "audio": audio,
    }


def _global_args(paths) -> list:
    return ["--store", str(paths["store"]), "--audio-root", str(paths["audio_root"]), "--json"]


def _create(paths, capsys) -> str:
    code = meeting_cli.main(
        _global_args(paths)
        + ["create", "--user", "user-1", "--title", "Standup", "--audio", str(paths["audio"]), "--language", "en-US"]
    )
    assert code == 0
    return json.loads(capsys.readouterr().out)["id"]


@pytest.mark.integration
def test_create_and_status(cli_paths, capsys) -> None:
    meeting_id = _create(cli_paths, capsys)

    assert meeting_cli.main(_global_args(cli_paths) + ["status", meeting_id]) == 0
    view = json.loads(capsys.readouterr().out)
    assert view["status"] == "recording"
    assert view["title"] == "Standup"
    assert view["language_code"] == "en-US"
    assert view["segments_count"] == 0

    stored = SQLiteMeetingStore(cli_paths["store"]).get_meeting(meeting_id)
    assert LocalAudioStorage(cli_paths["audio_root"]).download(stored.audio_path) == b"RIFF....WAVE"


@pytest.mark.integration
def test_run_and_graph_with_stub_gateway(cli_paths, capsys, monkeypatch) -> None:
    gateway = FakeGateway(
        transcript="Speaker 1: ship it",
        analysis=json.dumps({"summary": "Ship.", "decisions": ["Ship"], "action_items": []}),
    )

    def build(settings):
        return PipelineOrchestrator(
            SQLiteMeetingStore(settings.STORE_PATH),
            LocalAudioStorage(settings.AUDIO_ROOT),
            gateway,
            sleep=lambda _: None,
        )

    monkeypatch.setattr(meeting_cli, "build_orchestrator", build)
    meeting_id = _create(cli_paths, capsys)

    assert meeting_cli.main(_global_args(cli_paths) + ["run", meeting_id]) == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["status"] == MeetingStatus.DONE.value
    assert [stage["stage"] for stage in payload["stages"]] == ["transcription", "analysis", "linking"]

    assert meeting_cli.main(_global_args(cli_paths) + ["graph", meeting_id]) == 0
    graph = json.loads(capsys.readouterr().out)
    assert [node["node_type"] for node in graph["nodes"]] == ["meeting", "note", "decision"]
    assert all(node["embedded"] for node in graph["nodes"])

    assert meeting_cli.main(_global_args(cli_paths) + ["search", "ship", "--user", "user-1"]) == 0
    results = json.loads(capsys.readouterr().out)
    assert results["count"] >= 1


def test_unknown_meeting_reports_error(cli_paths, capsys) -> None:
    code = meeting_cli.main(_global_args(cli_paths) + ["status", "missing"])
    assert code == 2
    assert "error:" in capsys.readouterr().err
