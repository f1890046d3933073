from __future__ import annotations

from pathlib import Path

from meetingbrain.agents.meeting.audit import AuditConfig, MeetingAuditLogger


def test_audit_logger_writes_jsonl(tmp_path: Path) -> None:
    logger = MeetingAuditLogger(AuditConfig.for_path(tmp_path / "audit" / "pipeline.jsonl"))
    assert logger.is_enabled()

    logger.record({"meeting_id": "m1", "stage": "analysis", "success": True})
    logger.record({"meeting_id": "m1", "stage": "linking", "success": False, "error": "boom"})

    entries = logger.read()
    assert [entry["stage"] for entry in entries] == ["analysis", "linking"]
    assert entries[1]["error"] == "boom"
    assert entries[0]["schema_version"] == 1
    assert "recorded_at" in entries[0]


def test_audit_logger_disabled_without_path(monkeypatch) -> None:
    monkeypatch.delenv("MEETING_AUDIT_LOG", raising=False)
    logger = MeetingAuditLogger.from_env()
    assert not logger.is_enabled()
    logger.record({"stage": "transcription"})
    assert logger.read() == []


def test_audit_logger_from_env(monkeypatch, tmp_path: Path) -> None:
    path = tmp_path / "env.jsonl"
    monkeypatch.setenv("MEETING_AUDIT_LOG", str(path))
    logger = MeetingAuditLogger.from_env()
    logger.record({"stage": "transcription"})
    assert path.exists()
    assert logger.read()[0]["event_type"] == "meeting_pipeline.stage"
