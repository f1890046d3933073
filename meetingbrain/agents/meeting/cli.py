"""Command line helpers for running the meeting pipeline locally."""
from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional
from uuid import uuid4

from meetingbrain.api.app_factory import build_orchestrator
from meetingbrain.api.settings import Settings
from meetingbrain.storage import LocalAudioStorage, SQLiteMeetingStore

from .errors import PipelineError
from .models import Meeting
from .pipeline import describe_meeting
from .stages import StageResult


def _settings(namespace: argparse.Namespace) -> Settings:
    return Settings(
        STORE_PATH=Path(namespace.store) if namespace.store else None,
        AUDIO_ROOT=Path(namespace.audio_root) if namespace.audio_root else None,
    )


def _emit(namespace: argparse.Namespace, payload: Any, text: str) -> None:
    if namespace.json:
        sys.stdout.write(json.dumps(payload, ensure_ascii=False, indent=2, default=str) + "\n")
    else:
        sys.stdout.write(text + "\n")


def _result_payload(result: StageResult) -> Dict[str, Any]:
    return {"stage": result.stage, **result.to_payload()}


def _format_result(result: StageResult) -> str:
    head = f"[{result.stage}] " + ("ok " + json.dumps(result.counts) if result.success else f"failed: {result.error}")
    return "\n".join([head, *result.steps])


def create_command(namespace: argparse.Namespace) -> int:
    settings = _settings(namespace)
    store = SQLiteMeetingStore(settings.STORE_PATH)
    audio = LocalAudioStorage(settings.AUDIO_ROOT)
    audio_path = audio.import_file(Path(namespace.audio), owner=namespace.user)
    meeting = store.add_meeting(
        Meeting(
            id=uuid4().hex,
            user_id=namespace.user,
            title=namespace.title,
            language_code=namespace.language,
            audio_path=audio_path,
        )
    )
    _emit(namespace, {"id": meeting.id, "audio_path": audio_path}, meeting.id)
    if namespace.run:
        return run_command(_with_meeting(namespace, meeting.id))
    return 0


def _with_meeting(namespace: argparse.Namespace, meeting_id: str) -> argparse.Namespace:
    values = dict(vars(namespace))
    values["meeting_id"] = meeting_id
    return argparse.Namespace(**values)


def run_command(namespace: argparse.Namespace) -> int:
    orchestrator = build_orchestrator(_settings(namespace))
    results = orchestrator.run(namespace.meeting_id)
    view = orchestrator.describe(namespace.meeting_id)
    _emit(
        namespace,
        {"meeting_id": namespace.meeting_id, "status": view["status"], "stages": [_result_payload(r) for r in results]},
        "\n".join([*(_format_result(r) for r in results), f"status: {view['status']}"]),
    )
    return 0 if view["status"] == "done" else 1


def stage_command(namespace: argparse.Namespace) -> int:
    orchestrator = build_orchestrator(_settings(namespace))
    if namespace.with_retries:
        result = orchestrator.invoke(namespace.stage, namespace.meeting_id)
    else:
        result = orchestrator.stage(namespace.stage).run(namespace.meeting_id)
    _emit(namespace, _result_payload(result), _format_result(result))
    return 0 if result.success else 1


def retry_command(namespace: argparse.Namespace) -> int:
    orchestrator = build_orchestrator(_settings(namespace))
    result = orchestrator.retry(namespace.meeting_id)
    _emit(namespace, _result_payload(result), _format_result(result))
    return 0 if result.success else 1


def status_command(namespace: argparse.Namespace) -> int:
    store = SQLiteMeetingStore(_settings(namespace).STORE_PATH)
    view = describe_meeting(store, namespace.meeting_id)
    lines = [f"{key}: {value}" for key, value in view.items()]
    _emit(namespace, view, "\n".join(lines))
    return 0


def search_command(namespace: argparse.Namespace) -> int:
    orchestrator = build_orchestrator(_settings(namespace))
    hits = orchestrator.search(namespace.query, namespace.user, namespace.limit)
    payload = [hit.to_dict() for hit in hits]
    lines: List[str] = [
        f"{hit['similarity']:.2f}  [{hit['node_type']}] {hit['title']}  ({hit['meeting_title'] or '-'})"
        for hit in payload
    ]
    _emit(namespace, {"results": payload, "count": len(payload)}, "\n".join(lines) or "no matches")
    return 0


def graph_command(namespace: argparse.Namespace) -> int:
    store = SQLiteMeetingStore(_settings(namespace).STORE_PATH)
    describe_meeting(store, namespace.meeting_id)
    nodes = store.list_nodes(source_meeting_id=namespace.meeting_id)
    edges = store.list_edges([node.id for node in nodes if node.id]) if nodes else []
    payload = {
        "nodes": [
            {"id": node.id, "node_type": node.node_type.value, "title": node.title, "embedded": node.embedding is not None}
            for node in nodes
        ],
        "edges": [
            {"from": edge.from_node, "to": edge.to_node, "relation": edge.relation.value, "strength": edge.strength}
            for edge in edges
        ],
    }
    lines = [f"- [{node['node_type']}] {node['title']} ({node['id']})" for node in payload["nodes"]]
    lines += [f"  {edge['from']} -{edge['relation']}({edge['strength']:.2f})-> {edge['to']}" for edge in payload["edges"]]
    _emit(namespace, payload, "\n".join(lines) or "no nodes")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Meeting pipeline CLI")
    parser.add_argument("--store", help="SQLite store path (defaults to MEETING_STORE_PATH)")
    parser.add_argument("--audio-root", help="Audio storage directory (defaults to MEETING_AUDIO_ROOT)")
    parser.add_argument("--json", action="store_true", help="Output raw JSON")

    subparsers = parser.add_subparsers(dest="command", required=True)

    create_parser = subparsers.add_parser("create", help="Register a recorded meeting")
    create_parser.add_argument("--user", required=True, help="Owning user identifier")
    create_parser.add_argument("--title", required=True, help="Meeting title")
    create_parser.add_argument("--audio", required=True, help="Audio file to import")
    create_parser.add_argument("--language", default="my-MM", help="Language code (e.g. my-MM, en-US)")
    create_parser.add_argument("--run", action="store_true", help="Run the pipeline right away")
    create_parser.set_defaults(func=create_command)

    run_parser = subparsers.add_parser("run", help="Run a meeting through every remaining stage")
    run_parser.add_argument("meeting_id", help="Meeting identifier")
    run_parser.set_defaults(func=run_command)

    stage_parser = subparsers.add_parser("stage", help="Run a single stage once")
    stage_parser.add_argument("stage", help="transcription, analysis or linking")
    stage_parser.add_argument("meeting_id", help="Meeting identifier")
    stage_parser.add_argument("--with-retries", action="store_true", help="Retry retryable failures")
    stage_parser.set_defaults(func=stage_command)

    retry_parser = subparsers.add_parser("retry", help="Re-run the stage a failed meeting stopped in")
    retry_parser.add_argument("meeting_id", help="Meeting identifier")
    retry_parser.set_defaults(func=retry_command)

    status_parser = subparsers.add_parser("status", help="Show meeting status and counts")
    status_parser.add_argument("meeting_id", help="Meeting identifier")
    status_parser.set_defaults(func=status_command)

    search_parser = subparsers.add_parser("search", help="Semantic search over knowledge-graph nodes")
    search_parser.add_argument("query", help="Free-text query")
    search_parser.add_argument("--user", required=True, help="User whose nodes to search")
    search_parser.add_argument("--limit", type=int, default=10, help="Maximum results")
    search_parser.set_defaults(func=search_command)

    graph_parser = subparsers.add_parser("graph", help="List a meeting's graph nodes and edges")
    graph_parser.add_argument("meeting_id", help="Meeting identifier")
    graph_parser.set_defaults(func=graph_command)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        return args.func(args)
    except (PipelineError, ValueError) as exc:
        sys.stderr.write(f"error: {exc}\n")
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
