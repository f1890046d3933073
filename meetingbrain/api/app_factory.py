"""FastAPI application factory exposing the meeting pipeline stages."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, Callable, Dict, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from meetingbrain.agents.meeting.config import PipelineConfig
from meetingbrain.agents.meeting.errors import PipelineError
from meetingbrain.agents.meeting.gateway import AIGateway, create_gateway
from meetingbrain.agents.meeting.pipeline import PipelineOrchestrator
from meetingbrain.agents.meeting.stages import StageResult
from meetingbrain.storage import LocalAudioStorage, SQLiteMeetingStore

from . import schemas
from .settings import Settings

logger = logging.getLogger(__name__)

FUNCTION_ROUTES = {
    "/functions/transcribe-meeting": "transcription",
    "/functions/analyze-meeting": "analysis",
    "/functions/link-to-graph": "linking",
}


async def _read_json(request: Request) -> Dict[str, Any]:
    try:
        body = await request.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def _stage_response(result: StageResult) -> JSONResponse:
    status_code = 200 if result.success else result.http_status
    return JSONResponse(result.to_payload(), status_code=status_code)


def create_app(*, settings: Settings, orchestrator_provider: Callable[[], PipelineOrchestrator]) -> FastAPI:
    """Create the pipeline app; ``orchestrator_provider`` wires store and gateway."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.orchestrator = None
        if settings.STARTUP_LOAD:
            try:
                app.state.orchestrator = orchestrator_provider()
                logger.info("pipeline orchestrator initialised during startup")
            except Exception:  # pragma: no cover - retried lazily per request
                logger.exception("failed to initialise orchestrator during startup")
        yield
        gateway = getattr(app.state.orchestrator, "gateway", None)
        close = getattr(gateway, "close", None)
        if callable(close):
            try:
                close()
            except Exception:  # pragma: no cover - shutdown continues
                logger.exception("failed to close AI gateway cleanly")

    app = FastAPI(title="MeetingBrain Pipeline", lifespan=lifespan)

    def _ensure_orchestrator(request: Request) -> PipelineOrchestrator:
        orchestrator = getattr(request.app.state, "orchestrator", None)
        if orchestrator is None:
            try:
                orchestrator = orchestrator_provider()
                request.app.state.orchestrator = orchestrator
            except Exception as exc:
                logger.exception("pipeline orchestrator unavailable")
                raise HTTPException(status_code=503, detail="Pipeline not initialised") from exc
        return orchestrator

    @app.exception_handler(PipelineError)
    async def pipeline_error_handler(request: Request, exc: PipelineError) -> JSONResponse:
        return JSONResponse({"error": str(exc)}, status_code=exc.http_status)

    def _stage_endpoint(stage_name: str):
        async def endpoint(
            request: Request,
            orchestrator: PipelineOrchestrator = Depends(_ensure_orchestrator),
        ) -> JSONResponse:
            body = await _read_json(request)
            try:
                req = schemas.StageRequest.model_validate(body)
            except ValidationError:
                req = schemas.StageRequest()
            if not req.meeting_id:
                return JSONResponse({"error": "meeting_id required"}, status_code=400)
            stage = orchestrator.stage(stage_name)
            result = await run_in_threadpool(stage.run, req.meeting_id)
            return _stage_response(result)

        endpoint.__name__ = f"{stage_name}_endpoint"
        return endpoint

    for path, stage_name in FUNCTION_ROUTES.items():
        app.post(path)(_stage_endpoint(stage_name))

    @app.post("/functions/search-meetings")
    async def search_meetings(
        request: Request,
        orchestrator: PipelineOrchestrator = Depends(_ensure_orchestrator),
    ):
        body = await _read_json(request)
        try:
            req = schemas.SearchRequest.model_validate(body)
        except ValidationError:
            return JSONResponse({"error": "query and user_id required"}, status_code=400)
        if not req.query or not req.user_id:
            return JSONResponse({"error": "query and user_id required"}, status_code=400)
        try:
            hits = await run_in_threadpool(orchestrator.search, req.query, req.user_id, req.limit or 10)
        except ValueError as exc:
            return JSONResponse({"error": str(exc)}, status_code=400)
        results = [schemas.SearchResult(**hit.to_dict()) for hit in hits]
        return schemas.SearchResponse(results=results, count=len(results))

    @app.get("/api/meetings/{meeting_id}", response_model=schemas.MeetingView)
    def meeting_status(
        meeting_id: str,
        orchestrator: PipelineOrchestrator = Depends(_ensure_orchestrator),
    ) -> schemas.MeetingView:
        return schemas.MeetingView(**orchestrator.describe(meeting_id))

    @app.post("/api/meetings/{meeting_id}/retry")
    def retry_meeting(
        meeting_id: str,
        orchestrator: PipelineOrchestrator = Depends(_ensure_orchestrator),
    ) -> JSONResponse:
        return _stage_response(orchestrator.retry(meeting_id))

    @app.post("/api/meetings/{meeting_id}/run", response_model=schemas.RunResponse)
    def run_meeting(
        meeting_id: str,
        orchestrator: PipelineOrchestrator = Depends(_ensure_orchestrator),
    ) -> schemas.RunResponse:
        results = orchestrator.run(meeting_id)
        view = orchestrator.describe(meeting_id)
        return schemas.RunResponse(
            meeting_id=meeting_id,
            status=view["status"],
            stages=[{"stage": result.stage, **result.to_payload()} for result in results],
        )

    return app


def build_orchestrator(settings: Settings, *, gateway: Optional[AIGateway] = None) -> PipelineOrchestrator:
    """Wire the SQLite store, local audio storage and Gemini gateway from settings."""
    config = PipelineConfig.from_settings(settings)
    store = SQLiteMeetingStore(settings.STORE_PATH)
    audio = LocalAudioStorage(settings.AUDIO_ROOT)
    return PipelineOrchestrator(store, audio, gateway or create_gateway("gemini", config), config)


def create_default_app() -> FastAPI:
    settings = Settings()
    return create_app(settings=settings, orchestrator_provider=lambda: build_orchestrator(settings))
