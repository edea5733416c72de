"""FastAPI application exposing the media orchestration core."""

from __future__ import annotations

import asyncio
import contextvars
import logging
import threading
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import asdict
from typing import Any, Callable, Dict, List, Optional, Set, TypeVar

from fastapi import FastAPI, Header, HTTPException, Query, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import FileResponse, JSONResponse
from pydantic import BaseModel, Field
from starlette.types import ASGIApp, Receive, Scope, Send

from ..config import AppConfig
from ..media.encoder import Encoder, FFmpegEncoder
from ..media.object_store import LocalObjectStore, ObjectStore, build_object_store
from ..services.agent_jobs import DEFAULT_LIST_LIMIT, AgentJobManager
from ..services.errors import ClipStudioError, NotFoundError, StorageError, UnauthorizedError
from ..services.events import emit_db_event, emit_structured_event
from ..services.maintenance import apply_duration_updates, process_all
from ..services.renditions import RenditionDispatcher
from ..services.storage import ClipRepository
from ..services.thumbnails import ThumbnailBatchRunner

T = TypeVar("T")


_REQUEST_ID_VAR: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "clipstudio_request_id",
    default=None,
)
_JOB_ID_VAR: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "clipstudio_job_id",
    default=None,
)


def _new_correlation_id() -> str:
    return uuid.uuid4().hex


def _collect_correlation_context() -> Dict[str, str]:
    context: Dict[str, str] = {}
    request_id = _REQUEST_ID_VAR.get()
    if request_id:
        context["request_id"] = request_id
    job_id = _JOB_ID_VAR.get()
    if job_id:
        context["job_id"] = job_id
    return context


class ContextualLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that injects correlation context into records."""

    def process(self, msg: Any, kwargs: Dict[str, Any]) -> tuple[Any, Dict[str, Any]]:  # type: ignore[override]
        extra: Dict[str, Any] = dict(self.extra)
        provided = kwargs.get("extra")
        if isinstance(provided, dict):
            extra.update(provided)
        for key, value in _collect_correlation_context().items():
            extra.setdefault(key, value)
        kwargs["extra"] = extra
        return msg, kwargs


LOGGER = ContextualLoggerAdapter(logging.getLogger(__name__), {})


class RequestContextMiddleware:
    """Assign a correlation identifier to each request and expose it via contextvars."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        request_id = _new_correlation_id()
        scope_state = scope.setdefault("state", {})
        if isinstance(scope_state, dict):
            scope_state["request_id"] = request_id
        else:
            setattr(scope_state, "request_id", request_id)

        async def _send_with_request_id(message: Dict[str, Any]) -> None:
            if message.get("type") == "http.response.start":
                headers = list(message.get("headers") or [])
                headers.append((b"x-request-id", request_id.encode("ascii")))
                message["headers"] = headers
            await send(message)

        request_token = _REQUEST_ID_VAR.set(request_id)
        job_token = _JOB_ID_VAR.set(None)
        try:
            await self.app(scope, receive, _send_with_request_id)
        finally:
            _JOB_ID_VAR.reset(job_token)
            _REQUEST_ID_VAR.reset(request_token)


def _normalize_root_path(value: Optional[str]) -> str:
    if value is None:
        return ""
    normalized = value.strip()
    if not normalized:
        return ""
    if not normalized.startswith("/"):
        normalized = f"/{normalized}"
    return normalized.rstrip("/")


class RenditionCallbackPayload(BaseModel):
    resolution: str
    clip_url: str
    size_bytes: Optional[int] = Field(default=None, ge=0)


class DurationUpdateEntry(BaseModel):
    clip_id: Optional[str] = None
    duration: Any = None


class DurationUpdatePayload(BaseModel):
    updates: List[DurationUpdateEntry] = Field(default_factory=list)


def _require_user(user_id: Optional[str]) -> str:
    cleaned = (user_id or "").strip()
    if not cleaned:
        raise UnauthorizedError("Unauthorized")
    return cleaned


def create_app(
    repository: ClipRepository,
    *,
    config: AppConfig,
    encoder: Optional[Encoder] = None,
    object_store: Optional[ObjectStore] = None,
    dispatcher: Optional[RenditionDispatcher] = None,
    root_path: str | None = None,
) -> FastAPI:
    """Return a configured FastAPI application."""

    app = FastAPI(
        title="Clip Studio",
        description="Media job orchestration for the clip library",
        root_path=_normalize_root_path(root_path),
    )

    def _repository_event_emitter(event_type: str, message: str, **kwargs: Any) -> None:
        correlation = _collect_correlation_context()
        if event_type == "DB_QUERY":
            emit_db_event(message, correlation=correlation, **kwargs)
        else:
            emit_structured_event(event_type, message, correlation=correlation, **kwargs)

    repository.configure_event_emitter(_repository_event_emitter)
    app.add_middleware(RequestContextMiddleware)

    store = object_store or build_object_store(config)
    thumbnail_runner = ThumbnailBatchRunner(
        repository,
        encoder or FFmpegEncoder(work_dir=config.storage_root / "tmp"),
        store,
        timeout=config.thumbnail_timeout_seconds,
        max_workers=config.thumbnail_max_workers,
    )
    owns_dispatcher = dispatcher is None
    rendition_dispatcher = dispatcher or RenditionDispatcher(
        repository,
        config.worker_url,
        timeout=config.worker_timeout_seconds,
    )
    job_manager = AgentJobManager(repository)

    app.state.repository = repository
    app.state.object_store = store
    app.state.thumbnail_runner = thumbnail_runner
    app.state.dispatcher = rendition_dispatcher
    app.state.job_manager = job_manager

    background_executor = ThreadPoolExecutor(
        max_workers=1,
        thread_name_prefix="media-processing",
    )
    app.state.background_executor = background_executor
    app.state.background_jobs: Set[Future] = set()
    app.state.background_jobs_lock = threading.Lock()

    async def _run_serialized_background_task(
        operation: Callable[[], T],
        *,
        context_label: str,
    ) -> T:
        """Run ``operation`` on the shared media worker, queueing behind earlier runs."""

        jobs: Set[Future] = app.state.background_jobs
        jobs_lock: threading.Lock = app.state.background_jobs_lock

        job_token = _JOB_ID_VAR.set(_new_correlation_id())
        loop = asyncio.get_running_loop()
        parent_context = contextvars.copy_context()
        future = loop.run_in_executor(background_executor, parent_context.run, operation)

        with jobs_lock:
            active_jobs = {job for job in jobs if not job.done()}
            jobs.clear()
            jobs.update(active_jobs)
            jobs.add(future)
        if active_jobs:
            LOGGER.debug("Queued %s task behind %s active job(s)", context_label, len(active_jobs))

        try:
            return await future
        finally:
            with jobs_lock:
                jobs.discard(future)
            _JOB_ID_VAR.reset(job_token)

    def _shutdown() -> None:
        background_executor.shutdown(wait=True, cancel_futures=True)
        if owns_dispatcher:
            rendition_dispatcher.close()

    app.add_event_handler("shutdown", _shutdown)

    @app.exception_handler(ClipStudioError)
    async def handle_clipstudio_error(request: Request, error: ClipStudioError) -> JSONResponse:
        if error.http_status >= 500:
            LOGGER.error("%s %s failed: %s (%s)", request.method, request.url.path, error.message, error.diagnostic)
        body: Dict[str, Any] = {"error": error.message}
        if error.diagnostic:
            body["diagnostic"] = error.diagnostic
        return JSONResponse(status_code=error.http_status, content=body)

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, error: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Invalid request", "details": jsonable_encoder(error.errors())},
        )

    @app.post("/api/admin/clips/generate-thumbnails")
    async def generate_thumbnails() -> Dict[str, Any]:
        report = await _run_serialized_background_task(
            thumbnail_runner.reconcile,
            context_label="thumbnails",
        )
        return report.as_dict()

    @app.post("/api/admin/clips/process-all")
    async def process_all_clips(dispatch: bool = Query(False)) -> Dict[str, Any]:
        report = await _run_serialized_background_task(
            lambda: process_all(
                repository,
                thumbnail_runner,
                rendition_dispatcher,
                dispatch=dispatch,
            ),
            context_label="process-all",
        )
        return report.as_dict()

    @app.post("/api/admin/clips/update-duration")
    async def update_durations(payload: DurationUpdatePayload) -> Dict[str, Any]:
        results = apply_duration_updates(
            repository,
            [entry.model_dump() for entry in payload.updates],
        )
        succeeded = sum(1 for result in results if result.success)
        return {
            "success": succeeded,
            "failed": len(results) - succeeded,
            "results": [asdict(result) for result in results],
        }

    @app.post("/api/admin/clips/{clip_id}/generate-renditions")
    async def generate_renditions(clip_id: str) -> Dict[str, Any]:
        ack = await _run_serialized_background_task(
            lambda: rendition_dispatcher.dispatch(clip_id),
            context_label="renditions",
        )
        return ack.as_dict()

    @app.post("/api/admin/clips/{clip_id}/renditions", status_code=status.HTTP_201_CREATED)
    async def register_rendition(clip_id: str, payload: RenditionCallbackPayload) -> Dict[str, Any]:
        record = rendition_dispatcher.register_rendition(
            clip_id,
            payload.resolution,
            payload.clip_url,
            size_bytes=payload.size_bytes,
        )
        return {"rendition": asdict(record)}

    @app.post("/api/admin/voices/{voice_id}/default")
    async def set_default_voice(voice_id: str) -> Dict[str, Any]:
        if not repository.set_default_voice(voice_id):
            raise NotFoundError("Voice not found")
        return {
            "success": True,
            "voices": [asdict(voice) for voice in repository.list_voices()],
        }

    @app.get("/api/agent/jobs")
    async def list_agent_jobs(
        status_filter: Optional[str] = Query(None, alias="status"),
        limit: int = Query(DEFAULT_LIST_LIMIT),
        x_user_id: Optional[str] = Header(None),
    ) -> Dict[str, Any]:
        owner = _require_user(x_user_id)
        jobs = job_manager.list(owner, status=status_filter, limit=limit)
        return {"jobs": [asdict(job) for job in jobs]}

    @app.get("/api/agent/jobs/{job_id}")
    async def get_agent_job(job_id: str, x_user_id: Optional[str] = Header(None)) -> Dict[str, Any]:
        owner = _require_user(x_user_id)
        return {"job": asdict(job_manager.get(job_id, owner))}

    @app.delete("/api/agent/jobs/{job_id}")
    async def cancel_agent_job(job_id: str, x_user_id: Optional[str] = Header(None)) -> Dict[str, Any]:
        owner = _require_user(x_user_id)
        job_manager.cancel(job_id, owner)
        return {"success": True, "message": "Job cancelled"}

    @app.get("/media/{key:path}")
    async def serve_media(key: str) -> FileResponse:
        if not isinstance(store, LocalObjectStore):
            raise HTTPException(status_code=404, detail="File not found")
        try:
            target = store.resolve(key)
        except StorageError as error:
            raise HTTPException(status_code=404, detail="File not found") from error
        if not target.is_file():
            raise HTTPException(status_code=404, detail="File not found")
        return FileResponse(target)

    return app


__all__ = ["RequestContextMiddleware", "create_app"]
