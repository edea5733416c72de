"""Persistence helpers backed by SQLite."""

from __future__ import annotations

import contextlib
import json
import logging
import sqlite3
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Set, Tuple

from ..config import AppConfig


@dataclass
class ClipRecord:
    id: str
    clip_link: str
    description: str
    source_resolution: Optional[str]
    duration_seconds: Optional[float]
    thumbnail_url: Optional[str]
    created_at: str


@dataclass
class RenditionRecord:
    id: int
    clip_id: str
    resolution: str
    width: int
    height: int
    clip_url: str
    thumbnail_url: Optional[str]
    duration_seconds: Optional[float]
    size_bytes: Optional[int]
    created_at: str


@dataclass
class AgentJobRecord:
    id: str
    user_id: str
    type: str
    status: str
    progress: int
    created_at: str
    input: Dict[str, Any] = field(default_factory=dict)
    state: Dict[str, Any] = field(default_factory=dict)
    output: Optional[Dict[str, Any]] = None
    error: Optional[Dict[str, Any]] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None


@dataclass
class VoiceRecord:
    id: str
    name: str
    is_default: bool


_CLIP_COLUMNS = (
    "id, clip_link, description, source_resolution, duration_seconds, thumbnail_url, created_at"
)
_RENDITION_COLUMNS = (
    "id, clip_id, resolution, width, height, clip_url, thumbnail_url, "
    "duration_seconds, size_bytes, created_at"
)
_AGENT_JOB_COLUMNS = (
    "id, user_id, type, status, progress, input, state, output, error, "
    "created_at, started_at, completed_at"
)
_JSON_JOB_FIELDS = ("input", "state", "output", "error")


LOGGER = logging.getLogger(__name__)


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


def _new_identifier() -> str:
    return str(uuid.uuid4())


def _dump_json(value: Optional[Dict[str, Any]]) -> Optional[str]:
    if value is None:
        return None
    return json.dumps(value, sort_keys=True)


def _load_json(raw: Optional[str]) -> Optional[Dict[str, Any]]:
    if raw is None or raw == "":
        return None
    try:
        decoded = json.loads(raw)
    except json.JSONDecodeError:
        LOGGER.warning("Discarding undecodable JSON column value: %.80s", raw)
        return None
    return decoded if isinstance(decoded, dict) else {"value": decoded}


def _agent_job_from_row(row: sqlite3.Row) -> AgentJobRecord:
    values = dict(row)
    for key in _JSON_JOB_FIELDS:
        values[key] = _load_json(values.get(key))
    values["input"] = values["input"] or {}
    values["state"] = values["state"] or {}
    return AgentJobRecord(**values)


class ClipRepository:
    """Repository exposing the clip, rendition, agent job and voice tables."""

    def __init__(
        self,
        config: AppConfig,
        *,
        event_emitter: Optional[Callable[..., None]] = None,
    ) -> None:
        self._db_path = config.database_file
        self._event_emitter: Optional[Callable[..., None]] = event_emitter

    def configure_event_emitter(self, emitter: Optional[Callable[..., None]]) -> None:
        """Register the callable responsible for emitting database events."""

        self._event_emitter = emitter

    @contextlib.contextmanager
    def _track_db_event(self, action: str, **payload: Any) -> Iterator[Dict[str, Any]]:
        """Emit a structured event capturing execution time for a DB action."""

        if self._event_emitter is None:
            yield payload
            return

        start = time.perf_counter()
        event_payload: Dict[str, Any] = dict(payload)
        try:
            yield event_payload
        except Exception as exc:
            event_payload.setdefault("status", "error")
            event_payload.setdefault("error", f"{exc.__class__.__name__}: {exc}")
            raise
        finally:
            duration_ms = (time.perf_counter() - start) * 1000.0
            event_payload.setdefault("status", "ok")
            filtered = {key: value for key, value in event_payload.items() if value is not None}
            self._event_emitter("DB_QUERY", action, payload=filtered, duration_ms=duration_ms)

    def _execute(
        self,
        connection: sqlite3.Connection,
        statement: str,
        parameters: Sequence[Any] | None = None,
        *,
        action: str,
    ) -> sqlite3.Cursor:
        params = tuple(parameters) if parameters is not None else ()
        LOGGER.debug("%s: %s", action, " ".join(statement.split())[:180])
        return connection.execute(statement, params)

    def _connect(self) -> sqlite3.Connection:
        LOGGER.debug("Opening SQLite connection to %s", self._db_path)
        connection = sqlite3.connect(self._db_path)
        connection.row_factory = sqlite3.Row
        connection.execute("PRAGMA foreign_keys = ON")
        return connection

    @contextlib.contextmanager
    def _session(self, *, immediate: bool = False) -> Iterator[sqlite3.Connection]:
        """Yield a connection whose work commits on success and rolls back on error."""

        connection = self._connect()
        try:
            with connection:
                if immediate:
                    connection.execute("BEGIN IMMEDIATE")
                yield connection
        finally:
            connection.close()

    # ------------------------------------------------------------------
    # Clips
    # ------------------------------------------------------------------
    def add_clip(
        self,
        clip_link: str,
        *,
        clip_id: Optional[str] = None,
        description: str = "",
        source_resolution: Optional[str] = "1080p",
        duration_seconds: Optional[float] = None,
        thumbnail_url: Optional[str] = None,
    ) -> str:
        identifier = clip_id or _new_identifier()
        with self._track_db_event("add_clip", table="clips", clip_id=identifier):
            with self._session() as connection:
                self._execute(
                    connection,
                    f"INSERT INTO clips({_CLIP_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?)",
                    (
                        identifier,
                        clip_link,
                        description,
                        source_resolution,
                        duration_seconds,
                        thumbnail_url,
                        _utcnow(),
                    ),
                    action="clips.insert",
                )
        LOGGER.debug("Clip %s inserted (resolution=%s)", identifier, source_resolution)
        return identifier

    def get_clip(self, clip_id: str) -> Optional[ClipRecord]:
        with self._track_db_event("get_clip", table="clips", clip_id=clip_id) as event:
            with self._session() as connection:
                row = self._execute(
                    connection,
                    f"SELECT {_CLIP_COLUMNS} FROM clips WHERE id = ?",
                    (clip_id,),
                    action="clips.get",
                ).fetchone()
            event["found"] = row is not None
            return ClipRecord(**row) if row else None

    def list_clips(self) -> List[ClipRecord]:
        with self._track_db_event("list_clips", table="clips") as event:
            with self._session() as connection:
                rows = self._execute(
                    connection,
                    f"SELECT {_CLIP_COLUMNS} FROM clips ORDER BY created_at DESC, id",
                    action="clips.list",
                ).fetchall()
            event["rowcount"] = len(rows)
            return [ClipRecord(**row) for row in rows]

    def list_clips_without_thumbnail(self) -> List[ClipRecord]:
        with self._track_db_event("list_clips_without_thumbnail", table="clips") as event:
            with self._session() as connection:
                rows = self._execute(
                    connection,
                    f"""
                    SELECT {_CLIP_COLUMNS} FROM clips
                    WHERE thumbnail_url IS NULL
                    ORDER BY created_at, id
                    """,
                    action="clips.list_missing_thumbnail",
                ).fetchall()
            event["rowcount"] = len(rows)
            return [ClipRecord(**row) for row in rows]

    def update_clip_thumbnail(self, clip_id: str, thumbnail_url: str) -> bool:
        """Store *thumbnail_url* on the clip and every rendition of it."""

        with self._track_db_event("update_clip_thumbnail", table="clips", clip_id=clip_id) as event:
            with self._session() as connection:
                cursor = self._execute(
                    connection,
                    "UPDATE clips SET thumbnail_url = ? WHERE id = ?",
                    (thumbnail_url, clip_id),
                    action="clips.update_thumbnail",
                )
                updated = cursor.rowcount > 0
                if updated:
                    self._execute(
                        connection,
                        "UPDATE clip_renditions SET thumbnail_url = ? WHERE clip_id = ?",
                        (thumbnail_url, clip_id),
                        action="clip_renditions.update_thumbnail",
                    )
            event["updated"] = updated
            return updated

    def update_clip_duration(self, clip_id: str, duration_seconds: float) -> bool:
        """Set the clip duration and mirror it onto the clip's renditions."""

        with self._track_db_event("update_clip_duration", table="clips", clip_id=clip_id) as event:
            with self._session() as connection:
                cursor = self._execute(
                    connection,
                    "UPDATE clips SET duration_seconds = ? WHERE id = ?",
                    (duration_seconds, clip_id),
                    action="clips.update_duration",
                )
                updated = cursor.rowcount > 0
                if updated:
                    self._execute(
                        connection,
                        "UPDATE clip_renditions SET duration_seconds = ? WHERE clip_id = ?",
                        (duration_seconds, clip_id),
                        action="clip_renditions.update_duration",
                    )
            event["updated"] = updated
            return updated

    # ------------------------------------------------------------------
    # Renditions
    # ------------------------------------------------------------------
    def list_renditions(self, clip_id: str) -> List[RenditionRecord]:
        with self._track_db_event("list_renditions", table="clip_renditions", clip_id=clip_id):
            with self._session() as connection:
                rows = self._execute(
                    connection,
                    f"""
                    SELECT {_RENDITION_COLUMNS} FROM clip_renditions
                    WHERE clip_id = ?
                    ORDER BY width DESC, id
                    """,
                    (clip_id,),
                    action="clip_renditions.list",
                ).fetchall()
            return [RenditionRecord(**row) for row in rows]

    def list_rendition_resolutions(self, clip_id: str) -> Set[str]:
        return {record.resolution for record in self.list_renditions(clip_id)}

    def upsert_rendition(
        self,
        clip_id: str,
        resolution: str,
        *,
        width: int,
        height: int,
        clip_url: str,
        thumbnail_url: Optional[str] = None,
        duration_seconds: Optional[float] = None,
        size_bytes: Optional[int] = None,
    ) -> RenditionRecord:
        """Insert or replace the single rendition stored for ``(clip_id, resolution)``."""

        with self._track_db_event(
            "upsert_rendition",
            table="clip_renditions",
            clip_id=clip_id,
            resolution=resolution,
        ):
            with self._session() as connection:
                self._execute(
                    connection,
                    """
                    INSERT INTO clip_renditions(
                        clip_id, resolution, width, height, clip_url,
                        thumbnail_url, duration_seconds, size_bytes, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(clip_id, resolution) DO UPDATE SET
                        width = excluded.width,
                        height = excluded.height,
                        clip_url = excluded.clip_url,
                        thumbnail_url = excluded.thumbnail_url,
                        duration_seconds = excluded.duration_seconds,
                        size_bytes = excluded.size_bytes
                    """,
                    (
                        clip_id,
                        resolution,
                        width,
                        height,
                        clip_url,
                        thumbnail_url,
                        duration_seconds,
                        size_bytes,
                        _utcnow(),
                    ),
                    action="clip_renditions.upsert",
                )
                row = self._execute(
                    connection,
                    f"SELECT {_RENDITION_COLUMNS} FROM clip_renditions WHERE clip_id = ? AND resolution = ?",
                    (clip_id, resolution),
                    action="clip_renditions.get",
                ).fetchone()
            return RenditionRecord(**row)

    # ------------------------------------------------------------------
    # Agent jobs
    # ------------------------------------------------------------------
    def add_agent_job(
        self,
        user_id: str,
        job_type: str,
        *,
        job_id: Optional[str] = None,
        status: str = "queued",
        progress: int = 0,
        input: Optional[Dict[str, Any]] = None,
    ) -> str:
        identifier = job_id or _new_identifier()
        with self._track_db_event("add_agent_job", table="agent_jobs", job_id=identifier):
            with self._session() as connection:
                self._execute(
                    connection,
                    """
                    INSERT INTO agent_jobs(id, user_id, type, status, progress, input, state, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, '{}', ?)
                    """,
                    (identifier, user_id, job_type, status, progress, _dump_json(input or {}), _utcnow()),
                    action="agent_jobs.insert",
                )
        return identifier

    def get_agent_job(self, job_id: str, user_id: str) -> Optional[AgentJobRecord]:
        with self._track_db_event("get_agent_job", table="agent_jobs", job_id=job_id) as event:
            with self._session() as connection:
                row = self._execute(
                    connection,
                    f"SELECT {_AGENT_JOB_COLUMNS} FROM agent_jobs WHERE id = ? AND user_id = ?",
                    (job_id, user_id),
                    action="agent_jobs.get",
                ).fetchone()
            event["found"] = row is not None
            return _agent_job_from_row(row) if row else None

    def list_agent_jobs(
        self,
        user_id: str,
        *,
        status: Optional[str] = None,
        limit: int = 20,
    ) -> List[AgentJobRecord]:
        clauses = ["user_id = ?"]
        params: List[Any] = [user_id]
        if status is not None:
            clauses.append("status = ?")
            params.append(status)
        params.append(int(limit))
        with self._track_db_event("list_agent_jobs", table="agent_jobs", status=status) as event:
            with self._session() as connection:
                rows = self._execute(
                    connection,
                    f"""
                    SELECT {_AGENT_JOB_COLUMNS} FROM agent_jobs
                    WHERE {' AND '.join(clauses)}
                    ORDER BY created_at DESC, id
                    LIMIT ?
                    """,
                    params,
                    action="agent_jobs.list",
                ).fetchall()
            event["rowcount"] = len(rows)
            return [_agent_job_from_row(row) for row in rows]

    def update_agent_job_status(
        self,
        job_id: str,
        status: str,
        *,
        progress: Optional[int] = None,
    ) -> bool:
        assignments = ["status = ?"]
        params: List[Any] = [status]
        if progress is not None:
            assignments.append("progress = ?")
            params.append(int(progress))
        if status == "processing":
            assignments.append("started_at = COALESCE(started_at, ?)")
            params.append(_utcnow())
        elif status in {"completed", "failed"}:
            assignments.append("completed_at = ?")
            params.append(_utcnow())
        params.append(job_id)
        with self._track_db_event("update_agent_job_status", table="agent_jobs", job_id=job_id, status=status):
            with self._session() as connection:
                cursor = self._execute(
                    connection,
                    f"UPDATE agent_jobs SET {', '.join(assignments)} WHERE id = ?",
                    params,
                    action="agent_jobs.update_status",
                )
                return cursor.rowcount > 0

    def delete_agent_job_if_queued(
        self, job_id: str, user_id: str
    ) -> Tuple[Optional[AgentJobRecord], bool]:
        """Delete an owned job only while it is ``queued``.

        Returns the job as it was before the attempt (``None`` when no owned
        job exists) and whether it was deleted. The lookup and the delete run
        inside one write transaction.
        """

        with self._track_db_event("delete_agent_job", table="agent_jobs", job_id=job_id) as event:
            with self._session(immediate=True) as connection:
                row = self._execute(
                    connection,
                    f"SELECT {_AGENT_JOB_COLUMNS} FROM agent_jobs WHERE id = ? AND user_id = ?",
                    (job_id, user_id),
                    action="agent_jobs.get_for_update",
                ).fetchone()
                if row is None:
                    event["found"] = False
                    return None, False
                cursor = self._execute(
                    connection,
                    "DELETE FROM agent_jobs WHERE id = ? AND user_id = ? AND status = 'queued'",
                    (job_id, user_id),
                    action="agent_jobs.delete_queued",
                )
                deleted = cursor.rowcount > 0
            event.update({"found": True, "deleted": deleted})
            return _agent_job_from_row(row), deleted

    # ------------------------------------------------------------------
    # Voices
    # ------------------------------------------------------------------
    def add_voice(self, name: str, *, voice_id: Optional[str] = None, is_default: bool = False) -> str:
        identifier = voice_id or _new_identifier()
        with self._track_db_event("add_voice", table="voices", voice_id=identifier):
            with self._session() as connection:
                self._execute(
                    connection,
                    "INSERT INTO voices(id, name, is_default) VALUES (?, ?, ?)",
                    (identifier, name, int(is_default)),
                    action="voices.insert",
                )
        return identifier

    def list_voices(self) -> List[VoiceRecord]:
        with self._session() as connection:
            rows = self._execute(
                connection,
                "SELECT id, name, is_default FROM voices ORDER BY name, id",
                action="voices.list",
            ).fetchall()
        return [
            VoiceRecord(id=row["id"], name=row["name"], is_default=bool(row["is_default"]))
            for row in rows
        ]

    def set_default_voice(self, voice_id: str) -> bool:
        """Make *voice_id* the only default voice; ``False`` when it does not exist."""

        with self._track_db_event("set_default_voice", table="voices", voice_id=voice_id) as event:
            with self._session(immediate=True) as connection:
                exists = self._execute(
                    connection,
                    "SELECT 1 FROM voices WHERE id = ?",
                    (voice_id,),
                    action="voices.exists",
                ).fetchone()
                if exists is None:
                    event["found"] = False
                    return False
                self._execute(
                    connection,
                    "UPDATE voices SET is_default = (id = ?) WHERE is_default != (id = ?)",
                    (voice_id, voice_id),
                    action="voices.set_default",
                )
            event["found"] = True
            return True


__all__ = [
    "AgentJobRecord",
    "ClipRecord",
    "ClipRepository",
    "RenditionRecord",
    "VoiceRecord",
]
