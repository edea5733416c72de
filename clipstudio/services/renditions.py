"""Delegation of rendition encodes to the remote render worker."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from ..media.ladder import (
    RESOLUTION_LADDER,
    dimensions_for,
    is_known_tier,
    missing_targets,
    normalize_tier,
)
from .errors import DispatchError, NotFoundError, ValidationError
from .events import emit_task_event
from .storage import ClipRecord, ClipRepository, RenditionRecord


LOGGER = logging.getLogger(__name__)

GENERATE_RENDITIONS_PATH = "/generate-renditions"


@dataclass(frozen=True)
class DispatchRequest:
    """Body of one ``POST /generate-renditions`` call."""

    asset_id: str
    source_url: str
    source_resolution: str
    target_resolutions: List[str]
    duration: Optional[float]

    def to_payload(self) -> Dict[str, Any]:
        return {
            "assetId": self.asset_id,
            "sourceUrl": self.source_url,
            "sourceResolution": self.source_resolution,
            "targetResolutions": list(self.target_resolutions),
            "duration": self.duration,
        }


@dataclass
class RenditionPlan:
    clip: ClipRecord
    source_resolution: str
    existing_resolutions: List[str]
    missing_resolutions: List[str]

    @property
    def has_cascade(self) -> bool:
        entry = RESOLUTION_LADDER.get(self.source_resolution)
        return bool(entry and entry.generates)


@dataclass
class DispatchAck:
    clip_id: str
    source_resolution: str
    message: str
    target_resolutions: List[str] = field(default_factory=list)
    existing_resolutions: List[str] = field(default_factory=list)
    job_id: Optional[str] = None
    nothing_to_do: bool = False

    def as_dict(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "clip_id": self.clip_id,
            "source_resolution": self.source_resolution,
            "target_resolutions": list(self.target_resolutions),
            "existing_resolutions": list(self.existing_resolutions),
            "job_id": self.job_id,
            "nothing_to_do": self.nothing_to_do,
        }


class RenditionDispatcher:
    """Work out which renditions a clip lacks and hand them to the worker.

    The dispatcher never waits for encoding to finish: the worker answers with
    a job id as soon as the work is queued and later reports each produced
    file through :meth:`register_rendition`.
    """

    def __init__(
        self,
        repository: ClipRepository,
        worker_url: str,
        *,
        client: Optional[httpx.Client] = None,
        timeout: float = 10.0,
    ) -> None:
        self._repository = repository
        self._worker_url = worker_url.rstrip("/")
        self._client = client or httpx.Client(timeout=timeout)

    def close(self) -> None:
        self._client.close()

    def plan(self, clip_id: str) -> RenditionPlan:
        """Re-read the clip and its renditions and compute the missing tiers."""

        clip = self._repository.get_clip(clip_id)
        if clip is None:
            raise NotFoundError("Clip not found")
        source_resolution = normalize_tier(clip.source_resolution)
        existing = self._repository.list_rendition_resolutions(clip_id)
        return RenditionPlan(
            clip=clip,
            source_resolution=source_resolution,
            existing_resolutions=sorted(existing),
            missing_resolutions=missing_targets(source_resolution, existing),
        )

    def dispatch(self, clip_id: str) -> DispatchAck:
        plan = self.plan(clip_id)
        return self.dispatch_plan(plan)

    def dispatch_plan(self, plan: RenditionPlan) -> DispatchAck:
        clip = plan.clip
        if not plan.has_cascade:
            return DispatchAck(
                clip_id=clip.id,
                source_resolution=plan.source_resolution,
                message="No renditions to generate for this resolution",
                existing_resolutions=plan.existing_resolutions,
                nothing_to_do=True,
            )
        if not plan.missing_resolutions:
            return DispatchAck(
                clip_id=clip.id,
                source_resolution=plan.source_resolution,
                message="All renditions already exist",
                existing_resolutions=plan.existing_resolutions,
                nothing_to_do=True,
            )

        request = DispatchRequest(
            asset_id=clip.id,
            source_url=clip.clip_link,
            source_resolution=plan.source_resolution,
            target_resolutions=plan.missing_resolutions,
            duration=clip.duration_seconds,
        )
        job_id = self._send(request)
        return DispatchAck(
            clip_id=clip.id,
            source_resolution=plan.source_resolution,
            message="Rendition generation started",
            target_resolutions=list(request.target_resolutions),
            existing_resolutions=plan.existing_resolutions,
            job_id=job_id,
        )

    def _send(self, request: DispatchRequest) -> str:
        url = f"{self._worker_url}{GENERATE_RENDITIONS_PATH}"
        started = time.perf_counter()
        try:
            response = self._client.post(url, json=request.to_payload())
        except httpx.HTTPError as error:
            LOGGER.error("Render worker at %s is unreachable: %s", url, error)
            raise DispatchError(
                "Failed to start rendition generation. Worker may be unavailable.",
                diagnostic=f"{error.__class__.__name__}: {error}",
            ) from error

        duration_ms = (time.perf_counter() - started) * 1000.0
        if not response.is_success:
            LOGGER.error("Render worker rejected job for clip %s: %s %s", request.asset_id, response.status_code, response.text)
            raise DispatchError(
                "Failed to start rendition generation. Worker may be unavailable.",
                diagnostic=f"HTTP {response.status_code}: {response.text[:500]}",
            )

        try:
            body = response.json()
        except ValueError as error:
            raise DispatchError(
                "Render worker returned an unreadable response.",
                diagnostic=response.text[:500],
            ) from error
        job_id = body.get("jobId") if isinstance(body, dict) else None
        if not job_id:
            raise DispatchError(
                "Render worker response did not include a job id.",
                diagnostic=response.text[:500],
            )

        emit_task_event(
            "dispatched",
            "Rendition job accepted by worker",
            payload={
                "clip_id": request.asset_id,
                "job_id": job_id,
                "targets": request.target_resolutions,
            },
            duration_ms=duration_ms,
        )
        return str(job_id)

    def register_rendition(
        self,
        clip_id: str,
        resolution: str,
        clip_url: str,
        *,
        size_bytes: Optional[int] = None,
    ) -> RenditionRecord:
        """Record a rendition the worker produced for *clip_id*."""

        tier = normalize_tier(resolution)
        if not is_known_tier(tier):
            raise ValidationError(f"Unknown resolution '{resolution}'")
        if not clip_url.strip():
            raise ValidationError("Rendition URL is required")
        clip = self._repository.get_clip(clip_id)
        if clip is None:
            raise NotFoundError("Clip not found")
        source_tier = normalize_tier(clip.source_resolution)
        if tier not in missing_targets(source_tier, ()):
            raise ValidationError(
                f"Resolution '{tier}' is not generated from a {source_tier} source"
            )
        width, height = dimensions_for(tier)
        record = self._repository.upsert_rendition(
            clip.id,
            tier,
            width=width,
            height=height,
            clip_url=clip_url.strip(),
            thumbnail_url=clip.thumbnail_url,
            duration_seconds=clip.duration_seconds,
            size_bytes=size_bytes,
        )
        LOGGER.info("Registered %s rendition for clip %s", tier, clip.id)
        return record


__all__ = [
    "DispatchAck",
    "DispatchRequest",
    "RenditionDispatcher",
    "RenditionPlan",
]
