"""Catalogue-wide maintenance passes run from the admin surface."""

from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional

from ..media.ladder import missing_targets, normalize_tier
from .errors import ClipStudioError, ValidationError
from .renditions import RenditionDispatcher
from .storage import ClipRecord, ClipRepository
from .thumbnails import ThumbnailBatchRunner


LOGGER = logging.getLogger(__name__)

STATUS_SUCCESS = "success"
STATUS_SKIPPED = "skipped"
STATUS_ERROR = "error"


@dataclass
class ClipMaintenanceResult:
    clip_id: str
    status: str = STATUS_SUCCESS
    message: str = ""
    thumbnail: bool = False
    renditions: List[str] = field(default_factory=list)
    job_id: Optional[str] = None


@dataclass
class MaintenanceReport:
    results: List[ClipMaintenanceResult] = field(default_factory=list)

    @property
    def nothing_to_do(self) -> bool:
        return not self.results

    def summary(self) -> Dict[str, int]:
        counts = {STATUS_SUCCESS: 0, STATUS_ERROR: 0, STATUS_SKIPPED: 0}
        for result in self.results:
            counts[result.status] += 1
        return {
            "total": len(self.results),
            "success": counts[STATUS_SUCCESS],
            "errors": counts[STATUS_ERROR],
            "skipped": counts[STATUS_SKIPPED],
        }

    def as_dict(self) -> Dict[str, Any]:
        if self.nothing_to_do:
            return {"message": "No clips to process", "nothing_to_do": True}
        return {
            "nothing_to_do": False,
            "summary": self.summary(),
            "results": [asdict(result) for result in self.results],
        }


def _maintain_clip(
    repository: ClipRepository,
    clip: ClipRecord,
    thumbnail_runner: ThumbnailBatchRunner,
    dispatcher: Optional[RenditionDispatcher],
    dispatch: bool,
) -> ClipMaintenanceResult:
    result = ClipMaintenanceResult(clip_id=clip.id)
    messages: List[str] = []
    errors: List[str] = []
    notes: List[str] = []

    if not clip.thumbnail_url:
        outcome = thumbnail_runner.generate_for_clip(clip)
        if outcome.success:
            result.thumbnail = True
            messages.append("Thumbnail generated")
        else:
            errors.append(f"Thumbnail failed: {outcome.error}")

    existing = repository.list_rendition_resolutions(clip.id)
    missing = missing_targets(normalize_tier(clip.source_resolution), existing)
    if missing:
        result.renditions = missing
        if dispatch and dispatcher is not None:
            try:
                ack = dispatcher.dispatch(clip.id)
            except ClipStudioError as error:
                errors.append(f"Dispatch failed: {error.message}")
            else:
                result.renditions = list(ack.target_resolutions)
                result.job_id = ack.job_id
                if ack.nothing_to_do:
                    notes.append(ack.message)
                elif ack.job_id:
                    messages.append(f"Renditions dispatched: {', '.join(ack.target_resolutions)}")
        else:
            messages.append(f"Needs renditions: {', '.join(missing)}")

    if errors:
        result.status = STATUS_ERROR
        result.message = "; ".join(errors + messages + notes)
    elif messages:
        result.message = "; ".join(messages + notes)
    else:
        result.status = STATUS_SKIPPED
        result.message = "; ".join(notes) or "No changes needed"
    return result


def process_all(
    repository: ClipRepository,
    thumbnail_runner: ThumbnailBatchRunner,
    dispatcher: Optional[RenditionDispatcher] = None,
    *,
    dispatch: bool = False,
) -> MaintenanceReport:
    """Bring every clip up to date: thumbnail first, then renditions.

    Missing renditions are only reported unless *dispatch* is set, in which
    case they are handed to the render worker. A failing clip is recorded and
    the pass moves on.
    """

    report = MaintenanceReport()
    for clip in repository.list_clips():
        try:
            result = _maintain_clip(repository, clip, thumbnail_runner, dispatcher, dispatch)
        except Exception as error:  # noqa: BLE001 - recorded per clip
            LOGGER.exception("Maintenance failed for clip %s", clip.id)
            result = ClipMaintenanceResult(
                clip_id=clip.id,
                status=STATUS_ERROR,
                message=str(error) or error.__class__.__name__,
            )
        report.results.append(result)

    if report.nothing_to_do:
        LOGGER.info("Maintenance pass found no clips")
    else:
        LOGGER.info("Maintenance pass finished: %s", report.summary())
    return report


@dataclass
class DurationUpdateResult:
    clip_id: Optional[str]
    success: bool
    error: Optional[str] = None


def _coerce_duration(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    duration = float(value)
    if not math.isfinite(duration) or duration <= 0:
        return None
    return duration


def apply_duration_updates(
    repository: ClipRepository,
    updates: Iterable[Mapping[str, Any]],
) -> List[DurationUpdateResult]:
    """Apply ``{"clip_id", "duration"}`` items; each one succeeds or fails alone."""

    items = list(updates)
    if not items:
        raise ValidationError("No updates provided")

    results: List[DurationUpdateResult] = []
    for item in items:
        clip_id = item.get("clip_id")
        duration = _coerce_duration(item.get("duration"))
        if not clip_id or duration is None:
            results.append(DurationUpdateResult(clip_id=clip_id, success=False, error="Invalid data"))
            continue
        if repository.update_clip_duration(str(clip_id), duration):
            results.append(DurationUpdateResult(clip_id=str(clip_id), success=True))
        else:
            results.append(
                DurationUpdateResult(clip_id=str(clip_id), success=False, error="Clip not found")
            )

    succeeded = sum(1 for result in results if result.success)
    LOGGER.info("Updated %s clip durations, %s failed", succeeded, len(results) - succeeded)
    return results


__all__ = [
    "ClipMaintenanceResult",
    "DurationUpdateResult",
    "MaintenanceReport",
    "apply_duration_updates",
    "process_all",
]
