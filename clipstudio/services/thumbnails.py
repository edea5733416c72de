"""Batch thumbnail generation with per-item failure accounting."""

from __future__ import annotations

import contextlib
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from ..media.encoder import DEFAULT_THUMBNAIL_TIMEOUT, Encoder, ThumbnailSpec
from ..media.object_store import ObjectStore, thumbnail_key
from .errors import EncodeError, StorageError
from .events import emit_task_event
from .storage import ClipRecord, ClipRepository


LOGGER = logging.getLogger(__name__)


@dataclass
class ThumbnailResult:
    """Outcome of one batch item."""

    clip_id: str
    success: bool
    error: Optional[str] = None
    error_kind: Optional[str] = None
    thumbnail_url: Optional[str] = None

    @classmethod
    def succeeded(cls, clip_id: str, thumbnail_url: str) -> "ThumbnailResult":
        return cls(clip_id=clip_id, success=True, thumbnail_url=thumbnail_url)

    @classmethod
    def failed(cls, clip_id: str, error: str, *, kind: Optional[str] = None) -> "ThumbnailResult":
        return cls(clip_id=clip_id, success=False, error=error, error_kind=kind)


@dataclass
class BatchReport:
    """Accumulates item outcomes; the batch itself never fails."""

    results: List[ThumbnailResult] = field(default_factory=list)
    nothing_to_do: bool = False

    @property
    def processed_count(self) -> int:
        return len(self.results)

    @property
    def success_count(self) -> int:
        return sum(1 for result in self.results if result.success)

    @property
    def failure_count(self) -> int:
        return self.processed_count - self.success_count

    @property
    def message(self) -> str:
        if self.nothing_to_do:
            return "All clips already have thumbnails"
        return f"Generated {self.success_count} thumbnails, {self.failure_count} failed"

    def record_success(self, clip_id: str, thumbnail_url: str) -> None:
        self.results.append(ThumbnailResult.succeeded(clip_id, thumbnail_url))

    def record_failure(self, clip_id: str, error: str, *, kind: Optional[str] = None) -> None:
        self.results.append(ThumbnailResult.failed(clip_id, error, kind=kind))

    def as_dict(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "nothing_to_do": self.nothing_to_do,
            "processed": self.processed_count,
            "successful": self.success_count,
            "failed": self.failure_count,
            "results": [asdict(result) for result in self.results],
        }


def _describe(error: Exception) -> str:
    diagnostic = getattr(error, "diagnostic", None)
    message = getattr(error, "message", None) or str(error) or error.__class__.__name__
    return f"{message} ({diagnostic})" if diagnostic else message


class ThumbnailBatchRunner:
    """Encode, upload and record thumbnails for a list of clips."""

    def __init__(
        self,
        repository: ClipRepository,
        encoder: Encoder,
        object_store: ObjectStore,
        *,
        spec: Optional[ThumbnailSpec] = None,
        timeout: float = DEFAULT_THUMBNAIL_TIMEOUT,
        max_workers: int = 1,
    ) -> None:
        self._repository = repository
        self._encoder = encoder
        self._object_store = object_store
        self._spec = spec or ThumbnailSpec()
        self._timeout = timeout
        self._max_workers = max(1, int(max_workers))

    def reconcile(self) -> BatchReport:
        """Generate thumbnails for every clip that has none."""

        return self.run_batch(self._repository.list_clips_without_thumbnail())

    def run_batch(self, work_items: Sequence[ClipRecord]) -> BatchReport:
        report = BatchReport()
        if not work_items:
            report.nothing_to_do = True
            LOGGER.info("Thumbnail batch skipped: nothing to do")
            return report

        started = time.perf_counter()
        if self._max_workers > 1 and len(work_items) > 1:
            workers = min(self._max_workers, len(work_items))
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="thumbnail-batch") as pool:
                outcomes = list(pool.map(self.generate_for_clip, work_items))
        else:
            outcomes = [self.generate_for_clip(clip) for clip in work_items]

        for outcome in outcomes:
            if outcome.success:
                report.record_success(outcome.clip_id, outcome.thumbnail_url or "")
            else:
                report.record_failure(outcome.clip_id, outcome.error or "", kind=outcome.error_kind)

        emit_task_event(
            "batch_finished",
            report.message,
            payload={
                "processed": report.processed_count,
                "successful": report.success_count,
                "failed": report.failure_count,
            },
            duration_ms=(time.perf_counter() - started) * 1000.0,
        )
        return report

    def generate_for_clip(self, clip: ClipRecord) -> ThumbnailResult:
        """Produce and persist the thumbnail of *clip*; never raises."""

        emit_task_event("item_started", "Generating thumbnail", payload={"clip_id": clip.id})
        try:
            result = self._generate(clip)
        except Exception as error:  # noqa: BLE001 - one item must not abort the batch
            LOGGER.exception("Unexpected failure generating thumbnail for clip %s", clip.id)
            result = ThumbnailResult.failed(clip.id, _describe(error), kind="unexpected")

        emit_task_event(
            "item_finished",
            "Thumbnail generated" if result.success else "Thumbnail failed",
            payload={"clip_id": clip.id, "success": result.success, "error": result.error},
            level=logging.INFO if result.success else logging.WARNING,
        )
        return result

    def _generate(self, clip: ClipRecord) -> ThumbnailResult:
        try:
            artifact = self._encoder.submit(clip.clip_link, self._spec, timeout=self._timeout).result()
        except EncodeError as error:
            return ThumbnailResult.failed(clip.id, _describe(error), kind=error.kind.value)

        try:
            thumbnail_url = self._object_store.upload(
                artifact.data, thumbnail_key(clip.id), artifact.content_type
            )
        except StorageError as error:
            # Metadata stays untouched so the clip is picked up again next run.
            return ThumbnailResult.failed(clip.id, _describe(error), kind="upload_failed")

        if not self._repository.update_clip_thumbnail(clip.id, thumbnail_url):
            # The clip vanished after upload; drop the orphaned object.
            with contextlib.suppress(StorageError):
                self._object_store.delete(thumbnail_key(clip.id))
            return ThumbnailResult.failed(clip.id, "Clip no longer exists", kind="not_found")

        return ThumbnailResult.succeeded(clip.id, thumbnail_url)


__all__ = ["BatchReport", "ThumbnailBatchRunner", "ThumbnailResult"]
