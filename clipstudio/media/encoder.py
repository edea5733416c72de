"""Bounded-time FFmpeg invocations for derivative media.

Every encode runs in its own thread and owns exactly one FFmpeg process and
one scratch directory. The caller receives an :class:`EncodeTask`, a small
future wrapper that can be cancelled independently of any sibling task.
"""

from __future__ import annotations

import io
import logging
import shutil
import subprocess
import tempfile
import threading
import time
from concurrent.futures import CancelledError, Future
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Protocol

from PIL import Image, UnidentifiedImageError

from ..services.errors import EncodeError, EncodeErrorKind


LOGGER = logging.getLogger(__name__)

DEFAULT_THUMBNAIL_TIMEOUT = 60.0
_TERMINATE_GRACE_SECONDS = 5.0


@dataclass(frozen=True)
class ThumbnailSpec:
    """Single-frame extraction settings."""

    offset: str = "00:00:01"
    width: int = 320
    quality: int = 2
    extension: str = ".jpg"
    content_type: str = "image/jpeg"

    def ffmpeg_arguments(self, source_location: str, output: Path) -> List[str]:
        return [
            "-hide_banner",
            "-loglevel",
            "error",
            "-ss",
            self.offset,
            "-i",
            source_location,
            "-vframes",
            "1",
            "-vf",
            f"scale={self.width}:-1",
            "-q:v",
            str(self.quality),
            "-y",
            str(output),
        ]


@dataclass
class EncodedArtifact:
    data: bytes
    content_type: str
    width: int
    height: int
    elapsed_ms: float


class EncodeTask:
    """Handle on a running encode."""

    def __init__(self, future: "Future[EncodedArtifact]", cancel_event: threading.Event) -> None:
        self._future = future
        self._cancel_event = cancel_event

    def cancel(self) -> None:
        """Stop the encode; the running process, if any, is killed."""

        self._cancel_event.set()
        self._future.cancel()

    def done(self) -> bool:
        return self._future.done()

    def result(self, timeout: Optional[float] = None) -> EncodedArtifact:
        """Return the artifact or raise :class:`EncodeError`."""

        try:
            return self._future.result(timeout=timeout)
        except CancelledError as error:
            raise EncodeError(EncodeErrorKind.ENCODER_FAILED, "Encoding cancelled") from error


class Encoder(Protocol):
    """Protocol describing a thumbnail encoding backend."""

    def submit(self, source_location: str, spec: ThumbnailSpec, *, timeout: float) -> EncodeTask:
        """Start encoding *source_location* according to *spec*."""


class FFmpegEncoder:
    """Encoder backed by a local FFmpeg binary."""

    def __init__(
        self,
        binary: Optional[str] = None,
        *,
        work_dir: Optional[Path] = None,
        poll_interval: float = 0.1,
    ) -> None:
        self._binary = binary
        self._work_dir = work_dir
        self._poll_interval = max(poll_interval, 0.01)

    def submit(
        self,
        source_location: str,
        spec: ThumbnailSpec,
        *,
        timeout: float = DEFAULT_THUMBNAIL_TIMEOUT,
    ) -> EncodeTask:
        future: "Future[EncodedArtifact]" = Future()
        cancel_event = threading.Event()

        def _worker() -> None:
            if not future.set_running_or_notify_cancel():
                return
            try:
                artifact = self._run(source_location, spec, timeout, cancel_event)
            except BaseException as error:  # noqa: BLE001 - forwarded to the waiting caller
                future.set_exception(error)
            else:
                future.set_result(artifact)

        threading.Thread(target=_worker, name="encode-task", daemon=True).start()
        return EncodeTask(future, cancel_event)

    def encode(
        self,
        source_location: str,
        spec: ThumbnailSpec,
        *,
        timeout: float = DEFAULT_THUMBNAIL_TIMEOUT,
    ) -> EncodedArtifact:
        return self.submit(source_location, spec, timeout=timeout).result()

    def _resolve_binary(self) -> str:
        binary = self._binary or shutil.which("ffmpeg")
        if binary is None:
            raise EncodeError(
                EncodeErrorKind.ENCODER_FAILED,
                "Thumbnail generation requires FFmpeg to be installed on the server.",
            )
        return binary

    def _run(
        self,
        source_location: str,
        spec: ThumbnailSpec,
        timeout: float,
        cancel_event: threading.Event,
    ) -> EncodedArtifact:
        binary = self._resolve_binary()
        started = time.perf_counter()
        if self._work_dir is not None:
            self._work_dir.mkdir(parents=True, exist_ok=True)
        with tempfile.TemporaryDirectory(prefix="thumb-", dir=self._work_dir) as scratch:
            output = Path(scratch) / f"thumbnail{spec.extension}"
            command = [binary, *spec.ffmpeg_arguments(source_location, output)]
            LOGGER.debug("Executing FFmpeg command: %s", " ".join(command))
            try:
                process = subprocess.Popen(
                    command,
                    stdin=subprocess.DEVNULL,
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.PIPE,
                )
            except OSError as error:
                raise EncodeError(
                    EncodeErrorKind.ENCODER_FAILED,
                    "Unable to launch FFmpeg.",
                    diagnostic=str(error),
                ) from error

            stderr = self._wait(process, time.monotonic() + timeout, cancel_event, timeout)
            if process.returncode != 0:
                details = stderr.decode("utf-8", errors="ignore").strip().splitlines()
                LOGGER.debug("FFmpeg failed (code=%s) for %s: %s", process.returncode, source_location, details)
                raise EncodeError(
                    EncodeErrorKind.ENCODER_FAILED,
                    f"FFmpeg exited with status {process.returncode}.",
                    diagnostic=details[0] if details else None,
                )

            try:
                data = output.read_bytes()
            except OSError as error:
                raise EncodeError(
                    EncodeErrorKind.ENCODER_FAILED,
                    "FFmpeg reported success but produced no output.",
                    diagnostic=str(error),
                ) from error

        width, height = _inspect_image(data)
        elapsed_ms = (time.perf_counter() - started) * 1000.0
        LOGGER.debug("Encoded %sx%s thumbnail for %s in %.1f ms", width, height, source_location, elapsed_ms)
        return EncodedArtifact(
            data=data,
            content_type=spec.content_type,
            width=width,
            height=height,
            elapsed_ms=elapsed_ms,
        )

    def _wait(
        self,
        process: "subprocess.Popen[bytes]",
        deadline: float,
        cancel_event: threading.Event,
        timeout: float,
    ) -> bytes:
        while True:
            if cancel_event.is_set():
                _terminate(process)
                raise EncodeError(EncodeErrorKind.ENCODER_FAILED, "Encoding cancelled")
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                _terminate(process)
                raise EncodeError(
                    EncodeErrorKind.TIMEOUT,
                    f"FFmpeg did not finish within {timeout:g} seconds.",
                )
            try:
                _, stderr = process.communicate(timeout=min(remaining, self._poll_interval))
            except subprocess.TimeoutExpired:
                continue
            return stderr or b""


def _terminate(process: "subprocess.Popen[bytes]") -> None:
    process.kill()
    try:
        process.communicate(timeout=_TERMINATE_GRACE_SECONDS)
    except subprocess.TimeoutExpired:
        LOGGER.warning("FFmpeg process %s did not exit after kill", process.pid)


def _inspect_image(data: bytes) -> tuple[int, int]:
    if not data:
        raise EncodeError(EncodeErrorKind.ENCODER_FAILED, "FFmpeg produced an empty image.")
    try:
        with Image.open(io.BytesIO(data)) as image:
            width, height = image.size
            image.verify()
    except (UnidentifiedImageError, OSError, SyntaxError) as error:
        raise EncodeError(
            EncodeErrorKind.ENCODER_FAILED,
            "FFmpeg output is not a readable image.",
            diagnostic=str(error),
        ) from error
    return width, height


__all__ = [
    "DEFAULT_THUMBNAIL_TIMEOUT",
    "EncodeTask",
    "EncodedArtifact",
    "Encoder",
    "FFmpegEncoder",
    "ThumbnailSpec",
]
