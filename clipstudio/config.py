"""Configuration loading utilities for the Clip Studio backend."""

from __future__ import annotations

import contextlib
import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Tuple
from urllib.parse import urlparse


LOGGER = logging.getLogger(__name__)


_PERMISSION_SENTINEL = ".clipstudio_write_check"

DEFAULT_WORKER_URL = "http://localhost:3001"
DEFAULT_PUBLIC_BASE_URL = "/media"
OBJECT_STORE_BACKENDS = ("local", "s3")

_ENV_OVERRIDES: Dict[str, str] = {
    "worker_url": "CLIPSTUDIO_WORKER_URL",
    "object_store": "CLIPSTUDIO_OBJECT_STORE",
    "s3_bucket": "CLIPSTUDIO_S3_BUCKET",
    "s3_endpoint_url": "CLIPSTUDIO_S3_ENDPOINT_URL",
    "public_base_url": "CLIPSTUDIO_PUBLIC_BASE_URL",
}


def _ensure_writable_directory(path: Path) -> bool:
    """Return ``True`` if *path* can be created and written to."""

    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError:
        return False

    test_file = path / _PERMISSION_SENTINEL
    try:
        with test_file.open("w", encoding="utf-8") as handle:
            handle.write("ok")
    except OSError:
        return False
    finally:
        with contextlib.suppress(OSError):
            test_file.unlink()

    return True


def _select_writable_directory(
    preferred: Path,
    *,
    label: str,
    fallbacks: Iterable[Path] = (),
) -> Tuple[Path, bool]:
    """Return a usable directory based on ``preferred`` and ``fallbacks``.

    The first writable candidate wins. The returned flag tells whether a
    fallback was used. When nothing can be prepared ``preferred`` is returned
    unchanged and the bootstrapper reports the problem later.
    """

    preferred = preferred.resolve()
    if _ensure_writable_directory(preferred):
        return preferred, False

    for fallback in fallbacks:
        candidate = fallback.resolve()
        if candidate == preferred:
            continue
        if _ensure_writable_directory(candidate):
            LOGGER.warning(
                "Preferred %s directory '%s' is not writable; using fallback '%s'.",
                label,
                preferred,
                candidate,
            )
            return candidate, True

    LOGGER.warning(
        "%s directory '%s' is not writable and no fallback is available.",
        label.capitalize(),
        preferred,
    )
    return preferred, False


def _coerce_positive(value: Any, default: float, *, label: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        LOGGER.warning("Ignoring invalid %s value %r; using %s.", label, value, default)
        return default
    if number <= 0:
        LOGGER.warning("Ignoring non-positive %s value %r; using %s.", label, value, default)
        return default
    return number


@dataclass(frozen=True)
class AppConfig:
    """Runtime paths and collaborator settings for the application."""

    storage_root: Path
    database_file: Path
    media_root: Path
    worker_url: str = DEFAULT_WORKER_URL
    worker_timeout_seconds: float = 10.0
    thumbnail_timeout_seconds: float = 60.0
    thumbnail_max_workers: int = 1
    object_store: str = "local"
    s3_bucket: Optional[str] = None
    s3_endpoint_url: Optional[str] = None
    public_base_url: str = DEFAULT_PUBLIC_BASE_URL

    @classmethod
    def from_mapping(cls, mapping: Dict[str, Any], *, base_path: Path) -> "AppConfig":
        values = dict(mapping)
        for key, variable in _ENV_OVERRIDES.items():
            override = (os.environ.get(variable) or "").strip()
            if override:
                values[key] = override

        preferred_storage = (base_path / values["storage_root"]).resolve()
        storage_root, storage_fallback_used = _select_writable_directory(
            preferred_storage,
            label="storage",
            fallbacks=(Path.home() / ".clipstudio" / "storage",),
        )

        database_file = (base_path / values["database_file"]).resolve()
        if storage_fallback_used:
            try:
                relative_database = database_file.relative_to(preferred_storage)
            except ValueError:
                relative_database = None
            if relative_database is not None:
                database_file = (storage_root / relative_database).resolve()
                LOGGER.warning("Database relocated with storage root to '%s'.", database_file)

        media_root, _ = _select_writable_directory(
            (base_path / values.get("media_root", "media")).resolve(),
            label="media",
            fallbacks=(storage_root / "_media",),
        )

        object_store = str(values.get("object_store") or "local").strip().lower()
        if object_store not in OBJECT_STORE_BACKENDS:
            raise ValueError(
                f"Unsupported object store '{object_store}'; "
                f"expected one of {', '.join(OBJECT_STORE_BACKENDS)}."
            )

        public_base_url = str(values.get("public_base_url") or "").strip().rstrip("/")
        if object_store == "s3":
            parsed = urlparse(public_base_url)
            if parsed.scheme not in ("http", "https") or not parsed.netloc:
                raise ValueError(
                    "The s3 object store needs an absolute public_base_url (http or https)."
                )
        public_base_url = public_base_url or DEFAULT_PUBLIC_BASE_URL

        max_workers = int(
            _coerce_positive(values.get("thumbnail_max_workers", 1), 1, label="thumbnail_max_workers")
        )

        return cls(
            storage_root=storage_root,
            database_file=database_file,
            media_root=media_root,
            worker_url=str(values.get("worker_url") or DEFAULT_WORKER_URL).rstrip("/"),
            worker_timeout_seconds=_coerce_positive(
                values.get("worker_timeout_seconds", 10.0), 10.0, label="worker_timeout_seconds"
            ),
            thumbnail_timeout_seconds=_coerce_positive(
                values.get("thumbnail_timeout_seconds", 60.0),
                60.0,
                label="thumbnail_timeout_seconds",
            ),
            thumbnail_max_workers=max_workers,
            object_store=object_store,
            s3_bucket=values.get("s3_bucket") or None,
            s3_endpoint_url=values.get("s3_endpoint_url") or None,
            public_base_url=public_base_url,
        )


def load_config(config_path: Path | None = None) -> AppConfig:
    """Load the application configuration from ``config/default.json`` by default."""

    base_path = Path(__file__).resolve().parent.parent
    if config_path is None:
        config_path = base_path / "config" / "default.json"

    with config_path.open("r", encoding="utf-8") as config_file:
        raw_config = json.load(config_file)

    return AppConfig.from_mapping(raw_config, base_path=base_path)


__all__ = ["AppConfig", "DEFAULT_WORKER_URL", "OBJECT_STORE_BACKENDS", "load_config"]
