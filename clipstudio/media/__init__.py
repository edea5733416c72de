"""Media building blocks: the resolution ladder, encoders and object storage."""

from .encoder import (
    DEFAULT_THUMBNAIL_TIMEOUT,
    EncodedArtifact,
    EncodeTask,
    Encoder,
    FFmpegEncoder,
    ThumbnailSpec,
)
from .ladder import (
    DEFAULT_TIER,
    RESOLUTION_LADDER,
    dimensions_for,
    is_known_tier,
    missing_targets,
    normalize_tier,
)
from .object_store import (
    LocalObjectStore,
    ObjectStore,
    S3ObjectStore,
    build_object_store,
    thumbnail_key,
)

__all__ = [
    "DEFAULT_THUMBNAIL_TIMEOUT",
    "DEFAULT_TIER",
    "EncodeTask",
    "EncodedArtifact",
    "Encoder",
    "FFmpegEncoder",
    "LocalObjectStore",
    "ObjectStore",
    "RESOLUTION_LADDER",
    "S3ObjectStore",
    "ThumbnailSpec",
    "build_object_store",
    "dimensions_for",
    "is_known_tier",
    "missing_targets",
    "normalize_tier",
    "thumbnail_key",
]
