from __future__ import annotations

import io
import stat
import sys
import threading
from concurrent.futures import Future
from pathlib import Path
from typing import Dict, List, Optional, Set, Union

import pytest
from PIL import Image

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from clipstudio.bootstrap import Bootstrapper
from clipstudio.config import AppConfig
from clipstudio.media.encoder import EncodedArtifact, EncodeTask, ThumbnailSpec
from clipstudio.services.errors import EncodeError, StorageError
from clipstudio.services.storage import ClipRepository


_ENV_VARIABLES = (
    "CLIPSTUDIO_WORKER_URL",
    "CLIPSTUDIO_OBJECT_STORE",
    "CLIPSTUDIO_S3_BUCKET",
    "CLIPSTUDIO_S3_ENDPOINT_URL",
    "CLIPSTUDIO_PUBLIC_BASE_URL",
    "CLIPSTUDIO_ROOT_PATH",
)


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    for variable in _ENV_VARIABLES:
        monkeypatch.delenv(variable, raising=False)


@pytest.fixture()
def temp_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> AppConfig:
    monkeypatch.chdir(tmp_path)

    config = AppConfig.from_mapping(
        {
            "storage_root": "storage",
            "database_file": "storage/clipstudio.db",
            "media_root": "storage/media",
            "worker_url": "http://worker.test",
        },
        base_path=tmp_path,
    )

    Bootstrapper(config).initialize()
    return config


@pytest.fixture()
def repository(temp_config: AppConfig) -> ClipRepository:
    return ClipRepository(temp_config)


def make_jpeg(width: int = 320, height: int = 180) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color=(30, 90, 160)).save(buffer, format="JPEG")
    return buffer.getvalue()


@pytest.fixture()
def jpeg_bytes() -> bytes:
    return make_jpeg()


_FAKE_FFMPEG = """#!{python}
import shutil
import sys
import time

arguments = sys.argv[1:]
source = arguments[arguments.index("-i") + 1]
output = arguments[-1]

if "hang" in source:
    time.sleep(60)
elif "fail" in source:
    sys.stderr.write("Invalid data found when processing input\\n")
    sys.exit(1)
elif "garbage" in source:
    with open(output, "wb") as handle:
        handle.write(b"definitely not a jpeg")
elif "silent" in source:
    pass
else:
    shutil.copyfile({frame!r}, output)
"""


@pytest.fixture()
def fake_ffmpeg(tmp_path: Path, jpeg_bytes: bytes) -> Path:
    """Executable standing in for FFmpeg; its behaviour is chosen by the source name."""

    frame = tmp_path / "frame.jpg"
    frame.write_bytes(jpeg_bytes)
    script = tmp_path / "bin" / "ffmpeg"
    script.parent.mkdir()
    script.write_text(
        _FAKE_FFMPEG.format(python=sys.executable, frame=str(frame)),
        encoding="utf-8",
    )
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return script


class FakeEncoder:
    """In-process encoder returning canned artifacts or errors per source."""

    def __init__(self, jpeg: bytes, failures: Optional[Dict[str, EncodeError]] = None) -> None:
        self._jpeg = jpeg
        self._failures = dict(failures or {})
        self.calls: List[str] = []
        self._lock = threading.Lock()

    def submit(self, source_location: str, spec: ThumbnailSpec, *, timeout: float) -> EncodeTask:
        with self._lock:
            self.calls.append(source_location)
        future: "Future[EncodedArtifact]" = Future()
        failure = self._failures.get(source_location)
        if failure is not None:
            future.set_exception(failure)
        else:
            future.set_result(
                EncodedArtifact(
                    data=self._jpeg,
                    content_type=spec.content_type,
                    width=320,
                    height=180,
                    elapsed_ms=1.0,
                )
            )
        return EncodeTask(future, threading.Event())


class MemoryObjectStore:
    """Object store keeping uploads in a dict; selected keys can be made to fail."""

    def __init__(self, failing_keys: Union[Set[str], None] = None) -> None:
        self.objects: Dict[str, bytes] = {}
        self.failing_keys = set(failing_keys or ())

    def upload(self, data: bytes, key: str, content_type: str) -> str:
        if key in self.failing_keys:
            raise StorageError(f"Upload rejected for '{key}'")
        self.objects[key] = data
        return f"https://cdn.test/{key}"

    def delete(self, key: str) -> None:
        self.objects.pop(key, None)


@pytest.fixture()
def fake_encoder(jpeg_bytes: bytes) -> FakeEncoder:
    return FakeEncoder(jpeg_bytes)


@pytest.fixture()
def failing_encoder(jpeg_bytes: bytes):
    """Build a :class:`FakeEncoder` whose listed sources raise the given errors."""

    def _build(failures: Dict[str, EncodeError]) -> FakeEncoder:
        return FakeEncoder(jpeg_bytes, failures)

    return _build


@pytest.fixture()
def memory_store() -> MemoryObjectStore:
    return MemoryObjectStore()
