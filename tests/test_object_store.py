from __future__ import annotations

from pathlib import Path

import boto3
import pytest
from botocore.stub import Stubber

from clipstudio.config import AppConfig
from clipstudio.media.object_store import (
    LocalObjectStore,
    S3ObjectStore,
    build_object_store,
    thumbnail_key,
)
from clipstudio.services.errors import StorageError


def test_thumbnail_key_is_deterministic() -> None:
    assert thumbnail_key("abc") == "thumbnails/clips/abc-thumb.jpg"


def test_local_store_writes_and_deletes(tmp_path: Path) -> None:
    store = LocalObjectStore(tmp_path / "media", public_base_url="/media/")

    url = store.upload(b"jpeg-bytes", thumbnail_key("abc"), "image/jpeg")

    target = tmp_path / "media" / "thumbnails" / "clips" / "abc-thumb.jpg"
    assert url == "/media/thumbnails/clips/abc-thumb.jpg"
    assert target.read_bytes() == b"jpeg-bytes"
    assert [path.name for path in target.parent.iterdir()] == ["abc-thumb.jpg"]

    store.delete(thumbnail_key("abc"))
    store.delete(thumbnail_key("abc"))
    assert not target.exists()


def test_local_store_rejects_keys_outside_root(tmp_path: Path) -> None:
    store = LocalObjectStore(tmp_path / "media")

    with pytest.raises(StorageError):
        store.upload(b"x", "../escape.jpg", "image/jpeg")


def _s3_client():
    return boto3.client(
        "s3",
        region_name="auto",
        endpoint_url="https://r2.example.test",
        aws_access_key_id="test",
        aws_secret_access_key="test",
    )


def test_s3_store_puts_object_and_returns_public_url() -> None:
    client = _s3_client()
    store = S3ObjectStore("clips", public_base_url="https://cdn.test", client=client)

    with Stubber(client) as stubber:
        stubber.add_response(
            "put_object",
            {},
            {
                "Bucket": "clips",
                "Key": "thumbnails/clips/abc-thumb.jpg",
                "Body": b"jpeg-bytes",
                "ContentType": "image/jpeg",
            },
        )
        url = store.upload(b"jpeg-bytes", "thumbnails/clips/abc-thumb.jpg", "image/jpeg")
        stubber.assert_no_pending_responses()

    assert url == "https://cdn.test/thumbnails/clips/abc-thumb.jpg"


def test_s3_store_maps_client_errors_to_storage_error() -> None:
    client = _s3_client()
    store = S3ObjectStore("clips", public_base_url="https://cdn.test", client=client)

    with Stubber(client) as stubber:
        stubber.add_client_error("put_object", service_error_code="AccessDenied", http_status_code=403)
        with pytest.raises(StorageError) as excinfo:
            store.upload(b"jpeg-bytes", "thumbnails/clips/abc-thumb.jpg", "image/jpeg")

    assert "AccessDenied" in excinfo.value.diagnostic


def test_s3_store_requires_bucket() -> None:
    with pytest.raises(ValueError):
        S3ObjectStore("", public_base_url="https://cdn.test", client=object())


def test_build_object_store_defaults_to_local(temp_config: AppConfig) -> None:
    store = build_object_store(temp_config)

    assert isinstance(store, LocalObjectStore)
    assert store.root == temp_config.media_root.resolve()
