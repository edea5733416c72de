from pathlib import Path

import pytest

import clipstudio.config as config_module
from clipstudio.config import DEFAULT_WORKER_URL, AppConfig


def _mapping(**overrides):
    mapping = {
        "storage_root": "storage",
        "database_file": "storage/clipstudio.db",
        "media_root": "media",
    }
    mapping.update(overrides)
    return mapping


def test_defaults_are_applied(tmp_path: Path) -> None:
    config = AppConfig.from_mapping(_mapping(), base_path=tmp_path)

    assert config.storage_root == (tmp_path / "storage").resolve()
    assert config.database_file == (tmp_path / "storage" / "clipstudio.db").resolve()
    assert config.media_root == (tmp_path / "media").resolve()
    assert config.worker_url == DEFAULT_WORKER_URL
    assert config.object_store == "local"
    assert config.public_base_url == "/media"
    assert config.thumbnail_max_workers == 1


def test_media_root_falls_back_when_preferred_is_unusable(tmp_path: Path) -> None:
    storage = tmp_path / "storage"
    storage.mkdir()
    (tmp_path / "media").write_text("not a directory", encoding="utf-8")

    config = AppConfig.from_mapping(_mapping(), base_path=tmp_path)

    expected_fallback = (storage / "_media").resolve()
    assert config.media_root == expected_fallback
    assert expected_fallback.is_dir()


def test_storage_root_falls_back_when_preferred_is_unusable(tmp_path: Path, monkeypatch) -> None:
    home_dir = tmp_path / "home"
    monkeypatch.setattr(config_module.Path, "home", lambda: home_dir)
    (tmp_path / "storage").write_text("not a directory", encoding="utf-8")

    config = AppConfig.from_mapping(_mapping(), base_path=tmp_path)

    expected_storage = (home_dir / ".clipstudio" / "storage").resolve()
    assert config.storage_root == expected_storage
    assert config.database_file == (expected_storage / "clipstudio.db").resolve()


def test_environment_overrides_take_precedence(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("CLIPSTUDIO_WORKER_URL", "https://render.internal/")
    monkeypatch.setenv("CLIPSTUDIO_OBJECT_STORE", "S3")
    monkeypatch.setenv("CLIPSTUDIO_S3_BUCKET", "clips")
    monkeypatch.setenv("CLIPSTUDIO_PUBLIC_BASE_URL", "https://cdn.example.com/")

    config = AppConfig.from_mapping(_mapping(worker_url="http://ignored"), base_path=tmp_path)

    assert config.worker_url == "https://render.internal"
    assert config.object_store == "s3"
    assert config.s3_bucket == "clips"
    assert config.public_base_url == "https://cdn.example.com"


def test_unknown_object_store_is_rejected(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        AppConfig.from_mapping(_mapping(object_store="ftp"), base_path=tmp_path)


@pytest.mark.parametrize("public_base_url", [None, "", "/media", "cdn.example.com/clips"])
def test_s3_store_requires_absolute_public_url(tmp_path: Path, public_base_url) -> None:
    mapping = _mapping(object_store="s3", s3_bucket="clips", public_base_url=public_base_url)

    with pytest.raises(ValueError):
        AppConfig.from_mapping(mapping, base_path=tmp_path)


def test_invalid_numbers_fall_back_to_defaults(tmp_path: Path) -> None:
    config = AppConfig.from_mapping(
        _mapping(worker_timeout_seconds="soon", thumbnail_timeout_seconds=-5, thumbnail_max_workers=4),
        base_path=tmp_path,
    )

    assert config.worker_timeout_seconds == 10.0
    assert config.thumbnail_timeout_seconds == 60.0
    assert config.thumbnail_max_workers == 4
