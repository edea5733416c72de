import sqlite3
from pathlib import Path

import pytest

import clipstudio.config as config_module
from clipstudio.bootstrap import BootstrapError, Bootstrapper
from clipstudio.config import AppConfig


def _config(tmp_path: Path) -> AppConfig:
    storage_root = tmp_path / "storage"
    return AppConfig(
        storage_root=storage_root,
        database_file=storage_root / "clipstudio.db",
        media_root=tmp_path / "media",
    )


def test_bootstrapper_creates_schema(tmp_path: Path) -> None:
    config = _config(tmp_path)

    Bootstrapper(config).initialize()
    Bootstrapper(config).initialize()

    with sqlite3.connect(config.database_file) as connection:
        tables = {
            row[0]
            for row in connection.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
        }
    assert {"clips", "clip_renditions", "agent_jobs", "voices"} <= tables
    assert config.media_root.is_dir()


def test_agent_job_status_is_constrained(tmp_path: Path) -> None:
    config = _config(tmp_path)
    Bootstrapper(config).initialize()

    with sqlite3.connect(config.database_file) as connection:
        with pytest.raises(sqlite3.IntegrityError):
            connection.execute(
                "INSERT INTO agent_jobs(id, user_id, type, status, created_at)"
                " VALUES ('j1', 'u1', 'edit', 'cancelled', 'now')"
            )


def test_bootstrapper_raises_when_storage_directory_unwritable(
    tmp_path: Path, monkeypatch
) -> None:
    config = _config(tmp_path)
    storage_root = config.storage_root

    original_ensure = config_module._ensure_writable_directory

    def fake_ensure(path: Path) -> bool:
        if path.resolve() == storage_root.resolve():
            return False
        return original_ensure(path)

    monkeypatch.setattr(config_module, "_ensure_writable_directory", fake_ensure)

    with pytest.raises(BootstrapError) as excinfo:
        Bootstrapper(config).initialize()

    assert "storage" in str(excinfo.value).lower()
