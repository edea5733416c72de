"""Tests for the run.py entrypoint commands."""

from __future__ import annotations

from types import SimpleNamespace

import httpx
import pytest
from typer.testing import CliRunner

import run
from clipstudio.services.renditions import RenditionDispatcher
from clipstudio.services.storage import ClipRepository
from clipstudio.services.thumbnails import ThumbnailBatchRunner


@pytest.fixture()
def cli_env(monkeypatch, temp_config):
    monkeypatch.setattr(run, "initialize_app", lambda: temp_config)
    monkeypatch.setattr(run, "_prepare_logging", lambda storage_root: None)
    return temp_config


def _mock_dispatcher(status_code: int = 200):
    def _build(config, repository):
        transport = httpx.MockTransport(lambda request: httpx.Response(status_code, json={"jobId": "cli-job"}))
        return RenditionDispatcher(repository, config.worker_url, client=httpx.Client(transport=transport))

    return _build


def test_serve_builds_uvicorn_server(monkeypatch, tmp_path) -> None:
    captured = {}
    monkeypatch.setattr(run, "initialize_app", lambda: SimpleNamespace(storage_root=tmp_path))
    monkeypatch.setattr(run, "_prepare_logging", lambda storage_root: None)
    monkeypatch.setattr(run, "ClipRepository", lambda config: object())

    dummy_app = SimpleNamespace(state=SimpleNamespace(), root_path="/api")

    def fake_create_app(repository, config, root_path):
        captured["root_path"] = root_path
        return dummy_app

    monkeypatch.setattr(run, "create_app", fake_create_app)

    class DummyConfig:
        def __init__(self, app, **kwargs):
            captured["app"] = app
            captured["config_kwargs"] = kwargs

    class DummyServer:
        def __init__(self, config):
            captured["server_config"] = config

        def run(self):
            captured["server_run"] = True

    monkeypatch.setattr(run.uvicorn, "Config", DummyConfig)
    monkeypatch.setattr(run.uvicorn, "Server", DummyServer)

    run.serve(host="0.0.0.0", port=9000, root_path="api")

    assert captured["app"] is dummy_app
    assert captured["root_path"] == "api"
    assert captured["config_kwargs"]["port"] == 9000
    assert captured["config_kwargs"]["root_path"] == "/api"
    assert captured["server_run"] is True


def test_generate_thumbnails_command(monkeypatch, cli_env, fake_encoder, memory_store) -> None:
    repository = ClipRepository(cli_env)
    repository.add_clip("https://cdn.test/a.mp4", clip_id="a")
    monkeypatch.setattr(
        run,
        "_build_thumbnail_runner",
        lambda config, repo: ThumbnailBatchRunner(repo, fake_encoder, memory_store),
    )

    result = CliRunner().invoke(run.cli, ["generate-thumbnails"])

    assert result.exit_code == 0, result.output
    assert "Generated 1 thumbnails, 0 failed" in result.output
    assert repository.get_clip("a").thumbnail_url is not None


def test_generate_renditions_command_reports_job(monkeypatch, cli_env) -> None:
    ClipRepository(cli_env).add_clip("https://cdn.test/a.mp4", clip_id="a", source_resolution="4k")
    monkeypatch.setattr(run, "_build_dispatcher", _mock_dispatcher())

    result = CliRunner().invoke(run.cli, ["generate-renditions", "a"])

    assert result.exit_code == 0, result.output
    assert "cli-job" in result.output


def test_generate_renditions_command_fails_on_worker_error(monkeypatch, cli_env) -> None:
    ClipRepository(cli_env).add_clip("https://cdn.test/a.mp4", clip_id="a")
    monkeypatch.setattr(run, "_build_dispatcher", _mock_dispatcher(status_code=503))

    result = CliRunner().invoke(run.cli, ["generate-renditions", "a"])

    assert result.exit_code == 1
    assert "Worker may be unavailable" in result.output


def test_process_all_command_lists_missing_renditions(monkeypatch, cli_env, fake_encoder, memory_store) -> None:
    ClipRepository(cli_env).add_clip("https://cdn.test/a.mp4", clip_id="a", source_resolution="4k")
    monkeypatch.setattr(
        run,
        "_build_thumbnail_runner",
        lambda config, repo: ThumbnailBatchRunner(repo, fake_encoder, memory_store),
    )
    monkeypatch.setattr(run, "_build_dispatcher", _mock_dispatcher())

    result = CliRunner().invoke(run.cli, ["process-all"])

    assert result.exit_code == 0, result.output
    assert "1 clips: 1 updated, 0 skipped, 0 errors" in result.output


def test_jobs_command_lists_owned_jobs(cli_env) -> None:
    repository = ClipRepository(cli_env)
    repository.add_agent_job("user-1", "video_edit", job_id="job-mine")
    repository.add_agent_job("user-2", "video_edit", job_id="job-theirs")

    result = CliRunner().invoke(run.cli, ["jobs", "user-1"])

    assert result.exit_code == 0, result.output
    assert "job-mine" in result.output
    assert "job-theirs" not in result.output


def test_jobs_command_rejects_bad_status(cli_env) -> None:
    result = CliRunner().invoke(run.cli, ["jobs", "user-1", "--status", "paused"])

    assert result.exit_code == 1
    assert "Unknown job status" in result.output
