"""Entry-point for the Clip Studio backend."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer
import uvicorn

from clipstudio.bootstrap import initialize_app
from clipstudio.config import AppConfig
from clipstudio.logging_utils import build_default_handlers, configure_logging
from clipstudio.media.encoder import FFmpegEncoder
from clipstudio.media.object_store import build_object_store
from clipstudio.services.agent_jobs import DEFAULT_LIST_LIMIT, AgentJobManager
from clipstudio.services.errors import ClipStudioError
from clipstudio.services.maintenance import process_all as run_process_all
from clipstudio.services.renditions import RenditionDispatcher
from clipstudio.services.storage import ClipRepository
from clipstudio.services.thumbnails import ThumbnailBatchRunner
from clipstudio.ui.report import ReportRenderer
from clipstudio.web import create_app


LOGGER = logging.getLogger("clipstudio.cli")

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8000


cli = typer.Typer(add_completion=False, help="Clip Studio media maintenance commands")


def _prepare_logging(storage_root: Path) -> None:
    configure_logging(handlers=build_default_handlers(storage_root))


def _build_thumbnail_runner(config: AppConfig, repository: ClipRepository) -> ThumbnailBatchRunner:
    return ThumbnailBatchRunner(
        repository,
        FFmpegEncoder(work_dir=config.storage_root / "tmp"),
        build_object_store(config),
        timeout=config.thumbnail_timeout_seconds,
        max_workers=config.thumbnail_max_workers,
    )


def _build_dispatcher(config: AppConfig, repository: ClipRepository) -> RenditionDispatcher:
    return RenditionDispatcher(
        repository,
        config.worker_url,
        timeout=config.worker_timeout_seconds,
    )


def _fail(error: ClipStudioError) -> typer.Exit:
    message = error.message
    if error.diagnostic:
        message = f"{message} ({error.diagnostic})"
    typer.echo(f"Error: {message}", err=True)
    return typer.Exit(code=1)


@cli.callback(invoke_without_command=True)
def main(ctx: typer.Context) -> None:
    """Launch the web server when no explicit command is provided."""

    if ctx.invoked_subcommand is None:
        ctx.invoke(serve, host=DEFAULT_HOST, port=DEFAULT_PORT, root_path=None)


@cli.command()
def serve(
    host: str = typer.Option(DEFAULT_HOST, help="Host interface for the web server"),
    port: int = typer.Option(DEFAULT_PORT, help="Port for the web server"),
    root_path: Optional[str] = typer.Option(
        None,
        help="Prefix the application expects when mounted behind a proxy",
        envvar="CLIPSTUDIO_ROOT_PATH",
    ),
) -> None:
    """Run the HTTP API."""

    app_config = initialize_app()
    _prepare_logging(app_config.storage_root)

    repository = ClipRepository(app_config)
    app = create_app(repository, config=app_config, root_path=root_path)
    server_config = uvicorn.Config(
        app,
        host=host,
        port=port,
        log_config=None,
        root_path=app.root_path,
    )
    LOGGER.info("Serving Clip Studio on http://%s:%s%s", host, port, app.root_path or "/")
    uvicorn.Server(server_config).run()


@cli.command("generate-thumbnails")
def generate_thumbnails() -> None:
    """Generate thumbnails for every clip that has none."""

    config = initialize_app()
    _prepare_logging(config.storage_root)

    repository = ClipRepository(config)
    report = _build_thumbnail_runner(config, repository).reconcile()
    ReportRenderer().thumbnails(report)


@cli.command("generate-renditions")
def generate_renditions(
    clip_id: str = typer.Argument(..., help="Identifier of the clip to complete"),
) -> None:
    """Ask the render worker for the renditions a clip is missing."""

    config = initialize_app()
    _prepare_logging(config.storage_root)

    repository = ClipRepository(config)
    dispatcher = _build_dispatcher(config, repository)
    try:
        ack = dispatcher.dispatch(clip_id)
    except ClipStudioError as error:
        raise _fail(error) from error
    finally:
        dispatcher.close()
    ReportRenderer().dispatch(ack)


@cli.command("process-all")
def process_all(
    dispatch: bool = typer.Option(
        False,
        "--dispatch",
        help="Send missing renditions to the render worker instead of only listing them",
    ),
) -> None:
    """Generate missing thumbnails and report (or dispatch) missing renditions."""

    config = initialize_app()
    _prepare_logging(config.storage_root)

    repository = ClipRepository(config)
    dispatcher = _build_dispatcher(config, repository)
    try:
        report = run_process_all(
            repository,
            _build_thumbnail_runner(config, repository),
            dispatcher,
            dispatch=dispatch,
        )
    finally:
        dispatcher.close()
    ReportRenderer().maintenance(report)
    if report.summary()["errors"]:
        raise typer.Exit(code=1)


@cli.command()
def jobs(
    user_id: str = typer.Argument(..., help="Owner of the agent jobs"),
    status: Optional[str] = typer.Option(None, help="Only list jobs in this status"),
    limit: int = typer.Option(DEFAULT_LIST_LIMIT, help="Maximum number of jobs to show"),
) -> None:
    """List the most recent agent jobs of a user."""

    config = initialize_app()
    _prepare_logging(config.storage_root)

    manager = AgentJobManager(ClipRepository(config))
    try:
        records = manager.list(user_id, status=status, limit=limit)
    except ClipStudioError as error:
        raise _fail(error) from error
    ReportRenderer().jobs(records)


if __name__ == "__main__":
    cli()
