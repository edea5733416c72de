"""Rich renderings of batch reports for the command line."""

from __future__ import annotations

from typing import Iterable, Optional

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from ..services.maintenance import MaintenanceReport
from ..services.renditions import DispatchAck
from ..services.storage import AgentJobRecord
from ..services.thumbnails import BatchReport


STATUS_STYLES = {
    "success": "green",
    "skipped": "dim",
    "error": "red",
    "queued": "yellow",
    "processing": "cyan",
    "completed": "green",
    "failed": "red",
}


class ReportRenderer:
    """Print orchestration outcomes as tables and panels."""

    def __init__(self, console: Optional[Console] = None) -> None:
        self._console = console or Console()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def thumbnails(self, report: BatchReport) -> None:
        if report.nothing_to_do:
            self._notice(report.message, border_style="green")
            return

        table = Table(title="Thumbnails", box=box.SIMPLE_HEAVY)
        table.add_column("Clip", style="bold", no_wrap=True)
        table.add_column("Result")
        table.add_column("Details", overflow="fold")
        for result in report.results:
            if result.success:
                table.add_row(result.clip_id, Text("ok", style="green"), result.thumbnail_url or "")
            else:
                table.add_row(result.clip_id, Text(result.error_kind or "failed", style="red"), result.error or "")
        self._console.print(table)
        self._console.print(self._summary(report.message, failed=report.failure_count))

    def dispatch(self, ack: DispatchAck) -> None:
        if ack.nothing_to_do:
            self._notice(ack.message, border_style="green")
            return
        body = Table.grid(padding=(0, 1))
        body.add_column(style="dim")
        body.add_column(style="bold")
        body.add_row("Clip", ack.clip_id)
        body.add_row("Source", ack.source_resolution)
        body.add_row("Targets", ", ".join(ack.target_resolutions))
        body.add_row("Worker job", ack.job_id or "-")
        self._console.print(Panel(body, title=ack.message, border_style="cyan", box=box.ROUNDED))

    def maintenance(self, report: MaintenanceReport) -> None:
        if report.nothing_to_do:
            self._notice("No clips to process", border_style="yellow")
            return

        table = Table(title="Process all clips", box=box.SIMPLE_HEAVY)
        table.add_column("Clip", style="bold", no_wrap=True)
        table.add_column("Status")
        table.add_column("Message", overflow="fold")
        for result in report.results:
            table.add_row(result.clip_id, _styled_status(result.status), result.message)
        self._console.print(table)

        summary = report.summary()
        self._console.print(
            self._summary(
                f"{summary['total']} clips: {summary['success']} updated, "
                f"{summary['skipped']} skipped, {summary['errors']} errors",
                failed=summary["errors"],
            )
        )

    def jobs(self, jobs: Iterable[AgentJobRecord]) -> None:
        rows = list(jobs)
        if not rows:
            self._notice("No agent jobs found", border_style="yellow")
            return
        table = Table(title="Agent jobs", box=box.SIMPLE_HEAVY)
        table.add_column("Job", style="bold", no_wrap=True)
        table.add_column("Type")
        table.add_column("Status")
        table.add_column("Progress", justify="right")
        table.add_column("Created", style="dim", overflow="fold")
        for job in rows:
            table.add_row(job.id, job.type, _styled_status(job.status), f"{job.progress}%", job.created_at)
        self._console.print(table)

    # ------------------------------------------------------------------
    # Rendering helpers
    # ------------------------------------------------------------------
    def _notice(self, message: str, *, border_style: str) -> None:
        self._console.print(Panel(message, border_style=border_style, box=box.ROUNDED))

    @staticmethod
    def _summary(message: str, *, failed: int) -> Text:
        return Text(message, style="bold red" if failed else "bold green")


def _styled_status(value: str) -> Text:
    return Text(value, style=STATUS_STYLES.get(value, "white"))


__all__ = ["ReportRenderer"]
