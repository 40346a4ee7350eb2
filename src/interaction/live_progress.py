"""
Real-time progress display for a validation job.

Provides a Rich Live panel driven by job store updates: overall progress,
current batch, ETA and the latest pipeline message.

Usage:
    display = LiveJobDisplay(console, language="fr")
    store.subscribe(display.on_update)
    with display:
        await pipeline.process(job.id, data)
    store.unsubscribe(display.on_update)
"""

from dataclasses import dataclass, field
from typing import Optional
from time import time

from rich.console import Console
from rich.live import Live
from rich.panel import Panel

from core.models import JobRecord, JobStatus


@dataclass
class JobSnapshot:
    """Latest state seen for the displayed job."""
    file_name: str = ""
    status: JobStatus = JobStatus.PENDING
    progress: int = 0
    message: str = ""
    current_batch: int = 0
    total_batches: int = 0
    total_items: int = 0
    start_time: float = field(default_factory=time)


class LiveJobDisplay:
    """
    Live dashboard for one validation job.

    Job store listeners may be called from the event loop at a high rate;
    on_update only copies fields and refreshes the panel.
    """

    STATUS_ICONS = {
        JobStatus.PENDING: "[dim]⏳ En attente[/dim]",
        JobStatus.PROCESSING: "[yellow]⚙ En cours[/yellow]",
        JobStatus.COMPLETED: "[green]✓ Terminé[/green]",
        JobStatus.FAILED: "[red]✗ Échec[/red]",
    }

    STATUS_ICONS_EN = {
        JobStatus.PENDING: "[dim]⏳ Waiting[/dim]",
        JobStatus.PROCESSING: "[yellow]⚙ Processing[/yellow]",
        JobStatus.COMPLETED: "[green]✓ Done[/green]",
        JobStatus.FAILED: "[red]✗ Failed[/red]",
    }

    BAR_WIDTH = 30

    def __init__(self, console: Console, language: str = "fr"):
        self.console = console
        self.language = language
        self.snapshot = JobSnapshot()
        self._live: Optional[Live] = None

    def on_update(self, job: JobRecord) -> None:
        """JobStore listener."""
        self.snapshot.file_name = job.file_name
        self.snapshot.status = job.status
        self.snapshot.progress = job.progress
        self.snapshot.message = job.message
        self.snapshot.current_batch = job.current_batch
        self.snapshot.total_batches = job.total_batches
        self.snapshot.total_items = job.total_items

        if self._live:
            self._live.update(self._render())

    def _get_eta(self) -> str:
        """Estimate remaining time from progress so far."""
        progress = self.snapshot.progress
        if progress <= 0 or progress >= 100:
            return "..."
        elapsed = time() - self.snapshot.start_time
        eta_seconds = elapsed / progress * (100 - progress)

        if eta_seconds < 60:
            return f"{int(eta_seconds)}s"
        elif eta_seconds < 3600:
            return f"{int(eta_seconds / 60)}m {int(eta_seconds % 60)}s"
        else:
            return f"{int(eta_seconds / 3600)}h {int((eta_seconds % 3600) / 60)}m"

    def _bar(self) -> str:
        filled = self.BAR_WIDTH * self.snapshot.progress // 100
        return "[cyan]" + "█" * filled + "[/cyan][dim]" + "░" * (self.BAR_WIDTH - filled) + "[/dim]"

    def _render(self) -> Panel:
        s = self.snapshot
        icons = self.STATUS_ICONS_EN if self.language == "en" else self.STATUS_ICONS
        remaining = "remaining" if self.language == "en" else "restant"

        lines = [
            f"[bold]📄 {s.file_name}[/bold] │ {icons.get(s.status, '?')}",
            f"{self._bar()} [bold]{s.progress}%[/bold] │ [dim]⏱ ~{self._get_eta()} {remaining}[/dim]",
        ]
        if s.total_batches:
            label = "Batch" if self.language == "en" else "Lot"
            lines.append(f"[dim]{label} {s.current_batch}/{s.total_batches} │ {s.total_items} lignes[/dim]")
        if s.message:
            lines.append(s.message)

        return Panel(
            "\n".join(lines),
            title="[bold cyan]Validation Progress[/bold cyan]" if self.language == "en" else "[bold cyan]Progression[/bold cyan]",
            border_style="cyan",
            padding=(0, 1),
        )

    def __enter__(self):
        """Start the live display."""
        self.snapshot.start_time = time()
        self._live = Live(
            self._render(),
            console=self.console,
            refresh_per_second=4,
            transient=False  # Keep the final panel visible
        )
        self._live.__enter__()
        return self

    def __exit__(self, *args):
        """Stop the live display."""
        if self._live:
            live, self._live = self._live, None
            return live.__exit__(*args)
