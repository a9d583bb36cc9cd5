"""Terminal progress helpers with Rich-based rendering."""

from __future__ import annotations

from dataclasses import dataclass

from rich.console import Console
from rich.errors import LiveError
from rich.progress import (
    BarColumn,
    Progress,
    ProgressColumn,
    SpinnerColumn,
    Task,
    TaskID,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.status import Status
from rich.text import Text


@dataclass
class ProgressState:
    total: int
    added: int = 0
    skipped: int = 0
    failed: int = 0
    current: str | None = None

    @property
    def processed(self) -> int:
        return self.added + self.skipped + self.failed


class RateColumn(ProgressColumn):
    """Listings processed per second."""

    def render(self, task: Task) -> Text:
        speed = task.finished_speed or task.speed
        if speed is None:
            return Text("", style="progress.percentage")
        return Text(f"{speed:.1f} rec/s", style="progress.percentage")


class ProgressReporter:
    """Render ingest progress and maintain counters for CLI feedback."""

    def __init__(self, enabled: bool = True, console: Console | None = None, label: str = "ingest") -> None:
        self.enabled = enabled
        self._console = console
        self._progress: Progress | None = None
        self._task_id: TaskID | None = None
        self.state: ProgressState | None = None
        self.label = label

    def start(self, total: int) -> None:
        self.state = ProgressState(total=total)
        if not self.enabled:
            return
        console = self._console or Console()
        if not console.is_terminal:
            # Non-interactive output: stay silent rather than printing every refresh
            self.enabled = False
            return
        self._progress = Progress(
            SpinnerColumn(style="cyan"),
            TextColumn("[bold blue]{task.fields[label]:<10}", justify="left"),
            BarColumn(bar_width=None, complete_style="green", finished_style="green"),
            TaskProgressColumn(show_speed=False),
            TimeElapsedColumn(),
            RateColumn(),
            TextColumn("[green]+{task.fields[added]:>4}", justify="right"),
            TextColumn("[yellow]={task.fields[skipped]:>4}", justify="right"),
            TextColumn("[red]x{task.fields[failed]:>4}", justify="right"),
            TextColumn("[dim]{task.fields[current]}", justify="left"),
            console=console,
            transient=True,
            expand=True,
        )
        try:
            self._progress.start()
        except LiveError:
            # Another live display owns the console
            self.enabled = False
            self._progress = None
            return
        self._task_id = self._progress.add_task(
            "ingest", total=total, label=self.label, added=0, skipped=0, failed=0, current=""
        )

    def advance(
        self,
        added: bool = False,
        skipped: bool = False,
        failed: bool = False,
        current: str | None = None,
    ) -> None:
        if not self.state:
            raise RuntimeError("ProgressReporter.start must be called before advance")
        if current:
            self.state.current = current
        if added:
            self.state.added += 1
        if skipped:
            self.state.skipped += 1
        if failed:
            self.state.failed += 1
        if self._progress is not None and self._task_id is not None:
            display = self.state.current or ""
            if len(display) > 50:
                display = display[:47] + "..."
            self._progress.update(
                self._task_id,
                advance=1,
                added=self.state.added,
                skipped=self.state.skipped,
                failed=self.state.failed,
                current=display,
            )

    def close(self) -> None:
        if self._progress is not None:
            self._progress.stop()
            self._progress = None
        self._task_id = None

    def summary(self) -> dict[str, int]:
        if not self.state:
            return {"added": 0, "skipped": 0, "failed": 0}
        return {
            "added": self.state.added,
            "skipped": self.state.skipped,
            "failed": self.state.failed,
        }


class ProgressActivity:
    """Indeterminate activity indicator using Rich Status spinner."""

    def __init__(self, enabled: bool = True, console: Console | None = None) -> None:
        self.enabled = enabled
        self.console = console or Console()
        self._status: Status | None = None

    def start(self, message: str) -> None:
        if not self.enabled or self._status is not None:
            return
        self._status = self.console.status(message)
        self._status.start()

    def update(self, message: str) -> None:
        if self._status is not None:
            self._status.update(message)

    def close(self) -> None:
        if self._status is not None:
            self._status.stop()
            self._status = None

    def __enter__(self) -> "ProgressActivity":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


__all__ = ["ProgressActivity", "ProgressReporter", "ProgressState"]
