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
    success: int = 0
    failed: int = 0
    current_item: str | None = None


class RateColumn(ProgressColumn):
    """Detail pages resolved per second."""

    def render(self, task: Task) -> Text:
        speed = task.finished_speed or task.speed
        if speed is None:
            return Text("", style="progress.percentage")
        return Text(f"{speed:.1f} item/s", style="progress.percentage")


class ProgressReporter:
    """Render detail-fetch progress and keep counters for the run summary."""

    def __init__(self, enabled: bool = True, console: Console | None = None) -> None:
        self.enabled = enabled
        self._console = console
        self._progress: Progress | None = None
        self._task_id: TaskID | None = None
        self.state: ProgressState | None = None
        self._label = "details"

    def set_label(self, label: str) -> None:
        self._label = label

    def start(self, total: int) -> None:
        self.state = ProgressState(total=total)
        if not self.enabled:
            return
        console = self._console or Console()
        if not console.is_terminal:
            # non-interactive output stays quiet
            self.enabled = False
            return
        self._progress = Progress(
            SpinnerColumn(style="cyan"),
            TextColumn("[bold blue]{task.fields[label]:<10}", justify="left"),
            BarColumn(bar_width=None, complete_style="green", finished_style="green"),
            TaskProgressColumn(show_speed=False),
            TimeElapsedColumn(),
            RateColumn(),
            TextColumn("[green]✓{task.fields[success]:>4}", justify="right"),
            TextColumn("[red]✗{task.fields[failed]:>4}", justify="right"),
            TextColumn("[dim]{task.fields[current]}", justify="left"),
            console=console,
            transient=True,
            expand=True,
        )
        try:
            self._progress.start()
        except LiveError:
            # another live display owns the console
            self.enabled = False
            self._progress = None
            return
        self._task_id = self._progress.add_task(
            "fetch", total=total, label=self._label, success=0, failed=0, current=""
        )

    def advance(self, item_id: str, success: bool) -> None:
        if self.state is None:
            raise RuntimeError("ProgressReporter.start must be called before advance")
        self.state.current_item = item_id
        if success:
            self.state.success += 1
        else:
            self.state.failed += 1
        if self._progress is not None and self._task_id is not None:
            self._progress.update(
                self._task_id,
                advance=1,
                success=self.state.success,
                failed=self.state.failed,
                current=item_id,
            )

    def close(self) -> None:
        if self._progress is not None:
            self._progress.stop()
            self._progress = None
        self._task_id = None

    def summary(self) -> dict[str, int]:
        if not self.state:
            return {"success": 0, "failed": 0}
        return {"success": self.state.success, "failed": self.state.failed}


class ProgressActivity:
    """Indeterminate spinner shown while waiting on the list source."""

    def __init__(self, enabled: bool = True, console: Console | None = None) -> None:
        self.enabled = enabled
        self.console = console or Console()
        self._status: Status | None = None

    def start(self, message: str) -> None:
        if not self.enabled or self._status is not None or not self.console.is_terminal:
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


__all__ = ["ProgressActivity", "ProgressReporter", "ProgressState", "RateColumn"]
