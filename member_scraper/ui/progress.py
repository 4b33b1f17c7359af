"""Per-target ingestion progress rendered with rich."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from threading import Lock

from rich.console import Console
from rich.errors import LiveError
from rich.progress import BarColumn, MofNCompleteColumn, Progress, ProgressColumn, Task, TaskID, TextColumn
from rich.text import Text

_OUTCOMES = ("persisted", "failed", "skipped")


@dataclass
class ProgressState:
    total: int
    persisted: int = 0
    failed: int = 0
    skipped: int = 0

    @property
    def completed(self) -> int:
        return self.persisted + self.failed + self.skipped

    def counters(self) -> dict[str, int]:
        data = asdict(self)
        return {name: data[name] for name in _OUTCOMES}


class ThroughputColumn(ProgressColumn):
    """Records handled per second."""

    def render(self, task: Task) -> Text:
        rate = task.finished_speed or task.speed
        return Text("" if rate is None else f"{rate:.1f} rec/s", style="progress.data.speed")


def _build_display(console: Console) -> Progress:
    return Progress(
        TextColumn("[bold cyan]{task.fields[target]}"),
        BarColumn(bar_width=None),
        MofNCompleteColumn(),
        ThroughputColumn(),
        TextColumn("[green]ok {task.fields[persisted]}  [red]err {task.fields[failed]}  [yellow]skip {task.fields[skipped]}"),
        console=console,
        transient=True,
        expand=True,
    )


class ProgressReporter:
    """Counts record outcomes for one target and mirrors them on a live bar.

    Persist workers call ``advance`` concurrently. Without an interactive
    terminal the reporter only counts.
    """

    def __init__(self, enabled: bool = True, console: Console | None = None) -> None:
        self.enabled = enabled
        self.console = console
        self.label = "scrape"
        self.state: ProgressState | None = None
        self._display: Progress | None = None
        self._task: TaskID | None = None
        self._lock = Lock()

    def set_label(self, label: str) -> None:
        self.label = label

    def start(self, total: int) -> None:
        self.state = ProgressState(total=total)
        if not self.enabled:
            return
        console = self.console or Console()
        if not console.is_terminal:
            return
        display = _build_display(console)
        try:
            display.start()
        except LiveError:
            # another live display owns the console
            return
        self._display = display
        self._task = display.add_task(self.label, total=total, target=self.label, **self.state.counters())

    def advance(self, persisted: bool = False, failed: bool = False, skipped: bool = False) -> None:
        with self._lock:
            if self.state is None:
                raise RuntimeError("ProgressReporter.start must be called before advance")
            for name, hit in zip(_OUTCOMES, (persisted, failed, skipped)):
                if hit:
                    setattr(self.state, name, getattr(self.state, name) + 1)
            if self._display is not None and self._task is not None:
                self._display.update(self._task, completed=self.state.completed, **self.state.counters())

    def close(self) -> None:
        with self._lock:
            display, self._display, self._task = self._display, None, None
        if display is not None:
            display.stop()

    def summary(self) -> dict[str, int]:
        if self.state is None:
            return dict.fromkeys(_OUTCOMES, 0)
        return self.state.counters()


__all__ = ["ProgressReporter", "ProgressState", "ThroughputColumn"]
