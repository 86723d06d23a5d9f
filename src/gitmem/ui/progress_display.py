"""
Progress display for gitmem pipelines.

The pipelines emit IndexProgress / CheckProgress events through a callback;
the displays here turn those events into a rich progress bar on a terminal
or a plain tqdm bar elsewhere.
"""

import threading
from contextlib import contextmanager
from typing import Any, Optional, Union

from rich.console import Console
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)
from tqdm import tqdm

from ..types import CheckProgress, IndexProgress

ProgressEvent = Union[IndexProgress, CheckProgress]

PHASE_LABELS = {
    "discovering": "Discovering commits",
    "measuring": "Measuring complexity",
    "enriching": "Enriching commits",
    "aggregating": "Rebuilding aggregates",
    "indexing": "Updating search index",
    "evaluating": "Evaluating commits",
    "submitting": "Submitting batch",
    "importing": "Importing batch results",
    "done": "Done",
}


def describe(event: ProgressEvent) -> str:
    """Human readable label for a progress event."""
    label = PHASE_LABELS.get(event.phase, event.phase)
    if event.batch_id:
        label += f" [batch {event.batch_id}: {event.batch_status or 'pending'}]"
    elif event.current_hash:
        label += f" ({event.current_hash[:8]})"
    return label


class RichProgressDisplay:
    """Rich-based progress bar driven by pipeline events."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console(stderr=True)
        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold blue]{task.description}"),
            BarColumn(bar_width=40),
            MofNCompleteColumn(),
            TextColumn("•"),
            TimeElapsedColumn(),
            console=self.console,
            transient=True,
        )
        self.task_id = None
        self._lock = threading.Lock()

    def start(self) -> None:
        self.progress.start()
        self.task_id = self.progress.add_task("Starting", total=None)

    def stop(self) -> None:
        self.progress.stop()

    def update(self, event: ProgressEvent) -> None:
        """Apply one progress event; safe to call from worker threads."""
        if self.task_id is None:
            return
        with self._lock:
            self.progress.update(
                self.task_id,
                description=describe(event),
                completed=event.current,
                total=event.total or None,
            )

    @contextmanager
    def progress_context(self):
        """Context manager for progress display."""
        try:
            self.start()
            yield self
        finally:
            self.stop()


class SimpleProgressDisplay:
    """Plain progress output using tqdm, for terminals without rich rendering."""

    def __init__(self):
        self.bar = None
        self.phase: Optional[str] = None

    def start(self) -> None:
        pass

    def stop(self) -> None:
        if self.bar:
            self.bar.close()
            self.bar = None

    def update(self, event: ProgressEvent) -> None:
        if event.phase != self.phase:
            self.stop()
            self.phase = event.phase
            self.bar = tqdm(total=event.total or None, desc=describe(event), leave=False)
        if self.bar is not None:
            self.bar.n = event.current
            self.bar.set_description(describe(event))
            self.bar.refresh()

    @contextmanager
    def progress_context(self):
        try:
            self.start()
            yield self
        finally:
            self.stop()


class NullProgressDisplay:
    """Display that ignores every event (JSON output, quiet runs)."""

    def update(self, event: ProgressEvent) -> None:
        pass

    @contextmanager
    def progress_context(self):
        yield self


def create_progress_display(style: str = "auto", console: Optional[Console] = None) -> Any:
    """
    Create a progress display.

    Args:
        style: "rich", "simple", "none" or "auto" (rich on a terminal, else none)
        console: Console to render to; defaults to stderr

    Returns:
        Progress display instance
    """
    if style == "none":
        return NullProgressDisplay()
    if style == "simple":
        return SimpleProgressDisplay()
    display = RichProgressDisplay(console)
    if style == "auto" and not display.console.is_terminal:
        return NullProgressDisplay()
    return display
