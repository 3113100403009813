"""CLI progress display for sync runs.

This module provides a Rich-based progress display that works with the
SyncProgressTracker from the sync engine.
"""

from typing import Optional

from rich.console import Console
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)

from .sync.engine import SyncEngine, SyncResult
from .sync.progress import (
    SyncProgressEvent,
    SyncProgressInfo,
    SyncProgressTracker,
    format_summary,
)


class SyncProgressDisplay:
    """Rich-based progress display for sync runs.

    Shows one bar for the whole run. The total grows as the walkers discover
    files, and the status field carries the running summary plus the number
    of uploads currently in flight.
    """

    def __init__(self, console: Optional[Console] = None) -> None:
        """Initialize the progress display.

        Args:
            console: Console to draw on (defaults to stderr)
        """
        self._console = console or Console(stderr=True)
        self._progress: Optional[Progress] = None
        self._task: Optional[TaskID] = None

    def create_tracker(self) -> SyncProgressTracker:
        """Create a SyncProgressTracker that updates this display.

        Returns:
            A configured SyncProgressTracker
        """
        return SyncProgressTracker(callback=self._handle_event)

    def _format_status(self, info: SyncProgressInfo) -> str:
        status = format_summary(info.new, info.noop, info.dupes, info.failed)
        if info.in_flight:
            status = f"{status}, {info.in_flight} in flight"
        return status

    def _handle_event(self, info: SyncProgressInfo) -> None:
        """Handle a progress event from the tracker.

        Args:
            info: Progress information
        """
        if self._progress is None or self._task is None:
            return

        description = "Syncing"
        if info.event == SyncProgressEvent.IN_FLIGHT:
            description = f"Uploading {info.rel_path}"
        elif info.event == SyncProgressEvent.SYNC_COMPLETE:
            description = "Sync complete"

        self._progress.update(
            self._task,
            description=description,
            total=info.discovered,
            completed=info.synced + info.failed,
            status=self._format_status(info),
        )

    def __enter__(self) -> "SyncProgressDisplay":
        """Enter context manager - start progress display."""
        self._progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold blue]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            TextColumn("[cyan]{task.fields[status]}"),
            TimeElapsedColumn(),
            console=self._console,
            refresh_per_second=4,
            transient=True,
        )
        self._progress.__enter__()
        self._task = self._progress.add_task(
            "Discovering files...", total=None, status=""
        )
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Exit context manager - stop progress display."""
        if self._progress is not None:
            self._progress.__exit__(exc_type, exc_val, exc_tb)
            self._progress = None
            self._task = None


def run_sync_with_progress(engine: SyncEngine, show_progress: bool = True) -> SyncResult:
    """Run a sync, drawing a progress bar while it runs.

    Args:
        engine: Configured SyncEngine
        show_progress: If False, run without a progress display

    Returns:
        The sync result
    """
    if not show_progress:
        return engine.run()

    with SyncProgressDisplay() as display:
        engine.tracker = display.create_tracker()
        return engine.run()
