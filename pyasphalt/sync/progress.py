"""Progress tracking for sync runs.

The engine reports every asset state change to a SyncProgressTracker, which
keeps the run counters and forwards a snapshot to an optional callback (the
rich display in the CLI, or a test recorder).
"""

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional


class SyncProgressEvent(Enum):
    """State changes reported during a sync."""

    SYNC_START = "sync_start"
    DISCOVERED = "discovered"
    IN_FLIGHT = "in_flight"
    FINISHED = "finished"
    DUPLICATE = "duplicate"
    FAILED = "failed"
    SYNC_COMPLETE = "sync_complete"


@dataclass
class SyncProgressInfo:
    """Snapshot of the run counters after an event."""

    event: SyncProgressEvent
    input_name: str = ""
    rel_path: str = ""

    discovered: int = 0
    """Files found by the walker"""

    synced: int = 0
    """Files that reached a final state (new, no-op or duplicate)"""

    new: int = 0
    noop: int = 0
    dupes: int = 0
    failed: int = 0

    in_flight: int = 0
    """Assets currently handed to a backend"""


def format_summary(new: int, noop: int, dupes: int, failed: int) -> str:
    """Render the one-line run summary.

    Examples:
        >>> format_summary(2, 1, 0, 0)
        'Synced 3 files (2 new, 1 no-op)'
    """
    summary = f"Synced {new + noop + dupes} files"

    parts = []
    if new:
        parts.append(f"{new} new")
    if noop:
        parts.append(f"{noop} no-op")
    if dupes:
        parts.append(f"{dupes} duplicates")
    if failed:
        parts.append(f"{failed} failed")

    if not parts:
        return summary
    return f"{summary} ({', '.join(parts)})"


class SyncProgressTracker:
    """Keeps the counters of a sync run.

    Only the collecting thread calls the on_* methods, so the counters need
    no locking.
    """

    def __init__(
        self, callback: Optional[Callable[[SyncProgressInfo], None]] = None
    ):
        self.callback = callback
        self.discovered = 0
        self.new = 0
        self.noop = 0
        self.dupes = 0
        self.failed = 0
        self.in_flight = 0

    @property
    def synced(self) -> int:
        return self.new + self.noop + self.dupes

    def _emit(
        self, event: SyncProgressEvent, input_name: str = "", rel_path: str = ""
    ) -> None:
        if self.callback is None:
            return
        self.callback(
            SyncProgressInfo(
                event=event,
                input_name=input_name,
                rel_path=rel_path,
                discovered=self.discovered,
                synced=self.synced,
                new=self.new,
                noop=self.noop,
                dupes=self.dupes,
                failed=self.failed,
                in_flight=self.in_flight,
            )
        )

    def on_sync_start(self) -> None:
        self._emit(SyncProgressEvent.SYNC_START)

    def on_discovered(self, input_name: str, rel_path: str) -> None:
        self.discovered += 1
        self._emit(SyncProgressEvent.DISCOVERED, input_name, rel_path)

    def on_in_flight(self, input_name: str, rel_path: str) -> None:
        self.in_flight += 1
        self._emit(SyncProgressEvent.IN_FLIGHT, input_name, rel_path)

    def on_finished(
        self, input_name: str, rel_path: str, new: bool, was_in_flight: bool
    ) -> None:
        if was_in_flight:
            self.in_flight -= 1
        if new:
            self.new += 1
        else:
            self.noop += 1
        self._emit(SyncProgressEvent.FINISHED, input_name, rel_path)

    def on_duplicate(self, input_name: str, rel_path: str) -> None:
        self.dupes += 1
        self._emit(SyncProgressEvent.DUPLICATE, input_name, rel_path)

    def on_failed(self, input_name: str, rel_path: str, was_in_flight: bool) -> None:
        if was_in_flight:
            self.in_flight -= 1
        self.failed += 1
        self._emit(SyncProgressEvent.FAILED, input_name, rel_path)

    def on_sync_complete(self) -> None:
        self._emit(SyncProgressEvent.SYNC_COMPLETE)

    def summary(self) -> str:
        return format_summary(self.new, self.noop, self.dupes, self.failed)
