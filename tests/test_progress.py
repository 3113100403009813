"""Tests for sync progress tracking and display."""

import io
from unittest.mock import Mock

from rich.console import Console

from pyasphalt.cli_progress import SyncProgressDisplay, run_sync_with_progress
from pyasphalt.sync.progress import (
    SyncProgressEvent,
    SyncProgressInfo,
    SyncProgressTracker,
    format_summary,
)


class TestFormatSummary:
    """Tests for format_summary function."""

    def test_all_parts(self):
        """Test a summary with every counter set."""
        assert format_summary(1, 2, 3, 4) == (
            "Synced 6 files (1 new, 2 no-op, 3 duplicates, 4 failed)"
        )

    def test_zero_parts_hidden(self):
        """Test that zero counters are left out."""
        assert format_summary(0, 5, 0, 0) == "Synced 5 files (5 no-op)"

    def test_nothing(self):
        """Test an empty run."""
        assert format_summary(0, 0, 0, 0) == "Synced 0 files"

    def test_failed_not_counted_as_synced(self):
        """Test that failed files are not part of the synced total."""
        assert format_summary(0, 0, 0, 2) == "Synced 0 files (2 failed)"


class TestSyncProgressTracker:
    """Tests for SyncProgressTracker."""

    def test_counters(self):
        """Test counting every kind of event."""
        tracker = SyncProgressTracker()
        for name in ("a", "b", "c", "d"):
            tracker.on_discovered("assets", name)
        tracker.on_in_flight("assets", "a")
        tracker.on_finished("assets", "a", new=True, was_in_flight=True)
        tracker.on_finished("assets", "b", new=False, was_in_flight=False)
        tracker.on_duplicate("assets", "c")
        tracker.on_in_flight("assets", "d")
        tracker.on_failed("assets", "d", was_in_flight=True)

        assert tracker.discovered == 4
        assert tracker.new == 1
        assert tracker.noop == 1
        assert tracker.dupes == 1
        assert tracker.failed == 1
        assert tracker.in_flight == 0
        assert tracker.synced == 3

    def test_callback_snapshot(self):
        """Test that callbacks receive the counters after each event."""
        infos = []
        tracker = SyncProgressTracker(callback=infos.append)

        tracker.on_discovered("assets", "a.png")
        tracker.on_in_flight("assets", "a.png")

        assert infos[-1].event == SyncProgressEvent.IN_FLIGHT
        assert infos[-1].rel_path == "a.png"
        assert infos[-1].discovered == 1
        assert infos[-1].in_flight == 1

    def test_no_callback(self):
        """Test that a tracker without callback still counts."""
        tracker = SyncProgressTracker()
        tracker.on_sync_start()
        tracker.on_sync_complete()
        assert tracker.summary() == "Synced 0 files"


class TestSyncProgressDisplay:
    """Tests for the rich progress display."""

    def test_format_status(self):
        """Test the status text shown next to the bar."""
        display = SyncProgressDisplay(console=Console(file=io.StringIO()))
        info = SyncProgressInfo(
            event=SyncProgressEvent.IN_FLIGHT, discovered=3, new=1, in_flight=2
        )
        assert display._format_status(info) == "Synced 1 files (1 new), 2 in flight"

    def test_events_outside_context_ignored(self):
        """Test that events before the display starts are ignored."""
        display = SyncProgressDisplay(console=Console(file=io.StringIO()))
        display._handle_event(SyncProgressInfo(event=SyncProgressEvent.DISCOVERED))

    def test_run_without_progress(self):
        """Test running an engine without a display."""
        engine = Mock()
        engine.run.return_value = "result"

        assert run_sync_with_progress(engine, show_progress=False) == "result"
        engine.run.assert_called_once()

    def test_run_with_progress_installs_tracker(self):
        """Test that the display installs a tracker on the engine."""
        engine = Mock()
        engine.run.return_value = "result"

        assert run_sync_with_progress(engine, show_progress=True) == "result"
        assert isinstance(engine.tracker, SyncProgressTracker)
