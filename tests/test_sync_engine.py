"""Tests for the sync engine."""

import struct
import zlib
from pathlib import Path
from unittest.mock import Mock

import pytest

from pyasphalt.asset import AssetRef
from pyasphalt.config import (
    CodegenConfig,
    Config,
    Creator,
    CreatorType,
    InputConfig,
    WebAsset,
)
from pyasphalt.exceptions import AsphaltConfigError, AsphaltUploadError
from pyasphalt.preprocess import hash_data
from pyasphalt.sync.backends import SyncBackend
from pyasphalt.sync.engine import SyncEngine, SyncTarget
from pyasphalt.sync.lockfile import Lockfile, LockfileEntry, read_lockfile
from pyasphalt.sync.progress import SyncProgressEvent, SyncProgressTracker


@pytest.fixture
def project(tmp_path, monkeypatch):
    """Run from an empty project directory."""
    monkeypatch.chdir(tmp_path)
    return tmp_path


def make_config(*names: str, **input_kwargs) -> Config:
    names = names or ("assets",)
    return Config(
        creator=Creator(CreatorType.USER, 1),
        inputs={
            name: InputConfig(
                name=name,
                path=f"{name}/**/*",
                output_path=Path("output"),
                **input_kwargs,
            )
            for name in names
        },
        codegen=CodegenConfig(),
    )


def add_file(project: Path, rel_path: str, data: bytes) -> None:
    path = project / rel_path
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)


def png_header(width: int, height: int) -> bytes:
    def chunk(tag: bytes, data: bytes) -> bytes:
        crc = zlib.crc32(tag + data)
        return struct.pack(">I", len(data)) + tag + data + struct.pack(">I", crc)

    ihdr = struct.pack(">IIBBBBB", width, height, 8, 6, 0, 0, 0)
    return (
        b"\x89PNG\r\n\x1a\n"
        + chunk(b"IHDR", ihdr)
        + chunk(b"IDAT", b"")
        + chunk(b"IEND", b"")
    )


def make_backend(start_id: int = 100) -> Mock:
    backend = Mock(spec=SyncBackend)
    ids = iter(range(start_id, start_id + 1000))
    backend.sync.side_effect = lambda input_name, asset, existing=None: AssetRef.cloud(
        next(ids)
    )
    return backend


class TestSyncEngineInit:
    """Tests for engine construction."""

    def test_dry_run_local_target(self):
        """Test that a dry run is refused for local targets."""
        with pytest.raises(AsphaltConfigError, match="dry run"):
            SyncEngine(make_config(), SyncTarget.DEBUG, dry_run=True)

    def test_backend_required(self):
        """Test that a real run needs a backend."""
        with pytest.raises(AsphaltConfigError):
            SyncEngine(make_config(), SyncTarget.CLOUD)


class TestCloudSync:
    """Tests for syncing to the cloud target."""

    def test_new_asset_uploaded(self, project):
        """Test that a new file is synced and recorded."""
        add_file(project, "assets/a.png", b"aaaa")
        backend = make_backend()

        result = SyncEngine(make_config(), SyncTarget.CLOUD, backend=backend).run()

        assert result.new == 1
        assert result.success
        backend.sync.assert_called_once()
        assert result.lockfile.get("assets", hash_data(b"aaaa")) == LockfileEntry(100)
        assert read_lockfile().get("assets", hash_data(b"aaaa")) == LockfileEntry(100)
        assert result.codegen["assets"]["a.png"] == AssetRef.cloud(100)

    def test_known_hash_is_noop(self, project):
        """Test that a hash already in the lockfile is not uploaded again."""
        add_file(project, "assets/moved/a.png", b"aaaa")
        lockfile = Lockfile()
        lockfile.insert("assets", hash_data(b"aaaa"), LockfileEntry(55))
        backend = make_backend()

        result = SyncEngine(
            make_config(), SyncTarget.CLOUD, backend=backend, existing_lockfile=lockfile
        ).run()

        backend.sync.assert_not_called()
        assert result.noop == 1
        assert result.new == 0
        assert result.codegen["assets"]["moved/a.png"] == AssetRef.cloud(55)

    def test_lockfile_drops_stale_entries(self, project):
        """Test that the cloud lockfile only keeps hashes seen in this run."""
        add_file(project, "assets/a.png", b"aaaa")
        lockfile = Lockfile()
        lockfile.insert("assets", "stale", LockfileEntry(1))

        result = SyncEngine(
            make_config(),
            SyncTarget.CLOUD,
            backend=make_backend(),
            existing_lockfile=lockfile,
        ).run()

        assert result.lockfile.get("assets", "stale") is None
        assert len(result.lockfile) == 1

    def test_duplicates_uploaded_once(self, project):
        """Test that identical content within an input is synced once."""
        add_file(project, "assets/a.png", b"same")
        add_file(project, "assets/b.png", b"same")
        backend = make_backend()

        result = SyncEngine(make_config(), SyncTarget.CLOUD, backend=backend).run()

        assert backend.sync.call_count == 1
        assert result.new == 1
        assert result.dupes == 1
        assert result.duplicates == {"assets": [("b.png", "a.png")]}
        assert list(result.codegen["assets"]) == ["a.png"]
        assert result.success

    def test_duplicates_across_inputs_are_independent(self, project):
        """Test that the same content in two inputs is synced for each."""
        add_file(project, "ui/a.png", b"same")
        add_file(project, "sfx/a.png", b"same")
        backend = make_backend()

        result = SyncEngine(
            make_config("ui", "sfx"), SyncTarget.CLOUD, backend=backend
        ).run()

        assert backend.sync.call_count == 2
        assert result.dupes == 0
        assert set(result.lockfile.inputs) == {"ui", "sfx"}

    def test_backend_failure_counts_failed(self, project):
        """Test that a failed upload does not stop other files."""
        add_file(project, "assets/a.png", b"aaaa")
        add_file(project, "assets/b.png", b"bbbb")
        backend = Mock(spec=SyncBackend)
        backend.sync.side_effect = [AsphaltUploadError("nope"), AssetRef.cloud(9)]

        result = SyncEngine(make_config(), SyncTarget.CLOUD, backend=backend).run()

        assert result.failed == 1
        assert result.new == 1
        assert not result.success
        assert list(result.codegen["assets"]) == ["b.png"]

    def test_unknown_extension_fails(self, project):
        """Test that unsupported files are failures, not crashes."""
        add_file(project, "assets/readme.txt", b"hello")

        result = SyncEngine(
            make_config(), SyncTarget.CLOUD, backend=make_backend()
        ).run()

        assert result.failed == 1
        assert not result.success

    def test_oversized_image_does_not_stop_run(self, project):
        """Test that a texture too large to decode is synced without bleeding."""
        add_file(project, "assets/a.png", b"aaaa")
        huge = png_header(20000, 20000)
        add_file(project, "assets/b.png", huge)
        backend = make_backend()

        result = SyncEngine(make_config(), SyncTarget.CLOUD, backend=backend).run()

        assert result.new == 2
        assert result.failed == 0
        assert read_lockfile().get("assets", hash_data(huge)) == LockfileEntry(101)

    def test_unexpected_backend_error_counts_failed(self, project):
        """Test that an unexpected error from a backend only fails that file."""
        add_file(project, "assets/a.png", b"aaaa")
        add_file(project, "assets/b.png", b"bbbb")
        backend = Mock(spec=SyncBackend)
        backend.sync.side_effect = [RuntimeError("boom"), AssetRef.cloud(9)]

        result = SyncEngine(make_config(), SyncTarget.CLOUD, backend=backend).run()

        assert result.failed == 1
        assert result.new == 1
        assert read_lockfile().get("assets", hash_data(b"bbbb")) == LockfileEntry(9)

    def test_lockfile_written_when_interrupted(self, project):
        """Test that ids uploaded before an interrupt are still recorded."""
        add_file(project, "assets/a.png", b"aaaa")
        add_file(project, "assets/b.png", b"bbbb")
        backend = Mock(spec=SyncBackend)
        backend.sync.side_effect = [AssetRef.cloud(7), KeyboardInterrupt()]

        with pytest.raises(KeyboardInterrupt):
            SyncEngine(make_config(), SyncTarget.CLOUD, backend=backend).run()

        lockfile = read_lockfile()
        assert lockfile.get("assets", hash_data(b"aaaa")) == LockfileEntry(7)
        assert lockfile.get("assets", hash_data(b"bbbb")) is None

    def test_fatal_client_fails_run(self, project):
        """Test that a fatally failed client makes the run unsuccessful."""
        add_file(project, "assets/a.png", b"aaaa")
        client = Mock()
        client.fatally_failed = True

        result = SyncEngine(
            make_config(), SyncTarget.CLOUD, backend=make_backend(), client=client
        ).run()

        assert result.fatal
        assert not result.success

    def test_web_assets_seeded(self, project):
        """Test that web assets reach generated code without files."""
        config = make_config(web={"logo.png": WebAsset(id=1234)})

        result = SyncEngine(config, SyncTarget.CLOUD, backend=make_backend()).run()

        assert result.codegen["assets"]["logo.png"] == AssetRef.cloud(1234)
        code = (project / "output" / "assets.luau").read_text()
        assert "rbxassetid://1234" in code


class TestDryRun:
    """Tests for cloud dry runs."""

    def test_counts_without_syncing(self, project):
        """Test that a dry run reports new files without writing anything."""
        add_file(project, "assets/a.png", b"aaaa")

        result = SyncEngine(make_config(), SyncTarget.CLOUD, dry_run=True).run()

        assert result.new == 1
        assert not result.success
        assert not (project / "asphalt.lock.toml").exists()
        assert not (project / "output").exists()

    def test_cached_is_success(self, project):
        """Test that a dry run with every hash known succeeds."""
        add_file(project, "assets/a.png", b"aaaa")
        lockfile = Lockfile()
        lockfile.insert("assets", hash_data(b"aaaa"), LockfileEntry(1))

        result = SyncEngine(
            make_config(), SyncTarget.CLOUD, existing_lockfile=lockfile, dry_run=True
        ).run()

        assert result.noop == 1
        assert result.success


class TestLocalTargets:
    """Tests for studio and debug runs."""

    def test_known_hash_still_synced(self, project):
        """Test that local targets sync every file and pass the lockfile entry."""
        add_file(project, "assets/a.png", b"aaaa")
        lockfile = Lockfile()
        lockfile.insert("assets", hash_data(b"aaaa"), LockfileEntry(7))
        backend = Mock(spec=SyncBackend)
        backend.sync.return_value = AssetRef.studio("rbxasset://x/a.png")

        result = SyncEngine(
            make_config(), SyncTarget.STUDIO, backend=backend, existing_lockfile=lockfile
        ).run()

        _, asset, existing = backend.sync.call_args.args
        assert asset.rel_path == "a.png"
        assert existing == LockfileEntry(7)
        assert result.new == 1
        assert result.codegen["assets"]["a.png"] == AssetRef.studio("rbxasset://x/a.png")

    def test_lockfile_carried_over(self, project):
        """Test that local runs keep every existing lockfile entry."""
        add_file(project, "assets/a.png", b"aaaa")
        lockfile = Lockfile()
        lockfile.insert("assets", "unrelated", LockfileEntry(3))
        backend = Mock(spec=SyncBackend)
        backend.sync.return_value = None

        result = SyncEngine(
            make_config(), SyncTarget.DEBUG, backend=backend, existing_lockfile=lockfile
        ).run()

        assert result.lockfile.get("assets", "unrelated") == LockfileEntry(3)
        assert read_lockfile().get("assets", "unrelated") == LockfileEntry(3)
        assert result.codegen["assets"] == {}


class TestProgressEvents:
    """Tests for tracker notifications."""

    def test_event_order(self, project):
        """Test the events reported for a single uploaded file."""
        add_file(project, "assets/a.png", b"aaaa")
        events = []
        tracker = SyncProgressTracker(callback=lambda info: events.append(info.event))

        SyncEngine(
            make_config(), SyncTarget.CLOUD, backend=make_backend(), tracker=tracker
        ).run()

        assert events == [
            SyncProgressEvent.SYNC_START,
            SyncProgressEvent.DISCOVERED,
            SyncProgressEvent.IN_FLIGHT,
            SyncProgressEvent.FINISHED,
            SyncProgressEvent.SYNC_COMPLETE,
        ]
        assert tracker.in_flight == 0

    def test_summary(self, project):
        """Test the tracker summary after a mixed run."""
        add_file(project, "assets/a.png", b"same")
        add_file(project, "assets/b.png", b"same")
        add_file(project, "assets/c.txt", b"text")
        tracker = SyncProgressTracker()

        SyncEngine(
            make_config(), SyncTarget.CLOUD, backend=make_backend(), tracker=tracker
        ).run()

        assert tracker.summary() == "Synced 2 files (1 new, 1 duplicates, 1 failed)"
