"""Core sync engine: walk inputs, sync new assets and generate code."""

import copy
import logging
import queue
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

from ..api import AssetClient
from ..asset import AssetRef
from ..codegen import write_codegen
from ..config import Config, InputConfig
from ..exceptions import AsphaltConfigError, AsphaltError
from ..output import OutputFormatter
from ..preprocess import SvgRasterizer, process_asset
from .backends import SyncBackend
from .lockfile import Lockfile, LockfileEntry
from .progress import SyncProgressEvent, SyncProgressTracker
from .walker import WalkedFile, walk_input

logger = logging.getLogger(__name__)


class SyncTarget(str, Enum):
    """Where new assets go."""

    CLOUD = "cloud"
    STUDIO = "studio"
    DEBUG = "debug"


@dataclass
class SyncEvent:
    """Message sent from an input worker to the collector."""

    event: SyncProgressEvent
    input_name: str
    rel_path: str
    hash: str = ""
    new: bool = False
    asset_ref: Optional[AssetRef] = None
    in_flight: bool = False
    """Whether the asset had been handed to the backend"""

    original_path: str = ""
    """For duplicates, the rel_path of the first file with the same content"""


@dataclass
class SyncResult:
    """Outcome of a sync run."""

    target: SyncTarget
    dry_run: bool = False
    discovered: int = 0
    new: int = 0
    noop: int = 0
    dupes: int = 0
    failed: int = 0
    fatal: bool = False
    """Whether the asset service returned a non-retryable error"""

    lockfile: Lockfile = field(default_factory=Lockfile)
    codegen: dict[str, dict[str, AssetRef]] = field(default_factory=dict)
    duplicates: dict[str, list[tuple[str, str]]] = field(default_factory=dict)
    """input name -> [(rel_path, original rel_path)]"""

    @property
    def success(self) -> bool:
        if self.failed or self.fatal:
            return False
        return not (self.dry_run and self.new)


class SyncEngine:
    """Orchestrates a sync run.

    Every input is walked and processed by its own worker thread; assets
    within an input are handled one at a time. Workers report through a
    queue to the calling thread, which is the only place counters, the
    lockfile and the generated code tables are touched.
    """

    def __init__(
        self,
        config: Config,
        target: SyncTarget,
        backend: Optional[SyncBackend] = None,
        existing_lockfile: Optional[Lockfile] = None,
        client: Optional[AssetClient] = None,
        dry_run: bool = False,
        output: Optional[OutputFormatter] = None,
        tracker: Optional[SyncProgressTracker] = None,
        lockfile_path: Optional[Path] = None,
    ):
        """Initialize sync engine.

        Args:
            config: Parsed asphalt.toml
            target: Sync target
            backend: Destination for new assets (not needed for a dry run)
            existing_lockfile: Lockfile read at startup
            client: Asset client shared with the backend, checked for fatal errors
            dry_run: Only report what would be uploaded (cloud target only)
            output: Output formatter for the final summary
            tracker: Progress tracker receiving every asset state change
            lockfile_path: Where to write the lockfile (defaults to the working
                directory)

        Raises:
            AsphaltConfigError: If dry_run is used with a local target, or no
                backend is given for a real run
        """
        if dry_run and target != SyncTarget.CLOUD:
            raise AsphaltConfigError("A dry run doesn't make sense in this context")
        if backend is None and not dry_run:
            raise AsphaltConfigError(f"No backend configured for target {target.value}")

        self.config = config
        self.target = target
        self.backend = backend
        self.existing_lockfile = existing_lockfile or Lockfile()
        self.client = client
        self.dry_run = dry_run
        self.output = output or OutputFormatter()
        self.tracker = tracker or SyncProgressTracker()
        self.lockfile_path = lockfile_path
        self.rasterizer = SvgRasterizer()

    # =========================
    # Workers
    # =========================

    def _produce(self, input_config: InputConfig, events: queue.Queue) -> None:
        """Walk one input and report every file to the collector."""
        try:
            files = walk_input(input_config.path)
            logger.debug(f"Input {input_config.name}: {len(files)} file(s) found")
            seen: dict[str, str] = {}
            for walked in files:
                events.put(
                    SyncEvent(
                        SyncProgressEvent.DISCOVERED, input_config.name, walked.rel_path
                    )
                )
                self._process_file(input_config, walked, seen, events)
        finally:
            events.put(None)

    def _fail(
        self,
        events: queue.Queue,
        input_name: str,
        walked: WalkedFile,
        reason: Exception,
        in_flight: bool = False,
    ) -> None:
        logger.warning(f"Failed to sync {walked.path}: {reason}")
        events.put(
            SyncEvent(
                SyncProgressEvent.FAILED,
                input_name,
                walked.rel_path,
                in_flight=in_flight,
            )
        )

    def _process_file(
        self,
        input_config: InputConfig,
        walked: WalkedFile,
        seen: dict[str, str],
        events: queue.Queue,
    ) -> None:
        input_name = input_config.name

        try:
            data = walked.path.read_bytes()
            asset = process_asset(
                walked.rel_path,
                data,
                bleed=input_config.bleed,
                rasterizer=self.rasterizer,
            )
        except (AsphaltError, OSError) as e:
            self._fail(events, input_name, walked, e)
            return
        except Exception as e:
            logger.debug("Unexpected error processing file", exc_info=True)
            self._fail(events, input_name, walked, e)
            return

        original = seen.get(asset.hash)
        if original is not None:
            logger.debug(f"Duplicate asset found: {walked.rel_path} -> {original}")
            events.put(
                SyncEvent(
                    SyncProgressEvent.DUPLICATE,
                    input_name,
                    walked.rel_path,
                    hash=asset.hash,
                    original_path=original,
                )
            )
            return
        seen[asset.hash] = walked.rel_path

        existing = self.existing_lockfile.get(input_name, asset.hash)
        if existing is not None and self.target == SyncTarget.CLOUD:
            logger.debug(f"Unchanged: {walked.rel_path} ({existing.asset_id})")
            events.put(
                SyncEvent(
                    SyncProgressEvent.FINISHED,
                    input_name,
                    walked.rel_path,
                    hash=asset.hash,
                    new=False,
                    asset_ref=AssetRef.cloud(existing.asset_id),
                )
            )
            return

        if self.dry_run:
            logger.debug(f"Would upload {walked.rel_path}")
            events.put(
                SyncEvent(
                    SyncProgressEvent.FINISHED,
                    input_name,
                    walked.rel_path,
                    hash=asset.hash,
                    new=True,
                )
            )
            return

        events.put(
            SyncEvent(
                SyncProgressEvent.IN_FLIGHT,
                input_name,
                walked.rel_path,
                hash=asset.hash,
            )
        )
        try:
            asset_ref = self.backend.sync(input_name, asset, existing)
        except (AsphaltError, OSError) as e:
            self._fail(events, input_name, walked, e, in_flight=True)
            return
        except Exception as e:
            logger.debug("Unexpected error syncing file", exc_info=True)
            self._fail(events, input_name, walked, e, in_flight=True)
            return

        events.put(
            SyncEvent(
                SyncProgressEvent.FINISHED,
                input_name,
                walked.rel_path,
                hash=asset.hash,
                new=True,
                asset_ref=asset_ref,
                in_flight=True,
            )
        )

    # =========================
    # Collector
    # =========================

    def _write_lockfile(self, lockfile: Lockfile) -> None:
        lockfile.write(self.lockfile_path)

    def _record_finished(self, event: SyncEvent, result: SyncResult) -> None:
        refs = result.codegen.setdefault(event.input_name, {})
        if event.asset_ref is not None:
            refs[event.rel_path] = event.asset_ref

        if event.asset_ref is not None and event.asset_ref.is_cloud:
            asset_id = event.asset_ref.asset_id
        else:
            existing = self.existing_lockfile.get(event.input_name, event.hash)
            asset_id = existing.asset_id if existing else None

        if asset_id is not None:
            result.lockfile.insert(
                event.input_name, event.hash, LockfileEntry(asset_id=asset_id)
            )

        self.tracker.on_finished(
            event.input_name, event.rel_path, event.new, event.in_flight
        )

        if event.new and not self.dry_run and self.target != SyncTarget.CLOUD:
            self._write_lockfile(result.lockfile)

    def _collect(self, event: SyncEvent, result: SyncResult) -> None:
        if event.event == SyncProgressEvent.DISCOVERED:
            self.tracker.on_discovered(event.input_name, event.rel_path)
        elif event.event == SyncProgressEvent.IN_FLIGHT:
            self.tracker.on_in_flight(event.input_name, event.rel_path)
        elif event.event == SyncProgressEvent.FINISHED:
            self._record_finished(event, result)
        elif event.event == SyncProgressEvent.DUPLICATE:
            result.duplicates.setdefault(event.input_name, []).append(
                (event.rel_path, event.original_path)
            )
            if self.config.inputs[event.input_name].warn_each_duplicate:
                logger.warning(
                    f"Duplicate file found: {event.rel_path} "
                    f"(original at {event.original_path})"
                )
            self.tracker.on_duplicate(event.input_name, event.rel_path)
        elif event.event == SyncProgressEvent.FAILED:
            self.tracker.on_failed(event.input_name, event.rel_path, event.in_flight)

    def _seed_web_assets(self, result: SyncResult) -> None:
        for input_name, input_config in self.config.inputs.items():
            refs = result.codegen.setdefault(input_name, {})
            for rel_path, web_asset in input_config.web.items():
                refs[rel_path] = AssetRef.cloud(web_asset.id)

    def run(self) -> SyncResult:
        """Run the sync.

        Returns:
            SyncResult with counters, the new lockfile and generated code tables

        Raises:
            AsphaltLockfileError: If the lockfile cannot be written
        """
        result = SyncResult(target=self.target, dry_run=self.dry_run)
        if self.target != SyncTarget.CLOUD:
            # Nothing is uploaded, so every known id is carried over
            result.lockfile = copy.deepcopy(self.existing_lockfile)

        self._seed_web_assets(result)
        self.tracker.on_sync_start()

        inputs = list(self.config.inputs.values())
        events: queue.Queue = queue.Queue()

        try:
            if inputs:
                with ThreadPoolExecutor(max_workers=len(inputs)) as executor:
                    futures = [
                        executor.submit(self._produce, input_config, events)
                        for input_config in inputs
                    ]
                    remaining = len(futures)
                    while remaining:
                        event = events.get()
                        if event is None:
                            remaining -= 1
                            continue
                        self._collect(event, result)

                    for future in futures:
                        future.result()
        finally:
            # Ids already uploaded are kept even when a worker dies
            if not self.dry_run and self.target == SyncTarget.CLOUD:
                self._write_lockfile(result.lockfile)

        result.discovered = self.tracker.discovered
        result.new = self.tracker.new
        result.noop = self.tracker.noop
        result.dupes = self.tracker.dupes
        result.failed = self.tracker.failed
        result.fatal = self.client is not None and self.client.fatally_failed

        for input_name, dupes in result.duplicates.items():
            logger.warning(
                f"{len(dupes)} duplicate file(s) found in input {input_name}. "
                "Only the first copy of each is uploaded and included in generated code."
            )

        if not self.dry_run:
            self._generate_code(result)

        self.tracker.on_sync_complete()
        self._display_summary(result)
        return result

    def _generate_code(self, result: SyncResult) -> None:
        for input_name, input_config in self.config.inputs.items():
            write_codegen(
                input_name,
                input_config.output_path,
                result.codegen.get(input_name, {}),
                self.config.codegen,
            )

    def _display_summary(self, result: SyncResult) -> None:
        """Display sync summary.

        Args:
            result: Finished run
        """
        if self.dry_run:
            if result.new:
                self.output.warning(f"{result.new} new assets would be uploaded")
            else:
                self.output.info("No new assets would be uploaded")
            return

        summary = self.tracker.summary()
        if result.success:
            self.output.success(summary)
        else:
            self.output.error(summary)
            if result.fatal:
                self.output.error(
                    "Stopped uploading after the asset service returned an error"
                )
