"""Sync engine for Asphalt - walk inputs, sync new assets, generate code."""

from .backends import (
    CloudBackend,
    DebugBackend,
    StudioBackend,
    SyncBackend,
    find_studio_content_path,
)
from .engine import SyncEngine, SyncEvent, SyncResult, SyncTarget
from .lockfile import (
    LOCKFILE_NAME,
    Lockfile,
    LockfileEntry,
    migrate_lockfile,
    read_lockfile,
)
from .progress import SyncProgressEvent, SyncProgressInfo, SyncProgressTracker
from .walker import WalkedFile, glob_prefix, walk_input

__all__ = [
    "SyncEngine",
    "SyncEvent",
    "SyncResult",
    "SyncTarget",
    "SyncBackend",
    "CloudBackend",
    "StudioBackend",
    "DebugBackend",
    "find_studio_content_path",
    "Lockfile",
    "LockfileEntry",
    "LOCKFILE_NAME",
    "read_lockfile",
    "migrate_lockfile",
    "SyncProgressEvent",
    "SyncProgressInfo",
    "SyncProgressTracker",
    "WalkedFile",
    "glob_prefix",
    "walk_input",
]
