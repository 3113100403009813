"""Lockfile store mapping content hashes to uploaded asset ids.

The lockfile (``asphalt.lock.toml``) is keyed by input name and content hash,
never by path, so moving or renaming a file does not cause a re-upload.

Current layout (version 2)::

    version = 2

    [inputs.assets.<hash>]
    asset_id = 1234

Older layouts are recognised so the user can be pointed at
``asphalt migrate-lockfile``:

- version 1: ``inputs.<name>.<path> = { hash, asset_id }``
- version 0 (no version key): ``entries.<path> = { hash, asset_id }``
"""

import logging
import os
import tempfile
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import tomli_w

from ..exceptions import AsphaltLockfileError

logger = logging.getLogger(__name__)

LOCKFILE_NAME = "asphalt.lock.toml"
CURRENT_VERSION = 2


@dataclass
class LockfileEntry:
    """A previously uploaded asset."""

    asset_id: int

    def to_dict(self) -> dict:
        return {"asset_id": self.asset_id}

    @classmethod
    def from_dict(cls, data: dict) -> "LockfileEntry":
        """Create LockfileEntry from dictionary."""
        try:
            return cls(asset_id=int(data["asset_id"]))
        except (KeyError, TypeError, ValueError) as e:
            raise AsphaltLockfileError(f"Invalid lockfile entry {data!r}") from e


@dataclass
class Lockfile:
    """In-memory lockfile in the current format."""

    inputs: dict[str, dict[str, LockfileEntry]] = field(default_factory=dict)
    """input name -> content hash -> entry"""

    version: int = CURRENT_VERSION

    def get(self, input_name: str, hash: str) -> Optional[LockfileEntry]:
        """Look up the entry for a content hash within an input."""
        return self.inputs.get(input_name, {}).get(hash)

    def insert(self, input_name: str, hash: str, entry: LockfileEntry) -> None:
        self.inputs.setdefault(input_name, {})[hash] = entry

    def __len__(self) -> int:
        return sum(len(entries) for entries in self.inputs.values())

    def entries(self):
        """Yield (input_name, hash, entry) sorted by input then hash."""
        for input_name in sorted(self.inputs):
            entries = self.inputs[input_name]
            for hash in sorted(entries):
                yield input_name, hash, entries[hash]

    def to_dict(self) -> dict:
        """Convert to the TOML document layout with sorted keys."""
        return {
            "version": self.version,
            "inputs": {
                input_name: {
                    hash: entries[hash].to_dict() for hash in sorted(entries)
                }
                for input_name, entries in sorted(self.inputs.items())
                if entries
            },
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Lockfile":
        """Create Lockfile from a version 2 document."""
        inputs: dict[str, dict[str, LockfileEntry]] = {}
        for input_name, entries in data.get("inputs", {}).items():
            inputs[input_name] = {
                hash: LockfileEntry.from_dict(entry) for hash, entry in entries.items()
            }
        return cls(inputs=inputs, version=CURRENT_VERSION)

    def dumps(self) -> str:
        return tomli_w.dumps(self.to_dict())

    def write(self, path: Optional[Path] = None) -> None:
        """Write the lockfile atomically.

        The document is written to a temporary file in the same directory and
        moved into place, so readers never observe a partial file.

        Args:
            path: Destination (defaults to asphalt.lock.toml in the current directory)

        Raises:
            AsphaltLockfileError: If the file cannot be written
        """
        target = path or Path(LOCKFILE_NAME)
        content = self.dumps().encode("utf-8")
        directory = target.parent if str(target.parent) else Path(".")

        try:
            fd, temp_name = tempfile.mkstemp(
                prefix=f".{target.name}.", suffix=".tmp", dir=directory
            )
            try:
                with os.fdopen(fd, "wb") as f:
                    f.write(content)
                os.replace(temp_name, target)
            except BaseException:
                Path(temp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise AsphaltLockfileError(f"Failed to write lockfile {target}: {e}") from e

        logger.debug(f"Wrote lockfile with {len(self)} entries to {target}")


def _read_document(path: Path) -> Optional[dict[str, Any]]:
    try:
        content = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except OSError as e:
        raise AsphaltLockfileError(f"Failed to read lockfile {path}: {e}") from e

    try:
        return tomllib.loads(content)
    except tomllib.TOMLDecodeError as e:
        raise AsphaltLockfileError(f"Failed to parse lockfile {path}: {e}") from e


def lockfile_version(data: dict[str, Any]) -> int:
    """Probe the format version of a decoded lockfile document.

    A document without a ``version`` key is the original layout, version 0.
    """
    version = data.get("version", 0)
    if not isinstance(version, int):
        raise AsphaltLockfileError(f"Invalid lockfile version {version!r}")
    return version


def read_lockfile(path: Optional[Path] = None) -> Lockfile:
    """Read the lockfile, returning an empty one if it does not exist.

    Args:
        path: Lockfile path (defaults to asphalt.lock.toml in the current directory)

    Raises:
        AsphaltLockfileError: If the file cannot be parsed, uses an older
            layout that needs migrating, or a newer unsupported one
    """
    target = path or Path(LOCKFILE_NAME)
    data = _read_document(target)
    if data is None:
        logger.debug(f"No lockfile found at {target}, starting empty")
        return Lockfile()

    version = lockfile_version(data)
    if version < CURRENT_VERSION:
        raise AsphaltLockfileError(
            f"Your lockfile uses version {version} of the format. "
            "Run `asphalt migrate-lockfile` to upgrade it."
        )
    if version > CURRENT_VERSION:
        raise AsphaltLockfileError(
            f"Lockfile version {version} is not supported by this version of Asphalt"
        )

    lockfile = Lockfile.from_dict(data)
    logger.debug(f"Loaded lockfile with {len(lockfile)} entries")
    return lockfile


def _legacy_entry(path: str, data: Any) -> tuple[str, LockfileEntry]:
    if not isinstance(data, dict) or "hash" not in data:
        raise AsphaltLockfileError(f"Invalid lockfile entry for {path!r}")
    return str(data["hash"]), LockfileEntry.from_dict(data)


def migrate_lockfile(
    path: Optional[Path] = None, input_name: Optional[str] = None
) -> Lockfile:
    """Upgrade a version 0 or 1 lockfile to the current format and write it.

    Version 1 entries keep their input names. Version 0 lockfiles have no
    inputs, so their entries are placed under input_name.

    Args:
        path: Lockfile path (defaults to asphalt.lock.toml in the current directory)
        input_name: Input receiving version 0 entries

    Returns:
        The migrated lockfile

    Raises:
        AsphaltLockfileError: If there is nothing to migrate, the lockfile is
            already current, or input_name is missing for a version 0 file
    """
    target = path or Path(LOCKFILE_NAME)
    data = _read_document(target)
    if data is None:
        raise AsphaltLockfileError(f"No lockfile found at {target}")

    version = lockfile_version(data)
    if version >= CURRENT_VERSION:
        raise AsphaltLockfileError("Your lockfile is already up to date")

    lockfile = Lockfile()
    if version == 0:
        if not input_name:
            raise AsphaltLockfileError(
                "This lockfile predates inputs. Pass --input-name to choose the "
                "input its entries belong to."
            )
        for asset_path, entry_data in data.get("entries", {}).items():
            hash, entry = _legacy_entry(asset_path, entry_data)
            lockfile.insert(input_name, hash, entry)
    else:
        for name, entries in data.get("inputs", {}).items():
            for asset_path, entry_data in entries.items():
                hash, entry = _legacy_entry(asset_path, entry_data)
                lockfile.insert(name, hash, entry)

    lockfile.write(target)
    logger.debug(f"Migrated lockfile from version {version} ({len(lockfile)} entries)")
    return lockfile
