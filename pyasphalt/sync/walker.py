"""Glob-filtered discovery of input files."""

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from wcmatch import glob

logger = logging.getLogger(__name__)

GLOB_FLAGS = glob.GLOBSTAR | glob.BRACE | glob.DOTGLOB

_GLOB_CHARS = frozenset("*?[{")


@dataclass
class WalkedFile:
    """A file matched by an input glob."""

    path: Path
    """Path to the file, relative to the working directory"""

    rel_path: str
    """Path relative to the glob prefix (using forward slashes)"""


def _normalize(pattern: str) -> str:
    pattern = pattern.replace("\\", "/")
    while pattern.startswith("./"):
        pattern = pattern[2:]
    return pattern


def glob_prefix(pattern: str) -> Path:
    """Return the directory that every match of pattern lives under.

    This is the run of leading path segments that contain no glob
    metacharacters. A pattern without any metacharacters names a single file,
    so its parent directory is returned.

    Examples:
        >>> glob_prefix("assets/icons/**/*.png").as_posix()
        'assets/icons'
        >>> glob_prefix("**/*.png").as_posix()
        '.'
    """
    segments = _normalize(pattern).split("/")
    literal: list[str] = []
    for segment in segments:
        if any(char in _GLOB_CHARS for char in segment):
            break
        literal.append(segment)
    else:
        literal = literal[:-1]

    literal = [segment for segment in literal if segment]
    if not literal:
        return Path(".")
    if pattern.startswith("/"):
        return Path("/", *literal)
    return Path(*literal)


def walk_input(pattern: str) -> list[WalkedFile]:
    """Find every file matching an input glob.

    Recurses the directory tree under the glob's prefix in sorted order and
    keeps the files whose full path matches the pattern.

    Args:
        pattern: Input glob, e.g. ``assets/**/*``

    Returns:
        Matched files, in traversal order
    """
    normalized = _normalize(pattern)
    prefix = glob_prefix(pattern)

    if not prefix.is_dir():
        logger.debug(f"Input prefix {prefix} does not exist, nothing to walk")
        return []

    files: list[WalkedFile] = []
    for root, dirs, names in os.walk(prefix):
        dirs.sort()
        for name in sorted(names):
            path = Path(root) / name
            candidate = _normalize(path.as_posix())
            if not glob.globmatch(candidate, normalized, flags=GLOB_FLAGS):
                continue
            files.append(
                WalkedFile(path=path, rel_path=path.relative_to(prefix).as_posix())
            )

    logger.debug(f"Walked {prefix}: {len(files)} file(s) match {pattern}")
    return files
