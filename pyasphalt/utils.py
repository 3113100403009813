"""Utility functions for pyasphalt."""

import re

# =============================================================================
# Constants for asset service operations
# =============================================================================

# Retries for a single request that keeps getting rate limited
DEFAULT_MAX_RETRIES: int = 5

# Operation status polls after a submit, with the delay doubled between polls
DEFAULT_MAX_POLLS: int = 10
DEFAULT_POLL_DELAY: float = 1.0

# Request timeout (seconds)
DEFAULT_TIMEOUT: float = 30.0

# Display names are truncated from the left to this many characters
MAX_DISPLAY_NAME_LENGTH: int = 50

ASSET_DESCRIPTION: str = "Uploaded by Asphalt"

# Asset id returned instead of uploading when ASPHALT_TEST is set
TEST_ASSET_ID: int = 1337


# =============================================================================
# Display name utilities
# =============================================================================


def trim_display_name(name: str) -> str:
    """Keep the final characters of a file name that fit in a display name.

    Args:
        name: File name

    Returns:
        The last MAX_DISPLAY_NAME_LENGTH characters of the name

    Examples:
        >>> trim_display_name("icon.png")
        'icon.png'
        >>> len(trim_display_name("a" * 60 + ".png"))
        50
    """
    if len(name) > MAX_DISPLAY_NAME_LENGTH:
        return name[-MAX_DISPLAY_NAME_LENGTH:]
    return name


# =============================================================================
# Identifier utilities
# =============================================================================

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def is_valid_identifier(value: str) -> bool:
    """Check whether a table key can be written without quoting.

    Args:
        value: Table key

    Returns:
        True if value matches [A-Za-z_][A-Za-z0-9_]*

    Examples:
        >>> is_valid_identifier("icons")
        True
        >>> is_valid_identifier("test1.png")
        False
    """
    return bool(_IDENTIFIER_RE.match(value))


def project_identifier(directory_name: str) -> str:
    """Build the per-project folder name used inside the Studio content directory.

    Examples:
        >>> project_identifier("My Game")
        '.asphalt-my-game'
    """
    return ".asphalt-" + "-".join(directory_name.lower().split())


# =============================================================================
# Size formatting utilities
# =============================================================================


def format_size(size_bytes: int) -> str:
    """Render a byte count with a binary unit, e.g. "256 B" or "1.5 MB"."""
    if size_bytes < 1024:
        return f"{size_bytes} B"
    size = size_bytes / 1024
    for unit in ("KB", "MB"):
        if size < 1024:
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} GB"
