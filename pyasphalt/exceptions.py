"""Exceptions raised by pyasphalt."""

from typing import Optional


class AsphaltError(Exception):
    """Base exception for all pyasphalt errors."""


class AsphaltConfigError(AsphaltError):
    """Raised when asphalt.toml is missing or invalid, or credentials are absent."""


class AsphaltLockfileError(AsphaltError):
    """Raised when the lockfile cannot be read or is in an unsupported format."""


class AsphaltAssetError(AsphaltError):
    """Raised when a single file cannot be turned into an uploadable asset."""


class AsphaltUnknownExtensionError(AsphaltAssetError):
    """Raised when a file extension does not map to any asset kind."""

    def __init__(self, extension: str):
        self.extension = extension
        super().__init__(f"Unknown extension: {extension!r}")


class AsphaltModelError(AsphaltAssetError):
    """Raised when a Roblox model container cannot be decoded or is not an animation."""


class AsphaltBackendError(AsphaltError):
    """Raised when a local sync target cannot be prepared or written."""


class AsphaltAPIError(AsphaltError):
    """Base exception for asset service errors."""


class AsphaltNetworkError(AsphaltAPIError):
    """Raised when the asset service cannot be reached."""


class AsphaltRateLimitError(AsphaltAPIError):
    """Raised when a request is still rate limited after all retries."""


class AsphaltFatalError(AsphaltAPIError):
    """Raised when the asset service returned a non-retryable error.

    Once raised, the client refuses every further request.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
    ):
        self.status_code = status_code
        self.body = body
        super().__init__(message)


class AsphaltPollError(AsphaltAPIError):
    """Raised when an upload operation never completes or completes without a result."""


class AsphaltUploadError(AsphaltAPIError):
    """Raised when an upload cannot be submitted or its response is malformed."""
