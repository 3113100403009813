"""Asphalt - sync Roblox assets and generate code that references them."""

from .api import AssetClient
from .asset import Asset, AssetKind, AssetRef, classify
from .exceptions import (
    AsphaltAPIError,
    AsphaltAssetError,
    AsphaltBackendError,
    AsphaltConfigError,
    AsphaltError,
    AsphaltFatalError,
    AsphaltLockfileError,
    AsphaltModelError,
    AsphaltNetworkError,
    AsphaltPollError,
    AsphaltRateLimitError,
    AsphaltUnknownExtensionError,
    AsphaltUploadError,
)
from .preprocess import hash_data, process_asset

__all__ = [
    "AssetClient",
    "Asset",
    "AssetKind",
    "AssetRef",
    "classify",
    "hash_data",
    "process_asset",
    "AsphaltAPIError",
    "AsphaltAssetError",
    "AsphaltBackendError",
    "AsphaltConfigError",
    "AsphaltError",
    "AsphaltFatalError",
    "AsphaltLockfileError",
    "AsphaltModelError",
    "AsphaltNetworkError",
    "AsphaltPollError",
    "AsphaltRateLimitError",
    "AsphaltUnknownExtensionError",
    "AsphaltUploadError",
]
