"""Sync targets: upload to the cloud, mirror into Studio, or dump for debugging."""

import logging
import os
import shutil
import sys
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from ..api import AssetClient
from ..asset import Asset, AssetCategory, AssetRef
from ..config import CONTENT_PATH_ENV
from ..exceptions import AsphaltBackendError
from ..utils import project_identifier
from .lockfile import LockfileEntry

logger = logging.getLogger(__name__)

DEBUG_DIR_NAME = ".asphalt-debug"

MACOS_CONTENT_PATH = Path("/Applications/RobloxStudio.app/Contents/Resources/content")
STUDIO_EXECUTABLE = "RobloxStudioBeta.exe"


class SyncBackend(ABC):
    """A destination for assets that are not already known to the lockfile."""

    @abstractmethod
    def sync(
        self,
        input_name: str,
        asset: Asset,
        existing: Optional[LockfileEntry] = None,
    ) -> Optional[AssetRef]:
        """Sync one asset.

        Args:
            input_name: Input the asset belongs to
            asset: Preprocessed asset
            existing: Lockfile entry for the asset's hash, if any

        Returns:
            Reference for generated code, or None if the asset gets no reference
        """


def _replace_directory(path: Path) -> None:
    try:
        if path.exists():
            shutil.rmtree(path)
        path.mkdir(parents=True)
    except OSError as e:
        raise AsphaltBackendError(f"Failed to prepare directory {path}: {e}") from e


def _write_file(path: Path, data: bytes) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
    except OSError as e:
        raise AsphaltBackendError(f"Failed to write asset to {path}: {e}") from e


class CloudBackend(SyncBackend):
    """Uploads assets through the asset service."""

    def __init__(self, client: AssetClient):
        self.client = client

    def sync(
        self,
        input_name: str,
        asset: Asset,
        existing: Optional[LockfileEntry] = None,
    ) -> Optional[AssetRef]:
        asset_id = self.client.upload(asset)
        logger.debug(f"Uploaded {input_name}/{asset.rel_path} as {asset_id}")
        return AssetRef.cloud(asset_id)


def find_studio_content_path() -> Path:
    """Locate the content directory of the local Roblox Studio install.

    ROBLOX_CONTENT_PATH takes precedence when it names an existing path.

    Raises:
        AsphaltBackendError: If no Studio install can be found
    """
    override = os.environ.get(CONTENT_PATH_ENV)
    if override and Path(override).exists():
        return Path(override)

    if sys.platform == "win32":
        local_app_data = os.environ.get("LOCALAPPDATA")
        if local_app_data:
            versions = Path(local_app_data) / "Roblox" / "Versions"
            candidates = sorted(
                versions.glob(f"*/{STUDIO_EXECUTABLE}"),
                key=lambda exe: exe.stat().st_mtime,
                reverse=True,
            )
            if candidates:
                return candidates[0].parent / "content"
    elif sys.platform == "darwin":
        if MACOS_CONTENT_PATH.exists():
            return MACOS_CONTENT_PATH

    raise AsphaltBackendError(
        "Could not find a Roblox Studio installation. Set "
        f"{CONTENT_PATH_ENV} to your Studio content directory."
    )


class StudioBackend(SyncBackend):
    """Mirrors assets into Studio's content directory.

    Assets are written to ``content/.asphalt-<project>/<hash>.<ext>`` and
    referenced with ``rbxasset://`` URLs. The project directory is wiped the
    first time an asset is synced. Models cannot be loaded from local content,
    so they reuse ids already present in the lockfile.
    """

    def __init__(
        self,
        content_path: Optional[Path] = None,
        project_dir: Optional[Path] = None,
    ):
        self.content_path = content_path or find_studio_content_path()
        project_dir = project_dir or Path.cwd()
        self.identifier = project_identifier(project_dir.resolve().name)
        self.sync_path = self.content_path / self.identifier
        self._prepared = False
        self._lock = threading.Lock()

    def _prepare(self) -> None:
        with self._lock:
            if not self._prepared:
                logger.info(f"Assets will be synced to: {self.sync_path}")
                _replace_directory(self.sync_path)
                self._prepared = True

    def sync(
        self,
        input_name: str,
        asset: Asset,
        existing: Optional[LockfileEntry] = None,
    ) -> Optional[AssetRef]:
        if asset.kind.category == AssetCategory.MODEL:
            if existing is not None:
                return AssetRef.cloud(existing.asset_id)
            logger.warning(
                f"Models cannot be synced to Studio, skipping {asset.rel_path}. "
                "Upload it with the cloud target first."
            )
            return None

        self._prepare()
        file_name = f"{asset.hash}.{asset.ext}"
        _write_file(self.sync_path / file_name, asset.data)
        return AssetRef.studio(f"rbxasset://{self.identifier}/{file_name}")


class DebugBackend(SyncBackend):
    """Dumps processed assets into ``.asphalt-debug`` for inspection."""

    def __init__(self, project_dir: Optional[Path] = None):
        self.sync_path = (project_dir or Path(".")) / DEBUG_DIR_NAME
        logger.info(f"Assets will be synced to: {self.sync_path}")
        _replace_directory(self.sync_path)

    def sync(
        self,
        input_name: str,
        asset: Asset,
        existing: Optional[LockfileEntry] = None,
    ) -> Optional[AssetRef]:
        _write_file(self.sync_path / asset.rel_path, asset.data)
        return None
