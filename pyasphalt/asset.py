"""Asset kinds, the extension classifier and asset references."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from .exceptions import AsphaltUnknownExtensionError


class AssetCategory(str, Enum):
    """Top-level asset classification."""

    DECAL = "decal"
    AUDIO = "audio"
    MODEL = "model"


class ModelFormat(str, Enum):
    """Container format of a Roblox model file."""

    BINARY = "binary"
    XML = "xml"


@dataclass(frozen=True)
class AssetKind:
    """Semantic kind of an asset.

    ``format`` is the raster or audio codec for decals and audio, and
    ``"static"`` or ``"animation"`` for models. Animations also carry the
    container format they were read from.
    """

    category: AssetCategory
    format: str
    model_format: Optional[ModelFormat] = None

    @property
    def is_animation(self) -> bool:
        return self.category == AssetCategory.MODEL and self.format == "animation"

    @property
    def asset_type(self) -> str:
        """Asset type token sent to the asset service."""
        if self.is_animation:
            return "Animation"
        return {
            AssetCategory.DECAL: "Decal",
            AssetCategory.AUDIO: "Audio",
            AssetCategory.MODEL: "Model",
        }[self.category]

    @property
    def extension(self) -> str:
        """Canonical file extension for data of this kind."""
        if self.category == AssetCategory.MODEL:
            if self.is_animation:
                return "rbxmx" if self.model_format == ModelFormat.XML else "rbxm"
            return "fbx"
        return self.format

    @property
    def mime_type(self) -> str:
        return _MIME_TYPES[self.extension]


def decal(fmt: str) -> AssetKind:
    return AssetKind(AssetCategory.DECAL, fmt)


def audio(fmt: str) -> AssetKind:
    return AssetKind(AssetCategory.AUDIO, fmt)


STATIC_MODEL = AssetKind(AssetCategory.MODEL, "static")
BINARY_ANIMATION = AssetKind(AssetCategory.MODEL, "animation", ModelFormat.BINARY)
XML_ANIMATION = AssetKind(AssetCategory.MODEL, "animation", ModelFormat.XML)

# svg is rasterized during preprocessing, so it classifies as a png decal
_KINDS_BY_EXTENSION: dict[str, AssetKind] = {
    "png": decal("png"),
    "svg": decal("png"),
    "jpg": decal("jpg"),
    "jpeg": decal("jpg"),
    "bmp": decal("bmp"),
    "tga": decal("tga"),
    "mp3": audio("mp3"),
    "ogg": audio("ogg"),
    "flac": audio("flac"),
    "wav": audio("wav"),
    "fbx": STATIC_MODEL,
    "rbxm": BINARY_ANIMATION,
    "rbxmx": XML_ANIMATION,
}

_MIME_TYPES: dict[str, str] = {
    "png": "image/png",
    "jpg": "image/jpeg",
    "bmp": "image/bmp",
    "tga": "image/tga",
    "mp3": "audio/mpeg",
    "ogg": "audio/ogg",
    "flac": "audio/flac",
    "wav": "audio/wav",
    "fbx": "model/fbx",
    "rbxm": "model/x-rbxm",
    "rbxmx": "model/x-rbxmx",
}


def classify(extension: str) -> AssetKind:
    """Map a file extension to its asset kind.

    Args:
        extension: Extension with or without the leading dot (case-insensitive)

    Raises:
        AsphaltUnknownExtensionError: If the extension is not supported
    """
    ext = extension.lower().lstrip(".")
    try:
        return _KINDS_BY_EXTENSION[ext]
    except KeyError:
        raise AsphaltUnknownExtensionError(ext) from None


@dataclass
class Asset:
    """A preprocessed file ready to be synced."""

    rel_path: str
    """Path relative to the input prefix, with forward slashes"""

    data: bytes
    """Final bytes after preprocessing"""

    ext: str
    """Canonical extension for data"""

    kind: AssetKind

    hash: str
    """Lowercase hex BLAKE3 digest of data"""

    @property
    def file_name(self) -> str:
        return self.rel_path.rsplit("/", 1)[-1]


class AssetRefKind(str, Enum):
    CLOUD = "cloud"
    STUDIO = "studio"


@dataclass(frozen=True)
class AssetRef:
    """Handle to a synced asset: a platform asset id or a local content URL."""

    kind: AssetRefKind
    value: Union[int, str]

    @classmethod
    def cloud(cls, asset_id: int) -> "AssetRef":
        return cls(AssetRefKind.CLOUD, int(asset_id))

    @classmethod
    def studio(cls, url: str) -> "AssetRef":
        return cls(AssetRefKind.STUDIO, url)

    @property
    def is_cloud(self) -> bool:
        return self.kind == AssetRefKind.CLOUD

    @property
    def asset_id(self) -> Optional[int]:
        return int(self.value) if self.is_cloud else None

    def to_url(self) -> str:
        """Render the string the runtime loads the asset with."""
        if self.is_cloud:
            return f"rbxassetid://{self.value}"
        return str(self.value)
