"""Per-asset preprocessing: SVG rasterization, alpha bleed, animation extraction.

Every file goes through process_asset exactly once before it is hashed, so
the content hash always describes the bytes that are actually uploaded.
"""

import io
import logging
import threading
from pathlib import PurePosixPath
from typing import Optional

import blake3
import numpy as np
from PIL import Image

from .asset import Asset, AssetCategory, classify
from .exceptions import AsphaltAssetError
from .rbxm import extract_animation

logger = logging.getLogger(__name__)

# Offsets of the 8 neighbours considered when bleeding color outwards
_NEIGHBOURS = [(dy, dx) for dy in (-1, 0, 1) for dx in (-1, 0, 1) if dy or dx]


def hash_data(data: bytes) -> str:
    """Return the lowercase hex BLAKE3 digest of data."""
    return blake3.blake3(data).hexdigest()


class SvgRasterizer:
    """Renders SVG documents to PNG at their intrinsic size.

    Text is laid out with the fonts installed on the host, which cairo
    discovers through fontconfig once per process. A single instance is
    shared by every worker thread.
    """

    def __init__(self, dpi: float = 96.0):
        self.dpi = dpi
        self._lock = threading.Lock()
        self._module = None

    def _load(self):
        # cairo is loaded on first use so runs without SVG inputs never touch it
        with self._lock:
            if self._module is None:
                import cairosvg

                self._module = cairosvg
            return self._module

    def render(self, data: bytes) -> bytes:
        """Rasterize an SVG document.

        Args:
            data: SVG source

        Returns:
            PNG bytes

        Raises:
            AsphaltAssetError: If the document cannot be parsed or rendered
        """
        cairosvg = self._load()
        try:
            png = cairosvg.svg2png(bytestring=data, dpi=self.dpi)
        except Exception as e:
            raise AsphaltAssetError(f"Failed to parse SVG file: {e}") from e
        if not png:
            raise AsphaltAssetError("Failed to render SVG file")
        return png


def bleed_pixels(rgba: np.ndarray) -> np.ndarray:
    """Propagate color into fully transparent pixels.

    Works outwards from the opaque region one ring at a time: each transparent
    pixel touching already known pixels takes the average color of those
    neighbours. Alpha is left untouched.

    Args:
        rgba: Array of shape (height, width, 4), dtype uint8

    Returns:
        New array with RGB filled in for alpha == 0 pixels
    """
    height, width = rgba.shape[:2]
    transparent = rgba[:, :, 3] == 0
    known = ~transparent
    if not known.any() or known.all():
        return rgba.copy()

    rgb = rgba[:, :, :3].astype(np.float32)
    while not known.all():
        weighted = np.pad(rgb * known[:, :, None], ((1, 1), (1, 1), (0, 0)))
        weights = np.pad(known.astype(np.float32), 1)

        total = np.zeros_like(rgb)
        count = np.zeros((height, width), dtype=np.float32)
        for dy, dx in _NEIGHBOURS:
            total += weighted[1 + dy : 1 + dy + height, 1 + dx : 1 + dx + width]
            count += weights[1 + dy : 1 + dy + height, 1 + dx : 1 + dx + width]

        frontier = ~known & (count > 0)
        if not frontier.any():
            break
        rgb[frontier] = total[frontier] / count[frontier][:, None]
        known |= frontier

    result = rgba.copy()
    result[transparent, :3] = np.round(rgb[transparent]).astype(np.uint8)
    return result


def alpha_bleed(data: bytes) -> bytes:
    """Alpha-bleed an encoded image, keeping its raster format.

    Images without fully transparent pixels, formats without an alpha
    channel and data Pillow cannot decode are returned unchanged.
    """
    try:
        image = Image.open(io.BytesIO(data))
        image.load()
    except (OSError, ValueError, Image.DecompressionBombError) as e:
        logger.warning(f"Skipping alpha bleed, could not decode image: {e}")
        return data

    fmt = image.format
    if fmt == "JPEG" or not (
        image.mode in ("RGBA", "LA", "PA") or "transparency" in image.info
    ):
        return data

    rgba = np.array(image.convert("RGBA"))
    if not (rgba[:, :, 3] == 0).any():
        return data

    bled = Image.fromarray(bleed_pixels(rgba), "RGBA")
    out = io.BytesIO()
    bled.save(out, format=fmt)
    logger.debug(f"Alpha bled {image.width}x{image.height} {fmt} image")
    return out.getvalue()


def process_asset(
    rel_path: str,
    data: bytes,
    bleed: bool = True,
    rasterizer: Optional[SvgRasterizer] = None,
) -> Asset:
    """Turn raw file bytes into an Asset ready to be synced.

    Args:
        rel_path: Path relative to the input prefix, with forward slashes
        data: Raw file contents
        bleed: Alpha-bleed decals
        rasterizer: Shared SVG renderer (created on demand when omitted)

    Returns:
        Asset whose data, extension and hash reflect the transformed content

    Raises:
        AsphaltAssetError: If the extension is unknown or a transform fails
    """
    ext = PurePosixPath(rel_path).suffix.lower().lstrip(".")
    kind = classify(ext)

    if ext == "svg":
        data = (rasterizer or SvgRasterizer()).render(data)

    if kind.category == AssetCategory.DECAL and bleed:
        data = alpha_bleed(data)
    elif kind.is_animation:
        data = extract_animation(data, kind.model_format)

    asset = Asset(
        rel_path=rel_path,
        data=data,
        ext=kind.extension,
        kind=kind,
        hash=hash_data(data),
    )
    logger.debug(f"Processed {rel_path}: {kind.asset_type} {asset.hash[:12]}")
    return asset
