"""Watermark removal by reverse alpha blending.

The logo is composited as ``watermarked = a * 255 + (1 - a) * original``; with a
known per-pixel ``a`` the original value is recovered as
``(watermarked - a * 255) / (1 - a)``.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional, Tuple

import numpy as np

from .alpha_map import AlphaMapCache, get_alpha_map_cache
from .errors import WatermarkGeometryError
from .geometry import (
    WatermarkConfig,
    WatermarkRect,
    calculate_watermark_position,
    detect_watermark_config,
    rect_within_bounds,
)

logger = logging.getLogger(__name__)

# Alpha below this is noise in the reference capture.
ALPHA_THRESHOLD = 0.002
# Cap to keep 1 - a away from zero.
MAX_ALPHA = 0.99
LOGO_VALUE = 255.0


def reverse_alpha_blend(values: np.ndarray, alpha: np.ndarray) -> np.ndarray:
    """Recover original channel values from watermarked ones.

    Args:
        values: Watermarked values, shape ``(h, w, c)``, any numeric dtype.
        alpha: Logo opacity per pixel, shape ``(h, w)``.

    Returns:
        ``uint8`` array of the same shape as ``values``. Pixels whose alpha is
        below :data:`ALPHA_THRESHOLD` are returned unchanged.
    """
    source = np.asarray(values, dtype=np.float64)
    alpha = np.asarray(alpha, dtype=np.float64)
    capped = np.minimum(alpha, MAX_ALPHA)[:, :, np.newaxis]
    restored = (source - capped * LOGO_VALUE) / (1.0 - capped)
    # Round half up, as the watermark was produced by a browser canvas.
    restored = np.clip(np.floor(restored + 0.5), 0, 255)
    active = (alpha >= ALPHA_THRESHOLD)[:, :, np.newaxis]
    return np.where(active, restored, source).astype(np.uint8)


def remove_watermark(raster: np.ndarray, alpha_map: np.ndarray, rect: WatermarkRect) -> np.ndarray:
    """Correct the colour channels inside ``rect`` of ``raster`` in place.

    The alpha channel is left untouched. The rectangle must lie inside the
    raster and match the alpha map; anything else is a programming error.
    """
    height, width = raster.shape[:2]
    if not rect_within_bounds(rect, width, height):
        raise WatermarkGeometryError(
            f"Watermark rectangle {rect} exceeds raster bounds {width}x{height}"
        )
    if alpha_map.shape != (rect.height, rect.width):
        raise WatermarkGeometryError(
            f"Alpha map shape {alpha_map.shape} does not match rectangle {rect.width}x{rect.height}"
        )
    region = raster[rect.y : rect.y + rect.height, rect.x : rect.x + rect.width, :3]
    region[...] = reverse_alpha_blend(region, alpha_map)
    return raster


class ImageWatermarkRemover:
    """Resolve the watermark geometry for a raster and remove the logo."""

    def __init__(self, alpha_maps: Optional[AlphaMapCache] = None) -> None:
        self.alpha_maps = alpha_maps or get_alpha_map_cache()
        logger.debug("Initialized ImageWatermarkRemover (assets=%s)", self.alpha_maps.asset_dir)

    def locate(self, raster: np.ndarray) -> Tuple[WatermarkConfig, WatermarkRect]:
        height, width = raster.shape[:2]
        config = detect_watermark_config(width, height)
        return config, calculate_watermark_position(width, height, config)

    def remove_watermark(self, raster: np.ndarray) -> np.ndarray:
        """Remove the watermark from ``raster`` in place and return it."""
        if raster is None or raster.size == 0:
            raise ValueError("Cannot remove watermark from an empty image.")
        if raster.ndim != 3 or raster.shape[2] != 4:
            raise ValueError(f"Expected a BGRA raster, got shape {raster.shape}")
        config, rect = self.locate(raster)
        alpha_map = self.alpha_maps.get(config.logo_size)
        remove_watermark(raster, alpha_map, rect)
        logger.debug("Removed %spx watermark at (%s, %s)", config.logo_size, rect.x, rect.y)
        return raster

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "ImageWatermarkRemover":
        assets = dict(config.get("assets", {}) or {})
        return cls(alpha_maps=get_alpha_map_cache(assets.get("directory")))


__all__ = [
    "ALPHA_THRESHOLD",
    "MAX_ALPHA",
    "ImageWatermarkRemover",
    "remove_watermark",
    "reverse_alpha_blend",
]
