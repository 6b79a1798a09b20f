"""Alpha maps derived from captured watermark reference images.

Each reference image is the white logo rendered over a black background, so a
pixel's brightest channel divided by 255 estimates the logo opacity there.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Dict, Optional, Union

import cv2
import numpy as np

from .errors import SETUP_ACCESS_BLOCKED, SETUP_MISSING, SETUP_UNDECODABLE, SetupError
from .geometry import LOGO_SIZES

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

DEFAULT_ASSET_DIR = Path(__file__).resolve().parent.parent / "assets"
ASSET_TEMPLATE = "bg_{size}.png"


def calculate_alpha_map(reference: np.ndarray) -> np.ndarray:
    """Compute ``max(R, G, B) / 255`` for every pixel of a reference raster."""
    if reference is None or reference.size == 0:
        raise ValueError("Cannot build an alpha map from an empty image.")
    if reference.ndim == 2:
        colour = reference
    else:
        colour = reference[:, :, :3].max(axis=2)
    alpha_map = colour.astype(np.float32) / 255.0
    alpha_map.flags.writeable = False
    return alpha_map


def asset_path(asset_dir: PathLike, size: int) -> Path:
    return Path(asset_dir) / ASSET_TEMPLATE.format(size=size)


def load_reference(path: PathLike, size: int) -> np.ndarray:
    """Read and decode one reference capture, classifying any failure."""
    path = Path(path)
    try:
        data = path.read_bytes()
    except FileNotFoundError as exc:
        raise SetupError(
            f"Watermark reference image not found: {path}", reason=SETUP_MISSING, path=path
        ) from exc
    except PermissionError as exc:
        raise SetupError(
            f"Access to watermark reference image blocked: {path}",
            reason=SETUP_ACCESS_BLOCKED,
            path=path,
        ) from exc
    except IsADirectoryError as exc:
        raise SetupError(
            f"Watermark reference path is a directory: {path}", reason=SETUP_MISSING, path=path
        ) from exc

    image = cv2.imdecode(np.frombuffer(data, dtype=np.uint8), cv2.IMREAD_COLOR) if data else None
    if image is None:
        raise SetupError(
            f"Unable to decode watermark reference image: {path}",
            reason=SETUP_UNDECODABLE,
            path=path,
        )
    if image.shape[:2] != (size, size):
        raise SetupError(
            f"Watermark reference {path} is {image.shape[1]}x{image.shape[0]}, "
            f"expected {size}x{size}",
            reason=SETUP_UNDECODABLE,
            path=path,
        )
    return image


class AlphaMapCache:
    """Builds each alpha map at most once and shares the read-only result."""

    def __init__(self, asset_dir: Optional[PathLike] = None) -> None:
        self.asset_dir = Path(asset_dir) if asset_dir else DEFAULT_ASSET_DIR
        self._maps: Dict[int, np.ndarray] = {}
        self._lock = threading.Lock()

    def get(self, size: int) -> np.ndarray:
        if size not in LOGO_SIZES:
            raise ValueError(f"No watermark variant for logo size {size}")
        cached = self._maps.get(size)
        if cached is not None:
            return cached
        with self._lock:
            cached = self._maps.get(size)
            if cached is None:
                reference = load_reference(asset_path(self.asset_dir, size), size)
                cached = calculate_alpha_map(reference)
                self._maps[size] = cached
                logger.info("Built %sx%s alpha map from %s", size, size, self.asset_dir)
        return cached

    def preload(self) -> None:
        """Build every variant, raising :class:`SetupError` on the first failure."""
        for size in LOGO_SIZES:
            self.get(size)

    def is_loaded(self, size: int) -> bool:
        return size in self._maps


_default_caches: Dict[Path, AlphaMapCache] = {}
_default_lock = threading.Lock()


def get_alpha_map_cache(asset_dir: Optional[PathLike] = None) -> AlphaMapCache:
    """Return the process-wide cache for an asset directory."""
    key = Path(asset_dir).resolve() if asset_dir else DEFAULT_ASSET_DIR
    with _default_lock:
        cache = _default_caches.get(key)
        if cache is None:
            cache = AlphaMapCache(key)
            _default_caches[key] = cache
    return cache


__all__ = [
    "ASSET_TEMPLATE",
    "DEFAULT_ASSET_DIR",
    "AlphaMapCache",
    "asset_path",
    "calculate_alpha_map",
    "get_alpha_map_cache",
    "load_reference",
]
