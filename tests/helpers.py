from __future__ import annotations

from pathlib import Path
from typing import Tuple

import cv2
import numpy as np

from unmark.core import SourceFile
from unmark.core.geometry import calculate_watermark_position, detect_watermark_config

PEAK_ALPHA = 0.5


def create_reference(size: int, peak_alpha: float = PEAK_ALPHA) -> np.ndarray:
    """Render a diamond-shaped white logo over black, as a BGR capture."""
    centre = (size - 1) / 2.0
    yy, xx = np.mgrid[0:size, 0:size]
    distance = np.abs(xx - centre) + np.abs(yy - centre)
    radius = size * 0.45
    alpha = np.clip((radius - distance) / (radius * 0.5), 0.0, 1.0) * peak_alpha
    value = np.floor(alpha * 255 + 0.5).astype(np.uint8)
    return np.dstack([value] * 3)


def write_reference_assets(directory: Path) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    for size in (48, 96):
        cv2.imwrite(str(directory / f"bg_{size}.png"), create_reference(size))
    return directory


def create_background(width: int = 160, height: int = 120) -> np.ndarray:
    """Gradient BGRA image with an opaque alpha channel."""
    horizontal = np.tile(np.linspace(20, 220, width, dtype=np.float32), (height, 1))
    vertical = np.tile(np.linspace(40, 180, height, dtype=np.float32)[:, np.newaxis], (1, width))
    blue = horizontal.astype(np.uint8)
    green = vertical.astype(np.uint8)
    red = ((horizontal + vertical) / 2).astype(np.uint8)
    alpha = np.full((height, width), 255, dtype=np.uint8)
    return np.dstack([blue, green, red, alpha])


def apply_watermark(raster: np.ndarray) -> np.ndarray:
    """Composite the synthetic logo over ``raster`` the way the generator does."""
    height, width = raster.shape[:2]
    config = detect_watermark_config(width, height)
    rect = calculate_watermark_position(width, height, config)
    alpha = create_reference(config.logo_size).max(axis=2).astype(np.float64) / 255.0
    watermarked = raster.copy()
    region = watermarked[rect.y : rect.y + rect.height, rect.x : rect.x + rect.width, :3].astype(np.float64)
    blended = alpha[:, :, np.newaxis] * 255.0 + (1.0 - alpha[:, :, np.newaxis]) * region
    watermarked[rect.y : rect.y + rect.height, rect.x : rect.x + rect.width, :3] = np.floor(
        blended + 0.5
    ).astype(np.uint8)
    return watermarked


def create_watermarked_sample(width: int = 160, height: int = 120) -> Tuple[np.ndarray, np.ndarray]:
    base = create_background(width, height)
    return base, apply_watermark(base)


def encode_png(raster: np.ndarray) -> bytes:
    success, encoded = cv2.imencode(".png", raster)
    assert success
    return encoded.tobytes()


def make_source(name: str = "sample.png", width: int = 160, height: int = 120) -> SourceFile:
    _, watermarked = create_watermarked_sample(width, height)
    return SourceFile(name=name, mime_type="image/png", data=encode_png(watermarked))


def make_corrupt_source(name: str = "broken.png") -> SourceFile:
    return SourceFile(name=name, mime_type="image/png", data=b"\x89PNG\r\n\x1a\nnot really a png")
