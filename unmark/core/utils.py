"""Utility helpers for decoding inputs and naming outputs."""

from __future__ import annotations

import io
import logging
import mimetypes
import re
from pathlib import Path
from typing import Optional, Union

import cv2
import numpy as np
from PIL import Image, UnidentifiedImageError

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

SUPPORTED_MIME_PATTERN = re.compile(r"image/(png|jpeg|webp)", re.IGNORECASE)
SUPPORTED_MIME_TYPES = ("image/png", "image/jpeg", "image/webp")

_EXTENSION_PATTERN = re.compile(r"\.[^.]+$")
_UNSAFE_CHARS = re.compile(r"[^\w\-]+", re.ASCII)
MAX_BASENAME_LENGTH = 80
OUTPUT_PREFIX = "unwatermarked_"

EXIF_ORIENTATION_TAG = 0x0112


def is_supported_mime(mime_type: Optional[str]) -> bool:
    return bool(mime_type) and SUPPORTED_MIME_PATTERN.search(mime_type) is not None


def guess_mime_type(path: PathLike) -> str:
    """Guess a MIME type from a file name, falling back to octet-stream."""
    suffix = Path(path).suffix.lower()
    # Older mimetypes tables do not know about webp.
    if suffix == ".webp":
        return "image/webp"
    mime_type, _ = mimetypes.guess_type(str(path))
    return mime_type or "application/octet-stream"


def to_bgra(image: np.ndarray) -> np.ndarray:
    """Normalise a decoded OpenCV image to 8-bit, 4-channel BGRA."""
    if image.dtype == np.uint16:
        image = (image >> 8).astype(np.uint8)
    elif image.dtype != np.uint8:
        image = np.clip(image, 0, 255).astype(np.uint8)
    if image.ndim == 2:
        return cv2.cvtColor(image, cv2.COLOR_GRAY2BGRA)
    channels = image.shape[2]
    if channels == 1:
        return cv2.cvtColor(image, cv2.COLOR_GRAY2BGRA)
    if channels == 3:
        return cv2.cvtColor(image, cv2.COLOR_BGR2BGRA)
    if channels == 4:
        return np.ascontiguousarray(image)
    raise ValueError(f"Unsupported channel count: {channels}")


def read_orientation(data: bytes) -> int:
    """Return the EXIF orientation tag of encoded image bytes (1 when absent)."""
    try:
        with Image.open(io.BytesIO(data)) as image:
            orientation = image.getexif().get(EXIF_ORIENTATION_TAG, 1)
    except (UnidentifiedImageError, OSError, SyntaxError, ValueError) as exc:
        logger.debug("No EXIF orientation available: %s", exc)
        return 1
    try:
        return int(orientation)
    except (TypeError, ValueError):
        return 1


def apply_orientation(raster: np.ndarray, orientation: int) -> np.ndarray:
    """Rotate or mirror a raster so it is upright for the given EXIF orientation."""
    if orientation == 2:
        return cv2.flip(raster, 1)
    if orientation == 3:
        return cv2.rotate(raster, cv2.ROTATE_180)
    if orientation == 4:
        return cv2.flip(raster, 0)
    if orientation == 5:
        return cv2.transpose(raster)
    if orientation == 6:
        return cv2.rotate(raster, cv2.ROTATE_90_CLOCKWISE)
    if orientation == 7:
        return cv2.flip(cv2.transpose(raster), -1)
    if orientation == 8:
        return cv2.rotate(raster, cv2.ROTATE_90_COUNTERCLOCKWISE)
    return raster


def decode_image(data: bytes) -> np.ndarray:
    """Decode encoded image bytes into an upright BGRA raster.

    OpenCV ignores EXIF orientation when decoding unchanged, so the tag is read
    with Pillow and applied here.

    Raises:
        ValueError: If the bytes are empty or OpenCV cannot decode them.
    """
    if not data:
        raise ValueError("Cannot decode an empty image.")
    buffer = np.frombuffer(data, dtype=np.uint8)
    image = cv2.imdecode(buffer, cv2.IMREAD_UNCHANGED)
    if image is None or image.size == 0:
        raise ValueError("Unable to decode image data.")
    raster = apply_orientation(to_bgra(image), read_orientation(data))
    logger.debug("Decoded image with shape %s", raster.shape)
    return raster


def safe_file_base_name(name: str) -> str:
    """Strip the extension and replace characters that are unsafe in file names."""
    base = _EXTENSION_PATTERN.sub("", name)
    base = _UNSAFE_CHARS.sub("_", base)[:MAX_BASENAME_LENGTH]
    return base or "image"


def output_filename(name: str, extension: str) -> str:
    return f"{OUTPUT_PREFIX}{safe_file_base_name(name)}.{extension}"


def bytes_to_human(size: float) -> str:
    if size is None or size < 0 or size != size or size == float("inf"):
        return ""
    units = ["B", "KB", "MB", "GB"]
    index = 0
    value = float(size)
    while value >= 1024 and index < len(units) - 1:
        value /= 1024
        index += 1
    return f"{value:.0f}{units[index]}" if index == 0 else f"{value:.1f}{units[index]}"


def format_count_text(done: int, total: int, phase: str = "Processing") -> str:
    return f"{phase} {done} of {total}…"


__all__ = [
    "OUTPUT_PREFIX",
    "SUPPORTED_MIME_TYPES",
    "bytes_to_human",
    "decode_image",
    "format_count_text",
    "guess_mime_type",
    "is_supported_mime",
    "output_filename",
    "safe_file_base_name",
    "to_bgra",
]
