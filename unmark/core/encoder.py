"""Encoding corrected rasters into PNG, JPEG or WebP bytes."""

from __future__ import annotations

import io
import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Mapping, Optional

import cv2
import numpy as np
from PIL import Image

from .errors import EncodeError

logger = logging.getLogger(__name__)

LOSSLESS_QUALITY = 0.999
MEDIUM_QUALITY = 0.85

Quantizer = Callable[[np.ndarray, int], Optional[bytes]]


class OutputFormat(str, Enum):
    PNG = "png"
    JPEG = "jpeg"
    WEBP = "webp"


_EXTENSIONS = {OutputFormat.PNG: "png", OutputFormat.JPEG: "jpg", OutputFormat.WEBP: "webp"}
_MIME_TYPES = {
    OutputFormat.PNG: "image/png",
    OutputFormat.JPEG: "image/jpeg",
    OutputFormat.WEBP: "image/webp",
}


def clamp_quality(value: Any) -> float:
    """Coerce a quality value into ``[0, 1]``; unusable values mean full quality."""
    try:
        quality = float(value)
    except (TypeError, ValueError):
        return 1.0
    if not math.isfinite(quality):
        return 1.0
    return max(0.0, min(1.0, quality))


@dataclass(frozen=True)
class OutputSpec:
    """Target format and quality applied to every item of a run."""

    format: OutputFormat = OutputFormat.PNG
    quality: float = 1.0

    def __post_init__(self) -> None:
        if not isinstance(self.format, OutputFormat):
            object.__setattr__(self, "format", OutputFormat(str(self.format).lower()))
        object.__setattr__(self, "quality", clamp_quality(self.quality))

    @property
    def extension(self) -> str:
        return _EXTENSIONS[self.format]

    @property
    def mime_type(self) -> str:
        return _MIME_TYPES[self.format]

    @classmethod
    def matching(cls, mime_type: Optional[str], quality: float = 1.0) -> "OutputSpec":
        """Build output settings whose format matches an input MIME type (PNG otherwise)."""
        mime = (mime_type or "").lower()
        if "image/jpeg" in mime:
            return cls(OutputFormat.JPEG, quality)
        if "image/webp" in mime:
            return cls(OutputFormat.WEBP, quality)
        return cls(OutputFormat.PNG, quality)

    @classmethod
    def from_config(cls, config: Mapping[str, Any], mime_type: Optional[str] = None) -> "OutputSpec":
        settings = dict(config.get("output", {}) or {})
        quality = settings.get("quality", 1.0)
        if settings.get("format"):
            return cls(settings["format"], quality)
        return cls.matching(mime_type, quality)

    def describe(self) -> str:
        percent = round(self.quality * 100)
        if self.format is OutputFormat.PNG:
            return "PNG lossless" if percent >= 100 else f"PNG compressed ~{percent}%"
        return f"{percent}%"


@dataclass(frozen=True)
class EncodedImage:
    data: bytes
    extension: str
    mime_type: str
    colors: int = 0
    degraded: bool = False
    notice: Optional[str] = None


def png_color_budget(quality: float) -> int:
    """Palette size for a PNG quality; ``0`` means encode losslessly."""
    if quality >= LOSSLESS_QUALITY:
        return 0
    if quality >= MEDIUM_QUALITY:
        return 256
    return 192


def composite_on_white(raster: np.ndarray) -> np.ndarray:
    """Flatten a BGRA raster onto an opaque white background (BGR result)."""
    colour = raster[:, :, :3].astype(np.float32)
    alpha = raster[:, :, 3:4].astype(np.float32) / 255.0
    flattened = colour * alpha + 255.0 * (1.0 - alpha)
    return np.clip(np.floor(flattened + 0.5), 0, 255).astype(np.uint8)


def quantize_png(rgba: np.ndarray, colors: int) -> bytes:
    """Encode an RGBA array as a palette PNG with at most ``colors`` entries."""
    image = Image.fromarray(np.ascontiguousarray(rgba))
    paletted = image.quantize(colors=colors, method=Image.Quantize.FASTOCTREE)
    buffer = io.BytesIO()
    paletted.save(buffer, format="PNG", optimize=True)
    return buffer.getvalue()


def _imencode(extension: str, image: np.ndarray, params: Optional[list] = None) -> bytes:
    try:
        success, encoded = cv2.imencode(extension, image, params or [])
    except cv2.error as exc:
        raise EncodeError(f"OpenCV failed to encode {extension}: {exc}") from exc
    if not success or encoded is None:
        raise EncodeError(f"OpenCV failed to encode {extension}")
    return encoded.tobytes()


class ImageEncoder:
    """Serialise rasters according to an :class:`OutputSpec`.

    Args:
        quantizer: Callable producing a palette PNG from an RGBA array and a
            colour budget. ``None`` disables lossy PNG output; such requests
            fall back to lossless PNG and are reported as degraded.
    """

    def __init__(self, quantizer: Optional[Quantizer] = quantize_png) -> None:
        self.quantizer = quantizer

    def encode(self, raster: np.ndarray, spec: OutputSpec) -> EncodedImage:
        if raster is None or raster.size == 0:
            raise EncodeError("Cannot encode an empty image.")
        if spec.format is OutputFormat.JPEG:
            quality = int(round(spec.quality * 100))
            data = _imencode(".jpg", composite_on_white(raster), [cv2.IMWRITE_JPEG_QUALITY, quality])
            return EncodedImage(data, spec.extension, spec.mime_type)
        if spec.format is OutputFormat.WEBP:
            # Quality above 100 switches OpenCV's WebP encoder to lossless.
            quality = max(1, min(100, int(round(spec.quality * 100))))
            data = _imencode(".webp", composite_on_white(raster), [cv2.IMWRITE_WEBP_QUALITY, quality])
            return EncodedImage(data, spec.extension, spec.mime_type)
        return self._encode_png(raster, spec)

    def _encode_png(self, raster: np.ndarray, spec: OutputSpec) -> EncodedImage:
        colors = png_color_budget(spec.quality)
        if colors == 0:
            return EncodedImage(_imencode(".png", raster), spec.extension, spec.mime_type)

        if self.quantizer is None:
            notice = "PNG compression is unavailable. Exporting lossless PNG instead."
            logger.warning(notice)
            return self._lossless_fallback(raster, spec, notice)

        try:
            data = self.quantizer(cv2.cvtColor(raster, cv2.COLOR_BGRA2RGBA), colors)
            if not data:
                raise EncodeError("Quantizer returned no data")
        except Exception as exc:
            logger.warning("PNG compression failed, falling back to lossless PNG: %s", exc)
            notice = "PNG compression failed for this image. Exporting lossless PNG instead."
            return self._lossless_fallback(raster, spec, notice)
        logger.debug("Quantized PNG to %s colours (%s bytes)", colors, len(data))
        return EncodedImage(data, spec.extension, spec.mime_type, colors=colors)

    def _lossless_fallback(self, raster: np.ndarray, spec: OutputSpec, notice: str) -> EncodedImage:
        data = _imencode(".png", raster)
        return EncodedImage(data, spec.extension, spec.mime_type, degraded=True, notice=notice)


__all__ = [
    "EncodedImage",
    "ImageEncoder",
    "OutputFormat",
    "OutputSpec",
    "clamp_quality",
    "composite_on_white",
    "png_color_budget",
    "quantize_png",
]
