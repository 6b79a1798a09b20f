"""Fixed watermark geometry lookup."""

from __future__ import annotations

from dataclasses import dataclass

LARGE_IMAGE_THRESHOLD = 1024


@dataclass(frozen=True)
class WatermarkConfig:
    logo_size: int
    margin_right: int
    margin_bottom: int


@dataclass(frozen=True)
class WatermarkRect:
    x: int
    y: int
    width: int
    height: int


SMALL_WATERMARK = WatermarkConfig(logo_size=48, margin_right=32, margin_bottom=32)
LARGE_WATERMARK = WatermarkConfig(logo_size=96, margin_right=64, margin_bottom=64)
LOGO_SIZES = (SMALL_WATERMARK.logo_size, LARGE_WATERMARK.logo_size)


def detect_watermark_config(width: int, height: int) -> WatermarkConfig:
    """Pick the watermark variant for an image of the given size.

    The large logo is used only when *both* dimensions exceed 1024 pixels.
    """
    if width > LARGE_IMAGE_THRESHOLD and height > LARGE_IMAGE_THRESHOLD:
        return LARGE_WATERMARK
    return SMALL_WATERMARK


def calculate_watermark_position(width: int, height: int, config: WatermarkConfig) -> WatermarkRect:
    """Locate the logo in the bottom-right corner, inset by the config margins."""
    return WatermarkRect(
        x=width - config.margin_right - config.logo_size,
        y=height - config.margin_bottom - config.logo_size,
        width=config.logo_size,
        height=config.logo_size,
    )


def rect_within_bounds(rect: WatermarkRect, width: int, height: int) -> bool:
    return (
        rect.x >= 0
        and rect.y >= 0
        and rect.x + rect.width <= width
        and rect.y + rect.height <= height
    )


__all__ = [
    "LARGE_WATERMARK",
    "LOGO_SIZES",
    "SMALL_WATERMARK",
    "WatermarkConfig",
    "WatermarkRect",
    "calculate_watermark_position",
    "detect_watermark_config",
    "rect_within_bounds",
]
