"""Error taxonomy for the watermark removal pipeline."""

from __future__ import annotations

from typing import Optional

SETUP_MISSING = "missing"
SETUP_ACCESS_BLOCKED = "access-blocked"
SETUP_UNDECODABLE = "undecodable"


class UnmarkError(Exception):
    """Base class for all pipeline errors."""


class SetupError(UnmarkError):
    """Reference assets could not be loaded; nothing can be processed."""

    def __init__(self, message: str, *, reason: str, path: Optional[object] = None) -> None:
        super().__init__(message)
        self.reason = reason
        self.path = path


class ValidationError(UnmarkError):
    """A batch was rejected before any item was created."""


class EncodeError(UnmarkError):
    """Encoding a corrected raster failed."""


class ItemError(UnmarkError):
    """A single batch item failed; the rest of the batch is unaffected."""

    def __init__(self, item_name: str, cause: BaseException) -> None:
        super().__init__(f"{item_name}: {cause}")
        self.item_name = item_name
        self.cause = cause


class WatermarkGeometryError(AssertionError):
    """The watermark rectangle does not fit the raster it is applied to."""


def describe_error(exc: BaseException) -> str:
    """Turn an exception into a message suitable for the end user."""
    if isinstance(exc, ItemError):
        exc = exc.cause
    if isinstance(exc, SetupError):
        if exc.reason == SETUP_ACCESS_BLOCKED:
            return (
                "Reading the watermark reference images was blocked by the host "
                f"security policy ({exc.path}).\n"
                "Check the file permissions or sandbox rules, then try again."
            )
        if exc.reason == SETUP_MISSING:
            return (
                "The watermark reference images could not be found.\n"
                "Make sure the assets directory contains bg_48.png and bg_96.png."
            )
        return (
            f"The watermark reference image {exc.path} could not be decoded.\n"
            "Replace it with the original 48x48 or 96x96 capture."
        )
    if isinstance(exc, WatermarkGeometryError):
        return "The image is too small to contain the watermark."
    if isinstance(exc, EncodeError):
        return f"Exporting the result failed: {exc}"
    return f"Processing failed: {exc}. Run with --log-level DEBUG for details."


__all__ = [
    "SETUP_ACCESS_BLOCKED",
    "SETUP_MISSING",
    "SETUP_UNDECODABLE",
    "EncodeError",
    "ItemError",
    "SetupError",
    "UnmarkError",
    "ValidationError",
    "WatermarkGeometryError",
    "describe_error",
]
