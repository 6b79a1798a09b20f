"""Core processing package for unmark."""

from . import utils
from .alpha_map import AlphaMapCache, calculate_alpha_map, get_alpha_map_cache
from .batch_manager import (
    BatchItem,
    BatchResult,
    BatchWatermarkProcessor,
    ItemStatus,
    Notice,
    Progress,
    SourceFile,
)
from .encoder import EncodedImage, ImageEncoder, OutputFormat, OutputSpec
from .errors import EncodeError, ItemError, SetupError, UnmarkError, ValidationError
from .geometry import WatermarkConfig, WatermarkRect, calculate_watermark_position, detect_watermark_config
from .image_remover import ImageWatermarkRemover, remove_watermark
from .result_store import Archive, ResultStore, StoredResult

__all__ = [
    "AlphaMapCache",
    "Archive",
    "BatchItem",
    "BatchResult",
    "BatchWatermarkProcessor",
    "EncodeError",
    "EncodedImage",
    "ImageEncoder",
    "ImageWatermarkRemover",
    "ItemError",
    "ItemStatus",
    "Notice",
    "OutputFormat",
    "OutputSpec",
    "Progress",
    "ResultStore",
    "SetupError",
    "SourceFile",
    "StoredResult",
    "UnmarkError",
    "ValidationError",
    "WatermarkConfig",
    "WatermarkRect",
    "calculate_alpha_map",
    "calculate_watermark_position",
    "detect_watermark_config",
    "get_alpha_map_cache",
    "remove_watermark",
    "utils",
]
