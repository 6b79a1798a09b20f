"""Batch processing for watermark removal.

A run drives every item through decode, watermark removal and encode using a
small number of worker coroutines that pull indices from one shared cursor.
Blocking work happens on a thread pool; item status, counters and the result
store are only touched from the event loop, between stages.

Every run carries a generation number. Starting a new batch, re-processing or
resetting bumps the generation, and a worker that resumes into an outdated
generation stops without writing anything.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Iterable, Iterator, List, Mapping, Optional, Tuple, Union

import numpy as np

from .encoder import ImageEncoder, OutputSpec
from .errors import ItemError, SetupError, ValidationError, describe_error
from .image_remover import ImageWatermarkRemover
from .result_store import Archive, ResultStore, StoredResult, build_archive
from .utils import bytes_to_human, decode_image, format_count_text, guess_mime_type, is_supported_mime, output_filename

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

DEFAULT_MAX_WORKERS = 2
DEFAULT_MAX_ITEMS = 10

PHASE_PROCESSING = "Processing"
PHASE_REPROCESSING = "Re-processing"
PHASE_DONE = "Done"
PHASE_ZIPPING = "Zipping"

NOTICE_SETUP_ERROR = "setup-error"
NOTICE_ITEM_ERRORS = "item-errors"
NOTICE_ENCODE_DEGRADATION = "encode-degradation"
NOTICE_VALIDATION_ERROR = "validation-error"


class ItemStatus(str, Enum):
    QUEUED = "queued"
    LOADING = "loading"
    REMOVING_WATERMARK = "removing-watermark"
    ENCODING = "encoding"
    COMPLETED = "completed"
    ERROR = "error"


STATUS_LABELS = {
    ItemStatus.QUEUED: "Queued",
    ItemStatus.LOADING: "Loading…",
    ItemStatus.REMOVING_WATERMARK: "Removing watermark…",
    ItemStatus.ENCODING: "Removing watermark…",
    ItemStatus.COMPLETED: "Done",
    ItemStatus.ERROR: "Failed",
}


@dataclass(frozen=True)
class SourceFile:
    """An input image as handed over by the front end."""

    name: str
    mime_type: str
    data: bytes = field(repr=False)

    @property
    def size(self) -> int:
        return len(self.data)

    @classmethod
    def from_path(cls, path: PathLike, mime_type: Optional[str] = None) -> "SourceFile":
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Image not found: {path}")
        return cls(name=path.name, mime_type=mime_type or guess_mime_type(path), data=path.read_bytes())


@dataclass(eq=False)
class BatchItem:
    id: str
    source: SourceFile
    status: ItemStatus = ItemStatus.QUEUED
    error: Optional[str] = None
    result: Optional[StoredResult] = None
    raster: Optional[np.ndarray] = field(default=None, repr=False)
    _decode_task: Optional["asyncio.Future[np.ndarray]"] = field(default=None, repr=False)

    @property
    def name(self) -> str:
        return self.source.name

    @property
    def label(self) -> str:
        return STATUS_LABELS[self.status]

    @property
    def finished(self) -> bool:
        return self.status in (ItemStatus.COMPLETED, ItemStatus.ERROR)


@dataclass(frozen=True)
class Progress:
    phase: str
    done: int
    total: int

    @property
    def text(self) -> str:
        return format_count_text(self.done, self.total, self.phase)


@dataclass(frozen=True)
class Notice:
    kind: str
    message: str


@dataclass(frozen=True)
class BatchResult:
    generation: int
    total: int
    completed: int
    failed: int
    superseded: bool = False

    @property
    def success(self) -> bool:
        return not self.superseded and self.failed == 0 and self.completed == self.total


@dataclass(eq=False)
class _Run:
    generation: int
    items: Tuple[BatchItem, ...]
    spec: OutputSpec
    phase: str
    completed: int = 0
    failed: int = 0
    failures: List[ItemError] = field(default_factory=list)
    degradations: List[str] = field(default_factory=list)

    def progress(self) -> Progress:
        return Progress(self.phase, self.completed + self.failed, len(self.items))

    def summary(self, superseded: bool = False) -> BatchResult:
        return BatchResult(self.generation, len(self.items), self.completed, self.failed, superseded)


class BatchWatermarkProcessor:
    """Coordinate watermark removal across a batch of images."""

    def __init__(
        self,
        image_remover: Optional[ImageWatermarkRemover] = None,
        encoder: Optional[ImageEncoder] = None,
        *,
        store: Optional[ResultStore] = None,
        config: Optional[Mapping[str, Any]] = None,
        on_item: Optional[Callable[[BatchItem], None]] = None,
        on_progress: Optional[Callable[[Progress], None]] = None,
        on_notice: Optional[Callable[[Notice], None]] = None,
    ) -> None:
        config_map = dict(config or {})
        batch_settings = dict(config_map.get("batch", {}) or {})
        self.max_workers = max(1, int(batch_settings.get("max_workers", DEFAULT_MAX_WORKERS)))
        self.max_items = max(1, int(batch_settings.get("max_items", DEFAULT_MAX_ITEMS)))

        if image_remover is None:
            if config_map:
                image_remover = ImageWatermarkRemover.from_config(config_map)
            else:
                image_remover = ImageWatermarkRemover()
        self.image_remover = image_remover
        self.encoder = encoder or ImageEncoder()
        self.store = store or ResultStore()

        self.on_item = on_item
        self.on_progress = on_progress
        self.on_notice = on_notice

        self._generation = 0
        self._items: Tuple[BatchItem, ...] = ()
        self._run: Optional[_Run] = None
        self._executor: Optional[ThreadPoolExecutor] = None

    # -- public state ------------------------------------------------------

    @property
    def items(self) -> Tuple[BatchItem, ...]:
        return self._items

    @property
    def generation(self) -> int:
        return self._generation

    def progress(self) -> Progress:
        if self._run is None:
            return Progress(PHASE_DONE, 0, len(self._items))
        return self._run.progress()

    def result(self) -> Optional[BatchResult]:
        return self._run.summary() if self._run is not None else None

    def size_summary(self, item: BatchItem) -> str:
        """Describe the source and result sizes of an item, e.g. for a thumbnail."""
        original = f"Original: {bytes_to_human(item.source.size)}"
        if item.result is None or self._run is None:
            return original
        return f"{original} → Result: {bytes_to_human(item.result.size)} ({self._run.spec.describe()})"

    # -- lifecycle ---------------------------------------------------------

    def reset(self) -> None:
        """Drop every item and revoke all stored outputs."""
        self._generation += 1
        self.store.clear()
        for item in self._items:
            item.result = None
        self._items = ()
        self._run = None

    def close(self) -> None:
        self.reset()
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None

    def __enter__(self) -> "BatchWatermarkProcessor":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # -- runs --------------------------------------------------------------

    async def start(self, files: Iterable[SourceFile], spec: OutputSpec) -> BatchResult:
        """Validate ``files``, replace the current batch with them and process it.

        Raises:
            ValidationError: When no supported image remains or there are too
                many; the previous batch is left untouched.
            SetupError: When the reference assets cannot be loaded. Every item
                is marked failed before the error propagates.
        """
        files = list(files)
        supported = [source for source in files if is_supported_mime(source.mime_type)]
        skipped = len(files) - len(supported)
        if skipped:
            logger.warning("Skipping %s file(s) that are not PNG, JPEG or WebP images.", skipped)
        if not supported:
            raise self._reject("Please provide PNG, JPG, or WebP images.")
        if len(supported) > self.max_items:
            raise self._reject(f"Please provide {self.max_items} images or fewer.")

        self.reset()
        stamp = int(time.time() * 1000)
        self._items = tuple(
            BatchItem(id=f"{stamp}_{index}", source=source) for index, source in enumerate(supported)
        )
        logger.info("Starting batch of %s image(s) as %s", len(self._items), spec.format.value)
        return await self._execute(spec, PHASE_PROCESSING)

    async def reprocess(self, spec: OutputSpec) -> Optional[BatchResult]:
        """Run the current batch again with new output settings, reusing decoded images."""
        if not self._items:
            return None
        self._generation += 1
        self.store.clear()
        for item in self._items:
            item.status = ItemStatus.QUEUED
            item.error = None
            item.result = None
        logger.info("Re-processing %s image(s) as %s", len(self._items), spec.format.value)
        return await self._execute(spec, PHASE_REPROCESSING)

    def build_archive(self) -> Optional[Archive]:
        """Package every completed item's output; ``None`` when nothing completed."""
        completed = [
            item.result
            for item in self._items
            if item.status is ItemStatus.COMPLETED and item.result is not None
        ]
        if not completed:
            return None
        run = self._run
        if run is not None:
            run.phase = PHASE_ZIPPING
            self._emit_progress(run)
        try:
            return build_archive(completed)
        finally:
            if run is not None:
                run.phase = PHASE_DONE
                self._emit_progress(run)

    # -- internals ---------------------------------------------------------

    def _reject(self, message: str) -> ValidationError:
        logger.error(message)
        self._notify(NOTICE_VALIDATION_ERROR, message)
        return ValidationError(message)

    def _pool(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="unmark")
        return self._executor

    async def _in_pool(self, func: Callable[..., Any], *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._pool(), functools.partial(func, *args))

    def _is_current(self, run: _Run) -> bool:
        return run.generation == self._generation and self._run is run

    async def _execute(self, spec: OutputSpec, phase: str) -> BatchResult:
        run = _Run(generation=self._generation, items=self._items, spec=spec, phase=phase)
        self._run = run
        for item in run.items:
            self._emit_item(item)
        self._emit_progress(run)

        try:
            await self._in_pool(self.image_remover.alpha_maps.preload)
        except SetupError as exc:
            if self._is_current(run):
                self._fail_setup(run, exc)
            raise

        if not self._is_current(run):
            return run.summary(superseded=True)

        cursor = iter(range(len(run.items)))
        workers = [self._worker(run, cursor) for _ in range(min(self.max_workers, len(run.items)))]
        await asyncio.gather(*workers)

        if not self._is_current(run):
            logger.debug("Run %s was superseded before it finished.", run.generation)
            return run.summary(superseded=True)

        if run.failures:
            message = (
                f"{len(run.failures)} of {len(run.items)} image(s) failed.\n\n"
                f"{describe_error(run.failures[0])}"
            )
            self._notify(NOTICE_ITEM_ERRORS, message)
        if run.degradations:
            self._notify(NOTICE_ENCODE_DEGRADATION, run.degradations[0])
        run.phase = PHASE_DONE
        self._emit_progress(run)
        logger.info("Batch complete. Successes: %s | Failures: %s", run.completed, run.failed)
        return run.summary()

    def _fail_setup(self, run: _Run, exc: SetupError) -> None:
        logger.error("Failed to load watermark maps: %s", exc)
        for item in run.items:
            item.status = ItemStatus.ERROR
            item.error = str(exc)
            self._emit_item(item)
        run.failed = len(run.items)
        run.phase = PHASE_DONE
        self._notify(NOTICE_SETUP_ERROR, f"Failed to load watermark maps.\n\n{describe_error(exc)}")
        self._emit_progress(run)

    async def _worker(self, run: _Run, cursor: Iterator[int]) -> None:
        for index in cursor:
            if not self._is_current(run):
                return
            await self._process_item(run, run.items[index])

    async def _process_item(self, run: _Run, item: BatchItem) -> None:
        try:
            self._set_status(run, item, ItemStatus.LOADING)
            source = await self._load_source(item)
            if not self._is_current(run):
                return

            self._set_status(run, item, ItemStatus.REMOVING_WATERMARK)
            corrected = await self._in_pool(self._remove_watermark, source)
            if not self._is_current(run):
                return

            self._set_status(run, item, ItemStatus.ENCODING)
            encoded = await self._in_pool(self.encoder.encode, corrected, run.spec)
            if not self._is_current(run):
                return

            item.result = self.store.put(
                item.id,
                encoded.data,
                extension=encoded.extension,
                filename=output_filename(item.name, encoded.extension),
                mime_type=encoded.mime_type,
            )
            if encoded.degraded and encoded.notice:
                run.degradations.append(encoded.notice)
            run.completed += 1
            self._set_status(run, item, ItemStatus.COMPLETED)
        except Exception as exc:
            if not self._is_current(run):
                logger.debug("Ignoring failure from superseded run for %s: %s", item.name, exc)
                return
            logger.exception("Failed to process %s: %s", item.name, exc)
            run.failures.append(ItemError(item.name, exc))
            run.failed += 1
            item.error = str(exc)
            self._set_status(run, item, ItemStatus.ERROR)
        finally:
            if self._is_current(run):
                self._emit_progress(run)

    async def _load_source(self, item: BatchItem) -> np.ndarray:
        if item.raster is not None:
            return item.raster
        if item._decode_task is None:
            item._decode_task = asyncio.ensure_future(self._decode(item))
        # Shielded so a cancelled worker does not abort a decode another run awaits.
        return await asyncio.shield(item._decode_task)

    async def _decode(self, item: BatchItem) -> np.ndarray:
        raster = await self._in_pool(decode_image, item.source.data)
        raster.flags.writeable = False
        item.raster = raster
        return raster

    def _remove_watermark(self, source: np.ndarray) -> np.ndarray:
        return self.image_remover.remove_watermark(source.copy())

    def _set_status(self, run: _Run, item: BatchItem, status: ItemStatus) -> None:
        if not self._is_current(run):
            return
        item.status = status
        self._emit_item(item)

    def _emit_item(self, item: BatchItem) -> None:
        if self.on_item is not None:
            self.on_item(item)

    def _emit_progress(self, run: _Run) -> None:
        if self.on_progress is not None:
            self.on_progress(run.progress())

    def _notify(self, kind: str, message: str) -> None:
        if self.on_notice is not None:
            self.on_notice(Notice(kind, message))


__all__ = [
    "BatchItem",
    "BatchResult",
    "BatchWatermarkProcessor",
    "ItemStatus",
    "Notice",
    "Progress",
    "STATUS_LABELS",
    "SourceFile",
]
