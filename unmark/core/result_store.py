"""Per-item output storage with revocable references, plus ZIP packaging."""

from __future__ import annotations

import io
import logging
import threading
import time
import uuid
import zipfile
from dataclasses import dataclass
from typing import Dict, Hashable, Iterable, List, Optional

from .utils import OUTPUT_PREFIX

logger = logging.getLogger(__name__)

REFERENCE_SCHEME = "result://"


@dataclass(frozen=True)
class StoredResult:
    ref: str
    data: bytes
    extension: str
    filename: str
    mime_type: str

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class Archive:
    filename: str
    data: bytes
    entries: List[str]


class ResultStore:
    """Hold the current encoded output for each key.

    Every :meth:`put` issues a fresh reference and revokes whatever reference
    the key held before, so callers never see two live outputs for one item.
    """

    def __init__(self) -> None:
        self._by_key: Dict[Hashable, StoredResult] = {}
        self._by_ref: Dict[str, StoredResult] = {}
        self._lock = threading.Lock()

    def put(
        self,
        key: Hashable,
        data: bytes,
        *,
        extension: str,
        filename: str,
        mime_type: str,
    ) -> StoredResult:
        result = StoredResult(
            ref=f"{REFERENCE_SCHEME}{uuid.uuid4().hex}",
            data=data,
            extension=extension,
            filename=filename,
            mime_type=mime_type,
        )
        with self._lock:
            previous = self._by_key.get(key)
            if previous is not None:
                self._by_ref.pop(previous.ref, None)
                logger.debug("Revoked %s (superseded)", previous.ref)
            self._by_key[key] = result
            self._by_ref[result.ref] = result
        return result

    def get(self, key: Hashable) -> Optional[StoredResult]:
        with self._lock:
            return self._by_key.get(key)

    def open(self, ref: str) -> bytes:
        """Return the bytes behind a live reference.

        Raises:
            KeyError: If the reference was never issued or has been revoked.
        """
        with self._lock:
            result = self._by_ref.get(ref)
        if result is None:
            raise KeyError(f"Result reference revoked or unknown: {ref}")
        return result.data

    def release(self, key: Hashable) -> bool:
        with self._lock:
            previous = self._by_key.pop(key, None)
            if previous is None:
                return False
            self._by_ref.pop(previous.ref, None)
        logger.debug("Revoked %s", previous.ref)
        return True

    def clear(self) -> int:
        with self._lock:
            released = len(self._by_ref)
            self._by_key.clear()
            self._by_ref.clear()
        if released:
            logger.debug("Revoked %s stored result(s)", released)
        return released

    def live_references(self) -> List[str]:
        with self._lock:
            return list(self._by_ref)

    def __len__(self) -> int:
        with self._lock:
            return len(self._by_key)


def archive_filename(timestamp_ms: Optional[int] = None) -> str:
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    return f"{OUTPUT_PREFIX}{timestamp_ms}.zip"


def _unique_name(name: str, used: Dict[str, int]) -> str:
    if name not in used:
        used[name] = 1
        return name
    stem, dot, ext = name.rpartition(".")
    if not dot:
        stem, ext = name, ""
    while True:
        used[name] += 1
        candidate = f"{stem}_{used[name]}" + (f".{ext}" if dot else "")
        if candidate not in used:
            used[candidate] = 1
            return candidate


def build_archive(results: Iterable[StoredResult], *, timestamp_ms: Optional[int] = None) -> Optional[Archive]:
    """Package stored results into an in-memory ZIP.

    Returns ``None`` when there is nothing to archive.
    """
    results = list(results)
    if not results:
        logger.info("Nothing to archive.")
        return None
    buffer = io.BytesIO()
    used: Dict[str, int] = {}
    entries: List[str] = []
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for result in results:
            name = _unique_name(result.filename, used)
            archive.writestr(name, result.data)
            entries.append(name)
    filename = archive_filename(timestamp_ms)
    logger.info("Packaged %s result(s) into %s", len(entries), filename)
    return Archive(filename=filename, data=buffer.getvalue(), entries=entries)


__all__ = ["Archive", "ResultStore", "StoredResult", "archive_filename", "build_archive"]
