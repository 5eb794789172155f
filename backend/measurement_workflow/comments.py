"""
Operator comments.

A comment belongs to the serial number (shared across sides and operations)
and is also snapshotted on each unit record of the session. Edits are debounced
on the trailing edge; flush() must run before fail confirmation and summary so
the last burst of typing is not lost.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, List, Optional

from .errors import SnapshotLookupError, WriteError
from .gateways import SnapshotReader
from .stores import CommentStore, UnitRecordStore

logger = logging.getLogger(__name__)


def load_initial_comment(
    serial_number: str,
    side: str,
    reader: Optional[SnapshotReader],
    store: CommentStore,
) -> str:
    """
    Upstream snapshot comment first (cached as the global comment), then the
    stored global comment, else empty.
    """
    if reader is not None:
        try:
            data = reader.read(serial_number, side)
            raw = data.get("comment")
            if raw is None:
                raw = data.get("Comment")
            fetched = str(raw).strip() if raw is not None else ""
            if fetched:
                try:
                    store.set_global(serial_number, fetched)
                except WriteError as e:
                    logger.warning(f"Could not cache upstream comment for {serial_number}: {e}")
                return fetched
        except SnapshotLookupError as e:
            logger.info(f"Comment lookup failed for {serial_number}, using stored comment: {e}")

    return store.get_global(serial_number) or ""


class CommentWriter:
    """Persists a comment on the session records and as the serial's global comment."""

    def __init__(
        self,
        serial_number: str,
        record_ids: List[str],
        records: UnitRecordStore,
        comments: CommentStore,
    ):
        self.serial_number = serial_number
        self.record_ids = list(record_ids)
        self.records = records
        self.comments = comments

    def save(self, text: str) -> None:
        self.records.update(self.record_ids, {"comment": text or None})
        self.comments.set_global(self.serial_number, text or "")


class CommentDebouncer:
    """
    Trailing-edge debounce around a save callable.

    update() restarts the timer; the save runs after `delay` seconds of quiet.
    flush() saves a pending edit synchronously (WriteError propagates).
    cancel() drops a pending edit.

    Saves are serialized, and a background save whose text has been
    superseded by a newer edit is dropped, so the stored comment is always
    the latest edit.
    """

    def __init__(self, save: Callable[[str], None], delay: float = 0.8):
        self._save = save
        self.delay = delay
        self._timer: Optional[threading.Timer] = None
        self._pending: Optional[str] = None
        self._generation = 0
        self._lock = threading.Lock()
        self._save_lock = threading.Lock()
        self.last_error: Optional[str] = None

    @property
    def has_pending(self) -> bool:
        with self._lock:
            return self._pending is not None

    def update(self, text: str) -> None:
        with self._lock:
            self._pending = text
            self._generation += 1
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self.delay, self._fire)
            self._timer.daemon = True
            self._timer.start()

    def flush(self) -> None:
        # Waits for an in-flight background save before writing
        with self._save_lock:
            with self._lock:
                text = self._take_pending()
            if text is not None:
                self._save(text)

    def cancel(self) -> None:
        with self._lock:
            dropped = self._take_pending()
        if dropped is not None:
            logger.info("Discarded unsaved comment edit")

    def _take_pending(self) -> Optional[str]:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        text, self._pending = self._pending, None
        return text

    def _fire(self) -> None:
        with self._lock:
            self._timer = None
            text, self._pending = self._pending, None
            generation = self._generation
        if text is None:
            return
        with self._save_lock:
            with self._lock:
                if self._generation != generation:
                    logger.debug("Skipping superseded comment save")
                    return
            try:
                self._save(text)
                self.last_error = None
            except WriteError as e:
                # Keep the edit so the next flush retries it
                logger.error(f"Debounced comment save failed: {e}")
                self.last_error = str(e)
                with self._lock:
                    if self._pending is None and self._generation == generation:
                        self._pending = text
