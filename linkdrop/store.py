"""Feed store: the in-memory feed and its on-disk Atom file."""

from __future__ import annotations

import contextlib
import logging
import os
import stat
import tempfile
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional, Tuple, Union

from .feeds import FeedError, FeedFormatError, new_document, new_id, parse_feed, render_feed
from .models import MAX_ENTRIES, FeedDocument, FeedDraft, FeedEntry

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


class PersistenceError(FeedError):
    """The feed could not be written to disk."""


@dataclass(frozen=True)
class FeedSnapshot:
    """A committed feed document together with its serialized bytes."""

    document: FeedDocument
    data: bytes

    @property
    def last_modified(self) -> datetime:
        return self.document.updated


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def write_atomically(path: Path, data: bytes) -> None:
    """Replace ``path`` with ``data`` so readers see the old or new file only."""
    try:
        mode = stat.S_IMODE(os.stat(path).st_mode)
    except FileNotFoundError:
        mode = 0o644

    tmp = tempfile.NamedTemporaryFile(
        dir=path.parent, prefix=f".{path.name}.", suffix=".tmp", delete=False
    )
    try:
        with tmp:
            tmp.write(data)
            tmp.flush()
            os.fsync(tmp.fileno())
        os.chmod(tmp.name, mode)
        os.replace(tmp.name, path)
    except BaseException:
        with contextlib.suppress(OSError):
            os.unlink(tmp.name)
        raise

    # The rename has happened, so the write is committed from here on.
    if os.name == "posix":
        try:
            _sync_directory(path.parent)
        except OSError as exc:
            logger.warning(
                "Saved %s but could not sync its directory: %s", path, exc
            )


def _sync_directory(directory: Path) -> None:
    """Make a completed rename in ``directory`` durable."""
    dir_fd = os.open(directory, os.O_RDONLY)
    try:
        os.fsync(dir_fd)
    finally:
        os.close(dir_fd)


class FeedStore:
    """Owns the feed document; every append is persisted before it is visible.

    Writers serialize on a single lock covering "mutate, serialize, write temp
    file, rename". Readers never take the lock: they read the current
    ``FeedSnapshot``, which is replaced with a single assignment once the new
    document is safely on disk.
    """

    def __init__(
        self,
        path: Union[str, Path],
        document: FeedDocument,
        *,
        clock: Optional[Clock] = None,
    ):
        self.path = Path(path)
        self._clock = clock or _utcnow
        self._lock = threading.Lock()
        self._snapshot = FeedSnapshot(document, render_feed(document))
        self._failures = 0

    @classmethod
    def load(cls, path: Union[str, Path], *, clock: Optional[Clock] = None) -> "FeedStore":
        """Open the feed at ``path``, creating an empty one if it is absent."""
        path = Path(path)
        if not path.exists():
            logger.info("Creating initial feed at %s", path)
            path.parent.mkdir(parents=True, exist_ok=True)
            store = cls(path, new_document(), clock=clock)
            store._persist(store._snapshot.data)
            return store

        try:
            data = path.read_bytes()
        except OSError as exc:
            raise FeedError(f"Unable to read feed at {path}: {exc}") from exc

        try:
            document = parse_feed(data)
        except FeedFormatError as exc:
            raise FeedFormatError(f"Unable to read feed at {path}: {exc}") from exc

        logger.info("Loaded %d entries from %s", len(document.entries), path)
        return cls(path, document, clock=clock)

    @property
    def entries(self) -> Tuple[FeedEntry, ...]:
        return self._snapshot.document.entries

    def snapshot(self) -> FeedSnapshot:
        return self._snapshot

    def render(self) -> bytes:
        """Return the serialized feed as of the last committed append."""
        return self._snapshot.data

    def append(self, draft: FeedDraft) -> FeedEntry:
        """Add ``draft`` as the newest entry and persist the whole feed.

        At capacity the new entry is inserted first and the feed is then
        truncated, so exactly the oldest entry is evicted. Raises
        ``PersistenceError`` if the file cannot be written; the in-memory feed
        is left as it was.
        """
        with self._lock:
            current = self._snapshot.document
            published_at = self._clock()
            if current.entries and published_at < current.entries[0].published_at:
                published_at = current.entries[0].published_at

            entry = FeedEntry(
                id=new_id(),
                url=draft.url,
                title=draft.title,
                description=draft.description,
                published_at=published_at,
            )
            entries = (entry,) + current.entries
            evicted = entries[MAX_ENTRIES:]
            document = replace(
                current, updated=published_at, entries=entries[:MAX_ENTRIES]
            )
            data = render_feed(document)
            self._persist(data)
            self._snapshot = FeedSnapshot(document, data)

        for old in evicted:
            logger.debug("Evicted %s (%s)", old.url, old.id)
        logger.info("Added %s to feed as %s", entry.url, entry.id)
        return entry

    def _persist(self, data: bytes) -> None:
        try:
            write_atomically(self.path, data)
        except OSError as exc:
            self._failures += 1
            logger.error(
                "Unable to save feed to %s (%d consecutive failures): %s",
                self.path,
                self._failures,
                exc,
            )
            raise PersistenceError(f"Unable to save feed to {self.path}: {exc}") from exc
        self._failures = 0
