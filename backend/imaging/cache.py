"""
Cache store: rendered files in a storage backend plus one ``cache_log`` row per file.

A file is only logged after it was written, and a failed log update removes the
file again, so a reader that finds a log row can rely on the file being complete.
"""
from __future__ import annotations

import posixpath
import threading
import time
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, Iterator, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from config import Settings, logger
from imaging.errors import CacheWriteFailure
from imaging.identity import duration_from_filename
from imaging.pipeline import MIME_TYPES
from models import CacheEntry

ENTRY_FIELDS = ("cache_dir", "source_path", "width", "height", "mime_type", "size", "processing_time")


class CacheLog:
    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    @contextmanager
    def session(self) -> Iterator[Session]:
        db: Session = self.session_factory()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def get(self, path: str) -> Optional[CacheEntry]:
        with self.session() as db:
            return db.query(CacheEntry).filter(CacheEntry.path == path).first()

    def get_vars(self, path: str) -> Optional[dict]:
        entry = self.get(path)
        return entry.vars if entry is not None else None

    def entries(self, prefix: str = "") -> List[CacheEntry]:
        with self.session() as db:
            query = db.query(CacheEntry)
            if prefix:
                query = query.filter(CacheEntry.path.startswith(prefix))
            return query.order_by(CacheEntry.path).all()

    def update(self, path: str, metadata: dict, force: bool = False) -> bool:
        """Create the row for ``path``; an existing row is only rewritten when ``force`` is set."""
        try:
            with self.session() as db:
                entry = db.query(CacheEntry).filter(CacheEntry.path == path).first()
                if entry is not None and not force:
                    return False
                now = datetime.utcnow()
                if entry is None:
                    entry = CacheEntry(path=path, count=1, inception_date=now)
                    db.add(entry)
                for name in ENTRY_FIELDS:
                    if metadata.get(name) is not None:
                        setattr(entry, name, metadata[name])
                entry.cumulative_size = entry.size or 0
                entry.cumulative_processing_time = entry.processing_time or 0.0
                entry.inception_date = now
                entry.last_access = now
                if "vars" in metadata:
                    entry.vars = metadata["vars"]
        except SQLAlchemyError as e:
            logger.error("Cache log update failed for %s: %s", path, e)
            return False
        logger.debug("Logged cache entry %s", path)
        return True

    def record_hit(self, path: str) -> bool:
        try:
            with self.session() as db:
                entry = db.query(CacheEntry).filter(CacheEntry.path == path).first()
                if entry is None:
                    return False
                entry.count = (entry.count or 0) + 1
                entry.cumulative_size = (entry.cumulative_size or 0) + (entry.size or 0)
                entry.cumulative_processing_time = (entry.cumulative_processing_time or 0.0) + (entry.processing_time or 0.0)
                entry.last_access = datetime.utcnow()
        except SQLAlchemyError as e:
            logger.warning("Could not record cache hit for %s: %s", path, e)
            return False
        return True

    def delete(self, path: str) -> bool:
        with self.session() as db:
            removed = db.query(CacheEntry).filter(CacheEntry.path == path).delete()
        return bool(removed)


class CacheStore:
    def __init__(self, storage, log: CacheLog, settings: Settings):
        self.storage  = storage
        self.log      = log
        self.settings = settings
        self._locks: Dict[str, List] = {}   # key -> [lock, holders]
        self._guard   = threading.Lock()

    @contextmanager
    def lock(self, key: str) -> Iterator[None]:
        """Serialise renders of one identity within this process."""
        with self._guard:
            slot = self._locks.setdefault(key, [threading.Lock(), 0])
            slot[1] += 1
        try:
            with slot[0]:
                yield
        finally:
            with self._guard:
                slot[1] -= 1
                if slot[1] == 0:
                    del self._locks[key]

    def duration(self, path: str) -> int:
        return duration_from_filename(path, self.settings.filename_separator, self.settings.cache_duration)

    def _expired(self, path: str, modified: float, now: float) -> bool:
        duration = self.duration(path)
        if duration < 0:
            return False
        return now - modified >= duration

    def is_fresh(self, path: str, now: Optional[float] = None) -> bool:
        modified = self.storage.modified(path)
        if modified is None:
            return False
        return not self._expired(path, modified, now if now is not None else time.time())

    def write(self, path: str, data: bytes, metadata: dict) -> None:
        if not self.storage.write(path, data):
            raise CacheWriteFailure(f"could not write {path}")
        if not self.log.update(path, metadata, force=True):
            self.storage.delete(path)
            raise CacheWriteFailure(f"could not log {path}")
        logger.info("Cached %s (%d bytes)", path, len(data))

    def _location(self, location: Optional[str]) -> str:
        return (location or self.settings.cache_dir).strip("/")

    def audit(self, location: Optional[str] = None, now: Optional[float] = None) -> int:
        """Remove expired files and their log rows; re-log fresh files the log lost."""
        now = now if now is not None else time.time()
        prefix = self._location(location)
        logged = {e.path for e in self.log.entries(prefix)}
        removed = 0
        seen = set()
        for item in self.storage.list(prefix):
            seen.add(item.path)
            if self._expired(item.path, item.modified, now):
                self.storage.delete(item.path)
                self.log.delete(item.path)
                removed += 1
            elif item.path not in logged:
                extension = posixpath.splitext(item.path)[1].lstrip(".").lower()
                self.log.update(item.path, {
                    "cache_dir": posixpath.dirname(item.path),
                    "size":      item.size,
                    "mime_type": MIME_TYPES.get(extension),
                })
        for orphan in logged - seen:
            self.log.delete(orphan)
        logger.info("Cache audit of %r removed %d file(s)", prefix, removed)
        return removed

    def clear(self, location: Optional[str] = None) -> int:
        prefix = self._location(location)
        removed = 0
        for item in self.storage.list(prefix):
            if self.storage.delete(item.path):
                removed += 1
            self.log.delete(item.path)
        for entry in self.log.entries(prefix):
            self.log.delete(entry.path)
        logger.info("Cleared %d file(s) from %r", removed, prefix)
        return removed
