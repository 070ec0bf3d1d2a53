"""Content-addressed replay cache for recorded action traces.

Layout on disk::

    <root>/cache/<project>/_meta.json          format version of the namespace
    <root>/cache/<project>/<fingerprint>.json  one Trace per test fingerprint

A namespace written by another format version is purged as a whole on first
access; individual entries carrying an old version are dropped when read.
"""
from __future__ import annotations

import json
import logging
import os
import re
import shutil
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, List, Literal, Optional, Tuple

from pydantic import BaseModel, Field, ValidationError

from actions import ActionDescriptor, ActionResult
from exceptions import CacheError

CACHE_FORMAT_VERSION = 2
META_KEY = "_meta"

CacheScope = Literal["project", "all"]

_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")


class TraceStep(BaseModel):
    """One replayable action plus what is needed to verify it later."""

    action: ActionDescriptor
    message: str = ""
    target: Optional[Tuple[int, int]] = None
    ui_fingerprint: Optional[str] = None
    url: Optional[str] = None

    @classmethod
    def from_result(cls, descriptor: ActionDescriptor, result: ActionResult) -> "TraceStep":
        metadata = result.metadata
        return cls(
            action=descriptor,
            message=result.message,
            target=metadata.target,
            ui_fingerprint=metadata.ui_fingerprint,
            url=metadata.window_info.url or None,
        )

    @property
    def needs_verification(self) -> bool:
        return self.ui_fingerprint is not None and self.target is not None


class Trace(BaseModel):
    """Ordered steps recorded by a passing run of one test."""

    test_name: str
    fingerprint: str
    steps: List[TraceStep] = Field(default_factory=list)
    version: int = CACHE_FORMAT_VERSION
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class FileStore:
    """String key/value store with one file per key in a directory."""

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        if not _KEY_PATTERN.match(key):
            raise CacheError(f"Invalid cache key: {key!r}", key=key)
        return self.directory / f"{key}.json"

    def get(self, key: str) -> Optional[str]:
        path = self._path(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as e:
            raise CacheError(f"Failed to read cache entry: {e}", key=key) from e

    def set(self, key: str, value: str) -> None:
        """Replace the whole entry atomically."""
        path = self._path(key)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=f".{key}.", suffix=".tmp")
        except OSError as e:
            raise CacheError(f"Failed to create cache directory {self.directory}: {e}", key=key) from e
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(value)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
        except OSError as e:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise CacheError(f"Failed to write cache entry: {e}", key=key) from e

    def delete(self, key: str) -> bool:
        try:
            self._path(key).unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            raise CacheError(f"Failed to delete cache entry: {e}", key=key) from e

    def keys(self) -> Iterator[str]:
        if not self.directory.is_dir():
            return iter(())
        return (p.stem for p in sorted(self.directory.glob("*.json")))

    def purge(self) -> int:
        count = sum(1 for key in self.keys() if key != META_KEY)
        try:
            if self.directory.exists():
                shutil.rmtree(self.directory)
        except OSError as e:
            raise CacheError(f"Failed to purge {self.directory}: {e}") from e
        return count


class ReplayCache:
    """Maps test fingerprints to recorded traces, namespaced per project."""

    def __init__(
        self,
        root: Path,
        project: str,
        version: int = CACHE_FORMAT_VERSION,
        logger: Optional[logging.Logger] = None,
    ):
        self.root = Path(root)
        self.project = project
        self.version = version
        self.logger = logger or logging.getLogger("replay_cache")
        self.store = FileStore(self.root / "cache" / project)
        self._checked_version = False

    def _ensure_namespace(self) -> None:
        """Purge the namespace once if it was written by another format version."""
        if self._checked_version:
            return
        self._checked_version = True
        raw = self.store.get(META_KEY)
        stored_version = None
        if raw is not None:
            try:
                stored_version = json.loads(raw).get("version")
            except (ValueError, AttributeError):
                stored_version = None
        if stored_version != self.version:
            if raw is not None or any(True for _ in self.store.keys()):
                removed = self.store.purge()
                self.logger.info(
                    f"Cache format changed ({stored_version} -> {self.version}); purged {removed} entries"
                )
            self.store.set(META_KEY, json.dumps({"version": self.version, "project": self.project}))

    def get(self, fingerprint: str) -> Optional[Trace]:
        """Return the cached trace, or None on miss, old version or unreadable entry."""
        try:
            self._ensure_namespace()
        except CacheError as e:
            self.logger.warning(f"Cache unavailable at {self.store.directory}: {e}")
            return None
        try:
            raw = self.store.get(fingerprint)
        except CacheError as e:
            self.logger.warning(f"Discarding unreadable cache entry {fingerprint[:12]}: {e}")
            self.delete(fingerprint)
            return None
        if raw is None:
            return None
        try:
            trace = Trace.model_validate_json(raw)
        except ValidationError as e:
            self.logger.warning(f"Discarding unreadable cache entry {fingerprint[:12]}: {e.error_count()} error(s)")
            self.delete(fingerprint)
            return None
        if trace.version != self.version:
            self.logger.info(f"Discarding cache entry {fingerprint[:12]} with format version {trace.version}")
            self.delete(fingerprint)
            return None
        return trace

    def set(self, fingerprint: str, trace: Trace) -> None:
        self._ensure_namespace()
        self.store.set(fingerprint, trace.model_dump_json(indent=2))
        self.logger.info(f"Cached {len(trace.steps)} step(s) for '{trace.test_name}'")

    def delete(self, fingerprint: str) -> bool:
        try:
            removed = self.store.delete(fingerprint)
        except CacheError as e:
            self.logger.warning(f"Could not delete cache entry {fingerprint[:12]}: {e}")
            return False
        if removed:
            self.logger.info(f"Deleted cache entry {fingerprint[:12]}")
        return removed

    def clear(self, scope: CacheScope = "project", force_purge: bool = False) -> int:
        """
        Remove cache entries.

        Without ``force_purge`` only entries written by another format version
        or that no longer parse are removed. Returns the number removed.
        """
        if scope == "all":
            stores = [FileStore(p) for p in sorted((self.root / "cache").glob("*")) if p.is_dir()]
        else:
            stores = [self.store]

        removed = 0
        for store in stores:
            if force_purge:
                removed += store.purge()
                continue
            for key in list(store.keys()):
                if key == META_KEY:
                    continue
                if not self._is_current(store, key):
                    store.delete(key)
                    removed += 1
        self._checked_version = False
        self.logger.info(f"Cleared {removed} cache entr{'y' if removed == 1 else 'ies'} (scope={scope})")
        return removed

    def _is_current(self, store: FileStore, key: str) -> bool:
        try:
            raw = store.get(key)
            return raw is not None and Trace.model_validate_json(raw).version == self.version
        except (CacheError, ValidationError):
            return False
