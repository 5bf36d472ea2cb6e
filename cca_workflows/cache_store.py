#!/usr/bin/env python3
"""
File-backed response cache for the Claude Code Auto Workflows toolkit.

Each entry lives in its own JSON file named after a SHA-256 key. Writes go to
a uniquely named temporary file in the same directory and are then moved into
place with a single os.replace(), so a reader only ever sees a complete old
entry or a complete new one, even across processes. Caching is best-effort:
I/O problems turn into cache misses or skipped writes, never into failures.
"""

import hashlib
import json
import logging
import os
import time
import uuid
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional
from urllib.parse import urlencode

import aiofiles
import aiofiles.os

from .exceptions import CacheError
from .models import CacheEntry, CacheStats


ENTRY_SUFFIX = ".json"
TEMP_MARKER = ".tmp."


def normalize_param(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return ",".join(normalize_param(v) for v in value)
    if isinstance(value, dict):
        return json.dumps(value, sort_keys=True, separators=(",", ":"))
    return str(value)


def make_cache_key(endpoint: str, params: Optional[Mapping[str, Any]] = None) -> str:
    """Stable key for a request; parameter order does not matter"""
    normalized = endpoint.strip().lstrip("/")
    items = sorted((str(k), normalize_param(v)) for k, v in (params or {}).items())
    canonical = f"{normalized}?{urlencode(items)}"
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class CacheStore:
    """TTL-bound key/value store with one file per entry"""

    def __init__(
        self,
        root: Path,
        default_ttl: int = 300,
        cleanup_interval: int = 3600,
        enabled: bool = True,
        clock: Callable[[], float] = time.time
    ):
        self.root = Path(root).expanduser()
        self.default_ttl = default_ttl
        self.cleanup_interval = cleanup_interval
        self.clock = clock
        self.stats = CacheStats()
        self._last_sweep: Optional[float] = None
        self.enabled = enabled and self._prepare_root()

    @classmethod
    def from_config(cls, config) -> "CacheStore":
        return cls(
            config.cache_path,
            default_ttl=config.cache_ttl,
            cleanup_interval=config.cache_cleanup_interval,
            enabled=config.enable_cache,
        )

    def _prepare_root(self) -> bool:
        """Create the cache root with private permissions; False disables caching"""
        try:
            self.root.mkdir(parents=True, exist_ok=True, mode=0o700)
        except OSError as e:
            logging.warning(f"Cache directory {self.root} unavailable, caching disabled: {e}")
            return False
        if not os.access(self.root, os.W_OK | os.X_OK):
            logging.warning(f"Cache directory {self.root} is not writable, caching disabled")
            return False
        return True

    def _entry_path(self, key: str) -> Path:
        return self.root / f"{key}{ENTRY_SUFFIX}"

    async def _read_entry(self, path: Path) -> Optional[CacheEntry]:
        try:
            async with aiofiles.open(path, "r", encoding="utf-8") as f:
                text = await f.read()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise CacheError(f"Failed to read cache entry {path.name}: {e}") from e
        except UnicodeDecodeError as e:
            raise CacheError(f"Corrupt cache entry {path.name}: {e}") from e
        try:
            return CacheEntry.from_dict(json.loads(text))
        except (ValueError, KeyError, TypeError) as e:
            raise CacheError(f"Corrupt cache entry {path.name}: {e}") from e

    async def _write_atomic(self, path: Path, entry: CacheEntry):
        try:
            data = json.dumps(entry.to_dict(), separators=(",", ":"))
        except (TypeError, ValueError) as e:
            raise CacheError(f"Payload for {entry.key[:12]} is not serializable: {e}") from e

        tmp_path = path.with_name(f"{path.name}{TEMP_MARKER}{os.getpid()}.{uuid.uuid4().hex}")
        try:
            async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
                await f.write(data)
                await f.flush()
            await aiofiles.os.replace(tmp_path, path)
        except OSError as e:
            await self._discard(tmp_path)
            raise CacheError(f"Failed to write cache entry {path.name}: {e}") from e

    async def _discard(self, path: Path) -> bool:
        try:
            await aiofiles.os.remove(path)
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            logging.debug(f"Could not remove {path}: {e}")
            return False

    async def get(self, key: str) -> Optional[CacheEntry]:
        """Return the entry for key if present and not expired, else None"""
        if not self.enabled:
            self.stats.misses += 1
            return None

        try:
            entry = await self._read_entry(self._entry_path(key))
        except CacheError as e:
            logging.debug(f"Cache read failed, treating as miss: {e}")
            self.stats.errors += 1
            entry = None

        if entry is None or entry.key != key or not entry.is_valid(self.clock()):
            self.stats.misses += 1
            return None

        self.stats.hits += 1
        return entry

    async def put(self, key: str, payload: Any, ttl: Optional[int] = None) -> bool:
        """Store payload under key; returns False if the write was skipped"""
        if not self.enabled:
            return False

        entry = CacheEntry(
            key=key,
            payload=payload,
            stored_at=self.clock(),
            ttl=int(ttl if ttl is not None else self.default_ttl),
        )
        try:
            await self._write_atomic(self._entry_path(key), entry)
        except CacheError as e:
            logging.warning(f"Cache write skipped: {e}")
            self.stats.errors += 1
            return False

        self.stats.writes += 1
        return True

    async def invalidate(self, key: str) -> bool:
        """Remove one entry; returns True if it existed"""
        if not self.enabled:
            return False
        return await self._discard(self._entry_path(key))

    def _list_files(self):
        try:
            return sorted(os.listdir(self.root))
        except OSError as e:
            logging.warning(f"Cannot list cache directory {self.root}: {e}")
            return []

    async def sweep(self) -> int:
        """Delete expired or unreadable entries and abandoned temp files"""
        if not self.enabled:
            return 0

        now = self.clock()
        removed = 0
        for name in self._list_files():
            path = self.root / name
            if TEMP_MARKER in name:
                try:
                    age = now - path.stat().st_mtime
                except FileNotFoundError:
                    continue
                if age >= self.cleanup_interval and await self._discard(path):
                    removed += 1
                continue

            if not name.endswith(ENTRY_SUFFIX):
                continue

            try:
                entry = await self._read_entry(path)
            except CacheError as e:
                logging.debug(f"Removing unreadable cache entry: {e}")
                if await self._discard(path):
                    removed += 1
                continue

            if entry is not None and not entry.is_valid(now) and await self._discard(path):
                removed += 1

        self._last_sweep = now
        if removed:
            logging.info(f"Cache cleanup removed {removed} entr{'y' if removed == 1 else 'ies'}")
        return removed

    async def maybe_sweep(self) -> int:
        """Sweep only if the cleanup interval has elapsed since the last sweep"""
        if self._last_sweep is not None and self.clock() - self._last_sweep < self.cleanup_interval:
            return 0
        return await self.sweep()

    async def clear(self) -> int:
        """Delete every entry regardless of age"""
        if not self.enabled:
            return 0
        removed = 0
        for name in self._list_files():
            if name.endswith(ENTRY_SUFFIX) or TEMP_MARKER in name:
                if await self._discard(self.root / name):
                    removed += 1
        logging.info(f"Cleared {removed} cache file(s) from {self.root}")
        return removed

    def entry_count(self) -> int:
        if not self.enabled:
            return 0
        return sum(1 for name in self._list_files() if name.endswith(ENTRY_SUFFIX))

    def get_stats(self) -> Dict[str, Any]:
        stats = self.stats.to_dict()
        stats["enabled"] = self.enabled
        stats["entries"] = self.entry_count()
        stats["root"] = str(self.root)
        return stats
