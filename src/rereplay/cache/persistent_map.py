"""JSON-file backed key/value store with time-to-live expiry.

:class:`PersistentMap` keeps every entry in memory and rewrites its whole
backing file after each mutation. The file lives at
``<cache_dir>/.<scope>.rereplay.json`` and holds a JSON array of
``[key, {"value", "createdAt", "metadata"}]`` pairs.

Entries older than ``stale_after`` are treated as absent: they are pruned
when the file is loaded and evicted when :meth:`PersistentMap.get` finds
them. A file that cannot be parsed is deleted and replaced by an empty
store, with a warning logged; the store never raises for a corrupt file.

The store has no locking. All callers in a process share one instance per
scope and the last write wins.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable, Iterator
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Optional, Union

from pydantic import TypeAdapter, ValidationError

from rereplay.config import _atomic_write
from rereplay.exceptions import ConfigError, ReadOnlyStoreError
from rereplay.models import DEFAULT_STALE_AFTER, SCOPE_PATTERN, CacheEntry

logger = logging.getLogger(__name__)

FILE_SUFFIX = ".rereplay.json"

_FILE_ADAPTER = TypeAdapter(list[tuple[str, CacheEntry]])


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def cache_file_path(cache_dir: Union[str, Path], scope: str) -> Path:
    """Return the backing file for *scope* inside *cache_dir*.

    Raises:
        ConfigError: If *scope* contains a path separator.
    """
    if not scope or not re.match(SCOPE_PATTERN, scope):
        raise ConfigError(f"Invalid cache scope {scope!r}: path separators are not allowed")
    return Path(cache_dir) / f".{scope}{FILE_SUFFIX}"


class PersistentMap:
    """A ``str`` -> ``str`` map persisted to a JSON file, with TTL expiry.

    Args:
        name: Logical cache name; the initial scope.
        cache_dir: Directory holding the cache files. It is not created
            here; :func:`rereplay.setup` does that.
        stale_after: Maximum age of an entry. Accepts a
            :class:`~datetime.timedelta` or a number of seconds.
        clock: Returns the current aware datetime. Tests pass a fake clock.
        prune_on_load: Drop stale entries whenever a file is loaded. The
            ``prune`` CLI command turns this off to count what it removes.
        read_only: Never touch the backing file. Loading neither prunes nor
            deletes a corrupt file, and any write raises
            :class:`~rereplay.exceptions.ReadOnlyStoreError`. The inspection
            commands open stores this way.

    Example::

        store = PersistentMap("api", Path(".rereplay"))
        store.set("abc", '{"status": 200}', {"canonicalString": "..."})
        store.get("abc")
        store.set_cache_file("other-suite")   # reloads from another file
    """

    def __init__(
        self,
        name: str,
        cache_dir: Union[str, Path],
        stale_after: Union[timedelta, float, None] = None,
        *,
        clock: Callable[[], datetime] = utc_now,
        prune_on_load: bool = True,
        read_only: bool = False,
    ) -> None:
        if stale_after is None:
            stale_after = DEFAULT_STALE_AFTER
        elif not isinstance(stale_after, timedelta):
            stale_after = timedelta(seconds=stale_after)

        self.name = name
        self.cache_dir = Path(cache_dir)
        self.stale_after = stale_after
        self._clock = clock
        self._prune_on_load = prune_on_load and not read_only
        self._read_only = read_only
        self._scope = name
        self._path = cache_file_path(self.cache_dir, name)
        self._entries: dict[str, CacheEntry] = {}
        self.load()

    # ------------------------------------------------------------------ #
    # Scope and persistence
    # ------------------------------------------------------------------ #

    @property
    def path(self) -> Path:
        """The backing file of the active scope."""
        return self._path

    @property
    def scope(self) -> str:
        """The active scope name."""
        return self._scope

    def set_cache_file(self, scope: str) -> None:
        """Point the store at the file for *scope* and reload from it.

        In-memory state of the previous scope is dropped; it was already
        persisted by the last mutation.

        Raises:
            ConfigError: If *scope* contains a path separator.
        """
        path = cache_file_path(self.cache_dir, scope)
        self._scope = scope
        self._path = path
        self.load()

    def load(self) -> None:
        """Replace the in-memory map with the contents of the backing file.

        A missing file yields an empty map. A file that fails to parse is
        deleted (with a warning) and also yields an empty map. Unless
        ``prune_on_load`` is off, stale entries are pruned and the file
        rewritten once if any were removed.
        """
        self._entries = {}
        try:
            raw = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return
        except UnicodeDecodeError:
            self._discard_corrupt_file()
            return

        try:
            pairs = _FILE_ADAPTER.validate_json(raw)
        except ValidationError:
            self._discard_corrupt_file()
            return

        self._entries = dict(pairs)
        if self._prune_on_load:
            self.prune()

    def _discard_corrupt_file(self) -> None:
        if self._read_only:
            logger.warning("Invalid cache file at %s left in place (read-only).", self._path)
            return
        try:
            self._path.unlink()
        except FileNotFoundError:
            return
        except OSError as exc:
            logger.error("Failed to delete invalid cache file at %s: %s", self._path, exc)
            return
        logger.warning("Invalid cache file at %s has been deleted.", self._path)

    def save(self) -> None:
        """Write the whole map to the backing file.

        Raises:
            ReadOnlyStoreError: If the store was opened read-only.
        """
        self._ensure_writable()
        payload = [
            [key, entry.model_dump(mode="json", by_alias=True)]
            for key, entry in self._entries.items()
        ]
        _atomic_write(self._path, json.dumps(payload, ensure_ascii=False))

    def prune(self) -> int:
        """Drop every stale entry and persist if anything was removed.

        Returns:
            The number of entries removed.
        """
        self._ensure_writable()
        stale = [key for key, entry in self._entries.items() if self._is_stale(entry)]
        for key in stale:
            del self._entries[key]
        if stale:
            logger.debug("Pruned %d stale entries from %s", len(stale), self._path)
            self.save()
        return len(stale)

    def _ensure_writable(self) -> None:
        if self._read_only:
            raise ReadOnlyStoreError(f"Cache file {self._path} was opened read-only")

    def _is_stale(self, entry: CacheEntry) -> bool:
        return entry.created_at < self._clock() - self.stale_after

    # ------------------------------------------------------------------ #
    # Mapping operations
    # ------------------------------------------------------------------ #

    def set(self, key: str, value: str, metadata: Optional[dict[str, Any]] = None) -> PersistentMap:
        """Insert or replace *key* with a fresh creation time, then persist."""
        self._ensure_writable()
        self._entries[key] = CacheEntry(
            value=value,
            created_at=self._clock(),
            metadata=dict(metadata or {}),
        )
        self.save()
        return self

    def get(self, key: str) -> Optional[str]:
        """Return the value for *key*, or ``None`` if absent or stale.

        A stale entry is evicted and the store persisted, unless the store
        is read-only.
        """
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._is_stale(entry):
            if not self._read_only:
                del self._entries[key]
                self.save()
            return None
        return entry.value

    def has(self, key: str) -> bool:
        """Return True if *key* is present and fresh. Never evicts."""
        entry = self._entries.get(key)
        return entry is not None and not self._is_stale(entry)

    def delete(self, key: str) -> bool:
        """Remove *key*. Returns False (and does not write) if it was absent."""
        self._ensure_writable()
        if self._entries.pop(key, None) is None:
            return False
        self.save()
        return True

    def clear(self) -> None:
        """Remove every entry of the active scope and persist."""
        self._ensure_writable()
        self._entries.clear()
        self.save()

    def describe(self, key: str) -> Optional[CacheEntry]:
        """Return the full entry (creation time, metadata) for inspection tools."""
        return self._entries.get(key)

    # ------------------------------------------------------------------ #
    # Iteration
    # ------------------------------------------------------------------ #

    def entries(self) -> Iterator[tuple[str, str]]:
        return iter([(key, entry.value) for key, entry in self._entries.items()])

    def keys(self) -> Iterator[str]:
        return iter(list(self._entries))

    def values(self) -> Iterator[str]:
        return iter([entry.value for entry in self._entries.values()])

    def for_each(self, callback: Callable[[str, str, PersistentMap], Any]) -> None:
        """Call ``callback(value, key, store)`` for every entry."""
        for key, value in list(self.entries()):
            callback(value, key, self)

    @property
    def size(self) -> int:
        return len(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[str]:
        return self.keys()

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.has(key)

    def __repr__(self) -> str:
        return f"PersistentMap(scope={self._scope!r}, path={str(self._path)!r}, size={len(self)})"
