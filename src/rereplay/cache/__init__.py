"""File-backed TTL store for recorded responses.

This package provides :class:`PersistentMap`, the key/value store the
replayer records into. Each logical cache name (scope) maps to one JSON
file, ``<cache_dir>/.<scope>.rereplay.json``, and a single store instance
can be pointed at a different scope at runtime with
:meth:`PersistentMap.set_cache_file`.
"""

from rereplay.cache.persistent_map import FILE_SUFFIX, PersistentMap, cache_file_path, utc_now

__all__ = ["FILE_SUFFIX", "PersistentMap", "cache_file_path", "utc_now"]
