"""rereplay -- record outbound httpx calls once, replay them from disk afterwards.

The first time application code sends a given logical request through an
:class:`httpx.AsyncClient`, the real network is used and the response is
stored in a JSON cache file. Every later identical request gets the stored
response back without touching the network, which keeps tests and local
development fast, stable and offline-safe.

Typical usage::

    import rereplay

    with rereplay.setup(name="my-suite", cache_dir="tests/.rereplay"):
        ...  # httpx.AsyncClient calls are recorded / replayed here

Set ``REREPLAY_ONLINE=1`` to bypass the cache and always hit the network.

Modules:
    fingerprint: Request canonicalization and cache keys.
    codec: Response serialization and reconstruction.
    cache: The file-backed TTL store.
    replayer: The capability record and default record-or-replay step.
    interception: Installing and removing the httpx hook; :func:`setup`.
    config: Configuration resolution and the bypass signal.
    app: The ``rereplay`` command-line tool.
"""

__version__ = "0.3.0"

from rereplay.cache import PersistentMap  # noqa: E402
from rereplay.codec import deserialize_response, serialize_response  # noqa: E402
from rereplay.exceptions import (  # noqa: E402
    MalformedEntryError,
    NotConfiguredError,
    RereplayError,
    SerializationError,
)
from rereplay.fingerprint import RequestInit, fingerprint_request  # noqa: E402
from rereplay.interception import InterceptionPoint, ReplaySession, setup  # noqa: E402
from rereplay.models import RequestFingerprint, SerializedResponse  # noqa: E402
from rereplay.replayer import Replayer, record_or_replay  # noqa: E402
from rereplay.state import active_store  # noqa: E402

__all__ = [
    "InterceptionPoint",
    "MalformedEntryError",
    "NotConfiguredError",
    "PersistentMap",
    "ReplaySession",
    "Replayer",
    "RequestFingerprint",
    "RequestInit",
    "RereplayError",
    "SerializationError",
    "SerializedResponse",
    "__version__",
    "active_store",
    "deserialize_response",
    "fingerprint_request",
    "record_or_replay",
    "serialize_response",
    "setup",
]
