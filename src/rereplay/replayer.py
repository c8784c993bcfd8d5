"""The replayer capability record and the default record-or-replay step.

A :class:`Replayer` bundles four independently replaceable strategies:

* ``fingerprint(request)`` -- request to :class:`~rereplay.models.RequestFingerprint`
* ``serialize(response)`` -- response to a storable string
* ``deserialize(string)`` -- stored string back to a response
* ``intercept(replayer, request, network)`` -- the whole per-call decision

The defaults wire :mod:`rereplay.fingerprint`, :mod:`rereplay.codec` and the
active :class:`~rereplay.cache.PersistentMap` together. Substituting one
strategy leaves the others in place, e.g. a stub that never touches the
network or the store::

    async def stub(replayer, request, network):
        return httpx.Response(200, text="Yo")

    replayer = Replayer(intercept=stub)

or a fingerprint that also ignores an API key header::

    replayer = Replayer().override(
        fingerprint=functools.partial(
            fingerprint_request, ignore_headers=("authorization", "x-api-key")
        )
    )
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from rereplay.cache import PersistentMap
from rereplay.codec import deserialize_response, serialize_response
from rereplay.config import is_online
from rereplay.fingerprint import fingerprint_request
from rereplay.models import RequestFingerprint
from rereplay.state import active_store

logger = logging.getLogger(__name__)

CANONICAL_STRING_KEY = "canonicalString"
"""Metadata key under which a recorded entry keeps its canonical request string."""

Network = Callable[[httpx.Request], Awaitable[httpx.Response]]
Fingerprinter = Callable[[httpx.Request], Awaitable[RequestFingerprint]]
Serializer = Callable[[httpx.Response], Awaitable[str]]
Deserializer = Callable[[str], httpx.Response]
Interceptor = Callable[["Replayer", httpx.Request, Network], Awaitable[httpx.Response]]


async def record_or_replay(
    replayer: Replayer,
    request: httpx.Request,
    network: Network,
) -> httpx.Response:
    """Default intercept strategy.

    With ``REREPLAY_ONLINE`` set the request goes straight to *network* and
    the store is left alone. Otherwise a recorded response is replayed when
    one exists; on a miss the real call is made, its response recorded,
    and a fresh deserialization of the recording returned, so the first
    caller sees exactly what later callers will see.

    Errors raised by *network* propagate unchanged and nothing is recorded.
    """
    if is_online():
        logger.debug("Bypassing replay for %s %s", request.method, request.url)
        return await network(request)

    store = replayer.store if replayer.store is not None else active_store()
    fingerprint = await replayer.fingerprint(request)

    recorded = store.get(fingerprint.key)
    if recorded is None:
        logger.debug("Recording %s %s as %s", request.method, request.url, fingerprint.key)
        response = await network(request)
        recorded = await replayer.serialize(response)
        store.set(
            fingerprint.key,
            recorded,
            {CANONICAL_STRING_KEY: fingerprint.canonical_string},
        )
    else:
        logger.debug("Replaying %s %s from %s", request.method, request.url, fingerprint.key)

    replayed = replayer.deserialize(recorded)
    replayed.request = request
    return replayed


@dataclass(frozen=True)
class Replayer:
    """Capability record answering intercepted requests.

    Attributes:
        fingerprint: Computes the cache identity of a request.
        serialize: Turns a live response into the stored string.
        deserialize: Turns a stored string into a new response.
        intercept: Decides what to do with one request; receives this
            replayer so it can call the other strategies.
        store: Explicit store to record into. ``None`` uses the active
            store created by :func:`rereplay.setup`.
    """

    fingerprint: Fingerprinter = fingerprint_request
    serialize: Serializer = serialize_response
    deserialize: Deserializer = deserialize_response
    intercept: Interceptor = record_or_replay
    store: Optional[PersistentMap] = None

    async def handle(self, request: httpx.Request, network: Network) -> httpx.Response:
        """Answer *request*, using *network* for any real call."""
        return await self.intercept(self, request, network)

    def override(self, **strategies: Any) -> Replayer:
        """Return a copy with the given strategies replaced."""
        return dataclasses.replace(self, **strategies)
