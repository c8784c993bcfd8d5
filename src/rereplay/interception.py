"""Installing and removing the replay hook on httpx.

Every request an :class:`httpx.AsyncClient` sends reaches the network
through ``handle_async_request`` on its transport. :class:`InterceptionPoint`
swaps that method on a transport class for one that hands the request to a
:class:`~rereplay.replayer.Replayer`, passing the original method (bound to
the transport instance) as the real network call. :meth:`InterceptionPoint.uninstall`
puts the original back.

:func:`setup` is the usual entry point::

    session = rereplay.setup(name="billing", cache_dir="tests/.rereplay")

    with session:                      # installs a default Replayer
        async with httpx.AsyncClient() as client:
            await client.get("https://example.test/joke")   # recorded
            await client.get("https://example.test/joke")   # replayed

or, without the context manager, ``session.configure(replayer)`` followed
by ``session.restore()``.
"""

from __future__ import annotations

import functools
import logging
from datetime import timedelta
from pathlib import Path
from types import TracebackType
from typing import Any, Callable, Optional, Union

import httpx

from rereplay.cache import PersistentMap
from rereplay.config import resolve_config
from rereplay.models import ReplayConfig
from rereplay.replayer import Replayer
from rereplay.state import get_state

logger = logging.getLogger(__name__)

HOOK_ATTRIBUTE = "handle_async_request"
"""The transport method that performs the network call."""


class InterceptionPoint:
    """A paired install/uninstall patch of ``target.handle_async_request``.

    The original method is captured on the first :meth:`install` and kept
    until :meth:`uninstall`, so installing again with another replayer
    never wraps an already-patched method.

    Args:
        target: Transport class to patch. Defaults to
            :class:`httpx.AsyncHTTPTransport`; tests may patch
            :class:`httpx.MockTransport` to stub the network.
    """

    def __init__(self, target: type = httpx.AsyncHTTPTransport) -> None:
        self.target = target
        self._original: Optional[Callable[..., Any]] = None
        self._owned = False

    @property
    def installed(self) -> bool:
        return self._original is not None

    @property
    def original(self) -> Optional[Callable[..., Any]]:
        """The unpatched method, while installed."""
        return self._original

    def install(self, replayer: Replayer) -> None:
        """Route every request sent through :attr:`target` to *replayer*."""
        if self._original is None:
            self._owned = HOOK_ATTRIBUTE in vars(self.target)
            self._original = getattr(self.target, HOOK_ATTRIBUTE)
        original = self._original

        async def handle_async_request(transport: Any, request: httpx.Request) -> httpx.Response:
            network = functools.partial(original, transport)
            return await replayer.handle(request, network)

        setattr(self.target, HOOK_ATTRIBUTE, handle_async_request)
        logger.debug("Installed replay on %s.%s", self.target.__name__, HOOK_ATTRIBUTE)

    def uninstall(self) -> None:
        """Restore the original method. Safe to call when not installed."""
        if self._original is None:
            return
        if self._owned:
            setattr(self.target, HOOK_ATTRIBUTE, self._original)
        else:
            delattr(self.target, HOOK_ATTRIBUTE)
        self._original = None
        logger.debug("Restored %s.%s", self.target.__name__, HOOK_ATTRIBUTE)


class ReplaySession:
    """Handle returned by :func:`setup`.

    Attributes:
        config: The resolved configuration.
        store: The cache this session records into.
        target: The transport class :meth:`configure` patches.
    """

    def __init__(self, config: ReplayConfig, store: PersistentMap, target: type) -> None:
        self.config = config
        self.store = store
        self.target = target

    def configure(self, replayer: Optional[Replayer] = None) -> Replayer:
        """Install *replayer* (a default :class:`Replayer` when omitted).

        Makes this session's store the active one again, so configuring an
        older session after a newer :func:`setup` records into the older
        session's file.

        Returns:
            The installed replayer.
        """
        replayer = replayer or Replayer()
        state = get_state()
        if state.interception is not None and state.interception.target is not self.target:
            state.interception.uninstall()
            state.interception = None
        if state.interception is None:
            state.interception = InterceptionPoint(self.target)
        state.interception.install(replayer)
        state.replayer = replayer
        state.store = self.store
        return replayer

    def restore(self) -> None:
        """Uninstall interception and clear this session's process state."""
        state = get_state()
        if state.interception is not None:
            state.interception.uninstall()
            state.interception = None
        state.replayer = None
        if state.store is self.store:
            state.store = None

    def __enter__(self) -> ReplaySession:
        self.configure()
        return self

    def __exit__(
        self,
        exc_type: Optional[type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        self.restore()


def setup(
    name: Optional[str] = None,
    cache_dir: Union[str, Path, None] = None,
    stale_after: Union[timedelta, float, None] = None,
    *,
    target: type = httpx.AsyncHTTPTransport,
) -> ReplaySession:
    """Create the cache for *name* and make it the active store.

    Arguments left as ``None`` are resolved by
    :func:`~rereplay.config.resolve_config` (environment, ``rereplay.json``,
    defaults). The cache directory is created if missing. Interception is
    not installed until :meth:`ReplaySession.configure` or ``with session:``.

    Args:
        name: Logical cache name.
        cache_dir: Directory for cache files.
        stale_after: Time-to-live of recorded responses.
        target: Transport class to patch on configure.

    Returns:
        A :class:`ReplaySession`.

    Raises:
        ConfigError: If the resolved configuration is invalid.
    """
    config = resolve_config(name=name, cache_dir=cache_dir, stale_after=stale_after)
    config.cache_dir.mkdir(parents=True, exist_ok=True)

    store = PersistentMap(config.name, config.cache_dir, config.stale_after)
    get_state().store = store
    logger.debug("Replay cache %s loaded with %d entries", store.path, len(store))
    return ReplaySession(config, store, target)
