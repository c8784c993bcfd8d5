"""Process-scoped replay state.

rereplay patches a class attribute of httpx, so its state is process-wide
by nature. Rather than scattering module globals, everything lives in one
:class:`ReplayState` instance with an explicit lifecycle:

* :func:`rereplay.setup` sets ``store`` (the active cache).
* :meth:`rereplay.interception.ReplaySession.configure` sets ``interception``
  (which owns the original network entry point) and ``replayer``.
* Every intercepted call reads ``store`` through :func:`active_store`.
* :meth:`rereplay.interception.ReplaySession.restore` clears all three.

:func:`reset_state` drops everything; tests use it between cases.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from rereplay.exceptions import NotConfiguredError

if TYPE_CHECKING:
    from rereplay.cache import PersistentMap
    from rereplay.interception import InterceptionPoint
    from rereplay.replayer import Replayer


@dataclass
class ReplayState:
    """Mutable process-wide replay state.

    Attributes:
        store: The active cache every default interceptor records into.
        interception: The installed interception point, if any.
        replayer: The replayer currently answering intercepted calls.
    """

    store: Optional[PersistentMap] = None
    interception: Optional[InterceptionPoint] = None
    replayer: Optional[Replayer] = None


_state = ReplayState()


def get_state() -> ReplayState:
    """Return the process-wide :class:`ReplayState`."""
    return _state


def reset_state() -> None:
    """Replace the process-wide state with an empty one.

    Does not uninstall interception; call
    :meth:`~rereplay.interception.ReplaySession.restore` first.
    """
    global _state
    _state = ReplayState()


def active_store() -> PersistentMap:
    """Return the active cache.

    Raises:
        NotConfiguredError: If :func:`rereplay.setup` has not been called.
    """
    store = _state.store
    if store is None:
        raise NotConfiguredError("rereplay is not set up; call rereplay.setup() first")
    return store
