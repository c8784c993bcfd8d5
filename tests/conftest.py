"""Shared test fixtures for rereplay.

Every test runs in an isolated working directory with its own cache
directory and a clean process-wide replay state, so no test can see another
test's recordings or a leftover httpx patch.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from datetime import datetime, timedelta, timezone
from pathlib import Path

import httpx
import pytest

from rereplay.config import CACHE_DIR_ENV_VAR, NAME_ENV_VAR, ONLINE_ENV_VAR, STALE_AFTER_ENV_VAR
from rereplay.interception import HOOK_ATTRIBUTE
from rereplay.output import reset_reporter
from rereplay.state import get_state, reset_state

_PRISTINE_MOCK_HOOK = vars(httpx.MockTransport)[HOOK_ATTRIBUTE]
_PRISTINE_HTTP_HOOK = vars(httpx.AsyncHTTPTransport)[HOOK_ATTRIBUTE]


# ---------------------------------------------------------------------------
# Isolation
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Point rereplay at a per-test cache dir and undo any leftover patch."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv(CACHE_DIR_ENV_VAR, str(tmp_path / "cache"))
    for name in (ONLINE_ENV_VAR, NAME_ENV_VAR, STALE_AFTER_ENV_VAR):
        monkeypatch.delenv(name, raising=False)
    yield
    interception = get_state().interception
    if interception is not None:
        interception.uninstall()
    reset_state()
    # A failing test must not leave httpx patched for the rest of the run.
    httpx.MockTransport.handle_async_request = _PRISTINE_MOCK_HOOK
    httpx.AsyncHTTPTransport.handle_async_request = _PRISTINE_HTTP_HOOK


@pytest.fixture(autouse=True)
def _reset_reporter_between_tests() -> Iterator[None]:
    """Drop the global Reporter after every test.

    The Reporter caches references to sys.stdout/sys.stderr at
    creation time. When Typer's CliRunner redirects those streams during
    a test and the test finishes, the cached references become stale.
    """
    yield
    reset_reporter()


# ---------------------------------------------------------------------------
# Clock and network helpers
# ---------------------------------------------------------------------------


class FakeClock:
    """Settable clock for TTL tests."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


class CountingHandler:
    """``httpx.MockTransport`` handler that records every call it answers."""

    def __init__(self, respond: Callable[[httpx.Request], httpx.Response]) -> None:
        self.respond = respond
        self.requests: list[httpx.Request] = []

    @property
    def calls(self) -> int:
        return len(self.requests)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.respond(request)


@pytest.fixture
def joke_handler() -> CountingHandler:
    """A network that answers every request with a JSON joke."""
    return CountingHandler(
        lambda request: httpx.Response(
            200,
            json={"joke": "Why did the cache miss? It was stale.", "path": request.url.path},
        )
    )


@pytest.fixture
def cache_dir(tmp_path: Path) -> Path:
    return tmp_path / "cache"
