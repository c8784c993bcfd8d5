"""pytest integration: a ``rereplay`` fixture that records per test module.

Enable it from a ``conftest.py``::

    pytest_plugins = ["rereplay.pytest_plugin"]

then request the fixture in async tests::

    @pytest.mark.asyncio
    async def test_jokes(rereplay):
        async with httpx.AsyncClient() as client:
            response = await client.get("https://example.test/joke")

Each test module records into its own scope named after the module. Run
``pytest --rereplay-online`` to bypass the cache for the whole session, and
set ``rereplay_cache_dir`` in the ini file to move the cache files (relative
paths resolve against the rootdir).
"""

from __future__ import annotations

import os
from collections.abc import Iterator
from pathlib import Path
from typing import Optional

import pytest

from rereplay.config import ONLINE_ENV_VAR
from rereplay.interception import ReplaySession, setup

_SAVED_ONLINE_KEY = pytest.StashKey[Optional[str]]()


def pytest_addoption(parser: pytest.Parser) -> None:
    group = parser.getgroup("rereplay", "HTTP record/replay")
    group.addoption(
        "--rereplay-online",
        action="store_true",
        default=False,
        help="Bypass recorded responses and send every request to the network.",
    )
    parser.addini(
        "rereplay_cache_dir",
        help="Directory for rereplay cache files (default: resolved from the environment).",
        default="",
    )


def pytest_configure(config: pytest.Config) -> None:
    if config.getoption("rereplay_online"):
        config.stash[_SAVED_ONLINE_KEY] = os.environ.get(ONLINE_ENV_VAR)
        os.environ[ONLINE_ENV_VAR] = "1"


def pytest_unconfigure(config: pytest.Config) -> None:
    if _SAVED_ONLINE_KEY not in config.stash:
        return
    saved = config.stash[_SAVED_ONLINE_KEY]
    if saved is None:
        os.environ.pop(ONLINE_ENV_VAR, None)
    else:
        os.environ[ONLINE_ENV_VAR] = saved


def _cache_dir(config: pytest.Config) -> Optional[Path]:
    value = config.getini("rereplay_cache_dir")
    if not value:
        return None
    path = Path(value).expanduser()
    if not path.is_absolute():
        path = config.rootpath / path
    return path


@pytest.fixture
def rereplay(request: pytest.FixtureRequest) -> Iterator[ReplaySession]:
    """Record/replay httpx traffic for the duration of one test.

    The scope is the last component of the test module's name.
    """
    scope = request.module.__name__.rpartition(".")[2]
    session = setup(name=scope, cache_dir=_cache_dir(request.config))
    with session:
        yield session
