"""Configuration resolution, the bypass signal, and atomic file writes.

This module handles everything rereplay reads from its environment:

* **Precedence resolution** -- :func:`resolve_config` merges explicit
  arguments, environment variables, the project-local ``rereplay.json``
  and built-in defaults into a :class:`~rereplay.models.ReplayConfig`.
* **Bypass signal** -- :func:`is_online` reads ``REREPLAY_ONLINE``. It is
  evaluated on every intercepted call, never cached, so a test can flip it
  with ``monkeypatch.setenv`` at any point.
* **Atomic writes** -- :func:`_atomic_write` replaces a file via a
  temp-file-then-rename so readers never observe a half-written cache file.
"""

from __future__ import annotations

import json
import os
import tempfile
from datetime import timedelta
from pathlib import Path
from typing import Any, Optional, Union

from pydantic import ValidationError

from rereplay.exceptions import ConfigError
from rereplay.models import ReplayConfig

ONLINE_ENV_VAR = "REREPLAY_ONLINE"
NAME_ENV_VAR = "REREPLAY_NAME"
CACHE_DIR_ENV_VAR = "REREPLAY_CACHE_DIR"
STALE_AFTER_ENV_VAR = "REREPLAY_STALE_AFTER"

_PROJECT_CONFIG_FILENAME = "rereplay.json"
_FALSE_VALUES = frozenset({"", "0", "false", "no", "off"})


# --- Bypass signal ---


def is_online() -> bool:
    """Return True when replay is bypassed and every call goes to the network.

    Any value of ``REREPLAY_ONLINE`` other than an empty string, ``0``,
    ``false``, ``no`` or ``off`` (case-insensitive) counts as set.
    """
    value = os.environ.get(ONLINE_ENV_VAR)
    if value is None:
        return False
    return value.strip().lower() not in _FALSE_VALUES


# --- Atomic file writes ---


def _atomic_write(path: Path, data: str) -> None:
    """Write data to file atomically using temp file + rename.

    The temporary file is created in the same directory as *path* so that
    ``os.replace`` is guaranteed to be an atomic rename on POSIX systems.
    On success the temp file is renamed over *path*; on any failure the temp
    file is cleaned up.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    fd = None
    tmp_path: Optional[str] = None
    try:
        fd = tempfile.NamedTemporaryFile(
            mode="w",
            dir=path.parent,
            prefix=f"{path.name}.",
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
        )
        tmp_path = fd.name
        fd.write(data)
        fd.flush()
        os.fsync(fd.fileno())
        fd.close()
        fd = None  # prevent double-close in finally
        os.replace(tmp_path, path)
    except BaseException:
        # Clean up the temp file on any error (including KeyboardInterrupt).
        if fd is not None:
            fd.close()
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        raise


# --- Project-local config ---


def load_project_config() -> Optional[dict[str, Any]]:
    """Load project-local configuration from ``./rereplay.json``.

    Recognised keys are ``name``, ``cache_dir`` (relative paths resolve
    against the file's directory) and ``stale_after_seconds``.

    Returns:
        The parsed JSON object, or ``None`` if the file does not exist.

    Raises:
        ConfigError: If the file exists but is not a JSON object.
    """
    path = Path.cwd() / _PROJECT_CONFIG_FILENAME
    if not path.is_file():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, ValueError) as exc:
        raise ConfigError(f"Invalid project config at {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Invalid project config at {path}: expected a JSON object")
    if "cache_dir" in data and data["cache_dir"] is not None:
        data["cache_dir"] = str(path.parent / Path(data["cache_dir"]).expanduser())
    return data


# --- Precedence resolution ---


def _seconds(value: Union[timedelta, float, int, str], source: str) -> timedelta:
    if isinstance(value, timedelta):
        return value
    try:
        return timedelta(seconds=float(value))
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid stale-after value {value!r} ({source})") from exc


def resolve_config(
    name: Optional[str] = None,
    cache_dir: Union[str, Path, None] = None,
    stale_after: Union[timedelta, float, None] = None,
) -> ReplayConfig:
    """Resolve the effective replay configuration.

    Precedence (high to low):
        1. Explicit arguments
        2. Environment variables (``REREPLAY_NAME``, ``REREPLAY_CACHE_DIR``,
           ``REREPLAY_STALE_AFTER`` in seconds)
        3. Project config (``./rereplay.json``)
        4. Defaults (``rereplay``, ``./.rereplay``, 7 days)

    Args:
        name: Logical cache name.
        cache_dir: Directory for cache files.
        stale_after: Time-to-live as a :class:`~datetime.timedelta` or a
            number of seconds.

    Returns:
        The validated :class:`~rereplay.models.ReplayConfig`.

    Raises:
        ConfigError: If any layer supplies an invalid value.
    """
    values: dict[str, Any] = {}

    # 3. Project-local config
    project = load_project_config() or {}
    if project.get("name"):
        values["name"] = project["name"]
    if project.get("cache_dir"):
        values["cache_dir"] = project["cache_dir"]
    if project.get("stale_after_seconds") is not None:
        values["stale_after"] = _seconds(project["stale_after_seconds"], _PROJECT_CONFIG_FILENAME)

    # 2. Environment variables
    env_name = os.environ.get(NAME_ENV_VAR)
    if env_name:
        values["name"] = env_name
    env_cache_dir = os.environ.get(CACHE_DIR_ENV_VAR)
    if env_cache_dir:
        values["cache_dir"] = env_cache_dir
    env_stale_after = os.environ.get(STALE_AFTER_ENV_VAR)
    if env_stale_after:
        values["stale_after"] = _seconds(env_stale_after, STALE_AFTER_ENV_VAR)

    # 1. Explicit arguments
    if name is not None:
        values["name"] = name
    if cache_dir is not None:
        values["cache_dir"] = cache_dir
    if stale_after is not None:
        values["stale_after"] = _seconds(stale_after, "argument")

    try:
        config = ReplayConfig.model_validate(values)
    except ValidationError as exc:
        raise ConfigError(f"Invalid rereplay configuration: {exc}") from exc
    config.cache_dir = config.cache_dir.expanduser()
    return config
