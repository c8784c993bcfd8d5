"""Typer application and CLI entry point for rereplay.

The ``rereplay`` command inspects and maintains the cache files a test suite
records into. It never performs HTTP requests itself.

Commands:
    ``scopes``       List the cache files (scopes) in the cache directory.
    ``list``         Summarise every entry of the selected scope.
    ``show``         Print one entry: stored response plus metadata.
    ``delete``       Remove one entry.
    ``clear``        Remove every entry of the selected scope.
    ``prune``        Drop stale entries.
    ``fingerprint``  Print the key and canonical string of a request.

The scope and cache directory come from ``--name`` / ``--cache-dir`` or,
failing that, from :func:`~rereplay.config.resolve_config`.

The :func:`main` function is the console-script entry point declared in
``pyproject.toml``. :class:`~rereplay.exceptions.RereplayError` instances
escaping a command become an error message and the error's ``exit_code``.

See Also:
    :mod:`rereplay.output`: Output formatting initialised in :func:`main_callback`.
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Any, Optional

import typer

from rereplay import __version__
from rereplay.cache import FILE_SUFFIX, PersistentMap
from rereplay.config import resolve_config
from rereplay.exceptions import EntryNotFoundError, InvalidUsageError, RereplayError
from rereplay.exit_codes import EXIT_GENERIC_FAILURE
from rereplay.fingerprint import fingerprint_request
from rereplay.models import CacheEntry, ReplayConfig, SerializedResponse
from rereplay.output import (
    EntryRow,
    OutputFormat,
    Reporter,
    ScopeRow,
    debug,
    error,
    info,
    print_document,
    print_entries,
    print_scopes,
    set_reporter,
    success,
    suggest,
)
from rereplay.replayer import CANONICAL_STRING_KEY

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="rereplay",
    help="Inspect and maintain rereplay HTTP recording caches.",
    no_args_is_help=True,
    add_completion=False,
    rich_markup_mode="rich",
)


def _version_callback(value: bool) -> None:
    """Print version and exit when --version is passed."""
    if value:
        typer.echo(f"rereplay {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    name: Optional[str] = typer.Option(
        None, "--name", "-s", help="Cache scope to operate on."
    ),
    cache_dir: Optional[Path] = typer.Option(
        None, "--cache-dir", help="Directory holding the cache files."
    ),
    json_output: bool = typer.Option(False, "--json", help="JSON output format."),
    plain_output: bool = typer.Option(False, "--plain", help="Plain text output."),
    no_color: bool = typer.Option(False, "--no-color", help="Disable color output."),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Suppress non-essential output."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug output."),
) -> None:
    """Root callback executed before every sub-command.

    Installs the global :class:`~rereplay.output.Reporter`, configures
    library logging from the CLI flags and keeps the scope overrides in the
    Typer context for :func:`_open_store`.

    Args:
        ctx: Typer invocation context.
        version: If ``True``, print the version string and exit.
        name: Scope override (highest precedence).
        cache_dir: Cache directory override (highest precedence).
        json_output: Force JSON output format.
        plain_output: Force plain-text output format.
        no_color: Disable all colour and Rich markup.
        quiet: Suppress non-essential diagnostic output.
        verbose: Enable debug-level diagnostic output and library logging.
    """
    fmt = OutputFormat.AUTO
    if json_output:
        fmt = OutputFormat.JSON
    elif plain_output:
        fmt = OutputFormat.PLAIN

    set_reporter(Reporter(format=fmt, no_color=no_color, quiet=quiet, verbose=verbose))
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    ctx.ensure_object(dict)
    ctx.obj["name"] = name
    ctx.obj["cache_dir"] = cache_dir


# ------------------------------------------------------------------ #
# Helpers
# ------------------------------------------------------------------ #


def _config(ctx: typer.Context) -> ReplayConfig:
    obj = ctx.obj or {}
    return resolve_config(name=obj.get("name"), cache_dir=obj.get("cache_dir"))


def _open_store(ctx: typer.Context, *, read_only: bool = False) -> PersistentMap:
    """Open the store for the selected scope.

    A writable store prunes stale entries on load. A read-only store shows
    the file exactly as it is on disk.
    """
    config = _config(ctx)
    store = PersistentMap(
        config.name, config.cache_dir, config.stale_after, read_only=read_only
    )
    debug(f"Opened {store.path} ({len(store)} entries)")
    return store


def _request_summary(entry: CacheEntry) -> tuple[str, str]:
    """Return ``(method, url)`` recovered from an entry's canonical string."""
    canonical = entry.metadata.get(CANONICAL_STRING_KEY)
    if not isinstance(canonical, str):
        return "", ""
    url, _, rest = canonical.partition("|")
    method, _, _ = rest.partition("|")
    return method, url


def _response_summary(value: str) -> tuple[str, str]:
    """Return ``(status, body type)`` of a stored response, or markers if unreadable."""
    try:
        response = SerializedResponse.model_validate_json(value)
    except ValueError:
        return "?", "malformed"
    return str(response.status), response.body_type.value


def _parse_header(raw: str) -> tuple[str, str]:
    name, sep, value = raw.partition(":")
    if not sep or not name.strip():
        raise InvalidUsageError(f"Invalid header {raw!r}; expected 'Name: value'")
    return name.strip(), value.strip()


# ------------------------------------------------------------------ #
# Commands
# ------------------------------------------------------------------ #


@app.command("scopes")
def scopes_command(ctx: typer.Context) -> None:
    """List cache scopes found in the cache directory.

    Example::

        rereplay scopes
        rereplay --json --cache-dir tests/.rereplay scopes
    """
    config = _config(ctx)
    rows: list[ScopeRow] = []
    if config.cache_dir.is_dir():
        for path in sorted(config.cache_dir.glob(f".*{FILE_SUFFIX}")):
            scope = path.name[1 : -len(FILE_SUFFIX)]
            store = PersistentMap(
                scope, config.cache_dir, config.stale_after, read_only=True
            )
            rows.append(ScopeRow(scope=scope, entries=len(store), file=str(path)))

    if not rows:
        info(f"No cache files in {config.cache_dir}")
        return
    print_scopes(rows)


@app.command("list")
def list_command(ctx: typer.Context) -> None:
    """List the entries of the selected scope.

    Shows each entry's key, creation time, recorded status, body type and
    the request it was recorded for.

    Example::

        rereplay list
        rereplay --plain --name billing list
    """
    store = _open_store(ctx, read_only=True)
    rows: list[EntryRow] = []
    for key in store:
        entry = store.describe(key)
        if entry is None:
            continue
        method, url = _request_summary(entry)
        status, body_type = _response_summary(entry.value)
        rows.append(
            EntryRow(
                key=key,
                created=entry.created_at.isoformat(),
                status=status,
                body=body_type,
                method=method,
                url=url,
            )
        )

    if not rows:
        info(f"No entries in scope '{store.scope}'")
        return
    print_entries(store.scope, rows)


@app.command("show")
def show_command(
    ctx: typer.Context,
    key: str = typer.Argument(help="Entry key, as printed by 'rereplay list'."),
) -> None:
    """Show one entry: its stored response and metadata.

    Raises:
        EntryNotFoundError: If *key* is not in the selected scope.
    """
    store = _open_store(ctx, read_only=True)
    entry = store.describe(key)
    if entry is None:
        raise EntryNotFoundError(f"No entry '{key}' in scope '{store.scope}'")

    data: dict[str, Any] = entry.model_dump(mode="json", by_alias=True)
    try:
        response = SerializedResponse.model_validate_json(entry.value)
        data["value"] = response.model_dump(mode="json", by_alias=True)
    except ValueError:
        logger.warning("Entry %s does not hold a valid serialized response", key)
    data["key"] = key
    print_document(data)


@app.command("delete")
def delete_command(
    ctx: typer.Context,
    key: str = typer.Argument(help="Entry key to remove."),
) -> None:
    """Remove one entry from the selected scope.

    Raises:
        EntryNotFoundError: If *key* is not in the selected scope.
    """
    store = _open_store(ctx)
    if not store.delete(key):
        raise EntryNotFoundError(f"No entry '{key}' in scope '{store.scope}'")
    success(f"Deleted '{key}' from scope '{store.scope}'")


@app.command("clear")
def clear_command(
    ctx: typer.Context,
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation."),
) -> None:
    """Remove every entry of the selected scope."""
    store = _open_store(ctx)
    count = len(store)
    if count == 0:
        info(f"Scope '{store.scope}' is already empty")
        return
    if not force:
        typer.confirm(f"Remove {count} entries from scope '{store.scope}'?", abort=True)
    store.clear()
    success(f"Cleared {count} entries from scope '{store.scope}'")
    suggest("Run your tests again to re-record the responses.")


@app.command("prune")
def prune_command(ctx: typer.Context) -> None:
    """Drop stale entries of the selected scope and report how many went."""
    config = _config(ctx)
    store = PersistentMap(
        config.name, config.cache_dir, config.stale_after, prune_on_load=False
    )
    removed = store.prune()
    success(f"Pruned {removed} stale entries from scope '{store.scope}'")


@app.command("fingerprint")
def fingerprint_command(
    url: str = typer.Argument(help="Request URL."),
    method: str = typer.Option("GET", "--request", "-X", help="HTTP method."),
    headers: Optional[list[str]] = typer.Option(
        None, "--header", "-H", help="Request header as 'Name: value'. Repeatable."
    ),
    body: Optional[str] = typer.Option(None, "--data", "-d", help="Request body."),
) -> None:
    """Print the cache key and canonical string a request would get.

    Example::

        rereplay fingerprint https://api.example.test/jokes -H 'Accept: application/json'
        rereplay fingerprint https://api.example.test/jokes -X POST -d '{"q": 1}'
    """
    parsed = [_parse_header(raw) for raw in headers or []]
    result = asyncio.run(
        fingerprint_request(url, {"method": method, "headers": parsed, "body": body})
    )
    print_document({"key": result.key, "canonicalString": result.canonical_string})


# ------------------------------------------------------------------ #
# Entry point
# ------------------------------------------------------------------ #


def _setup_signal_handlers() -> None:
    """Install a SIGINT handler so Ctrl-C exits cleanly."""

    def _handler(signum: int, frame: Any) -> None:  # noqa: ANN401
        sys.stderr.write("\nCancelled.\n")
        sys.exit(130)

    signal.signal(signal.SIGINT, _handler)


def main() -> None:
    """CLI entry point invoked by the ``rereplay`` console script.

    Unhandled :class:`~rereplay.exceptions.RereplayError` instances cause a
    clean exit with the error's ``exit_code``. Any other exception is
    reported and exits with a generic failure code.

    Raises:
        SystemExit: Always raised (either by Typer or explicitly).
    """
    _setup_signal_handlers()
    try:
        app(standalone_mode=True)
    except SystemExit:
        raise
    except KeyboardInterrupt:
        sys.stderr.write("\nCancelled.\n")
        sys.exit(130)
    except RereplayError as exc:
        error(str(exc))
        sys.exit(exc.exit_code)
    except Exception as exc:
        logger.debug("Unexpected error", exc_info=True)
        error(f"Unexpected error: {exc}")
        sys.exit(EXIT_GENERIC_FAILURE)
