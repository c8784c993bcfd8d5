"""Rendering of cache scopes, entries and fingerprints for the ``rereplay`` CLI.

Data (entry listings, stored responses, fingerprints) goes to stdout so it can
be piped into ``jq`` or ``cut``; notes about what the command did go to
stderr. The format is picked once per invocation:

* ``json`` -- machine-readable documents and arrays of row objects.
* ``plain`` -- tab-separated rows, one ``field<TAB>value`` line per document
  field. This is the default when stdout is not a terminal.
* ``rich`` -- tables with the recorded status coloured by class.

``NO_COLOR``, ``TERM=dumb`` and ``--no-color`` turn colour off.

A :class:`Reporter` is created in :func:`~rereplay.app.main_callback` and
installed with :func:`set_reporter`; commands use the module-level helpers.
"""

from __future__ import annotations

import json
import os
import sys
from dataclasses import asdict, astuple, dataclass, fields
from enum import Enum
from typing import Any, Optional, Sequence

from rich.console import Console
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text


class OutputFormat(str, Enum):
    """Output formats. ``AUTO`` becomes ``RICH`` on a colour terminal, else ``PLAIN``."""

    AUTO = "auto"
    JSON = "json"
    PLAIN = "plain"
    RICH = "rich"


@dataclass(frozen=True)
class ScopeRow:
    """One cache file in the cache directory."""

    scope: str
    entries: int
    file: str


@dataclass(frozen=True)
class EntryRow:
    """Summary of one stored entry.

    ``status`` is ``"?"`` and ``body`` is ``"malformed"`` when the stored
    value is not a readable response.
    """

    key: str
    created: str
    status: str
    body: str
    method: str
    url: str


def _status_style(status: str) -> str:
    if status.startswith("2"):
        return "green"
    if status.startswith("3"):
        return "cyan"
    if status[:1] in ("4", "5"):
        return "red"
    return "yellow"


class Reporter:
    """Writes command results to stdout and notes to stderr.

    Args:
        format: Requested format; ``AUTO`` is resolved from the terminal.
        no_color: Disable colour and markup.
        quiet: Drop informational notes (errors are always shown).
        verbose: Show debug notes.
    """

    def __init__(
        self,
        format: OutputFormat = OutputFormat.AUTO,
        no_color: bool = False,
        quiet: bool = False,
        verbose: bool = False,
    ) -> None:
        self._no_color = no_color or _color_disabled_by_env()
        self._quiet = quiet
        self._verbose = verbose
        if format == OutputFormat.AUTO:
            rich = _stdout_is_terminal() and not self._no_color
            format = OutputFormat.RICH if rich else OutputFormat.PLAIN
        self._format = format
        self._out = Console(
            file=sys.stdout,
            no_color=self._no_color,
            force_terminal=format == OutputFormat.RICH,
        )
        self._err = Console(file=sys.stderr, no_color=self._no_color, stderr=True)

    @property
    def format(self) -> OutputFormat:
        return self._format

    # ------------------------------------------------------------------ #
    # Results
    # ------------------------------------------------------------------ #

    def scopes(self, rows: Sequence[ScopeRow]) -> None:
        """List cache files with their entry counts."""
        if self._format == OutputFormat.RICH:
            table = Table(title="Scopes", header_style="bold cyan")
            table.add_column("scope")
            table.add_column("entries", justify="right")
            table.add_column("file", style="dim")
            for row in rows:
                table.add_row(Text(row.scope), str(row.entries), Text(row.file))
            self._out.print(table)
        else:
            self._rows(ScopeRow, rows)

    def entries(self, scope: str, rows: Sequence[EntryRow]) -> None:
        """List the entries of *scope*, colouring each recorded status."""
        if self._format == OutputFormat.RICH:
            table = Table(title=f"Scope: {scope}", header_style="bold cyan")
            for field in fields(EntryRow):
                table.add_column(field.name, no_wrap=field.name == "key")
            for row in rows:
                cells = [Text(cell) for cell in astuple(row)]
                cells[2].stylize(_status_style(row.status))
                table.add_row(*cells)
            self._out.print(table)
        else:
            self._rows(EntryRow, rows)

    def document(self, data: dict[str, Any]) -> None:
        """Print one JSON-compatible document (a stored entry or a fingerprint)."""
        text = json.dumps(data, indent=2, ensure_ascii=False)
        if self._format == OutputFormat.JSON:
            self._line(text)
        elif self._format == OutputFormat.RICH:
            self._out.print(Syntax(text, "json", theme="monokai", word_wrap=True))
        else:
            for name, value in data.items():
                if isinstance(value, (dict, list)):
                    value = json.dumps(value, ensure_ascii=False)
                self._line(f"{name}\t{value}")

    # ------------------------------------------------------------------ #
    # Notes (stderr)
    # ------------------------------------------------------------------ #

    def info(self, message: str) -> None:
        if not self._quiet:
            self._note(message, None)

    def success(self, message: str) -> None:
        if not self._quiet:
            self._note(message, "green")

    def suggest(self, message: str) -> None:
        if not self._quiet:
            self._note(f"→ {message}", "dim")

    def error(self, message: str) -> None:
        self._note(f"Error: {message}", "bold red")

    def debug(self, message: str) -> None:
        if self._verbose:
            self._note(f"[debug] {message}", "dim")

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    def _rows(self, row_type: type, rows: Sequence[Any]) -> None:
        if self._format == OutputFormat.JSON:
            self._line(json.dumps([asdict(row) for row in rows], indent=2, ensure_ascii=False))
            return
        self._line("\t".join(field.name for field in fields(row_type)))
        for row in rows:
            self._line("\t".join(str(cell) for cell in astuple(row)))

    def _line(self, text: str) -> None:
        print(text, file=sys.stdout, flush=True)

    def _note(self, message: str, style: Optional[str]) -> None:
        if self._no_color or style is None:
            print(message, file=sys.stderr, flush=True)
        else:
            self._err.print(message, style=style, markup=False, highlight=False)


def _stdout_is_terminal() -> bool:
    return hasattr(sys.stdout, "isatty") and sys.stdout.isatty()


def _color_disabled_by_env() -> bool:
    """``NO_COLOR`` set to anything, or ``TERM=dumb``."""
    return os.environ.get("NO_COLOR") is not None or os.environ.get("TERM") == "dumb"


# ------------------------------------------------------------------ #
# Module-level helpers
# ------------------------------------------------------------------ #

_reporter: Optional[Reporter] = None


def get_reporter() -> Reporter:
    """Return the installed :class:`Reporter`, creating a default one on first use."""
    global _reporter
    if _reporter is None:
        _reporter = Reporter()
    return _reporter


def set_reporter(reporter: Reporter) -> None:
    global _reporter
    _reporter = reporter


def reset_reporter() -> None:
    """Forget the installed reporter; the next call builds a fresh one."""
    global _reporter
    _reporter = None


def print_scopes(rows: Sequence[ScopeRow]) -> None:
    get_reporter().scopes(rows)


def print_entries(scope: str, rows: Sequence[EntryRow]) -> None:
    get_reporter().entries(scope, rows)


def print_document(data: dict[str, Any]) -> None:
    get_reporter().document(data)


def info(message: str) -> None:
    get_reporter().info(message)


def success(message: str) -> None:
    get_reporter().success(message)


def suggest(message: str) -> None:
    get_reporter().suggest(message)


def error(message: str) -> None:
    get_reporter().error(message)


def debug(message: str) -> None:
    get_reporter().debug(message)
