"""
Imprint Console Interface
=========================

Rich-powered console abstraction for the Imprint command-line interface.

Listings and summaries go to stdout; warnings and errors go to stderr so
that ``imprint dump --plain`` output can be piped without noise.

References:
    - Rich library: https://github.com/Textualize/rich
"""

from __future__ import annotations

from typing import Any, Sequence

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.theme import Theme

_IMPRINT_THEME = Theme(
    {
        "imprint.section": "bold bright_magenta",
        "imprint.border": "bright_cyan",
        "imprint.header": "bold bright_magenta",
        "imprint.label": "bold",
        "imprint.success": "bold green",
        "imprint.warning": "bold yellow",
        "imprint.error": "bold red",
        "imprint.info": "bold bright_blue",
    }
)

# kind -> (marker, label, goes to stderr)
_STATUS: dict[str, tuple[str, str, bool]] = {
    "success": ("✔", "SUCCESS", False),
    "info": ("ℹ", "INFO", False),
    "warning": ("⚠", "WARNING", True),
    "error": ("✘", "ERROR", True),
}


class ImprintConsole:
    """Unified console interface for Imprint output.

    Usage::

        con = ImprintConsole()
        con.section("Symbols")
        con.success("Stamped build_id")
    """

    def __init__(self, *, quiet: bool = False, record: bool = False) -> None:
        """Initialise the console.

        Args:
            quiet:  Suppress all output.
            record: Record stdout output so it can be read back with
                ``console.rich.export_text()``.
        """
        self._out = Console(theme=_IMPRINT_THEME, quiet=quiet, record=record, highlight=False)
        self._err = Console(theme=_IMPRINT_THEME, quiet=quiet, stderr=True, highlight=False)

    @property
    def rich(self) -> Console:
        """The stdout Rich console."""
        return self._out

    # ------------------------------------------------------------------ #
    #  Messages
    # ------------------------------------------------------------------ #

    def status(self, kind: str, message: str) -> None:
        """Print a one-line message tagged with *kind*'s marker and colour.

        *message* may contain Rich markup; escape untrusted text first.
        """
        marker, label, to_stderr = _STATUS[kind]
        target = self._err if to_stderr else self._out
        target.print(f"[imprint.{kind}][{marker}] {label}:[/imprint.{kind}] {message}")

    def success(self, message: str) -> None:
        self.status("success", message)

    def info(self, message: str) -> None:
        self.status("info", message)

    def warning(self, message: str) -> None:
        self.status("warning", message)

    def error(self, message: str) -> None:
        self.status("error", message)

    # ------------------------------------------------------------------ #
    #  Layout
    # ------------------------------------------------------------------ #

    def section(self, title: str) -> None:
        """Print a section rule followed by a blank line."""
        self._out.rule(f"  {escape(title)}  ", style="imprint.section", characters="─")
        self._out.print()

    def blank(self, count: int = 1) -> None:
        for _ in range(count):
            self._out.print()

    def table(
        self,
        title: str | None,
        columns: Sequence[str],
        rows: Sequence[Sequence[Any]],
        *,
        styles: Sequence[str] | None = None,
        right_aligned: Sequence[str] = (),
    ) -> None:
        """Render a table; every cell is stringified and treated as markup.

        Args:
            title:         Table title, or ``None``.
            columns:       Column header labels.
            rows:          Row tuples.
            styles:        Optional per-column Rich style strings.
            right_aligned: Column labels to right-justify (numbers, offsets).
        """
        tbl = Table(
            title=title,
            border_style="imprint.border",
            header_style="imprint.header",
            padding=(0, 1),
        )
        for idx, name in enumerate(columns):
            tbl.add_column(
                name,
                style=styles[idx] if styles and idx < len(styles) else "",
                justify="right" if name in right_aligned else "left",
            )
        for row in rows:
            tbl.add_row(*(str(cell) for cell in row))
        self._out.print(tbl)

    def fields(self, title: str, pairs: Sequence[tuple[str, str]], footer: Sequence[str] = ()) -> None:
        """Render aligned ``label: value`` lines inside a bordered panel."""
        width = max((len(label) for label, _ in pairs), default=0) + 1
        lines = [
            f"[imprint.label]{label + ':':<{width}}[/imprint.label]  {value}"
            for label, value in pairs
        ]
        lines.extend(footer)
        self._out.print(Panel(
            "\n".join(lines),
            title=f"[bold]{escape(title)}[/bold]",
            border_style="imprint.border",
            padding=(1, 2),
        ))
