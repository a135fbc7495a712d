"""
Imprint CLI -- Symbol Injection Tool
====================================

Click-based command-line interface for stamping build-time values into
already linked ELF, Mach-O and PE/COFF binaries.

Usage::

    # Stamp a string, refusing unless the placeholder is still in place
    imprint string out/app -o out/app.stamped -s build_id -v 20261019 --from PLACEHOLDER

    # Stamp an 8-byte integer
    imprint uint64 out/app -o out/app.stamped -s build_time -v 0x6530d2c0

    # List symbols
    imprint dump out/app
    imprint dump out/app --plain

References:
    - Click documentation: https://click.palletsprojects.com/
"""

from __future__ import annotations

import sys
from dataclasses import dataclass
from typing import Any, Callable, Optional, TypeVar

import click
from rich.markup import escape

from shared.config import ImprintConfig
from shared.console import ImprintConsole
from shared.logger import ImprintLogger

from imprint import __version__
from imprint.core.engine import ImprintEngine
from imprint.core.errors import ImprintError, NotThisFormatError
from imprint.core.models import InjectionResult
from imprint.output.console import ImprintConsoleOutput


# ---------------------------------------------------------------------------
# Parameter types
# ---------------------------------------------------------------------------

class UInt64Param(click.ParamType):
    """Unsigned 64-bit integer accepting ``0x``, ``0o`` and ``0b`` prefixes."""

    name = "uint64"

    def convert(self, value: Any, param: Optional[click.Parameter], ctx: Optional[click.Context]) -> int:
        if isinstance(value, int):
            number = value
        else:
            try:
                number = int(str(value).replace("_", ""), 0)
            except ValueError:
                self.fail(f"{value!r} is not a valid integer", param, ctx)
        if not 0 <= number < 2**64:
            self.fail(f"{value!r} does not fit in an unsigned 64-bit integer", param, ctx)
        return number


UINT64 = UInt64Param()

T = TypeVar("T")


@dataclass
class _State:
    console: ImprintConsole
    engine: ImprintEngine
    verbose: bool


def _guarded(state: _State, call: Callable[[], T]) -> T:
    """Run *call*, turning imprint failures into an error message and exit 1."""
    try:
        return call()
    except KeyboardInterrupt:
        state.console.warning("Interrupted by user.")
        sys.exit(130)
    except (ImprintError, OSError, ValueError) as exc:
        state.console.error(escape(str(exc)))
        if state.verbose and isinstance(exc, NotThisFormatError):
            for attempt in exc.attempts:
                state.console.info(escape(str(attempt)))
        sys.exit(1)


def _report(state: _State, result: InjectionResult, summary: str) -> None:
    ImprintConsoleOutput(console=state.console).display_injection(result)
    if not result.changed:
        state.console.warning(f"{escape(result.symbol)} already held this value")
    state.console.success(summary)


# ---------------------------------------------------------------------------
# CLI group / commands
# ---------------------------------------------------------------------------

@click.group("imprint")
@click.option(
    "--config", "-c",
    "config_path",
    type=click.Path(dir_okay=False),
    default=None,
    help="Path to a TOML configuration file.",
)
@click.option(
    "--verbose",
    is_flag=True,
    default=False,
    help="Enable verbose/debug output.",
)
@click.version_option(version=__version__, prog_name="imprint")
@click.pass_context
def imprint_cli(ctx: click.Context, config_path: str | None, verbose: bool) -> None:
    """Imprint -- stamp values into symbols of compiled binaries.

    Supports ELF, Mach-O and PE/COFF files without relinking.
    """
    console = ImprintConsole()
    try:
        config = ImprintConfig.load(config_path)
    except (FileNotFoundError, ValueError) as exc:
        console.error(f"Cannot load configuration: {escape(str(exc))}")
        sys.exit(1)

    gs = config.global_settings
    log_level = "DEBUG" if verbose or gs.debug else gs.log_level
    logger = ImprintLogger(
        "engine",
        log_level=log_level,
        log_file=gs.log_file or None,
        json_logs=gs.log_json,
    )

    ctx.obj = _State(
        console=console,
        engine=ImprintEngine(config=config, logger=logger),
        verbose=verbose,
    )


@imprint_cli.command("string")
@click.argument("input_path", metavar="INPUT", type=click.Path(exists=True, dir_okay=False))
@click.option("--output", "-o", "output_path", type=click.Path(dir_okay=False), required=True,
              help="Output file (may equal INPUT).")
@click.option("--symbol", "-s", required=True, help="Symbol to overwrite.")
@click.option("--value", "-v", required=True, help="New string value.")
@click.option("--from", "expected_prior", default=None,
              help="Only inject if the symbol currently holds this value.")
@click.pass_obj
def inject_string_cmd(
    state: _State,
    input_path: str,
    output_path: str,
    symbol: str,
    value: str,
    expected_prior: str | None,
) -> None:
    """Inject a nul-terminated string into SYMBOL of INPUT."""
    result = _guarded(state, lambda: state.engine.inject_string(
        input_path, output_path, symbol, value, expected_prior=expected_prior
    ))
    _report(state, result, f"Injected {escape(symbol)} into {escape(output_path)}")


@imprint_cli.command("uint64")
@click.argument("input_path", metavar="INPUT", type=click.Path(exists=True, dir_okay=False))
@click.option("--output", "-o", "output_path", type=click.Path(dir_okay=False), required=True,
              help="Output file (may equal INPUT).")
@click.option("--symbol", "-s", required=True, help="Symbol to overwrite.")
@click.option("--value", "-v", type=UINT64, required=True,
              help="New value (decimal, or 0x/0o/0b prefixed).")
@click.pass_obj
def inject_uint64_cmd(
    state: _State,
    input_path: str,
    output_path: str,
    symbol: str,
    value: int,
) -> None:
    """Inject a little-endian 64-bit integer into SYMBOL of INPUT."""
    result = _guarded(state, lambda: state.engine.inject_uint64(
        input_path, output_path, symbol, value
    ))
    _report(state, result, f"Injected {escape(symbol)} = {value:#x} into {escape(output_path)}")


@imprint_cli.command("dump")
@click.argument("input_path", metavar="INPUT", type=click.Path(exists=True, dir_okay=False))
@click.option("--plain", is_flag=True, default=False,
              help="Tab-separated listing instead of tables.")
@click.pass_obj
def dump_cmd(state: _State, input_path: str, plain: bool) -> None:
    """List the symbols of INPUT with their sections, addresses and sizes."""
    if plain:
        _guarded(state, lambda: state.engine.dump(input_path, sys.stdout))
        return

    file = _guarded(state, lambda: state.engine.inspect(input_path))
    ImprintConsoleOutput(console=state.console).display_symbols(file)


# ---------------------------------------------------------------------------
# Module entry point
# ---------------------------------------------------------------------------

def main() -> None:
    """Entry point for ``imprint`` and ``python -m imprint``."""
    imprint_cli()


if __name__ == "__main__":
    main()
