"""
Imprint Console Output
======================

Rich-powered terminal display for symbol listings and injection results,
built on :class:`~shared.console.ImprintConsole`.

References:
    - Rich library: https://github.com/Textualize/rich
"""

from __future__ import annotations

from rich.markup import escape

from shared.console import ImprintConsole

from imprint.core.models import BinaryFile, InjectionResult


def _printable(data: bytes) -> str:
    """Render symbol contents as text when they look like a C string."""
    text = data.rstrip(b"\x00")
    if text and all(0x20 <= b < 0x7F for b in text):
        return repr(text.decode("ascii"))
    return data.hex(" ")


class ImprintConsoleOutput:
    """Rich terminal display for Imprint results.

    Usage::

        output = ImprintConsoleOutput()
        output.display_symbols(engine.inspect("libfoo.so"))
    """

    def __init__(self, console: ImprintConsole | None = None) -> None:
        self._console: ImprintConsole = console or ImprintConsole()

    def display_symbols(self, file: BinaryFile, title: str = "") -> None:
        """Display the section table followed by the symbol table."""
        self._console.section(
            title or f"{file.format.value.upper()} -- "
            f"{len(file.symbols)} symbols in {len(file.sections)} sections"
        )
        self.display_sections(file)
        self._console.blank()

        rows = []
        for i, sym in enumerate(file.symbols, 1):
            section = file.section_of(sym)
            rows.append((
                i,
                escape(sym.name),
                escape(section.name) or f"#{sym.section}",
                f"0x{sym.address:x}",
                sym.size or "[dim]?[/dim]",
                f"0x{section.file_offset + sym.address:x}",
            ))
        self._console.table(
            "Symbols",
            ["#", "Name", "Section", "Address", "Size", "File Offset"],
            rows,
            styles=["dim", "bold"],
            right_aligned=("#", "Address", "Size", "File Offset"),
        )

    def display_sections(self, file: BinaryFile) -> None:
        rows = [
            (
                i,
                escape(sec.name) or "-",
                f"0x{sec.virtual_address:x}",
                f"0x{sec.file_offset:x}",
                f"{sec.size:,}",
            )
            for i, sec in enumerate(file.sections)
        ]
        self._console.table(
            "Sections",
            ["#", "Name", "VAddr", "Offset", "Size"],
            rows,
            styles=["dim", "bold"],
            right_aligned=("#", "VAddr", "Offset", "Size"),
        )

    def display_injection(self, result: InjectionResult) -> None:
        """Display a summary panel for a completed injection."""
        footer = ["[bold green]Output verified[/bold green]"] if result.verified else []
        self._console.fields(
            "Injection",
            [
                ("Input", escape(result.input_path)),
                ("Output", escape(result.output_path)),
                ("Format", result.format.value.upper()),
                ("Symbol", escape(result.symbol)),
                ("File Offset", f"0x{result.offset:x} ({result.size} bytes)"),
                ("Previous", escape(_printable(result.previous))),
                ("Current", escape(_printable(result.current))),
            ],
            footer,
        )
