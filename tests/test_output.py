from __future__ import annotations

from shared.console import ImprintConsole

from imprint.core.models import BinaryFile, BinaryFormat, InjectionResult, Section, Symbol
from imprint.output.console import ImprintConsoleOutput


def _console() -> ImprintConsole:
    return ImprintConsole(record=True)


def test_symbol_table():
    con = _console()
    f = BinaryFile(
        format=BinaryFormat.PE,
        sections=[Section(name=".data", virtual_address=0x2000, file_offset=0x400, size=0x20)],
        symbols=[Symbol(name="channel", address=0x8, section=0)],
    )
    ImprintConsoleOutput(console=con).display_symbols(f)
    text = con.rich.export_text()
    assert "PE" in text
    assert "channel" in text
    assert "0x408" in text
    assert "?" in text


def test_injection_panel():
    con = _console()
    result = InjectionResult(
        input_path="in.so",
        output_path="out.so",
        format=BinaryFormat.ELF,
        symbol="build_id",
        offset=0x100,
        size=8,
        previous=b"OLD\x00\x00\x00\x00\x00",
        current=b"\x01\x02\x00\x00\x00\x00\x00\x00",
        verified=True,
    )
    ImprintConsoleOutput(console=con).display_injection(result)
    text = con.rich.export_text()
    assert "'OLD'" in text
    assert "01 02 00" in text
    assert "Output verified" in text


def test_markup_in_names_is_not_interpreted():
    con = _console()
    f = BinaryFile(
        format=BinaryFormat.ELF,
        sections=[Section(name=".data", size=0x10)],
        symbols=[Symbol(name="[bold]x", size=4, section=0)],
    )
    ImprintConsoleOutput(console=con).display_symbols(f)
    assert "[bold]x" in con.rich.export_text()
