from __future__ import annotations

import io
import random
import struct

import pytest

from imprint.core.dispatcher import dump_symbols, open_file
from imprint.core.errors import (
    FormatNotRecognizedError,
    MalformedContainerError,
    NotThisFormatError,
)
from imprint.core.models import BinaryFormat
from imprint.parsers import MachOReader, PEReader
from tests.binaries import (
    CoffSym,
    ElfSym,
    MachSym,
    MACHO_SECT_ADDR,
    build_coff_object,
    build_elf,
    build_macho,
    build_pe,
)

DATA = b"abcdefgh" + b"\x00" * 8


@pytest.mark.parametrize(
    "blob, expected",
    [
        (build_elf([ElfSym("v", 0, 8)], DATA), BinaryFormat.ELF),
        (build_macho([MachSym("_v", MACHO_SECT_ADDR)], DATA), BinaryFormat.MACHO),
        (build_pe([CoffSym("v", 0)], DATA), BinaryFormat.PE),
        (build_coff_object([CoffSym("v", 0, section_number=1)], DATA), BinaryFormat.PE),
    ],
)
def test_each_format_is_detected(blob, expected):
    source = io.BytesIO(blob)
    f = open_file(source)
    assert f.format is expected
    assert f.symbols[0].name == "v"
    assert f.source is source


def test_unrecognised_input_reports_elf_error_first():
    with pytest.raises(NotThisFormatError) as excinfo:
        open_file(io.BytesIO(b"#!/bin/sh\necho not a binary\n" + b"\x00" * 64))
    err = excinfo.value
    assert isinstance(err, FormatNotRecognizedError)
    assert err.format_name == "elf"
    assert [a.format_name for a in err.attempts] == ["macho", "pe"]


@pytest.mark.parametrize("head", [b"d\x86", b"L\x01", b"d\xaa"])
def test_garbage_with_coff_machine_bytes_reports_elf_error(head):
    blob = head + random.Random(head).randbytes(200)
    with pytest.raises(NotThisFormatError) as excinfo:
        open_file(io.BytesIO(blob))
    assert excinfo.value.format_name == "elf"


@pytest.mark.parametrize(
    "header",
    [
        # optional header present
        struct.pack("<HHIIIHH", 0x8664, 1, 0, 0, 0, 0xF0, 0),
        # section table past end of file
        struct.pack("<HHIIIHH", 0x8664, 50, 0, 0, 0, 0, 0),
        # symbol table past end of file
        struct.pack("<HHIIIHH", 0x8664, 0, 0, 0x1000, 4, 0, 0),
        # string table length past end of file
        struct.pack("<HHIIIHH", 0x8664, 0, 0, 20, 0, 0, 0) + struct.pack("<I", 0x10000),
    ],
)
def test_inconsistent_coff_header_is_not_this_format(header):
    with pytest.raises(NotThisFormatError):
        PEReader().extract(io.BytesIO(header + b"\x00" * 8))


def test_malformed_container_stops_the_fallback():
    blob = build_elf([ElfSym("v", 0, 8)], DATA)
    with pytest.raises(MalformedContainerError):
        open_file(io.BytesIO(blob[:-8]))


def test_custom_reader_order():
    blob = build_macho([MachSym("_v", MACHO_SECT_ADDR)], DATA)
    with pytest.raises(NotThisFormatError) as excinfo:
        open_file(io.BytesIO(blob), readers=(PEReader(),))
    assert excinfo.value.format_name == "pe"
    assert open_file(io.BytesIO(blob), readers=(PEReader(), MachOReader())).format is BinaryFormat.MACHO


def test_empty_reader_list():
    with pytest.raises(ValueError):
        open_file(io.BytesIO(b""), readers=())


def test_dump_symbols_writes_listing():
    blob = build_macho([
        MachSym("_first", MACHO_SECT_ADDR),
        MachSym("_second", MACHO_SECT_ADDR + 8),
    ], DATA)
    out = io.StringIO()
    dump_symbols(io.BytesIO(blob), out)
    assert out.getvalue().splitlines() == [
        "# macho: 2 symbols, 2 sections",
        "first\t0x0\t0\t__DATA,__data",
        "second\t0x8\t0\t__DATA,__data",
    ]


def test_dump_symbols_defaults_to_stdout(capsys):
    dump_symbols(io.BytesIO(build_elf([ElfSym("v", 0, 8)], DATA)))
    assert "v\t0x0\t8\t.data" in capsys.readouterr().out


def test_dump_of_garbage_raises():
    with pytest.raises(NotThisFormatError):
        dump_symbols(io.BytesIO(b"garbage" * 10), io.StringIO())
