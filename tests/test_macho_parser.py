from __future__ import annotations

import io
import struct

import pytest

from imprint.core.errors import MalformedContainerError, NotThisFormatError
from imprint.core.models import BinaryFormat
from imprint.core.resolver import find_symbol
from imprint.parsers.macho_parser import MachOReader
from tests.binaries import (
    MACHO_DATA_OFFSET,
    MACHO_SECT_ADDR,
    N_STAB_FUN,
    MachSym,
    build_macho,
)

DATA = b"v1.0\x00\x00\x00\x00" + b"\x00" * 8 + b"stamp\x00\x00\x00\x00\x00"


def _extract(blob: bytes):
    f = MachOReader().extract(io.BytesIO(blob))
    f.attach_source(io.BytesIO(blob))
    return f


def test_symbols_sorted_and_underscore_stripped():
    blob = build_macho([
        MachSym("_build_tag", MACHO_SECT_ADDR + 16),
        MachSym("_version", MACHO_SECT_ADDR),
        MachSym("_counter", MACHO_SECT_ADDR + 8),
    ], DATA)
    f = _extract(blob)

    assert f.format is BinaryFormat.MACHO
    assert [s.name for s in f.symbols] == ["version", "counter", "build_tag"]
    assert [s.address for s in f.symbols] == [0, 8, 16]
    assert all(s.size == 0 for s in f.symbols)
    assert f.sections[0].name == "__DATA,__data"
    assert f.sections[0].file_offset == MACHO_DATA_OFFSET


def test_sizes_are_inferred_from_neighbours():
    f = _extract(build_macho([
        MachSym("_version", MACHO_SECT_ADDR),
        MachSym("_counter", MACHO_SECT_ADDR + 8),
        MachSym("_build_tag", MACHO_SECT_ADDR + 16),
    ], DATA))
    assert find_symbol(f, "version") == (MACHO_DATA_OFFSET, 8)
    assert find_symbol(f, "build_tag") == (MACHO_DATA_OFFSET + 16, len(DATA) - 16)


def test_zerofill_section_has_no_file_bytes():
    f = _extract(build_macho([MachSym("_zeroed", MACHO_SECT_ADDR + 0x20, n_sect=2)], DATA))
    assert f.sections[1].name == "__DATA,__bss"
    assert f.sections[1].size == 0
    assert f.symbols[0].section == 1
    assert f.symbols[0].address == 0


def test_stabs_and_undefined_symbols_are_skipped():
    f = _extract(build_macho([
        MachSym("_debug", MACHO_SECT_ADDR, n_type=N_STAB_FUN),
        MachSym("_imported", 0, n_sect=0, n_type=0x01),
        MachSym("_version", MACHO_SECT_ADDR),
    ], DATA))
    assert [s.name for s in f.symbols] == ["version"]


def test_big_endian_32bit():
    f = _extract(build_macho(
        [MachSym("_version", 0x2000), MachSym("_counter", 0x2008)],
        DATA, bits=32, endian=">", sect_addr=0x2000,
    ))
    assert [s.address for s in f.symbols] == [0, 8]
    assert f.sections[0].virtual_address == 0x2000


def test_symbol_before_its_section():
    with pytest.raises(MalformedContainerError):
        _extract(build_macho([MachSym("_early", MACHO_SECT_ADDR - 4)], DATA))


def test_invalid_section_number():
    with pytest.raises(MalformedContainerError):
        _extract(build_macho([MachSym("_x", MACHO_SECT_ADDR, n_sect=9)], DATA))


def test_fat_archive_is_not_this_format():
    blob = struct.pack(">II", 0xCAFEBABE, 2) + b"\x00" * 56
    with pytest.raises(NotThisFormatError, match="fat"):
        MachOReader().extract(io.BytesIO(blob))


def test_elf_is_not_macho():
    with pytest.raises(NotThisFormatError):
        MachOReader().extract(io.BytesIO(b"\x7fELF" + b"\x00" * 60))
