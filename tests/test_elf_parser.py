from __future__ import annotations

import io

import pytest

from imprint.core.errors import MalformedContainerError, NotThisFormatError
from imprint.core.models import BinaryFormat
from imprint.parsers.elf_parser import ELFReader
from tests.binaries import (
    ELF_DATA_OFFSET,
    ET_CORE,
    ET_DYN,
    ET_EXEC,
    STT_FUNC,
    ElfSym,
    build_elf,
)

DATA = b"PLACEHOLDER\x00\x00\x00\x00\x00" + b"\x11" * 8 + b"\x00" * 8


def _extract(blob: bytes):
    return ELFReader().extract(io.BytesIO(blob))


def test_relocatable_elf64_symbols():
    blob = build_elf([
        ElfSym("build_id", 0, 16),
        ElfSym("build_time", 16, 8),
        ElfSym("main", 0, 32, type=STT_FUNC),
    ], DATA)
    f = _extract(blob)

    assert f.format is BinaryFormat.ELF
    assert [s.name for s in f.symbols] == ["build_id", "build_time"]
    sym = f.symbols[1]
    assert (sym.address, sym.size, sym.section) == (16, 8, 1)
    data = f.sections[sym.section]
    assert data.name == ".data"
    assert data.file_offset == ELF_DATA_OFFSET
    assert data.size == len(DATA)


def test_executable_addresses_become_section_relative():
    base = 0x601000
    blob = build_elf([ElfSym("build_time", base + 16, 8)], DATA, e_type=ET_EXEC, data_addr=base)
    sym = _extract(blob).symbols[0]
    assert sym.address == 16
    assert sym.size == 8


def test_shared_object_elf32_big_endian():
    base = 0x10000
    blob = build_elf(
        [ElfSym("build_id", base, 16)], DATA,
        bits=32, endian=">", e_type=ET_DYN, data_addr=base,
    )
    f = _extract(blob)
    assert f.symbols[0].address == 0
    assert f.symbols[0].size == 16
    assert f.sections[1].virtual_address == base


def test_nobits_section_has_no_file_bytes():
    f = _extract(build_elf([ElfSym("zeroed", 0, 4, shndx=2)], DATA))
    bss = f.sections[2]
    assert bss.name == ".bss"
    assert bss.size == 0
    assert f.symbols[0].section == 2


def test_undefined_and_absolute_symbols_are_skipped():
    f = _extract(build_elf([
        ElfSym("extern_var", 0, 8, shndx=0),
        ElfSym("abs_var", 0x1234, 8, shndx=0xFFF1),
        ElfSym("local_var", 8, 8),
    ], DATA))
    assert [s.name for s in f.symbols] == ["local_var"]


def test_core_files_are_rejected():
    with pytest.raises(MalformedContainerError, match="unhandled elf file type"):
        _extract(build_elf([ElfSym("x", 0, 8)], DATA, e_type=ET_CORE))


def test_bad_symbol_section_index():
    with pytest.raises(MalformedContainerError):
        _extract(build_elf([ElfSym("x", 0, 8, shndx=42)], DATA))


def test_not_an_elf_file():
    with pytest.raises(NotThisFormatError) as excinfo:
        _extract(b"\xcf\xfa\xed\xfe" + b"\x00" * 60)
    assert excinfo.value.format_name == "elf"


def test_short_file_is_not_elf():
    with pytest.raises(NotThisFormatError):
        _extract(b"\x7fELF")


def test_truncated_section_table():
    blob = build_elf([ElfSym("x", 0, 8)], DATA)
    with pytest.raises(MalformedContainerError):
        _extract(blob[:-10])


def test_invalid_class():
    blob = bytearray(build_elf([ElfSym("x", 0, 8)], DATA))
    blob[4] = 9
    with pytest.raises(MalformedContainerError):
        _extract(bytes(blob))


def test_dump_lists_symbols():
    out = io.StringIO()
    ELFReader().dump(io.BytesIO(build_elf([ElfSym("build_id", 0, 16)], DATA)), out)
    lines = out.getvalue().splitlines()
    assert lines[0] == "# elf: 1 symbols, 6 sections"
    assert lines[1] == "build_id\t0x0\t16\t.data"
