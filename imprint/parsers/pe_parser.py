"""
PE/COFF Symbol Reader
=====================

Manual struct-based reader for Windows PE images (``MZ`` stub followed by
a ``PE\\0\\0`` signature) and bare COFF object files as produced by MSVC,
clang-cl and MinGW.

Symbols come from the COFF symbol table, which linked images only keep
when built with debug symbols (MinGW does by default).  COFF symbols have
no size, so every symbol is emitted with size ``0`` and the list is
stably sorted by section and value for the resolver's size inference.

References:
    - Microsoft. (2024). PE Format. Microsoft Learn.
    - Pietrek, M. (1994). Peering Inside the PE.
"""

from __future__ import annotations

import struct
from typing import BinaryIO

from imprint.core.errors import MalformedContainerError
from imprint.core.models import BinaryFile, BinaryFormat, Section, Symbol
from imprint.parsers.base import FormatReader, read_at, read_cstring, source_size


# ---------------------------------------------------------------------------
# PE Constants
# ---------------------------------------------------------------------------

MZ_MAGIC: bytes = b"MZ"
PE_SIGNATURE: bytes = b"PE\x00\x00"

IMAGE_FILE_MACHINE_I386: int = 0x014C
IMAGE_FILE_MACHINE_AMD64: int = 0x8664
IMAGE_FILE_MACHINE_ARM: int = 0x01C0
IMAGE_FILE_MACHINE_ARMNT: int = 0x01C4
IMAGE_FILE_MACHINE_ARM64: int = 0xAA64
IMAGE_FILE_MACHINE_IA64: int = 0x0200
IMAGE_FILE_MACHINE_RISCV64: int = 0x5064

# Machine types accepted for bare COFF objects, which carry no magic
_KNOWN_MACHINES: frozenset[int] = frozenset({
    IMAGE_FILE_MACHINE_I386,
    IMAGE_FILE_MACHINE_AMD64,
    IMAGE_FILE_MACHINE_ARM,
    IMAGE_FILE_MACHINE_ARMNT,
    IMAGE_FILE_MACHINE_ARM64,
    IMAGE_FILE_MACHINE_IA64,
    IMAGE_FILE_MACHINE_RISCV64,
})

_COFF_HEADER_FMT: str = "<HHIIIHH"       # 20 bytes
_SECTION_HEADER_FMT: str = "<8sIIIIIIHHI"  # 40 bytes
_SYMBOL_FMT: str = "<8sIhHBB"            # 18 bytes

COFF_HEADER_SIZE: int = struct.calcsize(_COFF_HEADER_FMT)
SECTION_HEADER_SIZE: int = struct.calcsize(_SECTION_HEADER_FMT)
SYMBOL_SIZE: int = struct.calcsize(_SYMBOL_FMT)


# ---------------------------------------------------------------------------
# Internal parsed structures
# ---------------------------------------------------------------------------

class _COFFHeader:
    """Parsed COFF file header."""
    __slots__ = (
        "machine", "number_of_sections", "time_date_stamp",
        "pointer_to_symbol_table", "number_of_symbols",
        "size_of_optional_header", "characteristics",
    )

    def __init__(self) -> None:
        self.machine: int = 0
        self.number_of_sections: int = 0
        self.time_date_stamp: int = 0
        self.pointer_to_symbol_table: int = 0
        self.number_of_symbols: int = 0
        self.size_of_optional_header: int = 0
        self.characteristics: int = 0


class _PESection:
    """Parsed PE section header."""
    __slots__ = (
        "name", "virtual_size", "virtual_address",
        "size_of_raw_data", "pointer_to_raw_data", "characteristics",
    )

    def __init__(self) -> None:
        self.name: str = ""
        self.virtual_size: int = 0
        self.virtual_address: int = 0
        self.size_of_raw_data: int = 0
        self.pointer_to_raw_data: int = 0
        self.characteristics: int = 0


class _COFFSymbol:
    """Parsed primary COFF symbol record (auxiliary records are skipped)."""
    __slots__ = ("name", "value", "section_number", "storage_class")

    def __init__(self) -> None:
        self.name: str = ""
        self.value: int = 0
        self.section_number: int = 0
        self.storage_class: int = 0


# ---------------------------------------------------------------------------
# PE Reader
# ---------------------------------------------------------------------------

class PEReader(FormatReader):
    """Struct-based PE image / COFF object reader."""

    format = BinaryFormat.PE

    def _probe(self, source: BinaryIO) -> None:
        self._coff_base(source)

    def _coff_base(self, source: BinaryIO) -> int:
        """Locate the COFF file header, raising if this is not PE/COFF."""
        head = self._read_magic(source, 2)
        if head == MZ_MAGIC:
            source.seek(0x3C)
            raw = source.read(4)
            if len(raw) != 4:
                raise self.not_this_format("truncated DOS header")
            (e_lfanew,) = struct.unpack("<I", raw)
            source.seek(e_lfanew)
            if source.read(4) != PE_SIGNATURE:
                raise self.not_this_format(
                    f"invalid PE signature at offset 0x{e_lfanew:x}"
                )
            return e_lfanew + 4

        # No DOS stub: a bare COFF object starts with its machine type
        source.seek(0)
        raw = source.read(COFF_HEADER_SIZE)
        if len(raw) != COFF_HEADER_SIZE:
            raise self.not_this_format("file too short for a COFF header")
        (
            machine, number_of_sections, _stamp, symtab_offset,
            number_of_symbols, size_of_optional_header, _flags,
        ) = struct.unpack(_COFF_HEADER_FMT, raw)
        if machine not in _KNOWN_MACHINES:
            raise self.not_this_format(
                f"no MZ header and unknown COFF machine type 0x{machine:04x}"
            )

        # Header, section table and symbol tables must all fit inside the file
        file_size = source_size(source)
        if size_of_optional_header != 0:
            raise self.not_this_format(
                f"object file declares a {size_of_optional_header}-byte optional header"
            )
        if COFF_HEADER_SIZE + number_of_sections * SECTION_HEADER_SIZE > file_size:
            raise self.not_this_format(
                f"{number_of_sections} section headers run past end of file"
            )
        if symtab_offset:
            strtab_offset = symtab_offset + number_of_symbols * SYMBOL_SIZE
            source.seek(strtab_offset)
            raw = source.read(4)
            if len(raw) != 4:
                raise self.not_this_format("symbol table runs past end of file")
            (strtab_length,) = struct.unpack("<I", raw)
            if strtab_offset + strtab_length > file_size:
                raise self.not_this_format("string table runs past end of file")
        return 0

    def _extract(self, source: BinaryIO) -> BinaryFile:
        file_size = source_size(source)
        base = self._coff_base(source)

        h = _COFFHeader()
        (
            h.machine, h.number_of_sections, h.time_date_stamp,
            h.pointer_to_symbol_table, h.number_of_symbols,
            h.size_of_optional_header, h.characteristics,
        ) = struct.unpack(_COFF_HEADER_FMT, read_at(source, base, COFF_HEADER_SIZE))

        strtab = self._read_string_table(source, h)
        pe_sections = self._parse_section_table(source, base, h, strtab)
        sections = [self._to_section(s, file_size) for s in pe_sections]

        coff_symbols = self._parse_symbol_table(source, h, strtab)
        coff_symbols.sort(key=lambda s: (s.section_number, s.value))

        # i386 C symbols are decorated with a leading underscore
        prefix = "_" if h.machine == IMAGE_FILE_MACHINE_I386 else ""

        symbols: list[Symbol] = []
        for sym in coff_symbols:
            if sym.section_number <= 0:
                continue
            if sym.section_number > len(sections):
                raise MalformedContainerError(
                    f"invalid section number {sym.section_number} "
                    f"for symbol {sym.name!r}"
                )
            name = sym.name
            if prefix and name.startswith(prefix):
                name = name[len(prefix):]
            symbols.append(Symbol(
                name=name,
                address=sym.value,
                size=0,
                section=sym.section_number - 1,
            ))

        return BinaryFile(format=self.format, symbols=symbols, sections=sections)

    # ------------------------------------------------------------------ #
    #  Section table parsing
    # ------------------------------------------------------------------ #

    def _parse_section_table(
        self, source: BinaryIO, base: int, h: _COFFHeader, strtab: bytes
    ) -> list[_PESection]:
        table_offset = base + COFF_HEADER_SIZE + h.size_of_optional_header
        table = read_at(
            source, table_offset, h.number_of_sections * SECTION_HEADER_SIZE
        )

        result: list[_PESection] = []
        for i in range(h.number_of_sections):
            (
                raw_name, virtual_size, virtual_address, size_of_raw_data,
                pointer_to_raw_data, _relocs, _lines, _nrelocs, _nlines,
                characteristics,
            ) = struct.unpack_from(_SECTION_HEADER_FMT, table, i * SECTION_HEADER_SIZE)

            sec = _PESection()
            sec.name = self._section_name(raw_name, strtab)
            sec.virtual_size = virtual_size
            sec.virtual_address = virtual_address
            sec.size_of_raw_data = size_of_raw_data
            sec.pointer_to_raw_data = pointer_to_raw_data
            sec.characteristics = characteristics
            result.append(sec)
        return result

    @staticmethod
    def _section_name(raw: bytes, strtab: bytes) -> str:
        name = raw.rstrip(b"\x00").decode("utf-8", errors="replace")
        # Object files spill long names to the string table as "/<offset>"
        if name.startswith("/") and name[1:].isdigit() and strtab:
            return read_cstring(strtab, int(name[1:]))
        return name

    @staticmethod
    def _to_section(sec: _PESection, file_size: int) -> Section:
        if sec.pointer_to_raw_data == 0:
            size = 0
        elif sec.virtual_size:
            size = min(sec.virtual_size, sec.size_of_raw_data)
        else:
            size = sec.size_of_raw_data
        if size and sec.pointer_to_raw_data + size > file_size:
            raise MalformedContainerError(
                f"section {sec.name!r} extends past end of file"
            )
        return Section(
            name=sec.name,
            virtual_address=sec.virtual_address,
            file_offset=sec.pointer_to_raw_data,
            size=size,
        )

    # ------------------------------------------------------------------ #
    #  Symbol table parsing
    # ------------------------------------------------------------------ #

    @staticmethod
    def _read_string_table(source: BinaryIO, h: _COFFHeader) -> bytes:
        """Return the COFF string table, including its 4-byte length field."""
        if h.pointer_to_symbol_table == 0:
            return b""
        offset = h.pointer_to_symbol_table + h.number_of_symbols * SYMBOL_SIZE
        source.seek(offset)
        raw = source.read(4)
        if len(raw) < 4:
            return b""
        (length,) = struct.unpack("<I", raw)
        if length < 4:
            return b""
        return read_at(source, offset, length)

    @staticmethod
    def _parse_symbol_table(
        source: BinaryIO, h: _COFFHeader, strtab: bytes
    ) -> list[_COFFSymbol]:
        if h.pointer_to_symbol_table == 0 or h.number_of_symbols == 0:
            return []

        table = read_at(
            source, h.pointer_to_symbol_table, h.number_of_symbols * SYMBOL_SIZE
        )

        result: list[_COFFSymbol] = []
        i = 0
        while i < h.number_of_symbols:
            (
                raw_name, value, section_number, _type, storage_class, num_aux,
            ) = struct.unpack_from(_SYMBOL_FMT, table, i * SYMBOL_SIZE)

            sym = _COFFSymbol()
            if raw_name[:4] == b"\x00\x00\x00\x00":
                (str_offset,) = struct.unpack_from("<I", raw_name, 4)
                sym.name = read_cstring(strtab, str_offset)
            else:
                sym.name = raw_name.rstrip(b"\x00").decode("utf-8", errors="replace")
            sym.value = value
            sym.section_number = section_number
            sym.storage_class = storage_class
            result.append(sym)

            i += 1 + num_aux
        return result
