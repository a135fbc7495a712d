"""
ELF Symbol Reader
=================

Manual struct-based reader for the Executable and Linkable Format (ELF),
the object format used by Linux, Android and most other Unix-like
systems.  Both 32-bit (ELF32) and 64-bit (ELF64) variants in either byte
order are supported.

Only what injection needs is extracted:
    - Section headers (name, address, file offset, size)
    - Data object symbols from ``.symtab`` (``STT_OBJECT`` defined in a
      regular section)

Symbol addresses are converted to section-relative offsets: relocatable
objects already store them that way, executables and shared objects store
virtual addresses.

References:
    - TIS Committee. (1995). Tool Interface Standard (TIS) Executable and
      Linkable Format (ELF) Specification, Version 1.2.
    - System V Application Binary Interface, Edition 4.1.
    - Linux man page: elf(5).
"""

from __future__ import annotations

import struct
from typing import BinaryIO

from imprint.core.errors import MalformedContainerError
from imprint.core.models import BinaryFile, BinaryFormat, Section, Symbol
from imprint.parsers.base import FormatReader, read_at, read_cstring, source_size


# ---------------------------------------------------------------------------
# ELF Constants
# ---------------------------------------------------------------------------

ELF_MAGIC: bytes = b"\x7fELF"

ELFCLASS32: int = 1
ELFCLASS64: int = 2

ELFDATA2LSB: int = 1  # Little-endian
ELFDATA2MSB: int = 2  # Big-endian

ET_REL: int = 1   # Relocatable
ET_EXEC: int = 2  # Executable
ET_DYN: int = 3   # Shared object / PIE

_ET_NAMES: dict[int, str] = {
    0: "NONE",
    ET_REL: "REL",
    ET_EXEC: "EXEC",
    ET_DYN: "DYN",
    4: "CORE",
}

SHT_NULL: int = 0
SHT_SYMTAB: int = 2
SHT_NOBITS: int = 8

STT_OBJECT: int = 1

SHN_UNDEF: int = 0
SHN_LORESERVE: int = 0xFF00
SHN_XINDEX: int = 0xFFFF

_EHDR_FORMATS: dict[int, str] = {
    ELFCLASS32: "HHIIIIIHHHHHH",
    ELFCLASS64: "HHIQQQIHHHHHH",
}
_SHDR_FORMATS: dict[int, str] = {
    ELFCLASS32: "IIIIIIIIII",
    ELFCLASS64: "IIQQQQIIQQ",
}


# ---------------------------------------------------------------------------
# Internal parsed structures
# ---------------------------------------------------------------------------

class _ELFHeader:
    """Parsed ELF file header fields."""
    __slots__ = (
        "ei_class", "ei_data", "e_type", "e_machine",
        "e_shoff", "e_shentsize", "e_shnum", "e_shstrndx",
    )

    def __init__(self) -> None:
        self.ei_class: int = 0
        self.ei_data: int = 0
        self.e_type: int = 0
        self.e_machine: int = 0
        self.e_shoff: int = 0
        self.e_shentsize: int = 0
        self.e_shnum: int = 0
        self.e_shstrndx: int = 0


class _SectionHeader:
    """Parsed section header entry."""
    __slots__ = (
        "sh_name", "sh_type", "sh_flags", "sh_addr",
        "sh_offset", "sh_size", "sh_link", "sh_info",
        "sh_addralign", "sh_entsize", "name",
    )

    def __init__(self) -> None:
        self.sh_name: int = 0
        self.sh_type: int = 0
        self.sh_flags: int = 0
        self.sh_addr: int = 0
        self.sh_offset: int = 0
        self.sh_size: int = 0
        self.sh_link: int = 0
        self.sh_info: int = 0
        self.sh_addralign: int = 0
        self.sh_entsize: int = 0
        self.name: str = ""


class _ELFSymbol:
    """Parsed symbol table entry."""
    __slots__ = ("st_name", "st_value", "st_size", "st_info", "st_shndx", "name")

    def __init__(self) -> None:
        self.st_name: int = 0
        self.st_value: int = 0
        self.st_size: int = 0
        self.st_info: int = 0
        self.st_shndx: int = 0
        self.name: str = ""

    @property
    def st_type(self) -> int:
        return self.st_info & 0xF


# ---------------------------------------------------------------------------
# ELF Reader
# ---------------------------------------------------------------------------

class ELFReader(FormatReader):
    """Struct-based ELF reader producing the uniform symbol model.

    Usage::

        with open("libfoo.so", "rb") as fh:
            binary = ELFReader().extract(fh)
    """

    format = BinaryFormat.ELF

    def _probe(self, source: BinaryIO) -> None:
        magic = self._read_magic(source, 16)
        if magic[:4] != ELF_MAGIC:
            raise self.not_this_format(f"bad magic number {magic[:4]!r}")

    def _extract(self, source: BinaryIO) -> BinaryFile:
        file_size = source_size(source)
        header = self._parse_header(source)
        endian = "<" if header.ei_data == ELFDATA2LSB else ">"

        headers = self._parse_section_headers(source, header, endian)
        sections = [self._to_section(sh, file_size) for sh in headers]

        symtab = next((sh for sh in headers if sh.sh_type == SHT_SYMTAB), None)
        if symtab is None:
            raise MalformedContainerError("no symbol section")

        symbols: list[Symbol] = []
        for sym in self._parse_symbol_table(source, header, headers, symtab, endian):
            if sym.st_type != STT_OBJECT:
                continue
            if sym.st_shndx == SHN_UNDEF or sym.st_shndx >= SHN_LORESERVE:
                continue
            if sym.st_shndx >= len(headers):
                raise MalformedContainerError(
                    f"invalid section index {sym.st_shndx} for symbol {sym.name!r}"
                )

            sh = headers[sym.st_shndx]
            if header.e_type == ET_REL:
                address = sym.st_value
            elif header.e_type in (ET_EXEC, ET_DYN):
                if sym.st_value < sh.sh_addr:
                    raise MalformedContainerError(
                        f"symbol {sym.name!r} at 0x{sym.st_value:x} lies "
                        f"before its section {sh.name!r} at 0x{sh.sh_addr:x}"
                    )
                address = sym.st_value - sh.sh_addr
            else:
                raise MalformedContainerError(
                    "unhandled elf file type "
                    f"{_ET_NAMES.get(header.e_type, hex(header.e_type))}"
                )

            symbols.append(Symbol(
                name=sym.name,
                address=address,
                size=sym.st_size,
                section=sym.st_shndx,
            ))

        return BinaryFile(format=self.format, symbols=symbols, sections=sections)

    # ------------------------------------------------------------------ #
    #  Header parsing
    # ------------------------------------------------------------------ #

    def _parse_header(self, source: BinaryIO) -> _ELFHeader:
        """Parse the ELF identification and file header."""
        ident = read_at(source, 0, 16)
        h = _ELFHeader()
        h.ei_class = ident[4]
        h.ei_data = ident[5]

        if h.ei_class not in _EHDR_FORMATS:
            raise MalformedContainerError(f"unknown ELF class {h.ei_class}")
        if h.ei_data not in (ELFDATA2LSB, ELFDATA2MSB):
            raise MalformedContainerError(f"unknown ELF data encoding {h.ei_data}")

        endian = "<" if h.ei_data == ELFDATA2LSB else ">"
        fmt = endian + _EHDR_FORMATS[h.ei_class]
        (
            h.e_type, h.e_machine, _version, _entry,
            _phoff, h.e_shoff, _flags, _ehsize,
            _phentsize, _phnum, h.e_shentsize, h.e_shnum,
            h.e_shstrndx,
        ) = struct.unpack(fmt, read_at(source, 16, struct.calcsize(fmt)))
        return h

    def _parse_section_headers(
        self, source: BinaryIO, h: _ELFHeader, endian: str
    ) -> list[_SectionHeader]:
        """Parse the section header table and resolve section names."""
        if h.e_shoff == 0:
            return []

        fmt = endian + _SHDR_FORMATS[h.ei_class]
        entry_size = struct.calcsize(fmt)
        if h.e_shentsize < entry_size:
            raise MalformedContainerError(
                f"section header entry size {h.e_shentsize} too small"
            )

        count = h.e_shnum
        strndx = h.e_shstrndx
        if count == 0 or strndx == SHN_XINDEX:
            # Extended numbering: real values live in section header 0
            first = self._unpack_section(read_at(source, h.e_shoff, entry_size), fmt)
            if count == 0:
                count = first.sh_size
            if strndx == SHN_XINDEX:
                strndx = first.sh_link

        table = read_at(source, h.e_shoff, count * h.e_shentsize)
        headers = [
            self._unpack_section(table[i * h.e_shentsize:i * h.e_shentsize + entry_size], fmt)
            for i in range(count)
        ]

        if strndx != SHN_UNDEF:
            if strndx >= len(headers):
                raise MalformedContainerError(
                    f"invalid section name string table index {strndx}"
                )
            strtab_sh = headers[strndx]
            strtab = read_at(source, strtab_sh.sh_offset, strtab_sh.sh_size)
            for sh in headers:
                sh.name = read_cstring(strtab, sh.sh_name) if strtab else ""

        return headers

    @staticmethod
    def _unpack_section(raw: bytes, fmt: str) -> _SectionHeader:
        sh = _SectionHeader()
        (
            sh.sh_name, sh.sh_type, sh.sh_flags, sh.sh_addr,
            sh.sh_offset, sh.sh_size, sh.sh_link, sh.sh_info,
            sh.sh_addralign, sh.sh_entsize,
        ) = struct.unpack(fmt, raw)
        return sh

    @staticmethod
    def _to_section(sh: _SectionHeader, file_size: int) -> Section:
        # NULL and NOBITS (.bss, .tbss) sections occupy no bytes in the file
        size = 0 if sh.sh_type in (SHT_NULL, SHT_NOBITS) else sh.sh_size
        if size and sh.sh_offset + size > file_size:
            raise MalformedContainerError(
                f"section {sh.name!r} extends past end of file"
            )
        return Section(
            name=sh.name,
            virtual_address=sh.sh_addr,
            file_offset=sh.sh_offset,
            size=size,
        )

    # ------------------------------------------------------------------ #
    #  Symbol table parsing
    # ------------------------------------------------------------------ #

    def _parse_symbol_table(
        self,
        source: BinaryIO,
        h: _ELFHeader,
        headers: list[_SectionHeader],
        sh: _SectionHeader,
        endian: str,
    ) -> list[_ELFSymbol]:
        """Parse ``.symtab``, skipping the reserved null entry at index 0."""
        if h.ei_class == ELFCLASS64:
            fmt = f"{endian}IBBHQQ"  # Elf64_Sym: 24 bytes
        else:
            fmt = f"{endian}IIIBBH"  # Elf32_Sym: 16 bytes
        entry_size = struct.calcsize(fmt)

        if sh.sh_entsize < entry_size:
            raise MalformedContainerError(
                f"symbol table entry size {sh.sh_entsize} too small"
            )
        if sh.sh_link >= len(headers):
            raise MalformedContainerError(
                f"invalid symbol string table index {sh.sh_link}"
            )

        strtab_sh = headers[sh.sh_link]
        strtab = read_at(source, strtab_sh.sh_offset, strtab_sh.sh_size)
        table = read_at(source, sh.sh_offset, sh.sh_size)

        symbols: list[_ELFSymbol] = []
        for i in range(1, sh.sh_size // sh.sh_entsize):
            raw = table[i * sh.sh_entsize:i * sh.sh_entsize + entry_size]
            sym = _ELFSymbol()
            if h.ei_class == ELFCLASS64:
                (
                    sym.st_name, sym.st_info, _other,
                    sym.st_shndx, sym.st_value, sym.st_size,
                ) = struct.unpack(fmt, raw)
            else:
                (
                    sym.st_name, sym.st_value, sym.st_size,
                    sym.st_info, _other, sym.st_shndx,
                ) = struct.unpack(fmt, raw)
            sym.name = read_cstring(strtab, sym.st_name) if sym.st_name else ""
            symbols.append(sym)

        return symbols
