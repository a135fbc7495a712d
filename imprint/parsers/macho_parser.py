"""
Mach-O Symbol Reader
====================

Manual struct-based reader for thin Mach-O files (macOS / iOS objects,
executables and dylibs), 32- and 64-bit, in either byte order.  Universal
("fat") archives are not unpacked and are reported as not-this-format.

Mach-O symbol tables carry no size information, so every symbol is
emitted with size ``0`` and the symbols are stably sorted by section and
address; the resolver infers sizes from the following symbol.

References:
    - Apple. (2009). OS X ABI Mach-O File Format Reference.
    - ``<mach-o/loader.h>`` and ``<mach-o/nlist.h>`` from the XNU sources.
"""

from __future__ import annotations

import struct
from typing import BinaryIO

from imprint.core.errors import MalformedContainerError
from imprint.core.models import BinaryFile, BinaryFormat, Section, Symbol
from imprint.parsers.base import FormatReader, read_at, read_cstring, source_size


# ---------------------------------------------------------------------------
# Mach-O Constants
# ---------------------------------------------------------------------------

MH_MAGIC: int = 0xFEEDFACE
MH_CIGAM: int = 0xCEFAEDFE
MH_MAGIC_64: int = 0xFEEDFACF
MH_CIGAM_64: int = 0xCFFAEDFE

FAT_MAGIC: int = 0xCAFEBABE
FAT_CIGAM: int = 0xBEBAFECA

# (is_64bit, endian) keyed by the first four bytes read little-endian
_MAGICS: dict[int, tuple[bool, str]] = {
    MH_MAGIC: (False, "<"),
    MH_CIGAM: (False, ">"),
    MH_MAGIC_64: (True, "<"),
    MH_CIGAM_64: (True, ">"),
}

LC_SEGMENT: int = 0x1
LC_SYMTAB: int = 0x2
LC_SEGMENT_64: int = 0x19

SECTION_TYPE: int = 0x000000FF
S_ZEROFILL: int = 0x1
S_GB_ZEROFILL: int = 0xC
S_THREAD_LOCAL_ZEROFILL: int = 0x12
_ZEROFILL_TYPES: frozenset[int] = frozenset(
    {S_ZEROFILL, S_GB_ZEROFILL, S_THREAD_LOCAL_ZEROFILL}
)

N_STAB: int = 0xE0  # symbolic debugging entry

# Layouts after the 8-byte cmd/cmdsize prefix
_SEGMENT_FORMATS: dict[bool, str] = {
    False: "16sIIIIiiII",
    True: "16sQQQQiiII",
}
_SECTION_FORMATS: dict[bool, str] = {
    False: "16s16sIIIIIIIII",
    True: "16s16sQQIIIIIIII",
}
_NLIST_FORMATS: dict[bool, str] = {
    False: "IBBhI",
    True: "IBBhQ",
}


# ---------------------------------------------------------------------------
# Internal parsed structures
# ---------------------------------------------------------------------------

class _MachSection:
    """Parsed ``section`` / ``section_64`` entry."""
    __slots__ = ("sectname", "segname", "addr", "size", "offset", "flags")

    def __init__(self) -> None:
        self.sectname: str = ""
        self.segname: str = ""
        self.addr: int = 0
        self.size: int = 0
        self.offset: int = 0
        self.flags: int = 0

    @property
    def is_zerofill(self) -> bool:
        return (self.flags & SECTION_TYPE) in _ZEROFILL_TYPES


class _NList:
    """Parsed ``nlist`` / ``nlist_64`` entry."""
    __slots__ = ("n_strx", "n_type", "n_sect", "n_desc", "n_value", "name")

    def __init__(self) -> None:
        self.n_strx: int = 0
        self.n_type: int = 0
        self.n_sect: int = 0
        self.n_desc: int = 0
        self.n_value: int = 0
        self.name: str = ""


def _fixed_name(raw: bytes) -> str:
    return raw.split(b"\x00", 1)[0].decode("utf-8", errors="replace")


# ---------------------------------------------------------------------------
# Mach-O Reader
# ---------------------------------------------------------------------------

class MachOReader(FormatReader):
    """Struct-based Mach-O reader producing the uniform symbol model."""

    format = BinaryFormat.MACHO

    def _probe(self, source: BinaryIO) -> None:
        (magic,) = struct.unpack("<I", self._read_magic(source, 4))
        if magic in (FAT_MAGIC, FAT_CIGAM):
            raise self.not_this_format("universal (fat) archives are not supported")
        if magic not in _MAGICS:
            raise self.not_this_format(f"invalid magic number 0x{magic:08x}")

    def _extract(self, source: BinaryIO) -> BinaryFile:
        file_size = source_size(source)
        (magic,) = struct.unpack("<I", read_at(source, 0, 4))
        is_64bit, endian = _MAGICS[magic]

        header_fmt = f"{endian}IiiIIII" + ("I" if is_64bit else "")
        header_size = struct.calcsize(header_fmt)
        fields = struct.unpack(header_fmt, read_at(source, 0, header_size))
        ncmds, sizeofcmds = fields[4], fields[5]

        commands = read_at(source, header_size, sizeofcmds)

        mach_sections: list[_MachSection] = []
        symtab: tuple[int, int, int, int] | None = None

        pos = 0
        for i in range(ncmds):
            if pos + 8 > len(commands):
                raise MalformedContainerError(
                    f"load command {i} extends past the load command area"
                )
            cmd, cmdsize = struct.unpack_from(f"{endian}II", commands, pos)
            if cmdsize < 8 or pos + cmdsize > len(commands):
                raise MalformedContainerError(
                    f"invalid size {cmdsize} for load command {i}"
                )
            body = commands[pos + 8:pos + cmdsize]

            if cmd in (LC_SEGMENT, LC_SEGMENT_64):
                mach_sections.extend(
                    self._parse_segment(body, cmd == LC_SEGMENT_64, endian)
                )
            elif cmd == LC_SYMTAB:
                symtab = struct.unpack_from(f"{endian}IIII", body, 0)

            pos += cmdsize

        if symtab is None:
            raise MalformedContainerError("no LC_SYMTAB load command")

        sections = [self._to_section(s, file_size) for s in mach_sections]
        nlists = self._parse_symbols(source, symtab, is_64bit, endian)
        nlists.sort(key=lambda n: (n.n_sect, n.n_value))

        symbols: list[Symbol] = []
        for n in nlists:
            if n.n_type & N_STAB or n.n_sect == 0:
                continue
            if n.n_sect > len(mach_sections):
                raise MalformedContainerError(
                    f"invalid section number {n.n_sect} for symbol {n.name!r}"
                )
            sect = mach_sections[n.n_sect - 1]
            if n.n_value < sect.addr:
                raise MalformedContainerError(
                    f"symbol {n.name!r} at 0x{n.n_value:x} lies before its "
                    f"section at 0x{sect.addr:x}"
                )
            symbols.append(Symbol(
                # C symbols carry a leading underscore in Mach-O
                name=n.name[1:] if n.name.startswith("_") else n.name,
                address=n.n_value - sect.addr,
                size=0,
                section=n.n_sect - 1,
            ))

        return BinaryFile(format=self.format, symbols=symbols, sections=sections)

    # ------------------------------------------------------------------ #
    #  Load command parsing
    # ------------------------------------------------------------------ #

    @staticmethod
    def _parse_segment(body: bytes, is_64bit: bool, endian: str) -> list[_MachSection]:
        seg_fmt = endian + _SEGMENT_FORMATS[is_64bit]
        sect_fmt = endian + _SECTION_FORMATS[is_64bit]
        seg_size = struct.calcsize(seg_fmt)
        sect_size = struct.calcsize(sect_fmt)

        nsects = struct.unpack_from(seg_fmt, body, 0)[7]
        if seg_size + nsects * sect_size > len(body):
            raise MalformedContainerError(
                f"segment declares {nsects} sections beyond its command size"
            )

        result: list[_MachSection] = []
        for i in range(nsects):
            fields = struct.unpack_from(sect_fmt, body, seg_size + i * sect_size)
            s = _MachSection()
            s.sectname = _fixed_name(fields[0])
            s.segname = _fixed_name(fields[1])
            s.addr, s.size, s.offset = fields[2], fields[3], fields[4]
            s.flags = fields[8]
            result.append(s)
        return result

    @staticmethod
    def _to_section(s: _MachSection, file_size: int) -> Section:
        size = 0 if s.is_zerofill else s.size
        if size and s.offset + size > file_size:
            raise MalformedContainerError(
                f"section {s.segname},{s.sectname} extends past end of file"
            )
        return Section(
            name=f"{s.segname},{s.sectname}",
            virtual_address=s.addr,
            file_offset=s.offset,
            size=size,
        )

    @staticmethod
    def _parse_symbols(
        source: BinaryIO,
        symtab: tuple[int, int, int, int],
        is_64bit: bool,
        endian: str,
    ) -> list[_NList]:
        symoff, nsyms, stroff, strsize = symtab
        fmt = endian + _NLIST_FORMATS[is_64bit]
        entry_size = struct.calcsize(fmt)

        table = read_at(source, symoff, nsyms * entry_size)
        strtab = read_at(source, stroff, strsize)

        result: list[_NList] = []
        for i in range(nsyms):
            n = _NList()
            (
                n.n_strx, n.n_type, n.n_sect, n.n_desc, n.n_value,
            ) = struct.unpack_from(fmt, table, i * entry_size)
            n.name = read_cstring(strtab, n.n_strx) if n.n_strx else ""
            result.append(n)
        return result
