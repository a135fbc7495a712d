"""
Format Reader Interface
=======================

Common base for the ELF, Mach-O and PE/COFF readers.  A reader turns a
seekable binary stream into a :class:`~imprint.core.models.BinaryFile`
or fails with one of two classified errors:

    - :class:`~imprint.core.errors.NotThisFormatError` -- the stream is
      not a file of this reader's format; the dispatcher tries the next one.
    - :class:`~imprint.core.errors.MalformedContainerError` -- the magic
      matched but the structure is internally inconsistent.

Readers never hold the whole file in memory; headers and tables are read
on demand with :func:`read_at`.
"""

from __future__ import annotations

import io
import os
import struct
from abc import ABC, abstractmethod
from typing import BinaryIO, TextIO

from imprint.core.errors import MalformedContainerError, NotThisFormatError
from imprint.core.models import BinaryFile, BinaryFormat


# ---------------------------------------------------------------------------
# Random-access helpers
# ---------------------------------------------------------------------------

def source_size(source: BinaryIO) -> int:
    """Return the total length of *source* in bytes."""
    return source.seek(0, os.SEEK_END)


def read_at(source: BinaryIO, offset: int, size: int) -> bytes:
    """Read exactly *size* bytes starting at *offset*.

    Raises:
        MalformedContainerError: If the stream ends early.
    """
    if offset < 0 or size < 0:
        raise MalformedContainerError(
            f"invalid read of {size} bytes at offset {offset}"
        )
    source.seek(offset)
    data = source.read(size)
    if len(data) != size:
        raise MalformedContainerError(
            f"unexpected end of file reading {size} bytes at offset "
            f"0x{offset:x} (got {len(data)})"
        )
    return data


def read_cstring(data: bytes, offset: int) -> str:
    """Read a nul-terminated string from a string table.

    Args:
        data: String table contents.
        offset: Start offset within *data*.

    Returns:
        Decoded string (UTF-8, undecodable bytes replaced).
    """
    if offset >= len(data):
        raise MalformedContainerError(
            f"string table offset {offset} out of range ({len(data)} bytes)"
        )
    end = data.find(b"\x00", offset)
    if end == -1:
        end = len(data)
    return data[offset:end].decode("utf-8", errors="replace")


# ---------------------------------------------------------------------------
# Reader base class
# ---------------------------------------------------------------------------

class FormatReader(ABC):
    """A single container-format reader.

    Subclasses implement :meth:`_probe` (cheap magic check, raising
    :class:`NotThisFormatError`) and :meth:`_extract` (full parse).
    :meth:`extract` wires the two together and converts low-level
    decoding errors into :class:`MalformedContainerError`.
    """

    format: BinaryFormat

    @property
    def name(self) -> str:
        return self.format.value

    def extract(self, source: BinaryIO) -> BinaryFile:
        """Parse *source* into the uniform symbol/section model."""
        self._probe(source)
        try:
            return self._extract(source)
        except (struct.error, IndexError, ValueError) as exc:
            raise MalformedContainerError(
                f"malformed {self.name} file: {exc}"
            ) from exc

    def dump(self, source: BinaryIO, sink: TextIO) -> None:
        """Write a human-readable symbol listing for *source* to *sink*."""
        write_symbol_listing(self.extract(source), sink)

    def not_this_format(self, message: str) -> NotThisFormatError:
        return NotThisFormatError(
            f"not a valid {self.name} file: {message}", format_name=self.name
        )

    @abstractmethod
    def _probe(self, source: BinaryIO) -> None:
        """Raise :class:`NotThisFormatError` unless the magic matches."""

    @abstractmethod
    def _extract(self, source: BinaryIO) -> BinaryFile:
        """Parse a stream already known to carry this reader's magic."""

    def _read_magic(self, source: BinaryIO, size: int) -> bytes:
        source.seek(0)
        data = source.read(size)
        if len(data) < size:
            raise self.not_this_format(
                f"file too short ({len(data)} bytes) for header"
            )
        return data


# ---------------------------------------------------------------------------
# Listing
# ---------------------------------------------------------------------------

def format_symbol_line(file: BinaryFile, index: int) -> str:
    """Render one symbol as ``name address size section``."""
    sym = file.symbols[index]
    section = file.section_of(sym)
    return (
        f"{sym.name}\t0x{sym.address:x}\t{sym.size}\t"
        f"{section.name or f'#{sym.section}'}"
    )


def write_symbol_listing(file: BinaryFile, sink: TextIO) -> None:
    """Write a header line and one line per symbol of *file* to *sink*."""
    buf = io.StringIO()
    buf.write(
        f"# {file.format.value}: {len(file.symbols)} symbols, "
        f"{len(file.sections)} sections\n"
    )
    for i in range(len(file.symbols)):
        buf.write(format_symbol_line(file, i))
        buf.write("\n")
    sink.write(buf.getvalue())
