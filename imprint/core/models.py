"""
Imprint Data Models
===================

Pydantic models for the uniform symbol/section view that every format
reader produces.  The resolver and patcher only ever see these models,
never the format-specific structures behind them.

A :class:`Symbol` refers to its owning :class:`Section` by index into
:attr:`BinaryFile.sections`; the file is the sole owner of both lists.

References:
    - TIS Committee. (1995). Executable and Linkable Format (ELF) Specification.
    - Apple. (2009). OS X ABI Mach-O File Format Reference.
    - Microsoft. (2024). PE Format. Microsoft Learn.
"""

from __future__ import annotations

import enum
from typing import BinaryIO, Optional

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr


class BinaryFormat(str, enum.Enum):
    """Container formats a reader can produce a model for."""
    ELF = "elf"
    MACHO = "macho"
    PE = "pe"


# ---------------------------------------------------------------------------
# Section / Symbol
# ---------------------------------------------------------------------------

class Section(BaseModel):
    """A contiguous region of the binary as laid out in the file.

    Attributes:
        name: Section name (informational only).
        virtual_address: Address of the section's first byte when loaded.
        file_offset: Byte offset of the section's first byte in the file.
        size: Byte length of the section's file-backed region.
    """
    model_config = ConfigDict(frozen=True)

    name: str = ""
    virtual_address: int = Field(default=0, ge=0)
    file_offset: int = Field(default=0, ge=0)
    size: int = Field(default=0, ge=0)


class Symbol(BaseModel):
    """A named location inside exactly one section.

    Attributes:
        name: Symbol name as it should be looked up.
        address: Offset of the symbol from the start of its section's
            address space.
        size: Byte length, or ``0`` when the container does not record it.
        section: Index of the owning section in :attr:`BinaryFile.sections`.
    """
    model_config = ConfigDict(frozen=True)

    name: str = ""
    address: int = Field(default=0, ge=0)
    size: int = Field(default=0, ge=0)
    section: int = Field(default=0, ge=0)


# ---------------------------------------------------------------------------
# Parse result
# ---------------------------------------------------------------------------

class BinaryFile(BaseModel):
    """Top-level parse result for one input file.

    The model borrows the random-access byte source it was parsed from;
    the caller keeps the source open for as long as the file is used.

    Attributes:
        format: Container format that produced this model.
        symbols: Symbols in reader order (significant for size inference).
        sections: Sections in container order.
    """
    format: BinaryFormat = BinaryFormat.ELF
    symbols: list[Symbol] = Field(default_factory=list)
    sections: list[Section] = Field(default_factory=list)

    _source: Optional[BinaryIO] = PrivateAttr(default=None)

    @property
    def source(self) -> BinaryIO:
        """The byte source this file was parsed from."""
        if self._source is None:
            raise RuntimeError("BinaryFile has no attached byte source")
        return self._source

    def attach_source(self, source: BinaryIO) -> None:
        self._source = source

    def section_of(self, symbol: Symbol) -> Section:
        """Return the section that owns *symbol*."""
        return self.sections[symbol.section]


# ---------------------------------------------------------------------------
# Engine result
# ---------------------------------------------------------------------------

class InjectionResult(BaseModel):
    """Outcome of one successful injection performed by the engine.

    Attributes:
        input_path: Binary that was read.
        output_path: Binary that was written.
        format: Container format of the input.
        symbol: Name of the patched symbol.
        offset: File offset of the patched bytes.
        size: Number of bytes replaced.
        previous: Symbol contents before the injection.
        current: Symbol contents after the injection.
        verified: ``True`` when the output was re-parsed and checked.
        duration_seconds: Wall-clock time of the operation.
    """
    input_path: str = ""
    output_path: str = ""
    format: BinaryFormat = BinaryFormat.ELF
    symbol: str = ""
    offset: int = 0
    size: int = 0
    previous: bytes = b""
    current: bytes = b""
    verified: bool = False
    duration_seconds: float = 0.0

    @property
    def changed(self) -> bool:
        return self.previous != self.current
