"""
Symbol Resolver
===============

Maps a symbol name to the absolute file offset and byte length that an
injection may overwrite.

Containers such as Mach-O and COFF do not record symbol sizes.  For those
symbols the size is inferred from the next symbol in the same section
with a higher address, or from the end of the section when none follows.
Unannotated symbols stamped by a build are expected to be small scalars
or short string buffers, so an inferred span above
:data:`MAX_INFERRED_SIZE` is treated as a resolution failure rather than
patched.
"""

from __future__ import annotations

from imprint.core.errors import ImplausibleSymbolSizeError, SymbolNotFoundError
from imprint.core.models import BinaryFile, Symbol

MAX_INFERRED_SIZE: int = 4096


def _inferred_end(file: BinaryFile, index: int) -> int:
    """Return the end address bounding ``file.symbols[index]``."""
    symbol = file.symbols[index]
    for other in file.symbols[index:]:
        if other.section != symbol.section:
            break
        if other.address > symbol.address:
            return other.address
    return file.section_of(symbol).size


def _resolve(file: BinaryFile, index: int) -> tuple[int, int]:
    symbol: Symbol = file.symbols[index]
    section = file.section_of(symbol)

    size = symbol.size
    if size == 0:
        end = _inferred_end(file, index)
        if end <= symbol.address or end - symbol.address > MAX_INFERRED_SIZE:
            raise ImplausibleSymbolSizeError(
                f"symbol {symbol.name!r} end address does not seem valid, "
                f"0x{symbol.address:x}:0x{end:x}"
            )
        size = end - symbol.address
    elif symbol.address + size > section.size:
        raise ImplausibleSymbolSizeError(
            f"symbol {symbol.name!r} (0x{symbol.address:x}+{size}) extends "
            f"past the end of section {section.name!r} ({section.size} bytes)"
        )

    return section.file_offset + symbol.address, size


def find_symbol(file: BinaryFile, name: str) -> tuple[int, int]:
    """Resolve *name* to ``(file_offset, size)``.

    The first symbol whose name matches exactly wins.

    Raises:
        SymbolNotFoundError: No symbol has that name.
        ImplausibleSymbolSizeError: The byte range is empty, larger than
            :data:`MAX_INFERRED_SIZE` when inferred, or runs past the end
            of its section.
    """
    for index, symbol in enumerate(file.symbols):
        if symbol.name == name:
            return _resolve(file, index)
    raise SymbolNotFoundError(name)
