"""
Format Dispatcher
=================

Tries each format reader in a fixed order -- ELF, then Mach-O, then
PE/COFF -- and stops at the first one that accepts the input.

A reader that rejects the input with :class:`NotThisFormatError` hands
over to the next one.  Any other error means the reader recognised its
format but the file is broken, and is propagated immediately.  When all
readers reject the input the ELF reader's error is raised, since ELF is
the primary format; the other readers' errors ride along in its
``attempts`` list.
"""

from __future__ import annotations

import sys
from typing import BinaryIO, Callable, Sequence, TextIO, TypeVar

from imprint.core.errors import NotThisFormatError
from imprint.core.models import BinaryFile
from imprint.parsers import ELFReader, FormatReader, MachOReader, PEReader

T = TypeVar("T")

DEFAULT_READERS: tuple[FormatReader, ...] = (ELFReader(), MachOReader(), PEReader())


def _first_accepting(
    readers: Sequence[FormatReader],
    attempt: Callable[[FormatReader], T],
) -> T:
    primary: NotThisFormatError | None = None
    for reader in readers:
        try:
            return attempt(reader)
        except NotThisFormatError as exc:
            if primary is None:
                primary = exc
            else:
                primary.attempts.append(exc)

    if primary is None:
        raise ValueError("no format readers configured")
    raise primary


def open_file(
    source: BinaryIO,
    readers: Sequence[FormatReader] = DEFAULT_READERS,
) -> BinaryFile:
    """Parse *source* with the first reader that recognises it.

    Args:
        source: Seekable binary stream.  It is borrowed, not copied, and
            must stay open while the returned file is used.
        readers: Readers in the order they are tried.

    Returns:
        The populated :class:`BinaryFile` with *source* attached.

    Raises:
        NotThisFormatError: No reader recognised the file (the first
            reader's error is raised).
        MalformedContainerError: A reader recognised the format but could
            not parse the file.
    """
    file = _first_accepting(readers, lambda reader: reader.extract(source))
    file.attach_source(source)
    return file


def dump_symbols(
    source: BinaryIO,
    sink: TextIO | None = None,
    readers: Sequence[FormatReader] = DEFAULT_READERS,
) -> None:
    """Write a symbol listing for *source* to *sink* (default: stdout).

    Uses the same ordered fallback and error semantics as :func:`open_file`.
    """
    out = sink if sink is not None else sys.stdout
    _first_accepting(readers, lambda reader: reader.dump(source, out))
