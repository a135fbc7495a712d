"""
Symbol Patcher
==============

Produces a copy of the input binary in which one symbol's bytes have been
replaced.  The copy is streamed in three steps -- the bytes before the
symbol, the replacement, the bytes after it -- through a fixed-size
buffer, so memory use does not depend on the size of the binary and the
output is always exactly as long as the input.

All validation (value fits, symbol type, expected prior contents) happens
before the first byte is written to the sink.
"""

from __future__ import annotations

import struct
from typing import BinaryIO, Optional, Union

from imprint.core.errors import (
    PriorValueMismatchError,
    SymbolTypeMismatchError,
    UnexpectedTruncationError,
    ValueOverflowError,
)
from imprint.core.models import BinaryFile
from imprint.core.resolver import find_symbol
from imprint.parsers.base import source_size

DEFAULT_BUFFER_SIZE: int = 64 * 1024

_UINT64_MAX: int = 2**64 - 1

StringValue = Union[str, bytes]


def _as_bytes(value: StringValue) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else bytes(value)


def _padded(value: bytes, size: int) -> bytes:
    """Return *value* followed by nul bytes up to *size*."""
    return value + b"\x00" * (size - len(value))


def encode_string(value: StringValue, size: int) -> bytes:
    """Encode *value* as the *size*-byte contents of a string symbol."""
    return _padded(_as_bytes(value), size)


def _copy_range(
    source: BinaryIO,
    sink: BinaryIO,
    length: int | None,
    buffer_size: int,
) -> int:
    """Copy *length* bytes (or everything up to EOF when ``None``)."""
    copied = 0
    while length is None or copied < length:
        want = buffer_size if length is None else min(buffer_size, length - copied)
        chunk = source.read(want)
        if not chunk:
            break
        sink.write(chunk)
        copied += len(chunk)
    return copied


def copy_and_inject(
    source: BinaryIO,
    sink: BinaryIO,
    offset: int,
    replacement: bytes,
    buffer_size: int = DEFAULT_BUFFER_SIZE,
) -> None:
    """Stream *source* to *sink*, replacing ``len(replacement)`` bytes at *offset*.

    Raises:
        UnexpectedTruncationError: *source* ends before ``offset +
            len(replacement)`` or shrinks while being copied.
    """
    if buffer_size <= 0:
        raise ValueError(f"buffer size must be positive, got {buffer_size}")

    total = source_size(source)
    end = offset + len(replacement)
    if end > total:
        raise UnexpectedTruncationError(
            f"source is {total} bytes, shorter than the patched range "
            f"0x{offset:x}..0x{end:x}"
        )

    source.seek(0)
    copied = _copy_range(source, sink, offset, buffer_size)
    if copied != offset:
        raise UnexpectedTruncationError(
            f"source ended after {copied} bytes while copying the first "
            f"{offset} bytes"
        )

    sink.write(replacement)

    source.seek(end)
    copied = _copy_range(source, sink, None, buffer_size)
    if copied != total - end:
        raise UnexpectedTruncationError(
            f"source ended after {end + copied} of {total} bytes"
        )


def read_symbol_bytes(file: BinaryFile, offset: int, size: int) -> bytes:
    """Read the current contents of a resolved symbol from the source."""
    source = file.source
    source.seek(offset)
    existing = source.read(size)
    if len(existing) != size:
        raise UnexpectedTruncationError(
            f"source ended reading {size} bytes at offset 0x{offset:x}"
        )
    return existing


def inject_string_symbol(
    file: BinaryFile,
    sink: BinaryIO,
    symbol: str,
    value: StringValue,
    expected_prior: Optional[StringValue] = None,
    buffer_size: int = DEFAULT_BUFFER_SIZE,
) -> None:
    """Write a copy of *file* to *sink* with *symbol* set to *value*.

    The symbol's bytes become *value* followed by nul fill.  At least one
    nul must fit after the value.

    Args:
        file: Parsed input binary.
        sink: Writable binary stream receiving the complete output.
        symbol: Name of the symbol to overwrite.
        value: New contents (``str`` values are UTF-8 encoded).
        expected_prior: If non-empty, the symbol's current contents must
            equal this value (nul padded) or nothing is written.
        buffer_size: Streaming copy buffer size in bytes.

    Raises:
        SymbolNotFoundError, ImplausibleSymbolSizeError: From resolution.
        ValueOverflowError: *value* plus a terminating nul exceeds the symbol.
        PriorValueMismatchError: The current contents differ from
            *expected_prior*.
        UnexpectedTruncationError: The source is shorter than expected.
    """
    offset, size = find_symbol(file, symbol)
    data = _as_bytes(value)

    if len(data) + 1 > size:
        raise ValueOverflowError(
            f"value length {len(data)} overflows symbol size {size}"
        )

    if expected_prior:
        expected = _padded(_as_bytes(expected_prior)[:size], size)
        existing = read_symbol_bytes(file, offset, size)
        if existing != expected:
            raise PriorValueMismatchError(existing, expected)

    copy_and_inject(file.source, sink, offset, encode_string(data, size), buffer_size)


def encode_uint64(value: int) -> bytes:
    """Encode *value* as 8 little-endian bytes."""
    if not 0 <= value <= _UINT64_MAX:
        raise ValueError(f"value {value} does not fit in an unsigned 64-bit integer")
    return struct.pack("<Q", value)


def inject_uint64_symbol(
    file: BinaryFile,
    sink: BinaryIO,
    symbol: str,
    value: int,
    buffer_size: int = DEFAULT_BUFFER_SIZE,
) -> None:
    """Write a copy of *file* to *sink* with the 8-byte *symbol* set to *value*.

    Raises:
        SymbolTypeMismatchError: The resolved symbol is not 8 bytes long.
        ValueError: *value* is outside ``[0, 2**64)``.
    """
    offset, size = find_symbol(file, symbol)

    if size != 8:
        raise SymbolTypeMismatchError(
            f"symbol {symbol!r} is not a uint64, it is {size} bytes long"
        )

    copy_and_inject(file.source, sink, offset, encode_uint64(value), buffer_size)
