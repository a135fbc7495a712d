"""
Imprint Error Taxonomy
======================

Every failure the resolution and patching engine can report is a subclass
of :class:`ImprintError`.  All of them are terminal for the requested
operation: nothing is retried internally and no partially patched output
is considered usable.
"""

from __future__ import annotations


class ImprintError(Exception):
    """Base class for all symbol injection failures."""


# ========================== Container parsing ==============================


class FormatNotRecognizedError(ImprintError):
    """None of the format readers accepted the input file."""


class NotThisFormatError(FormatNotRecognizedError):
    """A reader did not recognise the input as its container format.

    The dispatcher moves on to the next reader when it sees this error.
    When every reader rejects the file, the ELF reader's instance is
    raised with the other readers' errors collected in :attr:`attempts`.
    """

    def __init__(self, message: str, *, format_name: str = "") -> None:
        super().__init__(message)
        self.format_name = format_name
        self.attempts: list[NotThisFormatError] = []


class MalformedContainerError(ImprintError):
    """A reader matched the format but the structure is inconsistent."""


# ========================== Symbol resolution ==============================


class SymbolNotFoundError(ImprintError):
    """No symbol with the requested name exists in the symbol list."""

    def __init__(self, symbol: str) -> None:
        super().__init__(f"symbol not found: {symbol!r}")
        self.symbol = symbol


class ImplausibleSymbolSizeError(ImprintError):
    """The symbol's byte range is degenerate or implausibly large."""


# ========================== Injection ======================================


class ValueOverflowError(ImprintError):
    """A string value (plus its terminating nul) does not fit the symbol."""


class SymbolTypeMismatchError(ImprintError):
    """A 64-bit injection targeted a symbol that is not 8 bytes long."""


class PriorValueMismatchError(ImprintError):
    """The symbol's current bytes differ from the expected prior value."""

    def __init__(self, existing: bytes, expected: bytes) -> None:
        super().__init__(
            f"existing symbol contents {existing!r} did not match "
            f"expected value {expected!r}"
        )
        self.existing = existing
        self.expected = expected


class UnexpectedTruncationError(ImprintError):
    """The byte source ended before the expected number of bytes was read."""


class VerificationError(ImprintError):
    """Re-reading the written output did not show the injected bytes."""
