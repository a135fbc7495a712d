"""
Imprint Core Module
===================

Data models and the error taxonomy shared by the readers, the resolver
and the patcher.
"""

from imprint.core.errors import (
    FormatNotRecognizedError,
    ImplausibleSymbolSizeError,
    ImprintError,
    MalformedContainerError,
    NotThisFormatError,
    PriorValueMismatchError,
    SymbolNotFoundError,
    SymbolTypeMismatchError,
    UnexpectedTruncationError,
    ValueOverflowError,
    VerificationError,
)
from imprint.core.models import BinaryFile, BinaryFormat, Section, Symbol

__all__ = [
    "BinaryFile",
    "BinaryFormat",
    "Section",
    "Symbol",
    "ImprintError",
    "FormatNotRecognizedError",
    "NotThisFormatError",
    "MalformedContainerError",
    "SymbolNotFoundError",
    "ImplausibleSymbolSizeError",
    "ValueOverflowError",
    "SymbolTypeMismatchError",
    "PriorValueMismatchError",
    "UnexpectedTruncationError",
    "VerificationError",
]
