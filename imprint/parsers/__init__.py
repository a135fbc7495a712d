"""
Imprint Format Readers
======================

Struct-based readers for the three supported container formats.  Each
reader exposes ``extract(source)`` and ``dump(source, sink)``.
"""

from imprint.parsers.base import FormatReader
from imprint.parsers.elf_parser import ELFReader
from imprint.parsers.macho_parser import MachOReader
from imprint.parsers.pe_parser import PEReader

__all__ = ["FormatReader", "ELFReader", "MachOReader", "PEReader"]
