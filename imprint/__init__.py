"""
Imprint -- Symbol Injection for Compiled Binaries
==================================================

Overwrites the contents of named data symbols in ELF, Mach-O and PE/COFF
files with new values, without relinking.  Typical use is stamping build
identifiers, timestamps or version strings into already linked binaries.

Modules:
    - imprint.core.dispatcher: Format detection with fallback
    - imprint.core.resolver: Symbol lookup and size inference
    - imprint.core.patcher: Streaming copy-with-replacement
    - imprint.core.engine: Path-level orchestration
    - imprint.parsers: Struct-based format readers
    - imprint.output: Console output
    - imprint.cli: Click-based command-line interface

References:
    - TIS Committee. (1995). Executable and Linkable Format (ELF) Specification.
    - Apple. (2009). OS X ABI Mach-O File Format Reference.
    - Microsoft. (2024). PE Format. Microsoft Learn.
"""

__version__ = "1.0.0"
__tool_name__ = "imprint"
