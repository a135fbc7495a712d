"""
Imprint Output Module
=====================

Rich terminal rendering of symbol listings and injection summaries.
"""

from imprint.output.console import ImprintConsoleOutput

__all__ = ["ImprintConsoleOutput"]
