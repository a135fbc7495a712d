"""
Imprint Shared Module
=====================

Configuration, logging and console utilities used by the Imprint engine
and command-line interface.
"""

from shared.config import ImprintConfig, get_config

__all__ = ["ImprintConfig", "get_config"]
