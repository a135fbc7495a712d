"""
Imprint Configuration Management
================================

Dataclass configuration for the Imprint toolkit, persisted as TOML.

Lookup order for the configuration file:

    1. The path passed to :meth:`ImprintConfig.load` (``--config``)
    2. ``$IMPRINT_CONFIG``
    3. ``config.toml`` in the project root

Any table or key missing from the file keeps its dataclass default.

References:
    - TOML v1.0.0 Specification. https://toml.io/en/v1.0.0
"""

from __future__ import annotations

import os
import sys
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib  # type: ignore[no-redef]


_DEFAULT_CONFIG_PATH: Path = Path(__file__).resolve().parent.parent / "config.toml"
_ENV_CONFIG_PATH: str = "IMPRINT_CONFIG"

_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


# ============================ Sections =====================================


@dataclass(frozen=False, slots=True)
class InjectConfig:
    """``[imprint]`` table: how output binaries are produced.

    Attributes:
        copy_buffer_size: Chunk size for the streaming copy, in bytes.
        atomic_output:    Write to a temporary file and rename on success.
        verify_output:    Re-parse the output and compare the stamped bytes.
        preserve_mode:    Copy the input's permission bits to the output.
    """

    copy_buffer_size: int = 65_536
    atomic_output: bool = True
    verify_output: bool = True
    preserve_mode: bool = True

    def __post_init__(self) -> None:
        if not isinstance(self.copy_buffer_size, int) or self.copy_buffer_size <= 0:
            raise ValueError(
                f"imprint.copy_buffer_size must be a positive integer, "
                f"got {self.copy_buffer_size!r}"
            )


@dataclass(frozen=False, slots=True)
class GlobalConfig:
    """``[global]`` table: logging destination and verbosity."""

    log_level: str = "INFO"
    log_file: str = ""
    log_json: bool = False
    debug: bool = False

    def __post_init__(self) -> None:
        self.log_level = str(self.log_level).upper()
        if self.log_level not in _LOG_LEVELS:
            raise ValueError(f"global.log_level {self.log_level!r} is not a log level")


@dataclass(frozen=False, slots=True)
class ImprintConfig:
    """Complete configuration.

    Usage:
        >>> config = ImprintConfig.load()
        >>> config.imprint.copy_buffer_size
        65536
    """

    global_settings: GlobalConfig = field(default_factory=GlobalConfig)
    imprint: InjectConfig = field(default_factory=InjectConfig)

    @classmethod
    def load(cls, path: str | Path | None = None) -> ImprintConfig:
        """Load configuration from TOML.

        Args:
            path: Configuration file.  When ``None``, ``$IMPRINT_CONFIG`` or
                the project-root ``config.toml`` is used if present.

        Raises:
            FileNotFoundError: An explicitly named file (argument or
                environment variable) does not exist.
            ValueError: The file is not valid TOML or holds invalid values.
        """
        if path is None:
            path = os.environ.get(_ENV_CONFIG_PATH) or None

        if path is None:
            if not _DEFAULT_CONFIG_PATH.exists():
                return cls()
            config_path = _DEFAULT_CONFIG_PATH
        else:
            config_path = Path(path)
            if not config_path.is_file():
                raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path, "rb") as fh:
            raw: dict[str, Any] = tomllib.load(fh)

        return cls(
            global_settings=_from_table(GlobalConfig, raw.get("global", {})),
            imprint=_from_table(InjectConfig, raw.get("imprint", {})),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _from_table(section: type, table: dict[str, Any]) -> Any:
    """Build *section* from a TOML table, ignoring keys it does not declare."""
    known = {f.name for f in fields(section)}
    return section(**{k: v for k, v in table.items() if k in known})


def get_config(path: str | Path | None = None) -> ImprintConfig:
    """Return the process-wide configuration, loading it on first use.

    Passing *path* reloads from that file.
    """
    if not hasattr(get_config, "_cached") or path is not None:
        get_config._cached = ImprintConfig.load(path)  # type: ignore[attr-defined]
    return get_config._cached  # type: ignore[attr-defined]
