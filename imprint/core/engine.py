"""
Imprint Injection Engine
========================

Path-level orchestration of the resolution and patching core.  The core
functions work on open streams and leave atomicity to the caller; the
engine is that caller for the command-line tool:

    1. Open the input and resolve it to a :class:`BinaryFile`
    2. Resolve the symbol and record its current contents
    3. Stream the patched copy into a temporary file next to the output
    4. Optionally re-parse the temporary file and check the new bytes
    5. Copy the input's permission bits and rename over the output

On any failure the temporary file is removed, so either the complete
patched output exists or nothing was written.
"""

from __future__ import annotations

import os
import shutil
import tempfile
from functools import partial
from pathlib import Path
from typing import BinaryIO, Callable, Optional, TextIO

from shared.config import ImprintConfig
from shared.logger import ImprintLogger

from imprint.core.dispatcher import dump_symbols, open_file
from imprint.core.errors import VerificationError
from imprint.core.models import BinaryFile, InjectionResult
from imprint.core.patcher import (
    StringValue,
    encode_string,
    encode_uint64,
    inject_string_symbol,
    inject_uint64_symbol,
    read_symbol_bytes,
)
from imprint.core.resolver import find_symbol


class ImprintEngine:
    """Stamps values into binaries on disk.

    Usage::

        engine = ImprintEngine()
        result = engine.inject_string(
            "out/libfoo.so", "out/libfoo.stamped.so",
            symbol="build_fingerprint", value="eng.20261019",
        )
        print(result.offset, result.size)
    """

    def __init__(
        self,
        config: ImprintConfig | None = None,
        logger: ImprintLogger | None = None,
    ) -> None:
        """Initialise the engine.

        Args:
            config: Imprint configuration.  Defaults are used if not provided.
            logger: Logger instance.  A new one is created if not provided.
        """
        self._config: ImprintConfig = config or ImprintConfig()
        self._logger: ImprintLogger = logger or ImprintLogger("engine")

    # ------------------------------------------------------------------ #
    #  Public operations
    # ------------------------------------------------------------------ #

    def inject_string(
        self,
        input_path: str | Path,
        output_path: str | Path,
        symbol: str,
        value: StringValue,
        expected_prior: Optional[StringValue] = None,
    ) -> InjectionResult:
        """Write a copy of *input_path* with *symbol* set to the string *value*.

        Args:
            input_path: Binary to read.
            output_path: Destination; may equal *input_path* when atomic
                output is enabled.
            symbol: Symbol to overwrite.
            value: New string contents, nul padded to the symbol size.
            expected_prior: Required current contents, if given.

        Returns:
            Details of the performed injection.
        """
        buffer_size = self._config.imprint.copy_buffer_size

        def patch(file: BinaryFile, sink: BinaryIO) -> None:
            inject_string_symbol(
                file, sink, symbol, value,
                expected_prior=expected_prior, buffer_size=buffer_size,
            )

        return self._inject(
            "inject_string", input_path, output_path, symbol, patch,
            lambda size: encode_string(value, size),
        )

    def inject_uint64(
        self,
        input_path: str | Path,
        output_path: str | Path,
        symbol: str,
        value: int,
    ) -> InjectionResult:
        """Write a copy of *input_path* with the 8-byte *symbol* set to *value*."""
        encoded = encode_uint64(value)
        buffer_size = self._config.imprint.copy_buffer_size

        def patch(file: BinaryFile, sink: BinaryIO) -> None:
            inject_uint64_symbol(file, sink, symbol, value, buffer_size=buffer_size)

        return self._inject(
            "inject_uint64", input_path, output_path, symbol, patch,
            lambda _size: encoded,
        )

    def inspect(self, input_path: str | Path) -> BinaryFile:
        """Parse *input_path* and return its symbol/section model.

        The returned model's byte source is closed; it is suitable for
        listing symbols, not for patching.
        """
        with self._logger.operation("inspect"):
            with open(input_path, "rb") as source:
                file = open_file(source)
            self._logger.info(
                "Parsed %s as %s: %d symbols, %d sections",
                input_path, file.format.value.upper(),
                len(file.symbols), len(file.sections),
            )
            return file

    def dump(self, input_path: str | Path, sink: TextIO | None = None) -> None:
        """Write the plain-text symbol listing of *input_path* to *sink*."""
        with self._logger.operation("dump"):
            with open(input_path, "rb") as source:
                dump_symbols(source, sink)

    # ------------------------------------------------------------------ #
    #  Shared injection pipeline
    # ------------------------------------------------------------------ #

    def _inject(
        self,
        operation: str,
        input_path: str | Path,
        output_path: str | Path,
        symbol: str,
        patch: Callable[[BinaryFile, BinaryIO], None],
        expected_bytes: Callable[[int], bytes],
    ) -> InjectionResult:
        src_path = Path(input_path)
        dst_path = Path(output_path)

        with self._logger.operation(operation), \
                self._logger.timed(f"stamp {symbol} into {dst_path}") as timer:
            try:
                with open(src_path, "rb") as source:
                    file = open_file(source)
                    self._logger.info(
                        "Detected format: %s", file.format.value.upper(),
                        path=str(src_path),
                    )

                    offset, size = find_symbol(file, symbol)
                    previous = read_symbol_bytes(file, offset, size)
                    self._logger.info(
                        "Resolved %s at offset 0x%x (%d bytes)",
                        symbol, offset, size,
                        symbol=symbol, offset=offset, size=size,
                    )

                    current = expected_bytes(size)
                    check: Optional[Callable[[Path], None]] = None
                    if self._config.imprint.verify_output:
                        check = partial(
                            self._verify,
                            symbol=symbol, offset=offset, size=size, expected=current,
                        )

                    self._write_output(
                        src_path, dst_path, lambda sink: patch(file, sink), check
                    )
            except Exception as exc:
                self._logger.error(
                    "Failed to stamp %s in %s: %s", symbol, src_path, exc,
                    symbol=symbol, error=type(exc).__name__,
                )
                raise

            return InjectionResult(
                input_path=str(src_path),
                output_path=str(dst_path),
                format=file.format,
                symbol=symbol,
                offset=offset,
                size=size,
                previous=previous,
                current=current,
                verified=check is not None,
                duration_seconds=timer.elapsed,
            )

    def _write_output(
        self,
        input_path: Path,
        output_path: Path,
        write: Callable[[BinaryIO], None],
        check: Optional[Callable[[Path], None]],
    ) -> None:
        """Write the output through *write*, then *check* it before committing."""
        cfg = self._config.imprint
        self._logger.debug(
            "Writing %s (buffer %d bytes, atomic=%s, verify=%s)",
            output_path, cfg.copy_buffer_size, cfg.atomic_output, check is not None,
        )

        if not cfg.atomic_output:
            if output_path.exists() and output_path.samefile(input_path):
                raise ValueError(
                    "patching a file in place requires atomic output"
                )
            try:
                with open(output_path, "wb") as sink:
                    write(sink)
                if check is not None:
                    check(output_path)
            except BaseException:
                output_path.unlink(missing_ok=True)
                raise
            if cfg.preserve_mode:
                shutil.copymode(input_path, output_path)
            return

        fd, tmp_name = tempfile.mkstemp(
            dir=output_path.parent,
            prefix=f".{output_path.name}.",
            suffix=".tmp",
        )
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, "wb") as sink:
                write(sink)
            if check is not None:
                check(tmp_path)
            if cfg.preserve_mode:
                shutil.copymode(input_path, tmp_path)
            os.replace(tmp_path, output_path)
        except BaseException:
            tmp_path.unlink(missing_ok=True)
            raise
        self._logger.debug("Renamed %s -> %s", tmp_path, output_path)

    def _verify(
        self, path: Path, symbol: str, offset: int, size: int, expected: bytes
    ) -> None:
        """Re-parse *path* and confirm *symbol* now holds *expected*."""
        with open(path, "rb") as source:
            file = open_file(source)
            new_offset, new_size = find_symbol(file, symbol)
            if (new_offset, new_size) != (offset, size):
                raise VerificationError(
                    f"symbol {symbol!r} moved from 0x{offset:x}/{size} to "
                    f"0x{new_offset:x}/{new_size} in the output"
                )
            actual = read_symbol_bytes(file, offset, size)
        if actual != expected:
            raise VerificationError(
                f"output contains {actual!r} for {symbol!r}, expected {expected!r}"
            )
        self._logger.debug("Verified %s in %s", symbol, path)
