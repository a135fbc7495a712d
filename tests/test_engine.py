from __future__ import annotations

import io
import os
import stat
import struct

import pytest

from shared.config import ImprintConfig
from shared.logger import ImprintLogger

from imprint.core import engine as engine_module
from imprint.core.engine import ImprintEngine
from imprint.core.errors import (
    NotThisFormatError,
    PriorValueMismatchError,
    SymbolNotFoundError,
    SymbolTypeMismatchError,
    ValueOverflowError,
    VerificationError,
)
from imprint.core.models import BinaryFormat
from imprint.core.patcher import copy_and_inject
from tests.binaries import ELF_DATA_OFFSET, ElfSym, MachSym, MACHO_SECT_ADDR, build_elf, build_macho

DATA = b"PLACEHOLDER\x00\x00\x00\x00\x00" + struct.pack("<Q", 1)
SYMBOLS = [ElfSym("build_id", 0, 16), ElfSym("build_time", 16, 8)]


def _engine(**overrides) -> ImprintEngine:
    config = ImprintConfig()
    for key, value in overrides.items():
        setattr(config.imprint, key, value)
    return ImprintEngine(config=config, logger=ImprintLogger("test", console_output=False))


@pytest.fixture
def binary(tmp_path):
    path = tmp_path / "app.o"
    path.write_bytes(build_elf(SYMBOLS, DATA))
    os.chmod(path, 0o750)
    return path


def test_inject_string_writes_patched_copy(binary, tmp_path):
    out = tmp_path / "app.stamped.o"
    result = _engine().inject_string(binary, out, "build_id", "20261019", expected_prior="PLACEHOLDER")

    original = binary.read_bytes()
    patched = out.read_bytes()
    assert len(patched) == len(original)
    assert patched[ELF_DATA_OFFSET:ELF_DATA_OFFSET + 16] == b"20261019" + b"\x00" * 8
    assert patched[:ELF_DATA_OFFSET] == original[:ELF_DATA_OFFSET]
    assert patched[ELF_DATA_OFFSET + 16:] == original[ELF_DATA_OFFSET + 16:]

    assert result.format is BinaryFormat.ELF
    assert result.offset == ELF_DATA_OFFSET
    assert result.size == 16
    assert result.previous == b"PLACEHOLDER" + b"\x00" * 5
    assert result.current == b"20261019" + b"\x00" * 8
    assert result.verified is True
    assert result.changed is True


def test_inject_uint64(binary, tmp_path):
    out = tmp_path / "out.o"
    result = _engine().inject_uint64(binary, out, "build_time", 0x6530D2C0)
    start = ELF_DATA_OFFSET + 16
    assert out.read_bytes()[start:start + 8] == struct.pack("<Q", 0x6530D2C0)
    assert result.previous == struct.pack("<Q", 1)


def test_in_place_injection(binary):
    _engine().inject_string(binary, binary, "build_id", "v2")
    assert binary.read_bytes()[ELF_DATA_OFFSET:ELF_DATA_OFFSET + 3] == b"v2\x00"
    assert [p.name for p in binary.parent.iterdir()] == ["app.o"]


def test_permissions_are_preserved(binary, tmp_path):
    out = tmp_path / "out.o"
    _engine().inject_string(binary, out, "build_id", "x")
    assert stat.S_IMODE(out.stat().st_mode) == 0o750


@pytest.mark.parametrize(
    "call, error",
    [
        (lambda e, i, o: e.inject_string(i, o, "missing", "x"), SymbolNotFoundError),
        (lambda e, i, o: e.inject_string(i, o, "build_id", "x" * 16), ValueOverflowError),
        (lambda e, i, o: e.inject_string(i, o, "build_id", "x", expected_prior="OTHER"), PriorValueMismatchError),
        (lambda e, i, o: e.inject_uint64(i, o, "build_id", 1), SymbolTypeMismatchError),
    ],
)
def test_failures_leave_no_output(binary, tmp_path, call, error):
    out = tmp_path / "out.o"
    with pytest.raises(error):
        call(_engine(), binary, out)
    assert not out.exists()
    assert sorted(p.name for p in tmp_path.iterdir()) == ["app.o"]


def test_failure_in_place_keeps_input(binary):
    before = binary.read_bytes()
    with pytest.raises(ValueOverflowError):
        _engine().inject_string(binary, binary, "build_id", "y" * 40)
    assert binary.read_bytes() == before


def test_uint64_range_checked_before_reading(binary, tmp_path):
    with pytest.raises(ValueError):
        _engine().inject_uint64(binary, tmp_path / "out.o", "build_time", -5)


def test_non_atomic_output(binary, tmp_path):
    out = tmp_path / "direct.o"
    _engine(atomic_output=False).inject_string(binary, out, "build_id", "direct")
    assert out.read_bytes()[ELF_DATA_OFFSET:ELF_DATA_OFFSET + 7] == b"direct\x00"


def test_non_atomic_output_refuses_in_place(binary):
    with pytest.raises(ValueError):
        _engine(atomic_output=False).inject_string(binary, binary, "build_id", "x")


def test_verification_can_be_disabled(binary, tmp_path):
    result = _engine(verify_output=False).inject_string(binary, tmp_path / "o", "build_id", "x")
    assert result.verified is False


def test_reinjecting_reports_unchanged(binary):
    engine = _engine()
    engine.inject_string(binary, binary, "build_id", "same")
    result = engine.inject_string(binary, binary, "build_id", "same")
    assert result.changed is False


def test_unrecognised_file(tmp_path):
    path = tmp_path / "notes.txt"
    path.write_bytes(b"just some text, long enough for every header probe" * 2)
    with pytest.raises(NotThisFormatError):
        _engine().inject_string(path, tmp_path / "out", "x", "y")
    assert not (tmp_path / "out").exists()


def test_inspect_and_dump(tmp_path):
    path = tmp_path / "lib.dylib"
    path.write_bytes(build_macho([MachSym("_tag", MACHO_SECT_ADDR)], DATA))
    engine = _engine()

    f = engine.inspect(path)
    assert f.format is BinaryFormat.MACHO
    assert f.symbols[0].name == "tag"

    out = io.StringIO()
    engine.dump(path, out)
    assert out.getvalue().splitlines()[1] == "tag\t0x0\t0\t__DATA,__data"


def test_verification_failure_discards_output(binary, tmp_path, monkeypatch):
    def copy_unchanged(file, sink, symbol, value, **kwargs):
        copy_and_inject(file.source, sink, 0, b"")

    monkeypatch.setattr(engine_module, "inject_string_symbol", copy_unchanged)
    out = tmp_path / "out.o"
    with pytest.raises(VerificationError):
        _engine().inject_string(binary, out, "build_id", "new")
    assert not out.exists()
