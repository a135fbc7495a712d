from __future__ import annotations

import pytest

from shared import get_config
from shared.config import ImprintConfig


def test_defaults():
    config = ImprintConfig()
    assert config.imprint.copy_buffer_size == 65536
    assert config.imprint.atomic_output is True
    assert config.imprint.verify_output is True
    assert config.global_settings.log_level == "INFO"


def test_load_overrides_and_ignores_unknown_keys(tmp_path):
    path = tmp_path / "config.toml"
    path.write_text(
        "[global]\n"
        'log_level = "DEBUG"\n'
        "[imprint]\n"
        "copy_buffer_size = 4096\n"
        "verify_output = false\n"
        "unknown_key = 1\n"
    )
    config = ImprintConfig.load(path)
    assert config.global_settings.log_level == "DEBUG"
    assert config.imprint.copy_buffer_size == 4096
    assert config.imprint.verify_output is False
    assert config.imprint.atomic_output is True


def test_explicit_missing_path_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        ImprintConfig.load(tmp_path / "absent.toml")


def test_invalid_toml_raises(tmp_path):
    path = tmp_path / "bad.toml"
    path.write_text("[imprint\n")
    with pytest.raises(ValueError):
        ImprintConfig.load(path)


def test_to_dict():
    data = ImprintConfig().to_dict()
    assert data["imprint"]["preserve_mode"] is True
    assert data["global_settings"]["log_json"] is False


def test_get_config_caches_loaded_file(tmp_path):
    path = tmp_path / "cached.toml"
    path.write_text("[imprint]\ncopy_buffer_size = 1024\n")
    loaded = get_config(path)
    assert loaded.imprint.copy_buffer_size == 1024
    assert get_config() is loaded


def test_environment_variable_names_the_file(tmp_path, monkeypatch):
    path = tmp_path / "env.toml"
    path.write_text("[imprint]\natomic_output = false\n")
    monkeypatch.setenv("IMPRINT_CONFIG", str(path))
    assert ImprintConfig.load().imprint.atomic_output is False


def test_environment_variable_pointing_nowhere(tmp_path, monkeypatch):
    monkeypatch.setenv("IMPRINT_CONFIG", str(tmp_path / "gone.toml"))
    with pytest.raises(FileNotFoundError):
        ImprintConfig.load()


@pytest.mark.parametrize(
    "text",
    [
        "[imprint]\ncopy_buffer_size = 0\n",
        '[imprint]\ncopy_buffer_size = "big"\n',
        '[global]\nlog_level = "LOUD"\n',
    ],
)
def test_invalid_values(tmp_path, text):
    path = tmp_path / "invalid.toml"
    path.write_text(text)
    with pytest.raises(ValueError):
        ImprintConfig.load(path)


def test_log_level_is_normalised(tmp_path):
    path = tmp_path / "level.toml"
    path.write_text('[global]\nlog_level = "debug"\n')
    assert ImprintConfig.load(path).global_settings.log_level == "DEBUG"
