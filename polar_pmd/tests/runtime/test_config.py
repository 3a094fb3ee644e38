from __future__ import annotations

import shutil
from pathlib import Path

import pytest

from polar_pmd.config import PmdConfig, load_protocol
from polar_pmd.errors import ConfigError
from polar_pmd.protocol.core.defs import DEFINITIONS_DIR, default_protocol


def test_defaults():
    cfg = PmdConfig()
    assert cfg.protocol_dir is None
    assert cfg.cmd_timeout_s > 0
    assert cfg.event_queue_size >= 1


@pytest.mark.parametrize("kwargs", [
    {"cmd_timeout_s": 0},
    {"event_queue_size": 0},
    {"start_timeout_s": -1},
])
def test_invalid_values_rejected(kwargs):
    with pytest.raises(ConfigError):
        PmdConfig(**kwargs)


def test_load_protocol_default_is_bundled():
    assert load_protocol() is default_protocol()


def test_load_protocol_from_dir(tmp_path: Path):
    d = tmp_path / "defs"
    shutil.copytree(DEFINITIONS_DIR, d)

    proto = load_protocol(d)
    assert proto.version == 1
    assert proto is not default_protocol()


def test_load_protocol_missing_dir_is_config_error(tmp_path: Path):
    with pytest.raises(ConfigError) as ei:
        load_protocol(tmp_path / "nope")
    assert ei.value.code == "config_error"
    assert ei.value.hint


def test_load_protocol_bad_yaml_is_config_error(tmp_path: Path):
    d = tmp_path / "defs"
    shutil.copytree(DEFINITIONS_DIR, d)
    (d / "settings.yml").write_text("settings: [unclosed\n", encoding="utf-8")

    with pytest.raises(ConfigError):
        load_protocol(d)
