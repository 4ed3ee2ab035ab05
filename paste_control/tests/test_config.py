"""Tests for the machine config loader.

Validates that:
    - machine.yaml loads with the current schema
    - Structural invariants hold (positive timeouts, odd blur kernel)
    - Missing or invalid values raise ConfigError, never KeyError

Tunable values are not hardcoded so the tests survive config edits.
"""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from paste_control.configs.loader import ConfigError, MachineConfig, load_config


def _write(tmp_path: Path, data: dict) -> Path:
    path = tmp_path / "machine.yaml"
    path.write_text(yaml.safe_dump(data))
    return path


@pytest.fixture()
def raw() -> dict:
    """The shipped YAML as a plain dict, for mutation."""
    path = Path(__file__).resolve().parent.parent / "configs" / "machine.yaml"
    return yaml.safe_load(path.read_text())


class TestDefaultConfig:
    def test_loads(self, config: MachineConfig) -> None:
        assert isinstance(config, MachineConfig)

    def test_timeouts(self, config: MachineConfig) -> None:
        c = config.connection
        assert 0 < c.read_timeout_s <= c.ack_timeout_s

    def test_boot_commands_are_strings(self, config: MachineConfig) -> None:
        assert config.connection.boot_commands
        assert all(isinstance(c, str) for c in config.connection.boot_commands)

    def test_blur_kernel_odd(self, config: MachineConfig) -> None:
        assert config.vision.hough.blur_kernel % 2 == 1

    def test_pairs(self, config: MachineConfig) -> None:
        assert len(config.motion.park_position_mm) == 2
        assert len(config.tip_offset.nominal_offset_mm) == 2

    def test_frozen(self, config: MachineConfig) -> None:
        with pytest.raises(AttributeError):
            config.motion.safe_z_mm = 0.0  # type: ignore[misc]


class TestValidation:
    def test_missing_section(self, tmp_path: Path, raw: dict) -> None:
        del raw["dispense"]
        with pytest.raises(ConfigError, match="dispense"):
            load_config(_write(tmp_path, raw))

    def test_bad_number(self, tmp_path: Path, raw: dict) -> None:
        raw["motion"]["safe_z_mm"] = "high"
        with pytest.raises(ConfigError):
            load_config(_write(tmp_path, raw))

    def test_even_blur_kernel(self, tmp_path: Path, raw: dict) -> None:
        raw["vision"]["hough"]["blur_kernel"] = 8
        with pytest.raises(ConfigError, match="blur_kernel"):
            load_config(_write(tmp_path, raw))

    def test_adaptive_bounds(self, tmp_path: Path, raw: dict) -> None:
        raw["dispense"]["adaptive"]["min_degrees"] = 200
        with pytest.raises(ConfigError, match="adaptive"):
            load_config(_write(tmp_path, raw))

    def test_bad_pair(self, tmp_path: Path, raw: dict) -> None:
        raw["motion"]["datum_position_mm"] = [1.0]
        with pytest.raises(ConfigError):
            load_config(_write(tmp_path, raw))

    def test_unknown_log_level(self, tmp_path: Path, raw: dict) -> None:
        raw["logging"]["level"] = "LOUD"
        with pytest.raises(ConfigError):
            load_config(_write(tmp_path, raw))

    def test_optional_sections_default(self, tmp_path: Path, raw: dict) -> None:
        del raw["tip_offset"]
        del raw["logging"]
        cfg = load_config(_write(tmp_path, raw))
        assert cfg.tip_offset.nominal_offset_mm == (0.0, 0.0)
        assert cfg.logging.level == "INFO"

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.yaml")

    def test_empty_file(self, tmp_path: Path) -> None:
        path = tmp_path / "empty.yaml"
        path.write_text("")
        with pytest.raises(ConfigError):
            load_config(path)
