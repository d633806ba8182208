"""Tests for YAML configuration loading and the derived settings objects."""

from __future__ import annotations

from pathlib import Path

import pytest

from config.controller import ConfigController
from services.speed_limit import SpeedLimitSettings
from vision.detector_state import DetectorSettings
from vision.normalization import NormalizationSettings


def _write_config(tmp_path: Path, default: str, override: str | None = None) -> Path:
    config_dir = tmp_path / "config"
    config_dir.mkdir(parents=True, exist_ok=True)
    (config_dir / "default.yaml").write_text(default, encoding="utf-8")
    if override is not None:
        (config_dir / "override.yaml").write_text(override, encoding="utf-8")
    return config_dir


@pytest.fixture(autouse=True)
def _reset_config_singleton():
    ConfigController._instance = None
    yield
    ConfigController._instance = None


def test_override_is_deep_merged_and_normalized(tmp_path: Path, monkeypatch) -> None:
    _write_config(
        tmp_path,
        "\n".join(
            [
                "detector:",
                "  detection_confidence_threshold: 0.6",
                "  max_recognition_attempts: 10",
                "speed_limit:",
                "  validity_duration_s: 180",
            ]
        ),
        override="\n".join(
            [
                "detector:",
                "  max_recognition_attempts: '5'",
                "speed_limit:",
                "  validity_duration_s: 60",
            ]
        ),
    )
    monkeypatch.chdir(tmp_path)

    config = ConfigController.get_instance().get_config()

    assert config["detector"]["detection_confidence_threshold"] == 0.6
    assert config["detector"]["max_recognition_attempts"] == 5
    assert config["speed_limit"]["validity_duration_s"] == 60.0
    assert config["providers"] == {}
    assert config["logging_level"] == "INFO"
    assert config["file_logging_enabled"] is False


def test_second_instance_is_rejected(tmp_path: Path) -> None:
    config_dir = _write_config(tmp_path, "{}")

    ConfigController(config_dir=config_dir)

    with pytest.raises(RuntimeError):
        ConfigController(config_dir=config_dir)


def test_loading_is_read_only_and_sections_are_copies(tmp_path: Path) -> None:
    config_dir = _write_config(tmp_path, "runtime:\n  perception_workers: 2\n", override="logging_level: DEBUG\n")
    before = sorted(path.name for path in config_dir.iterdir())

    controller = ConfigController(config_dir=config_dir)
    controller.get_section("runtime")["perception_workers"] = 99

    assert sorted(path.name for path in config_dir.iterdir()) == before
    assert controller.get_section("runtime") == {"perception_workers": 2}
    assert controller.get_config()["logging_level"] == "DEBUG"
    assert not hasattr(controller, "save_config")


def test_settings_read_their_sections(tmp_path: Path) -> None:
    config_dir = _write_config(
        tmp_path,
        "\n".join(
            [
                "detector:",
                "  escape_margin: 0.05",
                "  sleep_duration_s: 1",
                "normalization:",
                "  valid_tokens: ['30', '50']",
                "  shorthand: {}",
                "speed_limit:",
                "  validity_duration_s: 90",
            ]
        ),
    )
    ConfigController(config_dir=config_dir)

    detector = DetectorSettings.from_config()
    normalization = NormalizationSettings.from_config()
    speed_limit = SpeedLimitSettings.from_config()

    assert detector.escape_margin == 0.05
    assert detector.sleep_duration_s == 1.0
    assert detector.max_recognition_attempts == 10
    assert normalization.valid_tokens == ("30", "50")
    assert speed_limit.validity_duration_s == 90.0
    assert speed_limit.valid_tokens == ("30", "50")


def test_settings_fall_back_to_defaults_without_config(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)

    assert DetectorSettings.from_config() == DetectorSettings()
    assert SpeedLimitSettings.from_config() == SpeedLimitSettings()


def test_detector_settings_validate_ranges() -> None:
    with pytest.raises(ValueError):
        DetectorSettings(max_recognition_attempts=0)
    with pytest.raises(ValueError):
        DetectorSettings(escape_margin=0.5)


def test_shipped_default_config_loads() -> None:
    config_dir = Path(__file__).resolve().parents[1] / "config"
    controller = ConfigController(config_dir=config_dir)

    assert DetectorSettings.from_config(controller.get_section("detector")) == DetectorSettings()
    assert SpeedLimitSettings.from_config(controller.get_config()).validity_duration_s == 180.0
    normalization = NormalizationSettings.from_config(controller.get_section("normalization"))
    assert normalization.minimum_text_height == 0.1
    assert normalization.shorthand["4"] == "40"
