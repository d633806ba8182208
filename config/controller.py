"""Configuration controller for YAML-based settings."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml


@dataclass(frozen=True)
class ConfigPaths:
    """Filesystem paths for configuration files."""

    config_dir: Path
    config_file: Path
    override_file: Path


class ConfigController:
    """Singleton controller for loading and updating configuration."""

    _instance: "ConfigController | None" = None

    def __init__(self, config_file: str = "default.yaml", config_dir: Path | None = None) -> None:
        if ConfigController._instance is not None:
            raise RuntimeError("You cannot create another ConfigController class")

        config_dir = config_dir if config_dir is not None else Path("config")
        self.paths = ConfigPaths(
            config_dir=config_dir,
            config_file=config_dir / config_file,
            override_file=config_dir / "override.yaml",
        )
        self.config: dict[str, Any] = {}
        self.load_config()
        ConfigController._instance = self

    @classmethod
    def get_instance(cls) -> "ConfigController":
        """Return the singleton instance of the controller."""

        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    def load_config(self) -> None:
        """Load configuration from default and override YAML files."""

        with self.paths.config_file.open("r", encoding="utf-8") as file:
            config = yaml.safe_load(file) or {}

        if self.paths.override_file.exists():
            with self.paths.override_file.open("r", encoding="utf-8") as file:
                override_config = yaml.safe_load(file) or {}
            if override_config:
                config = self._deep_merge(config, override_config)

        self.config = self._normalize_config(config)

    def get_config(self) -> dict[str, Any]:
        """Return the currently loaded configuration."""

        return dict(self.config)

    def get_section(self, name: str) -> dict[str, Any]:
        """Return a copy of one top-level configuration section."""

        section = self.config.get(name) or {}
        return dict(section) if isinstance(section, dict) else {}

    def _deep_merge(self, base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
        """Deep merge dictionaries, overriding base values with override values."""

        merged = dict(base)
        for key, value in override.items():
            if (
                key in merged
                and isinstance(merged[key], dict)
                and isinstance(value, dict)
            ):
                merged[key] = self._deep_merge(merged[key], value)
            else:
                merged[key] = value
        return merged

    def _normalize_config(self, config: dict[str, Any]) -> dict[str, Any]:
        """Normalize numeric fields and make sure every section is a mapping."""

        normalized = dict(config)
        for section in ("detector", "normalization", "speed_limit", "runtime", "providers"):
            value = normalized.get(section)
            normalized[section] = dict(value) if isinstance(value, dict) else {}

        detector_cfg = normalized["detector"]
        for key in (
            "detection_confidence_threshold",
            "minimum_height",
            "max_aspect_ratio_deviation",
            "tracking_confidence_threshold",
            "escape_margin",
            "recognition_confidence_threshold",
            "sleep_duration_s",
        ):
            if key in detector_cfg:
                detector_cfg[key] = float(detector_cfg[key])
        if "max_recognition_attempts" in detector_cfg:
            detector_cfg["max_recognition_attempts"] = int(detector_cfg["max_recognition_attempts"])

        speed_limit_cfg = normalized["speed_limit"]
        if "validity_duration_s" in speed_limit_cfg:
            speed_limit_cfg["validity_duration_s"] = float(speed_limit_cfg["validity_duration_s"])

        runtime_cfg = normalized["runtime"]
        for key in ("perception_workers", "event_bus_size"):
            if key in runtime_cfg:
                runtime_cfg[key] = int(runtime_cfg[key])

        normalized["logging_level"] = str(normalized.get("logging_level", "INFO"))
        normalized["file_logging_enabled"] = bool(normalized.get("file_logging_enabled", False))
        return normalized
