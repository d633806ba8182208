"""Diagnostics routines for the configuration subsystem."""

from __future__ import annotations

from pathlib import Path

import yaml

from diagnostics.models import DiagnosticResult, DiagnosticStatus

PROVIDER_NAMES = ("frame_source", "detector", "tracker", "recognizer")


def probe(base_dir: Path | None = None, config_dir: Path | None = None) -> DiagnosticResult:
    """Run a configuration probe to validate config files and providers.

    Args:
        base_dir: Optional base directory for offline testing.
        config_dir: Explicit config directory; overrides ``base_dir``.

    Returns:
        Diagnostic result indicating config readiness.
    """

    name = "config"
    try:
        if config_dir is None:
            root_dir = base_dir if base_dir is not None else Path.cwd()
            config_dir = root_dir / "config"
        default_config = config_dir / "default.yaml"
        override_config = config_dir / "override.yaml"

        if not config_dir.exists():
            return DiagnosticResult(
                name=name,
                status=DiagnosticStatus.FAIL,
                details=f"Config directory missing at {config_dir}",
            )

        if not default_config.exists():
            return DiagnosticResult(
                name=name,
                status=DiagnosticStatus.FAIL,
                details=f"Missing default config at {default_config}",
            )

        config = yaml.safe_load(default_config.read_text(encoding="utf-8")) or {}
        if override_config.exists():
            override = yaml.safe_load(override_config.read_text(encoding="utf-8")) or {}
            providers_override = override.get("providers") if isinstance(override, dict) else None
            if isinstance(providers_override, dict):
                merged = dict(config.get("providers") or {})
                merged.update(providers_override)
                config["providers"] = merged

        providers = config.get("providers") or {}
        missing = [key for key in PROVIDER_NAMES if not providers.get(key)]
        if missing:
            return DiagnosticResult(
                name=name,
                status=DiagnosticStatus.WARN,
                details=f"Providers not configured: {', '.join(missing)}",
            )

        return DiagnosticResult(
            name=name,
            status=DiagnosticStatus.PASS,
            details=f"Config files readable at {config_dir}",
        )
    except (OSError, yaml.YAMLError) as exc:
        return DiagnosticResult(
            name=name,
            status=DiagnosticStatus.FAIL,
            details=f"Config access failed: {exc}",
        )
