"""Command-line entry point for running diagnostics."""

from __future__ import annotations

import argparse
from pathlib import Path
import tempfile
from typing import Any

import yaml

from config.controller import ConfigController
from config.diagnostics import probe as config_probe
from core.diagnostics import probe as core_probe
from diagnostics.models import DiagnosticResult
from diagnostics.runner import format_results, run_diagnostics
from vision.diagnostics import probe as vision_probe


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""

    parser = argparse.ArgumentParser(description="Run signwatch diagnostics probes.")
    parser.add_argument(
        "--offline",
        action="store_true",
        help="Run probes against a temporary offline directory.",
    )
    parser.add_argument(
        "--base-dir",
        type=Path,
        default=None,
        help="Optional base directory containing the config folder.",
    )
    return parser.parse_args(argv)


def _normalization_section(config_dir: Path) -> dict[str, Any]:
    """Return the loaded ``normalization`` tables, or ``{}`` when no config loads."""

    try:
        if ConfigController._instance is None:
            ConfigController(config_dir=config_dir)
        return ConfigController.get_instance().get_section("normalization")
    except (OSError, ValueError, yaml.YAMLError):
        return {}


def collect(base_dir: Path | None = None, config_dir: Path | None = None) -> list[DiagnosticResult]:
    """Run every subsystem probe against ``base_dir`` or an explicit ``config_dir``."""

    def config_probe_with_base() -> DiagnosticResult:
        return config_probe(base_dir=base_dir, config_dir=config_dir)

    if config_dir is None:
        config_dir = (base_dir if base_dir is not None else Path.cwd()) / "config"

    def vision_probe_with_config() -> DiagnosticResult:
        return vision_probe(section=_normalization_section(config_dir))

    return run_diagnostics([config_probe_with_base, core_probe, vision_probe_with_config])


def main(argv: list[str] | None = None) -> int:
    """Run diagnostics and return an exit code."""

    args = parse_args(argv)
    base_dir = args.base_dir

    if args.offline and base_dir is None:
        with tempfile.TemporaryDirectory() as tmp_dir:
            tmp_base = Path(tmp_dir)
            config_dir = tmp_base / "config"
            config_dir.mkdir(parents=True, exist_ok=True)
            (config_dir / "default.yaml").write_text("{}", encoding="utf-8")
            results = collect(tmp_base)
    else:
        results = collect(base_dir)

    print(format_results(results))
    return 1 if any(result.failed for result in results) else 0


if __name__ == "__main__":
    raise SystemExit(main())
