"""Tests for the command-line entry point."""

from __future__ import annotations

from pathlib import Path
import time
from unittest.mock import Mock, patch

import pytest

from conftest import FakeScheduler, ScriptedDetector, ScriptedRecognizer, ScriptedTracker, make_frame, reading, sign
from core.app import SignReaderRuntime
import main
from config.controller import ConfigController
from diagnostics.models import DiagnosticResult, DiagnosticStatus


@pytest.fixture(autouse=True)
def _reset_config_singleton():
    ConfigController._instance = None
    yield
    ConfigController._instance = None


def _config_dir(tmp_path: Path, providers: str) -> Path:
    config_dir = tmp_path / "config"
    config_dir.mkdir(parents=True, exist_ok=True)
    (config_dir / "default.yaml").write_text(
        "logging_level: DEBUG\nproviders:\n" + providers,
        encoding="utf-8",
    )
    return config_dir


def test_diagnostics_flag_reports_failures(capsys) -> None:
    results = [DiagnosticResult(name="config", status=DiagnosticStatus.FAIL, details="missing")]

    with patch("diagnostics.run.collect", return_value=results):
        exit_code = main.main(["--diagnostics"])

    assert exit_code == 1
    assert "[FAIL] config: missing" in capsys.readouterr().out


def test_missing_frame_source_is_an_error(tmp_path: Path) -> None:
    config_dir = _config_dir(tmp_path, "  frame_source: null\n")

    assert main.main(["--config", str(config_dir)]) == 1


def test_main_runs_configured_frame_source(tmp_path: Path) -> None:
    config_dir = _config_dir(
        tmp_path,
        "  frame_source: sources:frames\n  detector: a:b\n  tracker: a:b\n  recognizer: a:b\n",
    )
    runtime = Mock()
    frames = [object(), object()]

    with patch("main.SignReaderRuntime.from_config", return_value=runtime) as from_config, patch(
        "main.load_provider", return_value=frames
    ) as load_provider, patch("main.run_frames", return_value=2) as run_frames:
        exit_code = main.main(["--config", str(config_dir), "--log-level", "WARNING"])

    assert exit_code == 0
    assert from_config.call_args.args[0]["logging_level"] == "DEBUG"
    load_provider.assert_called_once_with("sources:frames")
    run_frames.assert_called_once_with(runtime, frames)


def test_provider_load_failure_exits_cleanly(tmp_path: Path) -> None:
    config_dir = _config_dir(tmp_path, "  frame_source: sources:frames\n")

    with patch("main.SignReaderRuntime.from_config", side_effect=RuntimeError("no detector")):
        assert main.main(["--config", str(config_dir)]) == 1


def test_as_frame_wraps_arrays() -> None:
    np = pytest.importorskip("numpy")

    frame = main._as_frame(np.zeros((4, 6)), 7)

    assert (frame.width, frame.height, frame.frame_id) == (6, 4, 7)
    assert main._as_frame(frame, 8) is frame


class SlowDetector(ScriptedDetector):
    def detect(self, frame):
        time.sleep(0.05)
        return [sign()]


class SixtyRecognizer(ScriptedRecognizer):
    def recognize(self, image, hints):
        return reading("6O")


def test_run_frames_finishes_in_flight_calls_before_stopping() -> None:
    runtime = SignReaderRuntime(
        SlowDetector(),
        ScriptedTracker(),
        SixtyRecognizer(),
        scheduler=FakeScheduler(),
    )

    count = main.run_frames(runtime, [make_frame() for _ in range(30)])

    status = runtime.get_status()
    assert count == 30
    assert status["phase"] == "tracking"
    assert status["upcoming_speed_limit"] == "60"
    assert not runtime.dispatcher.is_running()
