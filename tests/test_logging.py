"""Tests for logger configuration helpers."""

from __future__ import annotations

import logging
from pathlib import Path

from core import logging as core_logging


def test_set_level_accepts_names_and_falls_back_to_info() -> None:
    previous = core_logging.logger.level
    try:
        assert core_logging.set_level("debug") == logging.DEBUG
        assert core_logging.logger.level == logging.DEBUG
        assert core_logging.set_level("chatty") == logging.INFO
    finally:
        core_logging.logger.setLevel(previous)


def test_file_logging_writes_output_events(tmp_path: Path) -> None:
    log_path = tmp_path / "logs" / "signwatch.log"
    previous = core_logging.logger.level
    core_logging.logger.setLevel(logging.INFO)
    try:
        core_logging.enable_file_logging(log_path)
        core_logging.log_output_event("show_speed_limit", {"value": "60"})
        core_logging.log_output_event("observation_rectangle", {"bbox": None})
    finally:
        core_logging.disable_file_logging()
        core_logging.logger.setLevel(previous)

    contents = log_path.read_text(encoding="utf-8")
    assert "show_speed_limit value=60" in contents
    assert "observation_rectangle" not in contents
