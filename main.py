"""Command-line entry point for the signwatch runtime."""

from __future__ import annotations

import argparse
from pathlib import Path
import sys
import threading
from typing import Any, Iterable

from config import ConfigController
from core.app import SignReaderRuntime, load_provider
from core.event_bus import EventBus
from core.logging import enable_file_logging, log_output_event, logger, set_level
from vision.detections import Frame


def parse_args(argv: list[str]) -> argparse.Namespace:
    """Parse command-line arguments.

    Args:
        argv: Raw command-line arguments.

    Returns:
        Parsed arguments namespace.
    """

    parser = argparse.ArgumentParser(
        description="Read speed-limit signs from a stream of camera frames."
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Directory holding default.yaml and override.yaml (default: ./config).",
    )
    parser.add_argument(
        "--diagnostics",
        action="store_true",
        help="Run diagnostics probes and exit.",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        help="Override the configured logging level.",
    )
    return parser.parse_args(argv)


def _as_frame(item: Any, index: int) -> Frame:
    if isinstance(item, Frame):
        return item
    return Frame.from_array(item, frame_id=index)


def _consume_events(event_bus: EventBus, stop_event: threading.Event) -> None:
    while not stop_event.is_set():
        event = event_bus.get_next(timeout=0.5)
        if event is None:
            continue
        log_output_event(event.kind.value, event.metadata)


def run_frames(runtime: SignReaderRuntime, frames: Iterable[Any]) -> int:
    """Feed ``frames`` into ``runtime`` until the source is exhausted."""

    stop_event = threading.Event()
    consumer = threading.Thread(
        target=_consume_events,
        args=(runtime.get_event_bus(), stop_event),
        name="signwatch-events",
        daemon=True,
    )
    consumer.start()
    count = 0
    runtime.start()
    try:
        for count, item in enumerate(frames, start=1):
            runtime.submit_frame(_as_frame(item, count))
        runtime.wait_until_idle()
    finally:
        runtime.stop()
        stop_event.set()
        runtime.get_event_bus().notify()
        consumer.join(timeout=2.0)
    logger.info("Processed %d frame(s); status=%s", count, runtime.get_status())
    return count


def main(argv: list[str] | None = None) -> int:
    """Application entry point.

    Args:
        argv: Optional list of command-line arguments.

    Returns:
        Process exit code.
    """

    if argv is None:
        argv = sys.argv[1:]
    args = parse_args(argv)

    if args.diagnostics:
        from diagnostics.run import collect
        from diagnostics.runner import format_results

        results = collect(config_dir=args.config)
        print(format_results(results))
        return 1 if any(result.failed for result in results) else 0

    try:
        if args.config is not None:
            config_controller = ConfigController(config_dir=args.config)
        else:
            config_controller = ConfigController.get_instance()
    except (OSError, ValueError) as exc:
        logger.error("Could not load configuration: %s", exc)
        return 1

    config = config_controller.get_config()
    set_level(args.log_level or config.get("logging_level", "INFO"))
    if config.get("file_logging_enabled", False):
        log_file_path = Path(config.get("log_file", "logs/signwatch.log"))
        enable_file_logging(log_file_path)
        logger.info("Writing logs to %s", log_file_path)

    frame_source_path = (config.get("providers") or {}).get("frame_source")
    if not frame_source_path:
        logger.error("No frame source configured (providers.frame_source)")
        return 1

    try:
        runtime = SignReaderRuntime.from_config(config)
        frames = load_provider(frame_source_path)
    except Exception as exc:
        logger.exception("Runtime startup failed: %s", exc)
        return 1

    try:
        run_frames(runtime, frames)
    except KeyboardInterrupt:
        logger.info("Program terminated by user")
    except Exception as exc:
        logger.exception("An unexpected error occurred: %s", exc)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
