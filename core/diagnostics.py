"""Diagnostics routines for the core subsystem."""

from __future__ import annotations

import importlib.util

from diagnostics.models import DiagnosticResult, DiagnosticStatus


def probe(timeout_s: float = 1.0) -> DiagnosticResult:
    """Run a core probe to validate logging and the serial dispatcher.

    Returns:
        Diagnostic result indicating core readiness.
    """

    name = "core"
    from core import logging as core_logging
    from core.dispatch import SerialDispatcher

    logger = core_logging.logger
    if logger is None:
        return DiagnosticResult(
            name=name,
            status=DiagnosticStatus.FAIL,
            details="Core logger failed to initialize",
        )

    ran: list[bool] = []
    dispatcher = SerialDispatcher(name="signwatch-dispatch-probe")
    dispatcher.start()
    dispatcher.submit(ran.append, True)
    dispatcher.stop(timeout_s=timeout_s)
    if not ran:
        return DiagnosticResult(
            name=name,
            status=DiagnosticStatus.FAIL,
            details="Serial dispatcher did not run a queued task",
        )

    rich_available = importlib.util.find_spec("rich") is not None
    details = "Rich logging enabled" if rich_available else "Rich logging not available (fallback)"
    return DiagnosticResult(
        name=name,
        status=DiagnosticStatus.PASS,
        details=f"{details}; dispatcher ok",
    )
