"""Diagnostics routines for the vision subsystem."""

from __future__ import annotations

import importlib.util
from typing import Any, Mapping

from diagnostics.models import DiagnosticResult, DiagnosticStatus


def probe(section: Mapping[str, Any] | None = None) -> DiagnosticResult:
    """Check numpy availability and the consistency of normalization tables.

    Args:
        section: Optional ``normalization`` config section for offline testing.

    Returns:
        Diagnostic result indicating vision readiness.
    """

    name = "vision"
    if importlib.util.find_spec("numpy") is None:
        return DiagnosticResult(
            name=name,
            status=DiagnosticStatus.FAIL,
            details="numpy is required for frame cropping",
        )

    from vision.normalization import NormalizationEngine, NormalizationSettings

    try:
        settings = NormalizationSettings.from_config(section)
    except (TypeError, ValueError) as exc:
        return DiagnosticResult(
            name=name,
            status=DiagnosticStatus.FAIL,
            details=f"Invalid normalization tables: {exc}",
        )

    engine = NormalizationEngine(settings)
    unstable = [token for token in settings.valid_tokens if engine.normalize(token) != token]
    if unstable:
        return DiagnosticResult(
            name=name,
            status=DiagnosticStatus.WARN,
            details=f"Valid tokens rewritten by corrections: {', '.join(unstable)}",
        )

    return DiagnosticResult(
        name=name,
        status=DiagnosticStatus.PASS,
        details=f"{len(settings.valid_tokens)} valid tokens, {len(settings.confusions)} confusion entries",
    )
