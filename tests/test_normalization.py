"""Tests for speed-limit text normalization."""

from __future__ import annotations

import pytest

from vision.detections import TextCandidate
from vision.normalization import (
    VALID_SPEED_LIMITS,
    NormalizationEngine,
    NormalizationSettings,
    double_zero_means_hundred,
    normalize,
)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("6O", "60"),
        ("4", "40"),
        ("900", "100"),
        ("1OO", "100"),
        ("l20", "120"),
        ("S0", "50"),
        ("5", "5"),
        ("8", "80"),
    ],
)
def test_normalize_corrects_common_misreads(raw: str, expected: str) -> None:
    assert normalize(raw) == expected


@pytest.mark.parametrize("raw", ["60,", "30m", "t50", "", "65", "abc", "7x"])
def test_normalize_rejects_invalid_text(raw: str) -> None:
    assert normalize(raw) is None


def test_every_valid_token_normalizes_to_itself() -> None:
    engine = NormalizationEngine()

    assert [engine.normalize(token) for token in VALID_SPEED_LIMITS] == list(VALID_SPEED_LIMITS)


def test_forbidden_characters_reject_before_substitution() -> None:
    engine = NormalizationEngine(NormalizationSettings(forbidden_characters=("O",)))

    assert engine.normalize("6O") is None
    assert engine.normalize("60") == "60"


def test_double_zero_correction() -> None:
    assert double_zero_means_hundred("900") == "100"
    assert double_zero_means_hundred("90") == "90"


def test_corrections_can_be_disabled_from_config() -> None:
    settings = NormalizationSettings.from_config({"double_zero_means_hundred": False})
    engine = NormalizationEngine(settings)

    assert settings.corrections == ()
    assert engine.normalize("900") is None


def test_from_config_reads_tables() -> None:
    settings = NormalizationSettings.from_config(
        {
            "forbidden_characters": ["x"],
            "confusions": {"0": ["o"]},
            "shorthand": {"3": "30"},
            "valid_tokens": ["30", "50"],
            "minimum_text_height": 0.2,
        }
    )
    engine = NormalizationEngine(settings)

    assert settings.minimum_text_height == 0.2
    assert engine.normalize("3") == "30"
    assert engine.normalize("5o") == "50"
    assert engine.normalize("60") is None
    assert engine.normalize("x30") is None


def test_settings_reject_bad_tables() -> None:
    with pytest.raises(ValueError):
        NormalizationSettings(confusions={"10": ("x",)})
    with pytest.raises(ValueError):
        NormalizationSettings(confusions={"0": ("",)})
    with pytest.raises(ValueError):
        NormalizationSettings(shorthand={"4": "45"})
    with pytest.raises(ValueError):
        NormalizationSettings(valid_tokens=())


def test_normalize_candidate_applies_confidence_gate() -> None:
    engine = NormalizationEngine()

    assert engine.normalize_candidate(TextCandidate("6O", 0.9), 0.6) == "60"
    assert engine.normalize_candidate(TextCandidate("60", 0.59), 0.6) is None
    assert engine.normalize_candidate(TextCandidate("60", 0.6), 0.6) == "60"
    assert engine.normalize_candidate(None, 0.6) is None
