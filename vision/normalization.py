"""Text normalization for recognized speed-limit sign contents.

Recognizers routinely confuse digits with similar glyphs (``O`` for ``0``,
``l`` for ``1``) and drop trailing zeros on small crops. The engine applies
three ordered passes to a raw string and accepts the result only if it is a
member of the closed set of legal speed-limit tokens:

1. confusion substitution, one replacement pass per table entry;
2. exact-match shorthand expansion (``"4"`` becomes ``"40"``);
3. contextual corrections (any ``"00"`` means ``"100"``).

Validity is pure set membership. No numeric parsing takes place.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Mapping

from core.logging import logger
from vision.detections import TextCandidate

VALID_SPEED_LIMITS: tuple[str, ...] = (
    "5",
    "10",
    "15",
    "20",
    "25",
    "30",
    "40",
    "50",
    "60",
    "70",
    "80",
    "90",
    "100",
    "110",
    "120",
    "130",
)

Correction = Callable[[str], str]


def _default_confusions() -> dict[str, tuple[str, ...]]:
    return {
        "0": ("c", "C", "o", "O", "Q", "U", "()", "(", ")"),
        "1": ("i", "I", "l", "!"),
        "2": ("z", "Z"),
        "5": ("s", "S", "$"),
        "6": ("b", "G"),
        "8": ("B",),
        "9": ("q",),
    }


def _default_shorthand() -> dict[str, str]:
    return {"4": "40", "6": "60", "7": "70", "8": "80", "9": "90"}


def double_zero_means_hundred(text: str) -> str:
    """Collapse anything containing ``"00"`` to ``"100"``."""

    return "100" if "00" in text else text


@dataclass(frozen=True)
class NormalizationSettings:
    """Lookup tables driving the normalization passes."""

    forbidden_characters: tuple[str, ...] = (",", "m", "t")
    confusions: dict[str, tuple[str, ...]] = field(default_factory=_default_confusions)
    shorthand: dict[str, str] = field(default_factory=_default_shorthand)
    corrections: tuple[Correction, ...] = (double_zero_means_hundred,)
    valid_tokens: tuple[str, ...] = VALID_SPEED_LIMITS
    minimum_text_height: float = 0.1

    def __post_init__(self) -> None:
        valid = set(self.valid_tokens)
        if not valid:
            raise ValueError("valid_tokens must not be empty")
        for digit, glyphs in self.confusions.items():
            if len(digit) != 1 or not digit.isdigit():
                raise ValueError(f"confusion key must be a single digit, got {digit!r}")
            if any(not glyph for glyph in glyphs):
                raise ValueError(f"confusion glyphs for {digit!r} must be non-empty strings")
        for source, target in self.shorthand.items():
            if target not in valid:
                raise ValueError(f"shorthand {source!r} expands to invalid token {target!r}")

    @classmethod
    def from_config(cls, section: Mapping[str, Any] | None = None) -> "NormalizationSettings":
        """Build settings from the ``normalization`` configuration section."""

        if section is None:
            try:
                from config import ConfigController

                section = ConfigController.get_instance().get_section("normalization")
            except Exception:
                section = {}

        defaults = cls()
        forbidden = section.get("forbidden_characters")
        confusions = section.get("confusions")
        shorthand = section.get("shorthand")
        valid_tokens = section.get("valid_tokens")

        corrections: tuple[Correction, ...] = defaults.corrections
        if not bool(section.get("double_zero_means_hundred", True)):
            corrections = ()

        return cls(
            forbidden_characters=(
                tuple(str(item) for item in forbidden)
                if isinstance(forbidden, list)
                else defaults.forbidden_characters
            ),
            confusions=(
                {str(key): tuple(str(glyph) for glyph in glyphs) for key, glyphs in confusions.items()}
                if isinstance(confusions, dict)
                else defaults.confusions
            ),
            shorthand=(
                {str(key): str(value) for key, value in shorthand.items()}
                if isinstance(shorthand, dict)
                else defaults.shorthand
            ),
            corrections=corrections,
            valid_tokens=(
                tuple(str(item) for item in valid_tokens)
                if isinstance(valid_tokens, list)
                else defaults.valid_tokens
            ),
            minimum_text_height=float(
                section.get("minimum_text_height", defaults.minimum_text_height)
            ),
        )


class NormalizationEngine:
    """Stateless mapper from raw recognizer text to a validated speed limit."""

    def __init__(self, settings: NormalizationSettings | None = None) -> None:
        self.settings = settings if settings is not None else NormalizationSettings()
        self._valid = frozenset(self.settings.valid_tokens)

    def contains_forbidden(self, raw: str) -> bool:
        return any(character in raw for character in self.settings.forbidden_characters)

    def correct(self, raw: str) -> str:
        """Apply the substitution, expansion and contextual passes."""

        corrected = raw
        for digit, glyphs in self.settings.confusions.items():
            for glyph in glyphs:
                corrected = corrected.replace(glyph, digit)

        expansion = self.settings.shorthand.get(corrected)
        if expansion is not None:
            corrected = expansion

        for correction in self.settings.corrections:
            corrected = correction(corrected)
        return corrected

    def normalize(self, raw: str) -> str | None:
        """Return the validated token for ``raw`` or ``None`` when rejected."""

        if self.contains_forbidden(raw):
            return None
        corrected = self.correct(raw)
        if corrected not in self._valid:
            return None
        return corrected

    def normalize_candidate(
        self,
        candidate: TextCandidate | None,
        confidence_threshold: float,
    ) -> str | None:
        """Gate a recognizer candidate on confidence, then normalize its text."""

        if candidate is None:
            return None
        if candidate.confidence < confidence_threshold:
            logger.debug(
                "[NORMALIZE] Rejected %r (confidence %.2f < %.2f)",
                candidate.text,
                candidate.confidence,
                confidence_threshold,
            )
            return None
        result = self.normalize(candidate.text)
        logger.debug("[NORMALIZE] %r -> %s", candidate.text, result)
        return result


_default_engine: NormalizationEngine | None = None


def normalize(raw: str) -> str | None:
    """Normalize ``raw`` with the default tables."""

    global _default_engine

    if _default_engine is None:
        _default_engine = NormalizationEngine()
    return _default_engine.normalize(raw)
