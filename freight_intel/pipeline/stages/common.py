"""Shared helpers for stage implementations.

Deterministic text utilities used by several stages: confidence
normalization, sentence splitting and rate-figure detection.
"""

import re
from dataclasses import dataclass
from typing import Optional

from freight_intel.models.outputs import SpeakerRoleMap
from freight_intel.pipeline.context import ContextView


def to_score(value: Optional[float]) -> int:
    """Normalize a model confidence (0-1 or 0-100) to an int on 0-100."""
    if value is None:
        return 0
    if 0 < value <= 1:
        value = value * 100
    return max(0, min(100, int(round(value))))


def clamp(value: float, low: int = 0, high: int = 100) -> int:
    return max(low, min(high, int(round(value))))


def clean_str(value: Optional[str]) -> Optional[str]:
    """Strip whitespace; map empty and placeholder strings to None."""
    if value is None:
        return None
    value = str(value).strip()
    if not value or value.lower() in {"null", "none", "n/a", "unknown", "not mentioned"}:
        return None
    return value


def digits_only(value: Optional[str]) -> str:
    return re.sub(r"\D", "", value or "")


_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")
_CLAUSE_SPLIT = re.compile(r"[;:!?]|[.,](?!\d)|\s+(?:but|and|so)\s+", re.IGNORECASE)


def split_sentences(text: str) -> list[str]:
    return [s.strip() for s in _SENTENCE_SPLIT.split(text) if s.strip()]


def split_clauses(text: str) -> list[str]:
    return [c.strip() for c in _CLAUSE_SPLIT.split(text) if c and c.strip()]


def contains_any(text: str, phrases: tuple[str, ...]) -> Optional[str]:
    """Return the first phrase found in ``text`` (case-insensitive, word-bounded)."""
    lowered = text.lower()
    for phrase in phrases:
        if re.search(r"(?<![a-z])" + re.escape(phrase) + r"(?![a-z])", lowered):
            return phrase
    return None


def speaker_roles_summary(view: ContextView) -> str:
    """Compact label -> role listing for prompts."""
    speakers = view.output("speaker_identification") if "speaker_identification" in view.dependencies else None
    if not isinstance(speakers, SpeakerRoleMap) or not speakers.assignments:
        return "not identified"
    return ", ".join(f"{a.label}={a.role.value}" for a in speakers.assignments)


def transcript_for_prompt(view: ContextView) -> str:
    return view.transcript.excerpt(view.settings.max_transcript_chars)


# =============================================================================
# Rate figure detection
# =============================================================================

@dataclass(frozen=True)
class RateFigure:
    """A money figure found in an utterance."""
    amount: float
    rate_type: str  # "flat" or "per_mile"
    start: int
    text: str


_DOLLAR = re.compile(
    r"\$\s?(?P<num>\d{1,3}(?:,\d{3})+|\d+)(?:\.(?P<cents>\d{1,2}))?(?P<k>\s?k\b)?",
    re.IGNORECASE,
)
_GROUPED_OR_WORDED = re.compile(
    r"\b(?P<num>\d{1,3}(?:,\d{3})+|\d{3,5})(?:\.(?P<cents>\d{1,2}))?\b"
    r"(?=\s*(?P<unit>dollars|bucks|all[\s-]in|flat)?)",
    re.IGNORECASE,
)
_PER_MILE_AFTER = re.compile(r"^\s*(?:a|per|/)\s*mile", re.IGNORECASE)
_NON_MONEY_AFTER = re.compile(
    r"^\s*(?:lbs?|pounds?|tons?|kg|miles?|mi\b|pallets?|skids?|feet|foot|ft|degrees?|hours?|hrs?|"
    r"minutes?|am\b|pm\b|o'?clock|cases?|pieces?|units?)",
    re.IGNORECASE,
)
_NON_MONEY_BEFORE = re.compile(
    r"(?:mc|dot|number|no\.?|#|load|reference|ref|po|pro|zip|truck|trailer|unit|suite|exit|highway|"
    r"interstate|i-|route|phone|extension|ext\.?)\s*(?:is|number|#)?\s*$",
    re.IGNORECASE,
)
# Bare figures only count when the utterance talks about money
RATE_CUES = (
    "rate", "pay", "paying", "offer", "how about", "can you do", "could you do", "can do",
    "i need", "need at least", "best i can", "meet me", "come up", "go up", "bump",
    "all in", "all-in", "flat", "budget", "tops", "for it", "on it", "on this one",
)

MIN_FLAT_RATE = 100.0
MAX_FLAT_RATE = 25000.0
MAX_PER_MILE_RATE = 20.0


def _amount(match: re.Match) -> float:
    value = float(match.group("num").replace(",", ""))
    cents = match.groupdict().get("cents")
    if cents:
        value += float(f"0.{cents}")
    if match.groupdict().get("k"):
        value *= 1000
    return value


def find_rate_figures(text: str) -> list[RateFigure]:
    """Find money figures in one utterance, in order of appearance.

    Dollar-prefixed amounts always count. Comma-grouped or bare 3-5 digit
    numbers count when followed by a money word, or when the utterance uses a
    rate cue and the number is not an identifier, a weight or a distance.
    """
    figures: list[RateFigure] = []
    taken: list[tuple[int, int]] = []

    for match in _DOLLAR.finditer(text):
        amount = _amount(match)
        after = text[match.end():]
        if _PER_MILE_AFTER.match(after) and 0 < amount < MAX_PER_MILE_RATE:
            figures.append(RateFigure(amount, "per_mile", match.start(), match.group(0)))
        elif MIN_FLAT_RATE <= amount <= MAX_FLAT_RATE:
            figures.append(RateFigure(amount, "flat", match.start(), match.group(0)))
        taken.append(match.span())

    has_cue = contains_any(text, RATE_CUES) is not None
    for match in _GROUPED_OR_WORDED.finditer(text):
        if any(start <= match.start() < end for start, end in taken):
            continue
        before = text[:match.start()]
        after = text[match.end():]
        if _NON_MONEY_BEFORE.search(before) or _NON_MONEY_AFTER.match(after):
            continue
        if not (match.group("unit") or has_cue):
            continue
        amount = _amount(match)
        if MIN_FLAT_RATE <= amount <= MAX_FLAT_RATE:
            figures.append(RateFigure(amount, "flat", match.start(), match.group(0)))

    figures.sort(key=lambda f: f.start)
    return figures
