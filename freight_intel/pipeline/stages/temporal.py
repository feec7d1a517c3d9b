"""Temporal resolution stage.

Finds date and time references ("tomorrow morning", "next Monday", "12/15",
"end of day") and resolves them to calendar dates against the call date in
the run metadata. A deterministic scan decides every phrase it recognizes;
the model's answer only adds references the scan did not find.

Without a call date, relative references are kept but left unresolved.
"""

import re
from datetime import date, timedelta
from typing import Optional

import structlog
from langchain_core.prompts import ChatPromptTemplate
from rapidfuzz import fuzz, utils

from freight_intel.config.prompts import TEMPORAL_SYSTEM_PROMPT, TEMPORAL_USER_PROMPT
from freight_intel.llm.schemas import TemporalCandidate, TemporalResponse
from freight_intel.models.outputs import TemporalReference, TemporalResolution
from freight_intel.models.transcript import Transcript
from freight_intel.pipeline.context import ContextView
from freight_intel.pipeline.stage import Stage
from freight_intel.pipeline.stages.common import clamp, clean_str, to_score, transcript_for_prompt

logger = structlog.get_logger(__name__)


# =============================================================================
# Patterns
# =============================================================================

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
MONTHS = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}
NUMBER_WORDS = {
    "a": 1, "one": 1, "two": 2, "three": 3, "four": 4, "five": 5,
    "six": 6, "seven": 7, "eight": 8, "nine": 9, "ten": 10,
}

_PATTERNS: tuple[tuple[str, re.Pattern], ...] = (
    ("day_after_tomorrow", re.compile(r"\bday after tomorrow\b", re.I)),
    ("tomorrow", re.compile(r"\btomorrow(?:\s+(?:morning|afternoon|evening|night))?\b", re.I)),
    ("today", re.compile(r"\b(?:today|tonight|this (?:morning|afternoon|evening))\b", re.I)),
    ("yesterday", re.compile(r"\byesterday\b", re.I)),
    ("end_of_day", re.compile(r"\b(?:end of (?:the )?day|eod|close of business)\b", re.I)),
    ("end_of_week", re.compile(r"\bend of (?:the )?week\b", re.I)),
    ("next_week", re.compile(r"\bnext week\b", re.I)),
    ("weekday", re.compile(r"\b(?:(?P<qualifier>next|this|on)\s+)?(?P<day>" + "|".join(WEEKDAYS) + r")\b", re.I)),
    ("in_days", re.compile(r"\bin\s+(?P<count>\d{1,2}|" + "|".join(NUMBER_WORDS) + r")\s+days?\b", re.I)),
    ("numeric", re.compile(r"\b(?P<month>\d{1,2})/(?P<day>\d{1,2})(?:/(?P<year>\d{2}|\d{4}))?\b")),
    ("month_day", re.compile(
        r"\b(?P<month>jan(?:uary)?|feb(?:ruary)?|mar(?:ch)?|apr(?:il)?|may|june?|july?|aug(?:ust)?"
        r"|sep(?:t(?:ember)?)?|oct(?:ober)?|nov(?:ember)?|dec(?:ember)?)\.?\s+"
        r"(?P<day>\d{1,2})(?:st|nd|rd|th)?\b",
        re.I,
    )),
    ("rush", re.compile(r"\b(?:asap|as soon as possible|right away|immediately|urgent(?:ly)?)\b", re.I)),
)
_TIME = re.compile(r"\b(?P<hour>\d{1,2})(?::(?P<minute>\d{2}))?\s*(?P<half>[ap])\.?m\.?(?![a-z])|\b(?P<word>noon|midnight)\b", re.I)
_HHMM = re.compile(r"^(?:[01]\d|2[0-3]):[0-5]\d$")
_SENTENCE_BREAK = re.compile(r"(?<=[.!?])\s+")
_HAS_YEAR = re.compile(r"\d{1,2}/\d{1,2}/\d{2,4}")

CONTEXT_CUES: dict[str, tuple[str, ...]] = {
    "appointment": ("appointment", "appt"),
    "pickup": ("pick up", "pickup", "picks up", "picking up", "pick it up", "load at", "loads at", "loading", "ready"),
    "delivery": ("deliver", "drop", "arrive", "consignee", "receiver"),
    "availability": ("available", "empty", "free up", "open"),
    "deadline": ("deadline", "no later than", "need it by", "need an answer", "by end of"),
}
CONTEXT_WINDOW_CHARS = 60
_CONTEXTS = set(CONTEXT_CUES) | {"other"}

MODEL_DUPLICATE_SIMILARITY = 90


# =============================================================================
# Resolution
# =============================================================================

def _next_weekday(reference: date, weekday: int, allow_today: bool) -> date:
    ahead = (weekday - reference.weekday()) % 7
    if ahead == 0 and not allow_today:
        ahead = 7
    return reference + timedelta(days=ahead)


def _month_day(year: int, month: int, day: int) -> Optional[date]:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def resolve_phrase(kind: str, match: re.Match, reference: Optional[date]) -> tuple[Optional[date], str, str]:
    """Resolve one matched phrase: (date, reference type, precision).

    Absolute dates with an explicit year resolve without a call date;
    everything else needs one.
    """
    if kind == "numeric":
        year = match.group("year")
        if year:
            full_year = int(year) + 2000 if len(year) == 2 else int(year)
            return _month_day(full_year, int(match.group("month")), int(match.group("day"))), "absolute", "day"
        if reference is None:
            return None, "absolute", "day"
        return _month_day(reference.year, int(match.group("month")), int(match.group("day"))), "absolute", "day"
    if kind == "month_day":
        if reference is None:
            return None, "absolute", "day"
        month = MONTHS[match.group("month")[:3].lower()]
        return _month_day(reference.year, month, int(match.group("day"))), "absolute", "day"

    if reference is None:
        if kind == "next_week":
            return None, "approximate", "week"
        if kind == "rush":
            return None, "approximate", "approximate"
        return None, "relative", "day"

    if kind == "day_after_tomorrow":
        return reference + timedelta(days=2), "relative", "day"
    if kind == "tomorrow":
        return reference + timedelta(days=1), "relative", "day"
    if kind in ("today", "end_of_day"):
        return reference, "relative", "day"
    if kind == "yesterday":
        return reference - timedelta(days=1), "relative", "day"
    if kind == "end_of_week":
        return _next_weekday(reference, 4, allow_today=True), "relative", "day"
    if kind == "next_week":
        return _next_weekday(reference, 0, allow_today=False), "approximate", "week"
    if kind == "weekday":
        weekday = WEEKDAYS.index(match.group("day").lower())
        allow_today = (match.group("qualifier") or "").lower() == "this"
        return _next_weekday(reference, weekday, allow_today), "relative", "day"
    if kind == "in_days":
        count = match.group("count").lower()
        days = int(count) if count.isdigit() else NUMBER_WORDS[count]
        return reference + timedelta(days=days), "relative", "day"
    # rush
    return reference, "approximate", "approximate"


def find_time(text: str) -> Optional[str]:
    """First clock time in ``text`` as HH:MM."""
    match = _TIME.search(text)
    if match is None:
        return None
    word = (match.group("word") or "").lower()
    if word:
        return "12:00" if word == "noon" else "00:00"
    hour = int(match.group("hour"))
    minute = int(match.group("minute") or 0)
    if not 1 <= hour <= 12 or minute > 59:
        return None
    hour = hour % 12 + (12 if match.group("half").lower() == "p" else 0)
    return f"{hour:02d}:{minute:02d}"


def detect_context(text: str, start: int, end: int, default: str = "other") -> str:
    """The context cue nearest to the phrase at ``text[start:end]``."""
    lowered = text.lower()
    best: Optional[tuple[int, str]] = None
    lo = max(0, start - CONTEXT_WINDOW_CHARS)
    hi = min(len(lowered), end + CONTEXT_WINDOW_CHARS)
    for context, cues in CONTEXT_CUES.items():
        for cue in cues:
            for found in re.finditer(re.escape(cue), lowered[lo:hi]):
                position = lo + found.start()
                distance = start - position if position < start else max(0, position - end)
                if best is None or distance < best[0]:
                    best = (distance, context)
    return best[1] if best else default


def _sentence_around(text: str, start: int, end: int) -> str:
    left = 0
    for boundary in _SENTENCE_BREAK.finditer(text):
        if boundary.end() <= start:
            left = boundary.end()
        elif boundary.start() >= end:
            return text[left:boundary.start()]
    return text[left:]


def _rule_confidence(resolved: Optional[date], reference_type: str) -> int:
    if resolved is None:
        return 30
    return {"absolute": 90, "relative": 85}.get(reference_type, 60)


def scan_temporal_references(transcript: Transcript, reference: Optional[date]) -> list[TemporalReference]:
    """Date and time phrases found deterministically in the utterances."""
    found: list[TemporalReference] = []
    for index, utterance in enumerate(transcript.utterances):
        text = utterance.text
        matches = sorted(
            ((m.start(), -(m.end() - m.start()), kind, m) for kind, pattern in _PATTERNS for m in pattern.finditer(text)),
            key=lambda item: (item[0], item[1]),
        )
        taken_until = -1
        for start, _, kind, match in matches:
            if start < taken_until:
                continue
            if kind == "numeric" and _month_day(2000, int(match.group("month")), int(match.group("day"))) is None:
                # 24/7 and the like
                continue
            taken_until = match.end()
            resolved, reference_type, precision = resolve_phrase(kind, match, reference)
            if kind in ("numeric", "month_day") and resolved is None and reference is not None:
                # 2/30 and the like
                continue
            clock = "17:00" if kind == "end_of_day" else find_time(_sentence_around(text, start, match.end()))
            default = "deadline" if kind == "end_of_day" else "other"
            found.append(TemporalReference(
                original_text=match.group(0),
                resolved_date=resolved,
                resolved_time=clock,
                reference_type=reference_type,
                context=detect_context(text, start, match.end(), default),
                precision="exact" if clock and precision == "day" else precision,
                is_rush=kind == "rush",
                utterance_index=index,
                source="rule",
                confidence=_rule_confidence(resolved, reference_type),
            ))
    return found


def _parse_date(value: Optional[str]) -> Optional[date]:
    value = clean_str(value)
    if value is None:
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        return None


def from_candidate(candidate: TemporalCandidate, transcript: Transcript) -> Optional[TemporalReference]:
    """Normalize one model reference; None when it carries no text."""
    text = clean_str(candidate.original_text)
    if text is None:
        return None
    clock = clean_str(candidate.resolved_time)
    clock = clock if clock and _HHMM.match(clock) else None
    lowered = text.lower()
    index = next((i for i, u in enumerate(transcript.utterances) if lowered in u.text.lower()), None)
    resolved = _parse_date(candidate.resolved_date)
    context = (candidate.context or "other").strip().lower()
    return TemporalReference(
        original_text=text,
        resolved_date=resolved,
        resolved_time=clock,
        reference_type="relative",
        context=context if context in _CONTEXTS else "other",
        precision="exact" if clock else "day",
        is_rush=bool(candidate.is_rush),
        utterance_index=index,
        source="llm",
        confidence=to_score(candidate.confidence) or (50 if resolved else 30),
    )


def merge_references(
    rule_refs: list[TemporalReference], model_refs: list[TemporalReference]
) -> list[TemporalReference]:
    """Rule references plus the model references that mention something new."""
    merged = list(rule_refs)
    for candidate in model_refs:
        if any(
            fuzz.partial_ratio(candidate.original_text, existing.original_text, processor=utils.default_process)
            >= MODEL_DUPLICATE_SIMILARITY
            for existing in merged
        ):
            continue
        merged.append(candidate)
    return sorted(merged, key=lambda r: r.utterance_index if r.utterance_index is not None else len(merged) + 10_000)


class TemporalResolutionStage(Stage):
    """Resolve relative dates and times against the call date."""

    name = "temporal_resolution"
    dependencies = ("classification",)
    critical = False
    response_model = TemporalResponse

    def build_prompt(self, view: ContextView) -> tuple[ChatPromptTemplate, dict]:
        prompt = ChatPromptTemplate.from_messages([
            ("system", TEMPORAL_SYSTEM_PROMPT),
            ("human", TEMPORAL_USER_PROMPT),
        ])
        call_date = view.metadata.call_date
        return prompt, {
            "call_date": call_date.isoformat() if call_date else "unknown",
            "day_of_week": call_date.strftime("%A") if call_date else "unknown",
            "transcript": transcript_for_prompt(view),
        }

    async def execute(self, view: ContextView) -> TemporalResolution:
        response: TemporalResponse = await self._infer(view)
        call_date = view.metadata.call_date

        rule_refs = scan_temporal_references(view.transcript, call_date)
        model_refs = [r for r in (from_candidate(c, view.transcript) for c in response.references) if r]
        references = merge_references(rule_refs, model_refs)

        assumptions: list[str] = []
        if call_date is None and references:
            assumptions.append("No call date supplied; relative dates are unresolved")
        if call_date is not None and any(
            r.source == "rule" and r.reference_type == "absolute" and r.resolved_date
            and not _HAS_YEAR.search(r.original_text)
            for r in references
        ):
            assumptions.append(f"Assumed {call_date.year} for dates given without a year")
        for text in (clean_str(a) for a in response.assumptions):
            if text and text not in assumptions:
                assumptions.append(text)

        confidence = clamp(sum(r.confidence for r in references) / len(references)) if references else 0
        logger.info(
            "temporal_resolution_complete",
            references=len(references),
            resolved=sum(1 for r in references if r.resolved_date),
            from_model=len(references) - len(rule_refs),
        )
        return TemporalResolution(
            reference_date=call_date,
            references=tuple(references),
            assumptions=tuple(assumptions),
            confidence=confidence,
        )
