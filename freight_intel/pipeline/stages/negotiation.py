"""Negotiation resolver: classify how a broker/carrier rate discussion ended.

HYBRID INTELLIGENCE APPROACH:
- Rules extract every rate figure and attribute it to a side
- Rules decide the status by fixed priority
- The LLM supplies accessorials, contingencies and summaries, and rate
  mentions only when the rules found no figure at all
- The LLM's own status opinion is kept for audit and only lowers confidence

STATUS PRIORITY (first rule that fires wins):
1. agreed: both sides' final figures are identical, or an agreement word is
   the other side's first reply to a side's final figure
2. rejected: a side declines with no new figure and no promise to revisit
3. callback_requested: a side defers to a third party or asks to call back,
   and no figure was discussed after the deferral
4. pending: nothing fired; this is the safe default and means human review

The four statuses are labels, not a live automaton: once resolved, an
outcome never transitions.
"""

import re
from dataclasses import dataclass, field
from typing import Optional

import structlog
from langchain_core.prompts import ChatPromptTemplate
from rapidfuzz import fuzz, utils

from freight_intel.config.prompts import NEGOTIATION_SYSTEM_PROMPT, NEGOTIATION_USER_PROMPT
from freight_intel.llm.schemas import NegotiationResponse
from freight_intel.models.negotiation import (
    NegotiationConfidence,
    NegotiationOutcome,
    NegotiationStatus,
    RateObservation,
    RateProgression,
)
from freight_intel.models.outputs import SpeakerRoleMap
from freight_intel.models.transcript import CallType, Transcript
from freight_intel.pipeline.context import ContextView
from freight_intel.pipeline.stage import Stage
from freight_intel.pipeline.stages.common import (
    clamp,
    clean_str,
    contains_any,
    find_rate_figures,
    speaker_roles_summary,
    split_clauses,
    split_sentences,
)

logger = structlog.get_logger(__name__)


# =============================================================================
# Marker Phrases
# =============================================================================

AGREEMENT_STRONG = (
    "deal", "sounds good", "that works", "works for me", "let's do it", "lets do it",
    "book it", "i'll take it", "we'll take it", "i'll take that", "agreed", "you got it",
    "you've got it", "let's book", "go ahead and book", "book me", "send me the rate con",
    "send the rate con", "send over the rate con", "send me the rate confirmation",
    "i can do that", "we can do that", "that'll work", "that will work",
)
AGREEMENT_WEAK = (
    "okay", "ok", "yes", "yeah", "yep", "sure", "alright", "all right", "perfect", "great", "fine",
)
DECLINE = (
    "have to pass", "i'll pass", "i will pass", "we'll pass", "gonna pass", "going to pass",
    "gotta pass", "pass on this", "pass on that", "pass on it", "pass on the load",
    "can't do it", "cannot do it", "can't do that", "can't make that work", "no deal",
    "not interested", "won't work", "doesn't work for me", "not going to work", "no thanks",
    "no thank you", "i'm out", "we're out", "forget it", "not gonna happen", "not worth it",
)
REASON_CUES = (
    "doesn't cover", "don't cover", "won't cover", "not enough", "too low", "too light",
    "too cheap", "too far", "too much", "can't make money", "lose money", "losing money",
    "below my", "under my", "not worth", "deadhead", "already booked", "no trucks",
    "not available", "fuel",
)
# A weak "okay" next to any of these is acknowledgement, not acceptance.
OBJECTION_CUES = REASON_CUES + (
    "high", "steep", "pricey", "a lot", "hear you", "but", "however", "though",
    "not sure", "how about", "what about", "can you do", "could you do",
)
WEAK_REPLY_MAX_WORDS = 6
REVISIT = (
    "call me back", "call me if", "let me know if", "if anything changes", "if you can get",
    "if you get", "if it goes up", "if the rate", "reach out if", "keep me in mind",
    "keep me posted", "hit me up", "get back to you", "think about it", "if it's still",
)
CALLBACK = (
    "let me check", "let me see if", "let me talk to", "let me ask", "check with my driver",
    "check with the driver", "check with my dispatch", "check with dispatch",
    "check with my dispatcher", "talk to my driver", "ask my driver", "ask my dispatcher",
    "run it by", "run that by", "call you back", "call me back", "get back to you",
    "get back with you", "give you a call back", "call me if", "let me know if", "reach out if",
    "keep me in mind", "think about it", "i'll let you know", "circle back",
)
CONTINGENCY = (
    "if driver confirms", "if my driver", "if the driver", "subject to", "as long as",
    "provided that", "pending approval", "assuming", "contingent on", "once i confirm",
    "once dispatch", "depending on", "only if",
)
ACCESSORIAL_TERMS: dict[str, tuple[str, ...]] = {
    "detention": ("detention",),
    "lumper": ("lumper",),
    "fuel_surcharge": ("fuel surcharge", "fsc"),
    "quick_pay": ("quick pay", "quickpay"),
    "tonu": ("tonu", "truck order not used"),
    "layover": ("layover",),
}
_ACCESSORIAL_KEY_ALIASES = {"quickpay": "quick_pay", "fuel": "fuel_surcharge", "truck_order_not_used": "tonu"}
INCLUDES_FUEL = ("all in", "all-in", "including fuel", "includes fuel", "fuel included")
EXCLUDES_FUEL = ("plus fuel", "fuel extra", "fuel on top", "plus fsc")

CONTINGENCY_DUPLICATE_SIMILARITY = 85


def _normalize(text: str) -> str:
    return text.replace("\u2019", "'").replace("\u2018", "'")


# =============================================================================
# Trace Dataclasses
# =============================================================================

@dataclass
class ResolutionTrace:
    """Inspectable record of how the status was chosen."""
    rule_fired: str = "none"
    decisive_utterance: Optional[int] = None
    marker: Optional[str] = None
    figures_source: str = "rule"
    used_role_fallback: bool = False
    model_status: Optional[str] = None
    notes: list[str] = field(default_factory=list)


# =============================================================================
# Rate History
# =============================================================================

def side_lookup(transcript: Transcript, speakers: Optional[SpeakerRoleMap]) -> tuple[dict[str, str], bool]:
    """Map each speaker label to broker/carrier/unknown.

    Falls back to ordering (first speaker is the broker, everyone else is on
    the carrier side) when no broker was identified.
    """
    labels = transcript.speaker_labels
    if speakers is not None:
        sides = {label: speakers.role_for(label).negotiating_side for label in labels}
        sides = {label: side if side in ("broker", "carrier") else "unknown" for label, side in sides.items()}
        if "broker" in sides.values():
            return sides, speakers.used_fallback
    return {label: "broker" if i == 0 else "carrier" for i, label in enumerate(labels)}, True


def build_rate_history(transcript: Transcript, sides: dict[str, str]) -> list[RateObservation]:
    """Every rate figure in chronological order, tagged with side and action."""
    history: list[RateObservation] = []
    last_by_side: dict[str, float] = {}

    for index, utterance in enumerate(transcript.utterances):
        side = sides.get(utterance.speaker_label, "unknown")
        for figure in find_rate_figures(_normalize(utterance.text)):
            other = "carrier" if side == "broker" else "broker" if side == "carrier" else None
            if other and last_by_side.get(other) == figure.amount:
                action = "accept"
            elif other and other in last_by_side:
                action = "counter"
            elif not history:
                action = "offer"
            else:
                action = "mention"
            history.append(RateObservation(
                speaker=side,
                speaker_label=utterance.speaker_label,
                rate=figure.amount,
                utterance_index=index,
                action=action,
                rate_type=figure.rate_type,
            ))
            if side in ("broker", "carrier"):
                last_by_side[side] = figure.amount
    return history


def history_from_model(
    response: NegotiationResponse,
    transcript: Transcript,
    sides: dict[str, str],
) -> list[RateObservation]:
    """Model-reported rate mentions, kept only when they point at a real utterance."""
    history = []
    utterances = transcript.utterances
    for mention in sorted(response.rate_mentions, key=lambda m: m.utterance_index):
        if mention.utterance_index >= len(utterances):
            continue
        label = utterances[mention.utterance_index].speaker_label
        history.append(RateObservation(
            speaker=sides.get(label, "unknown"),
            speaker_label=label,
            rate=mention.rate,
            utterance_index=mention.utterance_index,
            action="mention",
        ))
    return history


def last_observation(history: list[RateObservation], side: str) -> Optional[RateObservation]:
    return next((obs for obs in reversed(history) if obs.speaker == side), None)


def analyze_rate_progression(history: list[RateObservation]) -> RateProgression:
    """Describe the shape of the offer/counter sequence."""
    if not history:
        return RateProgression()

    broker_rates = [obs.rate for obs in history if obs.speaker == "broker"]
    carrier_rates = [obs.rate for obs in history if obs.speaker == "carrier"]
    rounds = max(len(broker_rates), len(carrier_rates))

    if not broker_rates or not carrier_rates:
        return RateProgression(pattern="one_sided", number_of_rounds=rounds)

    final_gap = abs(broker_rates[-1] - carrier_rates[-1])
    first_gap = abs(broker_rates[0] - carrier_rates[0])

    if final_gap == 0:
        pattern = "agreement_reached"
    elif final_gap > first_gap:
        pattern = "diverging_positions"
    elif len(broker_rates) == 1 and len(carrier_rates) == 1:
        pattern = "single_round"
    else:
        pattern = "standard_negotiation"

    return RateProgression(
        pattern=pattern,
        final_gap=final_gap,
        number_of_rounds=rounds,
        convergence=final_gap < first_gap,
    )


# =============================================================================
# Status Rules
# =============================================================================

@dataclass
class Agreement:
    rate: float
    rule: str
    utterance_index: int
    marker: Optional[str]
    strong: bool


def _texts(transcript: Transcript) -> list[str]:
    return [_normalize(u.text) for u in transcript.utterances]


def _declined_after(texts: list[str], start: int) -> bool:
    return any(contains_any(text, DECLINE) for text in texts[start:])


def find_mutual_restatement(
    history: list[RateObservation], texts: list[str]
) -> Optional[Agreement]:
    """Both sides' final figures are the same number."""
    broker = last_observation(history, "broker")
    carrier = last_observation(history, "carrier")
    if not broker or not carrier or broker.rate != carrier.rate:
        return None
    later = max(broker.utterance_index, carrier.utterance_index)
    if contains_any(texts[later], CALLBACK) or _declined_after(texts, later):
        return None
    return Agreement(broker.rate, "mutual_restatement", later, None, strong=True)


def weak_acceptance(text: str, rate: float) -> Optional[str]:
    """Return the weak agreement word if the reply reads as a plain yes.

    The reply must be short or restate the figure, and carry no objection.
    """
    marker = contains_any(text, AGREEMENT_WEAK)
    if marker is None or contains_any(text, OBJECTION_CUES):
        return None
    if len(text.split()) <= WEAK_REPLY_MAX_WORDS:
        return marker
    if any(figure.amount == rate for figure in find_rate_figures(text)):
        return marker
    return None


def find_acceptance(
    history: list[RateObservation], texts: list[str], transcript: Transcript
) -> Optional[Agreement]:
    """An agreement word is the other side's first reply to a final figure."""
    utterances = transcript.utterances
    best: Optional[Agreement] = None

    for side in ("broker", "carrier"):
        final = last_observation(history, side)
        if final is None:
            continue
        index = final.utterance_index
        if any(obs.utterance_index > index and obs.rate != final.rate for obs in history):
            continue
        reply = next(
            (j for j in range(index + 1, len(utterances))
             if utterances[j].speaker_label != utterances[index].speaker_label),
            None,
        )
        if reply is None:
            continue
        reply_text = texts[reply]
        if contains_any(reply_text, CALLBACK):
            continue
        # The figure's own utterance counts: "$2,150 doesn't cover it, I'll pass".
        if _declined_after(texts, index):
            continue
        strong = contains_any(reply_text, AGREEMENT_STRONG)
        marker = strong or weak_acceptance(reply_text, final.rate)
        if marker and (best is None or index > best.utterance_index):
            best = Agreement(final.rate, "acceptance_reply", reply, marker, strong=bool(strong))

    return best


def _clause_with(text: str, cues: tuple[str, ...]) -> Optional[str]:
    for clause in split_clauses(text):
        if contains_any(clause, cues):
            return clause
    return None


def find_rejection(
    history: list[RateObservation], texts: list[str], transcript: Transcript
) -> Optional[tuple[int, str, Optional[str]]]:
    """Latest decline that ends the discussion: (utterance index, marker, reason)."""
    for index in range(len(texts) - 1, -1, -1):
        marker = contains_any(texts[index], DECLINE)
        if not marker:
            continue
        if any(contains_any(text, REVISIT) for text in texts[index:]):
            return None
        if any(obs.utterance_index > index for obs in history):
            return None
        earlier = {obs.rate for obs in history if obs.utterance_index < index}
        if any(obs.rate not in earlier for obs in history if obs.utterance_index == index):
            # A new figure in the same breath is a counter-offer, not a decline
            return None

        reason = _clause_with(texts[index], REASON_CUES)
        if reason is None:
            speaker = transcript.utterances[index].speaker_label
            previous = next(
                (j for j in range(index - 1, -1, -1) if transcript.utterances[j].speaker_label == speaker),
                None,
            )
            if previous is not None and previous >= index - 2:
                reason = _clause_with(texts[previous], REASON_CUES)
        return index, marker, reason
    return None


def _phrase_position(text: str, phrases: tuple[str, ...]) -> Optional[int]:
    lowered = text.lower()
    positions = [m.start() for p in phrases for m in re.finditer(re.escape(p), lowered)]
    return min(positions) if positions else None


def find_callback(
    history: list[RateObservation], texts: list[str]
) -> Optional[tuple[int, str, str]]:
    """Latest deferral not superseded by more rate talk: (index, marker, condition)."""
    last_figure = max((obs.utterance_index for obs in history), default=-1)
    for index in range(len(texts) - 1, -1, -1):
        marker = contains_any(texts[index], CALLBACK)
        if not marker:
            continue
        if index < last_figure:
            return None
        for sentence in split_sentences(texts[index]):
            position = _phrase_position(sentence, CALLBACK)
            if position is not None:
                return index, marker, sentence[position:].strip()
        return index, marker, texts[index].strip()
    return None


# =============================================================================
# Accessorials and Contingencies
# =============================================================================

def extract_accessorials(texts: list[str], response: Optional[NegotiationResponse]) -> dict[str, str]:
    """Named accessorial terms with the sentence that mentions them."""
    found: dict[str, str] = {}
    for text in texts:
        for sentence in split_sentences(text):
            for key, terms in ACCESSORIAL_TERMS.items():
                if key not in found and contains_any(sentence, terms):
                    found[key] = sentence
    if response is not None:
        for raw_key, value in response.accessorials.items():
            key = raw_key.strip().lower().replace(" ", "_").replace("-", "_")
            key = _ACCESSORIAL_KEY_ALIASES.get(key, key)
            value = clean_str(value)
            if key and value and key not in found:
                found[key] = value
    return found


def extract_contingencies(texts: list[str], response: Optional[NegotiationResponse]) -> list[str]:
    """Conditions attached to the deal, deduplicated across rules and model."""
    candidates = [
        sentence
        for text in texts
        for sentence in split_sentences(text)
        if contains_any(sentence, CONTINGENCY)
    ]
    if response is not None:
        candidates.extend(c for c in (clean_str(x) for x in response.contingencies) if c)

    kept: list[str] = []
    for candidate in candidates:
        if not any(
            fuzz.token_set_ratio(candidate, k, processor=utils.default_process)
            >= CONTINGENCY_DUPLICATE_SIMILARITY
            for k in kept
        ):
            kept.append(candidate)
    return kept


def detect_fuel_inclusion(texts: list[str], response: Optional[NegotiationResponse]) -> Optional[bool]:
    joined = " ".join(texts)
    if contains_any(joined, EXCLUDES_FUEL):
        return False
    if contains_any(joined, INCLUDES_FUEL):
        return True
    return response.rate_includes_fuel if response is not None else None


# =============================================================================
# Resolution
# =============================================================================

def _parse_status(raw: Optional[str]) -> Optional[NegotiationStatus]:
    value = (raw or "").strip().lower().replace(" ", "_").replace("-", "_")
    try:
        return NegotiationStatus(value)
    except ValueError:
        return None


def _pending_reason(history: list[RateObservation]) -> str:
    broker = last_observation(history, "broker")
    carrier = last_observation(history, "carrier")
    if broker and carrier:
        return (
            f"No agreement reached; broker at ${broker.rate:,.0f}, "
            f"carrier at ${carrier.rate:,.0f}"
        )
    if broker or carrier:
        only = broker or carrier
        return f"Only the {only.speaker} stated a rate (${only.rate:,.0f}); no response recorded"
    if history:
        return "Rates were mentioned but could not be attributed to either side"
    return "No rate was discussed"


def resolve_negotiation(
    transcript: Transcript,
    speakers: Optional[SpeakerRoleMap],
    response: Optional[NegotiationResponse] = None,
) -> tuple[NegotiationOutcome, ResolutionTrace]:
    """Classify the negotiation outcome of a transcript.

    Args:
        transcript: The call transcript.
        speakers: Speaker roles, if the speaker stage produced them.
        response: Optional model answer used for enrichment and audit.

    Returns:
        Tuple of (NegotiationOutcome, ResolutionTrace).
    """
    trace = ResolutionTrace()
    texts = _texts(transcript)
    sides, trace.used_role_fallback = side_lookup(transcript, speakers)

    history = build_rate_history(transcript, sides)
    if not history and response is not None and response.rate_mentions:
        history = history_from_model(response, transcript, sides)
        trace.figures_source = "llm"

    broker_final = last_observation(history, "broker")
    carrier_final = last_observation(history, "carrier")
    model_status = _parse_status(response.status) if response is not None else None
    trace.model_status = model_status.value if model_status else None

    status = NegotiationStatus.PENDING
    agreed_rate: Optional[float] = None
    rejection_reason = callback_conditions = pending_reason = None
    status_confidence = 55
    rate_confidence = 0
    agreed_rate_type = "flat"

    agreement = find_mutual_restatement(history, texts) or find_acceptance(history, texts, transcript)
    rejection = None if agreement else find_rejection(history, texts, transcript)
    callback = None if agreement or rejection else find_callback(history, texts)

    if agreement:
        status = NegotiationStatus.AGREED
        agreed_rate = agreement.rate
        trace.rule_fired = agreement.rule
        trace.decisive_utterance = agreement.utterance_index
        trace.marker = agreement.marker
        if agreement.rule == "mutual_restatement":
            status_confidence, rate_confidence = 90, 90
        elif agreement.strong:
            status_confidence, rate_confidence = 85, 80
        else:
            status_confidence, rate_confidence = 70, 75
        agreed_obs = next(obs for obs in reversed(history) if obs.rate == agreed_rate)
        if agreed_obs.rate_type == "per_mile":
            agreed_rate_type = "per_mile"
        elif contains_any(" ".join(texts[agreed_obs.utterance_index:agreement.utterance_index + 1]), ("all in", "all-in")):
            agreed_rate_type = "all_in"
        if response is not None and response.agreed_rate is not None:
            if abs(response.agreed_rate - agreed_rate) < 0.5:
                rate_confidence += 5
            else:
                rate_confidence -= 20
                trace.notes.append(f"model agreed_rate {response.agreed_rate} differs")

    elif rejection:
        index, marker, reason = rejection
        status = NegotiationStatus.REJECTED
        rejection_reason = reason or (clean_str(response.rejection_reason) if response else None)
        trace.rule_fired = "explicit_decline"
        trace.decisive_utterance = index
        trace.marker = marker
        status_confidence = 85 if reason else 80

    elif callback:
        index, marker, condition = callback
        status = NegotiationStatus.CALLBACK_REQUESTED
        callback_conditions = condition or (clean_str(response.callback_conditions) if response else None)
        trace.rule_fired = "deferral"
        trace.decisive_utterance = index
        trace.marker = marker
        status_confidence = 80

    else:
        pending_reason = (clean_str(response.pending_reason) if response else None) or _pending_reason(history)

    # The model's opinion only moves confidence, never the status
    if model_status is not None:
        status_confidence += 5 if model_status == status else -20
    if trace.used_role_fallback:
        status_confidence -= 10

    if broker_final and carrier_final:
        position_confidence = 80
    elif broker_final or carrier_final:
        position_confidence = 50
    else:
        position_confidence = 0
    if position_confidence and trace.used_role_fallback:
        position_confidence -= 15
    if position_confidence and trace.figures_source == "llm":
        position_confidence -= 10
    if agreement and trace.figures_source == "llm":
        rate_confidence -= 10

    field_confidence = NegotiationConfidence(
        agreement_status=clamp(status_confidence),
        agreed_rate=clamp(rate_confidence) if agreed_rate is not None else 0,
        final_positions=clamp(position_confidence),
    )

    outcome = NegotiationOutcome(
        status=status,
        agreed_rate=agreed_rate,
        rate_type=agreed_rate_type,
        rate_includes_fuel=detect_fuel_inclusion(texts, response),
        broker_final_position=broker_final.rate if broker_final else None,
        carrier_final_position=carrier_final.rate if carrier_final else None,
        rate_history=tuple(history),
        accessorials_discussed=extract_accessorials(texts, response),
        contingencies=tuple(extract_contingencies(texts, response)),
        rejection_reason=rejection_reason,
        callback_conditions=callback_conditions,
        pending_reason=pending_reason,
        progression=analyze_rate_progression(history),
        model_status=model_status,
        confidence=field_confidence.agreement_status,
        field_confidence=field_confidence,
    )
    return outcome, trace


# =============================================================================
# Stage
# =============================================================================

class NegotiationStage(Stage):
    """Resolve the negotiation outcome for carrier calls."""

    name = "negotiation"
    dependencies = ("classification", "speaker_identification", "carrier_information")
    critical = False
    response_model = NegotiationResponse
    applies_to = frozenset({CallType.CARRIER, CallType.UNKNOWN})

    def build_prompt(self, view: ContextView) -> tuple[ChatPromptTemplate, dict]:
        prompt = ChatPromptTemplate.from_messages([
            ("system", NEGOTIATION_SYSTEM_PROMPT),
            ("human", NEGOTIATION_USER_PROMPT),
        ])
        return prompt, {
            "speaker_roles": speaker_roles_summary(view),
            "utterances": view.transcript.format_utterances(),
        }

    async def execute(self, view: ContextView) -> NegotiationOutcome:
        response: NegotiationResponse = await self._infer(view)
        speakers = view.output("speaker_identification")
        outcome, trace = resolve_negotiation(view.transcript, speakers, response)

        logger.info(
            "negotiation_resolved",
            status=outcome.status.value,
            agreed_rate=outcome.agreed_rate,
            rule=trace.rule_fired,
            decisive_utterance=trace.decisive_utterance,
            figures=len(outcome.rate_history),
            figures_source=trace.figures_source,
            model_status=trace.model_status,
            role_fallback=trace.used_role_fallback,
        )
        return outcome
