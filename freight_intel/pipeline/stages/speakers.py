"""Speaker identification stage: which diarized label is the broker?

HYBRID APPROACH:
- LLM assigns roles from behavior across the first utterances
- LLM labels are fuzzy-matched back to the transcript's actual labels
- Deterministic cue scoring fills labels the LLM skipped
- Ordering default (first speaker is the broker) fills whatever is left

HARD RULES (enforced by code AFTER the LLM decision):
- Every transcript label gets exactly one assignment
- Labels the transcript does not contain are dropped
- At most one label is the broker
"""

import re
from dataclasses import dataclass, field
from typing import Optional

import structlog
from langchain_core.prompts import ChatPromptTemplate
from rapidfuzz import fuzz, process

from freight_intel.config.prompts import SPEAKER_SYSTEM_PROMPT, SPEAKER_USER_PROMPT
from freight_intel.llm.schemas import SpeakerResponse
from freight_intel.models.outputs import SpeakerAssignment, SpeakerRole, SpeakerRoleMap
from freight_intel.models.transcript import CallType, Transcript
from freight_intel.pipeline.context import ContextView
from freight_intel.pipeline.stage import Stage, call_type_of
from freight_intel.pipeline.stages.common import clean_str, contains_any, to_score

logger = structlog.get_logger(__name__)


# =============================================================================
# Trace Dataclasses
# =============================================================================

@dataclass
class LabelDecision:
    """How one transcript label got its role."""
    label: str
    role: str
    source: str
    matched_from: Optional[str] = None
    match_score: Optional[float] = None
    cue_hits: list[str] = field(default_factory=list)


@dataclass
class SpeakerTrace:
    decisions: list[LabelDecision] = field(default_factory=list)
    dropped_llm_labels: list[str] = field(default_factory=list)
    demoted_brokers: list[str] = field(default_factory=list)


# =============================================================================
# Deterministic cues
# =============================================================================

ROLE_CUES: dict[SpeakerRole, tuple[str, ...]] = {
    SpeakerRole.BROKER: (
        "i've got a load", "i have a load", "we have a load", "got a load", "logistics",
        "brokerage", "what's your mc", "what is your mc", "your mc number", "rate con",
        "i can pay", "we can pay", "i can offer", "posted", "the shipper",
    ),
    SpeakerRole.CARRIER: (
        "my truck", "my trucks", "our trucks", "my mc", "our mc", "i'm empty", "we're empty",
        "deadhead", "calling about the load", "calling about your load", "still available",
        "i need", "my equipment", "owner operator", "my fuel",
    ),
    SpeakerRole.DRIVER: ("i'm driving", "i'm at the", "i'm loaded", "i'm on my way", "my eta"),
    SpeakerRole.DISPATCHER: ("i dispatch", "dispatching", "my driver", "our driver"),
    SpeakerRole.SHIPPER: (
        "our warehouse", "we need to ship", "we have freight", "ready to ship", "need a quote",
        "our dock", "our facility",
    ),
}

_ROLE_ALIASES = {
    "broker": SpeakerRole.BROKER,
    "carrier": SpeakerRole.CARRIER,
    "carrier_rep": SpeakerRole.CARRIER,
    "owner_operator": SpeakerRole.CARRIER,
    "driver": SpeakerRole.DRIVER,
    "dispatch": SpeakerRole.DISPATCHER,
    "dispatcher": SpeakerRole.DISPATCHER,
    "shipper": SpeakerRole.SHIPPER,
    "customer": SpeakerRole.SHIPPER,
}


def normalize_role(raw: Optional[str]) -> SpeakerRole:
    key = (raw or "").strip().lower().replace(" ", "_").replace("-", "_")
    return _ROLE_ALIASES.get(key, SpeakerRole.UNKNOWN)


def _label_key(label: str) -> str:
    key = label.strip().lower()
    key = re.sub(r"^(speaker|spk|participant)[\s_-]*", "", key)
    return re.sub(r"[^a-z0-9]", "", key)


def match_label(raw_label: str, labels: list[str]) -> tuple[Optional[str], float]:
    """Map a model-reported label onto a transcript label."""
    if raw_label in labels:
        return raw_label, 100.0
    keyed = {_label_key(label): label for label in labels}
    key = _label_key(raw_label)
    if key in keyed:
        return keyed[key], 100.0
    best = process.extractOne(raw_label, labels, scorer=fuzz.ratio, score_cutoff=85)
    if best:
        return best[0], best[1]
    return None, 0.0


def score_roles(transcript: Transcript, label: str) -> dict[SpeakerRole, list[str]]:
    """Cue phrases spoken by ``label``, per role."""
    text = " ".join(u.text for u in transcript.utterances if u.speaker_label == label).lower()
    return {
        role: [cue for cue in cues if contains_any(text, (cue,))]
        for role, cues in ROLE_CUES.items()
    }


def default_role(position: int, call_type: CallType) -> SpeakerRole:
    """Ordering fallback: the first speaker is the broker."""
    if position == 0:
        return SpeakerRole.BROKER
    if call_type == CallType.SHIPPER:
        return SpeakerRole.SHIPPER
    return SpeakerRole.CARRIER


# =============================================================================
# Stage
# =============================================================================

class SpeakerIdentificationStage(Stage):
    """Assign a role to every speaker label."""

    name = "speaker_identification"
    dependencies = ("classification",)
    critical = False
    response_model = SpeakerResponse

    def build_prompt(self, view: ContextView) -> tuple[ChatPromptTemplate, dict]:
        prompt = ChatPromptTemplate.from_messages([
            ("system", SPEAKER_SYSTEM_PROMPT),
            ("human", SPEAKER_USER_PROMPT),
        ])
        return prompt, {
            "call_type": call_type_of(view).value,
            "utterances": view.transcript.format_utterances(view.settings.speaker_utterance_limit),
        }

    async def execute(self, view: ContextView) -> SpeakerRoleMap:
        response: SpeakerResponse = await self._infer(view)
        labels = view.transcript.speaker_labels
        call_type = call_type_of(view)
        trace = SpeakerTrace()
        assignments: dict[str, SpeakerAssignment] = {}

        # Phase A: model assignments, mapped onto real labels
        for candidate in response.speakers:
            label, score = match_label(candidate.label, labels)
            if label is None or label in assignments:
                trace.dropped_llm_labels.append(candidate.label)
                continue
            role = normalize_role(candidate.role)
            if role == SpeakerRole.UNKNOWN:
                continue
            assignments[label] = SpeakerAssignment(
                label=label,
                role=role,
                name=clean_str(candidate.name),
                company=clean_str(candidate.company),
                confidence=to_score(candidate.confidence) or 60,
                source="llm",
            )
            trace.decisions.append(LabelDecision(label, role.value, "llm", candidate.label, score))

        # Phase B: cue scoring, then ordering defaults
        used_fallback = False
        for position, label in enumerate(labels):
            if label in assignments:
                continue
            cues = score_roles(view.transcript, label)
            best_role = max(cues, key=lambda r: len(cues[r]))
            if cues[best_role]:
                assignments[label] = SpeakerAssignment(
                    label=label, role=best_role, confidence=min(40 + 10 * len(cues[best_role]), 70), source="rule"
                )
                trace.decisions.append(LabelDecision(label, best_role.value, "rule", cue_hits=cues[best_role]))
            else:
                role = default_role(position, call_type)
                assignments[label] = SpeakerAssignment(label=label, role=role, confidence=40, source="default")
                trace.decisions.append(LabelDecision(label, role.value, "default"))
                used_fallback = True

        broker_label = self._resolve_broker(response, labels, assignments, trace)
        ordered = tuple(assignments[label] for label in labels if label in assignments)
        counterparty = next(
            (a.label for a in ordered if a.label != broker_label and a.role != SpeakerRole.BROKER),
            None,
        )
        confidence = round(sum(a.confidence for a in ordered) / len(ordered)) if ordered else 0

        logger.info(
            "speaker_identification_complete",
            speakers=len(ordered),
            broker_label=broker_label,
            used_fallback=used_fallback,
            dropped_llm_labels=len(trace.dropped_llm_labels),
        )

        return SpeakerRoleMap(
            assignments=ordered,
            broker_label=broker_label,
            counterparty_label=counterparty,
            used_fallback=used_fallback,
            confidence=confidence,
        )

    def _resolve_broker(
        self,
        response: SpeakerResponse,
        labels: list[str],
        assignments: dict[str, SpeakerAssignment],
        trace: SpeakerTrace,
    ) -> Optional[str]:
        """Enforce a single broker, preferring the model's explicit choice."""
        brokers = [label for label in labels if assignments.get(label) and assignments[label].role == SpeakerRole.BROKER]
        preferred = match_label(response.broker_label, labels)[0] if response.broker_label else None
        if preferred not in brokers:
            preferred = max(brokers, key=lambda l: assignments[l].confidence, default=None)

        for label in brokers:
            if label != preferred:
                demoted = assignments[label]
                assignments[label] = demoted.model_copy(
                    update={"role": SpeakerRole.UNKNOWN, "confidence": min(demoted.confidence, 30)}
                )
                trace.demoted_brokers.append(label)
        return preferred
