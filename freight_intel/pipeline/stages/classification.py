"""Classification stage: what kind of call is this?

HYBRID APPROACH:
- Keyword cues score each call type deterministically
- The LLM classifies from a transcript excerpt
- Code reconciles the two with the caller's hint

Critical: every other stage reads the call type, so a failure here aborts
the run.
"""

from typing import Optional

import structlog
from langchain_core.prompts import ChatPromptTemplate

from freight_intel.config.prompts import CLASSIFICATION_SYSTEM_PROMPT, CLASSIFICATION_USER_PROMPT
from freight_intel.llm.schemas import ClassificationResponse
from freight_intel.models.outputs import ClassificationResult
from freight_intel.models.transcript import CallType
from freight_intel.pipeline.context import ContextView
from freight_intel.pipeline.stage import Stage
from freight_intel.pipeline.stages.common import clamp, contains_any, to_score

logger = structlog.get_logger(__name__)


CALL_TYPE_CUES: dict[CallType, tuple[str, ...]] = {
    CallType.CARRIER: (
        "mc number", "my truck", "my driver", "deadhead", "empty in", "i'm empty",
        "rate con", "rate confirmation", "load board", "is it still available",
        "calling about the load", "calling about your load", "what's it paying", "what does it pay",
    ),
    CallType.SHIPPER: (
        "need a quote", "get a quote", "we need to ship", "we have freight", "our warehouse",
        "ready to ship", "ship out", "book a load", "need a truck", "our customer", "shipping from",
    ),
    CallType.CHECK_CALL: (
        "check call", "where are you", "eta", "running late", "running behind", "got loaded",
        "been loaded", "delivered", "on time", "proof of delivery", "pod", "at the receiver",
        "at the shipper", "checked in",
    ),
}


def score_cues(text: str) -> dict[CallType, list[str]]:
    """Cue phrases found per call type."""
    lowered = text.lower()
    found: dict[CallType, list[str]] = {}
    for call_type, cues in CALL_TYPE_CUES.items():
        found[call_type] = [cue for cue in cues if contains_any(lowered, (cue,))]
    return found


def normalize_call_type(raw: Optional[str]) -> Optional[CallType]:
    value = (raw or "").strip().lower().replace("-", "_").replace(" ", "_")
    aliases = {"checkcall": "check_call", "check": "check_call", "broker_carrier": "carrier"}
    value = aliases.get(value, value)
    try:
        return CallType(value)
    except ValueError:
        return None


class ClassificationStage(Stage):
    """Classify the call type, reconciling model, cues and hint."""

    name = "classification"
    dependencies = ()
    critical = True
    response_model = ClassificationResponse

    def is_applicable(self, view: ContextView) -> bool:
        # Always runs so that even empty transcripts get a call type
        return True

    def build_prompt(self, view: ContextView) -> tuple[ChatPromptTemplate, dict]:
        prompt = ChatPromptTemplate.from_messages([
            ("system", CLASSIFICATION_SYSTEM_PROMPT),
            ("human", CLASSIFICATION_USER_PROMPT),
        ])
        return prompt, {
            "call_type_hint": view.metadata.call_type.value,
            "transcript_excerpt": view.transcript.excerpt(view.settings.classification_excerpt_chars),
        }

    async def execute(self, view: ContextView) -> ClassificationResult:
        hint = view.metadata.call_type

        if view.transcript.is_empty:
            logger.warning("classification_empty_transcript", hint=hint.value)
            return ClassificationResult(
                call_type=hint,
                indicators=("empty_transcript",),
                hint_agrees=True,
                reasoning="Transcript is empty; using caller hint",
                confidence=0,
            )

        response: ClassificationResponse = await self._infer(view)
        cues = score_cues(view.transcript.excerpt(view.settings.classification_excerpt_chars))
        cue_winner = max(cues, key=lambda t: len(cues[t]))
        cue_count = len(cues[cue_winner])

        call_type = normalize_call_type(response.call_type)
        confidence = to_score(response.confidence)
        reasoning = response.reasoning

        if call_type is None or call_type == CallType.UNKNOWN:
            # Model gave nothing usable: cues first, then the caller's hint
            if cue_count >= 2:
                call_type = cue_winner
                confidence = 40 + 10 * min(cue_count, 4)
                reasoning = f"Keyword cues: {', '.join(cues[cue_winner])}"
            else:
                call_type = hint
                confidence = min(confidence, 40)
                reasoning = reasoning or "Fell back to caller hint"
            logger.info("classification_fallback", raw=response.call_type, chosen=call_type.value)

        indicators = list(dict.fromkeys([*response.indicators, *cues.get(call_type, [])]))

        # Indicator support adjusts the model's confidence
        if len(indicators) >= 3:
            confidence += 10
        elif not indicators:
            confidence -= 20

        hint_agrees = hint in (CallType.UNKNOWN, call_type)
        if not hint_agrees:
            confidence -= 10

        result = ClassificationResult(
            call_type=call_type,
            sub_types=tuple(response.sub_types),
            indicators=tuple(indicators),
            has_multiple_loads=response.has_multiple_loads,
            is_continuation=response.is_continuation,
            hint_agrees=hint_agrees,
            reasoning=reasoning,
            confidence=clamp(confidence),
        )

        logger.info(
            "classification_complete",
            call_type=result.call_type.value,
            confidence=result.confidence,
            hint_agrees=hint_agrees,
        )
        return result
