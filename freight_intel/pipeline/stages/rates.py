"""Rate extraction stage.

Lists every quoted figure with its type. When the model reports nothing, the
deterministic figure scanner supplies the quotes so that a call with an
obvious "$2,150" never comes back rate-less.
"""

from typing import Optional

import structlog
from langchain_core.prompts import ChatPromptTemplate

from freight_intel.config.prompts import RATE_SYSTEM_PROMPT, RATE_USER_PROMPT
from freight_intel.llm.schemas import RateResponse
from freight_intel.models.outputs import RateList, RateQuote, SpeakerRoleMap
from freight_intel.pipeline.context import ContextView
from freight_intel.pipeline.stage import Stage
from freight_intel.pipeline.stages.common import (
    clean_str,
    find_rate_figures,
    speaker_roles_summary,
    to_score,
    transcript_for_prompt,
)

logger = structlog.get_logger(__name__)

_RATE_TYPES = {"flat": "flat", "per_mile": "per_mile", "per mile": "per_mile", "rpm": "per_mile", "all_in": "all_in", "all in": "all_in"}
_SIDES = {"broker", "carrier", "shipper"}


def _normalize_rate_type(raw: Optional[str]) -> str:
    return _RATE_TYPES.get((raw or "").strip().lower(), "flat")


def scan_rate_quotes(view: ContextView, speakers: Optional[SpeakerRoleMap]) -> list[RateQuote]:
    """Rate quotes found deterministically in the utterances."""
    quotes = []
    for utterance in view.transcript.utterances:
        side = speakers.role_for(utterance.speaker_label).negotiating_side if speakers else "unknown"
        for figure in find_rate_figures(utterance.text):
            lowered = utterance.text.lower()
            quotes.append(RateQuote(
                amount=figure.amount,
                rate_type="all_in" if figure.rate_type == "flat" and ("all in" in lowered or "all-in" in lowered) else figure.rate_type,
                speaker_role=side,
                context=utterance.text[:120],
                confidence=60,
            ))
    return quotes


class RateExtractionStage(Stage):
    """Extract quoted rates and payment terms."""

    name = "rate_extraction"
    dependencies = ("classification", "speaker_identification")
    critical = False
    response_model = RateResponse

    def build_prompt(self, view: ContextView) -> tuple[ChatPromptTemplate, dict]:
        prompt = ChatPromptTemplate.from_messages([
            ("system", RATE_SYSTEM_PROMPT),
            ("human", RATE_USER_PROMPT),
        ])
        return prompt, {
            "speaker_roles": speaker_roles_summary(view),
            "transcript": transcript_for_prompt(view),
        }

    async def execute(self, view: ContextView) -> RateList:
        response: RateResponse = await self._infer(view)
        speakers = view.output("speaker_identification")

        quotes = [
            RateQuote(
                amount=candidate.amount,
                rate_type=_normalize_rate_type(candidate.rate_type),
                miles=candidate.miles if candidate.miles and candidate.miles > 0 else None,
                speaker_role=candidate.speaker_role if candidate.speaker_role in _SIDES else "unknown",
                includes_fuel=candidate.includes_fuel,
                context=candidate.context[:120],
                confidence=to_score(candidate.confidence) or 60,
            )
            for candidate in response.rates
        ]
        source = "llm"
        if not quotes:
            quotes = scan_rate_quotes(view, speakers)
            source = "rule"

        confidence = round(sum(q.confidence for q in quotes) / len(quotes)) if quotes else 0
        logger.info("rate_extraction_complete", rates=len(quotes), source=source)
        return RateList(
            rates=tuple(quotes),
            payment_terms=clean_str(response.payment_terms),
            quick_pay=clean_str(response.quick_pay),
            confidence=confidence,
        )
