"""Carrier and shipper information stages.

The LLM extracts identity fields with per-field confidence. For carriers,
MC and DOT numbers are cross-checked against the transcript text because the
rate confirmation decision depends on them:

- transcript and model agree  -> value kept, confidence raised
- only the transcript has one -> transcript value at a fixed rule confidence
- they disagree               -> transcript value, confidence lowered
"""

import re
from typing import Optional

import structlog
from langchain_core.prompts import ChatPromptTemplate

from freight_intel.config.prompts import (
    CARRIER_SYSTEM_PROMPT,
    CARRIER_USER_PROMPT,
    SHIPPER_SYSTEM_PROMPT,
    SHIPPER_USER_PROMPT,
)
from freight_intel.llm.schemas import CarrierResponse, ShipperResponse
from freight_intel.models.outputs import CarrierInfo, ExtractedField, ShipperInfo
from freight_intel.models.transcript import CallType, Transcript
from freight_intel.pipeline.context import ContextView
from freight_intel.pipeline.stage import Stage
from freight_intel.pipeline.stages.common import (
    clean_str,
    digits_only,
    speaker_roles_summary,
    to_score,
    transcript_for_prompt,
)
from freight_intel.pipeline.stages.loads import normalize_equipment

logger = structlog.get_logger(__name__)

RULE_IDENTIFIER_CONFIDENCE = 75
AGREEMENT_CONFIDENCE_FLOOR = 90
DISAGREEMENT_CONFIDENCE = 60

_MC_PATTERN = re.compile(
    r"\bMC\s*(?:number|#|no\.?)?\s*(?:is\s*)?[:#]?\s*(\d{5,8}|\d(?:[\s-]\d){4,7})\b",
    re.IGNORECASE,
)
_DOT_PATTERN = re.compile(
    r"\b(?:US\s*)?DOT\s*(?:number|#|no\.?)?\s*(?:is\s*)?[:#]?\s*(\d{5,9}|\d(?:[\s-]\d){4,8})\b",
    re.IGNORECASE,
)


def find_identifier(pattern: re.Pattern, transcript: Transcript) -> Optional[str]:
    """Last identifier of the given kind spoken in the call, digits only."""
    found = None
    for utterance in transcript.utterances or ():
        for match in pattern.finditer(utterance.text):
            found = digits_only(match.group(1))
    if found is None and not transcript.utterances:
        for match in pattern.finditer(transcript.text):
            found = digits_only(match.group(1))
    return found


def field_from_llm(value: Optional[str], confidences: dict[str, float], key: str, default: int) -> ExtractedField:
    cleaned = clean_str(value)
    if cleaned is None:
        return ExtractedField()
    score = to_score(confidences.get(key)) or default
    return ExtractedField(value=cleaned, confidence=score, source="llm")


def reconcile_identifier(model_value: ExtractedField, transcript_digits: Optional[str]) -> ExtractedField:
    """Merge a model-reported identifier with the one found in the transcript."""
    model_digits = digits_only(model_value.value) if model_value.present else ""
    if transcript_digits is None:
        if model_digits:
            return ExtractedField(value=model_digits, confidence=model_value.confidence, source="llm")
        return ExtractedField()
    if not model_digits:
        return ExtractedField(value=transcript_digits, confidence=RULE_IDENTIFIER_CONFIDENCE, source="rule")
    if model_digits == transcript_digits:
        return ExtractedField(
            value=transcript_digits,
            confidence=max(model_value.confidence, AGREEMENT_CONFIDENCE_FLOOR),
            source="merged",
        )
    return ExtractedField(value=transcript_digits, confidence=DISAGREEMENT_CONFIDENCE, source="merged")


class CarrierInformationStage(Stage):
    """Extract carrier identity, contact and equipment."""

    name = "carrier_information"
    dependencies = ("classification", "speaker_identification")
    critical = False
    response_model = CarrierResponse
    applies_to = frozenset({CallType.CARRIER, CallType.CHECK_CALL, CallType.UNKNOWN})

    def build_prompt(self, view: ContextView) -> tuple[ChatPromptTemplate, dict]:
        prompt = ChatPromptTemplate.from_messages([
            ("system", CARRIER_SYSTEM_PROMPT),
            ("human", CARRIER_USER_PROMPT),
        ])
        return prompt, {
            "speaker_roles": speaker_roles_summary(view),
            "transcript": transcript_for_prompt(view),
        }

    async def execute(self, view: ContextView) -> CarrierInfo:
        response: CarrierResponse = await self._infer(view)
        base = to_score(response.confidence) or 60
        conf = response.field_confidence

        def llm_field(key: str) -> ExtractedField:
            return field_from_llm(getattr(response, key), conf, key, base)

        mc_number = reconcile_identifier(llm_field("mc_number"), find_identifier(_MC_PATTERN, view.transcript))
        dot_number = reconcile_identifier(llm_field("dot_number"), find_identifier(_DOT_PATTERN, view.transcript))

        equipment = llm_field("equipment_type")
        if equipment.present:
            equipment = equipment.model_copy(update={"value": normalize_equipment(equipment.value)})

        info = CarrierInfo(
            company_name=llm_field("company_name"),
            mc_number=mc_number,
            dot_number=dot_number,
            contact_name=llm_field("contact_name"),
            phone=llm_field("phone"),
            email=llm_field("email"),
            driver_name=llm_field("driver_name"),
            driver_phone=llm_field("driver_phone"),
            truck_number=llm_field("truck_number"),
            equipment_type=equipment,
            confidence=base,
        )

        logger.info(
            "carrier_information_complete",
            has_mc=info.mc_number.present,
            mc_source=info.mc_number.source,
            identity_confidence=info.identity_confidence,
        )
        return info


class ShipperInformationStage(Stage):
    """Extract shipper identity and shipping profile."""

    name = "shipper_information"
    dependencies = ("classification", "speaker_identification")
    critical = False
    response_model = ShipperResponse
    applies_to = frozenset({CallType.SHIPPER, CallType.UNKNOWN})

    def build_prompt(self, view: ContextView) -> tuple[ChatPromptTemplate, dict]:
        prompt = ChatPromptTemplate.from_messages([
            ("system", SHIPPER_SYSTEM_PROMPT),
            ("human", SHIPPER_USER_PROMPT),
        ])
        return prompt, {
            "speaker_roles": speaker_roles_summary(view),
            "transcript": transcript_for_prompt(view),
        }

    async def execute(self, view: ContextView) -> ShipperInfo:
        response: ShipperResponse = await self._infer(view)
        base = to_score(response.confidence) or 60
        conf = response.field_confidence

        info = ShipperInfo(
            company_name=field_from_llm(response.company_name, conf, "company_name", base),
            contact_name=field_from_llm(response.contact_name, conf, "contact_name", base),
            phone=field_from_llm(response.phone, conf, "phone", base),
            email=field_from_llm(response.email, conf, "email", base),
            location=field_from_llm(response.location, conf, "location", base),
            shipping_frequency=field_from_llm(response.shipping_frequency, conf, "shipping_frequency", base),
            typical_lanes=tuple(lane for lane in (clean_str(l) for l in response.typical_lanes) if lane),
            confidence=base,
        )

        logger.info("shipper_information_complete", has_company=info.company_name.present)
        return info
