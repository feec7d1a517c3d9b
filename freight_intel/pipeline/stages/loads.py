"""Load extraction stage.

The LLM lists loads; code normalizes units, equipment and state codes and
drops entries that carry no lane, commodity or reference at all.
"""

from typing import Optional

import structlog
from langchain_core.prompts import ChatPromptTemplate
from rapidfuzz import fuzz, process

from freight_intel.config.prompts import LOAD_SYSTEM_PROMPT, LOAD_USER_PROMPT
from freight_intel.llm.schemas import LoadCandidate, LoadResponse
from freight_intel.models.outputs import Load, LoadList
from freight_intel.pipeline.context import ContextView
from freight_intel.pipeline.stage import Stage, call_type_of
from freight_intel.pipeline.stages.common import (
    clean_str,
    speaker_roles_summary,
    to_score,
    transcript_for_prompt,
)

logger = structlog.get_logger(__name__)


EQUIPMENT_ALIASES = {
    "dry van": "dry_van",
    "van": "dry_van",
    "53 foot van": "dry_van",
    "53 van": "dry_van",
    "reefer": "reefer",
    "refrigerated": "reefer",
    "flatbed": "flatbed",
    "flat": "flatbed",
    "step deck": "step_deck",
    "stepdeck": "step_deck",
    "drop deck": "step_deck",
    "power only": "power_only",
    "hotshot": "hotshot",
    "hot shot": "hotshot",
    "conestoga": "conestoga",
    "box truck": "box_truck",
    "tanker": "tanker",
    "lowboy": "lowboy",
}

_WEIGHT_FACTORS = {
    "lb": 1.0,
    "lbs": 1.0,
    "pound": 1.0,
    "pounds": 1.0,
    "ton": 2000.0,
    "tons": 2000.0,
    "kg": 2.20462,
    "kgs": 2.20462,
    "kilograms": 2.20462,
}


def normalize_equipment(raw: Optional[str]) -> Optional[str]:
    value = clean_str(raw)
    if value is None:
        return None
    key = value.lower().replace("-", " ").replace("'", "").strip()
    if key in EQUIPMENT_ALIASES:
        return EQUIPMENT_ALIASES[key]
    best = process.extractOne(key, list(EQUIPMENT_ALIASES), scorer=fuzz.WRatio, score_cutoff=85)
    return EQUIPMENT_ALIASES[best[0]] if best else key.replace(" ", "_")


def normalize_weight(weight: Optional[float], unit: Optional[str]) -> Optional[float]:
    """Convert to pounds. Bare weights under 100 are taken as tons."""
    if weight is None or weight <= 0:
        return None
    factor = _WEIGHT_FACTORS.get((unit or "").strip().lower().rstrip("."))
    if factor is None:
        factor = 2000.0 if weight < 100 else 1.0
    return round(weight * factor, 1)


def normalize_state(raw: Optional[str]) -> Optional[str]:
    value = clean_str(raw)
    if value is None:
        return None
    value = value.replace(".", "").strip()
    return value.upper() if len(value) == 2 else value.title()


def build_load(candidate: LoadCandidate) -> Optional[Load]:
    """Normalize one candidate; None if it identifies nothing."""
    values = {
        "origin_city": clean_str(candidate.origin_city),
        "origin_state": normalize_state(candidate.origin_state),
        "destination_city": clean_str(candidate.destination_city),
        "destination_state": normalize_state(candidate.destination_state),
        "commodity": clean_str(candidate.commodity),
        "weight_lbs": normalize_weight(candidate.weight, candidate.weight_unit),
        "pallet_count": candidate.pallet_count if candidate.pallet_count and candidate.pallet_count > 0 else None,
        "equipment_type": normalize_equipment(candidate.equipment_type),
        "pickup_date": clean_str(candidate.pickup_date),
        "delivery_date": clean_str(candidate.delivery_date),
        "reference_number": clean_str(candidate.reference_number),
    }
    identifying = ("origin_city", "destination_city", "commodity", "reference_number")
    if not any(values[key] for key in identifying):
        return None

    confidence = to_score(candidate.confidence) or 50
    field_confidence = {key: confidence for key, value in values.items() if value is not None}
    return Load(
        **values,
        special_requirements=tuple(r for r in (clean_str(s) for s in candidate.special_requirements) if r),
        field_confidence=field_confidence,
        confidence=confidence,
    )


class LoadExtractionStage(Stage):
    """Extract every load discussed on the call."""

    name = "load_extraction"
    dependencies = ("classification", "speaker_identification")
    critical = False
    response_model = LoadResponse

    def build_prompt(self, view: ContextView) -> tuple[ChatPromptTemplate, dict]:
        prompt = ChatPromptTemplate.from_messages([
            ("system", LOAD_SYSTEM_PROMPT),
            ("human", LOAD_USER_PROMPT),
        ])
        return prompt, {
            "call_type": call_type_of(view).value,
            "speaker_roles": speaker_roles_summary(view),
            "transcript": transcript_for_prompt(view),
        }

    async def execute(self, view: ContextView) -> LoadList:
        response: LoadResponse = await self._infer(view)
        loads = [load for load in (build_load(c) for c in response.loads) if load is not None]
        dropped = len(response.loads) - len(loads)

        confidence = round(sum(l.confidence for l in loads) / len(loads)) if loads else 0
        logger.info("load_extraction_complete", loads=len(loads), dropped=dropped)
        return LoadList(loads=tuple(loads), confidence=confidence)
