"""Action items stage: follow-ups promised or requested on the call."""

import structlog
from langchain_core.prompts import ChatPromptTemplate
from rapidfuzz import fuzz, utils

from freight_intel.config.prompts import ACTION_ITEMS_SYSTEM_PROMPT, ACTION_ITEMS_USER_PROMPT
from freight_intel.llm.schemas import ActionItemResponse
from freight_intel.models.outputs import ActionItem, ActionItemList
from freight_intel.pipeline.context import ContextView
from freight_intel.pipeline.stage import Stage, call_type_of
from freight_intel.pipeline.stages.common import clean_str, to_score, transcript_for_prompt

logger = structlog.get_logger(__name__)

_OWNERS = {"broker", "carrier", "shipper"}
_PRIORITIES = {"low", "medium", "high"}
DUPLICATE_SIMILARITY = 90


def dedupe_texts(texts: list[str]) -> list[str]:
    """Drop near-duplicate phrasings, keeping the first."""
    kept: list[str] = []
    for text in texts:
        if not any(
            fuzz.token_sort_ratio(text, other, processor=utils.default_process) >= DUPLICATE_SIMILARITY
            for other in kept
        ):
            kept.append(text)
    return kept


class ActionItemsStage(Stage):
    """Extract action items, callbacks and requested documents."""

    name = "action_items"
    dependencies = ("classification",)
    critical = False
    response_model = ActionItemResponse

    def build_prompt(self, view: ContextView) -> tuple[ChatPromptTemplate, dict]:
        prompt = ChatPromptTemplate.from_messages([
            ("system", ACTION_ITEMS_SYSTEM_PROMPT),
            ("human", ACTION_ITEMS_USER_PROMPT),
        ])
        return prompt, {
            "call_type": call_type_of(view).value,
            "transcript": transcript_for_prompt(view),
        }

    async def execute(self, view: ContextView) -> ActionItemList:
        response: ActionItemResponse = await self._infer(view)

        descriptions = dedupe_texts([d for d in (clean_str(i.description) for i in response.items) if d])
        items = []
        for candidate in response.items:
            description = clean_str(candidate.description)
            if description not in descriptions or any(i.description == description for i in items):
                continue
            items.append(ActionItem(
                description=description,
                owner=candidate.owner if candidate.owner in _OWNERS else "unknown",
                due=clean_str(candidate.due),
                priority=candidate.priority if candidate.priority in _PRIORITIES else "medium",
            ))

        result = ActionItemList(
            items=tuple(items),
            callbacks=tuple(dedupe_texts([c for c in (clean_str(x) for x in response.callbacks) if c])),
            documents_requested=tuple(
                dedupe_texts([d for d in (clean_str(x) for x in response.documents_requested) if d])
            ),
            confidence=to_score(response.confidence) or (60 if items else 0),
        )
        logger.info("action_items_complete", items=len(result.items), callbacks=len(result.callbacks))
        return result
