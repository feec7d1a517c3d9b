"""Inference collaborator boundary.

Stages never talk to a model directly. They hand an ``InferenceRequest`` (a
prompt template, its variables, and the pydantic schema the answer must
satisfy) to an ``InferenceService`` and receive a validated payload plus the
metered token usage for that single call.

Failures are typed so the orchestrator can decide what to retry:
- ``InferenceTimeoutError``: the per-call timeout elapsed
- ``RateLimitedError``: the service pushed back
- ``MalformedOutputError``: the answer was not JSON or failed the schema
"""

import asyncio
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Optional, Protocol, runtime_checkable

import httpx
import structlog
import tiktoken
from langchain_core.output_parsers import StrOutputParser
from langchain_core.prompts import ChatPromptTemplate
from pydantic import BaseModel, ValidationError

from freight_intel.config.settings import Settings, get_settings
from freight_intel.llm.client import create_json_llm_client
from freight_intel.llm.json_parsing import parse_json_response
from freight_intel.models.result import TokenUsage
from freight_intel.pipeline.errors import (
    InferenceTimeoutError,
    MalformedOutputError,
    RateLimitedError,
    TransientInferenceError,
)

logger = structlog.get_logger(__name__)

_RATE_LIMIT_MARKERS = ("429", "rate limit", "too many requests")


@dataclass(frozen=True)
class InferenceRequest:
    """One stage-specific inference call."""
    stage: str
    prompt: ChatPromptTemplate
    variables: dict[str, Any]
    response_model: type[BaseModel]


@dataclass(frozen=True)
class InferenceResponse:
    """Validated payload and the usage metered for the call."""
    payload: BaseModel
    usage: TokenUsage = field(default_factory=TokenUsage)


@runtime_checkable
class InferenceService(Protocol):
    """Anything that can answer an ``InferenceRequest``."""

    async def complete(self, request: InferenceRequest) -> InferenceResponse:
        ...


def validate_payload(request: InferenceRequest, payload: dict) -> BaseModel:
    """Validate a parsed JSON payload against the request's schema.

    Raises:
        MalformedOutputError: If the payload does not fit the schema.
    """
    try:
        return request.response_model.model_validate(payload)
    except ValidationError as e:
        raise MalformedOutputError(
            f"Response failed {request.response_model.__name__} validation: {e.error_count()} error(s)",
            stage=request.stage,
            raw_preview=str(payload)[:150],
        ) from e


@lru_cache
def _get_encoding(encoding_name: str) -> tiktoken.Encoding:
    return tiktoken.get_encoding(encoding_name)


class OllamaInferenceService:
    """Default inference service backed by a local Ollama model via LangChain."""

    def __init__(self, settings: Optional[Settings] = None, llm: Any = None):
        self.settings = settings or get_settings()
        self._llm = llm if llm is not None else create_json_llm_client(self.settings)

    def count_tokens(self, text: str) -> int:
        return len(_get_encoding(self.settings.token_encoding_name).encode(text))

    def _meter(self, prompt_text: str, completion: str) -> TokenUsage:
        prompt_tokens = self.count_tokens(prompt_text)
        completion_tokens = self.count_tokens(completion)
        cost = (
            prompt_tokens / 1000 * self.settings.cost_per_1k_prompt_tokens
            + completion_tokens / 1000 * self.settings.cost_per_1k_completion_tokens
        )
        return TokenUsage(
            calls=1,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            cost_usd=round(cost, 6),
        )

    async def complete(self, request: InferenceRequest) -> InferenceResponse:
        """Run the prompt, recover JSON and validate it.

        Raises:
            InferenceTimeoutError: The call exceeded ``llm_request_timeout``.
            RateLimitedError: The service reported rate limiting.
            TransientInferenceError: The service was unreachable.
            MalformedOutputError: The answer could not be parsed or validated.
        """
        chain = request.prompt | self._llm | StrOutputParser()
        timeout = self.settings.llm_request_timeout

        logger.debug("inference_call_start", stage=request.stage, model=self.settings.llm_model_name)

        try:
            raw = await asyncio.wait_for(chain.ainvoke(request.variables), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise InferenceTimeoutError(
                f"Inference call exceeded {timeout}s", stage=request.stage
            ) from e
        except (ConnectionError, OSError, httpx.TransportError) as e:
            raise TransientInferenceError(f"Inference service unreachable: {e}", stage=request.stage) from e
        except Exception as e:
            message = str(e).lower()
            if any(marker in message for marker in _RATE_LIMIT_MARKERS):
                raise RateLimitedError(str(e), stage=request.stage) from e
            raise

        usage = self._meter(request.prompt.format(**request.variables), raw)
        payload = validate_payload(request, parse_json_response(raw, stage=request.stage))

        logger.debug(
            "inference_call_complete",
            stage=request.stage,
            prompt_tokens=usage.prompt_tokens,
            completion_tokens=usage.completion_tokens,
        )
        return InferenceResponse(payload=payload, usage=usage)
