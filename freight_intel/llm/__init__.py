"""LLM client and inference boundary."""

from .client import create_json_llm_client
from .inference import (
    InferenceRequest,
    InferenceResponse,
    InferenceService,
    OllamaInferenceService,
    validate_payload,
)
from .json_parsing import parse_json_response

__all__ = [
    "create_json_llm_client",
    "InferenceRequest",
    "InferenceResponse",
    "InferenceService",
    "OllamaInferenceService",
    "parse_json_response",
    "validate_payload",
]
