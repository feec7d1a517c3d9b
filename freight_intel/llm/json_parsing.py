"""Recover a JSON object from raw model output.

Local models frequently wrap JSON in code fences, prepend reasoning, or leave
trailing commas. These helpers try progressively looser strategies before
giving up with ``MalformedOutputError`` (which the orchestrator retries).
"""

import json
import re
from typing import Optional

import structlog

from freight_intel.pipeline.errors import MalformedOutputError

logger = structlog.get_logger(__name__)

_CODE_BLOCK = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", re.IGNORECASE)
_PREAMBLE = re.compile(
    r"(?:here\'?s?\s+(?:the\s+)?(?:json|output|result)|output|result|response)\s*:?\s*",
    re.IGNORECASE,
)
_TRAILING_COMMA = re.compile(r",(\s*[}\]])")


def extract_json_object(text: str) -> Optional[str]:
    """Return the first balanced ``{...}`` span, ignoring braces inside strings."""
    depth = 0
    start = None
    in_string = False
    escaped = False

    for i, char in enumerate(text):
        if escaped:
            escaped = False
            continue
        if char == "\\" and in_string:
            escaped = True
            continue
        if char == '"':
            in_string = not in_string
            continue
        if in_string:
            continue

        if char == "{":
            if depth == 0:
                start = i
            depth += 1
        elif char == "}" and depth:
            depth -= 1
            if depth == 0 and start is not None:
                return text[start:i + 1]

    return None


def clean_json_string(text: str) -> str:
    """Strip zero-width characters and trailing commas (a common model mistake)."""
    text = text.strip("\ufeff\u200b\u200c\u200d")
    return _TRAILING_COMMA.sub(r"\1", text)


def _try_load(candidate: str) -> Optional[dict]:
    try:
        value = json.loads(clean_json_string(candidate))
    except json.JSONDecodeError:
        return None
    return value if isinstance(value, dict) else None


def parse_json_response(response: str, stage: Optional[str] = None) -> dict:
    """Parse a JSON object out of an LLM response.

    Args:
        response: Raw text returned by the model.
        stage: Stage name, used for error context only.

    Returns:
        The parsed JSON object.

    Raises:
        MalformedOutputError: If no JSON object can be recovered.
    """
    if not response or not response.strip():
        raise MalformedOutputError("Empty response from inference service", stage=stage)

    text = response.strip()

    # Strategy 1: fenced code block
    match = _CODE_BLOCK.search(text)
    if match and match.group(1).strip().startswith("{"):
        text = match.group(1).strip()

    # Strategy 2: drop a "Here's the JSON:" style preamble
    if not text.startswith("{"):
        parts = _PREAMBLE.split(text)
        if len(parts) > 1 and parts[-1].strip().startswith("{"):
            text = parts[-1].strip()

    # Strategy 3: direct parse
    parsed = _try_load(text)
    if parsed is not None:
        return parsed

    # Strategy 4: brace matching on the narrowed text, then on the original
    for source in (text, response):
        extracted = extract_json_object(source)
        if extracted:
            parsed = _try_load(extracted)
            if parsed is not None:
                return parsed

    preview = text[:150]
    logger.warning("json_parse_error", stage=stage, response_preview=preview)
    raise MalformedOutputError(
        f"Failed to parse JSON response. Response preview: {preview}",
        stage=stage,
        raw_preview=preview,
    )
