"""Run inputs: the transcript and the metadata that accompanies it.

Both are supplied once at run start and frozen; no stage can mutate them.
"""

from datetime import date
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class CallType(str, Enum):
    """Call type hint supplied by the caller and refined by classification."""

    SHIPPER = "shipper"          # Customer booking or quoting freight
    CARRIER = "carrier"          # Broker covering a load with a carrier
    CHECK_CALL = "check_call"    # Status update on a load already moving
    UNKNOWN = "unknown"


class Utterance(BaseModel):
    """A single speaker turn as produced by the transcription service."""

    model_config = ConfigDict(frozen=True)

    speaker_label: str = Field(..., min_length=1, description="Diarization label, e.g. 'A' or 'Speaker 1'")
    text: str
    start_ms: int = Field(0, ge=0)
    end_ms: int = Field(0, ge=0)
    confidence: float = Field(1.0, ge=0.0, le=1.0, description="Transcription confidence")

    @model_validator(mode="after")
    def _check_span(self) -> "Utterance":
        if self.end_ms and self.end_ms < self.start_ms:
            raise ValueError(f"end_ms ({self.end_ms}) precedes start_ms ({self.start_ms})")
        return self


class Transcript(BaseModel):
    """Ordered utterances plus the flattened full text."""

    model_config = ConfigDict(frozen=True)

    utterances: tuple[Utterance, ...] = ()
    text: str = ""

    @model_validator(mode="after")
    def _derive_text(self) -> "Transcript":
        if not self.text and self.utterances:
            flattened = "\n".join(f"{u.speaker_label}: {u.text}" for u in self.utterances)
            object.__setattr__(self, "text", flattened)
        return self

    @property
    def speaker_labels(self) -> list[str]:
        """Distinct speaker labels in order of first appearance."""
        seen: list[str] = []
        for utterance in self.utterances:
            if utterance.speaker_label not in seen:
                seen.append(utterance.speaker_label)
        return seen

    @property
    def is_empty(self) -> bool:
        return not self.text.strip()

    def excerpt(self, max_chars: int) -> str:
        """Leading slice of the full text, cut on a line boundary when possible."""
        if len(self.text) <= max_chars:
            return self.text
        cut = self.text.rfind("\n", 0, max_chars)
        return self.text[: cut if cut > 0 else max_chars]

    def format_utterances(self, limit: Optional[int] = None) -> str:
        """Indexed utterance listing used inside prompts."""
        selected = self.utterances if limit is None else self.utterances[:limit]
        return "\n".join(
            f"[{i}][{u.speaker_label}] {u.text}" for i, u in enumerate(selected)
        )


class RunMetadata(BaseModel):
    """Identifiers and hints for one extraction run."""

    model_config = ConfigDict(frozen=True)

    call_id: str = Field(..., min_length=1)
    organization_id: str
    user_id: str
    call_type: CallType = CallType.UNKNOWN
    call_date: Optional[date] = None
