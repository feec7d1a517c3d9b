"""Negotiation outcome model.

The four statuses are mutually exclusive labels chosen by rule priority, not
states of a live object: once resolved, an outcome never transitions.
``pending`` is the safe default and means "needs human review".
"""

from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class NegotiationStatus(str, Enum):
    """Resolved state of a broker/carrier rate discussion."""

    PENDING = "pending"
    AGREED = "agreed"
    REJECTED = "rejected"
    CALLBACK_REQUESTED = "callback_requested"


class RateObservation(BaseModel):
    """One rate figure mentioned in the dialogue, in chronological order."""

    model_config = ConfigDict(frozen=True)

    speaker: Literal["broker", "carrier", "unknown"]
    speaker_label: str
    rate: float = Field(..., gt=0)
    utterance_index: int = Field(..., ge=0)
    action: Literal["offer", "counter", "accept", "mention"] = "mention"
    rate_type: Literal["flat", "per_mile"] = "flat"


class NegotiationConfidence(BaseModel):
    """Per-field confidence sub-scores; deliberately never blended."""

    model_config = ConfigDict(frozen=True)

    agreement_status: int = Field(50, ge=0, le=100)
    agreed_rate: int = Field(0, ge=0, le=100)
    final_positions: int = Field(50, ge=0, le=100)


class RateProgression(BaseModel):
    """Shape of the offer/counter-offer sequence."""

    model_config = ConfigDict(frozen=True)

    pattern: Literal[
        "no_negotiation",
        "one_sided",
        "agreement_reached",
        "diverging_positions",
        "single_round",
        "standard_negotiation",
    ] = "no_negotiation"
    final_gap: float = 0.0
    number_of_rounds: int = 0
    convergence: bool = False


class NegotiationOutcome(BaseModel):
    """Classified result of a broker/carrier rate discussion."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["negotiation"] = "negotiation"
    status: NegotiationStatus = NegotiationStatus.PENDING
    agreed_rate: Optional[float] = None
    rate_type: Literal["flat", "per_mile", "all_in"] = "flat"
    rate_includes_fuel: Optional[bool] = None
    broker_final_position: Optional[float] = None
    carrier_final_position: Optional[float] = None
    rate_history: tuple[RateObservation, ...] = ()
    accessorials_discussed: dict[str, str] = Field(default_factory=dict)
    contingencies: tuple[str, ...] = ()
    rejection_reason: Optional[str] = None
    callback_conditions: Optional[str] = None
    pending_reason: Optional[str] = None
    progression: RateProgression = RateProgression()
    model_status: Optional[NegotiationStatus] = Field(
        None, description="Status suggested by the inference service, kept for audit"
    )
    confidence: int = Field(0, ge=0, le=100)
    field_confidence: NegotiationConfidence = NegotiationConfidence()

    @property
    def position_gap(self) -> Optional[float]:
        if self.broker_final_position is None or self.carrier_final_position is None:
            return None
        return abs(self.broker_final_position - self.carrier_final_position)
