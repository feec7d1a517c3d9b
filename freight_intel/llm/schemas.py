"""Response schemas the inference service must satisfy.

These describe the raw model answer, not the stage outputs: stages normalize
and enforce hard rules on top of them. Every field has a default so that an
answer that simply omits a section is still valid; wrong types are not.
Confidence values are accepted on either a 0-1 or 0-100 scale and normalized
by the stages.
"""

from typing import Optional

from pydantic import BaseModel, Field


# =============================================================================
# Classification
# =============================================================================

class ClassificationResponse(BaseModel):
    call_type: str = "unknown"
    sub_types: list[str] = Field(default_factory=list)
    indicators: list[str] = Field(default_factory=list)
    has_multiple_loads: bool = False
    is_continuation: bool = False
    confidence: float = Field(0, ge=0, le=100)
    reasoning: str = ""


# =============================================================================
# Speakers
# =============================================================================

class SpeakerCandidate(BaseModel):
    label: str
    role: str = "unknown"
    name: Optional[str] = None
    company: Optional[str] = None
    confidence: float = Field(0, ge=0, le=100)


class SpeakerResponse(BaseModel):
    speakers: list[SpeakerCandidate] = Field(default_factory=list)
    broker_label: Optional[str] = None


# =============================================================================
# Loads and Rates
# =============================================================================

class LoadCandidate(BaseModel):
    origin_city: Optional[str] = None
    origin_state: Optional[str] = None
    destination_city: Optional[str] = None
    destination_state: Optional[str] = None
    commodity: Optional[str] = None
    weight: Optional[float] = None
    weight_unit: Optional[str] = None
    pallet_count: Optional[int] = None
    equipment_type: Optional[str] = None
    pickup_date: Optional[str] = None
    delivery_date: Optional[str] = None
    reference_number: Optional[str] = None
    special_requirements: list[str] = Field(default_factory=list)
    confidence: float = Field(0, ge=0, le=100)


class LoadResponse(BaseModel):
    loads: list[LoadCandidate] = Field(default_factory=list)


class RateCandidate(BaseModel):
    amount: float = Field(..., gt=0)
    rate_type: str = "flat"
    miles: Optional[int] = None
    speaker_role: str = "unknown"
    includes_fuel: Optional[bool] = None
    context: str = ""
    confidence: float = Field(0, ge=0, le=100)


class RateResponse(BaseModel):
    rates: list[RateCandidate] = Field(default_factory=list)
    payment_terms: Optional[str] = None
    quick_pay: Optional[str] = None


# =============================================================================
# Parties
# =============================================================================

class CarrierResponse(BaseModel):
    company_name: Optional[str] = None
    mc_number: Optional[str] = None
    dot_number: Optional[str] = None
    contact_name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    driver_name: Optional[str] = None
    driver_phone: Optional[str] = None
    truck_number: Optional[str] = None
    equipment_type: Optional[str] = None
    field_confidence: dict[str, float] = Field(default_factory=dict)
    confidence: float = Field(0, ge=0, le=100)


class ShipperResponse(BaseModel):
    company_name: Optional[str] = None
    contact_name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    location: Optional[str] = None
    shipping_frequency: Optional[str] = None
    typical_lanes: list[str] = Field(default_factory=list)
    field_confidence: dict[str, float] = Field(default_factory=dict)
    confidence: float = Field(0, ge=0, le=100)


# =============================================================================
# Negotiation
# =============================================================================

class RateMention(BaseModel):
    utterance_index: int = Field(..., ge=0)
    speaker_label: str
    rate: float = Field(..., gt=0)


class NegotiationResponse(BaseModel):
    status: Optional[str] = None
    agreed_rate: Optional[float] = None
    rate_includes_fuel: Optional[bool] = None
    rate_mentions: list[RateMention] = Field(default_factory=list)
    accessorials: dict[str, str] = Field(default_factory=dict)
    contingencies: list[str] = Field(default_factory=list)
    rejection_reason: Optional[str] = None
    callback_conditions: Optional[str] = None
    pending_reason: Optional[str] = None


# =============================================================================
# Action Items
# =============================================================================

class ActionItemCandidate(BaseModel):
    description: str
    owner: str = "unknown"
    due: Optional[str] = None
    priority: str = "medium"


class ActionItemResponse(BaseModel):
    items: list[ActionItemCandidate] = Field(default_factory=list)
    callbacks: list[str] = Field(default_factory=list)
    documents_requested: list[str] = Field(default_factory=list)
    confidence: float = Field(0, ge=0, le=100)


# =============================================================================
# Temporal References
# =============================================================================

class TemporalCandidate(BaseModel):
    original_text: str = ""
    resolved_date: Optional[str] = None
    resolved_time: Optional[str] = None
    context: Optional[str] = "other"
    is_rush: Optional[bool] = None
    confidence: float = Field(0, ge=0, le=100)


class TemporalResponse(BaseModel):
    references: list[TemporalCandidate] = Field(default_factory=list)
    assumptions: list[str] = Field(default_factory=list)
    confidence: float = Field(0, ge=0, le=100)
