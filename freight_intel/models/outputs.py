"""Stage output models.

Each stage writes exactly one of these into the run context. They form a
closed tagged union (``kind`` discriminator) so results serialize and
deserialize without guessing. Every variant is frozen: once a stage output
is written, no later stage can change it.

Confidence is always on a 0-100 scale. Where a stage extracts discrete
facts, each fact carries its own confidence through ``ExtractedField``.
"""

from datetime import date
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from freight_intel.models.negotiation import NegotiationOutcome
from freight_intel.models.transcript import CallType


class FrozenModel(BaseModel):
    """Base for immutable stage outputs."""

    model_config = ConfigDict(frozen=True)


class ExtractedField(FrozenModel):
    """A single extracted value with its own confidence."""

    value: Optional[Any] = None
    confidence: int = Field(0, ge=0, le=100)
    source: Literal["llm", "rule", "merged", "none"] = "none"

    @property
    def present(self) -> bool:
        return self.value not in (None, "")


EMPTY_FIELD = ExtractedField()


# =============================================================================
# Classification
# =============================================================================

class ClassificationResult(FrozenModel):
    """What kind of call this is."""

    kind: Literal["classification"] = "classification"
    call_type: CallType
    sub_types: tuple[str, ...] = ()
    indicators: tuple[str, ...] = Field((), description="Phrases that drove the classification")
    has_multiple_loads: bool = False
    is_continuation: bool = False
    hint_agrees: bool = Field(True, description="Whether the caller's call type hint matched")
    reasoning: str = ""
    confidence: int = Field(0, ge=0, le=100)


# =============================================================================
# Speakers
# =============================================================================

class SpeakerRole(str, Enum):
    """Role a diarized speaker plays in the call."""

    BROKER = "broker"
    CARRIER = "carrier"
    DRIVER = "driver"
    DISPATCHER = "dispatcher"
    SHIPPER = "shipper"
    UNKNOWN = "unknown"

    @property
    def negotiating_side(self) -> str:
        """Collapse roles to the two sides of a rate negotiation."""
        if self is SpeakerRole.BROKER:
            return "broker"
        if self in (SpeakerRole.CARRIER, SpeakerRole.DRIVER, SpeakerRole.DISPATCHER):
            return "carrier"
        if self is SpeakerRole.SHIPPER:
            return "shipper"
        return "unknown"


class SpeakerAssignment(FrozenModel):
    """Role assigned to one transcript speaker label."""

    label: str
    role: SpeakerRole
    name: Optional[str] = None
    company: Optional[str] = None
    confidence: int = Field(0, ge=0, le=100)
    source: Literal["llm", "rule", "default"] = "llm"


class SpeakerRoleMap(FrozenModel):
    """Speaker label to role mapping for the whole call."""

    kind: Literal["speakers"] = "speakers"
    assignments: tuple[SpeakerAssignment, ...] = ()
    broker_label: Optional[str] = None
    counterparty_label: Optional[str] = None
    used_fallback: bool = Field(False, description="True when roles came from ordering defaults")
    confidence: int = Field(0, ge=0, le=100)

    def role_for(self, label: str) -> SpeakerRole:
        for assignment in self.assignments:
            if assignment.label == label:
                return assignment.role
        return SpeakerRole.UNKNOWN

    def assignment_for(self, label: str) -> Optional[SpeakerAssignment]:
        return next((a for a in self.assignments if a.label == label), None)


# =============================================================================
# Loads and Rates
# =============================================================================

class Load(FrozenModel):
    """One load discussed on the call."""

    origin_city: Optional[str] = None
    origin_state: Optional[str] = None
    destination_city: Optional[str] = None
    destination_state: Optional[str] = None
    commodity: Optional[str] = None
    weight_lbs: Optional[float] = None
    pallet_count: Optional[int] = None
    equipment_type: Optional[str] = None
    pickup_date: Optional[str] = None
    delivery_date: Optional[str] = None
    reference_number: Optional[str] = None
    special_requirements: tuple[str, ...] = ()
    field_confidence: dict[str, int] = Field(default_factory=dict)
    confidence: int = Field(0, ge=0, le=100)

    @property
    def lane(self) -> str:
        origin = ", ".join(p for p in (self.origin_city, self.origin_state) if p)
        destination = ", ".join(p for p in (self.destination_city, self.destination_state) if p)
        return f"{origin or '?'} -> {destination or '?'}"


class LoadList(FrozenModel):
    kind: Literal["loads"] = "loads"
    loads: tuple[Load, ...] = ()
    confidence: int = Field(0, ge=0, le=100)


class RateQuote(FrozenModel):
    """A rate figure mentioned for a load."""

    amount: float = Field(..., gt=0)
    rate_type: Literal["flat", "per_mile", "all_in"] = "flat"
    miles: Optional[int] = None
    speaker_role: str = "unknown"
    includes_fuel: Optional[bool] = None
    context: str = ""
    confidence: int = Field(0, ge=0, le=100)

    @property
    def total(self) -> Optional[float]:
        """Linehaul total; per-mile quotes need miles to be comparable."""
        if self.rate_type == "per_mile":
            return round(self.amount * self.miles, 2) if self.miles else None
        return self.amount


class RateList(FrozenModel):
    kind: Literal["rates"] = "rates"
    rates: tuple[RateQuote, ...] = ()
    payment_terms: Optional[str] = None
    quick_pay: Optional[str] = None
    confidence: int = Field(0, ge=0, le=100)


# =============================================================================
# Parties
# =============================================================================

class CarrierInfo(FrozenModel):
    """Carrier identity and equipment."""

    kind: Literal["carrier_info"] = "carrier_info"
    company_name: ExtractedField = EMPTY_FIELD
    mc_number: ExtractedField = EMPTY_FIELD
    dot_number: ExtractedField = EMPTY_FIELD
    contact_name: ExtractedField = EMPTY_FIELD
    phone: ExtractedField = EMPTY_FIELD
    email: ExtractedField = EMPTY_FIELD
    driver_name: ExtractedField = EMPTY_FIELD
    driver_phone: ExtractedField = EMPTY_FIELD
    truck_number: ExtractedField = EMPTY_FIELD
    equipment_type: ExtractedField = EMPTY_FIELD
    confidence: int = Field(0, ge=0, le=100)

    @property
    def identity_confidence(self) -> int:
        """Best confidence among the fields that identify the carrier."""
        candidates = [f.confidence for f in (self.mc_number, self.company_name) if f.present]
        return max(candidates, default=0)


class ShipperInfo(FrozenModel):
    """Shipper (customer) identity."""

    kind: Literal["shipper_info"] = "shipper_info"
    company_name: ExtractedField = EMPTY_FIELD
    contact_name: ExtractedField = EMPTY_FIELD
    phone: ExtractedField = EMPTY_FIELD
    email: ExtractedField = EMPTY_FIELD
    location: ExtractedField = EMPTY_FIELD
    shipping_frequency: ExtractedField = EMPTY_FIELD
    typical_lanes: tuple[str, ...] = ()
    confidence: int = Field(0, ge=0, le=100)


# =============================================================================
# Action Items
# =============================================================================

class ActionItem(FrozenModel):
    description: str
    owner: Literal["broker", "carrier", "shipper", "unknown"] = "unknown"
    due: Optional[str] = None
    priority: Literal["low", "medium", "high"] = "medium"


class ActionItemList(FrozenModel):
    kind: Literal["action_items"] = "action_items"
    items: tuple[ActionItem, ...] = ()
    callbacks: tuple[str, ...] = ()
    documents_requested: tuple[str, ...] = ()
    confidence: int = Field(0, ge=0, le=100)


# =============================================================================
# Temporal References
# =============================================================================

TemporalContext = Literal["pickup", "delivery", "appointment", "availability", "deadline", "other"]


class TemporalReference(FrozenModel):
    """A date or time mentioned on the call, resolved against the call date."""

    original_text: str
    resolved_date: Optional[date] = None
    resolved_time: Optional[str] = Field(None, description="HH:MM, 24-hour")
    reference_type: Literal["absolute", "relative", "approximate"] = "relative"
    context: TemporalContext = "other"
    precision: Literal["exact", "day", "week", "approximate"] = "day"
    is_rush: bool = False
    utterance_index: Optional[int] = None
    source: Literal["llm", "rule"] = "rule"
    confidence: int = Field(0, ge=0, le=100)

    @property
    def is_weekend(self) -> bool:
        return self.resolved_date is not None and self.resolved_date.weekday() >= 5


class TemporalResolution(FrozenModel):
    kind: Literal["temporal"] = "temporal"
    reference_date: Optional[date] = None
    references: tuple[TemporalReference, ...] = ()
    assumptions: tuple[str, ...] = ()
    confidence: int = Field(0, ge=0, le=100)

    def first_for(self, context: TemporalContext) -> Optional[TemporalReference]:
        return next((r for r in self.references if r.context == context), None)


# =============================================================================
# Summary
# =============================================================================

class KeyInsight(FrozenModel):
    category: Literal["rate", "schedule", "agreement", "risk", "opportunity"]
    importance: Literal["critical", "high", "medium", "low"] = "medium"
    title: str
    description: str
    evidence: tuple[str, ...] = ()


class CallSummary(FrozenModel):
    """Headline, executive summary and key insights for the whole call."""

    kind: Literal["summary"] = "summary"
    headline: str
    executive_summary: str
    outcome: Literal["agreed", "rejected", "callback_requested", "pending", "information_only"] = "information_only"
    participants: dict[str, str] = Field(default_factory=dict)
    lanes: tuple[str, ...] = ()
    key_insights: tuple[KeyInsight, ...] = ()
    incomplete_stages: tuple[str, ...] = ()
    confidence: int = Field(0, ge=0, le=100)


# =============================================================================
# Validation
# =============================================================================

class WarningSeverity(str, Enum):
    """How much a validation warning matters downstream."""

    BLOCKING = "blocking"    # Prevents rate confirmation generation
    WARNING = "warning"      # Shown to the user, does not block
    INFO = "info"            # Diagnostic only


class ValidationWarning(FrozenModel):
    severity: WarningSeverity
    field: str
    message: str
    suggestion: Optional[str] = None


class ValidationReport(FrozenModel):
    """Cross-stage consistency report and the rate confirmation decision."""

    kind: Literal["validation"] = "validation"
    warnings: tuple[ValidationWarning, ...] = ()
    should_generate_rate_confirmation: bool = False
    requires_human_review: bool = False
    review_reasons: tuple[str, ...] = ()
    next_steps: tuple[str, ...] = ()
    absent_stages: tuple[str, ...] = ()
    confidence: int = Field(0, ge=0, le=100, description="Overall data quality score")

    @property
    def blocking_warnings(self) -> list[ValidationWarning]:
        return [w for w in self.warnings if w.severity == WarningSeverity.BLOCKING]


StageOutput = Annotated[
    Union[
        ClassificationResult,
        SpeakerRoleMap,
        LoadList,
        RateList,
        CarrierInfo,
        ShipperInfo,
        NegotiationOutcome,
        ActionItemList,
        TemporalResolution,
        CallSummary,
        ValidationReport,
    ],
    Field(discriminator="kind"),
]
