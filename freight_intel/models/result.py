"""Terminal artifact of an extraction run and the per-stage bookkeeping."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from freight_intel.models.negotiation import NegotiationOutcome
from freight_intel.models.outputs import (
    ActionItemList,
    CallSummary,
    CarrierInfo,
    ClassificationResult,
    LoadList,
    RateList,
    ShipperInfo,
    SpeakerRoleMap,
    StageOutput,
    TemporalResolution,
    ValidationReport,
    ValidationWarning,
)


class RunStatus(str, Enum):
    """Overall outcome of a run, as shown to users."""

    COMPLETE = "complete"    # Every applicable stage completed
    PARTIAL = "partial"      # A best-effort stage failed; results need review
    FAILED = "failed"        # A critical stage failed; outputs kept for diagnostics


class StageStatus(str, Enum):
    """Recorded outcome of a single stage."""

    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED_DEPENDENCY_FAILED = "skipped_dependency_failed"
    SKIPPED_NOT_APPLICABLE = "skipped_not_applicable"


class TokenUsage(BaseModel):
    """Metered inference usage."""

    model_config = ConfigDict(frozen=True)

    calls: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0
    cost_usd: float = 0.0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    def plus(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(
            calls=self.calls + other.calls,
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            cost_usd=round(self.cost_usd + other.cost_usd, 6),
        )


class StageRecord(BaseModel):
    """What happened to one stage during a run."""

    model_config = ConfigDict(frozen=True)

    stage: str
    status: StageStatus
    critical: bool
    attempts: int = 0
    duration_seconds: float = 0.0
    error: Optional[str] = None
    error_type: Optional[str] = None
    usage: TokenUsage = TokenUsage()


class ExtractionResult(BaseModel):
    """Everything a run produced. Frozen once returned."""

    model_config = ConfigDict(frozen=True)

    call_id: str
    status: RunStatus
    outputs: dict[str, StageOutput] = Field(default_factory=dict)
    negotiation: Optional[NegotiationOutcome] = None
    should_generate_rate_confirmation: bool = False
    warnings: tuple[ValidationWarning, ...] = ()
    stage_records: tuple[StageRecord, ...] = ()
    usage: TokenUsage = TokenUsage()
    started_at: datetime
    finished_at: datetime

    @property
    def duration_seconds(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()

    def record_for(self, stage: str) -> Optional[StageRecord]:
        return next((r for r in self.stage_records if r.stage == stage), None)

    @property
    def classification(self) -> Optional[ClassificationResult]:
        return self.outputs.get("classification")

    @property
    def speakers(self) -> Optional[SpeakerRoleMap]:
        return self.outputs.get("speaker_identification")

    @property
    def loads(self) -> Optional[LoadList]:
        return self.outputs.get("load_extraction")

    @property
    def rates(self) -> Optional[RateList]:
        return self.outputs.get("rate_extraction")

    @property
    def carrier(self) -> Optional[CarrierInfo]:
        return self.outputs.get("carrier_information")

    @property
    def shipper(self) -> Optional[ShipperInfo]:
        return self.outputs.get("shipper_information")

    @property
    def action_items(self) -> Optional[ActionItemList]:
        return self.outputs.get("action_items")

    @property
    def temporal(self) -> Optional[TemporalResolution]:
        return self.outputs.get("temporal_resolution")

    @property
    def summary(self) -> Optional[CallSummary]:
        return self.outputs.get("summary")

    @property
    def validation(self) -> Optional[ValidationReport]:
        return self.outputs.get("validation")

    @property
    def requires_human_review(self) -> bool:
        """Partial and failed runs always need review; complete runs defer to the validator."""
        if self.status != RunStatus.COMPLETE:
            return True
        return self.validation.requires_human_review if self.validation else True
