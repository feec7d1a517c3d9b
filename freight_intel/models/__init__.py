"""Pydantic data models shared between stages."""

from .transcript import CallType, RunMetadata, Transcript, Utterance
from .negotiation import (
    NegotiationConfidence,
    NegotiationOutcome,
    NegotiationStatus,
    RateObservation,
    RateProgression,
)
from .outputs import (
    ActionItem,
    ActionItemList,
    CarrierInfo,
    ClassificationResult,
    ExtractedField,
    Load,
    LoadList,
    RateList,
    RateQuote,
    ShipperInfo,
    SpeakerAssignment,
    SpeakerRole,
    SpeakerRoleMap,
    StageOutput,
    ValidationReport,
    ValidationWarning,
    WarningSeverity,
)
from .result import ExtractionResult, RunStatus, StageRecord, StageStatus, TokenUsage

__all__ = [
    # Inputs
    "CallType",
    "RunMetadata",
    "Transcript",
    "Utterance",
    # Negotiation
    "NegotiationConfidence",
    "NegotiationOutcome",
    "NegotiationStatus",
    "RateObservation",
    "RateProgression",
    # Stage outputs
    "ActionItem",
    "ActionItemList",
    "CarrierInfo",
    "ClassificationResult",
    "ExtractedField",
    "Load",
    "LoadList",
    "RateList",
    "RateQuote",
    "ShipperInfo",
    "SpeakerAssignment",
    "SpeakerRole",
    "SpeakerRoleMap",
    "StageOutput",
    "ValidationReport",
    "ValidationWarning",
    "WarningSeverity",
    # Result
    "ExtractionResult",
    "RunStatus",
    "StageRecord",
    "StageStatus",
    "TokenUsage",
]
