"""Built-in extraction stages.

Stage Flow (dependencies in parentheses):
1. classification           (none)                               critical
2. speaker_identification   (classification)                     best-effort
3. load_extraction          (classification, speakers)           best-effort
4. rate_extraction          (classification, speakers)           best-effort
5. carrier_information      (classification, speakers)           best-effort
6. shipper_information      (classification, speakers)           best-effort
7. negotiation              (classification, speakers, carrier)  best-effort
8. action_items             (classification)                     best-effort
9. temporal_resolution      (classification)                     best-effort
10. summary                 (all extraction stages above)        best-effort
11. validation              (all of the above)                   critical
"""

from freight_intel.pipeline.stage import Stage

from .action_items import ActionItemsStage
from .classification import ClassificationStage
from .loads import LoadExtractionStage
from .negotiation import NegotiationStage, resolve_negotiation
from .parties import CarrierInformationStage, ShipperInformationStage
from .rates import RateExtractionStage
from .speakers import SpeakerIdentificationStage
from .summary import SummaryStage
from .temporal import TemporalResolutionStage
from .validation import ValidationStage


def default_stages() -> list[Stage]:
    """Fresh instances of the built-in stages in registration order."""
    extraction: list[Stage] = [
        ClassificationStage(),
        SpeakerIdentificationStage(),
        LoadExtractionStage(),
        RateExtractionStage(),
        CarrierInformationStage(),
        ShipperInformationStage(),
        NegotiationStage(),
        ActionItemsStage(),
        TemporalResolutionStage(),
        SummaryStage(),
    ]
    return [*extraction, ValidationStage(tuple(stage.name for stage in extraction))]


__all__ = [
    "ActionItemsStage",
    "CarrierInformationStage",
    "ClassificationStage",
    "LoadExtractionStage",
    "NegotiationStage",
    "RateExtractionStage",
    "ShipperInformationStage",
    "SpeakerIdentificationStage",
    "SummaryStage",
    "TemporalResolutionStage",
    "ValidationStage",
    "default_stages",
    "resolve_negotiation",
]
