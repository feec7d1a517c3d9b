"""Validation stage: cross-check stage outputs and decide on rate confirmation.

Runs last and reads every other stage. It never calls the inference service,
so it cannot fail transiently; it is critical because the rate confirmation
decision and the warnings are part of every result.

Rate confirmation is offered only when ALL of these hold:
- negotiation status is agreed
- carrier MC number or company name was extracted above the confidence threshold
- no blocking warning was raised
"""

from typing import Optional

import structlog

from freight_intel.config.settings import Settings
from freight_intel.models.negotiation import NegotiationOutcome, NegotiationStatus
from freight_intel.models.outputs import (
    CarrierInfo,
    ClassificationResult,
    LoadList,
    RateList,
    SpeakerRoleMap,
    ValidationReport,
    ValidationWarning,
    WarningSeverity,
)
from freight_intel.models.result import StageStatus
from freight_intel.models.transcript import Transcript
from freight_intel.pipeline.context import ContextView
from freight_intel.pipeline.stage import Stage
from freight_intel.pipeline.stages.common import clamp

logger = structlog.get_logger(__name__)

MC_DIGITS = range(5, 9)
DOT_DIGITS = range(5, 10)
RATE_LIST_TOLERANCE = 0.5


def _warn(severity: WarningSeverity, field: str, message: str, suggestion: Optional[str] = None) -> ValidationWarning:
    return ValidationWarning(severity=severity, field=field, message=message, suggestion=suggestion)


# =============================================================================
# Individual Checks
# =============================================================================

def check_negotiation(negotiation: Optional[NegotiationOutcome], settings: Settings) -> list[ValidationWarning]:
    warnings: list[ValidationWarning] = []
    if negotiation is None:
        return warnings

    if negotiation.status == NegotiationStatus.AGREED and negotiation.agreed_rate is None:
        warnings.append(_warn(
            WarningSeverity.BLOCKING, "negotiation.agreed_rate",
            "Agreement indicated but no rate captured",
            "Confirm the final rate with the carrier before dispatching",
        ))

    if negotiation.status == NegotiationStatus.AGREED and negotiation.agreed_rate is not None:
        if negotiation.field_confidence.agreed_rate < settings.agreed_rate_min_confidence:
            warnings.append(_warn(
                WarningSeverity.BLOCKING, "negotiation.agreed_rate",
                f"Agreed rate confidence {negotiation.field_confidence.agreed_rate} is below "
                f"{settings.agreed_rate_min_confidence}",
                "Verify the agreed rate manually",
            ))

        broker, carrier = negotiation.broker_final_position, negotiation.carrier_final_position
        if broker and carrier:
            average = (broker + carrier) / 2
            percent = abs(broker - carrier) / average * 100
            if percent > settings.position_discrepancy_percent:
                warnings.append(_warn(
                    WarningSeverity.WARNING, "negotiation.final_positions",
                    f"Large rate discrepancy ({percent:.0f}%) despite agreement status",
                    "Verify the final rate",
                ))

        if negotiation.contingencies:
            warnings.append(_warn(
                WarningSeverity.WARNING, "negotiation.contingencies",
                "Agreement has conditions attached: " + "; ".join(negotiation.contingencies),
                "Confirm contingencies are met before dispatch",
            ))

    if negotiation.field_confidence.agreed_rate > 80 and negotiation.field_confidence.agreement_status < 60:
        warnings.append(_warn(
            WarningSeverity.WARNING, "negotiation.status",
            "Rate identified but agreement uncertain",
            "Verify manually",
        ))
    return warnings


def check_rate_consistency(negotiation: Optional[NegotiationOutcome], rates: Optional[RateList]) -> list[ValidationWarning]:
    if negotiation is None or negotiation.agreed_rate is None or rates is None or not rates.rates:
        return []
    totals = [quote.total for quote in rates.rates if quote.total is not None]
    if totals and not any(abs(total - negotiation.agreed_rate) < RATE_LIST_TOLERANCE for total in totals):
        return [_warn(
            WarningSeverity.WARNING, "rates",
            f"Agreed rate ${negotiation.agreed_rate:,.2f} does not appear among quoted rates",
        )]
    return []


def check_loads(loads: Optional[LoadList], negotiation: Optional[NegotiationOutcome]) -> list[ValidationWarning]:
    warnings: list[ValidationWarning] = []
    if loads is None:
        return warnings
    if not loads.loads and negotiation is not None:
        warnings.append(_warn(
            WarningSeverity.WARNING, "loads",
            "Negotiation present but no load was extracted",
            "Add load details before generating documents",
        ))
    for i, load in enumerate(loads.loads):
        if (
            load.origin_city and load.destination_city
            and load.origin_city.lower() == load.destination_city.lower()
            and (load.origin_state or "").upper() == (load.destination_state or "").upper()
        ):
            warnings.append(_warn(
                WarningSeverity.WARNING, f"loads[{i}]",
                f"Origin and destination are the same ({load.lane})",
            ))
    return warnings


def check_carrier(carrier: Optional[CarrierInfo], negotiation: Optional[NegotiationOutcome], settings: Settings) -> list[ValidationWarning]:
    warnings: list[ValidationWarning] = []
    if carrier is not None:
        if carrier.mc_number.present and len(str(carrier.mc_number.value)) not in MC_DIGITS:
            warnings.append(_warn(
                WarningSeverity.WARNING, "carrier.mc_number",
                f"MC number '{carrier.mc_number.value}' is not 5-8 digits",
                "Verify the MC number against FMCSA",
            ))
        if carrier.dot_number.present and len(str(carrier.dot_number.value)) not in DOT_DIGITS:
            warnings.append(_warn(
                WarningSeverity.WARNING, "carrier.dot_number",
                f"DOT number '{carrier.dot_number.value}' is not 5-9 digits",
            ))

    agreed = negotiation is not None and negotiation.status == NegotiationStatus.AGREED
    identity = carrier.identity_confidence if carrier is not None else 0
    if agreed and identity <= settings.rate_confirmation_carrier_confidence:
        warnings.append(_warn(
            WarningSeverity.WARNING, "carrier",
            "Carrier identity (MC number or company) not confirmed",
            "Collect the carrier's MC number",
        ))
    return warnings


def check_speakers(speakers: Optional[SpeakerRoleMap]) -> list[ValidationWarning]:
    if speakers is None or speakers.broker_label:
        return []
    return [_warn(WarningSeverity.WARNING, "speakers", "No broker identified among the speakers")]


def check_classification(classification: Optional[ClassificationResult]) -> list[ValidationWarning]:
    if classification is None or classification.hint_agrees:
        return []
    return [_warn(
        WarningSeverity.INFO, "classification",
        f"Call classified as {classification.call_type.value}, which differs from the supplied call type",
    )]


def check_transcript(transcript: Transcript) -> list[ValidationWarning]:
    if not transcript.is_empty:
        return []
    return [_warn(WarningSeverity.BLOCKING, "transcript", "Transcript is empty; nothing was extracted")]


# =============================================================================
# Next Steps
# =============================================================================

def get_next_steps(negotiation: Optional[NegotiationOutcome], warnings: list[ValidationWarning]) -> list[str]:
    """Actionable follow-ups based on the negotiation outcome."""
    steps: list[str] = []
    if negotiation is None:
        return ["Review call manually - no negotiation data extracted"]

    gap = negotiation.position_gap
    if negotiation.status == NegotiationStatus.AGREED:
        steps.append("Generate and send rate confirmation")
        steps.append("Dispatch carrier with load information")
        if negotiation.contingencies:
            steps.append("Confirm contingencies are met: " + ", ".join(negotiation.contingencies))
    elif negotiation.status == NegotiationStatus.PENDING:
        if negotiation.pending_reason:
            steps.append("Follow up on: " + negotiation.pending_reason)
        steps.append("Set reminder to check back with carrier")
        if gap:
            steps.append(f"Rate gap of ${gap:,.0f} needs resolution")
    elif negotiation.status == NegotiationStatus.REJECTED:
        if negotiation.rejection_reason:
            steps.append("Rejection reason: " + negotiation.rejection_reason)
        if gap is not None:
            steps.append(f"Rate gap was ${gap:,.0f} - consider if load can support higher rate")
        steps.append("Continue searching for another carrier")
    elif negotiation.status == NegotiationStatus.CALLBACK_REQUESTED:
        if negotiation.callback_conditions:
            steps.append("Callback if: " + negotiation.callback_conditions)
        steps.append("Keep carrier as backup option")
        steps.append("Continue searching for committed carrier")

    steps.extend(f"Review: {w.message}" for w in warnings if w.severity != WarningSeverity.INFO)
    return steps


def should_generate_rate_confirmation(
    negotiation: Optional[NegotiationOutcome],
    carrier: Optional[CarrierInfo],
    warnings: list[ValidationWarning],
    settings: Settings,
) -> bool:
    """Whether downstream rate confirmation drafting may run."""
    if negotiation is None or negotiation.status != NegotiationStatus.AGREED:
        return False
    if negotiation.agreed_rate is None:
        return False
    if carrier is None or carrier.identity_confidence <= settings.rate_confirmation_carrier_confidence:
        return False
    return not any(w.severity == WarningSeverity.BLOCKING for w in warnings)


# =============================================================================
# Stage
# =============================================================================

class ValidationStage(Stage):
    """Cross-check all outputs; depends on every other stage."""

    name = "validation"
    critical = True

    def __init__(self, dependencies: tuple[str, ...]):
        self.dependencies = tuple(dependencies)

    def is_applicable(self, view: ContextView) -> bool:
        # Runs on an empty transcript too, so every result carries its warnings
        return True

    async def execute(self, view: ContextView) -> ValidationReport:
        settings = view.settings
        outputs = {name: view.output(name) for name in self.dependencies}
        negotiation = outputs.get("negotiation")
        carrier = outputs.get("carrier_information")

        warnings: list[ValidationWarning] = []
        warnings += check_transcript(view.transcript)
        warnings += check_classification(outputs.get("classification"))
        warnings += check_speakers(outputs.get("speaker_identification"))
        warnings += check_negotiation(negotiation, settings)
        warnings += check_rate_consistency(negotiation, outputs.get("rate_extraction"))
        warnings += check_loads(outputs.get("load_extraction"), negotiation)
        warnings += check_carrier(carrier, negotiation, settings)

        absent = tuple(name for name in self.dependencies if view.status(name) == StageStatus.FAILED)
        for name in absent:
            warnings.append(_warn(
                WarningSeverity.INFO, name, f"Stage '{name}' failed; its output is unavailable",
            ))

        should_generate = should_generate_rate_confirmation(negotiation, carrier, warnings, settings)

        review_reasons = [w.message for w in warnings if w.severity != WarningSeverity.INFO]
        if absent:
            review_reasons.append("Incomplete extraction: " + ", ".join(absent))
        if negotiation is not None and negotiation.status == NegotiationStatus.PENDING:
            review_reasons.append("Negotiation unresolved")

        blocking = sum(1 for w in warnings if w.severity == WarningSeverity.BLOCKING)
        soft = sum(1 for w in warnings if w.severity == WarningSeverity.WARNING)
        info = len(warnings) - blocking - soft

        report = ValidationReport(
            warnings=tuple(warnings),
            should_generate_rate_confirmation=should_generate,
            requires_human_review=bool(review_reasons),
            review_reasons=tuple(review_reasons),
            next_steps=tuple(get_next_steps(negotiation, warnings)),
            absent_stages=absent,
            confidence=clamp(100 - 25 * blocking - 10 * soft - 2 * info),
        )

        logger.info(
            "validation_complete",
            warnings=len(warnings),
            blocking=blocking,
            should_generate_rate_confirmation=should_generate,
            requires_human_review=report.requires_human_review,
        )
        return report
