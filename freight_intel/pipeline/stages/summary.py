"""Call summary stage.

Condenses the other stages' outputs into a headline, a short executive
summary and a handful of key insights. It reads outputs only and never calls
the inference service, so two runs over the same outputs summarize alike.
"""

from typing import Optional

import structlog
from pydantic import BaseModel

from freight_intel.models.negotiation import NegotiationOutcome, NegotiationStatus
from freight_intel.models.outputs import (
    ActionItemList,
    CallSummary,
    CarrierInfo,
    KeyInsight,
    LoadList,
    ShipperInfo,
    SpeakerRoleMap,
    TemporalResolution,
)
from freight_intel.models.result import StageStatus
from freight_intel.models.transcript import CallType
from freight_intel.pipeline.context import ContextView
from freight_intel.pipeline.stage import Stage, call_type_of
from freight_intel.pipeline.stages.common import clamp

logger = structlog.get_logger(__name__)

CONCESSION_INSIGHT_THRESHOLD = 200
FAILED_INPUT_PENALTY = 10


def format_money(amount: float) -> str:
    """$2,150 for whole dollars, $2.50 otherwise."""
    return f"${amount:,.0f}" if float(amount).is_integer() else f"${amount:,.2f}"


def _rate_phrase(negotiation: NegotiationOutcome) -> str:
    rate = format_money(negotiation.agreed_rate)
    return f"{rate} per mile" if negotiation.rate_type == "per_mile" else rate


def participants_of(
    speakers: Optional[SpeakerRoleMap], carrier: Optional[CarrierInfo], shipper: Optional[ShipperInfo]
) -> dict[str, str]:
    """Who was on the call, by role: person names first, then companies."""
    participants: dict[str, str] = {}
    if speakers is not None:
        for assignment in speakers.assignments:
            side = assignment.role.negotiating_side
            if side != "unknown" and assignment.name and side not in participants:
                participants[side] = assignment.name
    if carrier is not None and carrier.company_name.present:
        participants["carrier_company"] = str(carrier.company_name.value)
    if shipper is not None and shipper.company_name.present:
        participants["shipper_company"] = str(shipper.company_name.value)
    return participants


def build_headline(call_type: CallType, outcome: str, route: str, negotiation: Optional[NegotiationOutcome]) -> str:
    if call_type == CallType.CHECK_CALL:
        return f"Check call: status update on {route}"
    if call_type == CallType.SHIPPER:
        return f"Shipper call about {route}"
    if outcome == "agreed" and negotiation is not None and negotiation.agreed_rate is not None:
        return f"Carrier agreed: {route} at {_rate_phrase(negotiation)}"
    if outcome == "rejected":
        return f"Carrier declined {route}"
    if outcome == "callback_requested":
        return f"Carrier callback pending for {route}"
    if outcome == "pending":
        return f"Carrier quote pending for {route}"
    return f"Call about {route}"


def build_executive_summary(
    headline: str,
    negotiation: Optional[NegotiationOutcome],
    loads: Optional[LoadList],
    actions: Optional[ActionItemList],
    incomplete: tuple[str, ...],
) -> str:
    sentences = [headline + "."]
    if negotiation is not None:
        status = negotiation.status
        if status == NegotiationStatus.AGREED and negotiation.agreed_rate is not None:
            count = max(len(loads.loads) if loads else 0, 1)
            if negotiation.rate_type == "per_mile":
                sentences.append(f"Agreement reached on {count} load(s) at {_rate_phrase(negotiation)}.")
            else:
                total = format_money(negotiation.agreed_rate * count)
                sentences.append(f"Agreement reached on {count} load(s) totaling {total}.")
            if negotiation.contingencies:
                sentences.append(f"Agreement is conditional on {len(negotiation.contingencies)} condition(s).")
        elif status == NegotiationStatus.REJECTED:
            reason = negotiation.rejection_reason
            sentences.append(f"Carrier declined: {reason.rstrip('.!?')}." if reason else "Carrier declined the offer.")
        elif status == NegotiationStatus.CALLBACK_REQUESTED:
            conditions = negotiation.callback_conditions
            sentences.append(f"Callback requested: {conditions.rstrip('.!?')}." if conditions else "Callback requested.")
        else:
            sentences.append("Decision pending.")

    if actions is not None:
        urgent = next((item for item in actions.items if item.priority == "high"), None)
        if urgent is not None:
            sentences.append(f"Next action: {urgent.description.rstrip('.!?')}.")
    if incomplete:
        sentences.append("Extraction incomplete: " + ", ".join(incomplete) + ".")
    return " ".join(sentences)


def extract_key_insights(
    negotiation: Optional[NegotiationOutcome], temporal: Optional[TemporalResolution]
) -> list[KeyInsight]:
    """Rate, risk, schedule and opportunity insights worth surfacing."""
    insights: list[KeyInsight] = []

    if negotiation is not None:
        broker_rates = [o.rate for o in negotiation.rate_history if o.speaker == "broker" and o.rate_type == "flat"]
        if len(broker_rates) >= 2 and broker_rates[-1] - broker_rates[0] > CONCESSION_INSIGHT_THRESHOLD:
            concession = broker_rates[-1] - broker_rates[0]
            insights.append(KeyInsight(
                category="rate",
                importance="high",
                title="Significant broker concession",
                description=f"Broker raised the offer by {format_money(concession)} during negotiation",
                evidence=(f"Initial: {format_money(broker_rates[0])}", f"Final: {format_money(broker_rates[-1])}"),
            ))
        if negotiation.status == NegotiationStatus.AGREED and negotiation.contingencies:
            insights.append(KeyInsight(
                category="risk",
                importance="critical",
                title="Agreement at risk",
                description=f"{len(negotiation.contingencies)} condition(s) must be met for the agreement to hold",
                evidence=negotiation.contingencies,
            ))
        if negotiation.status == NegotiationStatus.REJECTED:
            gap = negotiation.position_gap
            insights.append(KeyInsight(
                category="agreement",
                importance="medium",
                title="Carrier declined",
                description=negotiation.rejection_reason or "No reason given",
                evidence=(f"Gap: {format_money(gap)}",) if gap else (),
            ))
        if negotiation.accessorials_discussed:
            insights.append(KeyInsight(
                category="opportunity",
                importance="medium",
                title="Accessorial terms discussed",
                description="Confirm accessorial terms on the rate confirmation",
                evidence=tuple(f"{k}: {v}" for k, v in negotiation.accessorials_discussed.items()),
            ))

    if temporal is not None:
        rush = [r.original_text for r in temporal.references if r.is_rush]
        if rush:
            insights.append(KeyInsight(
                category="schedule",
                importance="high",
                title="Rush timing",
                description="Timing was flagged as urgent on the call",
                evidence=tuple(rush),
            ))
        weekend = [r for r in temporal.references if r.is_weekend and r.context in ("pickup", "delivery")]
        if weekend:
            insights.append(KeyInsight(
                category="schedule",
                importance="medium",
                title="Weekend pickup or delivery",
                description="Check facility hours for weekend dates",
                evidence=tuple(f"{r.context}: {r.resolved_date.isoformat()}" for r in weekend),
            ))
    return insights


class SummaryStage(Stage):
    """Headline, executive summary and key insights from the other outputs."""

    name = "summary"
    dependencies = (
        "classification",
        "speaker_identification",
        "load_extraction",
        "rate_extraction",
        "carrier_information",
        "shipper_information",
        "negotiation",
        "action_items",
        "temporal_resolution",
    )
    critical = False

    async def execute(self, view: ContextView) -> CallSummary:
        outputs: dict[str, Optional[BaseModel]] = {name: view.output(name) for name in self.dependencies}
        negotiation = outputs["negotiation"]
        loads = outputs["load_extraction"]
        temporal = outputs["temporal_resolution"]

        incomplete = tuple(name for name in self.dependencies if view.status(name) == StageStatus.FAILED)
        outcome = negotiation.status.value if negotiation is not None else "information_only"
        lanes = tuple(load.lane for load in loads.loads) if loads is not None else ()
        route = lanes[0] if lanes else "route TBD"

        pickup = temporal.first_for("pickup") if temporal is not None else None
        if pickup is not None and pickup.resolved_date is not None and lanes:
            route = f"{route} (pickup {pickup.resolved_date.isoformat()})"

        headline = build_headline(call_type_of(view), outcome, route, negotiation)
        insights = extract_key_insights(negotiation, temporal)

        present = [o.confidence for o in outputs.values() if o is not None]
        confidence = clamp(
            (sum(present) / len(present) if present else 0) - FAILED_INPUT_PENALTY * len(incomplete)
        )

        summary = CallSummary(
            headline=headline,
            executive_summary=build_executive_summary(headline, negotiation, loads, outputs["action_items"], incomplete),
            outcome=outcome,
            participants=participants_of(
                outputs["speaker_identification"], outputs["carrier_information"], outputs["shipper_information"]
            ),
            lanes=lanes,
            key_insights=tuple(insights),
            incomplete_stages=incomplete,
            confidence=confidence,
        )
        logger.info("summary_complete", outcome=outcome, insights=len(insights), incomplete=len(incomplete))
        return summary
