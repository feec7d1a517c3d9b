"""Unit tests for the call summary stage."""

import asyncio
from datetime import date

from freight_intel.models.outputs import (
    ClassificationResult,
    Load,
    LoadList,
    TemporalReference,
    TemporalResolution,
)
from freight_intel.models.result import StageStatus
from freight_intel.models.transcript import CallType, RunMetadata
from freight_intel.pipeline.context import ExtractionContext
from freight_intel.pipeline.stages.negotiation import resolve_negotiation
from freight_intel.pipeline.stages.summary import (
    SummaryStage,
    build_executive_summary,
    build_headline,
    extract_key_insights,
    format_money,
)


def run_summary(transcript, inference, settings, outputs, failed=()):
    """Execute the summary stage over pre-recorded dependency outputs."""
    stage = SummaryStage()
    metadata = RunMetadata(call_id="t-1", organization_id="o", user_id="u", call_type=CallType.CARRIER)
    context = ExtractionContext(transcript, metadata, [*stage.dependencies, stage.name], inference, settings)
    for name, output in outputs.items():
        context.record(name, StageStatus.COMPLETED, output)
    for name in failed:
        context.record(name, StageStatus.FAILED)
    return asyncio.run(stage.execute(context.view_for(stage.name, stage.dependencies)))


class TestFormatting:
    """Headline and summary wording."""

    def test_format_money(self):
        assert format_money(2150) == "$2,150"
        assert format_money(2.5) == "$2.50"

    def test_shipper_headline(self):
        assert build_headline(CallType.SHIPPER, "information_only", "Houston, TX -> Phoenix, AZ", None) == (
            "Shipper call about Houston, TX -> Phoenix, AZ"
        )

    def test_rejected_summary(self, rejected_transcript):
        negotiation, _ = resolve_negotiation(rejected_transcript, None)
        headline = build_headline(CallType.CARRIER, negotiation.status.value, "route TBD", negotiation)

        assert headline == "Carrier declined route TBD"
        assert build_executive_summary(headline, negotiation, None, None, ()) == (
            "Carrier declined route TBD. Carrier declined: That doesn't cover my fuel."
        )

    def test_callback_summary_keeps_single_period(self, callback_transcript):
        negotiation, _ = resolve_negotiation(callback_transcript, None)
        text = build_executive_summary("Carrier callback pending for route TBD", negotiation, None, None, ())
        assert text.endswith("Callback requested: Let me check with my driver and call you back.")


class TestInsights:
    """Insights come from the negotiation and the resolved dates."""

    def test_broker_concession(self, agreed_transcript):
        negotiation, _ = resolve_negotiation(agreed_transcript, None)
        insights = extract_key_insights(negotiation, None)

        assert insights[0].title == "Significant broker concession"
        assert insights[0].evidence == ("Initial: $1,800", "Final: $2,150")

    def test_rush_and_weekend(self):
        temporal = TemporalResolution(references=(
            TemporalReference(original_text="ASAP", is_rush=True, confidence=60),
            TemporalReference(
                original_text="Saturday", resolved_date=date(2026, 10, 17), context="pickup", confidence=85,
            ),
        ))
        titles = [i.title for i in extract_key_insights(None, temporal)]
        assert titles == ["Rush timing", "Weekend pickup or delivery"]

    def test_no_inputs_no_insights(self):
        assert extract_key_insights(None, None) == []


class TestSummaryStage:
    """The stage reads outputs only and notes failed inputs."""

    def test_agreed_call(self, agreed_transcript, make_inference, settings):
        negotiation, _ = resolve_negotiation(agreed_transcript, None)
        inference = make_inference()
        outputs = {
            "classification": ClassificationResult(call_type=CallType.CARRIER, confidence=90),
            "load_extraction": LoadList(loads=(Load(
                origin_city="Dallas", origin_state="TX", destination_city="Atlanta", destination_state="GA",
            ),), confidence=85),
            "negotiation": negotiation,
            "temporal_resolution": TemporalResolution(references=(
                TemporalReference(
                    original_text="tomorrow morning", resolved_date=date(2026, 10, 15), context="pickup", confidence=85,
                ),
            ), confidence=85),
        }
        summary = run_summary(agreed_transcript, inference, settings, outputs, failed=("action_items",))

        assert summary.outcome == "agreed"
        assert summary.lanes == ("Dallas, TX -> Atlanta, GA",)
        assert summary.headline == "Carrier agreed: Dallas, TX -> Atlanta, GA (pickup 2026-10-15) at $2,150"
        assert "Agreement reached on 1 load(s) totaling $2,150." in summary.executive_summary
        assert summary.executive_summary.endswith("Extraction incomplete: action_items.")
        assert summary.incomplete_stages == ("action_items",)
        assert inference.calls == []

    def test_without_negotiation(self, pending_transcript, make_inference, settings):
        outputs = {"classification": ClassificationResult(call_type=CallType.CHECK_CALL, confidence=80)}
        summary = run_summary(pending_transcript, make_inference(), settings, outputs)

        assert summary.outcome == "information_only"
        assert summary.headline == "Check call: status update on route TBD"
        assert summary.confidence == 80
