"""Unit tests for the multi-stage extractor."""

import asyncio
from datetime import date

from freight_intel.models.negotiation import NegotiationStatus
from freight_intel.models.result import RunStatus, StageStatus
from freight_intel.models.transcript import Transcript
from freight_intel.pipeline.errors import MalformedOutputError, TransientInferenceError
from freight_intel.pipeline.orchestrator import MultiStageExtractor, run_extraction
from freight_intel.pipeline.registry import StageRegistry, get_stage_registry


class TestCompleteRun:
    """A clean carrier call end to end."""

    def test_agreed_call(self, agreed_transcript, carrier_metadata, agreed_payloads, make_inference, settings):
        inference = make_inference(agreed_payloads)
        result = run_extraction(agreed_transcript, carrier_metadata, inference=inference, settings=settings)

        assert result.status == RunStatus.COMPLETE
        assert result.call_id == "call-001"
        assert result.negotiation.status == NegotiationStatus.AGREED
        assert result.negotiation.agreed_rate == 2150
        assert result.carrier.mc_number.value == "123456"
        assert result.speakers.broker_label == "A"
        assert result.loads.loads[0].equipment_type == "dry_van"
        assert result.warnings == ()
        assert result.should_generate_rate_confirmation is True
        assert result.requires_human_review is False

    def test_dates_and_summary(self, agreed_transcript, carrier_metadata, agreed_payloads, make_inference, settings):
        metadata = carrier_metadata.model_copy(update={"call_date": date(2026, 10, 14)})
        result = run_extraction(agreed_transcript, metadata, inference=make_inference(agreed_payloads), settings=settings)

        pickup = result.temporal.first_for("pickup")
        assert pickup.original_text == "tomorrow morning"
        assert pickup.resolved_date == date(2026, 10, 15)
        assert result.summary.outcome == "agreed"
        assert result.summary.headline == "Carrier agreed: Dallas, TX -> Atlanta, GA (pickup 2026-10-15) at $2,150"
        assert result.summary.participants["broker"] == "Mike"
        assert result.warnings == ()

    def test_inapplicable_stage_is_skipped(self, agreed_transcript, carrier_metadata, agreed_payloads, make_inference, settings):
        inference = make_inference(agreed_payloads)
        result = run_extraction(agreed_transcript, carrier_metadata, inference=inference, settings=settings)

        assert result.record_for("shipper_information").status == StageStatus.SKIPPED_NOT_APPLICABLE
        assert "shipper_information" not in result.outputs
        assert inference.call_count("shipper_information") == 0
        assert result.status == RunStatus.COMPLETE

    def test_every_stage_has_a_record(self, agreed_transcript, carrier_metadata, make_inference, settings):
        result = run_extraction(agreed_transcript, carrier_metadata, inference=make_inference(), settings=settings)
        assert [r.stage for r in result.stage_records] == get_stage_registry().resolve_order()

    def test_usage_is_summed(self, agreed_transcript, carrier_metadata, agreed_payloads, make_inference, settings):
        inference = make_inference(agreed_payloads)
        result = run_extraction(agreed_transcript, carrier_metadata, inference=inference, settings=settings)

        assert result.usage.calls == len(inference.calls)
        assert result.usage.calls == sum(r.usage.calls for r in result.stage_records)
        assert result.usage.prompt_tokens == 100 * len(inference.calls)

    def test_same_inputs_same_result(self, agreed_transcript, carrier_metadata, agreed_payloads, make_inference, settings):
        first = run_extraction(agreed_transcript, carrier_metadata, inference=make_inference(agreed_payloads), settings=settings)
        second = run_extraction(agreed_transcript, carrier_metadata, inference=make_inference(agreed_payloads), settings=settings)

        exclude = {"started_at", "finished_at", "stage_records"}
        assert first.model_dump(exclude=exclude) == second.model_dump(exclude=exclude)
        assert [(r.stage, r.status, r.attempts) for r in first.stage_records] == [
            (r.stage, r.status, r.attempts) for r in second.stage_records
        ]

    def test_empty_transcript(self, carrier_metadata, make_inference, settings):
        inference = make_inference()
        result = run_extraction(Transcript(), carrier_metadata, inference=inference, settings=settings)

        assert result.status == RunStatus.COMPLETE
        assert inference.calls == []
        assert result.classification.confidence == 0
        assert result.should_generate_rate_confirmation is False
        assert result.validation.blocking_warnings[0].field == "transcript"


class TestDependencies:
    """Stages only start once their inputs exist."""

    def test_dependencies_finish_before_dependents_start(
        self, agreed_transcript, carrier_metadata, agreed_payloads, make_inference, settings
    ):
        inference = make_inference(agreed_payloads)
        run_extraction(agreed_transcript, carrier_metadata, inference=inference, settings=settings)

        registry = get_stage_registry()
        for stage in registry:
            started = inference.first(stage.name, "start")
            if started is None:
                continue
            for dependency in stage.dependencies:
                finished = inference.first(dependency, "end")
                if finished is not None:
                    assert finished < started, f"{stage.name} started before {dependency} finished"

    def test_independent_stages_overlap(self, carrier_metadata, agreed_transcript, make_stage, make_inference, settings):
        registry = StageRegistry([
            make_stage("root"),
            make_stage("left", ("root",)),
            make_stage("right", ("root",)),
            make_stage("join", ("left", "right")),
        ])
        inference = make_inference(delay=0.05)
        result = run_extraction(
            agreed_transcript, carrier_metadata, inference=inference, registry=registry, settings=settings
        )

        assert result.status == RunStatus.COMPLETE
        assert inference.first("right", "start") < inference.first("left", "end")
        assert inference.first("left", "start") < inference.first("right", "end")
        assert result.outputs["join"].callbacks == ("join", "left", "right")


class TestFailures:
    """Retry, critical abort and best-effort degradation."""

    def test_transient_errors_are_retried(self, agreed_transcript, carrier_metadata, agreed_payloads, make_inference, settings):
        inference = make_inference(
            agreed_payloads, failures={"carrier_information": (TransientInferenceError, 2)}
        )
        result = run_extraction(agreed_transcript, carrier_metadata, inference=inference, settings=settings)

        record = result.record_for("carrier_information")
        assert record.status == StageStatus.COMPLETED
        assert record.attempts == 3
        assert inference.call_count("carrier_information") == 3
        assert result.status == RunStatus.COMPLETE

    def test_critical_failure_aborts_run(self, agreed_transcript, carrier_metadata, make_inference, settings):
        inference = make_inference(failures={"classification": (TransientInferenceError, None)})
        result = run_extraction(agreed_transcript, carrier_metadata, inference=inference, settings=settings)

        assert result.status == RunStatus.FAILED
        assert result.record_for("classification").status == StageStatus.FAILED
        assert result.record_for("classification").attempts == 3
        assert result.record_for("classification").error_type == "TransientInferenceError"
        assert set(inference.calls) == {"classification"}
        for record in result.stage_records[1:]:
            assert record.status == StageStatus.SKIPPED_DEPENDENCY_FAILED
        assert result.should_generate_rate_confirmation is False
        assert result.requires_human_review is True

    def test_best_effort_failure_degrades_run(self, agreed_transcript, carrier_metadata, agreed_payloads, make_inference, settings):
        inference = make_inference(agreed_payloads, failures={"action_items": (MalformedOutputError, None)})
        result = run_extraction(agreed_transcript, carrier_metadata, inference=inference, settings=settings)

        assert result.status == RunStatus.PARTIAL
        assert result.record_for("action_items").status == StageStatus.FAILED
        assert result.record_for("action_items").attempts == 3
        assert "action_items" not in result.outputs
        assert result.negotiation.status == NegotiationStatus.AGREED
        assert result.validation.absent_stages == ("action_items",)
        assert result.requires_human_review is True

    def test_non_retryable_error_is_attempted_once(self, agreed_transcript, carrier_metadata, make_inference, settings):
        inference = make_inference(failures={"rate_extraction": (ValueError, None)})
        result = run_extraction(agreed_transcript, carrier_metadata, inference=inference, settings=settings)

        record = result.record_for("rate_extraction")
        assert record.status == StageStatus.FAILED
        assert record.attempts == 1
        assert record.error_type == "ValueError"
        assert result.status == RunStatus.PARTIAL

    def test_negotiation_survives_speaker_failure(
        self, agreed_transcript, carrier_metadata, agreed_payloads, make_inference, settings
    ):
        inference = make_inference(
            agreed_payloads, failures={"speaker_identification": (MalformedOutputError, None)}
        )
        result = run_extraction(agreed_transcript, carrier_metadata, inference=inference, settings=settings)

        assert result.status == RunStatus.PARTIAL
        assert result.speakers is None
        assert result.negotiation.status == NegotiationStatus.AGREED
        assert result.negotiation.field_confidence.agreement_status < 90

    def test_critical_failure_cancels_only_dependents(
        self, agreed_transcript, carrier_metadata, make_stage, make_inference, settings
    ):
        registry = StageRegistry([
            make_stage("root"),
            make_stage("gate", ("root",), critical=True),
            make_stage("after_gate", ("gate",)),
            make_stage("side", ("root",)),
        ])
        inference = make_inference(failures={"gate": (TransientInferenceError, None)})
        result = run_extraction(
            agreed_transcript, carrier_metadata, inference=inference, registry=registry, settings=settings
        )

        assert result.status == RunStatus.FAILED
        assert result.record_for("after_gate").status == StageStatus.SKIPPED_DEPENDENCY_FAILED
        assert result.record_for("side").status == StageStatus.COMPLETED
        assert "root" in result.outputs
        assert inference.call_count("after_gate") == 0


class TestExtractorReuse:
    """One extractor instance can serve several runs."""

    def test_sequential_runs(self, agreed_transcript, pending_transcript, carrier_metadata, agreed_payloads, make_inference, settings):
        extractor = MultiStageExtractor(inference=make_inference(agreed_payloads), settings=settings)

        first = asyncio.run(extractor.run(agreed_transcript, carrier_metadata))
        second = asyncio.run(extractor.run(pending_transcript, carrier_metadata))

        assert first.negotiation.status == NegotiationStatus.AGREED
        assert second.negotiation.status == NegotiationStatus.PENDING

