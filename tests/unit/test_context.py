"""Unit tests for the write-once run context."""

import asyncio

import pytest

from freight_intel.models.outputs import ActionItemList
from freight_intel.models.result import StageStatus, TokenUsage
from freight_intel.pipeline.context import ExtractionContext, SlotOutcome
from freight_intel.pipeline.errors import SlotAlreadyWrittenError, UndeclaredDependencyError


@pytest.fixture
def context(agreed_transcript, carrier_metadata, settings, make_inference):
    return ExtractionContext(
        agreed_transcript,
        carrier_metadata,
        ["first", "second", "third"],
        make_inference(),
        settings,
    )


class TestSlots:
    """Tests for slot writes and reads."""

    def test_second_write_fails(self, context):
        context.record("first", StageStatus.COMPLETED, ActionItemList())
        with pytest.raises(SlotAlreadyWrittenError):
            context.record("first", StageStatus.FAILED)

    def test_second_write_keeps_first_value(self, context):
        output = ActionItemList(callbacks=("original",))
        context.record("first", StageStatus.COMPLETED, output)
        with pytest.raises(SlotAlreadyWrittenError):
            context.record("first", StageStatus.COMPLETED, ActionItemList())
        assert context.output("first") is output

    def test_only_completed_outputs_are_produced(self, context):
        context.record("first", StageStatus.COMPLETED, ActionItemList())
        context.record("second", StageStatus.FAILED)
        context.record("third", StageStatus.SKIPPED_NOT_APPLICABLE)
        assert list(context.produced_outputs()) == ["first"]

    def test_wait_for_returns_after_record(self, context):
        async def scenario():
            waiter = asyncio.create_task(context.wait_for("second"))
            await asyncio.sleep(0)
            assert not waiter.done()
            context.record("second", StageStatus.COMPLETED, ActionItemList())
            return await waiter

        outcome = asyncio.run(scenario())
        assert outcome.status == StageStatus.COMPLETED


class TestBlocking:
    """Which outcomes stop dependents from running."""

    def test_critical_failure_blocks(self):
        assert SlotOutcome(StageStatus.FAILED, critical=True).blocks_dependents

    def test_best_effort_failure_does_not_block(self):
        assert not SlotOutcome(StageStatus.FAILED, critical=False).blocks_dependents

    def test_dependency_skip_propagates(self):
        assert SlotOutcome(StageStatus.SKIPPED_DEPENDENCY_FAILED).blocks_dependents

    def test_not_applicable_does_not_block(self):
        assert not SlotOutcome(StageStatus.SKIPPED_NOT_APPLICABLE).blocks_dependents


class TestContextView:
    """Stages see only what they declared."""

    def test_declared_dependency_is_readable(self, context):
        output = ActionItemList()
        context.record("first", StageStatus.COMPLETED, output)
        view = context.view_for("second", ("first",))
        assert view.output("first") is output
        assert view.status("first") == StageStatus.COMPLETED

    def test_undeclared_read_fails(self, context):
        context.record("first", StageStatus.COMPLETED, ActionItemList())
        view = context.view_for("third", ("second",))
        with pytest.raises(UndeclaredDependencyError) as exc_info:
            view.output("first")
        assert exc_info.value.reader == "third"
        assert exc_info.value.target == "first"

    def test_absent_dependency_reads_none(self, context):
        context.record("first", StageStatus.FAILED)
        view = context.view_for("second", ("first",))
        assert view.output("first") is None

    def test_usage_accumulates(self, context):
        context.add_usage(TokenUsage(calls=1, prompt_tokens=10, completion_tokens=5))
        context.add_usage(TokenUsage(calls=1, prompt_tokens=20, completion_tokens=5))
        assert context.usage.calls == 2
        assert context.usage.total_tokens == 40
