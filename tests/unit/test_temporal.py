"""Unit tests for temporal reference resolution."""

import asyncio
from datetime import date

import pytest

from freight_intel.models.transcript import CallType, RunMetadata
from freight_intel.pipeline.context import ExtractionContext
from freight_intel.pipeline.stages.temporal import (
    TemporalResolutionStage,
    detect_context,
    find_time,
    scan_temporal_references,
)

# A Wednesday
CALL_DATE = date(2026, 10, 14)


def run_temporal(transcript, inference, settings, call_date=CALL_DATE):
    stage = TemporalResolutionStage()
    metadata = RunMetadata(
        call_id="t-1", organization_id="o", user_id="u", call_type=CallType.CARRIER, call_date=call_date,
    )
    context = ExtractionContext(transcript, metadata, [*stage.dependencies, stage.name], inference, settings)
    return asyncio.run(stage.execute(context.view_for(stage.name, stage.dependencies)))


class TestRelativeDates:
    """Relative phrases resolve against the call date."""

    @pytest.mark.parametrize("text,expected", [
        ("Can you load it tomorrow?", date(2026, 10, 15)),
        ("It picks up the day after tomorrow.", date(2026, 10, 16)),
        ("It's ready today.", date(2026, 10, 14)),
        ("Delivers next Monday.", date(2026, 10, 19)),
        ("Delivers Friday.", date(2026, 10, 16)),
        ("It picks up this Wednesday.", date(2026, 10, 14)),
        ("It picks up Wednesday.", date(2026, 10, 21)),
        ("Should deliver in 3 days.", date(2026, 10, 17)),
        ("Should deliver in two days.", date(2026, 10, 16)),
        ("Need it there by end of the week.", date(2026, 10, 16)),
    ])
    def test_resolution(self, make_transcript, text, expected):
        references = scan_temporal_references(make_transcript(("A", text)), CALL_DATE)

        assert len(references) == 1
        assert references[0].resolved_date == expected
        assert references[0].reference_type == "relative"

    def test_next_week_is_approximate(self, make_transcript):
        references = scan_temporal_references(make_transcript(("A", "I'll have trucks next week.")), CALL_DATE)

        assert references[0].resolved_date == date(2026, 10, 19)
        assert references[0].precision == "week"
        assert references[0].reference_type == "approximate"

    def test_unresolved_without_call_date(self, make_transcript):
        references = scan_temporal_references(make_transcript(("A", "Pick up tomorrow.")), None)

        assert references[0].original_text == "tomorrow"
        assert references[0].resolved_date is None
        assert references[0].confidence == 30


class TestAbsoluteDates:
    """Explicit dates keep their day and borrow the call year when needed."""

    def test_numeric_without_year(self, make_transcript):
        references = scan_temporal_references(make_transcript(("A", "Pickup is 12/15.")), CALL_DATE)

        assert references[0].resolved_date == date(2026, 12, 15)
        assert references[0].reference_type == "absolute"
        assert references[0].context == "pickup"

    def test_numeric_with_year_needs_no_call_date(self, make_transcript):
        references = scan_temporal_references(make_transcript(("A", "Delivery on 1/5/27.")), None)
        assert references[0].resolved_date == date(2027, 1, 5)

    def test_month_name(self, make_transcript):
        references = scan_temporal_references(make_transcript(("A", "It delivers Dec 3rd.")), CALL_DATE)
        assert references[0].resolved_date == date(2026, 12, 3)

    def test_non_dates_are_ignored(self, make_transcript):
        transcript = make_transcript(("A", "We run 24/7, and it pays $2,150."))
        assert scan_temporal_references(transcript, CALL_DATE) == []


class TestTimesAndContext:
    """Clock times attach to the date in the same sentence."""

    @pytest.mark.parametrize("text,expected", [
        ("at 8 a.m.", "08:00"),
        ("by 2:30 pm", "14:30"),
        ("around noon", "12:00"),
        ("12 am sharp", "00:00"),
        ("no time given", None),
    ])
    def test_find_time(self, text, expected):
        assert find_time(text) == expected

    def test_time_and_pickup_context(self, make_transcript):
        references = scan_temporal_references(make_transcript(("A", "Can you pick up tomorrow at 8 a.m.?")), CALL_DATE)

        assert references[0].resolved_time == "08:00"
        assert references[0].context == "pickup"
        assert references[0].precision == "exact"

    def test_delivery_context(self, make_transcript):
        references = scan_temporal_references(
            make_transcript(("A", "It needs to deliver Friday by 2:30 pm.")), CALL_DATE
        )

        assert references[0].context == "delivery"
        assert references[0].resolved_time == "14:30"

    def test_end_of_day_is_a_deadline(self, make_transcript):
        references = scan_temporal_references(make_transcript(("A", "Let me know by end of day.")), CALL_DATE)

        assert references[0].context == "deadline"
        assert references[0].resolved_time == "17:00"
        assert references[0].resolved_date == CALL_DATE

    def test_nearest_cue_wins(self):
        text = "Empty in Dallas, can deliver Monday"
        start = text.index("Monday")
        assert detect_context(text, start, start + len("Monday")) == "delivery"

    def test_rush_and_weekend(self, make_transcript):
        references = scan_temporal_references(
            make_transcript(("A", "I need it picked up ASAP."), ("A", "Can you pick up Saturday?")), CALL_DATE
        )

        assert references[0].is_rush is True
        assert references[0].precision == "approximate"
        assert references[1].resolved_date == date(2026, 10, 17)
        assert references[1].is_weekend is True


class TestTemporalStage:
    """Rules decide recognized phrases; the model only adds new ones."""

    def test_model_adds_unrecognized_phrases(self, make_transcript, make_inference, settings):
        transcript = make_transcript(
            ("A", "Can you pick up tomorrow at 8 a.m.?"),
            ("B", "Yes, and it delivers the first of the month."),
        )
        inference = make_inference({
            "temporal_resolution": {
                "references": [
                    {"original_text": "tomorrow", "resolved_date": "2026-10-20", "context": "pickup"},
                    {
                        "original_text": "the first of the month",
                        "resolved_date": "2026-11-01",
                        "context": "Delivery",
                        "confidence": 70,
                    },
                    {"original_text": "", "resolved_date": "2026-11-02"},
                ],
                "assumptions": ["Central time"],
            },
        })
        result = run_temporal(transcript, inference, settings)

        assert [r.source for r in result.references] == ["rule", "llm"]
        assert result.references[0].resolved_date == date(2026, 10, 15)
        assert result.references[1].resolved_date == date(2026, 11, 1)
        assert result.references[1].context == "delivery"
        assert result.references[1].utterance_index == 1
        assert result.references[1].confidence == 70
        assert result.reference_date == CALL_DATE
        assert result.assumptions == ("Central time",)
        assert result.first_for("pickup").original_text == "tomorrow"

    def test_bad_model_dates_are_dropped(self, make_transcript, make_inference, settings):
        transcript = make_transcript(("A", "Delivery is whenever the receiver opens."))
        inference = make_inference({
            "temporal_resolution": {
                "references": [{"original_text": "whenever the receiver opens", "resolved_date": "soon", "resolved_time": "25:99"}],
            },
        })
        result = run_temporal(transcript, inference, settings)

        assert result.references[0].resolved_date is None
        assert result.references[0].resolved_time is None

    def test_assumptions_note_missing_call_date_and_year(self, make_transcript, make_inference, settings):
        transcript = make_transcript(("A", "Pickup tomorrow, delivery 12/15."))

        undated = run_temporal(transcript, make_inference(), settings, call_date=None)
        dated = run_temporal(transcript, make_inference(), settings)

        assert undated.assumptions == ("No call date supplied; relative dates are unresolved",)
        assert dated.assumptions == ("Assumed 2026 for dates given without a year",)
        assert [r.resolved_date for r in dated.references] == [date(2026, 10, 15), date(2026, 12, 15)]
