"""Unit tests for Pydantic models."""

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from freight_intel.models import (
    CallType,
    ClassificationResult,
    ExtractionResult,
    NegotiationOutcome,
    NegotiationStatus,
    RateQuote,
    RunMetadata,
    RunStatus,
    TokenUsage,
    Transcript,
    Utterance,
)


class TestTranscript:
    """Tests for Transcript and Utterance."""

    def test_text_derived_from_utterances(self):
        transcript = Transcript(utterances=(
            Utterance(speaker_label="A", text="Got a load for you."),
            Utterance(speaker_label="B", text="What's it paying?"),
        ))
        assert transcript.text == "A: Got a load for you.\nB: What's it paying?"

    def test_explicit_text_is_kept(self):
        transcript = Transcript(utterances=(Utterance(speaker_label="A", text="hi"),), text="raw text")
        assert transcript.text == "raw text"

    def test_speaker_labels_in_first_appearance_order(self):
        transcript = Transcript(utterances=(
            Utterance(speaker_label="B", text="one"),
            Utterance(speaker_label="A", text="two"),
            Utterance(speaker_label="B", text="three"),
        ))
        assert transcript.speaker_labels == ["B", "A"]

    def test_format_utterances_with_limit(self):
        transcript = Transcript(utterances=(
            Utterance(speaker_label="A", text="one"),
            Utterance(speaker_label="B", text="two"),
        ))
        assert transcript.format_utterances(limit=1) == "[0][A] one"

    def test_excerpt_cuts_on_line_boundary(self):
        transcript = Transcript(text="first line\nsecond line")
        assert transcript.excerpt(15) == "first line"

    def test_empty(self):
        assert Transcript().is_empty
        assert Transcript(text="   ").is_empty

    def test_end_before_start_rejected(self):
        with pytest.raises(ValidationError):
            Utterance(speaker_label="A", text="x", start_ms=5000, end_ms=1000)

    def test_frozen(self):
        transcript = Transcript(text="hello")
        with pytest.raises(ValidationError):
            transcript.text = "changed"


class TestRunMetadata:
    """Tests for RunMetadata."""

    def test_defaults_to_unknown_call_type(self):
        metadata = RunMetadata(call_id="c1", organization_id="o1", user_id="u1")
        assert metadata.call_type == CallType.UNKNOWN

    def test_call_id_required(self):
        with pytest.raises(ValidationError):
            RunMetadata(call_id="", organization_id="o1", user_id="u1")


class TestTokenUsage:
    """Tests for TokenUsage arithmetic."""

    def test_plus(self):
        total = TokenUsage(calls=1, prompt_tokens=10, completion_tokens=2, cost_usd=0.01).plus(
            TokenUsage(calls=2, prompt_tokens=5, completion_tokens=3, cost_usd=0.02)
        )
        assert total.calls == 3
        assert total.total_tokens == 20
        assert total.cost_usd == pytest.approx(0.03)


class TestOutputs:
    """Tests for stage output models."""

    def test_rate_quote_total(self):
        assert RateQuote(amount=2.5, rate_type="per_mile", miles=800).total == 2000
        assert RateQuote(amount=2.5, rate_type="per_mile").total is None
        assert RateQuote(amount=1800).total == 1800

    def test_rate_quote_requires_positive_amount(self):
        with pytest.raises(ValidationError):
            RateQuote(amount=0)

    def test_result_outputs_are_tagged(self):
        now = datetime.now(timezone.utc)
        result = ExtractionResult(
            call_id="c1",
            status=RunStatus.COMPLETE,
            outputs={
                "classification": ClassificationResult(call_type=CallType.CARRIER, confidence=80),
                "negotiation": NegotiationOutcome(status=NegotiationStatus.AGREED, agreed_rate=1500),
            },
            started_at=now,
            finished_at=now,
        )
        restored = ExtractionResult.model_validate_json(result.model_dump_json())

        assert isinstance(restored.classification, ClassificationResult)
        assert isinstance(restored.outputs["negotiation"], NegotiationOutcome)
        assert restored.outputs["negotiation"].agreed_rate == 1500
