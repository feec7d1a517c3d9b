"""Unit tests for validation checks and the rate confirmation decision."""

import pytest

from freight_intel.models.negotiation import NegotiationConfidence, NegotiationOutcome, NegotiationStatus
from freight_intel.models.outputs import CarrierInfo, ExtractedField, Load, LoadList, WarningSeverity
from freight_intel.pipeline.stages.validation import (
    check_carrier,
    check_loads,
    check_negotiation,
    get_next_steps,
    should_generate_rate_confirmation,
)


def _agreed(**overrides) -> NegotiationOutcome:
    values = dict(
        status=NegotiationStatus.AGREED,
        agreed_rate=2150.0,
        broker_final_position=2150.0,
        carrier_final_position=2150.0,
        field_confidence=NegotiationConfidence(agreement_status=90, agreed_rate=90, final_positions=80),
        confidence=90,
    )
    values.update(overrides)
    return NegotiationOutcome(**values)


@pytest.fixture
def identified_carrier() -> CarrierInfo:
    return CarrierInfo(
        company_name=ExtractedField(value="Blue Line Trucking", confidence=85, source="llm"),
        mc_number=ExtractedField(value="123456", confidence=90, source="merged"),
        confidence=85,
    )


class TestShouldGenerateRateConfirmation:
    """Rate confirmation is offered only for clean agreements."""

    def test_clean_agreement(self, identified_carrier, settings):
        negotiation = _agreed()
        warnings = check_negotiation(negotiation, settings) + check_carrier(identified_carrier, negotiation, settings)
        assert warnings == []
        assert should_generate_rate_confirmation(negotiation, identified_carrier, warnings, settings) is True

    @pytest.mark.parametrize(
        "status",
        [NegotiationStatus.PENDING, NegotiationStatus.REJECTED, NegotiationStatus.CALLBACK_REQUESTED],
    )
    def test_never_unless_agreed(self, status, identified_carrier, settings):
        negotiation = NegotiationOutcome(status=status, broker_final_position=2000.0)
        assert should_generate_rate_confirmation(negotiation, identified_carrier, [], settings) is False

    def test_missing_negotiation(self, identified_carrier, settings):
        assert should_generate_rate_confirmation(None, identified_carrier, [], settings) is False

    def test_unidentified_carrier(self, settings):
        negotiation = _agreed()
        carrier = CarrierInfo(company_name=ExtractedField(value="Some Carrier", confidence=50, source="llm"))
        assert should_generate_rate_confirmation(negotiation, carrier, [], settings) is False
        assert should_generate_rate_confirmation(negotiation, None, [], settings) is False

    def test_low_rate_confidence_blocks(self, identified_carrier, settings):
        negotiation = _agreed(
            field_confidence=NegotiationConfidence(agreement_status=70, agreed_rate=55, final_positions=50)
        )
        warnings = check_negotiation(negotiation, settings)
        assert [w.severity for w in warnings] == [WarningSeverity.BLOCKING]
        assert should_generate_rate_confirmation(negotiation, identified_carrier, warnings, settings) is False


class TestChecks:
    """Individual consistency checks."""

    def test_agreed_without_rate_is_blocking(self, settings):
        negotiation = _agreed(agreed_rate=None)
        warnings = check_negotiation(negotiation, settings)
        assert any(w.severity == WarningSeverity.BLOCKING and w.field == "negotiation.agreed_rate" for w in warnings)

    def test_large_discrepancy_warns(self, settings):
        negotiation = _agreed(broker_final_position=1500.0, carrier_final_position=2150.0)
        warnings = check_negotiation(negotiation, settings)
        assert [w.field for w in warnings] == ["negotiation.final_positions"]
        assert warnings[0].severity == WarningSeverity.WARNING

    def test_contingencies_warn(self, settings):
        negotiation = _agreed(contingencies=("as long as the driver confirms",))
        warnings = check_negotiation(negotiation, settings)
        assert [w.field for w in warnings] == ["negotiation.contingencies"]

    def test_bad_mc_length(self, settings):
        carrier = CarrierInfo(mc_number=ExtractedField(value="123", confidence=90, source="llm"))
        warnings = check_carrier(carrier, None, settings)
        assert [w.field for w in warnings] == ["carrier.mc_number"]

    def test_same_origin_and_destination(self):
        loads = LoadList(loads=(Load(
            origin_city="Dallas", origin_state="TX", destination_city="dallas", destination_state="tx",
        ),))
        warnings = check_loads(loads, None)
        assert len(warnings) == 1
        assert "Dallas, TX -> dallas, tx" in warnings[0].message

    def test_negotiation_without_load_warns_even_without_rates(self):
        negotiation = NegotiationOutcome(
            status=NegotiationStatus.CALLBACK_REQUESTED,
            callback_conditions="Let me check with my driver",
        )
        warnings = check_loads(LoadList(), negotiation)

        assert [w.field for w in warnings] == ["loads"]
        assert warnings[0].severity == WarningSeverity.WARNING


class TestNextSteps:
    """Follow-ups per status."""

    def test_agreed(self):
        steps = get_next_steps(_agreed(), [])
        assert steps[0] == "Generate and send rate confirmation"

    def test_rejected_mentions_gap(self):
        negotiation = NegotiationOutcome(
            status=NegotiationStatus.REJECTED,
            broker_final_position=1500.0,
            carrier_final_position=1900.0,
            rejection_reason="too far",
        )
        steps = get_next_steps(negotiation, [])
        assert "Rejection reason: too far" in steps
        assert "Rate gap was $400 - consider if load can support higher rate" in steps

    def test_no_negotiation(self):
        assert get_next_steps(None, []) == ["Review call manually - no negotiation data extracted"]
