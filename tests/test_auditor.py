"""
Tests for arithmetic verification of price breakdowns.
"""
import pytest

from models import Bid
from services.auditor import (
    ArithmeticAuditor, POSITION_CALCULATION_ERROR, SUBTOTAL_ERROR,
    VAT_CALCULATION_ERROR, GRAND_TOTAL_ERROR
)
from tests.conftest import bid_dict


# ============================================================================
# CLEAN BREAKDOWN TESTS
# ============================================================================

def test_consistent_breakdown_has_no_errors(config, make_bid):
    verification = ArithmeticAuditor(config).verify([make_bid("BID-A", [25, 180, 45, 60])])

    assert verification.checked == 1
    assert verification.errors == ()
    assert verification.corrections == ()


def test_deviation_within_tolerance_ignored(config):
    data = bid_dict("BID-A", [25, 180, 45, 60])
    data["priceBreakdown"]["positions"][0]["total"] += 0.005

    assert ArithmeticAuditor(config).check_bid(Bid.from_dict(data)) == []


# ============================================================================
# ERROR DETECTION TESTS
# ============================================================================

def test_inflated_position_total_detected_and_corrected(config):
    """A line total 1.5x its product yields an error whose correction restores the product."""
    data = bid_dict("BID-A", [25, 180, 45, 60])
    expected = data["priceBreakdown"]["positions"][1]["total"]
    data["priceBreakdown"]["positions"][1]["total"] = expected * 1.5

    verification = ArithmeticAuditor(config).verify([Bid.from_dict(data)])

    report = verification.errors_for("BID-A")
    position_errors = [e for e in report.errors if e.type == POSITION_CALCULATION_ERROR]
    assert len(position_errors) == 1
    error = position_errors[0]
    assert error.position == "01.02"
    assert error.expected == expected
    assert error.deviation == pytest.approx(expected * 0.5)

    correction = verification.corrections[0]
    assert correction.corrected_positions[0]["correctedTotal"] == expected
    assert correction.corrected_positions[0]["originalTotal"] == expected * 1.5


def test_provided_totals_feed_the_subtotal_check(config):
    """Subtotal is compared to the sum of provided line totals, so a bad line alone does not break it."""
    data = bid_dict("BID-A", [25, 180, 45, 60])
    data["priceBreakdown"]["positions"][0]["total"] = 3000
    data["priceBreakdown"]["subtotal"] = 3000 + 9000 + 9000 + 4800

    types = [e.type for e in ArithmeticAuditor(config).check_bid(Bid.from_dict(data))]

    assert POSITION_CALCULATION_ERROR in types
    assert SUBTOTAL_ERROR not in types


def test_subtotal_error(config):
    data = bid_dict("BID-A", [25, 180, 45, 60])
    data["priceBreakdown"]["subtotal"] = 20000

    errors = ArithmeticAuditor(config).check_bid(Bid.from_dict(data))

    assert [e.type for e in errors] == [SUBTOTAL_ERROR]
    assert errors[0].expected == 25300
    assert errors[0].deviation == 20000 - 25300


def test_vat_and_grand_total_errors(config):
    data = bid_dict("BID-A", [25, 180, 45, 60])
    data["priceBreakdown"]["vat"] = 5000
    data["priceBreakdown"]["total"] = 35000

    types = [e.type for e in ArithmeticAuditor(config).check_bid(Bid.from_dict(data))]

    assert VAT_CALCULATION_ERROR in types
    assert GRAND_TOTAL_ERROR in types


def test_correction_uses_default_vat_rate(config):
    """Without a VAT rate the configured 19% is used for corrected totals."""
    data = bid_dict("BID-A", [25, 180, 45, 60])
    data["priceBreakdown"]["vatRate"] = None
    data["priceBreakdown"]["total"] = 1

    verification = ArithmeticAuditor(config).verify([Bid.from_dict(data)])
    correction = verification.corrections[0]

    assert correction.subtotal == 25300
    assert correction.vat == pytest.approx(25300 * 0.19)
    assert correction.grand_total == pytest.approx(25300 * 1.19)


def test_only_bids_with_errors_reported(config, make_bid):
    data = bid_dict("BID-B", [28, 170, 50, 55])
    data["priceBreakdown"]["subtotal"] = 1

    verification = ArithmeticAuditor(config).verify([make_bid("BID-A", [25, 180, 45, 60]), Bid.from_dict(data)])

    assert verification.checked == 2
    assert [e.bid_id for e in verification.errors] == ["BID-B"]
    assert verification.errors_for("BID-A") is None
