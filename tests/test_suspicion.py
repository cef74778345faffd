"""
Tests for suspicious-bid detection and risk classification.
"""
import pytest

from models import Bid, Issue
from services.auditor import ArithmeticAuditor
from services.price_matrix import PriceMatrixBuilder, MarketAnalyzer
from services.suspicion import (
    SuspicionDetector, ABNORMALLY_LOW_PRICE, UNBALANCED_PRICING, COLLUSION_PATTERN,
    BELOW_MARKET_BENCHMARK, ARITHMETIC_ERROR, MISSING_DOCUMENTS
)
from tests.conftest import bid_dict, make_history, ROTATION_OUTCOMES


def market_for(bids, project, benchmarks=None):
    return MarketAnalyzer().analyze(PriceMatrixBuilder().build(bids, project), benchmarks)


@pytest.fixture
def five_bids(make_bid):
    """Four market-rate bids and one about 22% below the mean."""
    return [
        make_bid("BID-A", [25, 180, 45, 60]),
        make_bid("BID-B", [28, 170, 50, 55]),
        make_bid("BID-C", [22, 200, 40, 70]),
        make_bid("BID-D", [30, 165, 42, 66]),
        make_bid("BID-L", [18, 155, 30, 40]),
    ]


def unbalanced_bid():
    positions = [
        {"positionId": f"P{i}", "quantity": 1, "unitPrice": 100, "category": "Ausbau"}
        for i in range(10)
    ]
    positions.append({"positionId": "P10", "quantity": 1, "unitPrice": 1000, "category": "Ausbau"})
    return Bid.from_dict({"id": "BID-U", "priceBreakdown": {"positions": positions, "total": 2000}})


# ============================================================================
# ABNORMALLY LOW PRICE TESTS
# ============================================================================

def test_bid_far_below_mean_flagged_high(config, project, five_bids):
    market = market_for(five_bids, project)

    analysis = SuspicionDetector(config).detect(five_bids, market)

    assert [r.bid_id for r in analysis.detected] == ["BID-L"]
    report = analysis.report_for("BID-L")
    assert [i.type for i in report.issues] == [ABNORMALLY_LOW_PRICE]
    assert report.issues[0].severity == "HIGH"
    assert report.issues[0].data["deviation"] == pytest.approx(5346 / 24096)
    assert report.risk_score == 5
    assert report.risk_level == "LOW"


def test_bid_near_mean_not_flagged(config, project, three_bids):
    market = market_for(three_bids, project)

    assert SuspicionDetector(config).detect(three_bids, market).detected == ()


def test_threshold_is_configurable(config, project, five_bids):
    market = market_for(five_bids, project)
    detector = SuspicionDetector(config.with_overrides(suspicious_threshold=0.25))

    assert detector.check_abnormally_low(five_bids[-1], market) == []


# ============================================================================
# UNBALANCED PRICING TESTS
# ============================================================================

def test_unbalanced_position_flagged(config):
    issues = SuspicionDetector(config).check_unbalanced_pricing(unbalanced_bid())

    assert len(issues) == 1
    assert issues[0].type == UNBALANCED_PRICING
    assert issues[0].severity == "MEDIUM"
    assert issues[0].data["position"] == "P10"
    assert issues[0].data["category"] == "Ausbau"
    assert issues[0].data["deviation"] > 3


def test_severe_unbalance_weighs_more(config):
    detector = SuspicionDetector(config)
    issues = detector.check_unbalanced_pricing(unbalanced_bid())

    assert detector.risk_score(issues) == 20


def test_uncategorized_positions_grouped(config):
    positions = [{"positionId": f"P{i}", "quantity": 1, "unitPrice": 10} for i in range(10)]
    positions.append({"positionId": "P10", "quantity": 1, "unitPrice": 500})
    bid = Bid.from_dict({"id": "BID-U", "priceBreakdown": {"positions": positions}})

    issues = SuspicionDetector(config).check_unbalanced_pricing(bid)

    assert [i.data["category"] for i in issues] == ["uncategorized"]


def test_small_categories_never_unbalanced(config, make_bid):
    """With four positions no price can exceed two sigma."""
    bid = make_bid("BID-A", [1, 1, 1, 1000])
    assert SuspicionDetector(config).check_unbalanced_pricing(bid) == []


# ============================================================================
# BENCHMARK / ARITHMETIC / COLLUSION ISSUE TESTS
# ============================================================================

def test_below_market_benchmark(config, project, make_bid):
    bid = make_bid("BID-A", [25, 180, 45, 60])
    detector = SuspicionDetector(config)

    issues = detector.check_benchmarks(bid, {"Rohbau": 100.0})

    assert [i.type for i in issues] == [BELOW_MARKET_BENCHMARK]
    assert issues[0].data["benchmarkRatio"] == pytest.approx(0.775)
    assert detector.check_benchmarks(bid, {"Rohbau": 60.0}) == []
    assert detector.check_benchmarks(bid, {}) == []


def test_benchmark_signal_reported(config, project, three_bids):
    market = market_for(three_bids, project, {"Rohbau": 50.0})

    analysis = SuspicionDetector(config).detect(three_bids, market)

    assert analysis.signals["marketBenchmarks"] is True


def test_arithmetic_errors_become_low_issue(config, project, make_bid):
    data = bid_dict("BID-B", [28, 170, 50, 55])
    data["priceBreakdown"]["subtotal"] = 1000
    bids = [make_bid("BID-A", [25, 180, 45, 60]), Bid.from_dict(data)]
    arithmetic = ArithmeticAuditor(config).verify(bids)

    analysis = SuspicionDetector(config).detect(bids, market_for(bids, project), arithmetic)

    report = analysis.report_for("BID-B")
    assert [i.type for i in report.issues] == [ARITHMETIC_ERROR]
    assert report.issues[0].severity == "LOW"
    assert report.recommendation == ({
        "issue": "Calculation Errors",
        "action": "Notify bidder of errors and request corrected submission",
        "priority": "LOW"
    },)


def test_collusion_indicator_becomes_high_issue(config, project, make_bid):
    bid = make_bid("BID-A", [25, 180, 45, 60])
    histories = {"BIDDER-BID-A": make_history("BIDDER-BID-A", ROTATION_OUTCOMES)}

    analysis = SuspicionDetector(config).detect([bid], market_for([bid], project), histories=histories)

    report = analysis.report_for("BID-A")
    assert report.issues[0].type == COLLUSION_PATTERN
    assert report.issues[0].severity == "HIGH"
    assert report.collusion_indicators[0].type == "ROTATION_PATTERN"
    assert report.risk_score == 30
    assert report.risk_level == "MEDIUM"


# ============================================================================
# RISK TESTS
# ============================================================================

def issue(issue_type, **data):
    return Issue(type=issue_type, severity="HIGH", detail="", data=data)


def test_risk_score_sums_weights(config):
    issues = [issue(COLLUSION_PATTERN), issue(MISSING_DOCUMENTS), issue(ARITHMETIC_ERROR)]
    assert SuspicionDetector(config).risk_score(issues) == 50


def test_risk_score_uses_custom_weights(config):
    weights = dict(config.risk_weights, COLLUSION_PATTERN=60)
    detector = SuspicionDetector(config.with_overrides(risk_weights=weights))

    assert detector.risk_score([issue(COLLUSION_PATTERN)]) == 60


@pytest.mark.parametrize("score,level", [
    (0, "LOW"), (24, "LOW"), (25, "MEDIUM"), (49, "MEDIUM"), (50, "HIGH"), (90, "HIGH")
])
def test_risk_level_thresholds(score, level):
    assert SuspicionDetector.risk_level(score) == level


def test_mitigations_follow_issue_types():
    mitigations = SuspicionDetector.mitigations([issue(ARITHMETIC_ERROR), issue(COLLUSION_PATTERN)])

    assert [m["priority"] for m in mitigations] == ["HIGH", "LOW"]
    assert SuspicionDetector.mitigations([issue(ABNORMALLY_LOW_PRICE)]) == []
