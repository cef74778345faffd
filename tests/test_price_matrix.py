"""
Tests for the price matrix and market statistics.
"""
import pytest

from models import Bid, PriceMatrix
from services.price_matrix import PriceMatrixBuilder, MarketAnalyzer
from services import stats
from tests.conftest import bid_dict


# ============================================================================
# PRICE MATRIX TESTS
# ============================================================================

def test_totals_use_boq_quantities(project):
    """Totals come from BOQ quantities even when the bidder's quantities differ."""
    data = bid_dict("BID-A", [25, 180, 45, 60])
    data["priceBreakdown"]["positions"][0]["quantity"] = 1

    matrix = PriceMatrixBuilder().build([Bid.from_dict(data)], project)

    assert matrix.totals["BID-A"] == 25300
    assert matrix.positions[0].prices["BID-A"] == {"unitPrice": 25, "totalPrice": 2500}


def test_row_average_and_deviations(project, three_bids):
    matrix = PriceMatrixBuilder().build(three_bids, project)

    row = matrix.positions[0]
    assert row.position_id == "01.01"
    assert row.average == pytest.approx(25)
    assert row.deviations["BID-B"]["absolute"] == pytest.approx(3)
    assert row.deviations["BID-B"]["percentage"] == pytest.approx(12)
    assert row.deviations["BID-C"]["percentage"] == pytest.approx(-12)


def test_positions_outside_boq_ignored(project):
    data = bid_dict("BID-A", [25, 180, 45, 60])
    data["priceBreakdown"]["positions"].append({"positionId": "99.99", "quantity": 1, "unitPrice": 1000})

    matrix = PriceMatrixBuilder().build([Bid.from_dict(data)], project)

    assert matrix.totals["BID-A"] == 25300
    assert [r.position_id for r in matrix.positions] == ["01.01", "01.02", "01.03", "01.04"]


def test_matrix_serialization(project, three_bids):
    data = PriceMatrixBuilder().build(three_bids, project).to_dict()

    assert set(data) == {"positions", "averages", "totals"}
    assert data["totals"] == {"BID-A": 25300, "BID-B": 25700, "BID-C": 25800}


# ============================================================================
# MARKET ANALYSIS TESTS
# ============================================================================

def test_market_statistics(project, three_bids):
    matrix = PriceMatrixBuilder().build(three_bids, project)
    market = MarketAnalyzer().analyze(matrix)

    assert market.average_total == pytest.approx(25600)
    assert market.median_total == 25700
    assert market.price_range == {"min": 25300, "max": 25800, "spread": 500}
    assert market.outliers == ()
    assert market.market_alignment["BID-B"] == pytest.approx(1.0)


def test_single_bid_has_no_outliers():
    """One bid gives sigma 0 and no outlier."""
    market = MarketAnalyzer().analyze(PriceMatrix(positions=(), totals={"A": 1000}))

    assert market.standard_deviation == 0
    assert market.outliers == ()
    assert market.price_range["spread"] == 0


def test_outlier_classified_low():
    totals = {f"B{i}": 100.0 for i in range(10)}
    totals["LOW"] = 10.0

    market = MarketAnalyzer().analyze(PriceMatrix(positions=(), totals=totals))

    assert market.outlier_ids == ["LOW"]
    assert market.outliers[0].type == "LOW"


def test_benchmarks_passed_through():
    market = MarketAnalyzer().analyze(PriceMatrix(positions=(), totals={"A": 1}), {"Rohbau": 40.0})
    assert market.benchmarks == {"Rohbau": 40.0}


# ============================================================================
# STATISTICS HELPER TESTS
# ============================================================================

def test_stats_empty_inputs():
    assert stats.mean([]) == 0
    assert stats.median([]) == 0
    assert stats.std_dev([5]) == 0
    assert stats.variance([]) == 0
    assert stats.jaccard(set(), set()) == 0


def test_stats_even_median():
    assert stats.median([1, 2, 3, 4]) == 2.5


def test_stats_population_std_dev():
    assert stats.std_dev([2, 4, 4, 4, 5, 5, 7, 9]) == pytest.approx(2.0)


def test_stats_cosine_similarity():
    assert stats.cosine_similarity([1, 2, 3], [2, 4, 6]) == pytest.approx(1.0)
    assert stats.cosine_similarity([1, 0], [0, 1]) == 0
    assert stats.cosine_similarity([1, 2], [1]) == 0


def test_stats_coefficient_of_variation_zero_mean():
    assert stats.coefficient_of_variation([0, 0]) == float("inf")
