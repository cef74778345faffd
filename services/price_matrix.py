# services/price_matrix.py
"""Price matrix (Preisspiegel) construction and market statistics."""

from typing import Dict, List, Optional

from models import Bid, Project, PositionPrices, PriceMatrix, MarketAnalysis, Outlier
from services import stats


class PriceMatrixBuilder:
    """Per-position, per-bid price table with averages and deviations."""

    def build(self, bids: List[Bid], project: Project) -> PriceMatrix:
        prices: Dict[str, Dict[str, Dict[str, float]]] = {p.id: {} for p in project.positions}
        quantities = {p.id: p.quantity for p in project.positions}
        totals: Dict[str, float] = {}

        for bid in bids:
            bid_total = 0.0
            for item in bid.positions:
                if item.position_id not in prices:
                    continue
                # BOQ quantities are authoritative, not the bidder's copy
                total_price = item.unit_price * quantities[item.position_id]
                prices[item.position_id][bid.id] = {
                    "unitPrice": item.unit_price,
                    "totalPrice": total_price
                }
                bid_total += total_price
            totals[bid.id] = bid_total

        rows = []
        for position in project.positions:
            row_prices = prices[position.id]
            average = stats.mean([p["unitPrice"] for p in row_prices.values()])
            deviations = {}
            for bid_id, price in row_prices.items():
                absolute = price["unitPrice"] - average
                deviations[bid_id] = {
                    "absolute": absolute,
                    "percentage": (absolute / average) * 100 if average else 0.0
                }
            rows.append(PositionPrices(
                position_id=position.id,
                description=position.description,
                unit=position.unit,
                quantity=position.quantity,
                prices=row_prices,
                average=average,
                deviations=deviations
            ))

        return PriceMatrix(positions=tuple(rows), totals=totals)


class MarketAnalyzer:
    """Descriptive statistics over the per-bid grand totals."""

    def analyze(
        self,
        price_matrix: PriceMatrix,
        benchmarks: Optional[Dict[str, float]] = None
    ) -> MarketAnalysis:
        totals = dict(price_matrix.totals)
        values = list(totals.values())

        average = stats.mean(values)
        median = stats.median(values)
        sigma = stats.std_dev(values)

        price_range = {
            "min": min(values) if values else 0.0,
            "max": max(values) if values else 0.0,
        }
        price_range["spread"] = price_range["max"] - price_range["min"]

        outliers = []
        for bid_id, total in totals.items():
            deviation = abs(total - average)
            if deviation > 2 * sigma:
                outliers.append(Outlier(
                    bid_id=bid_id,
                    total=total,
                    deviation=deviation,
                    type="LOW" if total < average else "HIGH"
                ))

        alignment = {
            bid_id: (1 - abs(total - median) / median) if median else 0.0
            for bid_id, total in totals.items()
        }

        return MarketAnalysis(
            average_total=average,
            median_total=median,
            standard_deviation=sigma,
            price_range=price_range,
            outliers=tuple(outliers),
            market_alignment=alignment,
            totals=totals,
            benchmarks=dict(benchmarks or {})
        )
