# services/ranking.py
"""Weighted ranking of qualified bids and the award recommendation."""

from typing import List, Dict, Tuple

from config import EvaluationConfig
from models import (
    Bid, QualityScore, TimeScore, RankingEntry, Recommendation, Alternative,
    SuspiciousAnalysis, EmptyBidSetError
)
from services.explainer import Explainer

CONFIDENCE_CLEAR = 0.95
CONFIDENCE_FALLBACK = 0.75
MAX_ALTERNATIVES = 3


class Ranker:
    """Normalise prices, combine the criteria and order the bids."""

    def __init__(self, config: EvaluationConfig, explainer: Explainer = None):
        self.weights = config.weights
        self.explainer = explainer or Explainer()

    def rank(
        self,
        bids: List[Bid],
        totals: Dict[str, float],
        quality_scores: Dict[str, QualityScore],
        time_scores: Dict[str, TimeScore]
    ) -> Tuple[RankingEntry, ...]:
        if not bids:
            raise EmptyBidSetError("No qualified bids to rank")

        prices = [totals.get(b.id, 0.0) for b in bids]
        max_price, min_price = max(prices), min(prices)

        scored = []
        for bid in bids:
            total = totals.get(bid.id, 0.0)
            if max_price == min_price:
                price_score = 100.0
            else:
                price_score = (max_price - total) / (max_price - min_price) * 100

            quality = quality_scores[bid.id].total_score if bid.id in quality_scores else 0.0
            time = time_scores[bid.id].total_score if bid.id in time_scores else 0.0

            weighted = (
                price_score * self.weights["price"] +
                quality * self.weights["quality"] +
                time * self.weights["time"]
            )
            scored.append((bid, total, price_score, quality, time, weighted))

        scored.sort(key=lambda s: (-s[5], s[0].id))

        return tuple(
            RankingEntry(
                bid_id=bid.id,
                bidder_id=bid.bidder_id,
                price_score=price_score,
                quality_score=quality,
                time_score=time,
                weighted_score=weighted,
                rank=index + 1,
                total_price=total
            )
            for index, (bid, total, price_score, quality, time, weighted) in enumerate(scored)
        )

    def recommend(
        self,
        rankings: Tuple[RankingEntry, ...],
        suspicious: SuspiciousAnalysis
    ) -> Recommendation:
        """Recommend rank 1 unless it carries risk above LOW; then fall back to rank 2."""
        if not rankings:
            raise EmptyBidSetError("No ranked bids to recommend")

        top = rankings[0]
        report = suspicious.report_for(top.bid_id)

        if report is None or report.risk_level == "LOW":
            chosen = top
            confidence = CONFIDENCE_CLEAR
            justification = self.explainer.generate_rationale(top)
            risks = ()
        else:
            chosen = rankings[1] if len(rankings) > 1 else top
            confidence = CONFIDENCE_FALLBACK
            justification = self.explainer.generate_rationale(top, rejected=report)
            risks = report.issues

        alternatives = tuple(
            Alternative(
                rank=index + 2,
                bid_id=entry.bid_id,
                bidder_id=entry.bidder_id,
                score=entry.weighted_score,
                rationale=self.explainer.alternative_rationale(entry)
            )
            for index, entry in enumerate(rankings[1:1 + MAX_ALTERNATIVES])
        )

        return Recommendation(
            bid_id=chosen.bid_id,
            bidder_id=chosen.bidder_id,
            confidence=confidence,
            justification=tuple(justification),
            risks=tuple(risks),
            alternatives=alternatives
        )
