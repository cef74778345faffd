# services/game_theory.py
"""Optional post-ranking analysis of bidder interactions.

Reads the final ranking and never changes it; the result is informational only.
"""

from typing import List, Sequence

from models import RankingEntry
from services import stats

AGGRESSIVE_PRICING = "AGGRESSIVE_PRICING"
OLIGOPOLISTIC_BEHAVIOR = "OLIGOPOLISTIC_BEHAVIOR"


class GameTheoryAnalyzer:

    def analyze(self, rankings: Sequence[RankingEntry]) -> dict:
        result = {
            "competitiveIntensity": 0.0,
            "pricePressure": 0.0,
            "marketConcentration": 0.0,
            "strategicBehaviors": []
        }
        if len(rankings) < 2:
            return result

        diffs = [
            (cur.total_price - prev.total_price) / prev.total_price
            for prev, cur in zip(rankings, rankings[1:])
            if prev.total_price
        ]
        result["competitiveIntensity"] = 1 - stats.mean(diffs)

        first, last = rankings[0].total_price, rankings[-1].total_price
        result["pricePressure"] = (last - first) / last if last else 0.0

        shares = self.market_shares(rankings)
        result["marketConcentration"] = sum(s * s for s in shares)

        if result["competitiveIntensity"] > 0.9:
            result["strategicBehaviors"].append(AGGRESSIVE_PRICING)
        if result["marketConcentration"] > 0.5:
            result["strategicBehaviors"].append(OLIGOPOLISTIC_BEHAVIOR)

        return result

    @staticmethod
    def market_shares(rankings: Sequence[RankingEntry]) -> List[float]:
        """Inverse-price shares scaled by quality (lower price wins more share)."""
        priced = [r for r in rankings if r.total_price > 0]
        total_inverse = sum(1 / r.total_price for r in priced)
        if not total_inverse:
            return []

        shares = []
        for r in priced:
            multiplier = r.quality_score / 100 if r.quality_score else 1.0
            shares.append((1 / r.total_price) / total_inverse * multiplier)
        return shares
