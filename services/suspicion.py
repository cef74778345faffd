# services/suspicion.py
"""Suspicious-bid detection: price anomalies, collusion issues and risk levels."""

from typing import List, Dict, Optional

from config import EvaluationConfig
from models import (
    Bid, Issue, MarketAnalysis, ArithmeticVerification, HistoricalRecord,
    SuspiciousBidReport, SuspiciousAnalysis
)
from services import stats
from services.collusion import CollusionAnalyzer

ABNORMALLY_LOW_PRICE = "ABNORMALLY_LOW_PRICE"
UNBALANCED_PRICING = "UNBALANCED_PRICING"
COLLUSION_PATTERN = "COLLUSION_PATTERN"
BELOW_MARKET_BENCHMARK = "BELOW_MARKET_BENCHMARK"
ARITHMETIC_ERROR = "ARITHMETIC_ERROR"
MISSING_DOCUMENTS = "MISSING_DOCUMENTS"

MITIGATIONS = [
    (COLLUSION_PATTERN, {
        "issue": "Potential Collusion",
        "action": "Request additional documentation and conduct detailed bidder background checks",
        "priority": "HIGH"
    }),
    (UNBALANCED_PRICING, {
        "issue": "Unbalanced Pricing",
        "action": "Request clarification on pricing methodology and unit price justification",
        "priority": "MEDIUM"
    }),
    (ARITHMETIC_ERROR, {
        "issue": "Calculation Errors",
        "action": "Notify bidder of errors and request corrected submission",
        "priority": "LOW"
    })
]


class SuspicionDetector:
    """Accumulate per-bid issues and classify each flagged bid's risk level."""

    def __init__(self, config: EvaluationConfig, collusion: CollusionAnalyzer = None):
        self.config = config
        self.collusion = collusion or CollusionAnalyzer(config)

    def detect(
        self,
        bids: List[Bid],
        market: MarketAnalysis,
        arithmetic: Optional[ArithmeticVerification] = None,
        histories: Optional[Dict[str, List[HistoricalRecord]]] = None,
        tender_records: Optional[Dict[str, List[HistoricalRecord]]] = None
    ) -> SuspiciousAnalysis:
        findings = self.collusion.analyze(bids, market.totals, histories, tender_records)

        detected = []
        for bid in bids:
            issues = []
            issues.extend(self.check_abnormally_low(bid, market))
            issues.extend(self.check_unbalanced_pricing(bid))
            issues.extend(self.check_benchmarks(bid, market.benchmarks))
            if arithmetic is not None and arithmetic.errors_for(bid.id):
                report = arithmetic.errors_for(bid.id)
                issues.append(Issue(
                    type=ARITHMETIC_ERROR,
                    severity="LOW",
                    detail=f"{len(report.errors)} arithmetic deviation(s) in price breakdown",
                    data={"totalDeviation": report.total_deviation}
                ))
            for indicator in findings.indicators.get(bid.id, []):
                issues.append(Issue(
                    type=COLLUSION_PATTERN,
                    severity="HIGH",
                    detail=indicator.detail,
                    data={"relatedBids": list(indicator.related_bids)},
                    indicator=indicator
                ))

            if issues:
                risk_score = self.risk_score(issues)
                detected.append(SuspiciousBidReport(
                    bid_id=bid.id,
                    bidder_id=bid.bidder_id,
                    issues=tuple(issues),
                    risk_level=self.risk_level(risk_score),
                    risk_score=risk_score,
                    recommendation=tuple(self.mitigations(issues))
                ))

        signals = dict(findings.signals)
        signals["marketBenchmarks"] = bool(market.benchmarks)

        return SuspiciousAnalysis(
            detected=tuple(detected),
            market_segmentation=tuple(findings.market_segmentation),
            signals=signals
        )

    # ==================== PRICE CHECKS ====================

    def check_abnormally_low(self, bid: Bid, market: MarketAnalysis) -> List[Issue]:
        average = market.average_total
        if not average:
            return []

        total = market.totals.get(bid.id, 0.0)
        deviation = (average - total) / average
        if deviation <= self.config.suspicious_threshold:
            return []

        return [Issue(
            type=ABNORMALLY_LOW_PRICE,
            severity="HIGH",
            detail=f"Bid is {deviation * 100:.1f}% below average",
            data={"deviation": deviation, "total": total, "average": average}
        )]

    def check_unbalanced_pricing(self, bid: Bid) -> List[Issue]:
        """Flag positions deviating more than N sigma from their category mean."""
        categories: Dict[str, list] = {}
        for position in bid.positions:
            categories.setdefault(position.category or "uncategorized", []).append(position)

        issues = []
        for category, positions in categories.items():
            if len(positions) < 2:
                continue

            prices = [p.unit_price for p in positions]
            avg = stats.mean(prices)
            sigma = stats.std_dev(prices)

            for position in positions:
                deviation = abs(position.unit_price - avg)
                if deviation > self.config.unbalanced_sigma * sigma:
                    issues.append(Issue(
                        type=UNBALANCED_PRICING,
                        severity="MEDIUM",
                        detail=f"Position {position.position_id} deviates {deviation / sigma:.1f} sigma "
                               f"from the {category} average",
                        data={
                            "position": position.position_id,
                            "category": category,
                            "unitPrice": position.unit_price,
                            "categoryAverage": avg,
                            "deviation": deviation / sigma
                        }
                    ))
        return issues

    def check_benchmarks(self, bid: Bid, benchmarks: Dict[str, float]) -> List[Issue]:
        if not benchmarks:
            return []

        ratios = [
            p.unit_price / benchmarks[p.category]
            for p in bid.positions
            if p.category in benchmarks and benchmarks[p.category] > 0
        ]
        if not ratios:
            return []

        ratio = stats.mean(ratios)
        if ratio >= 1 - self.config.suspicious_threshold:
            return []

        return [Issue(
            type=BELOW_MARKET_BENCHMARK,
            severity="MEDIUM",
            detail=f"Unit prices average {ratio * 100:.1f}% of market benchmarks",
            data={"benchmarkRatio": ratio, "positionsCompared": len(ratios)}
        )]

    # ==================== RISK ====================

    def risk_score(self, issues: List[Issue]) -> int:
        weights = self.config.risk_weights
        score = 0
        for issue in issues:
            if issue.type == UNBALANCED_PRICING:
                severe = issue.data.get("deviation", 0) > 3
                score += weights["UNBALANCED_PRICING_SEVERE"] if severe else weights["UNBALANCED_PRICING"]
            else:
                score += weights.get(issue.type, weights["DEFAULT"])
        return score

    @staticmethod
    def risk_level(score: int) -> str:
        if score >= 50:
            return "HIGH"
        if score >= 25:
            return "MEDIUM"
        return "LOW"

    @staticmethod
    def mitigations(issues: List[Issue]) -> List[Dict[str, str]]:
        types = {i.type for i in issues}
        return [dict(m) for issue_type, m in MITIGATIONS if issue_type in types]
