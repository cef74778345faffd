# services/auditor.py
"""Arithmetic verification of bid price breakdowns."""

from typing import List

from config import EvaluationConfig
from models import (
    Bid, ArithmeticFinding, ArithmeticCorrection,
    BidArithmeticReport, ArithmeticVerification
)

POSITION_CALCULATION_ERROR = "POSITION_CALCULATION_ERROR"
SUBTOTAL_ERROR = "SUBTOTAL_ERROR"
VAT_CALCULATION_ERROR = "VAT_CALCULATION_ERROR"
GRAND_TOTAL_ERROR = "GRAND_TOTAL_ERROR"


class ArithmeticAuditor:
    """Recompute line, subtotal, VAT and grand totals and report deviations."""

    def __init__(self, config: EvaluationConfig):
        self.tolerance = config.arithmetic_tolerance
        self.default_vat_rate = config.default_vat_rate

    def verify(self, bids: List[Bid]) -> ArithmeticVerification:
        reports = []
        corrections = []

        for bid in bids:
            errors = self.check_bid(bid)
            if not errors:
                continue
            reports.append(BidArithmeticReport(
                bid_id=bid.id,
                bidder_id=bid.bidder_id,
                errors=tuple(errors),
                total_deviation=sum(abs(e.deviation) for e in errors)
            ))
            corrections.append(self.correct(bid, errors))

        return ArithmeticVerification(
            checked=len(bids),
            errors=tuple(reports),
            corrections=tuple(corrections)
        )

    def check_bid(self, bid: Bid) -> List[ArithmeticFinding]:
        breakdown = bid.price_breakdown
        if breakdown is None or not breakdown.positions:
            return []

        errors = []
        # Provided totals are summed on purpose so compounding errors surface
        calculated_subtotal = 0.0

        for position in breakdown.positions:
            expected = position.quantity * position.unit_price
            if abs(position.total - expected) > self.tolerance:
                errors.append(self._finding(
                    POSITION_CALCULATION_ERROR, expected, position.total, position.position_id
                ))
            calculated_subtotal += position.total

        if breakdown.subtotal:
            if abs(breakdown.subtotal - calculated_subtotal) > self.tolerance:
                errors.append(self._finding(SUBTOTAL_ERROR, calculated_subtotal, breakdown.subtotal))

        if breakdown.vat and breakdown.vat_rate:
            expected_vat = calculated_subtotal * (breakdown.vat_rate / 100)
            if abs(breakdown.vat - expected_vat) > self.tolerance:
                errors.append(self._finding(VAT_CALCULATION_ERROR, expected_vat, breakdown.vat))

        expected_grand_total = calculated_subtotal + (breakdown.vat or 0)
        if abs(breakdown.total - expected_grand_total) > self.tolerance:
            errors.append(self._finding(GRAND_TOTAL_ERROR, expected_grand_total, breakdown.total))

        return errors

    def correct(self, bid: Bid, errors: List[ArithmeticFinding]) -> ArithmeticCorrection:
        """Build a correction record from the true per-position products."""
        corrected_positions = tuple(
            {
                "position": e.position,
                "originalTotal": e.actual,
                "correctedTotal": e.expected
            }
            for e in errors if e.type == POSITION_CALCULATION_ERROR
        )

        breakdown = bid.price_breakdown
        subtotal = sum(p.quantity * p.unit_price for p in breakdown.positions)
        vat_rate = breakdown.vat_rate or self.default_vat_rate
        vat = subtotal * (vat_rate / 100)

        return ArithmeticCorrection(
            bid_id=bid.id,
            errors=tuple(errors),
            corrected_positions=corrected_positions,
            subtotal=subtotal,
            vat=vat,
            grand_total=subtotal + vat
        )

    @staticmethod
    def _finding(error_type: str, expected: float, actual: float, position: str = None) -> ArithmeticFinding:
        return ArithmeticFinding(
            type=error_type,
            expected=expected,
            actual=actual,
            deviation=actual - expected,
            position=position
        )
