# services/validator.py
"""Formal examination of submitted bids (completeness, deadline, documents, signatures)."""

from datetime import datetime
from typing import List, Optional

from config import EvaluationConfig, REQUIRED_DOCUMENTS
from models import (
    Bid, DisqualifiedBid, FormalExamination,
    parse_datetime, days_between
)

INCOMPLETE_SUBMISSION = "INCOMPLETE_SUBMISSION"
LATE_SUBMISSION = "LATE_SUBMISSION"
MISSING_DOCUMENTS = "MISSING_DOCUMENTS"
INVALID_SIGNATURES = "INVALID_SIGNATURES"


class BidValidator:
    """Partition bids into qualified and disqualified.

    Disqualification is a classification outcome, never an exception: every
    failed check adds its reason code and the bid keeps going through the
    remaining checks so the full list of reasons is reported.
    """

    def __init__(self, config: EvaluationConfig, deadline: Optional[str] = None):
        self.config = config
        self.deadline = parse_datetime(deadline or config.deadline)

    def examine(self, bids: List[Bid], now: datetime) -> FormalExamination:
        qualified = []
        disqualified = []

        for bid in bids:
            failures = self.check(bid, now)
            if failures:
                disqualified.append(DisqualifiedBid(bid=bid, reasons=tuple(failures)))
            else:
                qualified.append(bid)

        return FormalExamination(
            total_bids=len(bids),
            qualified_bids=tuple(qualified),
            disqualified_bids=tuple(disqualified)
        )

    def check(self, bid: Bid, now: datetime) -> List[str]:
        """Return the reason codes this bid fails (empty when it qualifies)."""
        failures = []
        if not self.is_complete(bid):
            failures.append(INCOMPLETE_SUBMISSION)
        if not self.is_within_deadline(bid):
            failures.append(LATE_SUBMISSION)
        if not self.has_required_documents(bid):
            failures.append(MISSING_DOCUMENTS)
        if not self.has_valid_signatures(bid, now):
            failures.append(INVALID_SIGNATURES)
        return failures

    def is_complete(self, bid: Bid) -> bool:
        required = (
            bid.bidder_info,
            bid.price_breakdown,
            bid.timeline,
            bid.references,
            bid.documents
        )
        if any(part is None for part in required):
            return False
        return len(bid.price_breakdown.positions) > 0

    def is_within_deadline(self, bid: Bid) -> bool:
        if self.deadline is None:
            return True
        try:
            submitted = parse_datetime(bid.submission_time)
        except ValueError:
            return False
        if submitted is None:
            return True
        return submitted <= self.deadline

    def has_required_documents(self, bid: Bid) -> bool:
        documents = bid.documents or ()
        for doc_type, localized_name in REQUIRED_DOCUMENTS:
            found = any(
                doc.type == doc_type or (doc.name and localized_name in doc.name)
                for doc in documents
            )
            if not found:
                return False
        return True

    def has_valid_signatures(self, bid: Bid, now: datetime) -> bool:
        offer_letter = next(
            (d for d in bid.documents or () if d.type == "offer_letter"),
            None
        )
        if offer_letter is None or not offer_letter.signed or not offer_letter.signature_date:
            return False

        signatory = bid.bidder_info.authorized_signatory if bid.bidder_info else None
        if signatory and offer_letter.signed_by != signatory:
            return False

        try:
            signed_at = parse_datetime(offer_letter.signature_date)
        except ValueError:
            return False
        return days_between(signed_at, now) <= self.config.signature_max_age_days
