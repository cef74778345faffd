"""
Pytest configuration and fixtures.
Provides a reference project, a bid factory and a fixed evaluation time.
"""
import pytest
from datetime import datetime, timezone

from config import EvaluationConfig
from models import Bid, Project, HistoricalRecord


NOW = datetime(2025, 6, 2, tzinfo=timezone.utc)

PROJECT_DATA = {
    "id": "P-2025-001",
    "name": "Kita Neubau Lindenstrasse",
    "boq": {
        "positions": [
            {"id": "01.01", "description": "Erdarbeiten", "unit": "m3", "quantity": 100},
            {"id": "01.02", "description": "Stahlbeton", "unit": "m3", "quantity": 50},
            {"id": "01.03", "description": "Mauerwerk", "unit": "m2", "quantity": 200},
            {"id": "01.04", "description": "Dachabdichtung", "unit": "m2", "quantity": 80}
        ]
    },
    "targetDuration": 180,
    "deadline": "2026-03-31T00:00:00Z",
    "startDate": "2025-07-01T00:00:00Z",
    "submissionDeadline": "2025-05-31T12:00:00Z",
    "projectType": "residential"
}

QUANTITIES = [p["quantity"] for p in PROJECT_DATA["boq"]["positions"]]
POSITION_IDS = [p["id"] for p in PROJECT_DATA["boq"]["positions"]]

REQUIRED_DOCUMENT_TYPES = [
    "price_sheet", "company_profile", "references", "insurance_proof", "tax_clearance"
]


def bid_dict(
    bid_id,
    unit_prices,
    bidder_id=None,
    categories=None,
    cost_estimates=None,
    submission_time="2025-05-30T10:00:00Z",
    **overrides
):
    """Build a bid record that passes the formal examination and the arithmetic audit."""
    bidder_id = bidder_id or f"BIDDER-{bid_id}"
    categories = categories or ["Rohbau"] * len(unit_prices)

    positions = []
    for i, price in enumerate(unit_prices):
        position = {
            "positionId": POSITION_IDS[i],
            "quantity": QUANTITIES[i],
            "unitPrice": price,
            "total": QUANTITIES[i] * price,
            "category": categories[i]
        }
        if cost_estimates:
            position["costEstimate"] = cost_estimates[i]
        positions.append(position)

    subtotal = sum(p["total"] for p in positions)
    vat = subtotal * (19 / 100)

    data = {
        "id": bid_id,
        "bidderId": bidder_id,
        "bidderInfo": {"id": bidder_id, "name": f"Bau {bid_id} GmbH", "authorizedSignatory": "Erika Muster"},
        "priceBreakdown": {
            "positions": positions,
            "subtotal": subtotal,
            "vat": vat,
            "vatRate": 19,
            "total": subtotal + vat
        },
        "documents": [
            {
                "type": "offer_letter",
                "name": "Anschreiben",
                "signed": True,
                "signedBy": "Erika Muster",
                "signatureDate": "2025-05-28T00:00:00Z"
            }
        ] + [{"type": t} for t in REQUIRED_DOCUMENT_TYPES],
        "references": [
            {
                "projectValue": 2_000_000,
                "projectType": "residential",
                "completionDate": "2024-09-01",
                "clientRating": 4.5
            }
        ],
        "personnel": [
            {"role": "project_manager", "qualifications": ["Diplom-Ingenieur"], "yearsExperience": 15}
        ],
        "certifications": ["ISO 9001"],
        "timeline": {"startDate": "2025-07-01T00:00:00Z", "endDate": "2025-12-28T00:00:00Z"},
        "submissionTime": submission_time,
        "duration": 180
    }
    data.update(overrides)
    return data


def make_history(bidder_id, outcomes):
    """Chronological history from (won, rank, total_price) tuples."""
    return [
        HistoricalRecord(
            bidder_id=bidder_id,
            won=won,
            rank=rank,
            total_price=price,
            tender_id=f"T-{i}",
            bid_date=f"2024-{i + 1:02d}-15"
        )
        for i, (won, rank, price) in enumerate(outcomes)
    ]


# Rotation scenario: wins at 0 and 5, ranks 2-3 in between, converging prices
ROTATION_OUTCOMES = [
    (True, 1, 100),
    (False, 2, 160),
    (False, 3, 60),
    (False, 2, 130),
    (False, 3, 90),
    (True, 1, 105)
]


# Six tenders shared by bidder A, a dearer bidder Y and a similarly priced bidder Z.
# The win alternates between the two price groups; A's own prices never move.
SHARED_TENDER_WINNERS = [
    "BIDDER-BID-A", "BIDDER-Y", "BIDDER-Z", "BIDDER-Y", "BIDDER-Z", "BIDDER-BID-A"
]
SHARED_TENDER_PRICES = {"BIDDER-BID-A": 100, "BIDDER-Y": 200, "BIDDER-Z": 105}


def make_tender_records():
    """Every bidder's record for the shared tenders, oldest first."""
    records = []
    for i, winner in enumerate(SHARED_TENDER_WINNERS):
        for bidder_id, price in SHARED_TENDER_PRICES.items():
            records.append(HistoricalRecord(
                bidder_id=bidder_id,
                won=bidder_id == winner,
                rank=1 if bidder_id == winner else (2 if i % 2 else 3),
                total_price=price,
                tender_id=f"T-{i}",
                winner_id=winner,
                bid_date=f"2024-{i + 1:02d}-15"
            ))
    return records


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def config():
    return EvaluationConfig()


@pytest.fixture
def project_data():
    return dict(PROJECT_DATA)


@pytest.fixture
def project():
    return Project.from_dict(PROJECT_DATA)


@pytest.fixture
def make_bid():
    """Factory returning Bid models."""
    def _make(bid_id, unit_prices, **kwargs):
        return Bid.from_dict(bid_dict(bid_id, unit_prices, **kwargs))
    return _make


@pytest.fixture
def three_bids(make_bid):
    """Three qualified, independently priced bids; A is cheapest."""
    return [
        make_bid("BID-A", [25, 180, 45, 60]),
        make_bid("BID-B", [28, 170, 50, 55]),
        make_bid("BID-C", [22, 200, 40, 70])
    ]


@pytest.fixture
def rotation_history():
    return make_history("BIDDER-BID-A", ROTATION_OUTCOMES)
