# models.py
"""Data models for the Bid Evaluation Engine."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Dict, Any, Optional, Tuple, Union


# ============ ERRORS ============

class BidEvaluationError(Exception):
    """Base class for evaluation failures."""


class EmptyBidSetError(BidEvaluationError):
    """No bid survived the formal examination, so there is nothing to rank."""


class EvaluationTimeoutError(BidEvaluationError):
    """The evaluation did not finish within the configured timeout."""


class InvalidConfigurationError(BidEvaluationError):
    """The evaluation configuration is inconsistent (e.g. weights do not sum to 1)."""


class MalformedBidError(BidEvaluationError):
    """A bid record cannot be identified at all."""


# ============ HELPERS ============

def parse_datetime(value: Union[str, int, float, datetime, None]) -> Optional[datetime]:
    """Parse ISO strings, epoch seconds or datetimes into an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        parsed = datetime.fromtimestamp(value, tz=timezone.utc)
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def days_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 86400


def _tuple_or_none(data: dict, key: str, factory=None) -> Optional[tuple]:
    """Keep the difference between an absent list (None) and an empty one."""
    if key not in data or data[key] is None:
        return None
    items = data[key]
    return tuple(factory(i) for i in items) if factory else tuple(items)


# ============ INPUT MODELS ============

@dataclass(frozen=True)
class Position:
    """One BOQ line item; quantities are authoritative for every bid."""
    id: str
    description: str
    unit: str
    quantity: float

    @classmethod
    def from_dict(cls, data: dict) -> "Position":
        return cls(
            id=str(data["id"]),
            description=data.get("description", ""),
            unit=data.get("unit", ""),
            quantity=float(data.get("quantity", 0))
        )


@dataclass(frozen=True)
class Milestone:
    name: str
    date: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "Milestone":
        return cls(name=data["name"], date=data.get("date"))


@dataclass(frozen=True)
class Project:
    """Project snapshot the bids are evaluated against."""
    id: str
    name: str
    positions: Tuple[Position, ...]
    target_duration: Optional[float] = None
    deadline: Optional[str] = None
    start_date: Optional[str] = None
    submission_deadline: Optional[str] = None
    project_type: Optional[str] = None
    milestones: Optional[Tuple[Milestone, ...]] = None

    @classmethod
    def from_dict(cls, data: dict) -> "Project":
        boq = data.get("boq", {})
        return cls(
            id=str(data["id"]),
            name=data.get("name", ""),
            positions=tuple(Position.from_dict(p) for p in boq.get("positions", [])),
            target_duration=data.get("targetDuration"),
            deadline=data.get("deadline"),
            start_date=data.get("startDate"),
            submission_deadline=data.get("submissionDeadline"),
            project_type=data.get("projectType"),
            milestones=_tuple_or_none(data, "milestones", Milestone.from_dict)
        )


@dataclass(frozen=True)
class PricedPosition:
    """A bidder's price for one BOQ position."""
    position_id: str
    quantity: float
    unit_price: float
    total: float
    category: Optional[str] = None
    cost_estimate: Optional[float] = None
    description: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "PricedPosition":
        quantity = float(data.get("quantity", 0))
        unit_price = float(data.get("unitPrice", 0))
        total = data.get("total")
        return cls(
            position_id=str(data.get("positionId", data.get("id", data.get("description", "")))),
            quantity=quantity,
            unit_price=unit_price,
            total=float(total) if total is not None else quantity * unit_price,
            category=data.get("category"),
            cost_estimate=data.get("costEstimate"),
            description=data.get("description")
        )


@dataclass(frozen=True)
class PriceBreakdown:
    positions: Tuple[PricedPosition, ...]
    subtotal: Optional[float] = None
    vat: Optional[float] = None
    vat_rate: Optional[float] = None
    total: float = 0.0

    @classmethod
    def from_dict(cls, data: dict) -> "PriceBreakdown":
        return cls(
            positions=tuple(PricedPosition.from_dict(p) for p in data.get("positions", []) or []),
            subtotal=data.get("subtotal"),
            vat=data.get("vat"),
            vat_rate=data.get("vatRate"),
            total=float(data.get("total", 0) or 0)
        )


@dataclass(frozen=True)
class Document:
    type: Optional[str] = None
    name: Optional[str] = None
    signed: bool = False
    signed_by: Optional[str] = None
    signature_date: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "Document":
        return cls(
            type=data.get("type"),
            name=data.get("name"),
            signed=bool(data.get("signed", False)),
            signed_by=data.get("signedBy"),
            signature_date=data.get("signatureDate")
        )


@dataclass(frozen=True)
class Reference:
    project_value: Optional[float] = None
    project_type: Optional[str] = None
    completion_date: Optional[str] = None
    client_rating: Optional[float] = None

    @classmethod
    def from_dict(cls, data: dict) -> "Reference":
        return cls(
            project_value=data.get("projectValue"),
            project_type=data.get("projectType"),
            completion_date=data.get("completionDate"),
            client_rating=data.get("clientRating")
        )


@dataclass(frozen=True)
class Person:
    role: Optional[str] = None
    qualifications: Tuple[str, ...] = ()
    years_experience: Optional[float] = None

    @classmethod
    def from_dict(cls, data: dict) -> "Person":
        return cls(
            role=data.get("role"),
            qualifications=tuple(data.get("qualifications", []) or []),
            years_experience=data.get("yearsExperience")
        )


@dataclass(frozen=True)
class Equipment:
    owned: float = 0
    total: float = 0
    modern_equipment_ratio: float = 0
    specialized_tools: Tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: dict) -> "Equipment":
        return cls(
            owned=data.get("owned", 0),
            total=data.get("total", 0),
            modern_equipment_ratio=data.get("modernEquipmentRatio", 0),
            specialized_tools=tuple(data.get("specializedTools", []) or [])
        )


@dataclass(frozen=True)
class Methodology:
    bim: bool = False
    lean: bool = False
    agile: bool = False
    prefabrication: bool = False
    digital_tools: Tuple[str, ...] = ()

    @classmethod
    def from_value(cls, value: Union[dict, list, str]) -> "Methodology":
        """Accept either a flag dict or a plain list of method keywords."""
        if isinstance(value, dict):
            return cls(
                bim=bool(value.get("bim")),
                lean=bool(value.get("lean")),
                agile=bool(value.get("agile")),
                prefabrication=bool(value.get("prefabrication")),
                digital_tools=tuple(value.get("digitalTools", []) or [])
            )
        keywords = [value] if isinstance(value, str) else list(value)
        return cls(
            bim="BIM" in keywords,
            lean="Lean" in keywords,
            agile="Agile" in keywords,
            prefabrication="prefabrication" in keywords
        )


@dataclass(frozen=True)
class Timeline:
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    milestones: Optional[Tuple[Milestone, ...]] = None

    @classmethod
    def from_dict(cls, data: dict) -> "Timeline":
        return cls(
            start_date=data.get("startDate"),
            end_date=data.get("endDate"),
            milestones=_tuple_or_none(data, "milestones", Milestone.from_dict)
        )


@dataclass(frozen=True)
class BidderInfo:
    id: Optional[str] = None
    name: Optional[str] = None
    authorized_signatory: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "BidderInfo":
        return cls(
            id=data.get("id"),
            name=data.get("name"),
            authorized_signatory=data.get("authorizedSignatory")
        )


@dataclass(frozen=True)
class Bid:
    """Full bid input model. Never mutated after submission."""
    id: str
    bidder_id: str
    bidder_info: Optional[BidderInfo] = None
    price_breakdown: Optional[PriceBreakdown] = None
    documents: Optional[Tuple[Document, ...]] = None
    references: Optional[Tuple[Reference, ...]] = None
    personnel: Tuple[Person, ...] = ()
    certifications: Tuple[str, ...] = ()
    timeline: Optional[Timeline] = None
    submission_time: Optional[str] = None
    duration: Optional[float] = None

    # Optional capability details
    equipment: Optional[Equipment] = None
    methodology: Optional[Methodology] = None
    innovations: Tuple[str, ...] = ()
    value_engineering_savings: Optional[float] = None
    sustainable_innovations: bool = False
    quality_processes: Tuple[str, ...] = ()
    sustainability_measures: Tuple[str, ...] = ()
    carbon_reduction: Optional[float] = None

    @property
    def positions(self) -> Tuple[PricedPosition, ...]:
        if self.price_breakdown is None:
            return ()
        return self.price_breakdown.positions

    @property
    def bidder_name(self) -> str:
        if self.bidder_info and self.bidder_info.name:
            return self.bidder_info.name
        return self.bidder_id

    @classmethod
    def from_dict(cls, data: dict) -> "Bid":
        """Create Bid from JSON dict. Handles optional fields gracefully."""
        if not data.get("id"):
            raise MalformedBidError("Bid record has no id")

        bidder_info = BidderInfo.from_dict(data["bidderInfo"]) if data.get("bidderInfo") else None
        bidder_id = data.get("bidderId") or (bidder_info.id if bidder_info else None) or str(data["id"])

        value_engineering = data.get("valueEngineering") or {}

        return cls(
            id=str(data["id"]),
            bidder_id=str(bidder_id),
            bidder_info=bidder_info,
            price_breakdown=(
                PriceBreakdown.from_dict(data["priceBreakdown"]) if data.get("priceBreakdown") else None
            ),
            documents=_tuple_or_none(data, "documents", Document.from_dict),
            references=_tuple_or_none(data, "references", Reference.from_dict),
            personnel=tuple(Person.from_dict(p) for p in data.get("personnel", []) or []),
            certifications=tuple(data.get("certifications", []) or []),
            timeline=Timeline.from_dict(data["timeline"]) if data.get("timeline") else None,
            submission_time=data.get("submissionTime"),
            duration=data.get("duration"),
            equipment=Equipment.from_dict(data["equipment"]) if data.get("equipment") else None,
            methodology=Methodology.from_value(data["methodology"]) if data.get("methodology") else None,
            innovations=tuple(data.get("innovations", []) or []),
            value_engineering_savings=value_engineering.get("potentialSavings"),
            sustainable_innovations=bool(data.get("sustainableInnovations", False)),
            quality_processes=tuple(data.get("qualityProcesses", []) or []),
            sustainability_measures=tuple(data.get("sustainabilityMeasures", []) or []),
            carbon_reduction=data.get("carbonReduction")
        )


@dataclass(frozen=True)
class HistoricalRecord:
    """One past tender outcome for a bidder (oldest records first)."""
    bidder_id: str
    won: bool
    rank: Optional[int] = None
    total_price: Optional[float] = None
    tender_id: Optional[str] = None
    winner_id: Optional[str] = None
    bid_date: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "bidderId": self.bidder_id,
            "won": self.won,
            "rank": self.rank,
            "totalPrice": self.total_price,
            "tenderId": self.tender_id,
            "winnerId": self.winner_id,
            "bidDate": self.bid_date
        }


# ============ OUTPUT MODELS ============

@dataclass(frozen=True)
class DisqualifiedBid:
    bid: Bid
    reasons: Tuple[str, ...]

    def to_dict(self) -> dict:
        return {
            "bidId": self.bid.id,
            "bidderId": self.bid.bidder_id,
            "reasons": list(self.reasons)
        }


@dataclass(frozen=True)
class FormalExamination:
    total_bids: int
    qualified_bids: Tuple[Bid, ...]
    disqualified_bids: Tuple[DisqualifiedBid, ...]

    def to_dict(self) -> dict:
        return {
            "totalBids": self.total_bids,
            "qualifiedBids": [b.id for b in self.qualified_bids],
            "disqualifiedBids": [d.to_dict() for d in self.disqualified_bids],
            "issues": [
                {
                    "bidId": d.bid.id,
                    "bidderId": d.bid.bidder_id,
                    "passed": False,
                    "failures": list(d.reasons)
                }
                for d in self.disqualified_bids
            ]
        }


@dataclass(frozen=True)
class ArithmeticFinding:
    """A single arithmetic deviation; deviation = actual - expected."""
    type: str
    expected: float
    actual: float
    deviation: float
    position: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "position": self.position,
            "expected": self.expected,
            "actual": self.actual,
            "deviation": self.deviation
        }


@dataclass(frozen=True)
class ArithmeticCorrection:
    """Recomputed totals for reporting; never fed back into scoring."""
    bid_id: str
    errors: Tuple[ArithmeticFinding, ...]
    corrected_positions: Tuple[Dict[str, Any], ...]
    subtotal: float
    vat: float
    grand_total: float

    def to_dict(self) -> dict:
        return {
            "bidId": self.bid_id,
            "errors": [e.to_dict() for e in self.errors],
            "correctedPositions": [dict(p) for p in self.corrected_positions],
            "correctedTotals": {
                "subtotal": self.subtotal,
                "vat": self.vat,
                "grandTotal": self.grand_total
            }
        }


@dataclass(frozen=True)
class BidArithmeticReport:
    bid_id: str
    bidder_id: str
    errors: Tuple[ArithmeticFinding, ...]
    total_deviation: float

    def to_dict(self) -> dict:
        return {
            "bidId": self.bid_id,
            "bidderId": self.bidder_id,
            "errors": [e.to_dict() for e in self.errors],
            "totalDeviation": self.total_deviation
        }


@dataclass(frozen=True)
class ArithmeticVerification:
    checked: int
    errors: Tuple[BidArithmeticReport, ...]
    corrections: Tuple[ArithmeticCorrection, ...]

    def errors_for(self, bid_id: str) -> Optional[BidArithmeticReport]:
        return next((e for e in self.errors if e.bid_id == bid_id), None)

    def to_dict(self) -> dict:
        return {
            "checked": self.checked,
            "errors": [e.to_dict() for e in self.errors],
            "corrections": [c.to_dict() for c in self.corrections]
        }


@dataclass(frozen=True)
class PositionPrices:
    """One row of the price matrix (Preisspiegel)."""
    position_id: str
    description: str
    unit: str
    quantity: float
    prices: Dict[str, Dict[str, float]]
    average: float
    deviations: Dict[str, Dict[str, float]]

    def to_dict(self) -> dict:
        return {
            "positionId": self.position_id,
            "description": self.description,
            "unit": self.unit,
            "quantity": self.quantity,
            "prices": {k: dict(v) for k, v in self.prices.items()},
            "average": self.average,
            "deviations": {k: dict(v) for k, v in self.deviations.items()}
        }


@dataclass(frozen=True)
class PriceMatrix:
    positions: Tuple[PositionPrices, ...]
    totals: Dict[str, float]

    def total_for(self, bid_id: str) -> float:
        return self.totals.get(bid_id, 0.0)

    def to_dict(self) -> dict:
        return {
            "positions": [p.to_dict() for p in self.positions],
            "averages": {p.position_id: p.average for p in self.positions},
            "totals": dict(self.totals)
        }


@dataclass(frozen=True)
class QualityScore:
    bid_id: str
    criteria: Dict[str, float]
    total_score: float
    max_score: float = 100.0

    def to_dict(self) -> dict:
        return {
            "bidId": self.bid_id,
            "criteria": dict(self.criteria),
            "totalScore": self.total_score,
            "maxScore": self.max_score
        }


@dataclass(frozen=True)
class TimeScore:
    bid_id: str
    proposed_duration: Optional[float]
    deviation: Optional[float]
    score: float
    feasibility: str = "unknown"
    feasibility_score: Optional[float] = None

    @property
    def total_score(self) -> float:
        return self.score

    def to_dict(self) -> dict:
        return {
            "bidId": self.bid_id,
            "proposedDuration": self.proposed_duration,
            "deviation": self.deviation,
            "score": self.score,
            "totalScore": self.score,
            "feasibility": self.feasibility,
            "feasibilityScore": self.feasibility_score
        }


@dataclass(frozen=True)
class Outlier:
    bid_id: str
    total: float
    deviation: float
    type: str  # "LOW" or "HIGH"

    def to_dict(self) -> dict:
        return {
            "bidId": self.bid_id,
            "total": self.total,
            "deviation": self.deviation,
            "type": self.type
        }


@dataclass(frozen=True)
class MarketAnalysis:
    average_total: float
    median_total: float
    standard_deviation: float
    price_range: Dict[str, float]
    outliers: Tuple[Outlier, ...]
    market_alignment: Dict[str, float]
    totals: Dict[str, float] = field(default_factory=dict)
    benchmarks: Dict[str, float] = field(default_factory=dict)

    @property
    def outlier_ids(self) -> List[str]:
        return [o.bid_id for o in self.outliers]

    def to_dict(self) -> dict:
        return {
            "averageTotal": self.average_total,
            "medianTotal": self.median_total,
            "standardDeviation": self.standard_deviation,
            "priceRange": dict(self.price_range),
            "outliers": [o.to_dict() for o in self.outliers],
            "marketAlignment": dict(self.market_alignment),
            "benchmarks": dict(self.benchmarks)
        }


@dataclass(frozen=True)
class CollusionIndicator:
    type: str
    confidence: float
    related_bids: Tuple[str, ...] = ()
    detail: str = ""
    score: Optional[float] = None

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "confidence": self.confidence,
            "relatedBids": list(self.related_bids),
            "detail": self.detail,
            "score": self.score
        }


@dataclass(frozen=True)
class Issue:
    type: str
    severity: str
    detail: str
    data: Dict[str, Any] = field(default_factory=dict)
    indicator: Optional[CollusionIndicator] = None

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "severity": self.severity,
            "detail": self.detail,
            "data": dict(self.data),
            "indicator": self.indicator.to_dict() if self.indicator else None
        }


@dataclass(frozen=True)
class SuspiciousBidReport:
    bid_id: str
    bidder_id: str
    issues: Tuple[Issue, ...]
    risk_level: str
    risk_score: int = 0
    recommendation: Tuple[Dict[str, str], ...] = ()

    @property
    def collusion_indicators(self) -> List[CollusionIndicator]:
        return [i.indicator for i in self.issues if i.indicator is not None]

    def to_dict(self) -> dict:
        return {
            "bidId": self.bid_id,
            "bidderId": self.bidder_id,
            "issues": [i.to_dict() for i in self.issues],
            "riskLevel": self.risk_level,
            "riskScore": self.risk_score,
            "collusionIndicators": [c.to_dict() for c in self.collusion_indicators],
            "recommendation": [dict(m) for m in self.recommendation]
        }


@dataclass(frozen=True)
class SuspiciousAnalysis:
    detected: Tuple[SuspiciousBidReport, ...]
    market_segmentation: Tuple[Dict[str, Any], ...] = ()
    signals: Dict[str, bool] = field(default_factory=dict)

    def report_for(self, bid_id: str) -> Optional[SuspiciousBidReport]:
        return next((r for r in self.detected if r.bid_id == bid_id), None)

    def to_dict(self) -> dict:
        return {
            "detected": [r.to_dict() for r in self.detected],
            "marketSegmentation": [dict(s) for s in self.market_segmentation],
            "signals": dict(self.signals)
        }


@dataclass(frozen=True)
class RankingEntry:
    bid_id: str
    bidder_id: str
    price_score: float
    quality_score: float
    time_score: float
    weighted_score: float
    rank: int
    total_price: float = 0.0

    def to_dict(self) -> dict:
        return {
            "bidId": self.bid_id,
            "bidderId": self.bidder_id,
            "priceScore": self.price_score,
            "qualityScore": self.quality_score,
            "timeScore": self.time_score,
            "weightedScore": self.weighted_score,
            "rank": self.rank,
            "totalPrice": self.total_price
        }


@dataclass(frozen=True)
class Alternative:
    rank: int
    bid_id: str
    bidder_id: str
    score: float
    rationale: str

    def to_dict(self) -> dict:
        return {
            "rank": self.rank,
            "bidId": self.bid_id,
            "bidderId": self.bidder_id,
            "score": self.score,
            "rationale": self.rationale
        }


@dataclass(frozen=True)
class Recommendation:
    bid_id: str
    bidder_id: str
    confidence: float
    justification: Tuple[str, ...]
    risks: Tuple[Issue, ...] = ()
    alternatives: Tuple[Alternative, ...] = ()

    def to_dict(self) -> dict:
        return {
            "bidId": self.bid_id,
            "bidderId": self.bidder_id,
            "confidence": self.confidence,
            "justification": list(self.justification),
            "risks": [r.to_dict() for r in self.risks],
            "alternatives": [a.to_dict() for a in self.alternatives]
        }


@dataclass(frozen=True)
class Evaluation:
    """Aggregate root of one evaluation run. Built once, never mutated."""
    id: str
    project_id: str
    project_name: str
    bid_count: int
    formal_examination: FormalExamination
    arithmetic_verification: ArithmeticVerification
    price_matrix: PriceMatrix
    quality_scores: Dict[str, QualityScore]
    time_scores: Dict[str, TimeScore]
    market_analysis: MarketAnalysis
    suspicious_analysis: SuspiciousAnalysis
    rankings: Tuple[RankingEntry, ...]
    recommendation: Recommendation
    game_theory_analysis: Optional[Dict[str, Any]] = None
    generated: str = field(default="", compare=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "projectId": self.project_id,
            "projectName": self.project_name,
            "bidCount": self.bid_count,
            "formalExamination": self.formal_examination.to_dict(),
            "arithmeticVerification": self.arithmetic_verification.to_dict(),
            "priceMatrix": self.price_matrix.to_dict(),
            "qualityScores": {k: v.to_dict() for k, v in self.quality_scores.items()},
            "timeScores": {k: v.to_dict() for k, v in self.time_scores.items()},
            "marketAnalysis": self.market_analysis.to_dict(),
            "suspiciousAnalysis": self.suspicious_analysis.to_dict(),
            "rankings": [r.to_dict() for r in self.rankings],
            "recommendation": self.recommendation.to_dict(),
            "gameTheoryAnalysis": self.game_theory_analysis,
            "generated": self.generated
        }
