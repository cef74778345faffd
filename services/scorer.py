# services/scorer.py
"""Scoring services for the non-price criteria (quality and time)."""

from concurrent.futures import Executor
from datetime import datetime
from typing import List, Dict, Optional, Tuple

from config import EvaluationConfig
from models import (
    Bid, Project, Reference, Person, Equipment, Methodology, Milestone,
    QualityScore, TimeScore, parse_datetime, days_between
)

# Share of the 100 quality points each criterion contributes
QUALITY_WEIGHTS = {
    "references": 0.30,
    "technical": 0.25,
    "personnel": 0.20,
    "quality": 0.15,
    "sustainability": 0.10
}

TECHNICAL_WEIGHTS = {
    "certifications": 0.25,
    "equipment": 0.20,
    "methodology": 0.30,
    "innovation": 0.25
}

PROJECT_TYPE_GROUPS = {
    "residential": ["apartment", "house", "housing", "residential"],
    "commercial": ["office", "retail", "commercial", "shop"],
    "industrial": ["factory", "warehouse", "industrial", "plant"],
    "infrastructure": ["road", "bridge", "tunnel", "infrastructure"]
}

CERTIFICATION_POINTS = {
    "ISO 9001": 25,
    "ISO 14001": 20,
    "ISO 45001": 20,
    "VCA": 15,
    "SCC": 15,
    "DGNB": 20
}

KEY_ROLES = ("project_manager", "site_manager", "quality_manager")

CREDENTIAL_BONUS = {
    "Diplom-Ingenieur": 20,
    "Meister": 15,
    "Polier": 10
}

QM_CERTIFICATIONS = {"ISO 9001": 30, "ISO 14001": 20, "ISO 45001": 20}
QM_PROCESSES = ("internal_audits", "material_testing", "defect_tracking")

ENVIRONMENTAL_CERTIFICATIONS = ("LEED", "BREEAM", "DGNB")
SUSTAINABILITY_MEASURES = ("renewable_materials", "waste_reduction", "energy_efficiency", "local_sourcing")


def _score_all(score_fn, bids: List[Bid], executor: Optional[Executor]) -> list:
    """Bids are independent, so the per-bid scoring can fan out."""
    if executor is None:
        return [score_fn(bid) for bid in bids]
    return list(executor.map(score_fn, bids))


class QualityScorer:
    """Score bids on references, capability, personnel, QM and sustainability."""

    def __init__(self, config: EvaluationConfig, project: Project, now: datetime):
        self.config = config
        self.project_type = project.project_type or config.project_type
        self.now = now

    def score_all(self, bids: List[Bid], executor: Executor = None) -> Dict[str, QualityScore]:
        return {s.bid_id: s for s in _score_all(self.score, bids, executor)}

    def score(self, bid: Bid) -> QualityScore:
        """Score a single bid; the result always lies in 0-100."""
        raw = {
            "references": self.score_references(bid.references or ()),
            "technical": self.score_technical_capability(bid),
            "personnel": self.score_personnel(bid.personnel),
            "quality": self.score_quality_management(bid),
            "sustainability": self.score_sustainability(bid)
        }
        contributions = {k: raw[k] * QUALITY_WEIGHTS[k] for k in raw}

        criteria = dict(raw)
        criteria.update({f"{k}_points": v for k, v in contributions.items()})

        return QualityScore(
            bid_id=bid.id,
            criteria=criteria,
            total_score=min(100.0, sum(contributions.values()))
        )

    # ==================== REFERENCES ====================

    def score_references(self, references: Tuple[Reference, ...]) -> float:
        """Weighted average reference score on a 0-100 scale."""
        if not references:
            return 0.0

        score = 0.0
        weight_sum = 0.0
        for ref in references:
            ref_score, ref_weight = self._score_reference(ref)
            score += ref_score * ref_weight
            weight_sum += ref_weight

        return min(100.0, score / weight_sum)

    def _score_reference(self, ref: Reference) -> Tuple[float, float]:
        ref_score = 0.0
        ref_weight = 1.0

        if ref.project_value:
            if ref.project_value > 5_000_000:
                ref_score += 30
            elif ref.project_value > 1_000_000:
                ref_score += 20
            elif ref.project_value > 500_000:
                ref_score += 10
            else:
                ref_score += 5

        if ref.project_type:
            if self.project_type and ref.project_type == self.project_type:
                ref_score += 30
                ref_weight = 2.0
            elif self.is_similar_project_type(ref.project_type, self.project_type):
                ref_score += 20
                ref_weight = 1.5
            else:
                ref_score += 10

        completed = self._safe_date(ref.completion_date)
        if completed is not None:
            years_ago = days_between(completed, self.now) / 365
            if years_ago < 1:
                ref_score += 20
            elif years_ago < 3:
                ref_score += 15
            elif years_ago < 5:
                ref_score += 10
            else:
                ref_score += 5

        if ref.client_rating:
            ref_score += (ref.client_rating / 5) * 20

        return ref_score, ref_weight

    @staticmethod
    def is_similar_project_type(type1: Optional[str], type2: Optional[str]) -> bool:
        if not type1 or not type2:
            return False
        return any(type1 in types and type2 in types for types in PROJECT_TYPE_GROUPS.values())

    # ==================== TECHNICAL CAPABILITY ====================

    def score_technical_capability(self, bid: Bid) -> float:
        score = 0.0
        if bid.certifications:
            score += self.score_certifications(bid.certifications) * TECHNICAL_WEIGHTS["certifications"]
        if bid.equipment:
            score += self.score_equipment(bid.equipment) * TECHNICAL_WEIGHTS["equipment"]
        if bid.methodology:
            score += self.score_methodology(bid.methodology) * TECHNICAL_WEIGHTS["methodology"]
        if bid.innovations or bid.value_engineering_savings is not None:
            score += self.score_innovation(bid) * TECHNICAL_WEIGHTS["innovation"]
        return score

    @staticmethod
    def score_certifications(certifications) -> float:
        score = sum(CERTIFICATION_POINTS.get(cert, 5) for cert in certifications)
        return min(100.0, score)

    @staticmethod
    def score_equipment(equipment: Equipment) -> float:
        score = 0.0

        if equipment.owned > equipment.total * 0.7:
            score += 40
        elif equipment.owned > equipment.total * 0.4:
            score += 25
        else:
            score += 15

        if equipment.modern_equipment_ratio > 0.8:
            score += 30
        elif equipment.modern_equipment_ratio > 0.5:
            score += 20
        else:
            score += 10

        tools = len(equipment.specialized_tools)
        if tools > 5:
            score += 30
        elif tools > 2:
            score += 20
        else:
            score += 10

        return min(100.0, score)

    @staticmethod
    def score_methodology(methodology: Methodology) -> float:
        score = 0.0
        if methodology.bim:
            score += 30
        if methodology.lean:
            score += 20
        if methodology.agile:
            score += 15
        if methodology.prefabrication:
            score += 20
        if len(methodology.digital_tools) > 3:
            score += 15
        return min(100.0, score)

    @staticmethod
    def score_innovation(bid: Bid) -> float:
        score = 0.0
        if bid.innovations:
            score += min(50, len(bid.innovations) * 10)

        savings = bid.value_engineering_savings or 0
        if savings > 0.1:
            score += 30
        elif savings > 0.05:
            score += 20
        elif savings > 0:
            score += 10

        if bid.sustainable_innovations:
            score += 20
        return min(100.0, score)

    # ==================== PERSONNEL ====================

    def score_personnel(self, personnel: Tuple[Person, ...]) -> float:
        if not personnel:
            return 0.0

        total = 0.0
        for person in personnel:
            weight = 2 if person.role in KEY_ROLES else 1
            total += self._score_person(person) * weight

        return min(100.0, total / len(personnel))

    @staticmethod
    def _score_person(person: Person) -> float:
        score = len(person.qualifications) * 10
        score += sum(bonus for cred, bonus in CREDENTIAL_BONUS.items() if cred in person.qualifications)

        years = person.years_experience
        if years:
            if years > 20:
                score += 30
            elif years > 10:
                score += 20
            elif years > 5:
                score += 10
            else:
                score += 5
        return score

    # ==================== QUALITY MANAGEMENT / SUSTAINABILITY ====================

    @staticmethod
    def score_quality_management(bid: Bid) -> float:
        score = sum(points for cert, points in QM_CERTIFICATIONS.items() if cert in bid.certifications)
        score += 10 * sum(1 for process in QM_PROCESSES if process in bid.quality_processes)
        return min(100.0, score)

    @staticmethod
    def score_sustainability(bid: Bid) -> float:
        score = 25 * sum(1 for cert in ENVIRONMENTAL_CERTIFICATIONS if cert in bid.certifications)
        score += 10 * sum(1 for measure in SUSTAINABILITY_MEASURES if measure in bid.sustainability_measures)
        if bid.carbon_reduction:
            score += min(20, bid.carbon_reduction)
        return min(100.0, score)

    @staticmethod
    def _safe_date(value) -> Optional[datetime]:
        try:
            return parse_datetime(value)
        except ValueError:
            return None


class TimeScorer:
    """Score proposed durations against the project target and schedule feasibility."""

    def __init__(self, config: EvaluationConfig, project: Project, now: datetime):
        self.config = config
        self.project = project
        self.now = now
        self.target_duration = project.target_duration or config.target_duration

    def score_all(self, bids: List[Bid], executor: Executor = None) -> Dict[str, TimeScore]:
        return {s.bid_id: s for s in _score_all(self.score, bids, executor)}

    def score(self, bid: Bid) -> TimeScore:
        duration = bid.duration
        if duration is None:
            duration = self.timeline_duration(bid)
        if duration is None:
            return TimeScore(bid_id=bid.id, proposed_duration=None, deviation=None, score=0.0)

        target = self.target_duration
        feasibility = "unknown"
        feasibility_score = None

        if duration <= target:
            score = min(100.0, 100 + (target - duration) * 0.5)
            feasibility, feasibility_score = self.assess_feasibility(bid)
            if feasibility == "infeasible":
                score *= 0.5
        else:
            score = max(0.0, 100 - (duration - target))

        return TimeScore(
            bid_id=bid.id,
            proposed_duration=duration,
            deviation=duration - target,
            score=score,
            feasibility=feasibility,
            feasibility_score=feasibility_score
        )

    def assess_feasibility(self, bid: Bid) -> Tuple[str, float]:
        """Classify the schedule buffer; returns (label, 0-100 score)."""
        deadline = self._safe_date(self.project.deadline)
        if bid.timeline is None or deadline is None:
            return "unknown", 50.0

        proposed = self.timeline_duration(bid)
        if proposed is None:
            proposed = bid.duration or 0
        start = self._safe_date(self.project.start_date) or self.now
        available = days_between(start, deadline)

        if available <= 0:
            buffer_ratio = -1.0 if proposed > 0 else 0.0
        else:
            buffer_ratio = (available - proposed) / available

        if buffer_ratio < 0:
            label, score = "infeasible", 0.0
        elif buffer_ratio > 0.3:
            label, score = "padded", 70.0
        elif buffer_ratio > 0.15:
            label, score = "optimal", 100.0
        elif buffer_ratio > 0.05:
            label, score = "tight", 80.0
        else:
            label, score = "very_tight", 60.0

        if bid.timeline.milestones is not None and self.project.milestones is not None:
            alignment = self.milestone_alignment(bid.timeline.milestones, self.project.milestones)
            score = score * 0.7 + alignment * 0.3

        return label, score

    def milestone_alignment(
        self,
        bid_milestones: Tuple[Milestone, ...],
        project_milestones: Tuple[Milestone, ...]
    ) -> float:
        score = 100.0
        tolerance = self.config.milestone_tolerance_days
        by_name = {m.name: m for m in bid_milestones}

        for milestone in project_milestones:
            proposed = by_name.get(milestone.name)
            if proposed is None:
                score -= 20
                continue
            project_date = self._safe_date(milestone.date)
            bid_date = self._safe_date(proposed.date)
            if project_date is None or bid_date is None:
                continue
            days_diff = abs(days_between(project_date, bid_date))
            if days_diff > tolerance:
                score -= min(15, days_diff - tolerance)

        return max(0.0, score)

    def timeline_duration(self, bid: Bid) -> Optional[float]:
        if bid.timeline is None:
            return None
        start = self._safe_date(bid.timeline.start_date)
        end = self._safe_date(bid.timeline.end_date)
        if start is None or end is None:
            return None
        return days_between(start, end)

    _safe_date = staticmethod(QualityScorer._safe_date)
