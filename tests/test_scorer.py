"""
Tests for quality and time scoring.
"""
import pytest
from concurrent.futures import ThreadPoolExecutor

from models import Bid, Project, Reference
from services.scorer import QualityScorer, TimeScorer
from tests.conftest import bid_dict, PROJECT_DATA


def project_with(**changes):
    data = dict(PROJECT_DATA)
    data.update(changes)
    return Project.from_dict(data)


# ============================================================================
# QUALITY SCORE TESTS
# ============================================================================

def test_reference_bid_quality_breakdown(config, project, now, make_bid):
    """Criteria contributions add up to the total."""
    score = QualityScorer(config, project, now).score(make_bid("BID-A", [25, 180, 45, 60]))

    assert score.criteria["references"] == pytest.approx(88)
    assert score.criteria["references_points"] == pytest.approx(26.4)
    assert score.criteria["personnel"] == 100
    assert score.criteria["personnel_points"] == pytest.approx(20)
    assert score.criteria["technical"] == pytest.approx(6.25)
    assert score.criteria["quality_points"] == pytest.approx(4.5)
    assert score.criteria["sustainability"] == 0
    assert score.total_score == pytest.approx(52.4625)
    assert score.max_score == 100


def test_every_criterion_has_raw_score_and_points(config, project, now, make_bid):
    score = QualityScorer(config, project, now).score(make_bid("BID-A", [25, 180, 45, 60]))

    for name in ("references", "technical", "personnel", "quality", "sustainability"):
        assert 0 <= score.criteria[name] <= 100
        assert f"{name}_points" in score.criteria
    points = sum(v for k, v in score.criteria.items() if k.endswith("_points"))
    assert points == pytest.approx(score.total_score)


def test_quality_score_capped_at_hundred(config, project, now):
    data = bid_dict(
        "BID-A", [25, 180, 45, 60],
        references=[{"projectValue": 9_000_000, "projectType": "residential",
                     "completionDate": "2025-03-01", "clientRating": 5}] * 3,
        certifications=["ISO 9001", "ISO 14001", "ISO 45001", "VCA", "DGNB", "LEED", "BREEAM"],
        personnel=[{"role": "project_manager", "qualifications": ["Diplom-Ingenieur", "Meister", "Polier"],
                    "yearsExperience": 25}] * 4,
        equipment={"owned": 10, "total": 10, "modernEquipmentRatio": 0.9,
                   "specializedTools": ["a", "b", "c", "d", "e", "f"]},
        methodology={"bim": True, "lean": True, "agile": True, "prefabrication": True,
                     "digitalTools": ["a", "b", "c", "d"]},
        innovations=["x"] * 6,
        valueEngineering={"potentialSavings": 0.2},
        sustainableInnovations=True,
        qualityProcesses=["internal_audits", "material_testing", "defect_tracking"],
        sustainabilityMeasures=["renewable_materials", "waste_reduction", "energy_efficiency", "local_sourcing"],
        carbonReduction=40
    )

    score = QualityScorer(config, project, now).score(Bid.from_dict(data))

    assert 0 <= score.total_score <= 100
    assert score.total_score == pytest.approx(100)


def test_bid_without_quality_evidence_scores_zero(config, project, now):
    data = bid_dict("BID-A", [25, 180, 45, 60], references=[], personnel=[], certifications=[])

    score = QualityScorer(config, project, now).score(Bid.from_dict(data))

    assert score.total_score == 0


def test_similar_project_type_reference(config, project, now):
    """An apartment reference counts as similar to a residential project."""
    scorer = QualityScorer(config, project, now)
    ref = Reference(project_value=2_000_000, project_type="apartment",
                    completion_date="2024-09-01", client_rating=4.5)

    ref_score, weight = scorer._score_reference(ref)
    assert ref_score == pytest.approx(78)
    assert weight == 1.5


def test_reference_scores_weighted_by_type_match(config, project, now):
    scorer = QualityScorer(config, project, now)
    exact = Reference(project_type="residential")
    unrelated = Reference(project_type="bridge")

    # (30 * 2 + 10 * 1) / 3
    assert scorer.score_references((exact, unrelated)) == pytest.approx(70 / 3)


def test_is_similar_project_type():
    assert QualityScorer.is_similar_project_type("office", "retail")
    assert not QualityScorer.is_similar_project_type("office", "bridge")
    assert not QualityScorer.is_similar_project_type(None, "office")


def test_score_all_with_executor(config, project, now, three_bids):
    """Parallel scoring returns the same scores as sequential scoring."""
    scorer = QualityScorer(config, project, now)
    with ThreadPoolExecutor(max_workers=2) as executor:
        parallel = scorer.score_all(three_bids, executor)

    assert parallel == scorer.score_all(three_bids)
    assert list(parallel) == ["BID-A", "BID-B", "BID-C"]


# ============================================================================
# TIME SCORE TESTS
# ============================================================================

def test_duration_on_target(config, project, now, make_bid):
    score = TimeScorer(config, project, now).score(make_bid("BID-A", [25, 180, 45, 60]))

    assert score.score == 100
    assert score.deviation == 0
    assert score.feasibility == "padded"
    assert score.feasibility_score == 70


def test_duration_below_target_capped(config, project, now):
    bid = Bid.from_dict(bid_dict("BID-A", [25, 180, 45, 60], duration=150))
    assert TimeScorer(config, project, now).score(bid).score == 100


def test_duration_over_target_loses_one_point_per_day(config, project, now):
    bid = Bid.from_dict(bid_dict("BID-A", [25, 180, 45, 60], duration=200))
    score = TimeScorer(config, project, now).score(bid)

    assert score.score == 80
    assert score.deviation == 20
    assert score.feasibility == "unknown"


def test_duration_far_over_target_floors_at_zero(config, project, now):
    bid = Bid.from_dict(bid_dict("BID-A", [25, 180, 45, 60], duration=400))
    assert TimeScorer(config, project, now).score(bid).score == 0


def test_infeasible_schedule_halves_score(config, now):
    """Timeline longer than the time to the project deadline."""
    project = project_with(deadline="2025-09-01T00:00:00Z")
    bid = Bid.from_dict(bid_dict("BID-A", [25, 180, 45, 60]))

    score = TimeScorer(config, project, now).score(bid)

    assert score.feasibility == "infeasible"
    assert score.score == 50


def test_missing_duration_and_timeline_scores_zero(config, project, now):
    data = bid_dict("BID-A", [25, 180, 45, 60])
    del data["duration"]
    del data["timeline"]

    score = TimeScorer(config, project, now).score(Bid.from_dict(data))

    assert score.score == 0
    assert score.proposed_duration is None


def test_duration_derived_from_timeline(config, project, now):
    data = bid_dict("BID-A", [25, 180, 45, 60])
    del data["duration"]

    score = TimeScorer(config, project, now).score(Bid.from_dict(data))

    assert score.proposed_duration == 180


@pytest.mark.parametrize("end_date,label", [
    ("2026-02-26T00:00:00Z", "tight"),
    ("2026-01-15T00:00:00Z", "optimal"),
    ("2026-03-25T00:00:00Z", "very_tight"),
])
def test_feasibility_labels(config, project, now, end_date, label):
    data = bid_dict("BID-A", [25, 180, 45, 60],
                    timeline={"startDate": "2025-07-01T00:00:00Z", "endDate": end_date})

    assert TimeScorer(config, project, now).assess_feasibility(Bid.from_dict(data))[0] == label


def test_milestone_alignment(config, now):
    project = project_with(milestones=[
        {"name": "Rohbau", "date": "2025-10-01"},
        {"name": "Abnahme", "date": "2025-12-20"}
    ])
    scorer = TimeScorer(config, project, now)
    data = bid_dict("BID-A", [25, 180, 45, 60], timeline={
        "startDate": "2025-07-01T00:00:00Z",
        "endDate": "2025-12-28T00:00:00Z",
        "milestones": [{"name": "Rohbau", "date": "2025-10-20"}]
    })
    bid = Bid.from_dict(data)

    # 12 days beyond tolerance, one milestone missing
    assert scorer.milestone_alignment(bid.timeline.milestones, project.milestones) == 68
    label, feasibility = scorer.assess_feasibility(bid)
    assert label == "padded"
    assert feasibility == pytest.approx(70 * 0.7 + 68 * 0.3)
