# services/graph.py
"""LangGraph workflow for the bid evaluation pipeline with run tracing."""

import functools
import hashlib
import json
import threading
import time
from concurrent.futures import Executor
from dataclasses import dataclass, asdict, field
from datetime import datetime
from typing import TypedDict, List, Dict, Optional, Any, Tuple

from langgraph.graph import StateGraph, END

from config import EvaluationConfig
from models import (
    Bid, Project, Evaluation, FormalExamination, ArithmeticVerification,
    PriceMatrix, MarketAnalysis, QualityScore, TimeScore, HistoricalRecord,
    SuspiciousAnalysis, RankingEntry, Recommendation, EvaluationTimeoutError
)
from services.validator import BidValidator
from services.auditor import ArithmeticAuditor
from services.price_matrix import PriceMatrixBuilder, MarketAnalyzer
from services.scorer import QualityScorer, TimeScorer
from services.suspicion import SuspicionDetector
from services.ranking import Ranker
from services.game_theory import GameTheoryAnalyzer
from services.observer import Observer, RunType


@dataclass
class PipelineContext:
    """Collaborators for one evaluation run; the store is optional.

    `cancelled` is set by the controller when the run times out; no node
    starts and nothing is persisted after that.
    """
    config: EvaluationConfig
    observer: Observer
    memory: Any = None
    executor: Optional[Executor] = None
    cancelled: threading.Event = field(default_factory=threading.Event)


# ==================== STATE DEFINITION ====================

class EvaluationState(TypedDict, total=False):
    """State that flows through the evaluation graph."""
    # Input
    project: Project
    bids: List[Bid]
    now: datetime
    context: PipelineContext
    input_hash: str

    # Intermediate state
    formal_examination: FormalExamination
    qualified_bids: List[Bid]
    arithmetic_verification: ArithmeticVerification
    price_matrix: PriceMatrix
    benchmarks: Dict[str, float]
    market_analysis: MarketAnalysis
    quality_scores: Dict[str, QualityScore]
    time_scores: Dict[str, TimeScore]
    histories: Dict[str, List[HistoricalRecord]]
    tender_records: Dict[str, List[HistoricalRecord]]
    suspicious_analysis: SuspiciousAnalysis
    rankings: Tuple[RankingEntry, ...]
    recommendation: Recommendation
    game_theory_analysis: Optional[Dict[str, Any]]

    # Output
    result: Optional[Evaluation]
    evaluation_id: Optional[str]
    error: Optional[str]


def snapshot_hash(project: Project, bids: List[Bid], config: EvaluationConfig, now: datetime) -> str:
    """Stable hash of the evaluation inputs.

    The evaluation time is included: signature age, deadlines and reference
    recency all depend on it.
    """
    content = json.dumps(
        {
            "project": asdict(project),
            "bids": [asdict(b) for b in bids],
            "config": asdict(config),
            "now": now.isoformat()
        },
        sort_keys=True,
        default=str
    )
    return hashlib.sha256(content.encode()).hexdigest()


# ==================== NODE FUNCTIONS WITH TRACING ====================

def cancellable(node):
    """Refuse to start a node once the controller has cancelled the run."""
    @functools.wraps(node)
    def wrapper(state: EvaluationState) -> EvaluationState:
        if state["context"].cancelled.is_set():
            raise EvaluationTimeoutError(f"Evaluation cancelled before {node.__name__}")
        return node(state)
    return wrapper


def validate_node(state: EvaluationState) -> EvaluationState:
    """Formal examination: split bids into qualified and disqualified."""
    ctx = state["context"]
    project = state["project"]

    with ctx.observer.trace_run(
        name="formal_examination",
        run_type=RunType.PHASE,
        inputs={"bid_count": len(state["bids"])},
        tags=["validation"]
    ) as run:
        validator = BidValidator(ctx.config, deadline=project.submission_deadline)
        examination = validator.examine(state["bids"], state["now"])
        qualified = list(examination.qualified_bids)

        run.outputs = {
            "qualified": [b.id for b in qualified],
            "disqualified": {d.bid.id: list(d.reasons) for d in examination.disqualified_bids}
        }

        error = None if qualified else "No qualified bids after formal examination"
        return {"formal_examination": examination, "qualified_bids": qualified, "error": error}


def audit_node(state: EvaluationState) -> EvaluationState:
    ctx = state["context"]

    with ctx.observer.trace_run(name="arithmetic_audit", run_type=RunType.PHASE, tags=["audit"]) as run:
        verification = ArithmeticAuditor(ctx.config).verify(state["qualified_bids"])
        run.outputs = {
            "checked": verification.checked,
            "bids_with_errors": [e.bid_id for e in verification.errors]
        }
        return {"arithmetic_verification": verification}


def price_matrix_node(state: EvaluationState) -> EvaluationState:
    ctx = state["context"]

    with ctx.observer.trace_run(name="price_matrix", run_type=RunType.PHASE, tags=["pricing"]) as run:
        matrix = PriceMatrixBuilder().build(state["qualified_bids"], state["project"])
        run.outputs = {"positions": len(matrix.positions), "totals": dict(matrix.totals)}
        return {"price_matrix": matrix}


def market_analysis_node(state: EvaluationState) -> EvaluationState:
    """Market statistics over the totals, plus best-effort benchmark lookup."""
    ctx = state["context"]

    with ctx.observer.trace_run(name="market_analysis", run_type=RunType.PHASE, tags=["pricing"]) as run:
        benchmarks = _load_benchmarks(ctx)
        analysis = MarketAnalyzer().analyze(state["price_matrix"], benchmarks)
        run.outputs = {
            "average_total": analysis.average_total,
            "median_total": analysis.median_total,
            "outliers": analysis.outlier_ids,
            "benchmarks": len(benchmarks)
        }
        return {"market_analysis": analysis, "benchmarks": benchmarks}


def quality_node(state: EvaluationState) -> EvaluationState:
    ctx = state["context"]

    with ctx.observer.trace_run(name="quality_scoring", run_type=RunType.PHASE, tags=["scoring"]) as run:
        scorer = QualityScorer(ctx.config, state["project"], state["now"])
        scores = scorer.score_all(state["qualified_bids"], ctx.executor)
        run.outputs = {bid_id: round(s.total_score, 2) for bid_id, s in scores.items()}
        return {"quality_scores": scores}


def time_node(state: EvaluationState) -> EvaluationState:
    ctx = state["context"]

    with ctx.observer.trace_run(name="time_scoring", run_type=RunType.PHASE, tags=["scoring"]) as run:
        scorer = TimeScorer(ctx.config, state["project"], state["now"])
        scores = scorer.score_all(state["qualified_bids"], ctx.executor)
        run.outputs = {
            bid_id: {"score": round(s.score, 2), "feasibility": s.feasibility}
            for bid_id, s in scores.items()
        }
        return {"time_scores": scores}


def load_history_node(state: EvaluationState) -> EvaluationState:
    """Fetch bidder history and the other bids in the same past tenders.

    Store failures only narrow the rotation signal.
    """
    ctx = state["context"]
    bidder_ids = sorted({b.bidder_id for b in state["qualified_bids"]})

    with ctx.observer.trace_run(
        name="load_history",
        run_type=RunType.RETRIEVER,
        inputs={"bidders": bidder_ids},
        tags=["history"]
    ) as run:
        if ctx.memory is None:
            run.outputs = {"enabled": False, "reason": "no_history_store"}
            return {"histories": {}, "tender_records": {}}

        histories = {}
        tender_records = {}
        for bidder_id in bidder_ids:
            if ctx.cancelled.is_set():
                break

            start = time.perf_counter()
            try:
                records = ctx.memory.get_bidder_history(bidder_id)
                tender_ids = sorted({r.tender_id for r in records if r.tender_id})
                peers = ctx.memory.get_tender_records(tender_ids) if tender_ids else []
            except Exception as e:
                ctx.observer.log(
                    "history", "load_history",
                    {"bidder_id": bidder_id, "message": "History lookup failed; rotation check skipped"},
                    status="warning", error=e
                )
                continue

            histories[bidder_id] = list(records)
            tender_records[bidder_id] = list(peers)
            ctx.observer.log_retriever_call(
                name=f"bidder_history_{bidder_id}",
                query=f"bidder_id={bidder_id}",
                documents=[r.to_dict() for r in records],
                latency_ms=round((time.perf_counter() - start) * 1000, 2)
            )

        run.outputs = {bidder_id: len(records) for bidder_id, records in histories.items()}
        return {"histories": histories, "tender_records": tender_records}


def suspicion_node(state: EvaluationState) -> EvaluationState:
    ctx = state["context"]

    with ctx.observer.trace_run(name="suspicion_detection", run_type=RunType.PHASE, tags=["risk"]) as run:
        analysis = SuspicionDetector(ctx.config).detect(
            state["qualified_bids"],
            state["market_analysis"],
            state.get("arithmetic_verification"),
            state.get("histories"),
            state.get("tender_records")
        )
        run.outputs = {
            "flagged": {r.bid_id: r.risk_level for r in analysis.detected},
            "signals": dict(analysis.signals)
        }
        return {"suspicious_analysis": analysis}


def rank_node(state: EvaluationState) -> EvaluationState:
    ctx = state["context"]

    with ctx.observer.trace_run(name="ranking", run_type=RunType.PHASE, tags=["ranking"]) as run:
        rankings = Ranker(ctx.config).rank(
            state["qualified_bids"],
            state["price_matrix"].totals,
            state["quality_scores"],
            state["time_scores"]
        )
        run.outputs = {r.bid_id: {"rank": r.rank, "score": round(r.weighted_score, 2)} for r in rankings}
        return {"rankings": rankings}


def recommend_node(state: EvaluationState) -> EvaluationState:
    ctx = state["context"]

    with ctx.observer.trace_run(name="recommendation", run_type=RunType.PHASE, tags=["ranking"]) as run:
        recommendation = Ranker(ctx.config).recommend(state["rankings"], state["suspicious_analysis"])
        run.outputs = {"bid_id": recommendation.bid_id, "confidence": recommendation.confidence}
        return {"recommendation": recommendation}


def game_theory_node(state: EvaluationState) -> EvaluationState:
    ctx = state["context"]

    with ctx.observer.trace_run(name="game_theory", run_type=RunType.PHASE, tags=["optional"]) as run:
        analysis = GameTheoryAnalyzer().analyze(state["rankings"])
        run.outputs = dict(analysis)
        return {"game_theory_analysis": analysis}


def build_result_node(state: EvaluationState) -> EvaluationState:
    """Assemble the immutable Evaluation record."""
    ctx = state["context"]
    project = state["project"]

    with ctx.observer.trace_run(name="build_result", run_type=RunType.CHAIN, tags=["output"]) as run:
        result = Evaluation(
            id=f"EVAL-{state['input_hash'][:16]}",
            project_id=project.id,
            project_name=project.name,
            bid_count=len(state["bids"]),
            formal_examination=state["formal_examination"],
            arithmetic_verification=state["arithmetic_verification"],
            price_matrix=state["price_matrix"],
            quality_scores=state["quality_scores"],
            time_scores=state["time_scores"],
            market_analysis=state["market_analysis"],
            suspicious_analysis=state["suspicious_analysis"],
            rankings=tuple(state["rankings"]),
            recommendation=state["recommendation"],
            game_theory_analysis=state.get("game_theory_analysis"),
            generated=state["now"].isoformat()
        )
        run.outputs = {"evaluation_id": result.id, "recommended": result.recommendation.bid_id}
        return {"result": result, "evaluation_id": result.id}


def persist_result_node(state: EvaluationState) -> EvaluationState:
    """Save the evaluation; a failing store is logged and does not fail the run."""
    ctx = state["context"]

    if ctx.memory is None or not state.get("result"):
        return {"evaluation_id": state.get("evaluation_id")}

    with ctx.observer.trace_run(name="persist_result", run_type=RunType.TOOL, tags=["persistence"]) as run:
        start = time.perf_counter()
        try:
            eval_id = ctx.memory.save_evaluation(state["result"].to_dict(), state["input_hash"])
        except Exception as e:
            ctx.observer.log(
                "persistence", "persist_result",
                {"message": "Evaluation could not be stored"},
                status="warning", error=e
            )
            run.outputs = {"stored": False}
            return {"evaluation_id": state["evaluation_id"]}

        ctx.observer.log_tool_call(
            name="save_evaluation",
            tool_name="sqlite_memory_store",
            tool_input={"evaluation_id": eval_id},
            tool_output={"stored": True},
            latency_ms=round((time.perf_counter() - start) * 1000, 2)
        )
        run.outputs = {"stored": True, "evaluation_id": eval_id}
        return {"evaluation_id": eval_id}


# ==================== CONDITIONAL EDGES ====================

def after_validation(state: EvaluationState) -> str:
    return "error" if state.get("error") else "continue"


def after_recommendation(state: EvaluationState) -> str:
    return "game_theory" if state["context"].config.enable_game_theory else "skip"


# ==================== GRAPH CONSTRUCTION ====================

def create_evaluation_graph() -> StateGraph:
    """Create the LangGraph workflow for bid evaluation."""
    workflow = StateGraph(EvaluationState)

    workflow.add_node("examine", cancellable(validate_node))
    workflow.add_node("audit", cancellable(audit_node))
    workflow.add_node("build_matrix", cancellable(price_matrix_node))
    workflow.add_node("analyze_market", cancellable(market_analysis_node))
    workflow.add_node("score_quality", cancellable(quality_node))
    workflow.add_node("score_time", cancellable(time_node))
    workflow.add_node("load_history", cancellable(load_history_node))
    workflow.add_node("detect_suspicion", cancellable(suspicion_node))
    workflow.add_node("rank", cancellable(rank_node))
    workflow.add_node("recommend", cancellable(recommend_node))
    workflow.add_node("game_theory", cancellable(game_theory_node))
    workflow.add_node("build_result", cancellable(build_result_node))
    workflow.add_node("persist_result", cancellable(persist_result_node))

    workflow.set_entry_point("examine")

    workflow.add_conditional_edges(
        "examine",
        after_validation,
        {
            "error": END,
            "continue": "audit"
        }
    )

    workflow.add_edge("audit", "build_matrix")
    workflow.add_edge("build_matrix", "analyze_market")
    workflow.add_edge("analyze_market", "score_quality")
    workflow.add_edge("score_quality", "score_time")
    workflow.add_edge("score_time", "load_history")
    workflow.add_edge("load_history", "detect_suspicion")
    workflow.add_edge("detect_suspicion", "rank")
    workflow.add_edge("rank", "recommend")

    workflow.add_conditional_edges(
        "recommend",
        after_recommendation,
        {
            "game_theory": "game_theory",
            "skip": "build_result"
        }
    )

    workflow.add_edge("game_theory", "build_result")
    workflow.add_edge("build_result", "persist_result")
    workflow.add_edge("persist_result", END)

    return workflow


# ==================== HELPER FUNCTIONS ====================

def _load_benchmarks(ctx: PipelineContext) -> Dict[str, float]:
    if ctx.memory is None:
        return {}

    start = time.perf_counter()
    try:
        benchmarks = ctx.memory.get_market_benchmarks()
    except Exception as e:
        ctx.observer.log(
            "benchmarks", "market_analysis",
            {"message": "Benchmark lookup failed; benchmark check skipped"},
            status="warning", error=e
        )
        return {}

    ctx.observer.log_retriever_call(
        name="market_benchmarks",
        query="active benchmarks",
        documents=[{"category": k, "price": v} for k, v in benchmarks.items()],
        latency_ms=round((time.perf_counter() - start) * 1000, 2)
    )
    return dict(benchmarks)


# ==================== COMPILED GRAPH ====================

_graph = create_evaluation_graph()
evaluation_app = _graph.compile()
