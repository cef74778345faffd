# controller.py
"""Evaluation entry point: runs the pipeline graph with a timeout, tracing and persistence."""

import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeoutError
from datetime import datetime, timezone
from typing import List, Dict, Optional, Union

from config import EvaluationConfig
from models import (
    Bid, Project, Evaluation, EmptyBidSetError, EvaluationTimeoutError,
    parse_datetime
)
from services.explainer import Explainer
from services.observer import Observer, RunType
from services.memory import MemoryStore
from services.graph import evaluation_app, PipelineContext, snapshot_hash


class Controller:
    """Orchestrate bid evaluations.

    Without a memory store the pipeline runs on the current batch only:
    no bidder history, no benchmarks and nothing is persisted.
    """

    def __init__(
        self,
        config: EvaluationConfig = None,
        memory: MemoryStore = None,
        observer: Observer = None,
        explainer: Explainer = None
    ):
        self.config = config or EvaluationConfig()
        self.memory = memory
        self.observer = observer or Observer()
        self.explainer = explainer or Explainer()
        self._executor = ThreadPoolExecutor(max_workers=self.config.max_workers)
        self._last_evaluation_id: Optional[str] = None

    def evaluate(
        self,
        project: Union[Project, Dict],
        bids: List[Union[Bid, Dict]],
        now: Union[datetime, str, None] = None
    ) -> Evaluation:
        """
        Run the full evaluation pipeline.

        Pipeline:
        1. Formal examination (disqualified bids stop here)
        2. Arithmetic audit
        3. Price matrix and market statistics
        4. Quality and time scoring
        5. Suspicion and collusion detection
        6. Ranking and recommendation (optional game-theory summary)
        7. Persist result

        Args:
            project: Project snapshot (model or JSON dict)
            bids: Bids to evaluate (models or JSON dicts)
            now: Evaluation time; defaults to the current UTC time

        Raises:
            EmptyBidSetError: If no bid is supplied or none survives the formal examination
            EvaluationTimeoutError: If the run exceeds the configured timeout
            MalformedBidError: If a bid record has no id
        """
        if not bids:
            raise EmptyBidSetError("No bids provided for evaluation")

        project = project if isinstance(project, Project) else Project.from_dict(project)
        parsed = [b if isinstance(b, Bid) else Bid.from_dict(b) for b in bids]
        evaluated_at = parse_datetime(now) if now is not None else datetime.now(timezone.utc)

        context = PipelineContext(
            config=self.config,
            observer=self.observer,
            memory=self.memory,
            executor=self._executor
        )

        self.observer.start_trace("bid_evaluation")
        state = {
            "project": project,
            "bids": parsed,
            "now": evaluated_at,
            "input_hash": snapshot_hash(project, parsed, self.config, evaluated_at),
            "context": context
        }

        runner = ThreadPoolExecutor(max_workers=1)
        future = runner.submit(self._run_graph, state)
        try:
            final = future.result(timeout=self.config.evaluation_timeout_seconds)
        except FuturesTimeoutError:
            # Nodes refuse to start once cancelled; the graph thread is done
            # before anything is reported.
            context.cancelled.set()
            runner.shutdown(wait=True)
            error = future.exception()
            if error is not None:
                self.observer.log(
                    "timeout", "evaluate",
                    {"timeout_seconds": self.config.evaluation_timeout_seconds},
                    status="error"
                )
                raise EvaluationTimeoutError(
                    f"Evaluation of project {project.id} exceeded "
                    f"{self.config.evaluation_timeout_seconds}s"
                ) from error
            final = future.result()
        finally:
            runner.shutdown(wait=False)

        if final.get("error"):
            raise EmptyBidSetError(final["error"])

        result = final["result"]
        self._last_evaluation_id = result.id
        self.observer.log("complete", "output", {
            "evaluation_id": result.id,
            "recommended": result.recommendation.bid_id,
            "confidence": result.recommendation.confidence
        })
        return result

    def _run_graph(self, state: Dict) -> Dict:
        with self.observer.trace_run(
            name="bid_evaluation",
            run_type=RunType.CHAIN,
            inputs={"project_id": state["project"].id, "bid_count": len(state["bids"])},
            tags=["evaluation"]
        ) as run:
            final = evaluation_app.invoke(state)
            run.outputs = {
                "error": final.get("error"),
                "evaluation_id": final.get("evaluation_id")
            }
            return final

    def explain(self, evaluation: Evaluation) -> str:
        """Narrative summary via the LLM; not part of the evaluation record."""
        start = time.perf_counter()
        with self.observer.trace_run("explain", RunType.LLM, {"evaluation_id": evaluation.id}, ["llm"]):
            narrative = self.explainer.explain(evaluation)
        self.observer.log_llm_call(
            name="explain_evaluation",
            model=self.explainer.model,
            prompt=evaluation.id,
            response=narrative,
            latency_ms=round((time.perf_counter() - start) * 1000, 2)
        )
        return narrative

    def find_cached(
        self,
        project: Union[Project, Dict],
        bids: List[Union[Bid, Dict]],
        now: Union[datetime, str]
    ) -> Optional[Dict]:
        """Stored JSON result of an earlier run on the identical snapshot and evaluation time."""
        if self.memory is None:
            return None
        project = project if isinstance(project, Project) else Project.from_dict(project)
        parsed = [b if isinstance(b, Bid) else Bid.from_dict(b) for b in bids]
        input_hash = snapshot_hash(project, parsed, self.config, parse_datetime(now))
        cached = self.memory.find_similar_evaluation(input_hash)
        return cached["result"] if cached else None

    def get_events(self) -> List[Dict]:
        return self.observer.get_events()

    def get_summary(self) -> Dict:
        return self.observer.get_summary()

    def get_last_evaluation_id(self) -> Optional[str]:
        return self._last_evaluation_id

    def get_evaluation_history(self, limit: int = 10) -> List[Dict]:
        if self.memory is None:
            return []
        return self.memory.get_recent_evaluations(limit)

    def get_evaluation_by_id(self, eval_id: str) -> Optional[Dict]:
        if self.memory is None:
            return None
        record = self.memory.get_evaluation(eval_id)
        return record.result_data if record else None

    def get_stats(self) -> Dict:
        return {
            "observability": self.observer.get_summary(),
            "evaluations": self.memory.get_evaluation_stats() if self.memory else {}
        }

    def shutdown(self):
        self._executor.shutdown(wait=False)
