# services/observer.py
"""Run tracing for evaluation pipelines, backed by OpenTelemetry spans.

Every pipeline phase is a run in a tree (evaluation -> phases -> store
lookups). Point events (warnings, timeouts, completion) sit beside the runs.
Nothing recorded here ever feeds back into an Evaluation.
"""

import time
import traceback
import hashlib
from collections import Counter
from datetime import datetime
from typing import List, Dict, Any, Optional
from dataclasses import dataclass, field, asdict
from contextlib import contextmanager
from enum import Enum

from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.resources import Resource
from opentelemetry.trace import Status, StatusCode, SpanKind

# No exporter configured; attach an OTLP span processor to ship traces
trace.set_tracer_provider(TracerProvider(
    resource=Resource.create({"service.name": "bid-evaluation-engine"})
))
tracer = trace.get_tracer("bid-evaluation-engine")


class RunType(Enum):
    CHAIN = "chain"
    PHASE = "phase"
    TOOL = "tool"
    RETRIEVER = "retriever"
    LLM = "llm"


@dataclass
class Run:
    """One traced unit of work (an evaluation, a pipeline phase, a store lookup)."""
    id: str
    name: str
    run_type: str
    trace_id: str
    start_time: str
    end_time: Optional[str] = None
    status: str = "running"
    parent_run_id: Optional[str] = None
    child_run_ids: List[str] = field(default_factory=list)
    inputs: Dict[str, Any] = field(default_factory=dict)
    outputs: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    stack_trace: Optional[str] = None
    latency_ms: Optional[float] = None
    tags: List[str] = field(default_factory=list)

    def fail(self, error: BaseException):
        self.status = "error"
        self.error = str(error)
        self.error_type = type(error).__name__

    def to_dict(self) -> Dict:
        data = asdict(self)
        data.pop("stack_trace")
        return data


class Observer:
    """Collects runs and events for one controller."""

    def __init__(self):
        self.tracer = tracer
        self.clear()

    def clear(self):
        self.runs: Dict[str, Run] = {}
        self.root_run_ids: List[str] = []
        self.events: List[Dict] = []
        self.errors: List[Dict] = []
        self._trace_id: Optional[str] = None
        self._stack: List[str] = []

    @staticmethod
    def _new_id(prefix: str = "", length: int = 16) -> str:
        seed = f"{prefix}{datetime.now().isoformat()}-{time.perf_counter()}"
        return hashlib.sha256(seed.encode()).hexdigest()[:length]

    def start_trace(self, name: str = "evaluation") -> str:
        self._trace_id = self._new_id(f"trace-{name}-", 32)
        return self._trace_id

    # ==================== RUNS ====================

    def _open_run(self, name: str, run_type: RunType, inputs: Optional[Dict], tags: Optional[List[str]]) -> Run:
        if not self._trace_id:
            self.start_trace(name)

        run = Run(
            id=self._new_id(name),
            name=name,
            run_type=run_type.value,
            trace_id=self._trace_id,
            start_time=datetime.now().isoformat(),
            parent_run_id=self._stack[-1] if self._stack else None,
            inputs=inputs or {},
            tags=tags or []
        )
        parent = self.runs.get(run.parent_run_id)
        if parent is not None:
            parent.child_run_ids.append(run.id)
        else:
            self.root_run_ids.append(run.id)
        self.runs[run.id] = run
        return run

    def _record_error(self, run_id: str, node: str, error: BaseException):
        self.errors.append(dict(
            run_id=run_id, node=node, error_type=type(error).__name__,
            message=str(error), timestamp=datetime.now().isoformat()
        ))

    @contextmanager
    def trace_run(
        self,
        name: str,
        run_type: RunType = RunType.CHAIN,
        inputs: Dict[str, Any] = None,
        tags: List[str] = None
    ):
        """Trace a block as a run with its own OpenTelemetry span; errors are re-raised."""
        run = self._open_run(name, run_type, inputs, tags)
        self._stack.append(run.id)
        started = time.perf_counter()

        with self.tracer.start_as_current_span(
            name, kind=SpanKind.INTERNAL, attributes={"run_id": run.id, "run_type": run.run_type}
        ) as span:
            try:
                yield run
                run.status = "success"
                span.set_status(Status(StatusCode.OK))
            except Exception as e:
                run.fail(e)
                run.stack_trace = traceback.format_exc()
                span.set_status(Status(StatusCode.ERROR, str(e)))
                span.record_exception(e)
                self._record_error(run.id, name, e)
                raise
            finally:
                run.end_time = datetime.now().isoformat()
                run.latency_ms = round((time.perf_counter() - started) * 1000, 2)
                self._stack.pop()

    def _leaf_run(self, name: str, run_type: RunType, inputs: Dict, outputs: Optional[Dict],
                  latency_ms: Optional[float], tags: List[str], error: Exception = None) -> Run:
        """A run that has already finished (store call, LLM call)."""
        run = self._open_run(name, run_type, inputs, tags)
        run.end_time = run.start_time
        run.latency_ms = latency_ms
        run.outputs = outputs
        if error is not None:
            run.fail(error)
            self._record_error(run.id, name, error)
        else:
            run.status = "success"
        return run

    # ==================== EVENTS ====================

    def _event(self, event_type: str, node: str, data: Dict, status: str,
               span_id: str, duration_ms: Optional[float] = None):
        self.events.append({
            "timestamp": datetime.now().isoformat(),
            "type": event_type,
            "node": node,
            "status": status,
            "data": data,
            "duration_ms": duration_ms,
            "trace_id": self._trace_id,
            "span_id": span_id
        })

    def log_tool_call(self, name: str, tool_name: str, tool_input: Dict[str, Any], tool_output: Any,
                      latency_ms: float = None, error: Exception = None) -> str:
        """Record a write into an external collaborator."""
        run = self._leaf_run(
            name, RunType.TOOL, tool_input, None if error else {"result": tool_output},
            latency_ms, ["tool", tool_name], error
        )
        self._event("tool", tool_name, {"input": tool_input, "output_preview": str(tool_output)[:200]},
                    run.status, run.id, latency_ms)
        return run.id

    def log_retriever_call(self, name: str, query: str, documents: List[Dict[str, Any]],
                           latency_ms: float = None) -> str:
        """Record a lookup that returns records (bidder history, benchmarks)."""
        run = self._leaf_run(
            name, RunType.RETRIEVER, {"query": query}, {"documents_count": len(documents)},
            latency_ms, ["retriever"]
        )
        self._event("retrieve", name, {"query": query[:100], "documents_found": len(documents)},
                    "success", run.id, latency_ms)
        return run.id

    def log_llm_call(self, name: str, model: str, prompt: str, response: str,
                     latency_ms: float = None) -> str:
        run = self._leaf_run(
            name, RunType.LLM, {"prompt": prompt[:500]}, {"response": response[:2000]},
            latency_ms, ["llm", model]
        )
        self._event("llm", name, {"model": model}, "success", run.id, latency_ms)
        return run.id

    def log(self, event_type: str, node: str, data: Dict[str, Any] = None,
            status: str = "success", error: Exception = None):
        """Record a point event; status="warning" marks degraded but non-fatal steps."""
        span_id = self._new_id(node)
        self._event(event_type, node, data or {}, status, span_id)
        if error is not None:
            self._record_error(span_id, node, error)

    # ==================== QUERIES ====================

    def get_events(self, event_type: str = None, status: str = None) -> List[Dict]:
        return [
            e for e in self.events
            if (event_type is None or e["type"] == event_type)
            and (status is None or e["status"] == status)
        ]

    def get_warnings(self) -> List[Dict]:
        return self.get_events(status="warning")

    def get_runs(self) -> List[Dict]:
        return [run.to_dict() for run in self.runs.values()]

    def subtree(self, run_id: str) -> Dict:
        run = self.runs[run_id]
        return {**run.to_dict(), "children": [self.subtree(c) for c in run.child_run_ids]}

    def get_run_tree(self) -> List[Dict]:
        return [self.subtree(run_id) for run_id in self.root_run_ids]

    def get_trace(self, trace_id: str = None) -> Dict:
        trace_id = trace_id or self._trace_id
        runs = [r for r in self.runs.values() if r.trace_id == trace_id]
        if not runs:
            return {}

        return {
            "trace_id": trace_id,
            "total_runs": len(runs),
            "status": "error" if any(r.status == "error" for r in runs) else "success",
            "runs": [self.subtree(r.id) for r in runs if r.parent_run_id is None]
        }

    def get_summary(self) -> Dict[str, Any]:
        runs = list(self.runs.values())
        latencies = sorted(r.latency_ms for r in runs if r.latency_ms is not None)
        return {
            "total_events": len(self.events),
            "total_runs": len(runs),
            "successful_runs": sum(1 for r in runs if r.status == "success"),
            "failed_runs": sum(1 for r in runs if r.status == "error"),
            "warnings": len(self.get_warnings()),
            "avg_latency_ms": round(sum(latencies) / len(latencies), 2) if latencies else 0,
            "p50_latency_ms": latencies[len(latencies) // 2] if latencies else 0,
            "runs_by_type": dict(Counter(r.run_type for r in runs)),
            "errors_count": len(self.errors)
        }
