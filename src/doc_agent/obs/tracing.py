"""Run tracing: the audit trail of finished agent runs."""

from __future__ import annotations

import time
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from doc_agent.agent.decision import IterationRecord
from doc_agent.types import TokenBudget


@dataclass(slots=True)
class RunTrace:
    run_id: str
    timestamp_utc: str
    question: str
    status: str
    answer: str | None
    error: str | None
    degraded: bool
    records: list[IterationRecord]
    budget: TokenBudget
    latency_ms: float
    tool_calls: int = field(init=False)

    def __post_init__(self) -> None:
        self.tool_calls = sum(len(record.tool_results) for record in self.records)

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "timestamp_utc": self.timestamp_utc,
            "question": self.question,
            "status": self.status,
            "answer": self.answer,
            "error": self.error,
            "degraded": self.degraded,
            "rounds": len(self.records),
            "tool_calls": self.tool_calls,
            "records": [record.to_dict() for record in self.records],
            "budget": {
                "total_budget": self.budget.total_budget,
                "context_tokens": self.budget.context_tokens,
                "used_tokens": self.budget.used_tokens,
            },
            "latency_ms": self.latency_ms,
        }


class TraceStore:
    """In-memory, bounded store of finished runs for API-level observability."""

    def __init__(self, max_records: int = 500) -> None:
        self._records: OrderedDict[str, RunTrace] = OrderedDict()
        self.max_records = max_records

    def add(
        self,
        *,
        run_id: str,
        question: str,
        status: str,
        answer: str | None,
        error: str | None,
        degraded: bool,
        records: list[IterationRecord],
        budget: TokenBudget,
        latency_ms: float,
    ) -> RunTrace:
        trace = RunTrace(
            run_id=run_id,
            timestamp_utc=datetime.now(timezone.utc).isoformat(),
            question=question,
            status=status,
            answer=answer,
            error=error,
            degraded=degraded,
            records=list(records),
            budget=budget,
            latency_ms=latency_ms,
        )
        self._records[run_id] = trace
        while len(self._records) > self.max_records:
            self._records.popitem(last=False)
        return trace

    def get(self, run_id: str) -> RunTrace:
        trace = self._records.get(run_id)
        if trace is None:
            raise KeyError(f"Trace not found: {run_id}")
        return trace

    def list_recent(self, limit: int = 20) -> list[RunTrace]:
        return list(self._records.values())[-limit:]

    def summary(self) -> dict[str, float | int]:
        """Aggregate core metrics for dashboard display."""
        traces = list(self._records.values())
        total = len(traces)
        if total == 0:
            return {
                "total_runs": 0,
                "failed_runs": 0,
                "degraded_runs": 0,
                "avg_rounds": 0.0,
                "avg_latency_ms": 0.0,
                "p95_latency_ms": 0.0,
                "total_tool_calls": 0,
                "total_used_tokens": 0,
            }

        latencies = sorted(trace.latency_ms for trace in traces)
        p95_index = max(0, int((len(latencies) * 0.95) - 1))
        return {
            "total_runs": total,
            "failed_runs": sum(1 for trace in traces if trace.status == "failed"),
            "degraded_runs": sum(1 for trace in traces if trace.degraded),
            "avg_rounds": sum(len(trace.records) for trace in traces) / total,
            "avg_latency_ms": sum(latencies) / total,
            "p95_latency_ms": latencies[p95_index],
            "total_tool_calls": sum(trace.tool_calls for trace in traces),
            "total_used_tokens": sum(trace.budget.used_tokens for trace in traces),
        }


class Timer:
    """Simple context timer used by the engine."""

    def __init__(self) -> None:
        self._start = 0.0
        self.elapsed_ms = 0.0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.elapsed_ms = (time.perf_counter() - self._start) * 1000.0
