"""Retrieval tracing and aggregate latency metrics."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


@dataclass(slots=True)
class TraceStep:
    name: str
    latency_ms: float
    detail: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class RetrievalTrace:
    trace_id: str
    timestamp_utc: str
    tenant_id: str
    query: str
    steps: list[TraceStep] = field(default_factory=list)
    result_count: int = 0
    top_score: float = 0.0
    latency_ms: float = 0.0
    cache_hit: bool = False
    completed: bool = False


class TraceStore:
    """In-memory trace storage for API-level observability.

    Only the most recent `max_records` traces are kept.
    """

    def __init__(self, max_records: int = 1000) -> None:
        self.max_records = max_records
        self._records: dict[str, RetrievalTrace] = {}

    def start(self, tenant_id: str, query: str) -> RetrievalTrace:
        trace = RetrievalTrace(
            trace_id=str(uuid.uuid4()),
            timestamp_utc=datetime.now(timezone.utc).isoformat(),
            tenant_id=tenant_id,
            query=query,
        )
        self._records[trace.trace_id] = trace
        while len(self._records) > self.max_records:
            del self._records[next(iter(self._records))]
        return trace

    def add_step(
        self, trace: RetrievalTrace, name: str, latency_ms: float, **detail: Any
    ) -> None:
        trace.steps.append(TraceStep(name=name, latency_ms=latency_ms, detail=detail))

    def complete(
        self,
        trace: RetrievalTrace,
        *,
        result_count: int,
        top_score: float,
        latency_ms: float,
        cache_hit: bool = False,
    ) -> None:
        trace.result_count = result_count
        trace.top_score = top_score
        trace.latency_ms = latency_ms
        trace.cache_hit = cache_hit
        trace.completed = True

    def get(self, trace_id: str) -> RetrievalTrace:
        record = self._records.get(trace_id)
        if record is None:
            raise KeyError(f"Trace not found: {trace_id}")
        return record

    def list_recent(self, limit: int = 20) -> list[RetrievalTrace]:
        return list(self._records.values())[-limit:]

    def summary(self) -> dict[str, float | int]:
        """Aggregate core observability metrics for dashboard display."""
        records = [record for record in self._records.values() if record.completed]
        total = len(records)
        if total == 0:
            return {
                "total_requests": 0,
                "avg_latency_ms": 0.0,
                "p95_latency_ms": 0.0,
                "cache_hit_rate": 0.0,
                "avg_result_count": 0.0,
                "empty_result_rate": 0.0,
            }

        latencies = sorted(record.latency_ms for record in records)
        p95_index = max(0, int((len(latencies) * 0.95) - 1))
        cache_hits = sum(1 for record in records if record.cache_hit)
        empty = sum(1 for record in records if record.result_count == 0)

        return {
            "total_requests": total,
            "avg_latency_ms": sum(latencies) / total,
            "p95_latency_ms": latencies[p95_index],
            "cache_hit_rate": cache_hits / total,
            "avg_result_count": sum(record.result_count for record in records) / total,
            "empty_result_rate": empty / total,
        }


class Timer:
    """Simple context timer used around retrieval steps."""

    def __init__(self) -> None:
        self._start = 0.0
        self.elapsed_ms = 0.0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.elapsed_ms = (time.perf_counter() - self._start) * 1000.0
