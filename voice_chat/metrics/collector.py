"""
Per-session performance metrics for the conversation pipeline.

Kept in memory for the lifetime of the process only.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Any
import structlog

logger = structlog.get_logger()


STAGES = ("stt", "ai", "tts", "e2e")


@dataclass
class LatencyMetrics:
    """Latency statistics for one pipeline stage, in milliseconds."""
    min: float
    max: float
    avg: float
    p50: float
    p95: float
    p99: float
    samples: int


@dataclass
class SessionMetrics:
    """Raw measurements for a single chat session."""
    session_id: str
    start_time: datetime
    end_time: Optional[datetime] = None
    total_interactions: int = 0
    cancelled_turns: int = 0
    latencies: Dict[str, List[float]] = field(
        default_factory=lambda: {stage: [] for stage in STAGES}
    )
    errors: List[Dict[str, Any]] = field(default_factory=list)


class MetricsCollector:
    """Collects stage latencies, errors and turn counts for one session."""

    def __init__(self, session_id: Optional[str] = None):
        self.session = SessionMetrics(
            session_id=session_id or f"session_{int(time.time())}",
            start_time=datetime.now(),
        )
        self._started = time.time()

    def record_latency(self, stage: str, latency_ms: float) -> None:
        """Record how long a pipeline stage took."""
        if stage not in self.session.latencies:
            raise ValueError(f"Unknown metrics stage: {stage}")
        self.session.latencies[stage].append(latency_ms)

    def record_interaction(self) -> None:
        self.session.total_interactions += 1

    def record_cancellation(self) -> None:
        self.session.cancelled_turns += 1

    def record_error(self, component: str, error: str, metadata: Optional[Dict] = None) -> None:
        """Record an error occurrence."""
        self.session.errors.append({
            "timestamp": datetime.now().isoformat(),
            "component": component,
            "error": error,
            "metadata": metadata or {},
        })

    def end_session(self) -> None:
        self.session.end_time = datetime.now()
        logger.debug("Metrics session ended",
                     session_id=self.session.session_id,
                     interactions=self.session.total_interactions)

    @staticmethod
    def _calculate_latency_stats(latencies: List[float]) -> LatencyMetrics:
        if not latencies:
            return LatencyMetrics(0, 0, 0, 0, 0, 0, 0)

        sorted_latencies = sorted(latencies)
        count = len(sorted_latencies)

        def percentile(p: float) -> float:
            index = min(int(p * count), count - 1)
            return sorted_latencies[index]

        return LatencyMetrics(
            min=sorted_latencies[0],
            max=sorted_latencies[-1],
            avg=sum(sorted_latencies) / count,
            p50=percentile(0.50),
            p95=percentile(0.95),
            p99=percentile(0.99),
            samples=count,
        )

    def get_summary(self) -> Dict[str, Any]:
        """Summarize the session."""
        summary: Dict[str, Any] = {
            "session_id": self.session.session_id,
            "session_duration_seconds": time.time() - self._started,
            "total_interactions": self.session.total_interactions,
            "cancelled_turns": self.session.cancelled_turns,
            "error_count": len(self.session.errors),
            "errors_by_component": {},
        }
        for error in self.session.errors:
            component = error["component"]
            summary["errors_by_component"][component] = (
                summary["errors_by_component"].get(component, 0) + 1
            )
        for stage in STAGES:
            stats = self._calculate_latency_stats(self.session.latencies[stage])
            summary[f"{stage}_latency_ms"] = stats.__dict__
        return summary
