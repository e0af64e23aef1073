"""
Prometheus Metrics Collector

In-process metrics for turns, model calls, token usage and lead outcomes.
Generates Prometheus text exposition format (text/plain; version=0.0.4).
"""
import time
import threading
from typing import Dict, List, Optional
from dataclasses import dataclass, field


@dataclass
class MetricValue:
    """Single metric value with optional labels."""
    value: float
    labels: Dict[str, str] = field(default_factory=dict)
    suffix: str = ""


class _LabeledMetric:
    kind = "untyped"

    def __init__(self, name: str, description: str, labels: Optional[List[str]] = None):
        self.name = name
        self.description = description
        self.label_names = labels or []
        self._values: Dict[tuple, float] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _label_key(labels: Dict[str, str]) -> tuple:
        return tuple(sorted((k, str(v)) for k, v in labels.items()))

    def _add(self, amount: float, labels: Dict[str, str]) -> None:
        key = self._label_key(labels)
        with self._lock:
            self._values[key] = self._values.get(key, 0.0) + amount

    def get(self, **labels: str) -> float:
        with self._lock:
            return self._values.get(self._label_key(labels), 0.0)

    def collect(self) -> List[MetricValue]:
        with self._lock:
            return [MetricValue(value=v, labels=dict(k)) for k, v in self._values.items()]


class Counter(_LabeledMetric):
    """Cumulative metric that only goes up."""
    kind = "counter"

    def inc(self, amount: float = 1.0, **labels: str) -> None:
        if amount < 0:
            raise ValueError("Counters can only increase")
        self._add(amount, labels)


class Histogram(_LabeledMetric):
    """Samples observations into cumulative buckets."""
    kind = "histogram"

    DEFAULT_BUCKETS = (0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0)

    def __init__(
        self,
        name: str,
        description: str,
        labels: Optional[List[str]] = None,
        buckets: Optional[tuple] = None
    ):
        super().__init__(name, description, labels)
        self.buckets = tuple(sorted(buckets or self.DEFAULT_BUCKETS))
        self._series: Dict[tuple, Dict] = {}

    def observe(self, value: float, **labels: str) -> None:
        key = self._label_key(labels)
        with self._lock:
            data = self._series.setdefault(
                key, {"buckets": {b: 0 for b in self.buckets}, "sum": 0.0, "count": 0}
            )
            data["sum"] += value
            data["count"] += 1
            for bucket in self.buckets:
                if value <= bucket:
                    data["buckets"][bucket] += 1

    def count(self, **labels: str) -> int:
        with self._lock:
            data = self._series.get(self._label_key(labels))
            return data["count"] if data else 0

    def collect(self) -> List[MetricValue]:
        result = []
        with self._lock:
            for key, data in self._series.items():
                base = dict(key)
                for bucket in self.buckets:
                    result.append(MetricValue(data["buckets"][bucket], {**base, "le": str(bucket)}, "_bucket"))
                result.append(MetricValue(data["count"], {**base, "le": "+Inf"}, "_bucket"))
                result.append(MetricValue(data["sum"], base, "_sum"))
                result.append(MetricValue(data["count"], base, "_count"))
        return result


class Timer:
    """Context manager for timing code blocks."""

    def __init__(self, histogram: Histogram, **labels: str):
        self.histogram = histogram
        self.labels = labels
        self.start_time: Optional[float] = None

    def __enter__(self) -> "Timer":
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, *args) -> None:
        if self.start_time is not None:
            self.histogram.observe(time.perf_counter() - self.start_time, **self.labels)


class MetricsRegistry:
    """
    Central registry for all application metrics.

    Provides singleton access and Prometheus text format export.
    """

    _instance: Optional["MetricsRegistry"] = None
    _lock = threading.Lock()

    def __new__(cls) -> "MetricsRegistry":
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if self._initialized:
            return

        self._metrics: Dict[str, _LabeledMetric] = {}
        self._initialized = True
        self._setup_metrics()

    def _setup_metrics(self) -> None:
        # ============================================
        # CONVERSATION METRICS
        # ============================================
        self.turns_total = self.counter(
            "leadify_turns_total",
            "Conversation turns processed by classified intent",
            ["intent"]
        )

        self.turn_failures = self.counter(
            "leadify_turn_failures_total",
            "Turns aborted before commit, by reason",
            ["reason"]
        )

        self.turn_duration = self.histogram(
            "leadify_turn_duration_seconds",
            "End-to-end turn processing duration",
            buckets=(0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0)
        )

        self.stage_transitions = self.counter(
            "leadify_stage_transitions_total",
            "Conversation stage transitions by destination stage",
            ["stage"]
        )

        self.leads_finalized = self.counter(
            "leadify_leads_finalized_total",
            "Finalized leads by tier",
            ["tier"]
        )

        self.handoffs_total = self.counter(
            "leadify_handoffs_total",
            "Conversations handed to a human"
        )

        self.estimations = self.counter(
            "leadify_estimations_total",
            "Price estimate requests by outcome (deferred, answered)",
            ["outcome"]
        )

        # ============================================
        # MODEL GATEWAY METRICS
        # ============================================
        self.gateway_calls = self.counter(
            "leadify_gateway_calls_total",
            "Model gateway invocations by operation type",
            ["operation"]
        )

        self.gateway_errors = self.counter(
            "leadify_gateway_errors_total",
            "Model gateway failures by operation type and error kind",
            ["operation", "kind"]
        )

        self.gateway_duration = self.histogram(
            "leadify_gateway_duration_seconds",
            "Model gateway call latency by operation type",
            ["operation"],
            buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0)
        )

        # ============================================
        # TOKEN & COST METRICS
        # ============================================
        self.tokens_total = self.counter(
            "leadify_tokens_total",
            "Tokens by operation type and direction",
            ["operation", "type"]
        )

        self.estimated_usage = self.counter(
            "leadify_estimated_usage_total",
            "Calls whose token usage had to be estimated",
            ["operation"]
        )

        self.cost_usd = self.counter(
            "leadify_cost_usd_total",
            "Total cost in USD by operation type",
            ["operation"]
        )

        self.ledger_write_failures = self.counter(
            "leadify_ledger_write_failures_total",
            "Token ledger writes that failed and need reconciliation",
            ["operation"]
        )

    def counter(self, name: str, description: str, labels: Optional[List[str]] = None) -> Counter:
        metric = Counter(name, description, labels)
        self._metrics[name] = metric
        return metric

    def histogram(
        self,
        name: str,
        description: str,
        labels: Optional[List[str]] = None,
        buckets: Optional[tuple] = None
    ) -> Histogram:
        metric = Histogram(name, description, labels, buckets)
        self._metrics[name] = metric
        return metric

    def track_llm_usage(
        self,
        operation: str,
        prompt_tokens: int,
        completion_tokens: int,
        cost_usd: float,
        estimated: bool = False
    ) -> None:
        """Record token and cost metrics for one gateway call."""
        self.tokens_total.inc(prompt_tokens, operation=operation, type="prompt")
        self.tokens_total.inc(completion_tokens, operation=operation, type="completion")
        self.cost_usd.inc(cost_usd, operation=operation)
        if estimated:
            self.estimated_usage.inc(operation=operation)

    def export(self) -> str:
        """
        Export all metrics in Prometheus text exposition format.

        Format specification:
        https://prometheus.io/docs/instrumenting/exposition_formats/
        """
        lines = []

        for name, metric in self._metrics.items():
            lines.append(f"# HELP {name} {metric.description}")
            lines.append(f"# TYPE {name} {metric.kind}")

            for mv in metric.collect():
                lines.append(f"{name}{mv.suffix}{self._format_labels(mv.labels)} {mv.value}")

            lines.append("")

        return "\n".join(lines)

    @staticmethod
    def _format_labels(labels: Dict[str, str]) -> str:
        if not labels:
            return ""
        parts = [f'{k}="{v}"' for k, v in sorted(labels.items())]
        return "{" + ",".join(parts) + "}"

    def reset(self) -> None:
        """Reset all metrics. Useful for testing."""
        self._metrics.clear()
        self._setup_metrics()


def get_metrics() -> MetricsRegistry:
    return MetricsRegistry()
