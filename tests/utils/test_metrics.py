"""
Tests for Prometheus metrics collection.
"""
import pytest
from leadify.utils.metrics import (
    MetricsRegistry,
    Counter,
    Histogram,
    Timer,
    get_metrics,
)


class TestCounter:
    """Tests for Counter metric type."""

    def test_counter_increment(self):
        counter = Counter("test_counter", "Test counter")
        counter.inc()
        counter.inc(5)

        values = counter.collect()
        assert len(values) == 1
        assert values[0].value == 6

    def test_counter_with_labels(self):
        """Counter tracks separate values per label combination."""
        counter = Counter("test_counter", "Test counter", ["status"])
        counter.inc(1, status="success")
        counter.inc(2, status="error")
        counter.inc(1, status="success")

        assert counter.get(status="success") == 2
        assert counter.get(status="error") == 2
        assert counter.get(status="unknown") == 0

    def test_counter_rejects_negative(self):
        counter = Counter("test_counter", "Test counter")
        with pytest.raises(ValueError):
            counter.inc(-1)


class TestHistogram:

    def test_observations_fill_cumulative_buckets(self):
        histogram = Histogram("test_latency", "Test latency", buckets=(0.1, 1.0))
        histogram.observe(0.05)
        histogram.observe(0.5)
        histogram.observe(5.0)

        values = {(v.suffix, v.labels.get("le")): v.value for v in histogram.collect()}
        assert values[("_bucket", "0.1")] == 1
        assert values[("_bucket", "1.0")] == 2
        assert values[("_bucket", "+Inf")] == 3
        assert values[("_sum", None)] == pytest.approx(5.55)
        assert histogram.count() == 3

    def test_timer_observes_duration(self):
        histogram = Histogram("test_timer", "Test timer", ["operation"])

        with Timer(histogram, operation="chat_reply"):
            pass

        assert histogram.count(operation="chat_reply") == 1
        assert histogram.count(operation="intent_classification") == 0


class TestMetricsRegistry:

    def test_singleton(self):
        assert MetricsRegistry() is get_metrics()

    def test_track_llm_usage(self):
        registry = get_metrics()

        registry.track_llm_usage("chat_reply", 120, 30, 0.002, estimated=True)

        assert registry.tokens_total.get(operation="chat_reply", type="prompt") == 120
        assert registry.tokens_total.get(operation="chat_reply", type="completion") == 30
        assert registry.cost_usd.get(operation="chat_reply") == pytest.approx(0.002)
        assert registry.estimated_usage.get(operation="chat_reply") == 1

    def test_export_format(self):
        registry = get_metrics()
        registry.turns_total.inc(intent="qualification")
        registry.handoffs_total.inc()

        output = registry.export()

        assert "# HELP leadify_turns_total" in output
        assert "# TYPE leadify_turns_total counter" in output
        assert 'leadify_turns_total{intent="qualification"} 1.0' in output
        assert "leadify_handoffs_total 1.0" in output
        assert "# TYPE leadify_turn_duration_seconds histogram" in output

    def test_reset_clears_values(self):
        registry = get_metrics()
        registry.handoffs_total.inc()

        registry.reset()

        assert registry.handoffs_total.get() == 0
