"""
Tests for cost tracking and budget monitoring.
"""
import datetime as dt
import pytest
from leadify.utils.cost_tracker import CostTracker, UsageWindow, calculate_cost, model_name


class TestCalculateCost:

    def test_mini_pricing(self):
        # 1M prompt tokens at $0.15, 1M completion tokens at $0.60
        assert calculate_cost("openai:gpt-4o-mini", 1_000_000, 1_000_000) == pytest.approx(0.75)

    def test_provider_prefix_is_stripped(self):
        assert model_name("openai:gpt-4o") == "gpt-4o"
        assert model_name("gpt-4o") == "gpt-4o"

    def test_unknown_model_uses_fallback_rates(self):
        assert calculate_cost("acme:mystery-model", 1_000_000, 0) == calculate_cost("gpt-4o", 1_000_000, 0)

    def test_zero_tokens_cost_nothing(self):
        assert calculate_cost("gpt-4o", 0, 0) == 0


class TestCostTracker:

    def test_track_updates_all_windows(self):
        tracker = CostTracker()

        tracker.track("chat_reply", 150, 0.01)
        tracker.track("intent_classification", 100, 0.005)

        summary = tracker.get_summary()
        assert summary["hourly"]["calls"] == 2
        assert summary["daily"]["tokens"] == 250
        assert summary["lifetime"]["cost_usd"] == pytest.approx(0.02)
        assert summary["per_operation"] == {"chat_reply": 0.01, "intent_classification": 0.005}

    def test_expired_hourly_window_resets(self):
        tracker = CostTracker()
        tracker.track("chat_reply", 150, 0.01)
        tracker.hourly_usage.window_start = dt.datetime.now(dt.UTC) - dt.timedelta(hours=2)

        tracker.track("chat_reply", 50, 0.01)

        assert tracker.hourly_usage.call_count == 1
        assert tracker.daily_usage.call_count == 2

    def test_budget_overrun_does_not_block(self):
        tracker = CostTracker()
        tracker.daily_usage = UsageWindow(total_cost=10_000.0)

        tracker.track("chat_reply", 150, 1.0)

        assert tracker.daily_usage.call_count == 1
