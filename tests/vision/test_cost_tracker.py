"""Tests for CostTracker."""

import json

import pytest

from webview_pilot.vision.cost_tracker import DEFAULT_PRICING, CostTracker, Pricing


@pytest.fixture
def tracker():
    return CostTracker()


class TestPricing:
    """Test pricing lookup."""

    def test_builtin_pricing(self, tracker):
        """Test known providers use the built-in table."""
        assert tracker.get_pricing("anthropic") == Pricing(0.003, 0.015, 0.0048)
        assert tracker.get_pricing("doubao") == tracker.get_pricing("volcengine")

    def test_unknown_provider_uses_default(self, tracker):
        """Test unknown providers fall back to the default entry."""
        assert tracker.get_pricing("acme-vision") == DEFAULT_PRICING["default"]

    def test_custom_pricing_overrides(self):
        """Test constructor and setter overrides."""
        tracker = CostTracker(custom_pricing={"anthropic": Pricing(0.0, 0.0, 0.0)})
        assert tracker.get_pricing("anthropic").image_price == 0.0

        tracker.set_pricing("openai", Pricing(1.0, 1.0, 1.0))
        assert tracker.get_pricing("openai").input_token_price == 1.0


class TestTrack:
    """Test recording calls."""

    def test_anthropic_cost(self, tracker):
        """Test 2000 in / 1000 out / 1 image on anthropic."""
        entry = tracker.track("anthropic", "claude-sonnet-4-20250514", 2000, 1000, operation="find")

        assert entry.cost_usd == pytest.approx(0.0258)
        assert entry.images == 1
        assert entry.operation == "find"
        assert tracker.total_cost == pytest.approx(0.0258)

    def test_images_default_to_one(self, tracker):
        """Test an unspecified image count is one image."""
        entry = tracker.track("openai", "gpt-4o", 0, 0)
        assert entry.cost_usd == pytest.approx(0.00765)

    def test_zero_images(self, tracker):
        """Test an explicit zero image count."""
        entry = tracker.track("openai", "gpt-4o", 1000, 0, images=0)
        assert entry.cost_usd == pytest.approx(0.005)

    def test_estimate_does_not_record(self, tracker):
        """Test estimate leaves the log untouched."""
        assert tracker.estimate("volcengine", 1000, 1000) == pytest.approx(0.0038)
        assert tracker.get_summary().total_calls == 0


class TestSummary:
    """Test summaries."""

    def test_summary_matches_entries(self, tracker):
        """Test totals are the sum of entries, grouped by provider and operation."""
        tracker.track("anthropic", "m", 1000, 1000, operation="find")
        tracker.track("anthropic", "m", 1000, 1000, operation="assert")
        tracker.track("openai", "gpt-4o", 1000, 1000, operation="find")

        summary = tracker.get_summary()

        assert summary.total_calls == 3
        assert summary.total_cost == pytest.approx(sum(e.cost_usd for e in summary.entries))
        assert summary.by_provider["anthropic"] == pytest.approx(2 * (0.003 + 0.015 + 0.0048))
        assert set(summary.by_operation) == {"find", "assert"}

    def test_recent_entries(self, tracker):
        """Test the most recent entries are returned in order."""
        for i in range(5):
            tracker.track("anthropic", f"model-{i}", 10, 10)

        recent = tracker.get_recent_entries(2)
        assert [e.model for e in recent] == ["model-3", "model-4"]
        assert tracker.get_recent_entries(0) == []

    def test_reset_keeps_custom_pricing(self):
        """Test reset drops entries only."""
        tracker = CostTracker()
        tracker.set_pricing("anthropic", Pricing(0.0, 0.0, 1.0))
        tracker.track("anthropic", "m", 0, 0)
        tracker.reset()

        assert tracker.total_cost == 0.0
        assert tracker.get_summary().entries == []
        assert tracker.get_pricing("anthropic").image_price == 1.0

    def test_to_json(self, tracker):
        """Test JSON export."""
        tracker.track("anthropic", "m", 100, 50, operation="action")
        data = json.loads(tracker.to_json())

        assert data["total_calls"] == 1
        assert data["entries"][0]["operation"] == "action"

    def test_log_summary(self, tracker):
        """Test log_summary runs on an empty tracker."""
        tracker.log_summary()
