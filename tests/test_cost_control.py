"""Tests for cost control functionality."""

import sqlite3
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from aigateway.cost_control import CostGovernor
from aigateway.errors import CostLimitExceeded, TransportError
from aigateway.models import AlertType, CostLimits, ModelConfig, UsageRecord
from aigateway.schemas import CompletionResult, Usage
from aigateway.storage import InMemoryStorage


# 12:00 on Saturday 15 June 2024 in Jakarta
NOW = datetime(2024, 6, 15, 5, 0, tzinfo=timezone.utc)
LIMITS = CostLimits(daily_usd=1.0, monthly_usd=20.0, alert_threshold=0.8)


def make_governor(storage=None, fail_open=True, now=NOW):
    return CostGovernor(
        storage or InMemoryStorage(),
        timezone_name="Asia/Jakarta",
        fail_open_on_ledger_error=fail_open,
        clock=lambda: now,
    )


def spend(governor, cost, when=NOW, device_id="dev-1", provider="openai", model="gpt-4o-mini"):
    governor.record_usage(UsageRecord(
        device_id=device_id,
        provider=provider,
        model=model,
        prompt_tokens=1000,
        completion_tokens=100,
        total_tokens=1100,
        cost_usd=cost,
        created_at=when,
    ))


class TestPreflight:
    """Test spend ceilings."""

    def test_allowed_under_limit(self):
        governor = make_governor()
        spend(governor, 0.5)

        result = governor.preflight("dev-1", LIMITS)

        assert result.allowed is True
        assert result.daily_cost == pytest.approx(0.5)
        assert result.monthly_cost == pytest.approx(0.5)

    def test_blocked_exactly_at_daily_limit(self):
        """Spend equal to the ceiling blocks."""
        governor = make_governor()
        spend(governor, 1.0)

        result = governor.preflight("dev-1", LIMITS)

        assert result.allowed is False
        assert result.period == "daily"
        assert "Daily cost limit" in result.reason

    def test_allowed_just_below_daily_limit(self):
        governor = make_governor()
        spend(governor, 1.0 - 1e-9)

        assert governor.preflight("dev-1", LIMITS).allowed is True

    def test_check_raises(self):
        """The raising form carries device, period and amounts."""
        governor = make_governor()
        spend(governor, 1.2)

        with pytest.raises(CostLimitExceeded) as exc_info:
            governor.check("dev-1", LIMITS)

        error = exc_info.value
        assert error.device_id == "dev-1"
        assert error.period == "daily"
        assert error.spent == pytest.approx(1.2)
        assert error.limit == 1.0
        assert "usage limit" in error.user_message

    def test_monthly_limit(self):
        """Earlier days of this month count toward the monthly ceiling."""
        governor = make_governor()
        spend(governor, 20.0, when=NOW - timedelta(days=10))

        result = governor.preflight("dev-1", LIMITS)

        assert result.allowed is False
        assert result.period == "monthly"
        assert result.daily_cost == 0.0

    def test_previous_month_ignored(self):
        governor = make_governor()
        spend(governor, 50.0, when=datetime(2024, 5, 20, tzinfo=timezone.utc))

        assert governor.preflight("dev-1", LIMITS).allowed is True

    def test_day_boundary_in_business_timezone(self):
        """The day starts at local midnight, not UTC midnight."""
        governor = make_governor()
        # 00:30 on 15 June in Jakarta
        spend(governor, 0.6, when=datetime(2024, 6, 14, 17, 30, tzinfo=timezone.utc))
        # 23:30 on 14 June in Jakarta
        spend(governor, 0.6, when=datetime(2024, 6, 14, 16, 30, tzinfo=timezone.utc))

        result = governor.preflight("dev-1", LIMITS)

        assert result.daily_cost == pytest.approx(0.6)
        assert result.allowed is True

    def test_per_call_timezone(self):
        """A device's own timezone overrides the governor default."""
        governor = make_governor()
        # 23:30 on 14 June in Jakarta, but 01:30 on 15 June in Tokyo
        spend(governor, 1.0, when=datetime(2024, 6, 14, 16, 30, tzinfo=timezone.utc))

        assert governor.preflight("dev-1", LIMITS).allowed is True
        assert governor.preflight("dev-1", LIMITS, "Asia/Tokyo").allowed is False

    def test_failed_calls_are_free(self):
        governor = make_governor()
        governor.record_failure("dev-1", "openai", "gpt-4o-mini", TransportError("openai", "timeout"))

        assert governor.preflight("dev-1", LIMITS).daily_cost == 0.0

    def test_tracking_disabled(self):
        governor = make_governor()
        spend(governor, 100.0)

        limits = CostLimits(daily_usd=1.0, tracking_enabled=False)
        assert governor.preflight("dev-1", limits).allowed is True
        governor.check("dev-1", limits)

    def test_other_devices_do_not_count(self):
        governor = make_governor()
        spend(governor, 5.0, device_id="dev-2")

        assert governor.preflight("dev-1", LIMITS).allowed is True


class TestLedgerErrors:
    """Test behavior when the ledger cannot be read."""

    def _broken_storage(self):
        storage = MagicMock()
        storage.sum_cost_since.side_effect = sqlite3.OperationalError("database is locked")
        return storage

    def test_fail_open(self, caplog):
        governor = make_governor(self._broken_storage(), fail_open=True)

        result = governor.preflight("dev-1", LIMITS)

        assert result.allowed is True
        assert "ledger unavailable" in caplog.text.lower()

    def test_fail_closed(self):
        governor = make_governor(self._broken_storage(), fail_open=False)

        result = governor.preflight("dev-1", LIMITS)
        assert result.allowed is False
        assert "database is locked" in result.reason

        with pytest.raises(CostLimitExceeded) as exc_info:
            governor.check("dev-1", LIMITS)
        assert exc_info.value.period == "ledger"


class TestUsageRecording:
    """Test ledger writes."""

    def test_record_success_prices_from_model(self):
        storage = InMemoryStorage()
        governor = make_governor(storage)
        model = ModelConfig(
            model_id="gpt-4o-mini",
            provider_id="openai",
            input_price_per_token=1e-6,
            output_price_per_token=2e-6,
        )
        result = CompletionResult(
            content="ok",
            finish_reason="stop",
            usage=Usage(prompt_tokens=1000, completion_tokens=500),
            provider="openai",
            model="gpt-4o-mini",
        )

        record = governor.record_success(
            "dev-1", result, model, response_time_ms=321, chat_id="chat-1", message="x" * 500
        )

        assert record.cost_usd == pytest.approx(0.002)
        assert record.total_tokens == 1500
        assert record.response_time_ms == 321
        assert len(record.message_preview) == 200
        assert record.created_at == NOW
        assert storage.list_usage("dev-1") == [record]

    def test_record_failure(self):
        storage = InMemoryStorage()
        governor = make_governor(storage)

        record = governor.record_failure(
            "dev-1", "gemini", "gemini-1.5-flash", TransportError("gemini", "timed out after 30s")
        )

        assert record.success is False
        assert record.cost_usd == 0.0
        assert "timed out" in record.error_message
        assert storage.list_usage("dev-1")[0].success is False

    def test_failed_record_invariant(self):
        """Failed records cannot carry cost and must explain themselves."""
        with pytest.raises(ValueError):
            UsageRecord(device_id="d", provider="p", model="m", cost_usd=0.1, success=False, error_message="x")
        with pytest.raises(ValueError):
            UsageRecord(device_id="d", provider="p", model="m", success=False)


class TestAlerts:
    """Test threshold alerts."""

    def test_alert_on_threshold(self):
        governor = make_governor()
        spend(governor, 0.85)

        created = governor.check_and_alert("dev-1", LIMITS)

        assert len(created) == 1
        alert = created[0]
        assert alert.alert_type == AlertType.DAILY_THRESHOLD
        assert alert.period == "2024-06-15"
        assert alert.current_cost == pytest.approx(0.85)
        assert alert.limit_amount == 1.0

    def test_no_alert_below_threshold(self):
        governor = make_governor()
        spend(governor, 0.5)

        assert governor.check_and_alert("dev-1", LIMITS) == []

    def test_one_alert_per_unresolved_period(self):
        """Crossing twice in the same period yields a single alert."""
        governor = make_governor()
        spend(governor, 0.85)
        governor.check_and_alert("dev-1", LIMITS)
        spend(governor, 0.05)

        assert governor.check_and_alert("dev-1", LIMITS) == []
        assert len(governor.unresolved_alerts("dev-1")) == 1

    def test_resolve_and_retrigger(self):
        """After resolving, the next crossing raises a new alert."""
        governor = make_governor()
        spend(governor, 0.85)
        first = governor.check_and_alert("dev-1", LIMITS)[0]

        assert governor.resolve_alert(first.alert_id) is True
        assert governor.unresolved_alerts() == []

        second = governor.check_and_alert("dev-1", LIMITS)
        assert len(second) == 1
        assert second[0].alert_id != first.alert_id
        assert len(governor.alert_history("dev-1")) == 2

    def test_monthly_alert_period(self):
        governor = make_governor()
        spend(governor, 16.5, when=NOW - timedelta(days=3))

        created = governor.check_and_alert("dev-1", LIMITS)

        assert [a.alert_type for a in created] == [AlertType.MONTHLY_THRESHOLD]
        assert created[0].period == "2024-06"

    def test_formatted_alert(self):
        governor = make_governor()
        spend(governor, 0.9)
        info = governor.check_and_alert("dev-1", LIMITS)[0].formatted()

        assert info["type"] == "Daily Cost Threshold"
        assert info["current_cost"] == "$0.900000"
        assert info["limit_amount"] == "$1.000000"


class TestAnalytics:
    """Test cost analytics."""

    def test_cost_analytics(self):
        governor = make_governor()
        spend(governor, 0.10)
        spend(governor, 0.30, provider="claude", model="claude-3-haiku-20240307")
        spend(governor, 0.20, when=NOW - timedelta(days=2))
        spend(governor, 9.00, when=NOW - timedelta(days=60))
        governor.record_failure("dev-1", "openai", "gpt-4o-mini", TransportError("openai", "boom"))

        analytics = governor.cost_analytics("dev-1", days=30)

        summary = analytics["summary"]
        assert summary["total_cost"] == pytest.approx(0.60)
        assert summary["total_requests"] == 3
        assert summary["total_tokens"] == 3300
        assert summary["average_cost_per_request"] == pytest.approx(0.20)
        assert summary["period"] == "30 days"

        current = analytics["current"]
        assert current["today_cost"] == pytest.approx(0.40)
        assert current["today_requests"] == 2
        assert current["monthly_cost"] == pytest.approx(0.60)

        assert analytics["by_provider"][0]["provider"] == "openai"
        assert analytics["by_provider"][0]["cost"] == pytest.approx(0.30)
        assert [d["date"] for d in analytics["daily_trend"]] == ["2024-06-13", "2024-06-15"]

    def test_empty_analytics(self):
        analytics = make_governor().cost_analytics("nobody")

        assert analytics["summary"]["total_requests"] == 0
        assert analytics["summary"]["average_cost_per_request"] == 0.0
        assert analytics["by_provider"] == []
