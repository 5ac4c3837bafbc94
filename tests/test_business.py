"""Tests for business and device context parsing."""

import json
from datetime import datetime, timezone

import pytest

from aigateway.business import (
    BrandVoice,
    BusinessContext,
    DayHours,
    DeviceContext,
    OperatingHours,
    PrimaryGoal,
)
from aigateway.config import DEFAULT_HANDOVER_TRIGGERS, DEFAULT_REPLY_TRIGGERS
from aigateway.errors import ValidationError


# Monday 17 June 2024
MONDAY = datetime(2024, 6, 17)


class TestFromStorage:
    """Test parsing stored business columns."""

    def test_defaults(self):
        business = BusinessContext.from_storage({})

        assert business.brand_voice == BrandVoice.CASUAL
        assert business.primary_goal == PrimaryGoal.CONVERSION
        assert business.language == "id"
        assert business.timezone == "Asia/Jakarta"
        assert business.boundaries_enabled is True
        assert business.handover_triggers == DEFAULT_HANDOVER_TRIGGERS
        assert business.product_knowledge.items == []

    def test_json_text_columns(self):
        """JSON text is parsed, including camelCase keys."""
        business = BusinessContext.from_storage({
            "brand_voice": "luxury",
            "primary_goal": "leads",
            "language": "EN",
            "product_knowledge": json.dumps({
                "items": [{"name": "Honda Civic", "price": 350000000, "imageId": "abc123"}],
                "otherDescription": "Dealer resmi Honda",
            }),
            "faq": '{"items": [{"question": "Buka jam berapa?", "answer": "09:00"}]}',
            "rules": '["Selalu sopan"]',
            "handover_triggers": '["cs", "manusia"]',
        })

        assert business.brand_voice == BrandVoice.LUXURY
        assert business.primary_goal == PrimaryGoal.LEADS
        assert business.language == "en"
        item = business.product_knowledge.items[0]
        assert item.name == "Honda Civic"
        assert item.price == "350000000"
        assert item.image_id == "abc123"
        assert business.product_knowledge.other_description == "Dealer resmi Honda"
        assert business.faq.items[0].answer == "09:00"
        assert business.rules == ["Selalu sopan"]
        assert business.handover_triggers == ["cs", "manusia"]

    def test_legacy_plain_text(self):
        """Plain text knowledge and scripts become their description."""
        business = BusinessContext.from_storage({
            "product_knowledge": "We sell used cars in Jakarta.",
            "sales_scripts": "Always greet with 'Selamat datang'.",
        })

        assert business.product_knowledge.items == []
        assert business.product_knowledge.other_description == "We sell used cars in Jakarta."
        assert business.sales_scripts.detailed_response == "Always greet with 'Selamat datang'."

    def test_null_columns_use_defaults(self):
        business = BusinessContext.from_storage({
            "product_knowledge": "null",
            "faq": None,
            "operating_hours": "",
        })

        assert business.product_knowledge.other_description == ""
        assert business.faq.items == []
        assert business.operating_hours.enabled is False

    def test_already_parsed_values(self):
        business = BusinessContext.from_storage({
            "product_catalog": {"items": [{"name": "Jazz", "image_url": "https://cdn.test/jazz.jpg"}]},
            "sales_scripts": {"items": [{"name": "Greeting", "response": "Halo kak!"}]},
        })

        assert business.product_catalog.items[0].image_ref == "https://cdn.test/jazz.jpg"
        assert business.sales_scripts.items[0].response == "Halo kak!"

    def test_blank_rules_dropped(self):
        business = BusinessContext.from_storage({"rules": ["Be kind", "", "   "]})
        assert business.rules == ["Be kind"]

    @pytest.mark.parametrize("row", [
        {"brand_voice": "shouty"},
        {"primary_goal": "world domination"},
        {"faq": "{not json"},
        {"faq": '{"items": [{"question": "only a question"}]}'},
        {"timezone": "Mars/Olympus_Mons"},
        {"product_knowledge": "[1, 2, 3]"},
        {"operating_hours": {"enabled": True, "schedule": {"monday": {"open": "9am", "close": "17:00"}}}},
        {"operating_hours": {"enabled": True, "schedule": {"funday": {"open": "09:00", "close": "17:00"}}}},
    ])
    def test_malformed_input(self, row):
        """Malformed columns raise the gateway's ValidationError."""
        with pytest.raises(ValidationError):
            BusinessContext.from_storage(row)

    def test_validation_error_is_value_error(self):
        with pytest.raises(ValueError) as exc_info:
            BusinessContext.from_storage({"brand_voice": "shouty"})
        assert exc_info.value.errors
        assert "brand_voice" in str(exc_info.value)

    def test_image_candidates(self):
        """Catalog items come before knowledge items; items without images are skipped."""
        business = BusinessContext.from_storage({
            "product_knowledge": {"items": [
                {"name": "Brio", "imageId": "brio-1"},
                {"name": "HR-V"},
            ]},
            "product_catalog": {"items": [
                {"name": "Civic", "image_id": "civic-1"},
                {"name": "", "image_id": "orphan"},
            ]},
        })

        assert [i.name for i in business.image_candidates()] == ["Civic", "Brio"]


class TestOperatingHours:
    """Test opening-hours windows."""

    def _hours(self, **schedule):
        return OperatingHours(enabled=True, schedule=schedule)

    def test_disabled_is_always_open(self):
        assert OperatingHours().is_open(MONDAY.replace(hour=3)) is True

    def test_window_is_half_open(self):
        hours = self._hours(monday={"open": "09:00", "close": "17:00"})

        assert hours.is_open(MONDAY.replace(hour=9)) is True
        assert hours.is_open(MONDAY.replace(hour=16, minute=59)) is True
        assert hours.is_open(MONDAY.replace(hour=17)) is False
        assert hours.is_open(MONDAY.replace(hour=8, minute=59)) is False

    def test_missing_day_is_closed(self):
        hours = self._hours(monday={"open": "09:00", "close": "17:00"})
        assert hours.is_open(datetime(2024, 6, 18, 10, 0)) is False

    def test_closed_flag_and_empty_window(self):
        assert self._hours(monday={"closed": True}).is_open(MONDAY.replace(hour=10)) is False
        assert self._hours(monday={"open": "09:00", "close": "09:00"}).is_open(MONDAY.replace(hour=9)) is False

    def test_overnight_window(self):
        """close < open wraps past midnight."""
        hours = self._hours(monday={"open": "22:00", "close": "02:00"})

        assert hours.is_open(MONDAY.replace(hour=23)) is True
        assert hours.is_open(MONDAY.replace(hour=1)) is True
        assert hours.is_open(MONDAY.replace(hour=12)) is False

    def test_weekday_names_case_insensitive(self):
        hours = self._hours(Monday={"open": "09:00", "close": "17:00"})
        assert hours.is_open(MONDAY.replace(hour=10)) is True

    def test_business_timezone_conversion(self):
        """UTC instants are checked in the business's local time."""
        business = BusinessContext(
            operating_hours={"enabled": True, "schedule": {"monday": {"open": "09:00", "close": "17:00"}}},
        )

        # 03:00 UTC is 10:00 in Jakarta
        assert business.is_open(datetime(2024, 6, 17, 3, 0, tzinfo=timezone.utc)) is True
        # 13:00 UTC is 20:00 in Jakarta
        assert business.is_open(datetime(2024, 6, 17, 13, 0, tzinfo=timezone.utc)) is False

    def test_day_hours_defaults(self):
        day = DayHours()
        assert (day.open, day.close, day.closed) == ("09:00", "17:00", False)


class TestDeviceContext:
    """Test device context construction."""

    def test_defaults(self):
        ctx = DeviceContext(device_id="dev-1", chat_id="chat-1")

        assert ctx.triggers == DEFAULT_REPLY_TRIGGERS
        assert ctx.max_history_length == 10
        assert ctx.limits.daily_usd == 1.0
        assert ctx.business.bot_name == "Assistant"

    def test_from_storage(self):
        ctx = DeviceContext.from_storage("dev-1", "chat-1", {
            "ai_enabled": 1,
            "auto_reply": 0,
            "trigger_required": True,
            "triggers": '["@sari"]',
            "max_history_length": 4,
            "provider": "gemini",
            "temperature": "0.3",
            "daily_cost_limit": 2.5,
            "cost_tracking_enabled": None,
            "bot_name": "Sari",
            "faq": '{"items": []}',
        })

        assert ctx.auto_reply is False
        assert ctx.trigger_required is True
        assert ctx.triggers == ["@sari"]
        assert ctx.max_history_length == 4
        assert ctx.provider == "gemini"
        assert ctx.model is None
        assert ctx.temperature == 0.3
        assert ctx.limits.daily_usd == 2.5
        assert ctx.limits.monthly_usd == 20.0
        assert ctx.limits.tracking_enabled is True
        assert ctx.business.bot_name == "Sari"

    def test_tracking_disabled_from_integer_column(self):
        ctx = DeviceContext.from_storage("dev-1", "chat-1", {"cost_tracking_enabled": 0})
        assert ctx.limits.tracking_enabled is False

    def test_invalid_values(self):
        with pytest.raises(ValidationError):
            DeviceContext(device_id="d", chat_id="c", expiry_minutes=0)
        with pytest.raises(ValidationError):
            DeviceContext.from_storage("d", "c", {"triggers": '"@bot"'})
