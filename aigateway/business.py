"""
Business and device context.

Business settings arrive from storage as loosely typed columns, several of
them JSON text and some in a legacy plain-text form. They are parsed once,
here, into validated models so the prompt renderer and post-processor never
re-parse strings.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_validator

from aigateway.config import DEFAULT_HANDOVER_TRIGGERS, DEFAULT_REPLY_TRIGGERS
from aigateway.errors import ValidationError
from aigateway.models import CostLimits

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
HHMM_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


class BrandVoice(str, Enum):
    CASUAL = "casual"
    FORMAL = "formal"
    EXPERT = "expert"
    LUXURY = "luxury"


class PrimaryGoal(str, Enum):
    CONVERSION = "conversion"
    LEADS = "leads"
    SUPPORT = "support"


class _Model(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)


class ProductItem(_Model):
    """A product or service the business sells."""
    name: str = ""
    price: Optional[str] = None
    description: Optional[str] = None
    promo: Optional[str] = None
    image_id: Optional[str] = Field(None, alias="imageId")
    image_url: Optional[str] = Field(None, alias="imageUrl")

    @field_validator("price", mode="before")
    @classmethod
    def _price_to_text(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return f"{value:g}" if isinstance(value, float) else str(value)
        return value

    @property
    def image_ref(self) -> Optional[str]:
        return self.image_id or self.image_url


class ProductKnowledge(_Model):
    items: List[ProductItem] = Field(default_factory=list)
    other_description: str = Field("", alias="otherDescription")


class ProductCatalog(_Model):
    items: List[ProductItem] = Field(default_factory=list)


class FAQItem(_Model):
    question: str
    answer: str


class FAQ(_Model):
    items: List[FAQItem] = Field(default_factory=list)


class SalesScript(_Model):
    name: str
    response: str


class SalesScripts(_Model):
    items: List[SalesScript] = Field(default_factory=list)
    detailed_response: str = Field("", alias="detailedResponse")


class DayHours(_Model):
    open: str = Field("09:00", pattern=HHMM_PATTERN)
    close: str = Field("17:00", pattern=HHMM_PATTERN)
    closed: bool = False

    @staticmethod
    def _minutes(value: str) -> int:
        hours, minutes = value.split(":")
        return int(hours) * 60 + int(minutes)

    def contains(self, local_time: datetime) -> bool:
        """True if ``local_time`` falls in [open, close). close < open wraps past midnight."""
        if self.closed:
            return False
        start, end = self._minutes(self.open), self._minutes(self.close)
        now = local_time.hour * 60 + local_time.minute
        if start == end:
            return False
        if start < end:
            return start <= now < end
        return now >= start or now < end


class OperatingHours(_Model):
    """Weekly opening schedule. A weekday missing from the schedule is closed."""
    enabled: bool = False
    schedule: Dict[str, DayHours] = Field(default_factory=dict)

    @field_validator("schedule", mode="before")
    @classmethod
    def _normalize_days(cls, value: Any) -> Any:
        if not isinstance(value, dict):
            return value
        unknown = [day for day in value if str(day).lower() not in WEEKDAYS]
        if unknown:
            raise ValueError(f"unknown weekday(s): {', '.join(map(str, unknown))}")
        return {str(day).lower(): hours for day, hours in value.items() if hours is not None}

    def is_open(self, local_time: datetime) -> bool:
        if not self.enabled:
            return True
        hours = self.schedule.get(WEEKDAYS[local_time.weekday()])
        return hours is not None and hours.contains(local_time)


class BusinessContext(_Model):
    """
    Everything the assistant knows about the business it speaks for.

    Build it with ``BusinessContext.from_storage(row)`` when the values come
    from storage columns.
    """
    brand_voice: BrandVoice = BrandVoice.CASUAL
    primary_goal: PrimaryGoal = PrimaryGoal.CONVERSION
    language: str = "id"
    bot_name: str = "Assistant"
    custom_prompt: Optional[str] = None
    product_knowledge: ProductKnowledge = Field(default_factory=ProductKnowledge)
    product_catalog: ProductCatalog = Field(default_factory=ProductCatalog)
    faq: FAQ = Field(default_factory=FAQ)
    business_type: Optional[str] = None
    upsell_strategies: Optional[str] = None
    objection_handling: Optional[str] = None
    sales_scripts: SalesScripts = Field(default_factory=SalesScripts)
    rules: List[str] = Field(default_factory=list)
    boundaries_enabled: bool = True
    handover_triggers: List[str] = Field(default_factory=lambda: list(DEFAULT_HANDOVER_TRIGGERS))
    operating_hours: OperatingHours = Field(default_factory=OperatingHours)
    timezone: str = "Asia/Jakarta"

    @field_validator("language", mode="before")
    @classmethod
    def _language_code(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower() or "id"
        return value

    @field_validator("rules", "handover_triggers", mode="before")
    @classmethod
    def _drop_blank(cls, value: Any) -> Any:
        if isinstance(value, list):
            return [item for item in value if isinstance(item, str) and item.strip()]
        return value

    @field_validator("timezone")
    @classmethod
    def _known_zone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"unknown timezone '{value}'") from e
        return value

    @property
    def zone(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    def is_open(self, now: datetime) -> bool:
        """Whether ``now`` (any zone) falls inside operating hours."""
        return self.operating_hours.is_open(now.astimezone(self.zone))

    def image_candidates(self) -> List[ProductItem]:
        """Catalog items then knowledge items that name a product and carry an image."""
        items = list(self.product_catalog.items) + list(self.product_knowledge.items)
        return [item for item in items if item.name.strip() and item.image_ref]

    @classmethod
    def from_storage(cls, row: Mapping[str, Any]) -> "BusinessContext":
        """
        Parse stored business columns.

        JSON columns may be dicts, lists or JSON text. Product knowledge and
        sales scripts also accept legacy plain text, which becomes their
        free-form description. Missing or null columns take defaults.

        Raises:
            ValidationError: If a column is malformed.
        """
        data: Dict[str, Any] = {}
        for key, value in row.items():
            if value is None or key not in cls.model_fields:
                continue
            if key == "product_knowledge":
                value = _load_legacy(key, value, "other_description")
            elif key == "sales_scripts":
                value = _load_legacy(key, value, "detailed_response")
            elif key in _JSON_COLUMNS:
                value = _load_json(key, value)
            data[key] = value

        return validate(cls, data)


_JSON_COLUMNS = {"product_catalog", "faq", "rules", "handover_triggers", "operating_hours"}


def _load_json(column: str, value: Any) -> Any:
    if not isinstance(value, str):
        return value
    if not value.strip() or value.strip() == "null":
        return None
    try:
        return json.loads(value)
    except json.JSONDecodeError as e:
        raise ValidationError(f"{column}: invalid JSON ({e.msg})") from e


def _load_legacy(column: str, value: Any, text_field: str) -> Any:
    if not isinstance(value, str):
        return value
    if not value.strip() or value.strip() == "null":
        return {}
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError:
        return {"items": [], text_field: value}
    if not isinstance(parsed, dict):
        raise ValidationError(f"{column}: expected an object, got {type(parsed).__name__}")
    return parsed


def validate(model: type[BaseModel], data: Mapping[str, Any]) -> Any:
    """Validate ``data`` against a model, raising the gateway's ValidationError."""
    try:
        return model.model_validate({k: v for k, v in data.items() if v is not None})
    except pydantic.ValidationError as e:
        errors = e.errors(include_url=False)
        summary = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or model.__name__}: {err['msg']}"
            for err in errors
        )
        raise ValidationError(f"Invalid {model.__name__}: {summary}", errors=errors) from e


@dataclass
class DeviceContext:
    """Per-device, per-chat settings for one inbound message."""
    device_id: str
    chat_id: str
    ai_enabled: bool = True
    auto_reply: bool = True
    trigger_required: bool = False
    triggers: List[str] = field(default_factory=lambda: list(DEFAULT_REPLY_TRIGGERS))
    memory_enabled: bool = True
    max_history_length: int = 10
    expiry_minutes: int = 1440
    last_memory_cleared_at: Optional[datetime] = None
    provider: str = "openai"
    model: Optional[str] = None
    max_tokens: int = 1000
    temperature: float = 0.7
    limits: CostLimits = field(default_factory=CostLimits)
    business: BusinessContext = field(default_factory=BusinessContext)

    def __post_init__(self):
        if self.max_history_length < 0:
            raise ValidationError("max_history_length must be >= 0")
        if self.expiry_minutes <= 0:
            raise ValidationError("expiry_minutes must be positive")

    @classmethod
    def from_storage(
        cls,
        device_id: str,
        chat_id: str,
        row: Mapping[str, Any],
        business: Optional[BusinessContext] = None,
    ) -> "DeviceContext":
        """
        Build a device context from stored device settings.

        ``row`` uses this class's field names plus ``daily_cost_limit``,
        ``monthly_cost_limit``, ``cost_alert_threshold`` and
        ``cost_tracking_enabled`` for the spend ceilings.
        """
        defaults = cls(device_id=device_id, chat_id=chat_id)
        triggers = _load_json("triggers", row.get("triggers"))
        if triggers is not None and not isinstance(triggers, list):
            raise ValidationError("triggers: expected a list")

        tracking = row.get("cost_tracking_enabled")
        limits = CostLimits(
            daily_usd=float(row.get("daily_cost_limit") or CostLimits.daily_usd),
            monthly_usd=float(row.get("monthly_cost_limit") or CostLimits.monthly_usd),
            alert_threshold=float(row.get("cost_alert_threshold") or CostLimits.alert_threshold),
            tracking_enabled=True if tracking is None else bool(tracking),
        )

        def pick(name: str) -> Any:
            value = row.get(name)
            return getattr(defaults, name) if value is None else value

        return cls(
            device_id=device_id,
            chat_id=chat_id,
            ai_enabled=bool(pick("ai_enabled")),
            auto_reply=bool(pick("auto_reply")),
            trigger_required=bool(pick("trigger_required")),
            triggers=[t for t in (triggers or defaults.triggers) if isinstance(t, str) and t.strip()],
            memory_enabled=bool(pick("memory_enabled")),
            max_history_length=int(pick("max_history_length")),
            expiry_minutes=int(pick("expiry_minutes")),
            last_memory_cleared_at=row.get("last_memory_cleared_at"),
            provider=str(pick("provider")),
            model=row.get("model") or None,
            max_tokens=int(pick("max_tokens")),
            temperature=float(pick("temperature")),
            limits=limits,
            business=business or BusinessContext.from_storage(row),
        )
