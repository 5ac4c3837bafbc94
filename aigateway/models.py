"""Shared data models: provider catalog, usage ledger and cost alerts."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Optional
import uuid


class WireFormat(str, Enum):
    """Provider request/response shapes."""
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GEMINI = "gemini"


class AlertType(str, Enum):
    """Kinds of cost alerts."""
    DAILY_THRESHOLD = "daily_threshold"
    MONTHLY_THRESHOLD = "monthly_threshold"


@dataclass(frozen=True)
class ProviderConfig:
    """An AI vendor exposing a chat-completion API."""
    provider_id: str
    base_url: str
    wire_format: WireFormat
    name: str = ""
    enabled: bool = True
    headers: Dict[str, str] = field(default_factory=dict)
    priority: int = 100  # Lower = preferred
    api_key: Optional[str] = None
    fallback_provider: Optional[str] = None  # Carried for admins, never acted on

    def has_stored_key(self) -> bool:
        return bool(self.api_key and self.api_key.strip())


@dataclass(frozen=True)
class ModelConfig:
    """A model offered by a provider, with per-token pricing in USD."""
    model_id: str
    provider_id: str
    input_price_per_token: float = 0.0
    output_price_per_token: float = 0.0
    name: str = ""
    max_tokens: int = 4096
    context_window: int = 8192
    is_default: bool = False
    enabled: bool = True

    def cost_for(self, prompt_tokens: int, completion_tokens: int) -> float:
        """USD cost of one call."""
        cost = prompt_tokens * self.input_price_per_token
        cost += completion_tokens * self.output_price_per_token
        return round(cost, 8)


@dataclass(frozen=True)
class CostLimits:
    """Per-device spend ceilings."""
    daily_usd: float = 1.0
    monthly_usd: float = 20.0
    alert_threshold: float = 0.8  # Fraction of a limit that raises an alert
    tracking_enabled: bool = True


@dataclass
class UsageRecord:
    """
    One completion attempt in the append-only usage ledger.

    Failed attempts are free and must say why they failed.
    """
    device_id: str
    provider: str
    model: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    cost_usd: float = 0.0
    success: bool = True
    response_time_ms: int = 0
    error_message: Optional[str] = None
    chat_id: Optional[str] = None
    message_preview: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    record_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def __post_init__(self):
        if not self.success:
            if self.cost_usd != 0:
                raise ValueError("failed usage records must have cost_usd == 0")
            if not self.error_message:
                raise ValueError("failed usage records require an error_message")


@dataclass
class CostAlert:
    """A once-per-period record that spend crossed a fraction of a limit."""
    device_id: str
    alert_type: AlertType
    period: str  # YYYY-MM-DD for daily, YYYY-MM for monthly
    current_cost: float
    limit_amount: float
    resolved: bool = False
    resolved_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    alert_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.device_id, self.alert_type.value, self.period)

    def formatted(self) -> dict:
        labels = {
            AlertType.DAILY_THRESHOLD: "Daily Cost Threshold",
            AlertType.MONTHLY_THRESHOLD: "Monthly Cost Threshold",
        }
        return {
            "type": labels.get(self.alert_type, self.alert_type.value),
            "current_cost": f"${self.current_cost:.6f}",
            "limit_amount": f"${self.limit_amount:.6f}",
            "period": self.period,
            "timestamp": self.created_at.isoformat(),
            "resolved": self.resolved,
        }
