"""Global configuration for the AI Gateway."""

from __future__ import annotations

import copy
import json
import os
from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional


# Prices are USD per 1M tokens, converted to per-token by the registry.
DEFAULT_PROVIDERS: Dict[str, Dict[str, Any]] = {
    "openai": {
        "name": "OpenAI",
        "base_url": "https://api.openai.com/v1",
        "wire_format": "openai",
        "priority": 10,
        "models": {
            "gpt-4o-mini": {"input": 0.15, "output": 0.60, "max_tokens": 16384, "context_window": 128000, "default": True},
            "gpt-4o": {"input": 2.50, "output": 10.00, "max_tokens": 4096, "context_window": 128000},
            "gpt-3.5-turbo": {"input": 1.00, "output": 2.00, "max_tokens": 4096, "context_window": 16385},
        },
    },
    "deepseek": {
        "name": "DeepSeek",
        "base_url": "https://api.deepseek.com/v1",
        "wire_format": "openai",
        "priority": 20,
        "models": {
            "deepseek-chat": {"input": 0.14, "output": 0.28, "max_tokens": 4096, "context_window": 32768, "default": True},
        },
    },
    "claude": {
        "name": "Anthropic Claude",
        "base_url": "https://api.anthropic.com/v1",
        "wire_format": "anthropic",
        "priority": 30,
        "models": {
            "claude-3-5-sonnet-20241022": {"input": 3.00, "output": 15.00, "max_tokens": 8192, "context_window": 200000, "default": True},
            "claude-3-haiku-20240307": {"input": 0.25, "output": 1.25, "max_tokens": 4096, "context_window": 200000},
        },
    },
    "gemini": {
        "name": "Google Gemini",
        "base_url": "https://generativelanguage.googleapis.com/v1beta",
        "wire_format": "gemini",
        "priority": 40,
        "models": {
            "gemini-1.5-flash": {"input": 0.075, "output": 0.30, "max_tokens": 8192, "context_window": 1000000, "default": True},
            "gemini-1.5-pro": {"input": 1.25, "output": 5.00, "max_tokens": 8192, "context_window": 2000000},
        },
    },
    "groq": {
        "name": "Groq",
        "base_url": "https://api.groq.com/openai/v1",
        "wire_format": "openai",
        "priority": 50,
        "models": {
            "llama-3.1-70b-versatile": {"input": 0.59, "output": 0.79, "max_tokens": 8192, "context_window": 131072, "default": True},
        },
    },
}

# One named secret per provider, consulted only when no stored key exists.
CREDENTIAL_ENV_VARS: Dict[str, str] = {
    "openai": "OPENAI_API_KEY",
    "deepseek": "DEEPSEEK_API_KEY",
    "claude": "ANTHROPIC_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "google": "GEMINI_API_KEY",
    "groq": "GROQ_API_KEY",
}

DEFAULT_RULES: List[str] = [
    "Always lead with benefits and value propositions",
    "Use confident, positive language that builds excitement",
    "Provide solutions immediately rather than asking many questions",
    "Create urgency when appropriate (limited stock, special offers)",
    "Use social proof and testimonials to build trust",
    "Focus on how the product/service will improve their life",
    "Offer guarantees and risk-free options to overcome objections",
    "End responses with clear next steps or calls to action",
]

DEFAULT_REPLY_TRIGGERS: List[str] = ["@ai", "@bot", "@assistant"]
DEFAULT_HANDOVER_TRIGGERS: List[str] = ["human", "agent", "admin", "bantuan", "tolong"]

_providers: Dict[str, Dict[str, Any]] = copy.deepcopy(DEFAULT_PROVIDERS)


def _parse_json_env(var_name: str) -> Dict[str, Any] | None:
    value = os.getenv(var_name)
    if not value:
        return None
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError:
        return None
    if not isinstance(parsed, dict):
        return None
    return parsed


def _env_bool(var_name: str, default: bool) -> bool:
    value = os.getenv(var_name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def credential_env_var(provider_id: str) -> str:
    """Name of the environment variable holding a provider's API key."""
    return CREDENTIAL_ENV_VARS.get(provider_id, f"{provider_id.upper()}_API_KEY")


def get_provider_catalog() -> Dict[str, Dict[str, Any]]:
    """Return the provider catalog, with optional env override."""
    parsed = _parse_json_env("AIGATEWAY_PROVIDERS_JSON")
    if parsed:
        return parsed
    return _providers


def set_provider_catalog(providers: Dict[str, Dict[str, Any]]) -> None:
    """Replace the provider catalog at runtime."""
    if not isinstance(providers, dict) or not providers:
        raise ValueError("providers must be a non-empty dict")
    for provider_id, entry in providers.items():
        if not isinstance(entry, dict) or "base_url" not in entry or "wire_format" not in entry:
            raise ValueError(f"provider {provider_id} must include 'base_url' and 'wire_format'")
    global _providers
    _providers = copy.deepcopy(providers)


@dataclass(frozen=True)
class ScoringWeights:
    """Weights for the product-mention heuristic."""
    exact_mention: float = 50.0
    word_overlap: float = 30.0
    intent_bonus: float = 20.0
    threshold: float = 40.0
    min_word_length: int = 3


@dataclass(frozen=True)
class GatewaySettings:
    """Process-wide gateway settings."""
    request_timeout_s: float = 30.0
    fail_open_on_ledger_error: bool = True
    timezone: str = "Asia/Jakarta"
    db_path: Optional[str] = None
    default_provider: str = "openai"
    scoring: ScoringWeights = field(default_factory=ScoringWeights)

    @classmethod
    def from_env(cls) -> "GatewaySettings":
        """Build settings from ``AIGATEWAY_*`` environment variables."""
        timeout = os.getenv("AIGATEWAY_TIMEOUT")
        return cls(
            request_timeout_s=float(timeout) if timeout else 30.0,
            fail_open_on_ledger_error=_env_bool("AIGATEWAY_FAIL_OPEN", True),
            timezone=os.getenv("AIGATEWAY_TIMEZONE", "Asia/Jakarta"),
            db_path=os.getenv("AIGATEWAY_DB_PATH") or None,
            default_provider=os.getenv("AI_DEFAULT_PROVIDER", "openai"),
        )
