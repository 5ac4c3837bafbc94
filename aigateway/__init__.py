"""
AI Gateway - AI replies for WhatsApp business chats, across providers.

Reply to an inbound message:
    from aigateway import Gateway, DeviceContext, InboundMessage

    gateway = Gateway.from_settings()
    ctx = DeviceContext(device_id="device-1", chat_id="628123@s.whatsapp.net")
    response = gateway.process(InboundMessage("harga Honda Civic berapa?"), ctx)
    print(response.content)         # assistant reply
    print(response.image_id)        # product image to attach, if any
    print(response.needs_handover)  # True when a human should take over

One completion, any provider:
    from aigateway import ProtocolAdapter, ProviderRegistry, CompletionOptions

    adapter = ProtocolAdapter(ProviderRegistry.from_catalog())
    result = adapter.chat_completion(
        [{"role": "user", "content": "Hi"}],
        CompletionOptions(provider="claude"),
    )

Spend limits (per device):
    from aigateway import CostGovernor, CostLimits, SQLiteStorage

    governor = CostGovernor(SQLiteStorage("gateway.db"))
    governor.check("device-1", CostLimits(daily_usd=1.00, monthly_usd=20.00))
"""

from aigateway.adapter import ProtocolAdapter
from aigateway.assembler import ConversationAssembler
from aigateway.business import BusinessContext, DeviceContext
from aigateway.config import GatewaySettings, ScoringWeights, get_provider_catalog, set_provider_catalog
from aigateway.cost_control import CostGovernor
from aigateway.credentials import CredentialResolver
from aigateway.errors import (
    ConfigurationError,
    CostLimitExceeded,
    CredentialError,
    GatewayError,
    TransportError,
    UpstreamError,
    ValidationError,
)
from aigateway.gateway import Gateway
from aigateway.models import CostAlert, CostLimits, ModelConfig, ProviderConfig, UsageRecord, WireFormat
from aigateway.postprocess import ResponsePostProcessor
from aigateway.prompts import render_system_prompt
from aigateway.registry import ProviderRegistry
from aigateway.schemas import (
    CompletionOptions,
    CompletionResult,
    ConversationTurn,
    GatewayResponse,
    InboundMessage,
    Usage,
)
from aigateway.storage import InMemoryStorage, SQLiteStorage

__version__ = "1.0.0"
__all__ = [
    # Entry point
    "Gateway",
    "GatewaySettings",
    "ScoringWeights",
    # Components
    "ProtocolAdapter",
    "ProviderRegistry",
    "CredentialResolver",
    "CostGovernor",
    "ConversationAssembler",
    "ResponsePostProcessor",
    "render_system_prompt",
    # Context
    "BusinessContext",
    "DeviceContext",
    # Data
    "CompletionOptions",
    "CompletionResult",
    "ConversationTurn",
    "GatewayResponse",
    "InboundMessage",
    "Usage",
    "CostAlert",
    "CostLimits",
    "ModelConfig",
    "ProviderConfig",
    "UsageRecord",
    "WireFormat",
    # Storage
    "InMemoryStorage",
    "SQLiteStorage",
    # Config
    "get_provider_catalog",
    "set_provider_catalog",
    # Errors
    "GatewayError",
    "ConfigurationError",
    "CredentialError",
    "TransportError",
    "UpstreamError",
    "CostLimitExceeded",
    "ValidationError",
]
