"""
Basic usage examples for the AI Gateway.

Runs offline: provider calls go to a local mock transport.
"""

import httpx

from aigateway import (
    BusinessContext,
    CostLimitExceeded,
    CostLimits,
    DeviceContext,
    Gateway,
    InboundMessage,
)
from aigateway.adapter import ProtocolAdapter
from aigateway.assembler import ConversationAssembler
from aigateway.cost_control import CostGovernor
from aigateway.credentials import CredentialResolver
from aigateway.registry import ProviderRegistry
from aigateway.storage import InMemoryStorage


def fake_provider(request: httpx.Request) -> httpx.Response:
    """Answers every chat completion like an OpenAI-compatible API."""
    return httpx.Response(200, json={
        "choices": [{
            "message": {"role": "assistant", "content": "Honda Civic harganya Rp 350 juta, kak!"},
            "finish_reason": "stop",
        }],
        "usage": {"prompt_tokens": 850, "completion_tokens": 40},
    })


def build_gateway(storage: InMemoryStorage) -> Gateway:
    registry = ProviderRegistry.from_catalog()
    adapter = ProtocolAdapter(
        registry,
        credentials=CredentialResolver(store=registry, environ={"OPENAI_API_KEY": "sk-demo"}.get),
        http_client=httpx.Client(transport=httpx.MockTransport(fake_provider)),
    )
    return Gateway(
        adapter=adapter,
        governor=CostGovernor(storage),
        assembler=ConversationAssembler(storage),
    )


BUSINESS = BusinessContext.from_storage({
    "bot_name": "Sari",
    "brand_voice": "casual",
    "product_catalog": {"items": [
        {"name": "Honda Civic", "price": "Rp 350 juta", "imageId": "civic-front"},
        {"name": "Honda Jazz", "price": "Rp 280 juta", "imageId": "jazz-side"},
    ]},
})


def example_basic():
    """Reply with a product image."""
    print("=" * 60)
    print("Example 1: Basic Reply")
    print("=" * 60)

    gateway = build_gateway(InMemoryStorage())
    ctx = DeviceContext(device_id="device-1", chat_id="628123@s.whatsapp.net", business=BUSINESS)

    response = gateway.process(InboundMessage("harga Honda Civic berapa?"), ctx)

    print(f"Reply: {response.content}")
    print(f"Image: {response.image_id}")
    print(f"Model: {response.provider}/{response.model}")
    print(f"Cost: ${response.cost_usd:.6f}")
    print()


def example_triggers():
    """Group chat that only answers when mentioned."""
    print("=" * 60)
    print("Example 2: Reply Triggers")
    print("=" * 60)

    gateway = build_gateway(InMemoryStorage())
    ctx = DeviceContext(
        device_id="device-1",
        chat_id="1203630@g.us",
        auto_reply=False,
        trigger_required=True,
        triggers=["@sari"],
        business=BUSINESS,
    )

    for text in ["ada yang tahu harga Jazz?", "@Sari harga Jazz berapa?"]:
        response = gateway.process(InboundMessage(text, is_group=True), ctx)
        print(f"{text!r} -> {'reply' if response.should_respond else 'silent'}")
    print()


def example_cost_limit():
    """Stop replying once a device hits its daily ceiling."""
    print("=" * 60)
    print("Example 3: Daily Cost Limit")
    print("=" * 60)

    storage = InMemoryStorage()
    gateway = build_gateway(storage)
    ctx = DeviceContext(
        device_id="device-2",
        chat_id="628999@s.whatsapp.net",
        limits=CostLimits(daily_usd=0.0003, monthly_usd=1.0),
        business=BUSINESS,
    )

    for i in range(1, 6):
        try:
            response = gateway.process(InboundMessage("harga Honda Civic?"), ctx)
            print(f"Message {i}: replied (${response.cost_usd:.6f})")
        except CostLimitExceeded as e:
            print(f"Message {i}: blocked - {e}")
            break

    for alert in gateway.governor.unresolved_alerts("device-2"):
        info = alert.formatted()
        print(f"Alert: {info['type']} {info['period']} {info['current_cost']} of {info['limit_amount']}")
    print()


if __name__ == "__main__":
    example_basic()
    example_triggers()
    example_cost_limit()
