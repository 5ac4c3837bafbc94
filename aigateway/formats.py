"""
Wire-format strategies.

Each provider family speaks its own JSON shape. A strategy knows how to
address the endpoint, build the payload and parse the reply into the
canonical ``CompletionResult``. Adding a provider family means adding a
strategy to ``FORMATS``.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional, Sequence

from aigateway.errors import ConfigurationError, UpstreamError
from aigateway.models import ModelConfig, ProviderConfig, WireFormat
from aigateway.schemas import (
    CompletionOptions,
    CompletionResult,
    ConversationTurn,
    Role,
    Usage,
)

ANTHROPIC_VERSION = "2023-06-01"


class WireFormatStrategy(ABC):
    """Abstract base class for provider wire formats."""

    wire_format: WireFormat

    @abstractmethod
    def endpoint(self, provider: ProviderConfig, model: ModelConfig) -> str:
        """Full URL to POST to."""
        pass

    @abstractmethod
    def build(
        self,
        messages: Sequence[ConversationTurn],
        model: ModelConfig,
        options: CompletionOptions,
    ) -> dict[str, Any]:
        """Build the request body."""
        pass

    @abstractmethod
    def _extract(self, data: dict) -> tuple[str, Optional[str], Usage]:
        """Pull (content, finish_reason, usage) out of a reply body."""
        pass

    def auth_headers(self, api_key: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {api_key}"}

    def query_params(self, api_key: str) -> dict[str, str]:
        return {}

    def headers(self, provider: ProviderConfig, api_key: str) -> dict[str, str]:
        """Provider header template overlaid with this format's auth headers."""
        headers = dict(provider.headers)
        headers.update(self.auth_headers(api_key))
        headers["Content-Type"] = "application/json"
        return headers

    def parse(self, data: dict, provider: ProviderConfig, model: ModelConfig) -> CompletionResult:
        """
        Parse a reply body into the canonical result.

        Raises:
            UpstreamError: If the body does not have the expected shape.
        """
        try:
            content, finish_reason, usage = self._extract(data)
        except (KeyError, IndexError, TypeError, AttributeError) as e:
            raise UpstreamError(
                provider.provider_id,
                f"Unexpected {self.wire_format.value} response shape: {e!r}",
            ) from e

        return CompletionResult(
            content=content or "",
            finish_reason=finish_reason,
            usage=usage,
            provider=provider.provider_id,
            model=model.model_id,
            raw=data,
        )


class OpenAIFormat(WireFormatStrategy):
    """OpenAI chat completions, also spoken by DeepSeek and Groq."""

    wire_format = WireFormat.OPENAI

    def endpoint(self, provider: ProviderConfig, model: ModelConfig) -> str:
        return f"{provider.base_url}/chat/completions"

    def build(self, messages, model, options):
        return {
            "model": model.model_id,
            "messages": [m.to_dict() for m in messages],
            "max_tokens": options.max_tokens,
            "temperature": options.temperature,
            "stream": options.stream,
        }

    def _extract(self, data):
        choice = data["choices"][0]
        usage = data.get("usage") or {}
        return (
            choice["message"].get("content"),
            choice.get("finish_reason"),
            Usage(
                prompt_tokens=int(usage.get("prompt_tokens") or 0),
                completion_tokens=int(usage.get("completion_tokens") or 0),
            ),
        )


class AnthropicFormat(WireFormatStrategy):
    """Anthropic messages API. The system prompt travels as a top-level field."""

    wire_format = WireFormat.ANTHROPIC

    def endpoint(self, provider: ProviderConfig, model: ModelConfig) -> str:
        return f"{provider.base_url}/messages"

    def auth_headers(self, api_key: str) -> dict[str, str]:
        return {"x-api-key": api_key, "anthropic-version": ANTHROPIC_VERSION}

    def build(self, messages, model, options):
        system = next((m.content for m in messages if m.role == Role.SYSTEM), None)
        payload: dict[str, Any] = {
            "model": model.model_id,
            "max_tokens": options.max_tokens,
            "temperature": options.temperature,
            "messages": [m.to_dict() for m in messages if m.role != Role.SYSTEM],
        }
        if system:
            payload["system"] = system
        return payload

    def _extract(self, data):
        usage = data.get("usage") or {}
        return (
            data["content"][0]["text"],
            data.get("stop_reason"),
            Usage(
                prompt_tokens=int(usage.get("input_tokens") or 0),
                completion_tokens=int(usage.get("output_tokens") or 0),
            ),
        )


class GeminiFormat(WireFormatStrategy):
    """Google Gemini generateContent. The key goes in the query string."""

    wire_format = WireFormat.GEMINI

    def endpoint(self, provider: ProviderConfig, model: ModelConfig) -> str:
        return f"{provider.base_url}/models/{model.model_id}:generateContent"

    def auth_headers(self, api_key: str) -> dict[str, str]:
        return {}

    def query_params(self, api_key: str) -> dict[str, str]:
        return {"key": api_key}

    def build(self, messages, model, options):
        contents = [
            {
                "role": "model" if m.role == Role.ASSISTANT else "user",
                "parts": [{"text": m.content}],
            }
            for m in messages
        ]
        return {
            "contents": contents,
            "generationConfig": {
                "maxOutputTokens": options.max_tokens,
                "temperature": options.temperature,
            },
        }

    def _extract(self, data):
        candidate = data["candidates"][0]
        usage = data.get("usageMetadata") or {}
        return (
            candidate["content"]["parts"][0]["text"],
            candidate.get("finishReason"),
            Usage(
                prompt_tokens=int(usage.get("promptTokenCount") or 0),
                completion_tokens=int(usage.get("candidatesTokenCount") or 0),
            ),
        )


FORMATS: dict[WireFormat, WireFormatStrategy] = {
    WireFormat.OPENAI: OpenAIFormat(),
    WireFormat.ANTHROPIC: AnthropicFormat(),
    WireFormat.GEMINI: GeminiFormat(),
}


def get_format(wire_format: WireFormat | str) -> WireFormatStrategy:
    """Get the strategy for a wire format."""
    try:
        return FORMATS[WireFormat(wire_format)]
    except (KeyError, ValueError) as e:
        raise ConfigurationError(f"Unsupported wire format: {wire_format}") from e
