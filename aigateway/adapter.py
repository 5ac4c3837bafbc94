"""
Protocol adapter.

Resolves provider, model and credential, calls the provider over HTTP and
returns the canonical result. Ledger writes are the caller's job.
"""

import logging
import time
from typing import Any, Optional, Sequence, Union

import httpx

from aigateway.credentials import CredentialResolver
from aigateway.errors import GatewayError, TransportError, UpstreamError
from aigateway.formats import get_format
from aigateway.registry import ProviderRegistry
from aigateway.schemas import CompletionOptions, CompletionResult, ConversationTurn
from aigateway.validation import validate_messages, validate_options

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_S = 30.0
CONNECTION_TEST_PROMPT = 'Hello! Please respond with just "OK" to confirm the connection.'


def _upstream_message(response: httpx.Response) -> str:
    """Best-effort extraction of the provider's own error message."""
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase

    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str):
            return error
        if body.get("message"):
            return str(body["message"])
    return response.text


class ProtocolAdapter:
    """
    One call for every provider wire format.

    Example:
        ```python
        adapter = ProtocolAdapter(ProviderRegistry.from_catalog())
        result = adapter.chat_completion(
            [{"role": "user", "content": "Hi"}],
            CompletionOptions(provider="gemini"),
        )
        print(result.content, result.usage.total_tokens)
        ```
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        credentials: Optional[CredentialResolver] = None,
        http_client: Optional[httpx.Client] = None,
        timeout_s: float = DEFAULT_TIMEOUT_S,
    ):
        """
        Initialize the adapter.

        Args:
            registry: Provider/model catalog.
            credentials: Key resolver. Defaults to registry keys then environment.
            http_client: Shared HTTP client. One is created if not provided.
            timeout_s: Per-request timeout in seconds.
        """
        self.registry = registry
        self.credentials = credentials or CredentialResolver(store=registry)
        self.timeout_s = timeout_s
        self._owns_client = http_client is None
        self._client = http_client or httpx.Client(timeout=timeout_s)

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def chat_completion(
        self,
        messages: Sequence[Union[ConversationTurn, dict]],
        options: CompletionOptions,
    ) -> CompletionResult:
        """
        Send a conversation to a provider.

        Args:
            messages: Turns (or ``{"role", "content"}`` dicts), system first.
            options: Provider, model and generation options.

        Returns:
            CompletionResult in canonical form.

        Raises:
            ValidationError: If messages or options are invalid.
            ConfigurationError: If provider/model is missing or disabled.
            CredentialError: If no API key is available.
            TransportError: On network failure or timeout.
            UpstreamError: On a non-2xx status or malformed reply.
        """
        turns = [ConversationTurn.coerce(m) for m in messages]
        validate_messages(turns)
        validate_options(options)

        provider = self.registry.get_provider(options.provider)
        model = self.registry.resolve_model(provider.provider_id, options.model)
        api_key = self.credentials.resolve(provider.provider_id)
        wire = get_format(provider.wire_format)

        payload = wire.build(turns, model, options)
        data = self._post(
            provider.provider_id,
            url=wire.endpoint(provider, model),
            payload=payload,
            headers=wire.headers(provider, api_key),
            params=wire.query_params(api_key),
        )
        return wire.parse(data, provider, model)

    def _post(
        self,
        provider_id: str,
        url: str,
        payload: dict[str, Any],
        headers: dict[str, str],
        params: dict[str, str],
    ) -> dict:
        try:
            response = self._client.post(
                url,
                json=payload,
                headers=headers,
                params=params or None,
                timeout=self.timeout_s,
            )
        except httpx.TimeoutException as e:
            raise TransportError(provider_id, f"timed out after {self.timeout_s:g}s") from e
        except httpx.RequestError as e:
            raise TransportError(provider_id, str(e) or e.__class__.__name__) from e

        if not response.is_success:
            raise UpstreamError(provider_id, _upstream_message(response), response.status_code)

        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamError(provider_id, "response body is not JSON", response.status_code) from e

        if not isinstance(data, dict):
            raise UpstreamError(provider_id, "response body is not a JSON object", response.status_code)
        return data

    def available_providers(self) -> dict[str, dict[str, Any]]:
        """Enabled providers with their models and credential availability."""
        providers = {}
        for provider in self.registry.enabled_providers():
            models = self.registry.models_for(provider.provider_id)
            default = next((m for m in models if m.is_default), models[0] if models else None)
            providers[provider.provider_id] = {
                "name": provider.name,
                "wire_format": provider.wire_format.value,
                "models": [
                    {
                        "id": m.model_id,
                        "name": m.name,
                        "is_default": m.is_default,
                        "input_price_per_token": m.input_price_per_token,
                        "output_price_per_token": m.output_price_per_token,
                    }
                    for m in models
                ],
                "default_model": default.model_id if default else None,
                "available": self.credentials.is_available(provider.provider_id),
            }
        return providers

    def test_provider(self, provider: str, model: Optional[str] = None) -> dict[str, Any]:
        """
        Send a tiny prompt to check a provider end to end.

        Returns a report instead of raising.
        """
        start = time.monotonic()
        try:
            result = self.chat_completion(
                [{"role": "user", "content": CONNECTION_TEST_PROMPT}],
                CompletionOptions(provider=provider, model=model, max_tokens=10, temperature=0),
            )
        except GatewayError as e:
            logger.warning("Connection test failed for %s: %s", provider, e)
            return {
                "success": False,
                "provider": provider,
                "model": model,
                "error": str(e),
                "latency_ms": int((time.monotonic() - start) * 1000),
            }

        return {
            "success": True,
            "provider": provider,
            "model": result.model,
            "response": result.content,
            "usage": {
                "prompt_tokens": result.usage.prompt_tokens,
                "completion_tokens": result.usage.completion_tokens,
                "total_tokens": result.usage.total_tokens,
            },
            "latency_ms": int((time.monotonic() - start) * 1000),
        }
