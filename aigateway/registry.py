"""
Provider registry.

Read-only catalog of providers and models with pricing and wire format.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

from aigateway.config import get_provider_catalog
from aigateway.errors import ConfigurationError
from aigateway.models import ModelConfig, ProviderConfig, WireFormat

PER_MILLION = 1_000_000


class ProviderRegistry:
    """
    Catalog of configured providers and their models.

    Providers and models are immutable for the lifetime of a request;
    administrators replace the registry to change them.

    Example:
        ```python
        registry = ProviderRegistry.from_catalog()
        provider = registry.get_provider("openai")
        model = registry.resolve_model("openai", "gpt-4o")
        ```
    """

    def __init__(
        self,
        providers: Iterable[ProviderConfig],
        models: Iterable[ModelConfig] = (),
    ):
        self._providers: Dict[str, ProviderConfig] = {p.provider_id: p for p in providers}
        self._models: Dict[str, List[ModelConfig]] = {}
        for model in models:
            self._models.setdefault(model.provider_id, []).append(model)

    @classmethod
    def from_catalog(
        cls,
        catalog: Optional[Dict[str, Dict[str, Any]]] = None,
    ) -> "ProviderRegistry":
        """
        Build a registry from a catalog dict (see ``config.DEFAULT_PROVIDERS``).

        Model prices in the catalog are USD per 1M tokens.

        Raises:
            ConfigurationError: If an entry has an unknown wire format.
        """
        catalog = catalog if catalog is not None else get_provider_catalog()
        providers: list[ProviderConfig] = []
        models: list[ModelConfig] = []

        for provider_id, entry in catalog.items():
            try:
                wire_format = WireFormat(entry["wire_format"])
            except ValueError as e:
                raise ConfigurationError(
                    f"Unsupported wire format '{entry['wire_format']}' for provider '{provider_id}'",
                    provider=provider_id,
                ) from e

            providers.append(ProviderConfig(
                provider_id=provider_id,
                name=entry.get("name", provider_id),
                base_url=entry["base_url"].rstrip("/"),
                wire_format=wire_format,
                enabled=entry.get("enabled", True),
                headers=dict(entry.get("headers", {})),
                priority=entry.get("priority", 100),
                api_key=entry.get("api_key"),
                fallback_provider=entry.get("fallback_provider"),
            ))

            for model_id, spec in entry.get("models", {}).items():
                models.append(ModelConfig(
                    model_id=model_id,
                    provider_id=provider_id,
                    name=spec.get("name", model_id),
                    input_price_per_token=spec.get("input", 0.0) / PER_MILLION,
                    output_price_per_token=spec.get("output", 0.0) / PER_MILLION,
                    max_tokens=spec.get("max_tokens", 4096),
                    context_window=spec.get("context_window", 8192),
                    is_default=spec.get("default", False),
                    enabled=spec.get("enabled", True),
                ))

        return cls(providers, models)

    def get_provider(self, provider_id: str) -> ProviderConfig:
        """
        Look up an enabled provider.

        Raises:
            ConfigurationError: If the provider is unknown or disabled.
        """
        provider = self._providers.get(provider_id)
        if provider is None or not provider.enabled:
            raise ConfigurationError(
                f"Provider '{provider_id}' not found or disabled",
                provider=provider_id,
            )
        return provider

    def models_for(self, provider_id: str) -> List[ModelConfig]:
        """Enabled models of a provider, in catalog order."""
        return [m for m in self._models.get(provider_id, []) if m.enabled]

    def resolve_model(self, provider_id: str, model_id: Optional[str] = None) -> ModelConfig:
        """
        Pick the model to call.

        Explicit enabled model of this provider, else the default-flagged
        model, else the first enabled one.

        Raises:
            ConfigurationError: If the provider has no enabled models.
        """
        candidates = self.models_for(provider_id)

        if model_id:
            for model in candidates:
                if model.model_id == model_id:
                    return model

        for model in candidates:
            if model.is_default:
                return model

        if candidates:
            return candidates[0]

        raise ConfigurationError(
            f"No valid model found for provider '{provider_id}'",
            provider=provider_id,
            model=model_id,
        )

    def enabled_providers(self) -> List[ProviderConfig]:
        """Enabled providers ordered by priority."""
        enabled = [p for p in self._providers.values() if p.enabled]
        return sorted(enabled, key=lambda p: p.priority)

    def get_api_key(self, provider_id: str) -> Optional[str]:
        """Administered key for a provider, if one is stored."""
        provider = self._providers.get(provider_id)
        if provider is None or not provider.has_stored_key():
            return None
        return provider.api_key

    def __contains__(self, provider_id: str) -> bool:
        return provider_id in self._providers

    def __len__(self) -> int:
        return len(self._providers)
