"""Credential resolution: stored key first, environment second."""

import os
from typing import Callable, Optional, Protocol

from aigateway.config import credential_env_var
from aigateway.errors import CredentialError


class CredentialStore(Protocol):
    """Anything that can return an administered API key for a provider."""

    def get_api_key(self, provider_id: str) -> Optional[str]:
        ...


class CredentialResolver:
    """
    Resolves the API key for a provider.

    Args:
        store: Administered keys (usually the provider registry).
        environ: Environment accessor, ``os.getenv`` by default.
    """

    def __init__(
        self,
        store: Optional[CredentialStore] = None,
        environ: Optional[Callable[[str], Optional[str]]] = None,
    ):
        self.store = store
        self.environ = environ or os.getenv

    def __call__(self, provider_id: str) -> str:
        return self.resolve(provider_id)

    def resolve(self, provider_id: str) -> str:
        """
        Return a usable key.

        Raises:
            CredentialError: If neither the store nor the environment has one.
        """
        if self.store is not None:
            stored = self.store.get_api_key(provider_id)
            if stored and stored.strip():
                return stored.strip()

        env_var = credential_env_var(provider_id)
        from_env = self.environ(env_var)
        if from_env and from_env.strip():
            return from_env.strip()

        raise CredentialError(provider_id, env_var)

    def is_available(self, provider_id: str) -> bool:
        try:
            self.resolve(provider_id)
        except CredentialError:
            return False
        return True
