"""
Error taxonomy for the AI Gateway.

Every error keeps operator detail (provider, device, upstream message) in
its attributes and ``str()``, and exposes a generic ``user_message`` that
the transport layer can show to an end user.
"""

from typing import Optional


GENERIC_USER_MESSAGE = "Sorry, the assistant is unavailable right now. Please try again later."


class GatewayError(Exception):
    """Base class for all gateway errors."""

    user_message: str = GENERIC_USER_MESSAGE


class ConfigurationError(GatewayError):
    """Provider or model is missing or disabled."""

    def __init__(self, message: str, provider: Optional[str] = None, model: Optional[str] = None):
        self.provider = provider
        self.model = model
        super().__init__(message)


class CredentialError(GatewayError):
    """No usable API key in the store or the environment."""

    def __init__(self, provider: str, env_var: Optional[str] = None):
        self.provider = provider
        self.env_var = env_var
        hint = f" or environment variable {env_var}" if env_var else ""
        super().__init__(
            f"API key not configured for provider '{provider}'. "
            f"Set it in the provider store{hint}"
        )


class TransportError(GatewayError):
    """Network failure or timeout while calling a provider."""

    def __init__(self, provider: str, message: str):
        self.provider = provider
        super().__init__(f"Transport error calling '{provider}': {message}")


class UpstreamError(GatewayError):
    """A provider answered with a non-success status or an unreadable body."""

    def __init__(self, provider: str, message: str, status_code: Optional[int] = None):
        self.provider = provider
        self.status_code = status_code
        self.upstream_message = message
        status = f" (HTTP {status_code})" if status_code is not None else ""
        super().__init__(f"Provider '{provider}' returned an error{status}: {message}")


class CostLimitExceeded(GatewayError):
    """Raised by preflight when a device has reached a spend ceiling."""

    user_message = "The assistant has reached its usage limit. A team member will reply soon."

    def __init__(
        self,
        device_id: str,
        period: str,
        spent: float,
        limit: float,
        reason: Optional[str] = None,
    ):
        self.device_id = device_id
        self.period = period
        self.spent = spent
        self.limit = limit
        super().__init__(
            reason
            or f"Device '{device_id}' reached its {period} limit of ${limit:.6f} "
            f"(current: ${spent:.6f})"
        )


class ValidationError(GatewayError, ValueError):
    """Malformed business-context or request input."""

    def __init__(self, message: str, errors: Optional[list] = None):
        self.errors = errors or []
        super().__init__(message)
