"""
AI Gateway: the main entry point.

Ties assembly, spend control, the provider call and post-processing
together for one inbound message.
"""

import logging
import time
from datetime import datetime
from typing import Callable, Optional

import httpx

from aigateway.adapter import ProtocolAdapter
from aigateway.assembler import ConversationAssembler
from aigateway.business import DeviceContext
from aigateway.config import GatewaySettings
from aigateway.cost_control import CostGovernor
from aigateway.errors import TransportError, UpstreamError
from aigateway.postprocess import ResponsePostProcessor
from aigateway.registry import ProviderRegistry
from aigateway.schemas import CompletionOptions, GatewayResponse, InboundMessage
from aigateway.storage import InMemoryStorage, SQLiteStorage, StorageBackend

logger = logging.getLogger(__name__)


class Gateway:
    """
    Reply pipeline for inbound WhatsApp messages.

    Example:
        ```python
        from aigateway import Gateway, DeviceContext, InboundMessage

        gateway = Gateway.from_settings()
        ctx = DeviceContext(device_id="device-1", chat_id="628123@s.whatsapp.net")
        response = gateway.process(InboundMessage("harga Honda Civic berapa?"), ctx)

        if response.should_respond:
            send(response.content, image=response.image_id)
        ```
    """

    def __init__(
        self,
        adapter: ProtocolAdapter,
        governor: CostGovernor,
        assembler: ConversationAssembler,
        postprocessor: Optional[ResponsePostProcessor] = None,
    ):
        self.adapter = adapter
        self.governor = governor
        self.assembler = assembler
        self.postprocessor = postprocessor or ResponsePostProcessor()

    @property
    def registry(self) -> ProviderRegistry:
        return self.adapter.registry

    def process(self, message: InboundMessage, ctx: DeviceContext) -> GatewayResponse:
        """
        Produce the reply for one inbound message.

        Returns:
            GatewayResponse; ``GatewayResponse.silent()`` when the message is gated out.

        Raises:
            CostLimitExceeded: If the device is over a spend ceiling. Nothing is spent.
            ConfigurationError: If the provider or model is not usable.
            CredentialError: If no API key is available.
            TransportError: If the provider could not be reached (recorded as a failure).
            UpstreamError: If the provider returned an error (recorded as a failure).
        """
        conversation = self.assembler.assemble(message, ctx)
        if not conversation.should_respond:
            return GatewayResponse.silent()

        business = ctx.business
        self.governor.check(ctx.device_id, ctx.limits, business.timezone)

        model = self.registry.resolve_model(ctx.provider, ctx.model)
        options = CompletionOptions(
            provider=ctx.provider,
            model=model.model_id,
            max_tokens=ctx.max_tokens,
            temperature=ctx.temperature,
        )

        start = time.monotonic()
        try:
            result = self.adapter.chat_completion(conversation.messages, options)
        except (TransportError, UpstreamError) as e:
            elapsed_ms = int((time.monotonic() - start) * 1000)
            self._record_failure(ctx, model.model_id, e, elapsed_ms, message.text)
            raise
        elapsed_ms = int((time.monotonic() - start) * 1000)

        record = self.governor.record_success(
            ctx.device_id,
            result,
            model,
            response_time_ms=elapsed_ms,
            chat_id=ctx.chat_id,
            message=message.text,
        )

        try:
            self.governor.check_and_alert(ctx.device_id, ctx.limits, business.timezone)
        except Exception:  # alerting never blocks a delivered reply
            logger.exception("Cost alert check failed for %s", ctx.device_id)

        response = self.postprocessor.post_process(result.content, message.text, ctx)
        response.provider = result.provider
        response.model = result.model
        response.usage = result.usage
        response.cost_usd = record.cost_usd
        response.response_time_ms = elapsed_ms
        return response

    def _record_failure(
        self,
        ctx: DeviceContext,
        model_id: str,
        error: Exception,
        elapsed_ms: int,
        text: str,
    ) -> None:
        try:
            self.governor.record_failure(
                ctx.device_id,
                ctx.provider,
                model_id,
                error,
                response_time_ms=elapsed_ms,
                chat_id=ctx.chat_id,
                message=text,
            )
        except Exception:  # the provider error is the one to surface
            logger.exception("Could not record failed call for %s", ctx.device_id)

    def close(self) -> None:
        self.adapter.close()

    @classmethod
    def from_settings(
        cls,
        settings: Optional[GatewaySettings] = None,
        storage: Optional[StorageBackend] = None,
        registry: Optional[ProviderRegistry] = None,
        http_client: Optional[httpx.Client] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> "Gateway":
        """
        Create a Gateway with default components.

        Args:
            settings: Gateway settings. Read from the environment if not provided.
            storage: Ledger/alert/history store. SQLite when ``settings.db_path``
                is set, in-memory otherwise.
            registry: Provider catalog. Built from config if not provided.
            http_client: Shared HTTP client for provider calls.
            clock: Current-time source shared by all components.

        Returns:
            Configured Gateway instance.
        """
        settings = settings or GatewaySettings.from_env()
        if storage is None:
            storage = SQLiteStorage(settings.db_path) if settings.db_path else InMemoryStorage()

        adapter = ProtocolAdapter(
            registry or ProviderRegistry.from_catalog(),
            http_client=http_client,
            timeout_s=settings.request_timeout_s,
        )
        governor = CostGovernor(
            storage,
            timezone_name=settings.timezone,
            fail_open_on_ledger_error=settings.fail_open_on_ledger_error,
            clock=clock,
        )
        return cls(
            adapter=adapter,
            governor=governor,
            assembler=ConversationAssembler(storage, clock=clock),
            postprocessor=ResponsePostProcessor(settings.scoring),
        )
