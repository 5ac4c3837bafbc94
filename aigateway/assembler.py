"""
Conversation assembly.

Decides whether an inbound message gets a reply and, if so, builds the
ordered conversation: system prompt, bounded history, current message.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from aigateway.business import DeviceContext
from aigateway.prompts import render_system_prompt
from aigateway.schemas import AssembledConversation, ConversationTurn, InboundMessage, Role
from aigateway.storage import StorageBackend

logger = logging.getLogger(__name__)


class ConversationAssembler:
    """
    Builds the conversation sent to a provider.

    Args:
        storage: History log to read past turns from.
        clock: Returns the current aware datetime (for tests).
    """

    def __init__(
        self,
        storage: StorageBackend,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.storage = storage
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def should_respond(self, message: InboundMessage, ctx: DeviceContext) -> bool:
        """Gate a message on AI enablement, operating hours and triggers."""
        if not ctx.ai_enabled:
            logger.debug("AI disabled for %s, skipping", ctx.device_id)
            return False

        text = message.text
        if not text.strip():
            logger.debug("No text content for %s, skipping", ctx.device_id)
            return False

        if not ctx.business.is_open(self._clock()):
            logger.debug("Outside operating hours for %s, skipping", ctx.device_id)
            return False

        if ctx.auto_reply or not ctx.trigger_required:
            return True

        lowered = text.lower()
        if any(trigger.lower() in lowered for trigger in ctx.triggers if trigger):
            return True

        logger.debug("No reply trigger matched for %s, skipping", ctx.device_id)
        return False

    def history_window_start(self, ctx: DeviceContext) -> datetime:
        since = self._clock() - timedelta(minutes=ctx.expiry_minutes)
        cleared = ctx.last_memory_cleared_at
        if cleared is not None:
            if cleared.tzinfo is None:
                cleared = cleared.replace(tzinfo=timezone.utc)
            since = max(since, cleared)
        return since

    def assemble(self, message: InboundMessage, ctx: DeviceContext) -> AssembledConversation:
        """
        Build the conversation for one inbound message.

        Returns an empty, non-responding conversation when the message is
        gated out. History is read only when memory or auto-reply is on.
        """
        if not self.should_respond(message, ctx):
            return AssembledConversation(messages=[], should_respond=False)

        messages = [
            ConversationTurn(Role.SYSTEM, render_system_prompt(ctx, is_group=message.is_group)),
        ]

        if ctx.memory_enabled or ctx.auto_reply:
            entries = self.storage.fetch_history(
                ctx.device_id,
                ctx.chat_id,
                since=self.history_window_start(ctx),
                limit=ctx.max_history_length,
            )
            logger.debug("Loaded %d history turns for %s/%s", len(entries), ctx.device_id, ctx.chat_id)
            messages.extend(entry.to_turn() for entry in reversed(entries))

        messages.append(ConversationTurn(Role.USER, message.text))
        return AssembledConversation(messages=messages, should_respond=True)
