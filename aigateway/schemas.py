"""
Data schemas for the AI Gateway.

Request, result and response shapes that flow between components.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Union


class Role(str, Enum):
    """Conversation roles."""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class Direction(str, Enum):
    """Direction of a stored chat message relative to the business."""
    INBOUND = "inbound"
    OUTBOUND = "outbound"


@dataclass(frozen=True)
class ConversationTurn:
    """One message of an assembled conversation."""
    role: Role
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role.value, "content": self.content}

    @classmethod
    def coerce(cls, value: Union["ConversationTurn", dict]) -> "ConversationTurn":
        if isinstance(value, ConversationTurn):
            return value
        return cls(role=Role(value["role"]), content=str(value["content"]))


@dataclass(frozen=True)
class HistoryEntry:
    """A message in the external chat history log."""
    device_id: str
    chat_id: str
    direction: Direction
    content: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_turn(self) -> ConversationTurn:
        role = Role.USER if self.direction == Direction.INBOUND else Role.ASSISTANT
        return ConversationTurn(role=role, content=self.content)


@dataclass(frozen=True)
class InboundMessage:
    """
    Message delivered by the messaging transport.

    ``content`` is either plain text or a mapping with a ``text`` key.
    """
    content: Union[str, dict, None]
    type: str = "text"
    sender: str = ""
    is_group: bool = False

    @property
    def text(self) -> str:
        if isinstance(self.content, dict):
            return str(self.content.get("text") or "")
        if isinstance(self.content, str):
            return self.content
        return ""


@dataclass
class CompletionOptions:
    """Options for a single chat completion."""
    provider: str
    model: Optional[str] = None
    max_tokens: int = 1000
    temperature: float = 0.7
    stream: bool = False


@dataclass(frozen=True)
class Usage:
    """Token accounting in canonical field names."""
    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


@dataclass
class CompletionResult:
    """Canonical chat-completion result, identical for every wire format."""
    content: str
    finish_reason: Optional[str]
    usage: Usage
    provider: str
    model: str
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass
class AssembledConversation:
    """Output of the conversation assembler."""
    messages: list[ConversationTurn]
    should_respond: bool

    def to_wire(self) -> list[dict[str, str]]:
        return [turn.to_dict() for turn in self.messages]


@dataclass
class PreflightResult:
    """Outcome of a spend check."""
    allowed: bool
    reason: Optional[str] = None
    period: Optional[str] = None  # "daily", "monthly" or "ledger" when blocked
    daily_cost: float = 0.0
    monthly_cost: float = 0.0


@dataclass
class GatewayResponse:
    """
    Response handed back to the messaging transport.

    Only ``content``, ``image_id`` and ``needs_handover`` matter for delivery;
    the rest is accounting metadata.
    """
    content: Optional[str]
    image_id: Optional[str] = None
    needs_handover: bool = False
    should_respond: bool = True
    provider: Optional[str] = None
    model: Optional[str] = None
    usage: Optional[Usage] = None
    cost_usd: float = 0.0
    response_time_ms: int = 0

    @classmethod
    def silent(cls) -> "GatewayResponse":
        """A response that tells the transport not to reply."""
        return cls(content=None, should_respond=False)
