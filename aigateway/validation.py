"""
Input validation for the AI Gateway.

Validates completion inputs before any network call is made.
"""

from typing import Sequence

from aigateway.errors import ValidationError
from aigateway.schemas import CompletionOptions, ConversationTurn


MAX_OUTPUT_TOKENS = 128_000
MIN_TEMPERATURE = 0.0
MAX_TEMPERATURE = 2.0


def validate_messages(messages: Sequence[ConversationTurn]) -> None:
    """
    Validate a conversation before sending it.

    Raises:
        ValidationError: If the conversation is empty or has no user turn.
    """
    if not messages:
        raise ValidationError("messages cannot be empty")

    if not any(m.role.value != "system" for m in messages):
        raise ValidationError("messages must contain at least one non-system turn")


def validate_options(options: CompletionOptions) -> None:
    """
    Validate completion options.

    Raises:
        ValidationError: If any option is out of range.
    """
    if not options.provider or not str(options.provider).strip():
        raise ValidationError("provider is required")

    if not isinstance(options.max_tokens, int) or options.max_tokens <= 0:
        raise ValidationError(f"max_tokens must be a positive integer, got {options.max_tokens!r}")

    if options.max_tokens > MAX_OUTPUT_TOKENS:
        raise ValidationError(
            f"max_tokens too large: {options.max_tokens:,} (max: {MAX_OUTPUT_TOKENS:,})"
        )

    if not isinstance(options.temperature, (int, float)):
        raise ValidationError(
            f"temperature must be a number, got {type(options.temperature).__name__}"
        )

    if options.temperature < MIN_TEMPERATURE or options.temperature > MAX_TEMPERATURE:
        raise ValidationError(
            f"temperature must be between {MIN_TEMPERATURE} and {MAX_TEMPERATURE}, "
            f"got {options.temperature}"
        )

    if options.stream:
        raise ValidationError("streaming responses are not supported")
