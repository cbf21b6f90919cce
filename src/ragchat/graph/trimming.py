"""
History trimming to a token budget.
"""

import json
import math
from typing import Callable, Optional

from langchain_core.messages import BaseMessage, trim_messages
from langchain_core.runnables import Runnable

TokenCounter = Callable[[list[BaseMessage]], int]


def _message_text(message: BaseMessage) -> str:
    if isinstance(message.content, str):
        return message.content
    return json.dumps(message.content, ensure_ascii=False)


def approximate_token_counter(chars_per_token: float = 3.0) -> TokenCounter:
    """
    Estimate tokens as characters divided by a constant.

    Roughly 2 characters per token for Chinese and 4 for English; 3 suits a
    mix of both. Messages are joined with a space before counting.
    """
    if chars_per_token <= 0:
        raise ValueError("chars_per_token must be positive")

    def count(messages: list[BaseMessage]) -> int:
        text = " ".join(_message_text(m) for m in messages)
        return math.ceil(len(text) / chars_per_token)

    return count


def create_trimmer(max_tokens: int = 1000, token_counter: Optional[TokenCounter] = None) -> Runnable:
    """
    Keep the most recent messages that fit in ``max_tokens``.

    A leading system message is always kept, and the oldest message that no
    longer fits may be cut down to its last lines instead of being dropped.

    Returns:
        Runnable taking and returning a list of messages
    """
    return trim_messages(
        max_tokens=max_tokens,
        strategy="last",
        token_counter=token_counter or approximate_token_counter(),
        include_system=True,
        allow_partial=True,
    )
