"""
Typed events emitted while a reply is being streamed.
"""

from typing import AsyncIterable, Literal

from pydantic import BaseModel

from ragchat.core.message import Message


class StreamEvent(BaseModel):
    """A single event of a streamed reply.

    ``content_delta`` events carry a text fragment in ``delta``; the final
    ``message_end`` event carries the complete assistant ``message``.
    """
    type: Literal["content_delta", "message_end"]
    delta: str = ""
    message: Message | None = None
    node: str | None = None

    @classmethod
    def content_delta(cls, delta: str, node: str | None = None) -> "StreamEvent":
        return cls(type="content_delta", delta=delta, node=node)

    @classmethod
    def message_end(cls, message: Message, node: str | None = None) -> "StreamEvent":
        return cls(type="message_end", message=message, node=node)


async def collect_text(events: AsyncIterable[StreamEvent]) -> str:
    """Concatenate the content deltas of an event stream."""
    pieces = []
    async for event in events:
        if event.type == "content_delta" and event.delta:
            pieces.append(event.delta)
    return "".join(pieces)
