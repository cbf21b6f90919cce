"""
Message types for conversation threads.
"""

from enum import Enum
from typing import Any, Literal, Union

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from pydantic import BaseModel, Field


class Role(str, Enum):
    """Message role in conversation."""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class TextContent(BaseModel):
    """Text content part."""
    type: Literal["text"] = "text"
    text: str


class ImageContent(BaseModel):
    """Image content part."""
    type: Literal["image"] = "image"
    source: dict[str, Any] = Field(
        default_factory=dict,
        description="Image source with type (base64/url) and data"
    )


ContentPart = Union[TextContent, ImageContent]
MessageContent = Union[str, list[ContentPart]]


def extract_text(content: MessageContent | None) -> str:
    """
    Flatten message content into plain text.

    Plain strings are returned unchanged; rich content keeps only its text
    parts, concatenated in order.
    """
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    return "".join(
        part.text for part in content if isinstance(part, TextContent)
    )


class Message(BaseModel):
    """A message in a conversation thread."""
    role: Role
    content: MessageContent
    name: str | None = None

    @classmethod
    def system(cls, content: str) -> "Message":
        """Create a system message."""
        return cls(role=Role.SYSTEM, content=content)

    @classmethod
    def user(cls, content: MessageContent) -> "Message":
        """Create a user message."""
        return cls(role=Role.USER, content=content)

    @classmethod
    def assistant(cls, content: MessageContent) -> "Message":
        """Create an assistant message."""
        return cls(role=Role.ASSISTANT, content=content)

    @property
    def text(self) -> str:
        """Plain-text view of the content."""
        return extract_text(self.content)

    def with_content(self, content: MessageContent) -> "Message":
        """Return a copy of this message carrying different content."""
        return self.model_copy(update={"content": content})

    def to_api_format(self) -> dict[str, Any]:
        """Convert to chat-completions compatible format."""
        result: dict[str, Any] = {"role": self.role.value}
        if isinstance(self.content, str):
            result["content"] = self.content
        else:
            parts = []
            for part in self.content:
                if isinstance(part, TextContent):
                    parts.append({"type": "text", "text": part.text})
                elif isinstance(part, ImageContent):
                    parts.append({
                        "type": "image_url",
                        "image_url": {"url": part.source.get("url") or part.source.get("data", "")}
                    })
            result["content"] = parts
        if self.name:
            result["name"] = self.name
        return result


_LANGCHAIN_TYPES = {
    Role.SYSTEM: SystemMessage,
    Role.USER: HumanMessage,
    Role.ASSISTANT: AIMessage,
}

_LANGCHAIN_ROLES = {
    "system": Role.SYSTEM,
    "human": Role.USER,
    "ai": Role.ASSISTANT,
}


def to_langchain(message: Message) -> BaseMessage:
    """Convert a message into the langchain type stored in graph state."""
    if isinstance(message.content, str):
        content: Any = message.content
    else:
        content = message.to_api_format()["content"]
    return _LANGCHAIN_TYPES[message.role](content=content, name=message.name)


def from_langchain(message: BaseMessage) -> Message:
    """Convert a langchain message back; tool and other roles read as assistant."""
    role = _LANGCHAIN_ROLES.get(message.type, Role.ASSISTANT)
    if isinstance(message.content, str):
        return Message(role=role, content=message.content, name=message.name)

    parts: list[ContentPart] = []
    for block in message.content:
        if isinstance(block, str):
            parts.append(TextContent(text=block))
        elif block.get("type") == "text":
            parts.append(TextContent(text=block.get("text", "")))
        elif block.get("type") == "image_url":
            image_url = block.get("image_url") or {}
            url = image_url.get("url", "") if isinstance(image_url, dict) else str(image_url)
            parts.append(ImageContent(source={"type": "url", "url": url}))
    return Message(role=role, content=parts, name=message.name)
