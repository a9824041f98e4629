"""Client-visible conversation model.

These are the messages a chat client renders and sends back to the
server with each request. Field aliases follow the camelCase JSON the
wire and the persistence store use.
"""

from __future__ import annotations

import uuid
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from surfer.results import ToolResult


class InvocationState(str, Enum):
    PENDING = "pending"
    RESOLVED = "resolved"
    ERRORED = "errored"


class ToolInvocation(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    tool_call_id: str = Field(alias="toolCallId")
    tool_name: str = Field(alias="toolName")
    args: dict[str, Any] = Field(default_factory=dict)
    state: InvocationState = InvocationState.PENDING
    result: ToolResult | None = None


class TextPart(BaseModel):
    type: Literal["text"] = "text"
    text: str = ""


class ToolInvocationPart(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["tool-invocation"] = "tool-invocation"
    tool_invocation: ToolInvocation = Field(alias="toolInvocation")


Part = Annotated[
    Union[TextPart, ToolInvocationPart], Field(discriminator="type")
]


def new_message_id() -> str:
    return uuid.uuid4().hex


class ChatMessage(BaseModel):
    """One entry of the conversation history.

    ``content`` holds the full text received so far. The text part holds
    what is currently revealed, which may lag behind while a typewriter
    is running.
    """

    id: str = Field(default_factory=new_message_id)
    role: Literal["user", "assistant", "system"]
    content: str = ""
    parts: list[Part] = Field(default_factory=list)

    def text(self) -> str:
        if self.content:
            return self.content
        return "".join(p.text for p in self.parts if isinstance(p, TextPart))

    def tool_invocations(self) -> list[ToolInvocation]:
        return [
            p.tool_invocation
            for p in self.parts
            if isinstance(p, ToolInvocationPart)
        ]

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)
