from enum import Enum

from pydantic import BaseModel, field_serializer

from surfer.conversation import ChatMessage
from surfer.results import ImageResult


class MessageRole(Enum):
    SYSTEM = "system"
    ASSISTANT = "assistant"
    USER = "user"
    TOOL = "tool"


class Message(BaseModel):
    role: MessageRole
    content: str | None = ""

    @field_serializer('role')
    def serialize_role(self, role: MessageRole, _info) -> str:
        return role.value


class ToolCallRequestMessage(Message):
    """Assistant turn carrying its text and every tool call it requested."""
    tool_calls: list

    @field_serializer("tool_calls")
    def serialize_tool_calls(self, tool_calls: list) -> list[dict]:
        return [
            {
                "id": t.id,
                "type": "function",
                "function": {
                    "arguments": t.arguments,
                    "name": t.name
                }
            }
            for t in tool_calls
        ]


class ToolCallResultMessage(Message):
    tool_call_id: str


class ImageMessage(Message):
    """A screenshot shown to the model as a standalone user attachment."""
    image: ImageResult

    def model_dump(self, **kwargs):
        return {
            "role": self.role.value,
            "content": [
                {
                    "type": "image_url",
                    "image_url": {"url": self.image.data_url()},
                }
            ],
        }


def to_transcript(messages: list[ChatMessage]) -> list[Message]:
    """Convert client chat messages into model-facing history.

    Only text is replayed. Tool invocations from earlier requests are
    not, since their call ids belong to a stream that has ended.
    """
    transcript = []
    for m in messages:
        if m.role == "system":
            continue
        text = m.text()
        if not text or not text.strip():
            continue
        role = MessageRole.USER if m.role == "user" else MessageRole.ASSISTANT
        transcript.append(Message(role=role, content=text))
    return transcript
