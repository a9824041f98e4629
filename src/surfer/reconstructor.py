"""Rebuilds conversation state from decoded frames.

One :class:`StreamReconstructor` consumes the frames of one response and
projects them onto a single assistant message in the history. Tool
results are matched to their calls through an arena keyed by call id.
"""

from __future__ import annotations

import logging
from typing import Callable

from surfer.conversation import (
    ChatMessage,
    InvocationState,
    TextPart,
    ToolInvocation,
    ToolInvocationPart,
    new_message_id,
)
from surfer.protocol import (
    ErrorFrame,
    FinishFrame,
    Frame,
    ImageFrame,
    TextDelta,
    ToolCallFrame,
    ToolResultFrame,
)

logger = logging.getLogger(__name__)

TextSink = Callable[[str, str], None]


class StreamError(Exception):
    """The server reported a fatal error in the stream."""


class StreamReconstructor:
    """Applies frames, in arrival order, to a conversation history.

    The assistant message is appended to *history* only when the first
    text or tool-call frame arrives. Text is accumulated in full; when a
    *text_sink* is given it receives ``(message_id, full_text)`` and is
    responsible for what the text part displays (see
    :class:`~surfer.typewriter.TypewriterScheduler`), otherwise the text
    part is written directly.

    Args:
        history: Conversation to append to.
        message_id: Id for the assistant message, generated if omitted.
        text_sink: Receiver for accumulated text.
    """

    def __init__(
        self,
        history: list[ChatMessage],
        message_id: str | None = None,
        text_sink: TextSink | None = None,
    ):
        self.history = history
        self.message_id = message_id or new_message_id()
        self.text_sink = text_sink
        self.message: ChatMessage | None = None
        self.text = ""
        self.finished = False
        self.finish_reason: str | None = None
        self._text_part: TextPart | None = None
        self._invocations: dict[str, ToolInvocation] = {}

    @property
    def invocations(self) -> dict[str, ToolInvocation]:
        return dict(self._invocations)

    def apply(self, frame: Frame) -> None:
        """Apply one frame.

        Raises:
            StreamError: On an error frame. The caller should stop reading.
        """
        if isinstance(frame, TextDelta):
            self._on_text(frame)
        elif isinstance(frame, ToolCallFrame):
            self._on_tool_call(frame)
        elif isinstance(frame, ToolResultFrame):
            self._on_tool_result(frame)
        elif isinstance(frame, FinishFrame):
            self.finished = True
            self.finish_reason = frame.finish_reason
        elif isinstance(frame, ErrorFrame):
            raise StreamError(frame.message)
        elif isinstance(frame, ImageFrame):
            # Images arrive as tool results; the standalone form is unused.
            logger.debug(f"Ignoring legacy image frame with {len(frame.items)} items")

    def _ensure_message(self) -> ChatMessage:
        if self.message is None:
            self.message = ChatMessage(id=self.message_id, role="assistant")
            self.history.append(self.message)
        return self.message

    def _on_text(self, frame: TextDelta) -> None:
        if not frame.text:
            return
        message = self._ensure_message()
        if self._text_part is None:
            self._text_part = TextPart()
            message.parts.append(self._text_part)
        self.text += frame.text
        message.content = self.text
        if self.text_sink is not None:
            self.text_sink(self.message_id, self.text)
        else:
            self._text_part.text = self.text

    def _on_tool_call(self, frame: ToolCallFrame) -> None:
        if frame.tool_call_id in self._invocations:
            logger.warning(f"Duplicate tool call id {frame.tool_call_id}; ignoring")
            return
        message = self._ensure_message()
        invocation = ToolInvocation(
            tool_call_id=frame.tool_call_id,
            tool_name=frame.tool_name,
            args=frame.args,
        )
        message.parts.append(ToolInvocationPart(tool_invocation=invocation))
        self._invocations[frame.tool_call_id] = invocation

    def _on_tool_result(self, frame: ToolResultFrame) -> None:
        invocation = self._invocations.get(frame.tool_call_id)
        if invocation is None:
            logger.warning(f"Result for unknown tool call {frame.tool_call_id}")
            return
        invocation.state = (
            InvocationState.ERRORED if frame.is_error else InvocationState.RESOLVED
        )
        invocation.result = frame.result

    def set_revealed(self, text: str) -> None:
        """Show *text* as the message's visible text."""
        if self._text_part is not None:
            self._text_part.text = text
