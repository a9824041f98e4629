"""Streaming primitives for provider responses.

Providers yield :class:`StreamChunk` objects.  The
:class:`ToolCallAccumulator` reassembles tool calls whose arguments
arrive in fragments across multiple chunks.
"""

from __future__ import annotations

import json
from dataclasses import dataclass


@dataclass
class ToolCallFragment:
    """A fragment of a tool call from a streaming chunk."""

    index: int
    call_id: str | None = None
    name: str | None = None
    arguments_delta: str | None = None


@dataclass
class StreamChunk:
    """Normalised streaming chunk from any provider."""

    content_delta: str | None = None
    tool_call_fragments: list[ToolCallFragment] | None = None
    finish_reason: str | None = None


@dataclass
class ToolCall:
    """A resolved tool call ready for the transcript."""

    id: str = ""
    name: str = ""
    arguments: str = ""

    def parsed_arguments(self) -> dict:
        """Decode the JSON arguments.

        Raises:
            ValueError: If the arguments are not a JSON object.
        """
        if not self.arguments.strip():
            return {}
        args = json.loads(self.arguments)
        if not isinstance(args, dict):
            raise ValueError(f"expected a JSON object, got {type(args).__name__}")
        return args


class ToolCallAccumulator:
    """Assembles complete tool calls from streaming fragments."""

    def __init__(self) -> None:
        self._pending: dict[int, ToolCall] = {}

    def feed(self, fragment: ToolCallFragment) -> None:
        if fragment.index not in self._pending:
            self._pending[fragment.index] = ToolCall()
        tc = self._pending[fragment.index]
        if fragment.call_id:
            tc.id = fragment.call_id
        if fragment.name:
            tc.name = fragment.name
        if fragment.arguments_delta is not None:
            tc.arguments += fragment.arguments_delta

    def finalize(self) -> list[ToolCall]:
        """Return completed tool calls in index order."""
        return [self._pending[i] for i in sorted(self._pending)]


class ToolCallIds:
    """Keeps tool-call ids unique for the lifetime of one stream.

    Providers that omit ids, or reuse them across turns, get a fresh
    ``call_<n>`` id instead.
    """

    def __init__(self) -> None:
        self._seen: set[str] = set()
        self._counter = 0

    def assign(self, call: ToolCall) -> ToolCall:
        if not call.id or call.id in self._seen:
            call.id = self._next()
        self._seen.add(call.id)
        return call

    def _next(self) -> str:
        while True:
            self._counter += 1
            candidate = f"call_{self._counter}"
            if candidate not in self._seen:
                return candidate
