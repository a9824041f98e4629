"""Line-delimited frame protocol shared by the server and the client.

Every frame is one line ``<tag>:<json>\\n``:

=====  ===========  ==============================================
Tag    Frame        Payload
=====  ===========  ==============================================
``0``  text delta   JSON string
``9``  tool call    ``{"toolCallId", "toolName", "args"}``
``10`` tool result  ``{"toolCallId", "result"[, "isError"]}``
``2``  image        ``[{"data", "mimeType"}, ...]``
``d``  finish       ``{"finishReason"}``
``3``  error        JSON string
=====  ===========  ==============================================

A tool result is either a plain string or ``{"type": "image", "data"}``.
The server encodes with :func:`encode_frame`; the client feeds transport
chunks to a :class:`FrameDecoder`.
"""

from __future__ import annotations

import codecs
import json
import logging
from dataclasses import dataclass, field
from typing import Any

from surfer.results import ImageResult, TextResult

logger = logging.getLogger(__name__)

TEXT_TAG = "0"
TOOL_CALL_TAG = "9"
TOOL_RESULT_TAG = "10"
IMAGE_TAG = "2"
FINISH_TAG = "d"
ERROR_TAG = "3"


class ProtocolDecodeError(ValueError):
    """A line could not be decoded into a frame."""


@dataclass
class Frame:
    """Base for all protocol frames."""


@dataclass
class TextDelta(Frame):
    text: str = ""


@dataclass
class ToolCallFrame(Frame):
    """The model requested a tool; emitted before the tool runs."""

    tool_call_id: str = ""
    tool_name: str = ""
    args: dict = field(default_factory=dict)


@dataclass
class ToolResultFrame(Frame):
    tool_call_id: str = ""
    result: TextResult | ImageResult = field(
        default_factory=lambda: TextResult(text="")
    )
    is_error: bool = False


@dataclass
class ImageFrame(Frame):
    """Legacy standalone image array. Decoded but never emitted."""

    items: list[dict] = field(default_factory=list)


@dataclass
class FinishFrame(Frame):
    finish_reason: str = "stop"


@dataclass
class ErrorFrame(Frame):
    message: str = ""


def result_to_wire(result: TextResult | ImageResult) -> Any:
    if isinstance(result, ImageResult):
        return {"type": "image", "data": result.data}
    return result.text


def result_from_wire(value: Any) -> TextResult | ImageResult:
    if isinstance(value, dict) and value.get("type") == "image":
        data = value.get("data")
        if not isinstance(data, str):
            raise ProtocolDecodeError("image result without data")
        return ImageResult(data=data)
    if isinstance(value, str):
        return TextResult(text=value)
    # Anything else the server produced is shown as its JSON text.
    return TextResult(text=json.dumps(value))


def _dumps(payload: Any) -> str:
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)


def encode_frame(frame: Frame) -> str:
    """Encode *frame* as one newline-terminated protocol line."""
    if isinstance(frame, TextDelta):
        return f"{TEXT_TAG}:{_dumps(frame.text)}\n"
    if isinstance(frame, ToolCallFrame):
        payload = {
            "toolCallId": frame.tool_call_id,
            "toolName": frame.tool_name,
            "args": frame.args,
        }
        return f"{TOOL_CALL_TAG}:{_dumps(payload)}\n"
    if isinstance(frame, ToolResultFrame):
        payload = {
            "toolCallId": frame.tool_call_id,
            "result": result_to_wire(frame.result),
        }
        if frame.is_error:
            payload["isError"] = True
        return f"{TOOL_RESULT_TAG}:{_dumps(payload)}\n"
    if isinstance(frame, ImageFrame):
        return f"{IMAGE_TAG}:{_dumps(frame.items)}\n"
    if isinstance(frame, FinishFrame):
        return f"{FINISH_TAG}:{_dumps({'finishReason': frame.finish_reason})}\n"
    if isinstance(frame, ErrorFrame):
        return f"{ERROR_TAG}:{_dumps(frame.message)}\n"
    raise TypeError(f"cannot encode {type(frame).__name__}")


def _require(payload: Any, key: str, kind: type) -> Any:
    if not isinstance(payload, dict) or not isinstance(payload.get(key), kind):
        raise ProtocolDecodeError(f"missing or invalid {key!r}")
    return payload[key]


def decode_line(line: str) -> Frame:
    """Decode a single line (without its terminator) into a frame.

    Raises:
        ProtocolDecodeError: If the line has no tag, an unknown tag, or a
            payload that does not match its tag.
    """
    tag, sep, body = line.partition(":")
    if not sep or not body:
        raise ProtocolDecodeError(f"not a frame: {line[:80]!r}")
    try:
        payload = json.loads(body)
    except json.JSONDecodeError as e:
        raise ProtocolDecodeError(f"invalid JSON for tag {tag!r}: {e}") from e

    if tag == TEXT_TAG:
        if not isinstance(payload, str):
            raise ProtocolDecodeError("text delta is not a string")
        return TextDelta(text=payload)
    if tag == TOOL_CALL_TAG:
        args = payload.get("args") if isinstance(payload, dict) else None
        return ToolCallFrame(
            tool_call_id=_require(payload, "toolCallId", str),
            tool_name=_require(payload, "toolName", str),
            args=args if isinstance(args, dict) else {},
        )
    if tag == TOOL_RESULT_TAG:
        if not isinstance(payload, dict) or "result" not in payload:
            raise ProtocolDecodeError("tool result without 'result'")
        return ToolResultFrame(
            tool_call_id=_require(payload, "toolCallId", str),
            result=result_from_wire(payload["result"]),
            is_error=bool(payload.get("isError", False)),
        )
    if tag == IMAGE_TAG:
        if not isinstance(payload, list):
            raise ProtocolDecodeError("image frame is not an array")
        return ImageFrame(items=[i for i in payload if isinstance(i, dict)])
    if tag == FINISH_TAG:
        reason = payload.get("finishReason") if isinstance(payload, dict) else None
        return FinishFrame(finish_reason=str(reason or "stop"))
    if tag == ERROR_TAG:
        message = payload if isinstance(payload, str) else json.dumps(payload)
        return ErrorFrame(message=message)
    raise ProtocolDecodeError(f"unknown tag {tag!r}")


class FrameDecoder:
    """Incremental decoder for a chunked frame stream.

    Chunks may split lines (and UTF-8 sequences) at any byte. Complete
    lines are decoded as soon as their terminator arrives; only the
    trailing fragment is held back until the next chunk.
    """

    def __init__(self) -> None:
        self._text = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self.skipped = 0

    def feed(self, chunk: bytes | str) -> list[Frame]:
        if isinstance(chunk, bytes):
            chunk = self._text.decode(chunk)
        self._buffer += chunk
        *lines, self._buffer = self._buffer.split("\n")
        return self._decode_lines(lines)

    def flush(self) -> list[Frame]:
        """Decode whatever is left once the stream has ended."""
        rest = self._buffer + self._text.decode(b"", final=True)
        self._buffer = ""
        return self._decode_lines([rest])

    def _decode_lines(self, lines: list[str]) -> list[Frame]:
        frames = []
        for line in lines:
            line = line.rstrip("\r")
            if not line.strip():
                continue
            try:
                frames.append(decode_line(line))
            except ProtocolDecodeError as e:
                self.skipped += 1
                logger.warning(f"Skipping stream line {line[:80]!r}: {e}")
        return frames


def decode_frames(text: str) -> list[Frame]:
    """Decode a complete buffer of frames, skipping malformed lines."""
    decoder = FrameDecoder()
    return decoder.feed(text) + decoder.flush()
