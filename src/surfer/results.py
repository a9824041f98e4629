"""Tool results.

A tool call resolves to exactly one of two shapes: a line of text, or a
captured image. Both sides of the wire use these models instead of
checking the structure of the payload at each use site.
"""

from __future__ import annotations

import base64
import secrets
import time
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field


class TextResult(BaseModel):
    """A human-readable tool outcome (or error description)."""

    type: Literal["text"] = "text"
    text: str

    def __str__(self) -> str:
        return self.text


class ImageResult(BaseModel):
    """A captured image.

    ``data`` holds the base64-encoded bytes so the model serializes the
    same way through JSON and through Python dumps. ``timestamp`` and
    ``nonce`` make two visually identical captures distinct.
    """

    type: Literal["image"] = "image"
    data: str
    mime_type: str = "image/png"
    timestamp: int | None = None
    nonce: str | None = None

    @classmethod
    def from_bytes(cls, raw: bytes, mime_type: str = "image/png") -> "ImageResult":
        return cls(
            data=base64.b64encode(raw).decode("ascii"),
            mime_type=mime_type,
            timestamp=int(time.time() * 1000),
            nonce=secrets.token_hex(4),
        )

    @property
    def raw(self) -> bytes:
        return base64.b64decode(self.data)

    def data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.data}"

    def __str__(self) -> str:
        return f"[image {self.mime_type}, {len(self.data)} base64 chars]"


ToolResult = Annotated[
    Union[TextResult, ImageResult], Field(discriminator="type")
]
