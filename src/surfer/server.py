"""HTTP surface for the agent loop.

``POST /api/chat`` accepts ``{"messages": [...], "sandboxId": ...}`` and
answers with an uncached ``text/plain`` body of protocol frames, written
as the loop produces them. ``POST /api/desktop`` hands out a live desktop
and ``DELETE /api/desktop/{id}`` shuts one down.
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import AsyncIterator
from functools import partial

from fastapi import FastAPI
from fastapi.responses import JSONResponse, Response, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from surfer import __version__
from surfer.agent import Agent
from surfer.config import Settings, configure_logging
from surfer.conversation import ChatMessage
from surfer.desktop import (
    DesktopFactory,
    DesktopKiller,
    connect_desktop,
    desktop_url,
    kill_desktop,
)
from surfer.executor import ToolExecutor
from surfer.message import Message, MessageRole, to_transcript
from surfer.protocol import ErrorFrame, Frame, encode_frame
from surfer.provider import build_provider
from surfer.runner import Runner

logger = logging.getLogger(__name__)

NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}


class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    messages: list[ChatMessage] = Field(default_factory=list)
    sandbox_id: str | None = Field(default=None, alias="sandboxId")


class DesktopRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    sandbox_id: str | None = Field(default=None, alias="sandboxId")


async def frame_stream(frames: AsyncIterator[Frame]) -> AsyncIterator[str]:
    """Encode a frame iterator into protocol lines."""
    try:
        async for frame in frames:
            yield encode_frame(frame)
    except asyncio.CancelledError:
        logger.info("Client disconnected; stopping agent loop")
        raise
    except Exception as e:
        logger.exception("Agent loop failed")
        yield encode_frame(ErrorFrame(message=str(e) or type(e).__name__))


def create_app(
    settings: Settings | None = None,
    agent: Agent | None = None,
    desktop_factory: DesktopFactory | None = None,
    desktop_killer: DesktopKiller | None = None,
) -> FastAPI:
    """Build the application.

    Args:
        settings: Configuration, read from the environment if omitted.
        agent: Agent to use for every request. Built from *settings* on
            first request if omitted.
        desktop_factory: Connects a sandbox id to a desktop. Defaults to
            the E2B connect-or-create.
        desktop_killer: Shuts a sandbox down by id. Defaults to the E2B
            kill.
    """
    settings = settings or Settings.from_env()
    if desktop_factory is None:
        desktop_factory = partial(connect_desktop, api_key=settings.e2b_api_key)
    if desktop_killer is None:
        desktop_killer = partial(kill_desktop, api_key=settings.e2b_api_key)
    app = FastAPI(title="Surfer", version=__version__)
    app.state.settings = settings
    app.state.agent = agent

    def get_agent() -> Agent | None:
        if app.state.agent is None and settings.api_key:
            provider = build_provider(
                settings.provider,
                api_key=settings.api_key,
                temperature=settings.temperature,
                top_p=settings.top_p,
                max_tokens=settings.max_tokens,
            )
            app.state.agent = Agent(model=settings.model, provider=provider)
        return app.state.agent

    @app.post("/api/chat")
    async def chat(request: ChatRequest):
        current_agent = get_agent()
        if current_agent is None:
            return JSONResponse(
                {"error": f"{settings.api_key_env} is required"},
                status_code=400,
            )

        history = to_transcript(request.messages)
        if not history:
            history.append(Message(role=MessageRole.USER, content="Hello"))
        logger.info(
            f"Chat request with {len(history)} messages, "
            f"sandbox {request.sandbox_id}"
        )

        executor = ToolExecutor(
            request.sandbox_id,
            desktop_factory,
            command_timeout=settings.command_timeout,
        )
        runner = Runner(max_turns=settings.max_turns)
        return StreamingResponse(
            frame_stream(runner.iter(current_agent, executor, history)),
            media_type="text/plain; charset=utf-8",
            headers=NO_CACHE_HEADERS,
        )

    @app.post("/api/desktop")
    async def desktop(request: DesktopRequest):
        try:
            return await desktop_url(request.sandbox_id, desktop_factory)
        except Exception as e:
            logger.exception("Failed to get a desktop")
            return JSONResponse({"error": str(e)}, status_code=500)

    @app.delete("/api/desktop/{sandbox_id}", status_code=204)
    async def delete_desktop(sandbox_id: str):
        await desktop_killer(sandbox_id)
        return Response(status_code=204)

    return app


def main() -> None:
    import uvicorn

    settings = Settings.from_env()
    configure_logging(settings.log_level)
    uvicorn.run(
        create_app(settings),
        host=os.environ.get("SURF_HOST", "0.0.0.0"),
        port=int(os.environ.get("SURF_PORT", "8000")),
    )


if __name__ == "__main__":
    main()
