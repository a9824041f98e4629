"""Client-side chat session.

:class:`ChatSession` ties one conversation to the agent server: it posts
the history, decodes the streamed frames into the history as they
arrive, paces the assistant's text through a typewriter, and saves
messages to an optional store without ever waiting on it.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Literal

import httpx

from surfer.conversation import ChatMessage, TextPart
from surfer.persistence import MessageStore
from surfer.protocol import FrameDecoder
from surfer.reconstructor import StreamReconstructor
from surfer.typewriter import INTERVAL, TypewriterScheduler

logger = logging.getLogger(__name__)

Status = Literal["ready", "submitted", "streaming", "error"]


class ChatSession:
    """One user's conversation with the agent server.

    Args:
        api_url: URL of the server's chat endpoint.
        sandbox_id: Sandbox the agent should act on.
        store: Optional message store; failures are logged, never raised.
        client: HTTP client to use. One is created (and closed by
            :meth:`close`) if omitted.
        typewriter_interval: Seconds per revealed character.
        on_error: Called with the exception when a request fails.
        desktop_url: URL of the server's desktop endpoint. Defaults to
            ``desktop`` next to *api_url*.
    """

    def __init__(
        self,
        api_url: str,
        sandbox_id: str | None = None,
        store: MessageStore | None = None,
        client: httpx.AsyncClient | None = None,
        typewriter_interval: float = INTERVAL,
        on_error: Callable[[Exception], None] | None = None,
        desktop_url: str | None = None,
    ):
        self.api_url = api_url
        self.desktop_url = desktop_url or str(httpx.URL(api_url).join("desktop"))
        self.stream_url: str | None = None
        self.sandbox_id = sandbox_id
        self.store = store
        self.on_error = on_error
        self.messages: list[ChatMessage] = []
        self.status: Status = "ready"
        self.error: Exception | None = None
        self.session_id: str | None = None
        self.typewriter = TypewriterScheduler(self._on_reveal, typewriter_interval)

        self._client = client
        self._owns_client = client is None
        self._reconstructor: StreamReconstructor | None = None
        self._request_task: asyncio.Task | None = None
        self._aborted = False
        self._pending_saves: set[asyncio.Task] = set()

    async def __aenter__(self) -> "ChatSession":
        await self.load()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def load(self) -> None:
        """Resume the latest stored session for the sandbox, or start one."""
        if self.store is None:
            return
        try:
            existing = await self.store.get_latest_session(self.sandbox_id)
            if existing is not None:
                self.session_id = existing.id
                stored = await self.store.get_session_messages(existing.id)
                if stored:
                    self.messages = stored
            else:
                created = await self.store.create_session(self.sandbox_id)
                self.session_id = created.id
        except Exception:
            logger.exception("Failed to initialize session; continuing without persistence")

    async def set_sandbox(self, sandbox_id: str) -> None:
        self.sandbox_id = sandbox_id
        if self.store is None or self.session_id is None:
            return
        try:
            await self.store.update_session_sandbox(self.session_id, sandbox_id)
        except Exception as e:
            logger.error(f"Failed to update session sandbox: {e}")

    def _persist(self, message: ChatMessage) -> None:
        if self.store is None or self.session_id is None:
            return
        task = asyncio.create_task(self._save(message.model_copy(deep=True)))
        self._pending_saves.add(task)
        task.add_done_callback(self._pending_saves.discard)

    async def _save(self, message: ChatMessage) -> None:
        try:
            await self.store.save_message(self.session_id, message)
        except Exception as e:
            logger.error(f"Failed to save message {message.id}: {e}")

    # ------------------------------------------------------------------
    # Desktop
    # ------------------------------------------------------------------

    async def open_desktop(self) -> str | None:
        """Ask the server for a live desktop and adopt its sandbox id.

        Returns the live view URL. The sandbox id changes when the old
        sandbox could not be resumed.
        """
        response = await self._get_client().post(
            self.desktop_url, json={"sandboxId": self.sandbox_id},
        )
        response.raise_for_status()
        data = response.json()
        self.stream_url = data.get("streamUrl")
        if data["id"] != self.sandbox_id:
            logger.info(f"Using sandbox {data['id']}")
            await self.set_sandbox(data["id"])
        return self.stream_url

    async def kill_desktop(self) -> None:
        """Shut down the session's sandbox, if it has one."""
        if not self.sandbox_id:
            return
        response = await self._get_client().delete(
            f"{self.desktop_url}/{self.sandbox_id}",
        )
        response.raise_for_status()
        self.sandbox_id = None
        self.stream_url = None

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(30.0, read=None),
            )
        return self._client

    def _on_text(self, message_id: str, full_text: str) -> None:
        self.typewriter.update(message_id, full_text)

    def _on_reveal(self, message_id: str, text: str) -> None:
        reconstructor = self._reconstructor
        if reconstructor is not None and reconstructor.message_id == message_id:
            reconstructor.set_revealed(text)

    def _reveal_all(self) -> None:
        if self._reconstructor is not None:
            self._reconstructor.set_revealed(self._reconstructor.text)

    async def append(self, content: str, role: str = "user") -> ChatMessage | None:
        """Send a message and stream the agent's response into the history.

        Returns the assistant message, or None if the response carried no
        text or tool calls. Failures set ``status`` to ``"error"`` and are
        reported through ``on_error`` rather than raised.
        """
        if self._request_task is not None:
            raise RuntimeError("A request is already in flight")

        self._reveal_all()
        message = ChatMessage(role=role, content=content, parts=[TextPart(text=content)])
        self.messages.append(message)
        self._persist(message)

        self.status = "submitted"
        self.error = None
        self._aborted = False
        body = {
            "messages": [m.to_wire() for m in self.messages],
            "sandboxId": self.sandbox_id,
        }
        reconstructor = StreamReconstructor(self.messages, text_sink=self._on_text)
        self._reconstructor = reconstructor
        self.typewriter.start()
        self._request_task = asyncio.create_task(self._stream(body, reconstructor))
        try:
            await self._request_task
        except asyncio.CancelledError:
            if not self._aborted:
                raise
            logger.info("Request aborted by user")
            self.status = "ready"
        except Exception as e:
            logger.error(f"Chat request failed: {e}")
            self.status = "error"
            self.error = e
            if self.on_error is not None:
                self.on_error(e)
        else:
            self.status = "ready"
        finally:
            self._request_task = None

        if reconstructor.message is not None:
            self._persist(reconstructor.message)
        return reconstructor.message

    async def _stream(self, body: dict, reconstructor: StreamReconstructor) -> None:
        decoder = FrameDecoder()
        client = self._get_client()
        async with client.stream("POST", self.api_url, json=body) as response:
            response.raise_for_status()
            self.status = "streaming"
            async for chunk in response.aiter_bytes():
                for frame in decoder.feed(chunk):
                    if self._aborted:
                        return
                    reconstructor.apply(frame)
                    if reconstructor.finished:
                        return
            for frame in decoder.flush():
                reconstructor.apply(frame)

    def stop(self) -> None:
        """Abort the in-flight request and stop the typewriter.

        Frames still in transit are discarded.
        """
        if self._request_task is not None and not self._request_task.done():
            self._aborted = True
            self._request_task.cancel()
        self.typewriter.stop()
        self.status = "ready"

    async def close(self) -> None:
        self.stop()
        if self._pending_saves:
            await asyncio.gather(*self._pending_saves, return_exceptions=True)
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
