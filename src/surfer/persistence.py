"""Conversation persistence.

:class:`MessageStore` is what the chat session needs from a store.
:class:`SupabaseMessageStore` keeps sessions and messages in the
``chat_sessions`` and ``chat_messages`` tables and requires ``supabase``:
``pip install surfer[supabase]``. :func:`store_from_settings` picks one
from the configured credentials.
"""

from __future__ import annotations

import asyncio
import importlib.util
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Protocol

from pydantic import BaseModel

from surfer.config import Settings
from surfer.conversation import ChatMessage

logger = logging.getLogger(__name__)

NO_ROWS = "PGRST116"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class StoredSession(BaseModel):
    id: str
    sandbox_id: str | None = None
    created_at: str = ""
    updated_at: str = ""


class MessageStore(Protocol):
    async def create_session(self, sandbox_id: str | None) -> StoredSession: ...

    async def save_message(self, session_id: str, message: ChatMessage) -> None: ...

    async def get_session_messages(self, session_id: str) -> list[ChatMessage]: ...

    async def get_latest_session(self, sandbox_id: str | None) -> StoredSession | None: ...

    async def update_session_sandbox(self, session_id: str, sandbox_id: str) -> None: ...


class InMemoryMessageStore:
    """Process-local store, for tests and running without a database."""

    def __init__(self) -> None:
        self.sessions: dict[str, StoredSession] = {}
        self.messages: dict[str, list[ChatMessage]] = {}

    async def create_session(self, sandbox_id: str | None) -> StoredSession:
        now = _now()
        session = StoredSession(
            id=uuid.uuid4().hex, sandbox_id=sandbox_id,
            created_at=now, updated_at=now,
        )
        self.sessions[session.id] = session
        self.messages[session.id] = []
        return session

    async def save_message(self, session_id: str, message: ChatMessage) -> None:
        if session_id not in self.sessions:
            raise KeyError(f"Unknown session {session_id}")
        self.messages[session_id].append(message.model_copy(deep=True))

    async def get_session_messages(self, session_id: str) -> list[ChatMessage]:
        return [m.model_copy(deep=True) for m in self.messages.get(session_id, [])]

    async def get_latest_session(self, sandbox_id: str | None) -> StoredSession | None:
        candidates = [
            s for s in self.sessions.values()
            if sandbox_id is None or s.sandbox_id == sandbox_id
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda s: s.created_at)

    async def update_session_sandbox(self, session_id: str, sandbox_id: str) -> None:
        session = self.sessions[session_id]
        session.sandbox_id = sandbox_id
        session.updated_at = _now()


class SupabaseMessageStore:
    """Store backed by Supabase Postgres.

    The Supabase client is synchronous, so queries run in a worker thread.

    Args:
        client: A ``supabase.Client``. Use :meth:`from_credentials` to
            build one.
    """

    def __init__(self, client: Any):
        self.client = client

    @classmethod
    def from_credentials(cls, url: str, key: str) -> "SupabaseMessageStore":
        if importlib.util.find_spec("supabase") is None:
            raise ImportError(
                "supabase is required for SupabaseMessageStore. "
                "Install it with: pip install surfer[supabase]"
            )
        from supabase import create_client
        return cls(create_client(url, key))

    async def _execute(self, query):
        return await asyncio.to_thread(query.execute)

    async def create_session(self, sandbox_id: str | None) -> StoredSession:
        now = _now()
        response = await self._execute(
            self.client.table("chat_sessions").insert({
                "sandbox_id": sandbox_id,
                "created_at": now,
                "updated_at": now,
            })
        )
        return StoredSession.model_validate(response.data[0])

    async def save_message(self, session_id: str, message: ChatMessage) -> None:
        wire = message.to_wire()
        await self._execute(
            self.client.table("chat_messages").insert({
                "session_id": session_id,
                "role": message.role,
                "content": wire["content"] or None,
                "parts": wire["parts"] or None,
                "created_at": _now(),
            })
        )

    async def get_session_messages(self, session_id: str) -> list[ChatMessage]:
        response = await self._execute(
            self.client.table("chat_messages")
            .select("*")
            .eq("session_id", session_id)
            .order("created_at")
        )
        return [_row_to_message(row) for row in response.data]

    async def get_latest_session(self, sandbox_id: str | None) -> StoredSession | None:
        query = (
            self.client.table("chat_sessions")
            .select("*")
            .order("created_at", desc=True)
            .limit(1)
        )
        if sandbox_id:
            query = query.eq("sandbox_id", sandbox_id)
        try:
            response = await self._execute(query)
        except Exception as e:
            if getattr(e, "code", None) == NO_ROWS:
                return None
            raise
        if not response.data:
            return None
        return StoredSession.model_validate(response.data[0])

    async def update_session_sandbox(self, session_id: str, sandbox_id: str) -> None:
        await self._execute(
            self.client.table("chat_sessions")
            .update({"sandbox_id": sandbox_id, "updated_at": _now()})
            .eq("id", session_id)
        )


def _row_to_message(row: dict) -> ChatMessage:
    content = row.get("content")
    if isinstance(content, dict):
        content = content.get("text", "")
    parts = row.get("parts")
    if not parts and content:
        parts = [{"type": "text", "text": content}]
    return ChatMessage.model_validate({
        "id": str(row.get("id") or uuid.uuid4().hex),
        "role": row.get("role", "assistant"),
        "content": content or "",
        "parts": parts or [],
    })


def store_from_settings(settings: Settings) -> MessageStore:
    """Supabase store when credentials are configured, else in memory."""
    if settings.supabase_url and settings.supabase_key:
        logger.info("Persisting conversations to Supabase")
        return SupabaseMessageStore.from_credentials(
            settings.supabase_url, settings.supabase_key,
        )
    logger.info("Supabase is not configured; keeping conversations in memory")
    return InMemoryMessageStore()
