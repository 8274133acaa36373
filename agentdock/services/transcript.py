from typing import Any

import aiosqlite

from agentdock.bus import EventBus
from agentdock.canonical import canonicalize, coarse_type, token_count
from agentdock.constants import DEFAULT_MESSAGE_PAGE, MAX_MESSAGE_PAGE
from agentdock.database import Database
from agentdock.errors import NotFoundError
from agentdock.logging import get_logger
from agentdock.messages.models import Message
from agentdock.messages.store import MessageStore, SessionMessage
from agentdock.sessions.models import Provider
from agentdock.sessions.store import SessionStore

_logger = get_logger(__name__)


class TranscriptService:
    """Append-only session transcript: persist raw records, publish canonical ones."""

    def __init__(self, db: Database, sessions: SessionStore, messages: MessageStore, bus: EventBus):
        self.db = db
        self.sessions = sessions
        self.messages = messages
        self.bus = bus

    async def record(
        self,
        session_id: str,
        provider: Provider,
        raw: dict[str, Any],
        provider_session_id: str | None = None,
        project_path: str | None = None,
        message_id: str | None = None,
    ) -> Message | None:
        async with self.db.transaction() as conn:
            message = await self.append(
                conn,
                session_id,
                provider,
                raw,
                provider_session_id=provider_session_id,
                project_path=project_path,
                message_id=message_id,
            )

        # only after commit, so subscribers never see a message that is not durable
        self.publish(session_id, message)
        return message

    def publish(self, session_id: str, message: Message | None) -> None:
        if message is not None:
            self.bus.publish_message(session_id, message)

    async def append(
        self,
        conn: aiosqlite.Connection,
        session_id: str,
        provider: Provider,
        raw: dict[str, Any],
        provider_session_id: str | None = None,
        project_path: str | None = None,
        message_id: str | None = None,
    ) -> Message | None:
        """Write a record inside the caller's transaction; the caller publishes after commit."""
        tokens = token_count(provider, raw)
        row = SessionMessage.new(
            session_id=session_id,
            provider=provider,
            type=coarse_type(provider, raw).value,
            record=raw,
            provider_session_id=provider_session_id,
            token_count=tokens or None,
            id=message_id,
        )
        await self.messages.append(row, conn=conn)
        await self.sessions.increment_counters(session_id, 1, tokens, sent_at=row.created_at, conn=conn)
        return canonicalize(provider, raw, row.id, project_path)

    async def get_messages(
        self,
        session_id: str,
        cursor: str | None = None,
        limit: int = DEFAULT_MESSAGE_PAGE,
    ) -> dict:
        session = await self.sessions.get(session_id)
        if session is None:
            raise NotFoundError("Session")
        limit = max(1, min(limit, MAX_MESSAGE_PAGE))

        rows = await self.messages.list_after(session_id, cursor, limit + 1)
        has_next = len(rows) > limit
        rows = rows[:limit]

        messages = []
        for row in rows:
            message = canonicalize(row.provider, row.content_data, row.id, session.project_path)
            if message is not None:
                messages.append(message.dump())

        return {
            "messages": messages,
            "session": {
                "id": session.id,
                "isWorking": session.is_working,
                "currentJobId": session.current_job_id,
                "lastJobStatus": session.last_job_status,
                "messageCount": session.message_count,
                "tokenCount": session.token_count,
            },
            "pagination": {
                "hasNextPage": has_next,
                "nextCursor": rows[-1].id if has_next and rows else None,
                "totalFetched": len(rows),
            },
        }

    async def get_raw_messages(self, session_id: str) -> list[dict]:
        if await self.sessions.get(session_id) is None:
            raise NotFoundError("Session")
        return [
            {
                "id": row.id,
                "type": row.type,
                "provider": row.provider.value,
                "providerSessionId": row.provider_session_id,
                "createdAt": row.created_at.isoformat(),
                "data": row.content_data,
            }
            for row in await self.messages.list_all(session_id)
        ]
