import json
from dataclasses import dataclass
from datetime import datetime

import aiosqlite

from agentdock.database import BaseStore
from agentdock.sessions.models import Provider
from agentdock.utils import new_id, to_iso, utcnow

SCHEMA = """
CREATE TABLE IF NOT EXISTS session_messages (
    id TEXT PRIMARY KEY,
    session_id TEXT NOT NULL REFERENCES sessions(id) ON DELETE CASCADE,
    provider TEXT NOT NULL,
    type TEXT NOT NULL,
    content_data TEXT NOT NULL,
    provider_session_id TEXT,
    token_count INTEGER,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_session_messages_session ON session_messages(session_id);
CREATE INDEX IF NOT EXISTS idx_session_messages_session_created ON session_messages(session_id, created_at, id);
CREATE INDEX IF NOT EXISTS idx_session_messages_provider_session ON session_messages(provider_session_id);
"""

SQL_INSERT = """
INSERT INTO session_messages
    (id, session_id, provider, type, content_data, provider_session_id, token_count, created_at)
VALUES (?, ?, ?, ?, ?, ?, ?, ?)
"""

SQL_PAGE = """
SELECT * FROM session_messages
WHERE session_id = ? AND (created_at > ? OR (created_at = ? AND id > ?))
ORDER BY created_at, id
LIMIT ?
"""

SQL_FIRST_PAGE = """
SELECT * FROM session_messages
WHERE session_id = ?
ORDER BY created_at, id
LIMIT ?
"""

SQL_LAST_PROVIDER_SESSION = """
SELECT provider_session_id FROM session_messages
WHERE session_id = ? AND provider_session_id IS NOT NULL
ORDER BY created_at DESC, id DESC
LIMIT 1
"""


@dataclass
class SessionMessage:
    id: str
    session_id: str
    provider: Provider
    type: str
    content_data: dict
    created_at: datetime
    provider_session_id: str | None = None
    token_count: int | None = None

    def __post_init__(self):
        self.provider = Provider(self.provider)
        if isinstance(self.content_data, str):
            self.content_data = json.loads(self.content_data)
        if isinstance(self.created_at, str):
            self.created_at = datetime.fromisoformat(self.created_at)

    @classmethod
    def new(
        cls,
        session_id: str,
        provider: Provider,
        type: str,
        record: dict,
        provider_session_id: str | None = None,
        token_count: int | None = None,
        id: str | None = None,
    ) -> "SessionMessage":
        return cls(
            id=id or new_id(),
            session_id=session_id,
            provider=provider,
            type=type,
            content_data=record,
            created_at=utcnow(),
            provider_session_id=provider_session_id,
            token_count=token_count,
        )


class MessageStore(BaseStore):
    SCHEMA = SCHEMA

    async def append(self, message: SessionMessage, conn: aiosqlite.Connection | None = None) -> str:
        async with self._writer(conn) as c:
            await c.execute(
                SQL_INSERT,
                (
                    message.id,
                    message.session_id,
                    message.provider.value,
                    message.type,
                    json.dumps(message.content_data),
                    message.provider_session_id,
                    message.token_count,
                    to_iso(message.created_at),
                ),
            )
        return message.id

    async def get(self, message_id: str) -> SessionMessage | None:
        row = await self.db.fetch_one("SELECT * FROM session_messages WHERE id = ?", (message_id,))
        return SessionMessage(**row) if row else None

    async def list_after(self, session_id: str, cursor: str | None, limit: int) -> list[SessionMessage]:
        """Messages ordered by (created_at, id), strictly after the cursor message."""
        if cursor is None:
            rows = await self.db.fetch_all(SQL_FIRST_PAGE, (session_id, limit))
        else:
            anchor = await self.db.fetch_one(
                "SELECT created_at FROM session_messages WHERE id = ? AND session_id = ?",
                (cursor, session_id),
            )
            if anchor is None:
                return []
            ts = anchor["created_at"]
            rows = await self.db.fetch_all(SQL_PAGE, (session_id, ts, ts, cursor, limit))
        return [SessionMessage(**row) for row in rows]

    async def list_all(self, session_id: str) -> list[SessionMessage]:
        rows = await self.db.fetch_all(
            "SELECT * FROM session_messages WHERE session_id = ? ORDER BY created_at, id",
            (session_id,),
        )
        return [SessionMessage(**row) for row in rows]

    async def last_provider_session_id(self, session_id: str) -> str | None:
        row = await self.db.fetch_one(SQL_LAST_PROVIDER_SESSION, (session_id,))
        return row["provider_session_id"] if row else None
