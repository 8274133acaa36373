import json
from datetime import datetime

import aiosqlite

from agentdock.database import BaseStore
from agentdock.sessions.models import Session, SessionState
from agentdock.utils import to_iso, utcnow

SCHEMA = """
CREATE TABLE IF NOT EXISTS sessions (
    id TEXT PRIMARY KEY,
    provider TEXT NOT NULL,
    project_path TEXT NOT NULL,
    name TEXT NOT NULL,
    context TEXT,
    claude_directory_path TEXT,
    metadata TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    last_accessed_at TEXT NOT NULL,
    is_working INTEGER NOT NULL DEFAULT 0,
    current_job_id TEXT,
    last_job_status TEXT,
    message_count INTEGER NOT NULL DEFAULT 0,
    token_count INTEGER NOT NULL DEFAULT 0,
    last_message_sent_at TEXT,
    state TEXT NOT NULL DEFAULT 'active'
);

CREATE INDEX IF NOT EXISTS idx_sessions_last_accessed ON sessions(last_accessed_at);
CREATE INDEX IF NOT EXISTS idx_sessions_is_working ON sessions(is_working);
CREATE INDEX IF NOT EXISTS idx_sessions_last_message_sent ON sessions(last_message_sent_at);
"""

SQL_INSERT = """
INSERT INTO sessions
    (id, provider, project_path, name, context, claude_directory_path, metadata,
     created_at, updated_at, last_accessed_at, is_working, current_job_id,
     last_job_status, message_count, token_count, last_message_sent_at, state)
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
"""

SQL_SET_WORKING = """
UPDATE sessions
SET is_working = ?, current_job_id = ?, last_job_status = COALESCE(?, last_job_status), updated_at = ?
WHERE id = ?
"""

SQL_INCREMENT_COUNTERS = """
UPDATE sessions
SET message_count = message_count + ?,
    token_count = token_count + ?,
    last_message_sent_at = ?,
    updated_at = ?
WHERE id = ?
"""


class SessionStore(BaseStore):
    SCHEMA = SCHEMA

    async def create(self, session: Session) -> Session:
        async with self.db.transaction() as conn:
            await conn.execute(
                SQL_INSERT,
                (
                    session.id,
                    session.provider.value,
                    session.project_path,
                    session.name,
                    session.context,
                    session.claude_directory_path,
                    json.dumps(session.metadata),
                    to_iso(session.created_at),
                    to_iso(session.updated_at),
                    to_iso(session.last_accessed_at),
                    int(session.is_working),
                    session.current_job_id,
                    session.last_job_status,
                    session.message_count,
                    session.token_count,
                    to_iso(session.last_message_sent_at),
                    session.state.value,
                ),
            )
        return session

    async def get(self, session_id: str) -> Session | None:
        row = await self.db.fetch_one("SELECT * FROM sessions WHERE id = ?", (session_id,))
        return Session(**row) if row else None

    async def list_sessions(
        self,
        state: SessionState | None = None,
        is_working: bool | None = None,
        with_messages_only: bool = True,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[Session], int]:
        clauses = []
        params: list = []
        if with_messages_only:
            clauses.append("last_message_sent_at IS NOT NULL")
        if state is not None:
            clauses.append("state = ?")
            params.append(state.value)
        if is_working is not None:
            clauses.append("is_working = ?")
            params.append(int(is_working))
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        total_row = await self.db.fetch_one(f"SELECT COUNT(*) AS n FROM sessions {where}", tuple(params))
        rows = await self.db.fetch_all(
            f"SELECT * FROM sessions {where} ORDER BY last_message_sent_at DESC, created_at DESC LIMIT ? OFFSET ?",
            (*params, limit, offset),
        )
        return [Session(**row) for row in rows], total_row["n"]

    async def touch(self, session_id: str) -> None:
        async with self.db.transaction() as conn:
            await conn.execute(
                "UPDATE sessions SET last_accessed_at = ? WHERE id = ?",
                (to_iso(utcnow()), session_id),
            )

    async def update(self, session_id: str, context: str | None = None, metadata: dict | None = None) -> bool:
        now = to_iso(utcnow())
        async with self.db.transaction() as conn:
            cursor = await conn.execute(
                "UPDATE sessions SET context = COALESCE(?, context), updated_at = ? WHERE id = ?",
                (context, now, session_id),
            )
            if metadata is not None and cursor.rowcount > 0:
                rows = await conn.execute_fetchall("SELECT metadata FROM sessions WHERE id = ?", (session_id,))
                merged = {**json.loads(rows[0]["metadata"] or "{}"), **metadata}
                await conn.execute("UPDATE sessions SET metadata = ? WHERE id = ?", (json.dumps(merged), session_id))
        return cursor.rowcount > 0

    async def set_state(self, session_id: str, state: SessionState) -> bool:
        async with self.db.transaction() as conn:
            cursor = await conn.execute(
                "UPDATE sessions SET state = ?, updated_at = ? WHERE id = ?",
                (state.value, to_iso(utcnow()), session_id),
            )
        return cursor.rowcount > 0

    async def set_working(
        self,
        session_id: str,
        job_id: str | None,
        status: str | None,
        conn: aiosqlite.Connection | None = None,
    ) -> None:
        """Working iff a job id is attached."""
        async with self._writer(conn) as c:
            await c.execute(
                SQL_SET_WORKING,
                (int(job_id is not None), job_id, status, to_iso(utcnow()), session_id),
            )

    async def increment_counters(
        self,
        session_id: str,
        message_delta: int,
        token_delta: int,
        sent_at: datetime | None = None,
        conn: aiosqlite.Connection | None = None,
    ) -> None:
        now = to_iso(utcnow())
        async with self._writer(conn) as c:
            await c.execute(
                SQL_INCREMENT_COUNTERS,
                (message_delta, token_delta, to_iso(sent_at) or now, now, session_id),
            )

    async def count_active(self) -> int:
        row = await self.db.fetch_one("SELECT COUNT(*) AS n FROM sessions WHERE state = 'active'")
        return row["n"]
