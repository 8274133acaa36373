from datetime import datetime, timedelta

import aiosqlite

from agentdock.bus import EventBus
from agentdock.constants import JOB_MAX_ATTEMPTS, RETRY_BASE_DELAY
from agentdock.database import BaseStore, Database
from agentdock.errors import ConflictError, NotFoundError
from agentdock.jobs.models import Job, JobPayload, JobStatus, QueueMetrics
from agentdock.logging import get_logger
from agentdock.sessions.models import Provider
from agentdock.sessions.store import SessionStore
from agentdock.utils import new_id, to_iso, utcnow

_logger = get_logger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS job_queue (
    id TEXT PRIMARY KEY,
    session_id TEXT NOT NULL,
    prompt_id TEXT NOT NULL,
    provider TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    data TEXT NOT NULL,
    attempts INTEGER NOT NULL DEFAULT 0,
    max_attempts INTEGER NOT NULL DEFAULT 3,
    created_at TEXT NOT NULL,
    started_at TEXT,
    completed_at TEXT,
    error TEXT,
    next_retry_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_job_queue_status_retry ON job_queue(status, next_retry_at);
CREATE INDEX IF NOT EXISTS idx_job_queue_session ON job_queue(session_id);
CREATE INDEX IF NOT EXISTS idx_job_queue_created ON job_queue(created_at);
"""

SQL_INSERT = """
INSERT INTO job_queue
    (id, session_id, prompt_id, provider, status, data, attempts, max_attempts, created_at)
VALUES (?, ?, ?, ?, 'pending', ?, 0, ?, ?)
"""

SQL_NEXT_ELIGIBLE = """
SELECT id FROM job_queue
WHERE status = 'pending' AND (next_retry_at IS NULL OR next_retry_at <= ?)
ORDER BY created_at, id
LIMIT 5
"""

SQL_MARK_PROCESSING = """
UPDATE job_queue
SET status = 'processing', started_at = ?, attempts = attempts + 1, next_retry_at = NULL
WHERE id = ? AND status = 'pending' AND attempts < max_attempts
"""

SQL_MARK_COMPLETED = """
UPDATE job_queue
SET status = 'completed', completed_at = ?
WHERE id = ? AND status = 'processing'
"""

SQL_RETRY = """
UPDATE job_queue
SET status = 'pending', error = ?, next_retry_at = ?
WHERE id = ? AND status = 'processing'
"""

SQL_FAIL = """
UPDATE job_queue
SET status = 'failed', error = ?, completed_at = ?
WHERE id = ? AND status = 'processing'
"""

SQL_ACTIVE_FOR_SESSION = """
SELECT id FROM job_queue
WHERE session_id = ? AND status IN ('pending', 'processing')
"""

SQL_CANCEL_FOR_SESSION = """
UPDATE job_queue
SET status = 'cancelled', completed_at = ?
WHERE session_id = ? AND status IN ('pending', 'processing')
"""

SQL_PURGE = """
DELETE FROM job_queue
WHERE status IN ('completed', 'failed', 'cancelled') AND completed_at < ?
"""


def retry_delay(attempts: int, base_delay: float = RETRY_BASE_DELAY) -> timedelta:
    return timedelta(seconds=(2**attempts) * base_delay)


class JobStore(BaseStore):
    SCHEMA = SCHEMA

    def __init__(
        self,
        db: Database,
        sessions: SessionStore,
        bus: EventBus | None = None,
        max_attempts: int = JOB_MAX_ATTEMPTS,
        base_delay: float = RETRY_BASE_DELAY,
    ):
        super().__init__(db)
        self.sessions = sessions
        self.bus = bus
        self.max_attempts = max_attempts
        self.base_delay = base_delay

    async def enqueue(
        self,
        session_id: str,
        prompt_id: str,
        payload: JobPayload,
        provider: Provider | None = None,
        max_attempts: int | None = None,
        conn: aiosqlite.Connection | None = None,
    ) -> str:
        job_id = new_id()
        async with self._writer(conn) as c:
            rows = await c.execute_fetchall("SELECT provider FROM sessions WHERE id = ?", (session_id,))
            if not rows:
                raise NotFoundError("Session")
            active = await c.execute_fetchall(SQL_ACTIVE_FOR_SESSION, (session_id,))
            if active:
                raise ConflictError(f"Session {session_id} already has an active job")
            await c.execute(
                SQL_INSERT,
                (
                    job_id,
                    session_id,
                    prompt_id,
                    (provider or Provider(rows[0]["provider"])).value,
                    payload.to_json(),
                    max_attempts or self.max_attempts,
                    to_iso(utcnow()),
                ),
            )
        _logger.info("Enqueued job %s for session %s", job_id, session_id)
        return job_id

    async def get(self, job_id: str) -> Job | None:
        row = await self.db.fetch_one("SELECT * FROM job_queue WHERE id = ?", (job_id,))
        return Job(**row) if row else None

    async def list_for_session(self, session_id: str) -> list[Job]:
        rows = await self.db.fetch_all(
            "SELECT * FROM job_queue WHERE session_id = ? ORDER BY created_at, id",
            (session_id,),
        )
        return [Job(**row) for row in rows]

    async def list_by_status(self, status: JobStatus) -> list[Job]:
        rows = await self.db.fetch_all(
            "SELECT * FROM job_queue WHERE status = ? ORDER BY created_at, id",
            (status.value,),
        )
        return [Job(**row) for row in rows]

    async def has_active_job(self, session_id: str) -> bool:
        rows = await self.db.fetch_all(SQL_ACTIVE_FOR_SESSION, (session_id,))
        return bool(rows)

    async def claim_next(self) -> Job | None:
        now = to_iso(utcnow())
        claimed: str | None = None
        async with self.db.transaction() as conn:
            for row in await conn.execute_fetchall(SQL_NEXT_ELIGIBLE, (now,)):
                cursor = await conn.execute(SQL_MARK_PROCESSING, (now, row["id"]))
                if cursor.rowcount > 0:
                    claimed = row["id"]
                    break
        if claimed is None:
            return None
        return await self.get(claimed)

    async def mark_processing(self, job_id: str) -> bool:
        async with self.db.transaction() as conn:
            cursor = await conn.execute(SQL_MARK_PROCESSING, (to_iso(utcnow()), job_id))
        return cursor.rowcount > 0

    async def mark_completed(self, job_id: str) -> bool:
        async with self.db.transaction() as conn:
            cursor = await conn.execute(SQL_MARK_COMPLETED, (to_iso(utcnow()), job_id))
        return cursor.rowcount > 0

    async def mark_failed(self, job_id: str, error: str) -> Job | None:
        now = utcnow()
        async with self.db.transaction() as conn:
            rows = await conn.execute_fetchall(
                "SELECT attempts, max_attempts FROM job_queue WHERE id = ? AND status = 'processing'",
                (job_id,),
            )
            if rows:
                attempts, max_attempts = rows[0]["attempts"], rows[0]["max_attempts"]
                if attempts < max_attempts:
                    next_retry = now + retry_delay(attempts, self.base_delay)
                    await conn.execute(SQL_RETRY, (error, to_iso(next_retry), job_id))
                    _logger.warning(
                        "Job %s failed (attempt %d/%d), retrying at %s", job_id, attempts, max_attempts, next_retry
                    )
                else:
                    await conn.execute(SQL_FAIL, (error, to_iso(now), job_id))
                    _logger.error("Job %s failed permanently after %d attempts: %s", job_id, attempts, error)
        return await self.get(job_id)

    async def cancel_all_for_session(self, session_id: str, publish: bool = True) -> list[str]:
        async with self.db.transaction() as conn:
            rows = await conn.execute_fetchall(SQL_ACTIVE_FOR_SESSION, (session_id,))
            job_ids = [row["id"] for row in rows]
            if job_ids:
                await conn.execute(SQL_CANCEL_FOR_SESSION, (to_iso(utcnow()), session_id))
                await self.sessions.set_working(session_id, None, JobStatus.CANCELLED.value, conn=conn)

        if job_ids:
            _logger.info("Cancelled %d job(s) for session %s", len(job_ids), session_id)
        if self.bus and publish:
            for _ in job_ids:
                self.bus.publish_done(session_id)
        return job_ids

    async def purge_older_than(self, retention: timedelta) -> int:
        cutoff = utcnow() - retention
        async with self.db.transaction() as conn:
            cursor = await conn.execute(SQL_PURGE, (to_iso(cutoff),))
        if cursor.rowcount:
            _logger.info("Purged %d finished job(s) older than %s", cursor.rowcount, cutoff)
        return cursor.rowcount

    async def metrics(self, now: datetime | None = None) -> QueueMetrics:
        rows = await self.db.fetch_all("SELECT status, COUNT(*) AS n FROM job_queue GROUP BY status")
        counts = {row["status"]: row["n"] for row in rows}
        delayed = await self.db.fetch_one(
            "SELECT COUNT(*) AS n FROM job_queue WHERE status = 'pending' AND next_retry_at > ?",
            (to_iso(now or utcnow()),),
        )
        return QueueMetrics(
            pending=counts.get(JobStatus.PENDING, 0),
            processing=counts.get(JobStatus.PROCESSING, 0),
            completed=counts.get(JobStatus.COMPLETED, 0),
            failed=counts.get(JobStatus.FAILED, 0),
            cancelled=counts.get(JobStatus.CANCELLED, 0),
            delayed=delayed["n"],
            total=sum(counts.values()),
        )
