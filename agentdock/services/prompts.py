from collections.abc import Awaitable, Callable
from typing import TypeAlias

from agentdock.bus import EventBus, Subscription
from agentdock.constants import DEFAULT_MESSAGE_PAGE
from agentdock.errors import ConflictError, NotFoundError
from agentdock.jobs.models import JobPayload, JobStatus
from agentdock.jobs.store import JobStore
from agentdock.logging import get_logger
from agentdock.protocols.records import make_user_prompt
from agentdock.services.transcript import TranscriptService
from agentdock.sessions.store import SessionStore
from agentdock.utils import new_id

_logger = get_logger(__name__)

SessionCanceller: TypeAlias = Callable[[str], Awaitable[list[str]]]


class PromptService:
    """Entry point for prompts: record, enqueue and follow a session's work."""

    def __init__(
        self,
        sessions: SessionStore,
        jobs: JobStore,
        transcript: TranscriptService,
        bus: EventBus,
        cancel: SessionCanceller | None = None,
    ):
        self.sessions = sessions
        self.jobs = jobs
        self.transcript = transcript
        self.bus = bus
        self._cancel = cancel or jobs.cancel_all_for_session

    async def enqueue_prompt(
        self,
        session_id: str,
        content: str,
        model: str | None = None,
        allowed_tools: list[str] | None = None,
    ) -> dict:
        session = await self.sessions.get(session_id)
        if session is None:
            raise NotFoundError("Session")
        if session.is_working or await self.jobs.has_active_job(session_id):
            raise ConflictError("Session is already processing a prompt")

        prompt_id = new_id()
        payload = JobPayload(
            prompt=content,
            project_path=session.project_path,
            message_id=prompt_id,
            model=model,
            allowed_tools=allowed_tools,
        )
        # the prompt row, the active-job check and the job row commit together
        async with self.transcript.db.transaction() as conn:
            message = await self.transcript.append(
                conn,
                session_id,
                session.provider,
                make_user_prompt(prompt_id, content),
                message_id=prompt_id,
            )
            job_id = await self.jobs.enqueue(session_id, prompt_id, payload, provider=session.provider, conn=conn)
            await self.sessions.set_working(session_id, job_id, JobStatus.PENDING.value, conn=conn)

        self.transcript.publish(session_id, message)
        return {"messageId": prompt_id, "jobId": job_id, "sessionId": session_id}

    async def cancel_session(self, session_id: str) -> dict:
        if await self.sessions.get(session_id) is None:
            raise NotFoundError("Session")
        cancelled = await self._cancel(session_id)
        return {"sessionId": session_id, "cancelledJobs": cancelled}

    async def get_messages(
        self, session_id: str, cursor: str | None = None, limit: int = DEFAULT_MESSAGE_PAGE
    ) -> dict:
        return await self.transcript.get_messages(session_id, cursor=cursor, limit=limit)

    async def get_raw_messages(self, session_id: str) -> list[dict]:
        return await self.transcript.get_raw_messages(session_id)

    async def subscribe(self, session_id: str) -> Subscription:
        if await self.sessions.get(session_id) is None:
            raise NotFoundError("Session")
        return self.bus.subscribe(session_id)

    def unsubscribe(self, subscription: Subscription) -> None:
        self.bus.unsubscribe(subscription)
