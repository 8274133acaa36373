import asyncio
from collections.abc import Callable
from contextlib import suppress
from dataclasses import dataclass
from datetime import timedelta

from agentdock.bus import EventBus
from agentdock.constants import (
    CANCEL_CHECK_INTERVAL,
    CANCELLED_NOTICE,
    CLEANUP_INTERVAL,
    INTERRUPTED_ERROR,
    JOB_RETENTION_DAYS,
    POLL_INTERVAL,
    STOP_TIMEOUT,
    WORKER_CONCURRENCY,
)
from agentdock.jobs.models import Job, JobStatus
from agentdock.jobs.store import JobStore
from agentdock.logging import get_logger, job_context
from agentdock.protocols.records import make_notice
from agentdock.runners.base import AgentRunner
from agentdock.services.transcript import TranscriptService
from agentdock.sessions.models import Provider
from agentdock.sessions.store import SessionStore
from agentdock.utils import new_id

_logger = get_logger(__name__)


@dataclass(frozen=True)
class DispatcherDeps:
    jobs: JobStore
    sessions: SessionStore
    transcript: TranscriptService
    bus: EventBus
    create_runner: Callable[[Provider], AgentRunner]


class Dispatcher:
    """Fixed-size worker pool draining the job queue.

    Each worker handles one job end to end (claim, stream, persist, publish,
    terminal transition) before polling again.
    """

    def __init__(
        self,
        deps: DispatcherDeps,
        concurrency: int = WORKER_CONCURRENCY,
        poll_interval: float = POLL_INTERVAL,
        cancel_check_interval: float = CANCEL_CHECK_INTERVAL,
        cleanup_interval: float = CLEANUP_INTERVAL,
        retention_days: int = JOB_RETENTION_DAYS,
    ):
        self.deps = deps
        self.concurrency = concurrency
        self.poll_interval = poll_interval
        self.cancel_check_interval = cancel_check_interval
        self.cleanup_interval = cleanup_interval
        self.retention = timedelta(days=retention_days)
        self._workers: list[asyncio.Task] = []
        self._cleanup: asyncio.Task | None = None
        self._runners: dict[str, AgentRunner] = {}
        self._running_jobs: dict[str, Job] = {}
        self._cancel_noticed: set[str] = set()
        self._processed = 0

    @property
    def is_running(self) -> bool:
        return bool(self._workers)

    def start(self) -> None:
        if self._workers:
            return
        self._workers = [asyncio.create_task(self._worker(i)) for i in range(self.concurrency)]
        self._cleanup = asyncio.create_task(self._cleanup_loop())
        _logger.info(
            "Dispatcher started (%d workers, polling every %.1fs)", self.concurrency, self.poll_interval
        )

    async def stop(self) -> None:
        # cancelling a worker unwinds its runner
        tasks = [*self._workers, *([self._cleanup] if self._cleanup else [])]
        if tasks:
            for task in tasks:
                task.cancel()
            with suppress(TimeoutError):
                await asyncio.wait_for(asyncio.gather(*tasks, return_exceptions=True), timeout=STOP_TIMEOUT)
        for runner in list(self._runners.values()):
            await runner.abort()
        self._workers = []
        self._cleanup = None
        _logger.info("Dispatcher stopped")

    async def recover(self) -> int:
        """Settle jobs a previous process left processing when it died mid-run."""
        stranded = await self.deps.jobs.list_by_status(JobStatus.PROCESSING)
        for job in stranded:
            with job_context(job.id, job.session_id):
                _logger.warning("Job %s was left processing by a previous run", job.id)
                await self._fail(job, INTERRUPTED_ERROR)
        return len(stranded)

    async def _worker(self, index: int) -> None:
        while True:
            try:
                job = await self.deps.jobs.claim_next()
            except asyncio.CancelledError:
                raise
            except Exception:
                _logger.exception("Worker %d failed to claim a job", index)
                job = None

            if job is None:
                await asyncio.sleep(self.poll_interval)
                continue

            try:
                with job_context(job.id, job.session_id):
                    await self.process(job)
            except asyncio.CancelledError:
                raise
            except Exception:
                _logger.exception("Worker %d crashed on job %s", index, job.id)

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self.cleanup_interval)
            try:
                await self.deps.jobs.purge_older_than(self.retention)
            except asyncio.CancelledError:
                raise
            except Exception:
                _logger.exception("Job cleanup failed")

    async def process(self, job: Job) -> None:
        """Run a claimed (processing) job through its runner."""
        deps = self.deps
        session = await deps.sessions.get(job.session_id)
        if session is None:
            await deps.jobs.mark_failed(job.id, "Session not found")
            return

        await deps.sessions.set_working(job.session_id, job.id, JobStatus.PROCESSING.value)
        runner = deps.create_runner(job.provider)
        self._runners[job.session_id] = runner
        self._running_jobs[job.session_id] = job
        watchdog = asyncio.create_task(self._watch_for_cancel(job.id, runner))
        _logger.info("Processing job %s (session %s, attempt %d)", job.id, job.session_id, job.attempts)

        try:
            async for item in runner.execute(
                job.session_id,
                job.data.project_path or session.project_path,
                job.data.prompt,
                model=job.data.model,
                allowed_tools=job.data.allowed_tools,
            ):
                await deps.transcript.record(
                    job.session_id,
                    item.provider,
                    item.record,
                    provider_session_id=item.provider_session_id,
                    project_path=session.project_path,
                )
        except asyncio.CancelledError:
            # worker cancelled by stop(): the row must not stay processing
            await asyncio.shield(self._settle_interrupted(job, runner))
            raise
        except Exception as e:
            if await self._was_cancelled(job.id):
                await self._finish_cancelled(job)
            else:
                _logger.warning("Job %s failed: %s", job.id, e)
                await self._fail(job, str(e) or type(e).__name__)
            return
        finally:
            watchdog.cancel()
            with suppress(asyncio.CancelledError):
                await watchdog
            if self._runners.get(job.session_id) is runner:
                del self._runners[job.session_id]
                del self._running_jobs[job.session_id]

        if await self._was_cancelled(job.id):
            await self._finish_cancelled(job)
            return

        if await deps.jobs.mark_completed(job.id):
            await deps.sessions.set_working(job.session_id, None, JobStatus.COMPLETED.value)
            deps.bus.publish_done(job.session_id)
            self._processed += 1
            _logger.info("Job %s completed", job.id)

    async def _fail(self, job: Job, error: str) -> None:
        deps = self.deps
        updated = await deps.jobs.mark_failed(job.id, error)
        if updated is None or updated.status is JobStatus.CANCELLED:
            return
        if updated.status is JobStatus.PENDING:
            # retry scheduled; the session keeps its active job
            await deps.sessions.set_working(job.session_id, job.id, JobStatus.PENDING.value)
            return
        await deps.transcript.record(job.session_id, job.provider, make_notice(new_id(), "error", error))
        await deps.sessions.set_working(job.session_id, None, JobStatus.FAILED.value)
        deps.bus.publish_done(job.session_id)

    async def _was_cancelled(self, job_id: str) -> bool:
        current = await self.deps.jobs.get(job_id)
        return current is None or current.status is JobStatus.CANCELLED

    async def _settle_interrupted(self, job: Job, runner: AgentRunner) -> None:
        await runner.abort()
        if await self._was_cancelled(job.id):
            await self._finish_cancelled(job)
        else:
            _logger.warning("Job %s interrupted by shutdown", job.id)
            await self._fail(job, INTERRUPTED_ERROR)

    async def _finish_cancelled(self, job: Job) -> None:
        # the cancel path already cleared the working flag and published done
        if job.id in self._cancel_noticed:
            self._cancel_noticed.discard(job.id)
        else:
            await self._record_cancel_notice(job)
        _logger.info("Job %s cancelled", job.id)

    async def _record_cancel_notice(self, job: Job) -> None:
        await self.deps.transcript.record(
            job.session_id, job.provider, make_notice(new_id(), "cancelled", CANCELLED_NOTICE)
        )

    async def _watch_for_cancel(self, job_id: str, runner: AgentRunner) -> None:
        """Abort the runner when the job is cancelled out of band (another process, CLI)."""
        while True:
            await asyncio.sleep(self.cancel_check_interval)
            try:
                if await self._was_cancelled(job_id):
                    _logger.info("Job %s no longer active, aborting runner", job_id)
                    await runner.abort()
                    return
            except asyncio.CancelledError:
                raise
            except Exception:
                _logger.exception("Cancellation check failed for job %s", job_id)

    async def cancel_session(self, session_id: str) -> list[str]:
        running = self._running_jobs.get(session_id)
        if running is not None:
            # the notice for a running job is written here, ahead of done
            self._cancel_noticed.add(running.id)

        # job rows must read cancelled before the runner stops
        cancelled = await self.deps.jobs.cancel_all_for_session(session_id, publish=False)
        if running is not None:
            if running.id in cancelled:
                await self._record_cancel_notice(running)
            else:
                self._cancel_noticed.discard(running.id)
        for _ in cancelled:
            self.deps.bus.publish_done(session_id)

        runner = self._runners.get(session_id)
        if runner is not None:
            await runner.abort()
        return cancelled

    def active_runners(self) -> int:
        return len(self._runners)

    async def metrics(self) -> dict:
        metrics = await self.deps.jobs.metrics()
        metrics.extra = {
            "workers": len(self._workers),
            "activeRunners": self.active_runners(),
            "processed": self._processed,
        }
        return metrics.to_dict()
