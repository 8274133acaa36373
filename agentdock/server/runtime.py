import asyncio

from agentdock.bus import EventBus
from agentdock.config import Config, get_config
from agentdock.database import Database
from agentdock.jobs.store import JobStore
from agentdock.logging import get_logger
from agentdock.messages.store import MessageStore
from agentdock.runners import AgentRunner, create_runner
from agentdock.services.prompts import PromptService
from agentdock.services.session import SessionService
from agentdock.services.transcript import TranscriptService
from agentdock.sessions.models import Provider
from agentdock.sessions.store import SessionStore
from agentdock.worker.dispatcher import Dispatcher, DispatcherDeps

_logger = get_logger(__name__)


class Runtime:
    def __init__(self, config: Config | None = None):
        self.config = config or get_config()
        self.db = Database(self.config.db_path)
        self.bus = EventBus(
            capacity=self.config.event_queue_capacity,
            heartbeat_interval=self.config.heartbeat_interval,
        )

        self.sessions = SessionStore(self.db)
        self.messages = MessageStore(self.db)
        self.jobs = JobStore(
            self.db,
            self.sessions,
            bus=self.bus,
            max_attempts=self.config.job_max_attempts,
            base_delay=self.config.retry_base_delay,
        )
        self.transcript = TranscriptService(self.db, self.sessions, self.messages, self.bus)

        self.dispatcher = Dispatcher(
            DispatcherDeps(
                jobs=self.jobs,
                sessions=self.sessions,
                transcript=self.transcript,
                bus=self.bus,
                create_runner=self.create_runner,
            ),
            concurrency=self.config.worker_concurrency,
            poll_interval=self.config.poll_interval,
            cancel_check_interval=self.config.cancel_check_interval,
            cleanup_interval=self.config.cleanup_interval,
            retention_days=self.config.job_retention_days,
        )
        self.session_service = SessionService(self.sessions, projects_root=self.config.projects_root)
        self.prompt_service = PromptService(
            self.sessions, self.jobs, self.transcript, self.bus, cancel=self.dispatcher.cancel_session
        )
        self._connected = False

    def create_runner(self, provider: Provider) -> AgentRunner:
        return create_runner(provider, self.messages, self.config)

    async def connect(self) -> None:
        if self._connected:
            return

        self.config.data_dir.mkdir(parents=True, exist_ok=True)
        await self.db.connect()
        # sessions first: messages reference it
        for store in (self.sessions, self.messages, self.jobs):
            await store.init_schema()
        self._connected = True
        _logger.info("Connected to %s", self.config.db_path)

    def start_dispatcher(self) -> None:
        self.dispatcher.start()

    async def recover_jobs(self) -> None:
        recovered = await self.dispatcher.recover()
        if recovered:
            _logger.warning("Settled %d job(s) interrupted by a previous shutdown", recovered)

    async def close(self) -> None:
        await self.dispatcher.stop()
        self.bus.close()
        await self.db.close()
        self._connected = False


_runtime: Runtime | None = None
_runtime_lock = asyncio.Lock()


async def get_runtime_async(config: Config | None = None) -> Runtime:
    global _runtime
    async with _runtime_lock:
        if _runtime is None:
            _runtime = Runtime(config=config)
            await _runtime.connect()
            await _runtime.recover_jobs()
            _runtime.start_dispatcher()
    return _runtime


def get_runtime() -> Runtime:
    if _runtime is None:
        raise RuntimeError("Runtime not initialized. Call get_runtime_async() first.")
    if not _runtime._connected:
        raise RuntimeError("Runtime not connected. Call await runtime.connect() first.")
    return _runtime


async def reset_runtime() -> None:
    global _runtime
    async with _runtime_lock:
        if _runtime is not None:
            await _runtime.close()
            _runtime = None
