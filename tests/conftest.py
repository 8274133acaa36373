from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
import pytest_asyncio

from agentdock.bus import EventBus
from agentdock.database import Database
from agentdock.jobs.store import JobStore
from agentdock.messages.store import MessageStore
from agentdock.services.transcript import TranscriptService
from agentdock.sessions.models import Provider, Session
from agentdock.sessions.store import SessionStore
from agentdock.utils import new_id, utcnow
from tests.fakes import FAKE_CODEX


@pytest_asyncio.fixture
async def db(tmp_path: Path) -> AsyncGenerator[Database]:
    db = Database(tmp_path / "test_agentdock.db")
    await db.connect()
    yield db
    await db.close()


@pytest_asyncio.fixture
async def bus() -> AsyncGenerator[EventBus]:
    bus = EventBus(capacity=200, heartbeat_interval=3600)
    yield bus
    bus.close()


@pytest_asyncio.fixture
async def sessions(db: Database) -> SessionStore:
    store = SessionStore(db)
    await store.init_schema()
    return store


@pytest_asyncio.fixture
async def messages(db: Database, sessions: SessionStore) -> MessageStore:
    store = MessageStore(db)
    await store.init_schema()
    return store


@pytest_asyncio.fixture
async def jobs(db: Database, sessions: SessionStore, bus: EventBus) -> JobStore:
    store = JobStore(db, sessions, bus=bus, max_attempts=3, base_delay=2.0)
    await store.init_schema()
    return store


@pytest_asyncio.fixture
async def transcript(db: Database, sessions: SessionStore, messages: MessageStore, bus: EventBus) -> TranscriptService:
    return TranscriptService(db, sessions, messages, bus)


async def make_session(
    sessions: SessionStore,
    project_path: Path | str = "/tmp",
    provider: Provider = Provider.CLAUDE_CODE,
) -> Session:
    now = utcnow()
    session = Session(
        id=new_id(),
        provider=provider,
        project_path=str(project_path),
        name=Path(project_path).name or "root",
        created_at=now,
        updated_at=now,
        last_accessed_at=now,
    )
    return await sessions.create(session)


@pytest.fixture
def fake_codex(tmp_path: Path, monkeypatch) -> dict[str, Path]:
    script = tmp_path / "fake_codex.py"
    script.write_text(FAKE_CODEX)
    paths = {
        "script": script,
        "args": tmp_path / "args.json",
        "history": tmp_path / "history.jsonl",
        "project": tmp_path / "project",
    }
    paths["project"].mkdir()
    monkeypatch.setenv("FAKE_CODEX_ARGS", str(paths["args"]))
    monkeypatch.setenv("FAKE_CODEX_HISTORY", str(paths["history"]))
    return paths
