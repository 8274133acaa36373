import asyncio
from pathlib import Path

import pytest
import pytest_asyncio

from agentdock.bus import EventBus
from agentdock.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from agentdock.events.sse import UpdateState
from agentdock.jobs.models import JobStatus
from agentdock.jobs.store import JobStore
from agentdock.services.prompts import PromptService
from agentdock.services.session import SessionService, claude_directory_for, session_name
from agentdock.services.transcript import TranscriptService
from agentdock.sessions.models import Provider, SessionState
from agentdock.sessions.store import SessionStore
from tests.fakes import assistant_record


@pytest_asyncio.fixture
async def session_service(sessions: SessionStore) -> SessionService:
    return SessionService(sessions)


@pytest_asyncio.fixture
async def prompts(sessions: SessionStore, jobs: JobStore, transcript: TranscriptService, bus: EventBus) -> PromptService:
    return PromptService(sessions, jobs, transcript, bus)


class TestNaming:
    def test_plain_directory(self, tmp_path: Path):
        project = tmp_path / "scratch"
        project.mkdir()
        assert session_name(project) == "scratch"

    def test_git_root(self, tmp_path: Path):
        repo = tmp_path / "myrepo"
        (repo / ".git").mkdir(parents=True)
        assert session_name(repo) == "myrepo"

    def test_inside_git_repo(self, tmp_path: Path):
        repo = tmp_path / "myrepo"
        (repo / ".git").mkdir(parents=True)
        nested = repo / "packages" / "api"
        nested.mkdir(parents=True)
        assert session_name(nested) == "myrepo/packages/api"

    def test_claude_directory(self):
        path = claude_directory_for(Path("/home/dev/my_project"))
        assert path.name == "-home-dev-my-project"
        assert path.parent.name == "projects"


class TestSessionService:
    @pytest.mark.asyncio
    async def test_create(self, session_service: SessionService, tmp_path: Path):
        session = await session_service.create(str(tmp_path), Provider.CLAUDE_CODE)

        assert session.project_path == str(tmp_path.resolve())
        assert session.name == tmp_path.name
        assert session.claude_directory_path.endswith(str(tmp_path.resolve()).replace("/", "-").replace("_", "-"))
        assert not session.is_working
        assert session.state is SessionState.ACTIVE

    @pytest.mark.asyncio
    async def test_codex_session_has_no_claude_directory(self, session_service: SessionService, tmp_path: Path):
        session = await session_service.create(str(tmp_path), "codex-cli")
        assert session.provider is Provider.CODEX_CLI
        assert session.claude_directory_path is None

    @pytest.mark.asyncio
    async def test_create_rejects_bad_paths(self, session_service: SessionService, tmp_path: Path):
        with pytest.raises(ValidationError):
            await session_service.create("relative/path", Provider.CLAUDE_CODE)
        with pytest.raises(ValidationError):
            await session_service.create(str(tmp_path / "missing"), Provider.CLAUDE_CODE)
        with pytest.raises(ValidationError):
            await session_service.create(str(tmp_path), "cursor")

    @pytest.mark.asyncio
    async def test_projects_root(self, sessions: SessionStore, tmp_path: Path):
        root = tmp_path / "projects"
        inside = root / "app"
        inside.mkdir(parents=True)
        outside = tmp_path / "elsewhere"
        outside.mkdir()
        service = SessionService(sessions, projects_root=root.resolve())

        assert (await service.create(str(inside), Provider.CLAUDE_CODE)).name == "app"
        with pytest.raises(AuthorizationError):
            await service.create(str(outside), Provider.CLAUDE_CODE)

    @pytest.mark.asyncio
    async def test_get_touches(self, session_service: SessionService, tmp_path: Path):
        created = await session_service.create(str(tmp_path), Provider.CLAUDE_CODE)
        await session_service.get(created.id)
        fetched = await session_service.get(created.id)
        assert fetched.last_accessed_at >= created.last_accessed_at

        with pytest.raises(NotFoundError):
            await session_service.get("nope")

    @pytest.mark.asyncio
    async def test_list_only_sessions_with_messages(
        self, session_service: SessionService, transcript: TranscriptService, tmp_path: Path
    ):
        talked = await session_service.create(str(tmp_path), Provider.CLAUDE_CODE)
        await session_service.create(str(tmp_path), Provider.CLAUDE_CODE)
        await transcript.record(talked.id, Provider.CLAUDE_CODE, assistant_record("hi"))

        page = await session_service.list()
        assert page["total"] == 1
        assert [s["id"] for s in page["sessions"]] == [talked.id]
        assert page["sessions"][0]["messageCount"] == 1
        assert page["hasMore"] is False

    @pytest.mark.asyncio
    async def test_list_caps_limit(self, session_service: SessionService):
        page = await session_service.list(limit=500)
        assert page["limit"] == 20

    @pytest.mark.asyncio
    async def test_update_merges_metadata(self, session_service: SessionService, tmp_path: Path):
        session = await session_service.create(str(tmp_path), Provider.CLAUDE_CODE)
        await session_service.update(session.id, metadata={"a": 1, "b": 2})
        updated = await session_service.update(session.id, context="ctx", metadata={"b": 3})

        assert updated.context == "ctx"
        assert updated.metadata == {"a": 1, "b": 3}

        with pytest.raises(NotFoundError):
            await session_service.update("nope", context="x")

    @pytest.mark.asyncio
    async def test_delete_is_soft(self, session_service: SessionService, sessions: SessionStore, tmp_path: Path):
        session = await session_service.create(str(tmp_path), Provider.CLAUDE_CODE)
        assert await session_service.active_count() == 1

        await session_service.delete(session.id)
        assert (await sessions.get(session.id)).state is SessionState.INACTIVE
        assert await session_service.active_count() == 0

        with pytest.raises(NotFoundError):
            await session_service.delete("nope")


class TestPromptService:
    @pytest.mark.asyncio
    async def test_enqueue(
        self,
        prompts: PromptService,
        session_service: SessionService,
        sessions: SessionStore,
        jobs: JobStore,
        bus: EventBus,
        tmp_path: Path,
    ):
        session = await session_service.create(str(tmp_path), Provider.CODEX_CLI)
        sub = bus.subscribe(session.id)

        result = await prompts.enqueue_prompt(session.id, "Add a README", model="o3")

        job = await jobs.get(result["jobId"])
        assert job.status is JobStatus.PENDING
        assert job.prompt_id == result["messageId"]
        assert job.provider is Provider.CODEX_CLI
        assert job.data.model == "o3"
        assert job.data.project_path == session.project_path

        refreshed = await sessions.get(session.id)
        assert refreshed.is_working
        assert refreshed.current_job_id == job.id
        assert refreshed.last_job_status == "pending"
        assert refreshed.message_count == 1

        event = await sub.next()
        assert event.state is UpdateState.RUNNING
        assert event.message.dump() == {
            "id": result["messageId"],
            "type": "user",
            "data": {"content": "Add a README"},
            "parentToolUseId": None,
        }

    @pytest.mark.asyncio
    async def test_enqueue_errors(self, prompts: PromptService, session_service: SessionService, tmp_path: Path):
        with pytest.raises(NotFoundError):
            await prompts.enqueue_prompt("missing", "hi")

        session = await session_service.create(str(tmp_path), Provider.CLAUDE_CODE)
        await prompts.enqueue_prompt(session.id, "one")
        with pytest.raises(ConflictError):
            await prompts.enqueue_prompt(session.id, "two")

    @pytest.mark.asyncio
    async def test_concurrent_enqueue_records_one_prompt(
        self,
        prompts: PromptService,
        session_service: SessionService,
        sessions: SessionStore,
        jobs: JobStore,
        bus: EventBus,
        tmp_path: Path,
    ):
        session = await session_service.create(str(tmp_path), Provider.CLAUDE_CODE)
        sub = bus.subscribe(session.id)

        results = await asyncio.gather(
            prompts.enqueue_prompt(session.id, "one"),
            prompts.enqueue_prompt(session.id, "two"),
            return_exceptions=True,
        )
        accepted = [r for r in results if isinstance(r, dict)]
        assert len(accepted) == 1
        assert sum(isinstance(r, ConflictError) for r in results) == 1

        assert len(await jobs.list_for_session(session.id)) == 1
        raw = await prompts.get_raw_messages(session.id)
        assert [r["id"] for r in raw] == [accepted[0]["messageId"]]
        refreshed = await sessions.get(session.id)
        assert refreshed.message_count == 1
        assert refreshed.current_job_id == accepted[0]["jobId"]

        assert sub.pending == 1

    @pytest.mark.asyncio
    async def test_cancel(self, prompts: PromptService, session_service: SessionService, sessions: SessionStore, tmp_path: Path):
        session = await session_service.create(str(tmp_path), Provider.CLAUDE_CODE)
        result = await prompts.enqueue_prompt(session.id, "one")

        cancelled = await prompts.cancel_session(session.id)
        assert cancelled == {"sessionId": session.id, "cancelledJobs": [result["jobId"]]}
        assert not (await sessions.get(session.id)).is_working

        # the session is free again
        await prompts.enqueue_prompt(session.id, "two")

        with pytest.raises(NotFoundError):
            await prompts.cancel_session("missing")

    @pytest.mark.asyncio
    async def test_subscribe_unknown_session(self, prompts: PromptService):
        with pytest.raises(NotFoundError):
            await prompts.subscribe("missing")


class TestMessagePages:
    @pytest.mark.asyncio
    async def test_cursor_pagination(
        self, prompts: PromptService, session_service: SessionService, transcript: TranscriptService, tmp_path: Path
    ):
        session = await session_service.create(str(tmp_path), Provider.CLAUDE_CODE)
        for i in range(5):
            await transcript.record(session.id, Provider.CLAUDE_CODE, assistant_record(f"m{i}"))
        # stored but without a display form
        await transcript.record(session.id, Provider.CLAUDE_CODE, {"type": "result", "session_id": "x"})

        first = await prompts.get_messages(session.id, limit=2)
        assert [m["data"]["data"]["content"] for m in first["messages"]] == ["m0", "m1"]
        assert first["pagination"]["hasNextPage"] is True
        assert first["pagination"]["totalFetched"] == 2
        assert first["session"]["messageCount"] == 6

        second = await prompts.get_messages(session.id, cursor=first["pagination"]["nextCursor"], limit=2)
        assert [m["data"]["data"]["content"] for m in second["messages"]] == ["m2", "m3"]

        last = await prompts.get_messages(session.id, cursor=second["pagination"]["nextCursor"], limit=10)
        assert [m["data"]["data"]["content"] for m in last["messages"]] == ["m4"]
        assert last["pagination"] == {"hasNextPage": False, "nextCursor": None, "totalFetched": 2}

    @pytest.mark.asyncio
    async def test_raw_messages(
        self, prompts: PromptService, session_service: SessionService, transcript: TranscriptService, tmp_path: Path
    ):
        session = await session_service.create(str(tmp_path), Provider.CLAUDE_CODE)
        record = assistant_record("hello")
        await transcript.record(session.id, Provider.CLAUDE_CODE, record, provider_session_id="cs-1")

        raw = await prompts.get_raw_messages(session.id)
        assert len(raw) == 1
        assert raw[0]["data"] == record
        assert raw[0]["providerSessionId"] == "cs-1"
        assert raw[0]["type"] == "assistant"

        with pytest.raises(NotFoundError):
            await prompts.get_raw_messages("missing")
