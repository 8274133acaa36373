import asyncio
from pathlib import Path

import pytest
from click.testing import CliRunner
from pydantic import ValidationError

from agentdock.cli import main
from agentdock.config import Config
from agentdock.server.runtime import Runtime


@pytest.fixture
def data_dir(tmp_path: Path, monkeypatch) -> Path:
    path = tmp_path / "data"
    monkeypatch.setenv("AGENTDOCK_DATA_DIR", str(path))
    return path


def seed_pending_job(data_dir: Path, project: Path) -> tuple[str, str]:
    async def seed():
        runtime = Runtime(config=Config(data_dir=data_dir))
        await runtime.connect()
        try:
            session = await runtime.session_service.create(str(project), "claude-code")
            result = await runtime.prompt_service.enqueue_prompt(session.id, "hi")
            return session.id, result["jobId"]
        finally:
            await runtime.close()

    return asyncio.run(seed())


class TestCli:
    def test_status(self, data_dir: Path):
        result = CliRunner().invoke(main, ["status"])
        assert result.exit_code == 0, result.output
        assert "agentdock.db" in result.output
        assert "pending" in result.output

    def test_cancel(self, data_dir: Path, tmp_path: Path):
        session_id, _ = seed_pending_job(data_dir, tmp_path)

        result = CliRunner().invoke(main, ["cancel", session_id])
        assert result.exit_code == 0, result.output
        assert "Cancelled 1 job(s)" in result.output

        result = CliRunner().invoke(main, ["cancel", session_id])
        assert "No active jobs" in result.output

    def test_purge(self, data_dir: Path):
        result = CliRunner().invoke(main, ["purge", "--days", "1"])
        assert result.exit_code == 0, result.output
        assert "Purged 0 job(s)" in result.output

    def test_bad_config_exits(self, data_dir: Path, monkeypatch):
        monkeypatch.setenv("AGENTDOCK_WORKER_CONCURRENCY", "0")
        result = CliRunner().invoke(main, ["status"])
        assert result.exit_code == 1
        assert "Error" in result.output


class TestConfig:
    def test_defaults(self, tmp_path: Path):
        config = Config(data_dir=tmp_path)
        assert config.db_path == tmp_path / "agentdock.db"
        assert config.event_queue_capacity == 200
        assert config.heartbeat_interval == 25

    def test_log_level_normalized(self, tmp_path: Path):
        assert Config(data_dir=tmp_path, log_level="debug").log_level == "DEBUG"
        with pytest.raises(ValidationError):
            Config(data_dir=tmp_path, log_level="chatty")

    @pytest.mark.parametrize(
        "field,value",
        [("worker_concurrency", 0), ("poll_interval", 0), ("retry_base_delay", -1), ("job_max_attempts", 0)],
    )
    def test_rejects_out_of_range(self, tmp_path: Path, field: str, value):
        with pytest.raises(ValidationError):
            Config(data_dir=tmp_path, **{field: value})

    def test_env_prefix(self, tmp_path: Path, monkeypatch):
        monkeypatch.setenv("AGENTDOCK_CODEX_MODEL", "o4-mini")
        assert Config(data_dir=tmp_path).codex_model == "o4-mini"

    def test_log_json_from_env(self, tmp_path: Path, monkeypatch):
        assert Config(data_dir=tmp_path).log_json is False
        monkeypatch.setenv("AGENTDOCK_LOG_JSON", "true")
        assert Config(data_dir=tmp_path).log_json is True
