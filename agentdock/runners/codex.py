import asyncio
import json
import time
from collections.abc import AsyncIterator
from contextlib import suppress
from pathlib import Path

from agentdock.config import CODEX_HISTORY_PATH
from agentdock.constants import (
    CODEX_DEFAULT_MODEL,
    CODEX_REASONING_EFFORT,
    CODEX_RESUME_POLL_INTERVAL,
    CODEX_RESUME_TIMEOUT,
    CODEX_STREAM_LIMIT,
)
from agentdock.errors import ResumptionTimeoutError, RunnerError
from agentdock.logging import get_logger
from agentdock.messages.store import MessageStore
from agentdock.protocols.codex import parse_record
from agentdock.runners import resume
from agentdock.runners.base import AgentRunner, RunnerItem
from agentdock.sessions.models import Provider

_logger = get_logger(__name__)


class CodexRunner(AgentRunner):
    """Runs `codex exec --json` as a child process and streams its JSONL stdout.

    The CLI is silent on stderr during normal operation, so any stderr output
    kills the run.
    """

    provider = Provider.CODEX_CLI

    def __init__(
        self,
        messages: MessageStore,
        command: list[str] | None = None,
        model: str = CODEX_DEFAULT_MODEL,
        reasoning_effort: str = CODEX_REASONING_EFFORT,
        history_path: Path = CODEX_HISTORY_PATH,
        resume_timeout: float = CODEX_RESUME_TIMEOUT,
        resume_poll_interval: float = CODEX_RESUME_POLL_INTERVAL,
    ):
        super().__init__(messages)
        self.command = command or ["codex"]
        self.model = model
        self.reasoning_effort = reasoning_effort
        self.history_path = history_path
        self.resume_timeout = resume_timeout
        self.resume_poll_interval = resume_poll_interval
        self._proc: asyncio.subprocess.Process | None = None
        self._stderr: list[str] = []
        self._abort_event = asyncio.Event()

    def build_args(self, prompt: str, model: str | None, resume_id: str | None) -> list[str]:
        args = [
            *self.command,
            "--yolo",
            "-c",
            f"model_reasoning_effort={self.reasoning_effort}",
            "--search",
            "-m",
            model or self.model,
            "exec",
        ]
        if resume_id:
            args += ["resume", resume_id]
        return [*args, "--json", prompt]

    async def _run(
        self,
        project_path: str,
        prompt: str,
        model: str | None,
        allowed_tools: list[str] | None,
        resume_id: str | None,
    ) -> AsyncIterator[RunnerItem]:
        # abort() may land while execute() is still looking up the resume id
        if self._aborted:
            return
        self._abort_event.clear()
        marker = None
        if not resume_id:
            marker = resume.generate_marker()
            prompt = f"{prompt}\n\n{marker}"

        since_ts = int(time.time())
        self._stderr = []
        self._proc = await asyncio.create_subprocess_exec(
            *self.build_args(prompt, model, resume_id),
            cwd=project_path,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            limit=CODEX_STREAM_LIMIT,
        )
        proc = self._proc
        _logger.info("Started codex (pid %d, resume=%s)", proc.pid, resume_id or "-")
        drain = asyncio.create_task(self._drain_stderr(proc))

        provider_session_id = resume_id
        try:
            while line := await proc.stdout.readline():
                if self._aborted or self._stderr:
                    break
                record = self._decode(line)
                if record is None:
                    continue
                if provider_session_id is None and marker:
                    provider_session_id = await self._wait_for_session_id(marker, since_ts)
                    if self._aborted:
                        break
                    if provider_session_id is None:
                        self._kill()
                        raise ResumptionTimeoutError("Timed out waiting for Codex session id")
                yield RunnerItem(provider=self.provider, record=record, provider_session_id=provider_session_id)

            if self._aborted:
                # the abort may have landed before the process existed
                self._kill()
            returncode = await proc.wait()
            await drain
        finally:
            self._kill()
            if not drain.done():
                drain.cancel()
                with suppress(asyncio.CancelledError):
                    await drain
            self._proc = None

        if self._aborted:
            return
        if self._stderr:
            raise RunnerError("".join(self._stderr).strip())
        if returncode != 0:
            raise RunnerError(f"codex exited with code {returncode}")

    async def _wait_for_session_id(self, marker: str, since_ts: int) -> str | None:
        """History lookup that gives up as soon as the run is aborted."""
        lookup = asyncio.create_task(
            resume.wait_for_session_id(
                marker,
                since_ts=since_ts,
                timeout=self.resume_timeout,
                poll_interval=self.resume_poll_interval,
                path=self.history_path,
            )
        )
        aborted = asyncio.create_task(self._abort_event.wait())
        try:
            await asyncio.wait((lookup, aborted), return_when=asyncio.FIRST_COMPLETED)
        finally:
            lookup.cancel()
            aborted.cancel()
        if lookup.done() and not lookup.cancelled():
            return lookup.result()
        return None

    def _decode(self, line: bytes) -> dict | None:
        text = line.decode("utf-8", errors="replace").rstrip("\r\n").strip()
        if not text:
            return None
        try:
            raw = json.loads(text)
        except ValueError:
            _logger.debug("Skipping non-JSON codex line: %s", text[:200])
            return None
        if parse_record(raw) is None:
            _logger.debug("Skipping unrecognized codex record: %s", text[:200])
            return None
        return raw

    async def _drain_stderr(self, proc: asyncio.subprocess.Process) -> None:
        while chunk := await proc.stderr.read(4096):
            text = chunk.decode("utf-8", errors="replace")
            if not text.strip():
                continue
            self._stderr.append(text)
            if not self._aborted:
                _logger.error("codex wrote to stderr, terminating: %s", text.strip()[:500])
                self._kill()

    def _kill(self) -> None:
        if self._proc is not None and self._proc.returncode is None:
            with suppress(ProcessLookupError):
                self._proc.kill()

    async def _abort(self) -> None:
        _logger.info("Aborting codex run")
        self._abort_event.set()
        self._kill()
