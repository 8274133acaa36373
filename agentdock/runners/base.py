from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from agentdock.errors import AlreadyProcessingError, RunnerError
from agentdock.messages.store import MessageStore
from agentdock.sessions.models import Provider


@dataclass(frozen=True)
class RunnerItem:
    provider: Provider
    record: dict[str, Any]
    provider_session_id: str | None = None


class AgentRunner(ABC):
    """Drives one external agent run and streams its raw records.

    One execute() at a time per instance; abort() may be called from any
    task, any number of times, before, during or after a run.
    """

    provider: Provider

    def __init__(self, messages: MessageStore):
        self.messages = messages
        self._processing = False
        self._aborted = False

    @property
    def is_processing(self) -> bool:
        return self._processing

    @property
    def aborted(self) -> bool:
        return self._aborted

    async def execute(
        self,
        session_id: str,
        project_path: str,
        prompt: str,
        model: str | None = None,
        allowed_tools: list[str] | None = None,
    ) -> AsyncIterator[RunnerItem]:
        if self._processing:
            raise AlreadyProcessingError()
        self._processing = True
        self._aborted = False
        try:
            if not Path(project_path).is_dir():
                raise RunnerError(f"Project path does not exist: {project_path}")
            resume_id = await self.messages.last_provider_session_id(session_id)
            async for item in self._run(project_path, prompt, model, allowed_tools, resume_id):
                yield item
        finally:
            self._processing = False

    @abstractmethod
    def _run(
        self,
        project_path: str,
        prompt: str,
        model: str | None,
        allowed_tools: list[str] | None,
        resume_id: str | None,
    ) -> AsyncIterator[RunnerItem]: ...

    async def abort(self) -> None:
        if self._aborted or not self._processing:
            return
        self._aborted = True
        await self._abort()

    @abstractmethod
    async def _abort(self) -> None: ...
