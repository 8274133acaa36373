import asyncio
import dataclasses
from collections.abc import AsyncIterator, Callable
from contextlib import suppress
from pathlib import Path
from typing import Any, TypeAlias

from claude_agent_sdk import ClaudeAgentOptions, query
from claude_agent_sdk.types import (
    AssistantMessage,
    ResultMessage,
    SystemMessage,
    TextBlock,
    ThinkingBlock,
    ToolResultBlock,
    ToolUseBlock,
    UserMessage,
)

from agentdock.constants import CLAUDE_DEFAULT_MODEL
from agentdock.errors import RunnerError
from agentdock.logging import get_logger
from agentdock.messages.store import MessageStore
from agentdock.runners.base import AgentRunner, RunnerItem
from agentdock.sessions.models import Provider

_logger = get_logger(__name__)

QueryFn: TypeAlias = Callable[..., AsyncIterator[Any]]

_BLOCK_TYPES = {
    TextBlock: "text",
    ThinkingBlock: "thinking",
    ToolUseBlock: "tool_use",
    ToolResultBlock: "tool_result",
}

_DONE = object()


def _block_to_dict(block: Any) -> dict[str, Any]:
    data = dataclasses.asdict(block) if dataclasses.is_dataclass(block) else {"value": repr(block)}
    return {"type": _BLOCK_TYPES.get(type(block), "unknown"), **data}


def _content_to_wire(content: Any) -> Any:
    if isinstance(content, str):
        return content
    return [_block_to_dict(block) for block in content]


def to_record(message: Any, session_id: str | None) -> dict[str, Any]:
    """Convert an SDK message object back to the CLI's stream-json shape."""
    if isinstance(message, AssistantMessage):
        return {
            "type": "assistant",
            "message": {"role": "assistant", "model": message.model, "content": _content_to_wire(message.content)},
            "parent_tool_use_id": message.parent_tool_use_id,
            "session_id": session_id,
        }
    if isinstance(message, UserMessage):
        return {
            "type": "user",
            "message": {"role": "user", "content": _content_to_wire(message.content)},
            "parent_tool_use_id": message.parent_tool_use_id,
            "session_id": session_id,
        }
    if isinstance(message, SystemMessage):
        return {**message.data, "type": "system", "subtype": message.subtype}
    if isinstance(message, ResultMessage):
        record = dataclasses.asdict(message)
        record["type"] = "result"
        # denials are replayed separately and never stored
        record["permission_denials"] = []
        return record
    if dataclasses.is_dataclass(message):
        return {"type": "stream_event", **dataclasses.asdict(message)}
    return {"type": "unknown", "value": repr(message)}


def _session_id_of(message: Any) -> str | None:
    if isinstance(message, SystemMessage) and message.subtype == "init":
        value = message.data.get("session_id")
        return value if isinstance(value, str) else None
    if isinstance(message, ResultMessage):
        return message.session_id
    return None


class ClaudeRunner(AgentRunner):
    """Drives a Claude Code conversation through `claude_agent_sdk.query`.

    The SDK iterator is pumped by a background task so abort() can cancel it
    from another task without the consumer seeing an error.
    """

    provider = Provider.CLAUDE_CODE

    def __init__(
        self,
        messages: MessageStore,
        model: str = CLAUDE_DEFAULT_MODEL,
        cli_path: Path | None = None,
        query_fn: QueryFn = query,
    ):
        super().__init__(messages)
        self.model = model
        self.cli_path = cli_path
        self._query = query_fn
        self._pump: asyncio.Task | None = None
        self._queue: asyncio.Queue | None = None

    def build_options(
        self,
        project_path: str,
        model: str | None,
        allowed_tools: list[str] | None,
        resume_id: str | None,
    ) -> ClaudeAgentOptions:
        options_kwargs: dict[str, Any] = dict(
            cwd=project_path,
            permission_mode="bypassPermissions",
            model=model or self.model,
            resume=resume_id,
            stderr=lambda line: _logger.debug("claude stderr: %s", line.rstrip()),
        )
        if allowed_tools:
            options_kwargs["allowed_tools"] = allowed_tools
        if self.cli_path:
            options_kwargs["cli_path"] = self.cli_path
        return ClaudeAgentOptions(**options_kwargs)

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
        options = self.build_options(project_path, model, allowed_tools, resume_id)
        queue: asyncio.Queue = asyncio.Queue()
        self._queue = queue

        async def pump() -> None:
            try:
                async for message in self._query(prompt=prompt, options=options):
                    await queue.put(message)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                await queue.put(e)
            finally:
                queue.put_nowait(_DONE)

        _logger.info("Starting claude query (resume=%s)", resume_id or "-")
        self._pump = asyncio.create_task(pump())
        provider_session_id = resume_id
        try:
            while True:
                item = await queue.get()
                if item is _DONE or self._aborted:
                    break
                if isinstance(item, Exception):
                    raise RunnerError(str(item) or type(item).__name__) from item
                provider_session_id = _session_id_of(item) or provider_session_id
                yield RunnerItem(
                    provider=self.provider,
                    record=to_record(item, provider_session_id),
                    provider_session_id=provider_session_id,
                )
        finally:
            if not self._pump.done():
                self._pump.cancel()
            with suppress(asyncio.CancelledError):
                await self._pump
            self._pump = None
            self._queue = None

    async def _abort(self) -> None:
        _logger.info("Aborting claude query")
        if self._pump is not None and not self._pump.done():
            self._pump.cancel()
        if self._queue is not None:
            self._queue.put_nowait(_DONE)
