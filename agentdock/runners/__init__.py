import shlex

from agentdock.config import Config
from agentdock.messages.store import MessageStore
from agentdock.runners.base import AgentRunner, RunnerItem
from agentdock.runners.claude import ClaudeRunner
from agentdock.runners.codex import CodexRunner
from agentdock.sessions.models import Provider


def create_runner(provider: Provider, messages: MessageStore, config: Config) -> AgentRunner:
    match Provider(provider):
        case Provider.CLAUDE_CODE:
            return ClaudeRunner(messages, model=config.claude_model, cli_path=config.claude_cli_path)
        case Provider.CODEX_CLI:
            return CodexRunner(
                messages,
                command=shlex.split(config.codex_command),
                model=config.codex_model,
                reasoning_effort=config.codex_reasoning_effort,
                history_path=config.codex_history_path,
                resume_timeout=config.codex_resume_timeout,
                resume_poll_interval=config.codex_resume_poll_interval,
            )
    raise ValueError(f"Unsupported provider: {provider}")


__all__ = ["AgentRunner", "ClaudeRunner", "CodexRunner", "RunnerItem", "create_runner"]
