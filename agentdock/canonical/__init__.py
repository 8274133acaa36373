from typing import Any

from agentdock.canonical import claude, codex
from agentdock.logging import get_logger
from agentdock.messages.models import Message, MessageType, error_message, system_message, user_message
from agentdock.protocols import claude as claude_wire
from agentdock.protocols import codex as codex_wire
from agentdock.protocols.records import NoticeRecord, UserPromptRecord, parse_local_record
from agentdock.sessions.models import Provider

_logger = get_logger(__name__)

_PARSERS = {
    Provider.CLAUDE_CODE: claude.canonicalize,
    Provider.CODEX_CLI: codex.canonicalize,
}


def canonicalize(
    provider: Provider | str,
    raw: Any,
    message_id: str,
    project_path: str | None = None,
) -> Message | None:
    """Map one stored record to its client-facing Message, or None if it has no display form.

    Never raises: a record that cannot be mapped is logged and dropped.
    """
    try:
        if not isinstance(raw, dict):
            return None
        match parse_local_record(raw):
            case UserPromptRecord(content=content):
                return user_message(message_id, content)
            case NoticeRecord(level="error", content=content):
                return error_message(message_id, content)
            case NoticeRecord(content=content):
                return system_message(message_id, content)
        parser = _PARSERS.get(Provider(provider))
        return parser(raw, message_id, project_path) if parser else None
    except Exception:
        _logger.exception("Failed to canonicalize %s record %s", provider, message_id)
        return None


def coarse_type(provider: Provider | str, raw: dict) -> MessageType:
    """Row-level type stored next to the raw record."""
    match parse_local_record(raw):
        case UserPromptRecord():
            return MessageType.USER
        case NoticeRecord(level="error"):
            return MessageType.ERROR
        case NoticeRecord():
            return MessageType.SYSTEM
    if Provider(provider) is Provider.CLAUDE_CODE:
        kind = raw.get("type")
        return MessageType(kind) if kind in ("user", "assistant", "system", "result") else MessageType.ASSISTANT
    match codex_wire.parse_record(raw):
        case codex_wire.LegacyMessage(role="user"):
            return MessageType.USER
        case codex_wire.LegacyMessage(role="system"):
            return MessageType.SYSTEM
    return MessageType.ASSISTANT


def token_count(provider: Provider | str, raw: dict) -> int:
    if Provider(provider) is Provider.CLAUDE_CODE:
        return claude_wire.token_count(raw)
    return 0


__all__ = ["canonicalize", "coarse_type", "token_count"]
