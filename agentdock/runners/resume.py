"""Recover a Codex session id from ~/.codex/history.jsonl.

`codex exec` never prints the id of the conversation it creates; it only
appends `{"session_id", "ts", "text"}` to its history log. A random marker
embedded in the prompt correlates our run with the log entry it produced.
"""

import asyncio
import json
import os
import time
from collections import deque
from dataclasses import dataclass
from pathlib import Path

from agentdock.config import CODEX_HISTORY_PATH
from agentdock.constants import CODEX_MARKER_PREFIX, HISTORY_POLL_INTERVAL, HISTORY_TAIL_LINES, HISTORY_TIMEOUT
from agentdock.logging import get_logger

_logger = get_logger(__name__)


@dataclass(frozen=True)
class HistoryEntry:
    session_id: str
    ts: int
    text: str


def generate_marker() -> str:
    return f"{CODEX_MARKER_PREFIX} {os.urandom(12).hex()}"


def _normalize(text: str) -> str:
    return text.replace("\r\n", "\n").replace("\r", "\n")


def _parse_entry(line: str) -> HistoryEntry | None:
    try:
        obj = json.loads(line)
    except ValueError:
        return None
    if not isinstance(obj, dict):
        return None
    session_id, ts, text = obj.get("session_id"), obj.get("ts"), obj.get("text")
    if not isinstance(session_id, str) or not isinstance(text, str):
        return None
    if isinstance(ts, bool) or not isinstance(ts, (int, float)):
        return None
    return HistoryEntry(session_id=session_id, ts=int(ts), text=text)


def _read_tail_sync(path: Path, max_lines: int) -> list[HistoryEntry]:
    try:
        with path.open(encoding="utf-8", errors="replace") as f:
            lines = deque(f, maxlen=max_lines)
    except FileNotFoundError:
        return []
    entries = []
    for line in lines:
        line = line.strip()
        if line and (entry := _parse_entry(line)):
            entries.append(entry)
    return entries


async def read_history_tail(path: Path = CODEX_HISTORY_PATH, max_lines: int = HISTORY_TAIL_LINES) -> list[HistoryEntry]:
    return await asyncio.to_thread(_read_tail_sync, path, max_lines)


def match_entry(entries: list[HistoryEntry], marker: str, since_ts: float = 0) -> str | None:
    """Newest-first scan for an entry at/after since_ts whose text contains the marker."""
    needle = _normalize(marker)
    for entry in reversed(entries):
        if entry.ts < since_ts:
            continue
        if needle in _normalize(entry.text):
            return entry.session_id
    return None


async def find_session_id(marker: str, since_ts: float = 0, path: Path = CODEX_HISTORY_PATH) -> str | None:
    return match_entry(await read_history_tail(path), marker, since_ts)


async def wait_for_session_id(
    marker: str,
    since_ts: float = 0,
    timeout: float = HISTORY_TIMEOUT,
    poll_interval: float = HISTORY_POLL_INTERVAL,
    path: Path = CODEX_HISTORY_PATH,
) -> str | None:
    deadline = time.monotonic() + timeout
    while True:
        if session_id := await find_session_id(marker, since_ts, path):
            return session_id
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            _logger.warning("No history entry matched marker within %.1fs", timeout)
            return None
        await asyncio.sleep(min(poll_interval, remaining))
