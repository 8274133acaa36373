import asyncio
from typing import Any

from agentdock.errors import RunnerError
from agentdock.messages.store import MessageStore
from agentdock.runners.base import AgentRunner, RunnerItem
from agentdock.sessions.models import Provider

# Stand-in for the codex CLI: records argv, optionally appends the history
# entry codex would write, then prints JSONL. FAKE_CODEX_MODE selects failures.
FAKE_CODEX = r'''
import json, os, sys, time

argv = sys.argv[1:]
with open(os.environ["FAKE_CODEX_ARGS"], "w") as f:
    json.dump(argv, f)

mode = os.environ.get("FAKE_CODEX_MODE", "ok")
prompt = argv[-1]
resumed = "resume" in argv

def emit(obj):
    print(json.dumps(obj), flush=True)

if mode == "stderr":
    sys.stderr.write("fatal: not logged in\n")
    sys.stderr.flush()
    time.sleep(10)
    sys.exit(1)

if mode == "exit":
    sys.exit(3)

if not resumed and mode != "nohistory":
    time.sleep(0.05)
    with open(os.environ["FAKE_CODEX_HISTORY"], "a") as f:
        f.write(json.dumps({"session_id": "codex-sess-1", "ts": int(time.time()), "text": prompt}) + "\n")

emit({"id": "codex-sess-1", "timestamp": "2025-01-01T00:00:00Z"})
print("this is not json", flush=True)
print("", flush=True)
emit({"id": "0", "msg": {"type": "agent_message", "message": "Looking around"}})

if mode == "hang":
    time.sleep(30)

emit({"type": "exec_command_begin", "call_id": "c1", "command": ["bash", "-lc", "ls"]})
emit({"type": "exec_command_end", "call_id": "c1", "stdout": "a", "stderr": "", "exit_code": 0})
emit({"type": "brand_new_event", "x": 1})
'''


def assistant_record(text: str) -> dict[str, Any]:
    return {
        "type": "assistant",
        "message": {"role": "assistant", "model": "sonnet", "content": [{"type": "text", "text": text}]},
        "parent_tool_use_id": None,
        "session_id": "scripted-sess",
    }


class ScriptedRunner(AgentRunner):
    """Yields canned records, then optionally blocks on a gate until released or aborted."""

    provider = Provider.CLAUDE_CODE

    def __init__(
        self,
        messages: MessageStore,
        records: list[dict] | None = None,
        gate: asyncio.Event | None = None,
        error: str | None = None,
    ):
        super().__init__(messages)
        self.records = records if records is not None else [assistant_record("working")]
        self.gate = gate
        self.error = error
        self.prompts: list[str] = []
        self._released = asyncio.Event()

    async def _run(self, project_path, prompt, model, allowed_tools, resume_id):
        self.prompts.append(prompt)
        for record in self.records:
            yield RunnerItem(provider=self.provider, record=record, provider_session_id="scripted-sess")
        if self.gate is not None:
            waiters = [asyncio.create_task(self.gate.wait()), asyncio.create_task(self._released.wait())]
            try:
                await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
            finally:
                for task in waiters:
                    task.cancel()
        if self._aborted:
            return
        if self.error:
            raise RunnerError(self.error)

    async def _abort(self) -> None:
        self._released.set()
