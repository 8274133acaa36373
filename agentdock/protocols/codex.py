"""Wire shapes of the JSONL records printed by `codex exec --json`.

Two record families exist in the wild: the legacy response items
(`message`, `function_call`, `function_call_output`, `reasoning`) and the
event stream (`exec_command_begin/end`, `patch_apply_begin/end`, ...),
optionally wrapped as `{"id": ..., "msg": {...}}`.
"""

from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError


class _Lenient(BaseModel):
    model_config = ConfigDict(extra="ignore")


# --- Session header / state marker (no `type` field) ---


class GitInfo(_Lenient):
    commit_hash: str | None = None
    branch: str | None = None
    repository_url: str | None = None


class SessionHeader(_Lenient):
    id: str
    timestamp: str
    instructions: str | None = None
    git: GitInfo | None = None


class StateMarker(_Lenient):
    record_type: Literal["state"]


# --- Legacy response items ---


class ReasoningSummary(_Lenient):
    type: Literal["summary_text"]
    text: str


class Reasoning(_Lenient):
    type: Literal["reasoning"]
    id: str | None = None
    summary: list[ReasoningSummary] = Field(default_factory=list)
    encrypted_content: str | None = None


class ContentText(_Lenient):
    type: Literal["input_text", "output_text"]
    text: str


class LegacyMessage(_Lenient):
    type: Literal["message"]
    id: str | None = None
    role: Literal["user", "assistant", "system"]
    content: list[ContentText] = Field(min_length=1)

    def joined(self, kind: str) -> str | None:
        parts = [block.text for block in self.content if block.type == kind]
        return "\n\n".join(parts) if parts else None


class FunctionCall(_Lenient):
    type: Literal["function_call"]
    id: str | None = None
    name: str
    arguments: str
    call_id: str


class FunctionCallOutput(_Lenient):
    type: Literal["function_call_output"]
    call_id: str
    output: str


# --- Event stream ---


class AgentMessage(_Lenient):
    type: Literal["agent_message"]
    message: str


class TokenCount(_Lenient):
    type: Literal["token_count"]
    input_tokens: int | None = None
    cached_input_tokens: int | None = None
    output_tokens: int | None = None
    reasoning_output_tokens: int | None = None
    total_tokens: int | None = None


class TaskStarted(_Lenient):
    type: Literal["task_started"]
    model_context_window: int | None = None


class ReasoningSectionBreak(_Lenient):
    type: Literal["agent_reasoning_section_break"]


class AgentReasoning(_Lenient):
    type: Literal["agent_reasoning"]
    text: str


class ParsedCommand(_Lenient):
    type: str
    cmd: str
    path: str | None = None


class ExecCommandBegin(_Lenient):
    type: Literal["exec_command_begin"]
    call_id: str
    command: list[str]
    cwd: str | None = None
    parsed_cmd: list[ParsedCommand] = Field(default_factory=list)

    def display_command(self) -> str:
        c = self.command
        if len(c) >= 3 and c[0] == "bash" and c[1] == "-lc":
            return c[2]
        return " ".join(c)


class ExecCommandOutputDelta(_Lenient):
    type: Literal["exec_command_output_delta"]
    call_id: str
    stream: Literal["stdout", "stderr"]
    chunk: list[int] | str


class Duration(_Lenient):
    secs: int
    nanos: int


class ExecCommandEnd(_Lenient):
    type: Literal["exec_command_end"]
    call_id: str
    stdout: str = ""
    stderr: str = ""
    aggregated_output: str | None = None
    formatted_output: str | None = None
    exit_code: int
    duration: Duration | None = None


class TurnDiff(_Lenient):
    type: Literal["turn_diff"]
    unified_diff: str


class FileUpdate(_Lenient):
    unified_diff: str
    move_path: str | None = None


class FileAdd(_Lenient):
    content: str


class FileChange(_Lenient):
    update: FileUpdate | None = None
    add: FileAdd | None = None
    delete: dict[str, Any] | None = None


class PatchApplyBegin(_Lenient):
    type: Literal["patch_apply_begin"]
    call_id: str
    auto_approved: bool = False
    changes: dict[str, FileChange]


class PatchApplyEnd(_Lenient):
    type: Literal["patch_apply_end"]
    call_id: str
    stdout: str = ""
    stderr: str = ""
    success: bool


TypedRecord = Annotated[
    Reasoning
    | LegacyMessage
    | FunctionCall
    | FunctionCallOutput
    | AgentMessage
    | TokenCount
    | TaskStarted
    | ReasoningSectionBreak
    | AgentReasoning
    | ExecCommandBegin
    | ExecCommandOutputDelta
    | ExecCommandEnd
    | TurnDiff
    | PatchApplyBegin
    | PatchApplyEnd,
    Field(discriminator="type"),
]
_TYPED = TypeAdapter(TypedRecord)

CodexRecord = TypedRecord | SessionHeader | StateMarker


def parse_record(raw: Any) -> CodexRecord | None:
    """Match a decoded JSONL value against the known shapes, in priority order.

    Envelopes are unwrapped first; then typed records by their `type` tag;
    then the untyped state marker and session header. Anything else is None.
    """
    if not isinstance(raw, dict):
        return None
    if "msg" in raw and isinstance(raw.get("msg"), dict) and isinstance(raw.get("id"), (str, int)):
        raw = raw["msg"]
    try:
        if "type" in raw:
            return _TYPED.validate_python(raw)
        if "record_type" in raw:
            return StateMarker.model_validate(raw)
        return SessionHeader.model_validate(raw)
    except ValidationError:
        return None


# --- Payloads embedded in function call arguments / outputs ---


class ShellArguments(_Lenient):
    command: list[str]
    timeout_ms: int | None = None
    workdir: str | None = None


class PlanStep(_Lenient):
    step: str
    status: str


class UpdatePlanArguments(_Lenient):
    explanation: str | None = None
    plan: list[PlanStep] | None = None


class OutputMetadata(_Lenient):
    stdout: str | None = None
    stderr: str | None = None
    error: str | None = None
    exit_code: int | None = None


class FunctionOutputPayload(_Lenient):
    output: str | None = None
    stdout: str | None = None
    stderr: str | None = None
    error: str | None = None
    exit_code: int | None = None
    metadata: OutputMetadata | None = None
