"""Wire shapes of the records streamed by the Claude agent SDK.

Records are stored as the dicts the CLI emits (see runners/claude.py for the
SDK-object -> dict conversion) and validated lazily on read.
"""

from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError


class _Lenient(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


# --- Content blocks ---


class TextBlock(_Lenient):
    type: Literal["text"]
    text: str


class ThinkingBlock(_Lenient):
    type: Literal["thinking"]
    thinking: str


class ToolUseBlock(_Lenient):
    type: Literal["tool_use"]
    id: str
    name: str
    input: dict[str, Any] = Field(default_factory=dict)


class ToolResultBlock(_Lenient):
    type: Literal["tool_result"]
    tool_use_id: str
    content: str | list[dict[str, Any]] | None = None
    is_error: bool | None = None

    def text(self) -> str:
        if self.content is None:
            return ""
        if isinstance(self.content, str):
            return self.content
        return "\n".join(part.get("text", "") for part in self.content if part.get("type") == "text")


ContentBlock = Annotated[TextBlock | ThinkingBlock | ToolUseBlock | ToolResultBlock, Field(discriminator="type")]
_BLOCK = TypeAdapter(ContentBlock)


def parse_blocks(raw: list[dict[str, Any]]) -> list[ContentBlock]:
    """Validate each block independently; unknown block types are skipped."""
    blocks = []
    for item in raw:
        try:
            blocks.append(_BLOCK.validate_python(item))
        except ValidationError:
            continue
    return blocks


# --- Records ---


class UserBody(_Lenient):
    role: str = "user"
    content: str | list[dict[str, Any]]


class AssistantBody(_Lenient):
    role: str = "assistant"
    model: str | None = None
    content: list[dict[str, Any]]
    usage: dict[str, Any] | None = None


class SystemBody(_Lenient):
    content: str


class UserRecord(_Lenient):
    type: Literal["user"]
    message: UserBody
    parent_tool_use_id: str | None = None
    session_id: str | None = None


class AssistantRecord(_Lenient):
    type: Literal["assistant"]
    message: AssistantBody
    parent_tool_use_id: str | None = None
    session_id: str | None = None


class SystemRecord(_Lenient):
    type: Literal["system"]
    subtype: str | None = None
    session_id: str | None = None
    message: SystemBody | None = None


class ResultRecord(_Lenient):
    type: Literal["result"]
    subtype: str | None = None
    session_id: str | None = None
    is_error: bool = False
    result: str | None = None
    usage: dict[str, Any] | None = None
    permission_denials: list[Any] = Field(default_factory=list)


class StreamEventRecord(_Lenient):
    type: Literal["stream_event"]
    session_id: str | None = None


ClaudeRecord = Annotated[
    UserRecord | AssistantRecord | SystemRecord | ResultRecord | StreamEventRecord,
    Field(discriminator="type"),
]
_RECORD = TypeAdapter(ClaudeRecord)


def parse_record(raw: dict[str, Any]) -> ClaudeRecord | None:
    try:
        return _RECORD.validate_python(raw)
    except ValidationError:
        return None


# --- Tool inputs, validated structurally per tool name ---


class TodoInputItem(_Lenient):
    content: str
    status: str
    active_form: str | None = Field(default=None, alias="activeForm")


class TodoWriteInput(_Lenient):
    todos: list[TodoInputItem]


class ReadInput(_Lenient):
    file_path: str


class BashInput(_Lenient):
    command: str
    timeout: int | None = None
    description: str | None = None


class EditInput(_Lenient):
    file_path: str
    old_string: str
    new_string: str


class MultiEditInput(_Lenient):
    file_path: str
    edits: list[dict[str, Any]]


class TaskInput(_Lenient):
    subagent_type: str
    description: str
    prompt: str


class GrepInput(_Lenient):
    pattern: str
    path: str | None = None
    output_mode: str = "files_with_matches"
    line_numbers: bool | None = Field(default=None, alias="-n")
    head_limit: int | None = None
    context_lines: int | None = Field(default=None, alias="-C")


class GlobInput(_Lenient):
    pattern: str
    path: str | None = None


class LSInput(_Lenient):
    path: str


TOOL_INPUTS: dict[str, type[_Lenient]] = {
    "TodoWrite": TodoWriteInput,
    "Read": ReadInput,
    "Bash": BashInput,
    "Edit": EditInput,
    "MultiEdit": MultiEditInput,
    "Task": TaskInput,
    "Grep": GrepInput,
    "Glob": GlobInput,
    "LS": LSInput,
}


def token_count(record: dict[str, Any]) -> int:
    usage = None
    match record.get("type"):
        case "assistant":
            message = record.get("message")
            usage = message.get("usage") if isinstance(message, dict) else None
        case "result":
            usage = record.get("usage")
    if not isinstance(usage, dict):
        return 0
    return int(usage.get("input_tokens") or 0) + int(usage.get("output_tokens") or 0)
