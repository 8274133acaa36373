from enum import StrEnum
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CanonicalModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    def dump(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


class MessageType(StrEnum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    RESULT = "result"
    ERROR = "error"


# --- Tool-use variants ---


class TodoItem(CanonicalModel):
    content: str
    status: str
    active_form: str | None = None


class TodoData(CanonicalModel):
    todos: list[TodoItem]


class ReadData(CanonicalModel):
    file_path: str


class BashData(CanonicalModel):
    command: str
    timeout: int | None = None
    description: str | None = None


class EditData(CanonicalModel):
    file_path: str
    old_string: str
    new_string: str


class MultiEditItem(CanonicalModel):
    old_string: str
    new_string: str
    replace_all: bool = False


class MultiEditData(CanonicalModel):
    file_path: str
    edits: list[MultiEditItem]


class TaskData(CanonicalModel):
    subagent_type: str
    description: str
    prompt: str


class GrepData(CanonicalModel):
    pattern: str
    path: str
    output_mode: str
    line_numbers: bool | None = None
    head_limit: int | None = None
    context_lines: int | None = None


class GlobData(CanonicalModel):
    pattern: str
    path: str | None = None


class LsData(CanonicalModel):
    path: str


class TodoToolUse(CanonicalModel):
    type: Literal["todo"] = "todo"
    tool_id: str
    data: TodoData


class ReadToolUse(CanonicalModel):
    type: Literal["read"] = "read"
    tool_id: str
    data: ReadData


class BashToolUse(CanonicalModel):
    type: Literal["bash"] = "bash"
    tool_id: str
    data: BashData


class EditToolUse(CanonicalModel):
    type: Literal["edit"] = "edit"
    tool_id: str
    data: EditData


class MultiEditToolUse(CanonicalModel):
    type: Literal["multiedit"] = "multiedit"
    tool_id: str
    data: MultiEditData


class TaskToolUse(CanonicalModel):
    type: Literal["task"] = "task"
    tool_id: str
    data: TaskData


class GrepToolUse(CanonicalModel):
    type: Literal["grep"] = "grep"
    tool_id: str
    data: GrepData


class GlobToolUse(CanonicalModel):
    type: Literal["glob"] = "glob"
    tool_id: str
    data: GlobData


class LsToolUse(CanonicalModel):
    type: Literal["ls"] = "ls"
    tool_id: str
    data: LsData


ToolUse = Annotated[
    TodoToolUse
    | ReadToolUse
    | BashToolUse
    | EditToolUse
    | MultiEditToolUse
    | TaskToolUse
    | GrepToolUse
    | GlobToolUse
    | LsToolUse,
    Field(discriminator="type"),
]


# --- Payloads ---


class TextContent(CanonicalModel):
    content: str


class ToolResultData(CanonicalModel):
    tool_use_id: str
    content: str
    is_error: bool = False


class ErrorData(CanonicalModel):
    message: str


class TextPayload(CanonicalModel):
    type: Literal["message"] = "message"
    data: TextContent


class ToolUsePayload(CanonicalModel):
    type: Literal["tool_use"] = "tool_use"
    data: ToolUse


class ToolResultPayload(CanonicalModel):
    type: Literal["tool_result"] = "tool_result"
    data: ToolResultData


AssistantPayload = Annotated[TextPayload | ToolUsePayload | ToolResultPayload, Field(discriminator="type")]


class Message(CanonicalModel):
    id: str
    type: MessageType
    data: AssistantPayload | TextContent | ErrorData
    parent_tool_use_id: str | None = None


def user_message(id: str, content: str, parent_tool_use_id: str | None = None) -> Message:
    return Message(id=id, type=MessageType.USER, data=TextContent(content=content), parent_tool_use_id=parent_tool_use_id)


def system_message(id: str, content: str) -> Message:
    return Message(id=id, type=MessageType.SYSTEM, data=TextContent(content=content))


def error_message(id: str, text: str) -> Message:
    return Message(id=id, type=MessageType.ERROR, data=ErrorData(message=text))


def assistant_text(id: str, content: str, parent_tool_use_id: str | None = None) -> Message:
    return Message(
        id=id,
        type=MessageType.ASSISTANT,
        data=TextPayload(data=TextContent(content=content)),
        parent_tool_use_id=parent_tool_use_id,
    )


def tool_use(id: str, use: ToolUse, parent_tool_use_id: str | None = None) -> Message:
    return Message(
        id=id,
        type=MessageType.ASSISTANT,
        data=ToolUsePayload(data=use),
        parent_tool_use_id=parent_tool_use_id,
    )


def tool_result(
    id: str,
    tool_use_id: str,
    content: str,
    is_error: bool = False,
    parent_tool_use_id: str | None = None,
) -> Message:
    return Message(
        id=id,
        type=MessageType.ASSISTANT,
        data=ToolResultPayload(data=ToolResultData(tool_use_id=tool_use_id, content=content, is_error=is_error)),
        parent_tool_use_id=parent_tool_use_id,
    )
