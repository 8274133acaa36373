import json
from typing import Any

from pydantic import ValidationError

from agentdock.canonical.paths import relativize
from agentdock.messages.models import (
    BashData,
    BashToolUse,
    EditData,
    EditToolUse,
    GlobData,
    GlobToolUse,
    GrepData,
    GrepToolUse,
    LsData,
    LsToolUse,
    Message,
    MultiEditData,
    MultiEditItem,
    MultiEditToolUse,
    ReadData,
    ReadToolUse,
    TaskData,
    TaskToolUse,
    TodoData,
    TodoItem,
    TodoToolUse,
    ToolUse,
    assistant_text,
    tool_result,
    tool_use,
    user_message,
)
from agentdock.protocols import claude as wire


def parse_tool_use(block: wire.ToolUseBlock, project_path: str | None = None) -> ToolUse:
    model = wire.TOOL_INPUTS.get(block.name)
    if model is not None:
        try:
            args = model.model_validate(block.input)
        except ValidationError:
            args = None
        if args is not None:
            return _TOOL_BUILDERS[block.name](block.id, args, project_path)
    return _generic_task(block)


def _generic_task(block: wire.ToolUseBlock) -> TaskToolUse:
    return TaskToolUse(
        tool_id=block.id,
        data=TaskData(
            subagent_type=block.name,
            description=f"Tool call: {block.name}",
            prompt=json.dumps(block.input),
        ),
    )


def _todo(tool_id: str, args: wire.TodoWriteInput, _project_path: str | None) -> ToolUse:
    todos = [TodoItem(content=t.content, status=t.status, active_form=t.active_form) for t in args.todos]
    return TodoToolUse(tool_id=tool_id, data=TodoData(todos=todos))


def _read(tool_id: str, args: wire.ReadInput, project_path: str | None) -> ToolUse:
    return ReadToolUse(tool_id=tool_id, data=ReadData(file_path=relativize(args.file_path, project_path)))


def _bash(tool_id: str, args: wire.BashInput, _project_path: str | None) -> ToolUse:
    return BashToolUse(
        tool_id=tool_id,
        data=BashData(command=args.command, timeout=args.timeout, description=args.description),
    )


def _edit(tool_id: str, args: wire.EditInput, project_path: str | None) -> ToolUse:
    return EditToolUse(
        tool_id=tool_id,
        data=EditData(
            file_path=relativize(args.file_path, project_path),
            old_string=args.old_string,
            new_string=args.new_string,
        ),
    )


def _multiedit(tool_id: str, args: wire.MultiEditInput, project_path: str | None) -> ToolUse:
    edits = [
        MultiEditItem(
            old_string=edit["old_string"],
            new_string=edit["new_string"],
            replace_all=bool(edit.get("replace_all", False)),
        )
        for edit in args.edits
        if isinstance(edit.get("old_string"), str) and isinstance(edit.get("new_string"), str)
    ]
    return MultiEditToolUse(
        tool_id=tool_id,
        data=MultiEditData(file_path=relativize(args.file_path, project_path), edits=edits),
    )


def _task(tool_id: str, args: wire.TaskInput, _project_path: str | None) -> ToolUse:
    return TaskToolUse(
        tool_id=tool_id,
        data=TaskData(subagent_type=args.subagent_type, description=args.description, prompt=args.prompt),
    )


def _grep(tool_id: str, args: wire.GrepInput, project_path: str | None) -> ToolUse:
    return GrepToolUse(
        tool_id=tool_id,
        data=GrepData(
            pattern=args.pattern,
            path=relativize(args.path, project_path) if args.path else "",
            output_mode=args.output_mode,
            line_numbers=args.line_numbers,
            head_limit=args.head_limit,
            context_lines=args.context_lines,
        ),
    )


def _glob(tool_id: str, args: wire.GlobInput, project_path: str | None) -> ToolUse:
    path = relativize(args.path, project_path) if args.path else None
    return GlobToolUse(tool_id=tool_id, data=GlobData(pattern=args.pattern, path=path))


def _ls(tool_id: str, args: wire.LSInput, project_path: str | None) -> ToolUse:
    return LsToolUse(tool_id=tool_id, data=LsData(path=relativize(args.path, project_path)))


_TOOL_BUILDERS = {
    "TodoWrite": _todo,
    "Read": _read,
    "Bash": _bash,
    "Edit": _edit,
    "MultiEdit": _multiedit,
    "Task": _task,
    "Grep": _grep,
    "Glob": _glob,
    "LS": _ls,
}


def _from_user(record: wire.UserRecord, message_id: str) -> Message | None:
    content = record.message.content
    if isinstance(content, str):
        return user_message(message_id, content, parent_tool_use_id=record.parent_tool_use_id)

    blocks = wire.parse_blocks(content)
    for block in blocks:
        if isinstance(block, wire.ToolResultBlock):
            return tool_result(
                message_id,
                tool_use_id=block.tool_use_id,
                content=block.text(),
                is_error=bool(block.is_error),
                parent_tool_use_id=record.parent_tool_use_id,
            )

    texts = [block.text for block in blocks if isinstance(block, wire.TextBlock)]
    if texts:
        return user_message(message_id, "\n".join(texts), parent_tool_use_id=record.parent_tool_use_id)
    return None


def _from_assistant(record: wire.AssistantRecord, message_id: str, project_path: str | None) -> Message | None:
    blocks = wire.parse_blocks(record.message.content)
    for block in blocks:
        if isinstance(block, wire.ToolUseBlock):
            return tool_use(message_id, parse_tool_use(block, project_path), record.parent_tool_use_id)

    texts = [block.text for block in blocks if isinstance(block, wire.TextBlock) and block.text]
    if texts:
        return assistant_text(message_id, "\n".join(texts), record.parent_tool_use_id)
    return None


def canonicalize(raw: dict[str, Any], message_id: str, project_path: str | None = None) -> Message | None:
    record = wire.parse_record(raw)
    match record:
        case wire.UserRecord():
            return _from_user(record, message_id)
        case wire.AssistantRecord():
            return _from_assistant(record, message_id, project_path)
        case wire.SystemRecord(message=wire.SystemBody(content=content)):
            return assistant_text(message_id, content)
        case _:
            return None
