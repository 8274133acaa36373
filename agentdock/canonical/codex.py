import json
from typing import Any

from pydantic import ValidationError

from agentdock.canonical.paths import relativize
from agentdock.logging import get_logger
from agentdock.messages.models import (
    BashData,
    BashToolUse,
    EditData,
    EditToolUse,
    Message,
    TaskData,
    TaskToolUse,
    assistant_text,
    system_message,
    tool_result,
    tool_use,
    user_message,
)
from agentdock.protocols import codex as wire

_logger = get_logger(__name__)


def _task(call_id: str, subagent_type: str, description: str, prompt: str) -> TaskToolUse:
    return TaskToolUse(
        tool_id=call_id,
        data=TaskData(subagent_type=subagent_type, description=description, prompt=prompt),
    )


def _from_function_call(call: wire.FunctionCall, message_id: str) -> Message:
    if call.name == "shell":
        try:
            args = wire.ShellArguments.model_validate_json(call.arguments)
        except ValidationError as e:
            _logger.warning("Failed to parse shell call args: %s", e)
            return tool_use(message_id, _task(call.call_id, "codex-shell", "Run shell command", call.arguments))
        data = BashData(command=" ".join(args.command), timeout=args.timeout_ms)
        return tool_use(message_id, BashToolUse(tool_id=call.call_id, data=data))

    if call.name == "update_plan":
        prompt = call.arguments
        try:
            plan = wire.UpdatePlanArguments.model_validate_json(call.arguments)
        except ValidationError:
            plan = None
        if plan is not None:
            lines = [plan.explanation] if plan.explanation else []
            lines += [f"- [{item.status}] {item.step}" for item in plan.plan or []]
            if lines:
                prompt = "\n".join(lines)
        return tool_use(message_id, _task(call.call_id, "update_plan", "Update plan", prompt))

    return tool_use(
        message_id,
        _task(call.call_id, "codex-unknown-tool", f"Tool call: {call.name}", call.arguments),
    )


def _from_function_output(out: wire.FunctionCallOutput, message_id: str) -> Message:
    content = out.output
    is_error = False
    try:
        payload = wire.FunctionOutputPayload.model_validate(json.loads(out.output))
    except (ValueError, ValidationError):
        payload = None

    if payload is not None:
        meta = payload.metadata or wire.OutputMetadata()
        candidates = (payload.output, payload.stdout, payload.stderr, meta.stdout, meta.stderr, meta.error)
        picked = next((c for c in candidates if c is not None), "")
        if picked:
            content = picked
        exit_code = payload.exit_code if payload.exit_code is not None else meta.exit_code
        if exit_code is not None and exit_code > 0:
            is_error = True
        if payload.error and payload.error.strip():
            is_error = True

    return tool_result(
        message_id, tool_use_id=out.call_id, content=content, is_error=is_error, parent_tool_use_id=out.call_id
    )


def _from_exec_end(e: wire.ExecCommandEnd, message_id: str) -> Message:
    content = e.formatted_output or e.aggregated_output or e.stdout or e.stderr or ""
    is_error = e.exit_code != 0 or bool(e.stderr.strip())
    return tool_result(
        message_id, tool_use_id=e.call_id, content=content, is_error=is_error, parent_tool_use_id=e.call_id
    )


def _from_patch_begin(e: wire.PatchApplyBegin, message_id: str, project_path: str | None) -> Message:
    first = next(iter(e.changes), "")
    change = e.changes.get(first)
    new_string = change.add.content if change is not None and change.add is not None else ""
    data = EditData(file_path=relativize(first, project_path), old_string="", new_string=new_string)
    return tool_use(message_id, EditToolUse(tool_id=e.call_id, data=data))


def _from_patch_end(e: wire.PatchApplyEnd, message_id: str) -> Message:
    content = e.stdout or e.stderr
    is_error = not e.success or bool(e.stderr.strip())
    return tool_result(
        message_id, tool_use_id=e.call_id, content=content, is_error=is_error, parent_tool_use_id=e.call_id
    )


def _from_legacy_message(m: wire.LegacyMessage, message_id: str) -> Message | None:
    match m.role:
        case "user":
            text = m.joined("input_text")
            return user_message(message_id, text) if text is not None else None
        case "assistant":
            text = m.joined("output_text")
            return assistant_text(message_id, text) if text is not None else None
        case "system":
            text = m.joined("input_text") or m.joined("output_text")
            return system_message(message_id, text) if text is not None else None
    return None


def canonicalize(raw: dict[str, Any], message_id: str, project_path: str | None = None) -> Message | None:
    record = wire.parse_record(raw)
    match record:
        case wire.LegacyMessage():
            return _from_legacy_message(record, message_id)
        case wire.FunctionCall():
            return _from_function_call(record, message_id)
        case wire.FunctionCallOutput():
            return _from_function_output(record, message_id)
        case wire.AgentMessage(message=text) | wire.AgentReasoning(text=text):
            return assistant_text(message_id, text)
        case wire.TurnDiff(unified_diff=diff):
            return assistant_text(message_id, diff)
        case wire.ExecCommandBegin():
            data = BashData(command=record.display_command())
            return tool_use(message_id, BashToolUse(tool_id=record.call_id, data=data))
        case wire.ExecCommandEnd():
            return _from_exec_end(record, message_id)
        case wire.PatchApplyBegin():
            return _from_patch_begin(record, message_id, project_path)
        case wire.PatchApplyEnd():
            return _from_patch_end(record, message_id)
        case _:
            # headers, state markers, telemetry, deltas and reasoning items
            return None
