import json

import pytest

from agentdock.canonical import canonicalize, coarse_type, token_count
from agentdock.messages.models import MessageType
from agentdock.protocols.records import make_notice, make_user_prompt
from agentdock.sessions.models import Provider

PROJECT = "/home/dev/project"


def assistant(*blocks, parent=None, usage=None) -> dict:
    message = {"role": "assistant", "model": "sonnet", "content": list(blocks)}
    if usage:
        message["usage"] = usage
    return {"type": "assistant", "message": message, "parent_tool_use_id": parent, "session_id": "cs-1"}


def user(content, parent=None) -> dict:
    return {"type": "user", "message": {"role": "user", "content": content}, "parent_tool_use_id": parent}


def tool(name: str, input: dict, id: str = "toolu_1") -> dict:
    return assistant({"type": "tool_use", "id": id, "name": name, "input": input})


def canon(raw: dict):
    message = canonicalize(Provider.CLAUDE_CODE, raw, "m1", PROJECT)
    return message.dump() if message else None


class TestText:
    def test_assistant_text(self):
        out = canon(assistant({"type": "text", "text": "Hello"}, {"type": "text", "text": "world"}))
        assert out == {
            "id": "m1",
            "type": "assistant",
            "data": {"type": "message", "data": {"content": "Hello\nworld"}},
            "parentToolUseId": None,
        }

    def test_thinking_only_is_dropped(self):
        assert canon(assistant({"type": "thinking", "thinking": "hmm", "signature": "x"})) is None

    def test_user_string(self):
        out = canon(user("hi there"))
        assert out["type"] == "user"
        assert out["data"] == {"content": "hi there"}

    def test_system_with_content(self):
        out = canon({"type": "system", "subtype": "info", "message": {"content": "Compacted"}})
        assert out["type"] == "assistant"
        assert out["data"]["data"]["content"] == "Compacted"

    def test_system_init_has_no_display_form(self):
        assert canon({"type": "system", "subtype": "init", "session_id": "cs-1", "tools": []}) is None

    def test_result_has_no_display_form(self):
        assert canon({"type": "result", "subtype": "success", "session_id": "cs-1", "is_error": False}) is None


class TestTools:
    def test_read_relativizes_path(self):
        out = canon(tool("Read", {"file_path": f"{PROJECT}/src/app.py"}))
        assert out["data"]["type"] == "tool_use"
        assert out["data"]["data"] == {"type": "read", "toolId": "toolu_1", "data": {"filePath": "src/app.py"}}

    def test_path_outside_project_kept(self):
        out = canon(tool("Read", {"file_path": "/etc/hosts"}))
        assert out["data"]["data"]["data"]["filePath"] == "/etc/hosts"

    def test_bash(self):
        out = canon(tool("Bash", {"command": "ls -la", "timeout": 1000, "description": "List"}))
        assert out["data"]["data"]["type"] == "bash"
        assert out["data"]["data"]["data"] == {"command": "ls -la", "timeout": 1000, "description": "List"}

    def test_todo(self):
        todos = [{"content": "Write tests", "status": "in_progress", "activeForm": "Writing tests"}]
        out = canon(tool("TodoWrite", {"todos": todos}))
        assert out["data"]["data"]["type"] == "todo"
        assert out["data"]["data"]["data"]["todos"] == [
            {"content": "Write tests", "status": "in_progress", "activeForm": "Writing tests"}
        ]

    def test_edit(self):
        out = canon(tool("Edit", {"file_path": f"{PROJECT}/a.py", "old_string": "a", "new_string": "b"}))
        assert out["data"]["data"]["data"] == {"filePath": "a.py", "oldString": "a", "newString": "b"}

    def test_multiedit(self):
        edits = [{"old_string": "a", "new_string": "b"}, {"old_string": "c", "new_string": "d", "replace_all": True}]
        out = canon(tool("MultiEdit", {"file_path": f"{PROJECT}/a.py", "edits": edits}))
        data = out["data"]["data"]["data"]
        assert data["filePath"] == "a.py"
        assert data["edits"][1] == {"oldString": "c", "newString": "d", "replaceAll": True}

    def test_task(self):
        out = canon(tool("Task", {"subagent_type": "explore", "description": "Look", "prompt": "Find x"}))
        assert out["data"]["data"]["data"] == {"subagentType": "explore", "description": "Look", "prompt": "Find x"}

    def test_grep_defaults(self):
        out = canon(tool("Grep", {"pattern": "TODO"}))
        data = out["data"]["data"]["data"]
        assert data["pattern"] == "TODO"
        assert data["path"] == ""
        assert data["outputMode"] == "files_with_matches"

    def test_grep_flags(self):
        out = canon(tool("Grep", {"pattern": "x", "path": f"{PROJECT}/src", "-n": True, "-C": 2, "head_limit": 5}))
        data = out["data"]["data"]["data"]
        assert data["path"] == "src"
        assert data["lineNumbers"] is True
        assert data["contextLines"] == 2
        assert data["headLimit"] == 5

    def test_glob_and_ls(self):
        glob = canon(tool("Glob", {"pattern": "**/*.py"}))
        assert glob["data"]["data"] == {"type": "glob", "toolId": "toolu_1", "data": {"pattern": "**/*.py", "path": None}}
        ls = canon(tool("LS", {"path": f"{PROJECT}/docs"}))
        assert ls["data"]["data"]["data"] == {"path": "docs"}

    def test_unknown_tool_becomes_task(self):
        out = canon(tool("WebFetch", {"url": "https://example.com"}))
        use = out["data"]["data"]
        assert use["type"] == "task"
        assert use["data"]["subagentType"] == "WebFetch"
        assert use["data"]["description"] == "Tool call: WebFetch"
        assert json.loads(use["data"]["prompt"]) == {"url": "https://example.com"}

    def test_invalid_args_become_task(self):
        out = canon(tool("Read", {"path": "wrong-key"}))
        assert out["data"]["data"]["type"] == "task"
        assert out["data"]["data"]["data"]["subagentType"] == "Read"

    def test_subagent_parent(self):
        raw = tool("Read", {"file_path": "x"})
        raw["parent_tool_use_id"] = "toolu_parent"
        assert canon(raw)["parentToolUseId"] == "toolu_parent"


class TestToolResults:
    def test_result_correlates_with_call(self):
        call = canon(tool("Bash", {"command": "ls"}, id="toolu_9"))
        result = canon(user([{"type": "tool_result", "tool_use_id": "toolu_9", "content": "a\nb"}]))

        assert result["data"]["type"] == "tool_result"
        assert result["data"]["data"] == {"toolUseId": "toolu_9", "content": "a\nb", "isError": False}
        assert result["data"]["data"]["toolUseId"] == call["data"]["data"]["toolId"]
        assert result["parentToolUseId"] is None

    def test_block_list_content_and_error(self):
        content = [{"type": "text", "text": "line1"}, {"type": "image", "source": {}}, {"type": "text", "text": "line2"}]
        out = canon(user([{"type": "tool_result", "tool_use_id": "t", "content": content, "is_error": True}]))
        assert out["data"]["data"]["content"] == "line1\nline2"
        assert out["data"]["data"]["isError"] is True

    def test_parent_wins_over_tool_use_id(self):
        out = canon(user([{"type": "tool_result", "tool_use_id": "t", "content": ""}], parent="outer"))
        assert out["parentToolUseId"] == "outer"


class TestLocalRecords:
    def test_user_prompt(self):
        message = canonicalize(Provider.CODEX_CLI, make_user_prompt("p1", "fix it"), "p1")
        assert message.dump() == {"id": "p1", "type": "user", "data": {"content": "fix it"}, "parentToolUseId": None}

    def test_cancel_notice(self):
        message = canonicalize(Provider.CLAUDE_CODE, make_notice("n1", "cancelled", "Operation Cancelled"), "n1")
        assert message.type is MessageType.SYSTEM

    def test_error_notice(self):
        message = canonicalize(Provider.CLAUDE_CODE, make_notice("n1", "error", "exploded"), "n1")
        assert message.dump()["data"] == {"message": "exploded"}
        assert message.type is MessageType.ERROR


class TestTotality:
    @pytest.mark.parametrize(
        "raw",
        [
            {},
            {"type": "assistant"},
            {"type": "assistant", "message": {"content": "not-a-list"}},
            {"type": "user", "message": {"content": [{"type": "mystery"}]}},
            {"type": "nonsense", "x": 1},
            {"kind": "notice", "level": "weird"},
        ],
    )
    def test_malformed_records_return_none(self, raw):
        assert canonicalize(Provider.CLAUDE_CODE, raw, "m1") is None

    def test_non_dict(self):
        assert canonicalize(Provider.CLAUDE_CODE, ["a"], "m1") is None


class TestRowMetadata:
    def test_coarse_type(self):
        assert coarse_type(Provider.CLAUDE_CODE, assistant({"type": "text", "text": "x"})) is MessageType.ASSISTANT
        assert coarse_type(Provider.CLAUDE_CODE, {"type": "result"}) is MessageType.RESULT
        assert coarse_type(Provider.CLAUDE_CODE, make_user_prompt("p", "x")) is MessageType.USER
        assert coarse_type(Provider.CLAUDE_CODE, make_notice("n", "error", "x")) is MessageType.ERROR

    def test_token_count(self):
        raw = assistant({"type": "text", "text": "x"}, usage={"input_tokens": 10, "output_tokens": 5})
        assert token_count(Provider.CLAUDE_CODE, raw) == 15
        assert token_count(Provider.CODEX_CLI, raw) == 0
