"""Records written by agentdock itself rather than by a provider."""

from typing import Literal

from pydantic import BaseModel, ValidationError

from agentdock.utils import to_iso, utcnow


class UserPromptRecord(BaseModel):
    kind: Literal["user_prompt"] = "user_prompt"
    id: str
    timestamp: str
    role: Literal["user"] = "user"
    content: str


class NoticeRecord(BaseModel):
    kind: Literal["notice"] = "notice"
    id: str
    timestamp: str
    level: Literal["cancelled", "error"]
    content: str


LocalRecord = UserPromptRecord | NoticeRecord


def make_user_prompt(prompt_id: str, content: str) -> dict:
    return UserPromptRecord(id=prompt_id, timestamp=to_iso(utcnow()), content=content).model_dump()


def make_notice(notice_id: str, level: str, content: str) -> dict:
    return NoticeRecord(id=notice_id, timestamp=to_iso(utcnow()), level=level, content=content).model_dump()


def parse_local_record(raw: dict) -> LocalRecord | None:
    match raw.get("kind"):
        case "user_prompt":
            model = UserPromptRecord
        case "notice":
            model = NoticeRecord
        case _:
            return None
    try:
        return model.model_validate(raw)
    except ValidationError:
        return None
