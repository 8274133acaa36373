import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum


def _to_dt(v):
    return datetime.fromisoformat(v) if isinstance(v, str) else v


def _to_json_dict(v):
    if isinstance(v, str):
        return json.loads(v) if v else {}
    return v if v is not None else {}


class Provider(StrEnum):
    CLAUDE_CODE = "claude-code"
    CODEX_CLI = "codex-cli"


class SessionState(StrEnum):
    ACTIVE = "active"
    INACTIVE = "inactive"


@dataclass
class Session:
    id: str
    provider: Provider
    project_path: str
    name: str
    created_at: datetime
    updated_at: datetime
    last_accessed_at: datetime
    context: str | None = None
    claude_directory_path: str | None = None
    metadata: dict = field(default_factory=dict)
    is_working: bool = False
    current_job_id: str | None = None
    last_job_status: str | None = None
    message_count: int = 0
    token_count: int = 0
    last_message_sent_at: datetime | None = None
    state: SessionState = SessionState.ACTIVE

    def __post_init__(self):
        self.provider = Provider(self.provider)
        self.state = SessionState(self.state)
        self.created_at = _to_dt(self.created_at)
        self.updated_at = _to_dt(self.updated_at)
        self.last_accessed_at = _to_dt(self.last_accessed_at)
        self.last_message_sent_at = _to_dt(self.last_message_sent_at)
        self.metadata = _to_json_dict(self.metadata)
        self.is_working = bool(self.is_working)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "provider": self.provider.value,
            "projectPath": self.project_path,
            "name": self.name,
            "context": self.context,
            "claudeDirectoryPath": self.claude_directory_path,
            "metadata": self.metadata,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
            "lastAccessedAt": self.last_accessed_at.isoformat(),
            "isWorking": self.is_working,
            "currentJobId": self.current_job_id,
            "lastJobStatus": self.last_job_status,
            "messageCount": self.message_count,
            "tokenCount": self.token_count,
            "lastMessageSentAt": self.last_message_sent_at.isoformat() if self.last_message_sent_at else None,
            "state": self.state.value,
        }
