import json
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import StrEnum

from agentdock.sessions.models import Provider


def _to_dt(v):
    return datetime.fromisoformat(v) if isinstance(v, str) else v


class JobStatus(StrEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def is_active(self) -> bool:
        return self in (JobStatus.PENDING, JobStatus.PROCESSING)


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})


@dataclass
class JobPayload:
    prompt: str
    project_path: str
    message_id: str | None = None
    model: str | None = None
    allowed_tools: list[str] | None = None

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, raw: str | dict) -> "JobPayload":
        data = json.loads(raw) if isinstance(raw, str) else raw
        return cls(**{k: data.get(k) for k in cls.__dataclass_fields__})


@dataclass
class Job:
    id: str
    session_id: str
    prompt_id: str
    provider: Provider
    status: JobStatus
    data: JobPayload
    attempts: int
    max_attempts: int
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error: str | None = None
    next_retry_at: datetime | None = None

    def __post_init__(self):
        self.provider = Provider(self.provider)
        self.status = JobStatus(self.status)
        if not isinstance(self.data, JobPayload):
            self.data = JobPayload.from_json(self.data)
        self.created_at = _to_dt(self.created_at)
        self.started_at = _to_dt(self.started_at)
        self.completed_at = _to_dt(self.completed_at)
        self.next_retry_at = _to_dt(self.next_retry_at)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sessionId": self.session_id,
            "promptId": self.prompt_id,
            "provider": self.provider.value,
            "status": self.status.value,
            "attempts": self.attempts,
            "maxAttempts": self.max_attempts,
            "createdAt": self.created_at.isoformat(),
            "startedAt": self.started_at.isoformat() if self.started_at else None,
            "completedAt": self.completed_at.isoformat() if self.completed_at else None,
            "error": self.error,
            "nextRetryAt": self.next_retry_at.isoformat() if self.next_retry_at else None,
        }


@dataclass
class QueueMetrics:
    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0
    cancelled: int = 0
    delayed: int = 0
    total: int = 0
    extra: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        data = asdict(self)
        data.update(data.pop("extra"))
        return data
