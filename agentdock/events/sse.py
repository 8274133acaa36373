import json
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from agentdock.messages.models import Message


class EventType(StrEnum):
    HEARTBEAT = "heartbeat"
    UPDATE = "update"


class UpdateState(StrEnum):
    RUNNING = "running"
    DONE = "done"


@dataclass(frozen=True)
class SSEEvent:
    type: EventType

    def payload(self) -> dict:
        return {}

    def to_sse(self) -> dict:
        return {"event": self.type.value, "data": json.dumps({"type": self.type.value, "data": self.payload()})}

    def to_sse_string(self) -> str:
        sse = self.to_sse()
        return f"event: {sse['event']}\ndata: {sse['data']}\n\n"


@dataclass(frozen=True)
class HeartbeatEvent(SSEEvent):
    type: EventType = field(default=EventType.HEARTBEAT, init=False)


@dataclass(frozen=True)
class UpdateEvent(SSEEvent):
    type: EventType = field(default=EventType.UPDATE, init=False)
    state: UpdateState
    message: "Message | None" = None

    def payload(self) -> dict:
        return {
            "state": self.state.value,
            "message": self.message.dump() if self.message is not None else None,
        }
