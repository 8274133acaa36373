from agentdock.events.sse import EventType, HeartbeatEvent, SSEEvent, UpdateEvent, UpdateState

__all__ = ["EventType", "HeartbeatEvent", "SSEEvent", "UpdateEvent", "UpdateState"]
