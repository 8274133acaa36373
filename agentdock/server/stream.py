from collections.abc import AsyncGenerator

from agentdock.bus import EventBus, Subscription
from agentdock.logging import get_logger

_logger = get_logger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


async def stream_events(bus: EventBus, sub: Subscription) -> AsyncGenerator[str]:
    """Yield SSE frames until the subscription ends or the client disconnects."""
    try:
        async for event in sub:
            yield event.to_sse_string()
    finally:
        bus.unsubscribe(sub)
        if sub.dropped:
            _logger.info("SSE subscriber for %s closed after dropping %d event(s)", sub.session_id, sub.dropped)
