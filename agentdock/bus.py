import asyncio
from collections import defaultdict, deque
from contextlib import suppress

from agentdock.constants import EVENT_QUEUE_CAPACITY, HEARTBEAT_INTERVAL
from agentdock.events.sse import HeartbeatEvent, SSEEvent, UpdateEvent, UpdateState
from agentdock.logging import get_logger
from agentdock.messages.models import Message

_logger = get_logger(__name__)


class Subscription:
    """Bounded FIFO owned by one SSE subscriber.

    push() never blocks: over capacity the oldest event is dropped.
    next() returns None once the subscription is aborted.
    """

    def __init__(self, session_id: str, capacity: int = EVENT_QUEUE_CAPACITY):
        self.session_id = session_id
        self.capacity = capacity
        self._queue: deque[SSEEvent] = deque()
        self._waiters: deque[asyncio.Future[SSEEvent | None]] = deque()
        self._aborted = False
        self._heartbeat: asyncio.Task | None = None
        self.dropped = 0

    @property
    def aborted(self) -> bool:
        return self._aborted

    @property
    def pending(self) -> int:
        return len(self._queue)

    def push(self, event: SSEEvent) -> None:
        if self._aborted:
            return
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_result(event)
                return
        self._queue.append(event)
        if len(self._queue) > self.capacity:
            self._queue.popleft()
            self.dropped += 1
            _logger.warning("SSE queue overflow: dropped oldest event", session_id=self.session_id)

    async def next(self) -> SSEEvent | None:
        if self._queue:
            return self._queue.popleft()
        if self._aborted:
            return None
        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            return await waiter
        finally:
            with suppress(ValueError):
                self._waiters.remove(waiter)

    def abort(self) -> None:
        if self._aborted:
            return
        self._aborted = True
        self._queue.clear()
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_result(None)
        if self._heartbeat is not None:
            self._heartbeat.cancel()
            self._heartbeat = None

    def __aiter__(self):
        return self

    async def __anext__(self) -> SSEEvent:
        event = await self.next()
        if event is None:
            raise StopAsyncIteration
        return event

    async def _beat(self, interval: float) -> None:
        while not self._aborted:
            await asyncio.sleep(interval)
            self.push(HeartbeatEvent())


class EventBus:
    """Per-session fan-out of SSE events to live subscribers.

    Owned by the runtime and injected where needed; publish() is
    fire-and-forget and safe to call with no subscribers.
    """

    def __init__(self, capacity: int = EVENT_QUEUE_CAPACITY, heartbeat_interval: float = HEARTBEAT_INTERVAL):
        self.capacity = capacity
        self.heartbeat_interval = heartbeat_interval
        self._subscribers: dict[str, set[Subscription]] = defaultdict(set)

    def subscribe(self, session_id: str) -> Subscription:
        sub = Subscription(session_id, capacity=self.capacity)
        sub._heartbeat = asyncio.get_running_loop().create_task(sub._beat(self.heartbeat_interval))
        self._subscribers[session_id].add(sub)
        _logger.debug("SSE subscriber added", session_id=session_id, total=len(self._subscribers[session_id]))
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        sub.abort()
        subs = self._subscribers.get(sub.session_id)
        if subs is None:
            return
        subs.discard(sub)
        if not subs:
            del self._subscribers[sub.session_id]

    def subscriber_count(self, session_id: str) -> int:
        return len(self._subscribers.get(session_id, ()))

    def publish(self, session_id: str, event: SSEEvent) -> None:
        for sub in list(self._subscribers.get(session_id, ())):
            sub.push(event)

    def publish_message(self, session_id: str, message: Message) -> None:
        self.publish(session_id, UpdateEvent(state=UpdateState.RUNNING, message=message))

    def publish_done(self, session_id: str) -> None:
        self.publish(session_id, UpdateEvent(state=UpdateState.DONE))

    def close(self) -> None:
        for subs in list(self._subscribers.values()):
            for sub in list(subs):
                sub.abort()
        self._subscribers.clear()
