"""
In-process publish/subscribe for domain events

Events are published after the transaction that produced them commits. Each
handler runs as its own background task so a slow or failing subscriber
(UI push, notifications, external hooks) never blocks or fails the command.
"""
import asyncio
import logging
from collections import defaultdict
from typing import Awaitable, Callable, Dict, List, Set

from models.audit import DomainEvent, EventType

logger = logging.getLogger(__name__)

Handler = Callable[[DomainEvent], Awaitable[None]]


class EventBus:
    def __init__(self):
        self._handlers: Dict[EventType, List[Handler]] = defaultdict(list)
        self._pending: Set[asyncio.Task] = set()

    def subscribe(self, event_type: EventType, handler: Handler):
        self._handlers[event_type].append(handler)

    def unsubscribe(self, event_type: EventType, handler: Handler):
        if handler in self._handlers[event_type]:
            self._handlers[event_type].remove(handler)

    def publish(self, event: DomainEvent):
        for handler in list(self._handlers.get(event.event_type, [])):
            task = asyncio.create_task(self._deliver(handler, event))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    def publish_all(self, events: List[DomainEvent]):
        for event in events:
            self.publish(event)

    async def _deliver(self, handler: Handler, event: DomainEvent):
        try:
            await handler(event)
        except Exception as e:
            logger.error(f"Event handler {getattr(handler, '__name__', handler)} failed for {event.event_type.value}: {e}")

    async def drain(self):
        """Wait for all in-flight deliveries (used on shutdown and in tests)"""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
