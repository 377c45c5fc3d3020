"""
Event Bus Atom - In-process async publish/subscribe

Publishers never wait on subscribers: every handler runs as its own asyncio
task inside an error boundary that logs the failure and stops there.

Part of Layer 1 Atoms - Single-purpose, pure functions.

Example:
    >>> bus = EventBus()
    >>> async def on_created(payload):
    ...     print(payload['transaction_id'])
    >>> bus.subscribe('transaction_created', on_created)
    >>> bus.publish('transaction_created', {'transaction_id': 'txn_1'})
    >>> await bus.drain()
    txn_1
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Set

logger = logging.getLogger(__name__)

Handler = Callable[[Dict[str, Any]], Awaitable[None]]

TRANSACTION_CREATED = 'transaction_created'


class EventBus:
    """Named events fanned out to async handlers"""

    def __init__(self):
        self._handlers: Dict[str, List[Handler]] = {}
        self._pending: Set[asyncio.Task] = set()

    def subscribe(self, event: str, handler: Handler) -> None:
        self._handlers.setdefault(event, []).append(handler)

    def handler_count(self, event: str) -> int:
        return len(self._handlers.get(event, []))

    async def _run_handler(self, event: str, handler: Handler, payload: Dict[str, Any]) -> None:
        try:
            await handler(payload)
        except Exception as e:
            logger.error(f"Handler {getattr(handler, '__name__', handler)} failed for {event}: {e}")

    def publish(self, event: str, payload: Dict[str, Any]) -> int:
        """
        Schedule every handler for ``event``; returns the number scheduled.

        Must be called from inside a running event loop.
        """
        handlers = self._handlers.get(event, [])
        for handler in handlers:
            task = asyncio.create_task(self._run_handler(event, handler, dict(payload)))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
        return len(handlers)

    async def drain(self) -> None:
        """Wait for every handler scheduled so far (shutdown and tests)."""
        while True:
            pending = [task for task in self._pending if not task.done()]
            if not pending:
                break
            await asyncio.gather(*pending)
