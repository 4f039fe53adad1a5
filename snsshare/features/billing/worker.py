"""
Supervised background processing for acknowledged webhooks.

The HTTP handler submits a verified event and returns immediately. Each event
runs as an asyncio task whose blocking database work happens in a worker
thread. Failures land on the supervisor's error channel (a bounded list of
recent failures plus an error log line); the app lifespan drains in-flight
tasks on shutdown.
"""
import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Deque, List, Optional, Set

from snsshare.core.clock import utcnow
from snsshare.features.billing.provider import WebhookEvent
from snsshare.features.billing.reconciler import process_event

logger = logging.getLogger("snsshare")


@dataclass
class WebhookFailure:
    event_id: str
    event_type: str
    error: str
    failed_at: datetime


class WebhookSupervisor:
    def __init__(self, handler: Callable[[WebhookEvent], str] = process_event, max_failures: int = 100):
        self._handler = handler
        self._tasks: Set[asyncio.Task] = set()
        self._failures: Deque[WebhookFailure] = deque(maxlen=max_failures)

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    @property
    def failures(self) -> List[WebhookFailure]:
        return list(self._failures)

    def submit(self, event: WebhookEvent) -> asyncio.Task:
        """Schedule processing on the running loop. Must be called from async code."""
        task = asyncio.get_running_loop().create_task(
            self._run(event), name=f"webhook:{event.event_id}"
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, event: WebhookEvent) -> str:
        try:
            outcome = await asyncio.to_thread(self._handler, event)
        except Exception as e:
            self._failures.append(
                WebhookFailure(
                    event_id=event.event_id,
                    event_type=event.event_type,
                    error=repr(e),
                    failed_at=utcnow(),
                )
            )
            logger.error(
                "billing.webhook.worker_failed",
                exc_info=True,
                extra={"event_id": event.event_id, "event_type": event.event_type},
            )
            return "failed"
        logger.info(
            "billing.webhook.worker_done",
            extra={"event_id": event.event_id, "event_type": event.event_type, "outcome": outcome},
        )
        return outcome

    async def drain(self, timeout: Optional[float] = None) -> int:
        """Wait for in-flight events. Returns how many were still running at the timeout."""
        if not self._tasks:
            return 0
        logger.info("billing.webhook.draining", extra={"in_flight": len(self._tasks)})
        _, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        if pending:
            logger.warning("billing.webhook.drain_timeout", extra={"pending": len(pending)})
        return len(pending)
