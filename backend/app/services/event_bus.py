"""
backend/app/services/event_bus.py

Purpose:
    Lightweight in-memory event bus for process-local reactive workflows.
    Publish is non-blocking; each subscription drains its own bounded queue
    with a fixed number of worker tasks.

Dependencies:
    - asyncio
    - app.config
    - app.services.event_models
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict, deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from app.config import settings
from app.services.event_models import BaseEvent, normalize_event_time
from app.utils import ensure_utc, utcnow

logger = logging.getLogger("pitwall.event_bus")

AsyncEventHandler = Callable[[BaseEvent], Awaitable[None]]
_METRIC_KEYS = ("published", "handled", "failed", "dropped")
_LAG_SAMPLE_SIZE = 500


@dataclass
class _Subscription:
    event_type: str
    handler_name: str
    handler: AsyncEventHandler
    concurrency: int
    queue: asyncio.Queue[BaseEvent]
    workers: list[asyncio.Task]
    handled_total: int = 0
    failed_total: int = 0
    dropped_total: int = 0


class InMemoryEventBus:
    def __init__(
        self,
        *,
        ingress_maxsize: int,
        handler_maxsize: int,
        default_concurrency: int,
        error_buffer_size: int,
    ) -> None:
        self._ingress_maxsize = max(1, int(ingress_maxsize))
        self._handler_maxsize = max(1, int(handler_maxsize))
        self._default_concurrency = max(1, int(default_concurrency))

        self._ingress: asyncio.Queue[BaseEvent] | None = None
        self._subscriptions: dict[str, list[_Subscription]] = defaultdict(list)
        self._dispatcher_task: asyncio.Task | None = None
        self._running = False

        self._totals: dict[str, int] = {metric: 0 for metric in _METRIC_KEYS}
        self._per_event_type: dict[str, dict[str, int]] = defaultdict(
            lambda: {metric: 0 for metric in _METRIC_KEYS}
        )
        self._errors: deque[dict[str, Any]] = deque(maxlen=max(1, int(error_buffer_size)))
        self._lag_samples: deque[int] = deque(maxlen=_LAG_SAMPLE_SIZE)

    @property
    def running(self) -> bool:
        return self._running

    def _ingress_queue(self) -> asyncio.Queue[BaseEvent]:
        # Created lazily so the queue binds to the running loop, not import time.
        if self._ingress is None:
            self._ingress = asyncio.Queue(maxsize=self._ingress_maxsize)
        return self._ingress

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        for subs in self._subscriptions.values():
            for sub in subs:
                if not sub.workers:
                    sub.workers.extend(self._spawn_workers(sub))
        self._dispatcher_task = asyncio.create_task(self._dispatch_loop(), name="event_bus_dispatcher")
        logger.info("Event bus started")

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        tasks: list[asyncio.Task] = []
        if self._dispatcher_task is not None:
            tasks.append(self._dispatcher_task)
            self._dispatcher_task = None
        for subs in self._subscriptions.values():
            for sub in subs:
                tasks.extend(sub.workers)
                sub.workers.clear()
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info("Event bus stopped")

    def subscribe(
        self,
        event_type: str,
        handler: AsyncEventHandler,
        *,
        handler_name: str,
        concurrency: int | None = None,
    ) -> None:
        sub = _Subscription(
            event_type=event_type,
            handler_name=handler_name,
            handler=handler,
            concurrency=max(1, int(concurrency or self._default_concurrency)),
            queue=asyncio.Queue(maxsize=self._handler_maxsize),
            workers=[],
        )
        self._subscriptions[event_type].append(sub)
        if self._running:
            sub.workers.extend(self._spawn_workers(sub))

    async def publish(self, event: BaseEvent) -> bool:
        """Enqueue an event; returns False when it was dropped."""
        normalized = normalize_event_time(event)
        try:
            self._ingress_queue().put_nowait(normalized)
        except asyncio.QueueFull:
            self._count("dropped", normalized.event_type)
            logger.warning("Event bus ingress queue full; dropping event_type=%s", normalized.event_type)
            return False
        self._count("published", normalized.event_type)
        return True

    def stats(self) -> dict[str, Any]:
        per_handler: dict[str, dict[str, Any]] = {}
        for event_type, subs in self._subscriptions.items():
            for sub in subs:
                per_handler[f"{event_type}:{sub.handler_name}"] = {
                    "concurrency": sub.concurrency,
                    "queue_depth": sub.queue.qsize(),
                    "queue_limit": self._handler_maxsize,
                    "handled_total": sub.handled_total,
                    "failed_total": sub.failed_total,
                    "dropped_total": sub.dropped_total,
                }
        return {
            "enabled": bool(settings.EVENT_BUS_ENABLED),
            "running": self._running,
            **{f"{metric}_total": value for metric, value in self._totals.items()},
            "ingress_queue_depth": self._ingress.qsize() if self._ingress is not None else 0,
            "ingress_queue_limit": self._ingress_maxsize,
            "latency_ms": self._latency_summary(),
            "per_handler": per_handler,
            "per_event_type": {key: dict(value) for key, value in self._per_event_type.items()},
            "recent_errors": list(self._errors),
        }

    async def _dispatch_loop(self) -> None:
        ingress = self._ingress_queue()
        while self._running:
            event = await ingress.get()
            for sub in self._subscriptions.get(event.event_type, []):
                try:
                    sub.queue.put_nowait(event)
                except asyncio.QueueFull:
                    sub.dropped_total += 1
                    self._count("dropped", event.event_type)
                    logger.warning(
                        "Event bus handler queue full; dropping event_type=%s handler=%s",
                        event.event_type,
                        sub.handler_name,
                    )

    def _spawn_workers(self, sub: _Subscription) -> list[asyncio.Task]:
        return [
            asyncio.create_task(self._handler_loop(sub), name=f"event_bus_{sub.event_type}_{sub.handler_name}_{idx}")
            for idx in range(sub.concurrency)
        ]

    async def _handler_loop(self, sub: _Subscription) -> None:
        while self._running:
            event = await sub.queue.get()
            lag_ms = int((utcnow() - ensure_utc(event.occurred_at)).total_seconds() * 1000)
            self._lag_samples.append(max(0, lag_ms))
            try:
                await sub.handler(event)
            except Exception as exc:
                sub.failed_total += 1
                self._count("failed", event.event_type)
                self._errors.append(
                    {
                        "event_id": event.event_id,
                        "event_type": event.event_type,
                        "source": event.source,
                        "handler_name": sub.handler_name,
                        "correlation_id": event.correlation_id,
                        "ts": utcnow().isoformat(),
                        "error": str(exc),
                    }
                )
                logger.error(
                    "Event handler failed event_id=%s event_type=%s handler=%s correlation_id=%s",
                    event.event_id,
                    event.event_type,
                    sub.handler_name,
                    event.correlation_id,
                    exc_info=True,
                )
            else:
                sub.handled_total += 1
                self._count("handled", event.event_type)

    def _count(self, metric: str, event_type: str) -> None:
        self._totals[metric] += 1
        self._per_event_type[str(event_type or "unknown")][metric] += 1

    def _latency_summary(self) -> dict[str, float]:
        if not self._lag_samples:
            return {"avg": 0.0, "p50": 0.0, "p95": 0.0}
        values = sorted(self._lag_samples)
        n = len(values)
        return {
            "avg": round(sum(values) / n, 2),
            "p50": float(values[min(n - 1, int(0.50 * (n - 1)))]),
            "p95": float(values[min(n - 1, int(0.95 * (n - 1)))]),
        }


event_bus = InMemoryEventBus(
    ingress_maxsize=settings.EVENT_BUS_INGRESS_QUEUE_MAXSIZE,
    handler_maxsize=settings.EVENT_BUS_HANDLER_QUEUE_MAXSIZE,
    default_concurrency=settings.EVENT_BUS_HANDLER_DEFAULT_CONCURRENCY,
    error_buffer_size=settings.EVENT_BUS_ERROR_BUFFER_SIZE,
)
