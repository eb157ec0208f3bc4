"""
backend/app/services/event_handlers/__init__.py

Purpose:
    Central registration entrypoint for event bus subscribers.

Dependencies:
    - app.services.event_bus
    - app.services.event_handlers.scoring_handlers
"""

from __future__ import annotations

from app.config import settings
from app.services.event_bus import InMemoryEventBus
from app.services.event_handlers.scoring_handlers import handle_event_completed


def register_event_handlers(bus: InMemoryEventBus) -> None:
    if settings.EVENT_HANDLER_SCORING_ENABLED:
        bus.subscribe("event.completed", handle_event_completed, handler_name="scoring_enqueue", concurrency=1)
