"""
Runtime utilities for the chaos controller.

Provides:
- Event bus for internal pub/sub
"""

from chaos_controller.runtime.event_bus import Event, EventBus, EventType

__all__ = [
    "Event",
    "EventBus",
    "EventType",
]
