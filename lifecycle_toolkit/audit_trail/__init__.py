"""
Audit Trail Module - lifecycle event recording.

Every soft delete, restore, cleanup and cascade failure is written to an
event sink so partial cascades can be found and closed after the fact.
"""

from .models import EventQuery, LifecycleAction, LifecycleEvent
from .storage import (
    EventSink,
    LoggingEventSink,
    FileEventSink,
    MemoryEventSink,
    SQLEventSink,
    get_event_sink,
)

__all__ = [
    # Models
    "LifecycleAction",
    "LifecycleEvent",
    "EventQuery",
    # Sinks
    "EventSink",
    "LoggingEventSink",
    "MemoryEventSink",
    "FileEventSink",
    "SQLEventSink",
    "get_event_sink",
]
