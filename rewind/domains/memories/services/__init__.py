"""Memories domain services."""

from rewind.domains.memories.services.memory_service import (
    MemoryServiceError,
    RetrievalError,
    TimeWindow,
    build_memory_view,
    cursor_for,
    fetch,
    fetch_profile,
    filter_to_window,
    get_todays_memory,
    select,
    window_for,
)

__all__ = [
    "MemoryServiceError",
    "RetrievalError",
    "TimeWindow",
    "window_for",
    "cursor_for",
    "fetch",
    "filter_to_window",
    "select",
    "get_todays_memory",
    "fetch_profile",
    "build_memory_view",
]
