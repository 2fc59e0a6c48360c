"""Memories domain controllers."""

from rewind.domains.memories.controllers.memory_api import memory_api_bp
from rewind.domains.memories.controllers.memory_pages import memory_pages_bp

__all__ = ["memory_api_bp", "memory_pages_bp"]
