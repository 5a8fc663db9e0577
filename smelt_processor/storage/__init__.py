"""Durable store adapters."""

from smelt_processor.storage.interface import JobStore
from smelt_processor.storage.memory import InMemoryJobStore

__all__ = ["InMemoryJobStore", "JobStore"]
