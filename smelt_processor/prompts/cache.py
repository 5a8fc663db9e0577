"""Process-wide cache of predefined prompt bodies.

Populated on first read and shared by every job in the process. Writers
of predefined prompts call invalidate() or clear() so the next read goes
back to the store.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from smelt_processor.storage.interface import JobStore

logger = logging.getLogger(__name__)


class PromptCache:
    def __init__(self) -> None:
        self._bodies: dict[str, str] = {}

    def __contains__(self, name: str) -> bool:
        return name in self._bodies

    def __len__(self) -> int:
        return len(self._bodies)

    def get(self, name: str) -> str | None:
        return self._bodies.get(name)

    def put(self, name: str, body: str) -> None:
        self._bodies[name] = body

    def invalidate(self, name: str) -> None:
        self._bodies.pop(name, None)

    def clear(self) -> None:
        self._bodies.clear()

    async def preload(self, store: JobStore) -> int:
        """Load every predefined prompt from the store.

        Returns:
            Number of prompts cached.
        """
        prompts = await store.list_predefined_prompts()
        self._bodies.update(prompts)
        logger.info("Preloaded %d predefined prompts", len(prompts))
        return len(prompts)
