"""Resolve a job's selected prompts into (display name, body) pairs.

Predefined prompts go through the shared PromptCache; custom prompts are
read from the store on every call because their owners can edit them.
"""

from __future__ import annotations

import logging

from smelt_processor.models import Job, Prompt
from smelt_processor.prompts.cache import PromptCache
from smelt_processor.storage.interface import JobStore
from smelt_processor.utils.errors import SynthesisError

logger = logging.getLogger(__name__)

PROMPT_DISPLAY_NAMES: dict[str, str] = {
    "summarize": "Summary",
    "action_items": "Action Items",
    "detailed_notes": "Detailed Notes",
    "qa_format": "Q&A Format",
    "table_of_contents": "Table of Contents",
}
CUSTOM_PROMPT_DISPLAY_NAME = "Custom Prompt"


def display_name(name: str) -> str:
    return PROMPT_DISPLAY_NAMES.get(name, name)


class PromptLoader:
    """Loads prompt bodies for a job.

    Args:
        store: Durable store holding prompt records.
        cache: Shared cache for predefined prompts. A private cache is
            created when omitted.
    """

    def __init__(self, store: JobStore, cache: PromptCache | None = None) -> None:
        self.store = store
        self.cache = cache if cache is not None else PromptCache()

    async def get_predefined(self, name: str) -> str:
        """Return a predefined prompt body, reading through the cache.

        Raises:
            SynthesisError: If no prompt with that name exists.
        """
        cached = self.cache.get(name)
        if cached is not None:
            return cached

        body = await self.store.get_predefined_prompt(name)
        if body is None:
            raise SynthesisError(f"PREDEFINED PROMPT NOT FOUND: {name}")
        self.cache.put(name, body)
        return body

    async def get_custom(self, prompt_id: str, user_id: str | None) -> str:
        """Raises SynthesisError if the prompt is missing or not the user's."""
        body = await self.store.get_custom_prompt(prompt_id, user_id)
        if body is None:
            raise SynthesisError("CUSTOM PROMPT NOT FOUND")
        return body

    async def load_for_job(self, job: Job) -> list[Prompt]:
        """Load the job's predefined prompts in order, then its custom prompt."""
        prompts = [
            Prompt(name=display_name(name), content=await self.get_predefined(name))
            for name in job.default_prompt_names
        ]
        if job.user_prompt_id:
            prompts.append(
                Prompt(
                    name=CUSTOM_PROMPT_DISPLAY_NAME,
                    content=await self.get_custom(job.user_prompt_id, job.user_id),
                )
            )
        logger.debug(
            "Loaded %d prompts: %s",
            len(prompts),
            [p.name for p in prompts],
            extra={"job_id": job.id},
        )
        return prompts
