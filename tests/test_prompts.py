"""Tests for prompt loading and caching."""

from unittest.mock import AsyncMock

import pytest

from smelt_processor.models import Job, JobMode
from smelt_processor.prompts.cache import PromptCache
from smelt_processor.prompts.defaults import DEFAULT_PROMPTS
from smelt_processor.prompts.loader import (
    CUSTOM_PROMPT_DISPLAY_NAME,
    PROMPT_DISPLAY_NAMES,
    PromptLoader,
    display_name,
)
from smelt_processor.storage.memory import InMemoryJobStore
from smelt_processor.utils.errors import SynthesisError


@pytest.fixture
def store() -> InMemoryJobStore:
    store = InMemoryJobStore(predefined_prompts={"summarize": "Summarize.", "qa_format": "Q&A."})
    store.add_custom_prompt("p1", "My prompt.", user_id="user1")
    return store


class TestPromptCache:
    def test_put_get_invalidate(self) -> None:
        cache = PromptCache()
        cache.put("summarize", "body")
        assert "summarize" in cache
        assert cache.get("summarize") == "body"
        cache.invalidate("summarize")
        assert cache.get("summarize") is None
        cache.invalidate("summarize")

    def test_clear(self) -> None:
        cache = PromptCache()
        cache.put("a", "1")
        cache.put("b", "2")
        cache.clear()
        assert len(cache) == 0

    async def test_preload(self, store) -> None:
        cache = PromptCache()
        assert await cache.preload(store) == 2
        assert cache.get("qa_format") == "Q&A."


class TestPromptLoader:
    async def test_predefined_read_through_cache(self, store) -> None:
        store.get_predefined_prompt = AsyncMock(return_value="Summarize.")
        loader = PromptLoader(store)

        assert await loader.get_predefined("summarize") == "Summarize."
        assert await loader.get_predefined("summarize") == "Summarize."

        store.get_predefined_prompt.assert_awaited_once_with("summarize")

    async def test_shared_cache_across_loaders(self, store) -> None:
        cache = PromptCache()
        await PromptLoader(store, cache).get_predefined("summarize")
        assert "summarize" in cache
        store.predefined_prompts.clear()
        assert await PromptLoader(store, cache).get_predefined("summarize") == "Summarize."

    async def test_unknown_predefined(self, store) -> None:
        with pytest.raises(SynthesisError, match="PREDEFINED PROMPT NOT FOUND: nope"):
            await PromptLoader(store).get_predefined("nope")

    async def test_custom_prompt_owner_only(self, store) -> None:
        loader = PromptLoader(store)
        assert await loader.get_custom("p1", "user1") == "My prompt."
        with pytest.raises(SynthesisError, match="CUSTOM PROMPT NOT FOUND"):
            await loader.get_custom("p1", "someone-else")

    async def test_load_for_job_orders_predefined_then_custom(self, store) -> None:
        job = Job(
            id="j1",
            mode=JobMode.SEPARATE,
            user_id="user1",
            default_prompt_names=["qa_format", "summarize"],
            user_prompt_id="p1",
        )

        prompts = await PromptLoader(store).load_for_job(job)

        assert [p.name for p in prompts] == ["Q&A Format", "Summary", CUSTOM_PROMPT_DISPLAY_NAME]
        assert prompts[2].content == "My prompt."

    async def test_load_for_job_without_prompts(self, store) -> None:
        job = Job(id="j1", mode=JobMode.SEPARATE)
        assert await PromptLoader(store).load_for_job(job) == []


def test_display_name_falls_back_to_key() -> None:
    assert display_name("summarize") == "Summary"
    assert display_name("unknown_prompt") == "unknown_prompt"


def test_defaults_cover_every_display_name() -> None:
    assert set(DEFAULT_PROMPTS) == set(PROMPT_DISPLAY_NAMES)
