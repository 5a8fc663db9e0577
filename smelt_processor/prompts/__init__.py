"""Prompt loading and caching."""

from smelt_processor.prompts.cache import PromptCache
from smelt_processor.prompts.loader import PromptLoader

__all__ = ["PromptCache", "PromptLoader"]
