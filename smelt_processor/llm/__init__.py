"""Clients for the external transcription/generation provider."""

from smelt_processor.llm.registry import get_llm_client

__all__ = ["get_llm_client"]
