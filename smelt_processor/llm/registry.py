"""LLM client registry with configuration-driven provider selection.

Maps provider name strings to client classes. Use get_llm_client() to
instantiate a client by name with client-specific configuration.
"""

from smelt_processor.llm.interface import LLMClient
from smelt_processor.llm.openrouter import OpenRouterClient
from smelt_processor.utils.errors import ProviderRequestError

LLM_CLIENTS: dict[str, type[LLMClient]] = {
    "openrouter": OpenRouterClient,
}


def get_llm_client(provider: str, **kwargs: object) -> LLMClient:
    """Create an LLM client instance by provider name.

    Args:
        provider: Provider name (e.g., "openrouter").
        **kwargs: Client-specific configuration passed to the constructor.

    Returns:
        An initialized LLMClient instance.

    Raises:
        ProviderRequestError: If the provider name is not registered.
    """
    client_cls = LLM_CLIENTS.get(provider)
    if not client_cls:
        available = ", ".join(sorted(LLM_CLIENTS.keys()))
        raise ProviderRequestError(
            f"Unknown LLM provider: '{provider}'. Available: {available}"
        )
    return client_cls(**kwargs)
