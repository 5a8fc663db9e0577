"""Channel provider registry with configuration-driven selection.

Maps provider name strings to provider classes. Use get_channel_provider()
to instantiate a provider by name with provider-specific configuration.
"""

from smelt_processor.realtime.interface import ChannelProvider
from smelt_processor.realtime.memory import InMemoryChannelProvider
from smelt_processor.realtime.supabase import SupabaseRealtimeProvider
from smelt_processor.utils.errors import ChannelSetupError

CHANNEL_PROVIDERS: dict[str, type[ChannelProvider]] = {
    "memory": InMemoryChannelProvider,
    "supabase": SupabaseRealtimeProvider,
}


def get_channel_provider(name: str, **kwargs: object) -> ChannelProvider:
    """Create a channel provider instance by name.

    Args:
        name: Provider name (e.g., "memory", "supabase").
        **kwargs: Provider-specific configuration passed to the constructor.

    Returns:
        An initialized ChannelProvider instance.

    Raises:
        ChannelSetupError: If the provider name is not registered.
    """
    provider_cls = CHANNEL_PROVIDERS.get(name)
    if not provider_cls:
        available = ", ".join(sorted(CHANNEL_PROVIDERS.keys()))
        raise ChannelSetupError(
            f"Unknown channel provider: '{name}'. Available: {available}"
        )
    return provider_cls(**kwargs)
