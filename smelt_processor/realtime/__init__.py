"""Realtime progress broadcasting."""

from smelt_processor.realtime.broadcaster import JobChannel, ProgressBroadcaster
from smelt_processor.realtime.registry import get_channel_provider

__all__ = ["JobChannel", "ProgressBroadcaster", "get_channel_provider"]
