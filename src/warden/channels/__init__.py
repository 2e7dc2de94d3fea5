"""Channels that carry user messages in and replies out."""

from .base import Channel, ChannelHealth
from .queue import QueueChannel
from .stdio import StdioChannel

__all__ = ["Channel", "ChannelHealth", "QueueChannel", "StdioChannel"]
