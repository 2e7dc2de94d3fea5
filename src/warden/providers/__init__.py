"""
Model providers.

Every provider implements ``Provider.send`` and raises classified
Transient/Permanent provider errors so the router can decide whether to
retry, fail over or give up.
"""

from .anthropic import AnthropicProvider
from .base import (
    PROVIDER_ALIASES,
    HttpProvider,
    Provider,
    classify_status,
    normalize_provider,
)
from .openai_compatible import OpenAICompatibleProvider, parse_arguments
from .scripted import ScriptedProvider

__all__ = [
    "AnthropicProvider",
    "HttpProvider",
    "OpenAICompatibleProvider",
    "PROVIDER_ALIASES",
    "Provider",
    "ScriptedProvider",
    "classify_status",
    "normalize_provider",
    "parse_arguments",
]
