"""Resolvers turning free-form command text into intents."""

from .pattern_resolver import PatternResolver, ParsedIntent, PatternType
from .remote_resolver import RemoteResolver

__all__ = [
    'PatternResolver',
    'ParsedIntent',
    'PatternType',
    'RemoteResolver',
]
