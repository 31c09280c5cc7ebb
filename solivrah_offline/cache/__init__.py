"""
Response cache and the strategy selector that fronts it.
"""

from .store import CacheNamespace, CacheStore
from .strategy import PLACEHOLDER_SVG, Strategy, StrategySelector
from .types import CacheEntry, FetchRequest, FetchResponse, canonical_url

__all__ = [
    "CacheStore",
    "CacheNamespace",
    "CacheEntry",
    "FetchRequest",
    "FetchResponse",
    "canonical_url",
    "Strategy",
    "StrategySelector",
    "PLACEHOLDER_SVG",
]
