"""
Two-tier caching: memory + persistent tiers, stale-while-revalidate, tag invalidation.
"""
from .core import CacheEntry, CacheOptions, TierStats, estimate_size
from .tiers import BaseTier, MemoryTier
from .persistent import PersistentTier, SCHEMA_VERSION
from .coalescer import RequestCoalescer
from .sweeper import PeriodicSweeper
from .ttl_policies import (
    ENDPOINT_POLICIES,
    INVALIDATION_RULES,
    EndpointPolicy,
    get_invalidation_tags,
    get_policy_for_endpoint,
)
from .manager import CacheOrchestrator, create_cache_key

__all__ = [
    # Core types
    "CacheEntry",
    "CacheOptions",
    "TierStats",
    "estimate_size",
    # Tiers
    "BaseTier",
    "MemoryTier",
    "PersistentTier",
    "SCHEMA_VERSION",
    # Helpers
    "RequestCoalescer",
    "PeriodicSweeper",
    # Policies
    "ENDPOINT_POLICIES",
    "INVALIDATION_RULES",
    "EndpointPolicy",
    "get_invalidation_tags",
    "get_policy_for_endpoint",
    # Orchestrator
    "CacheOrchestrator",
    "create_cache_key",
]
