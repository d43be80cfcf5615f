"""
TTL / tag policies per dashboard endpoint, and tag invalidation per mutation.
"""
from dataclasses import dataclass
from typing import Dict, Tuple

MINUTE = 60


@dataclass(frozen=True)
class EndpointPolicy:
    """Caching behaviour for one family of GET endpoints."""
    ttl: float
    tags: Tuple[str, ...]
    persistent: bool = False
    stale_while_revalidate: bool = False
    priority: int = 1


# Keyed by endpoint prefix; the longest matching prefix wins.
ENDPOINT_POLICIES: Dict[str, EndpointPolicy] = {
    "/dashboard/stats": EndpointPolicy(
        ttl=2 * MINUTE,
        tags=("dashboard", "stats"),
        stale_while_revalidate=True,
        priority=3,
    ),
    "/team/members": EndpointPolicy(
        ttl=10 * MINUTE,
        tags=("team", "members"),
        persistent=True,
        priority=2,
    ),
    "/projects": EndpointPolicy(
        ttl=5 * MINUTE,
        tags=("projects",),
        persistent=True,
        priority=2,
    ),
    "/tasks": EndpointPolicy(
        ttl=3 * MINUTE,
        tags=("tasks",),
        stale_while_revalidate=True,
        priority=2,
    ),
    "/performance/metrics": EndpointPolicy(
        ttl=5 * MINUTE,
        tags=("performance", "metrics"),
        stale_while_revalidate=True,
    ),
    "/performance/trends": EndpointPolicy(
        ttl=10 * MINUTE,
        tags=("performance", "trends"),
        persistent=True,
    ),
    "/notifications": EndpointPolicy(
        ttl=1 * MINUTE,
        tags=("notifications",),
    ),
    "/activities": EndpointPolicy(
        ttl=2 * MINUTE,
        tags=("activities",),
    ),
}

DEFAULT_POLICY = EndpointPolicy(ttl=5 * MINUTE, tags=())

SEARCH_TTL = 5 * MINUTE

# Tags invalidated after a successful write to an endpoint family.
INVALIDATION_RULES: Dict[str, Tuple[str, ...]] = {
    "/team/members": ("team", "members", "dashboard"),
    "/projects": ("projects", "dashboard"),
    "/tasks": ("tasks", "dashboard"),
}


def _longest_prefix(endpoint: str, table: Dict[str, object]):
    path = endpoint.split("?", 1)[0]
    matches = [p for p in table if path == p or path.startswith(p + "/")]
    if not matches:
        return None
    return max(matches, key=len)


def get_policy_for_endpoint(endpoint: str) -> EndpointPolicy:
    """
    Caching policy for a GET endpoint (query string ignored).

    Args:
        endpoint: API path, e.g. "/tasks?status=open"

    Returns:
        Matching EndpointPolicy, or DEFAULT_POLICY
    """
    prefix = _longest_prefix(endpoint, ENDPOINT_POLICIES)
    return ENDPOINT_POLICIES[prefix] if prefix else DEFAULT_POLICY


def get_invalidation_tags(endpoint: str) -> Tuple[str, ...]:
    """Tags to invalidate after a successful write to `endpoint`."""
    prefix = _longest_prefix(endpoint, INVALIDATION_RULES)
    return INVALIDATION_RULES[prefix] if prefix else ()
