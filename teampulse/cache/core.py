"""
Core cache data structures.
"""
import json
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, Optional, Tuple, Union


DEFAULT_PRIORITY = 1
DEFAULT_STALE_RATIO = 0.8


def normalize_tags(tags: Union[None, str, Iterable[str]]) -> Tuple[str, ...]:
    """Accept a single tag or any iterable of tags; drop duplicates, keep order."""
    if tags is None:
        return ()
    if isinstance(tags, str):
        return (tags,)
    return tuple(dict.fromkeys(tags))


@dataclass
class CacheEntry:
    """
    A cached value plus the bookkeeping that drives expiry and eviction.

    Timestamps are epoch seconds from the owning tier's clock.
    """
    key: str
    data: Any
    created_at: float
    ttl: float
    tags: Tuple[str, ...] = ()
    priority: int = DEFAULT_PRIORITY
    access_count: int = 0
    last_accessed_at: float = 0.0
    # Lifetime of the entry this one was copied from; drives staleness
    origin_ttl: Optional[float] = None

    def __post_init__(self):
        self.tags = normalize_tags(self.tags)
        if not self.last_accessed_at:
            self.last_accessed_at = self.created_at

    def age(self, now: float) -> float:
        """Seconds since the entry was written."""
        return now - self.created_at

    def is_expired(self, now: float) -> bool:
        return self.age(now) > self.ttl

    def is_stale(self, now: float, threshold: float) -> bool:
        return self.age(now) > threshold

    def remaining_ttl(self, now: float) -> float:
        return self.ttl - self.age(now)

    @property
    def freshness_ttl(self) -> float:
        """TTL that staleness is measured against."""
        return self.ttl if self.origin_ttl is None else self.origin_ttl

    def has_any_tag(self, tags: Iterable[str]) -> bool:
        return not set(self.tags).isdisjoint(tags)

    def touch(self, now: float) -> None:
        """Record a successful read."""
        self.access_count += 1
        self.last_accessed_at = now

    def to_dict(self) -> Dict[str, Any]:
        """Persisted form (JSON-serializable if `data` is)."""
        result = {
            "data": self.data,
            "createdAt": self.created_at,
            "ttl": self.ttl,
            "tags": list(self.tags),
            "priority": self.priority,
            "accessCount": self.access_count,
            "lastAccessedAt": self.last_accessed_at,
        }
        if self.origin_ttl is not None:
            result["originTtl"] = self.origin_ttl
        return result

    @classmethod
    def from_dict(cls, key: str, raw: Dict[str, Any]) -> "CacheEntry":
        """
        Rebuild an entry from its persisted form.

        Raises:
            ValueError: If required fields are missing or mistyped
        """
        if not isinstance(raw, dict) or "data" not in raw:
            raise ValueError(f"Malformed cache entry for '{key}'")
        try:
            tags = raw.get("tags") or []
            if isinstance(tags, str) or not all(isinstance(t, str) for t in tags):
                raise ValueError(f"Malformed tags for '{key}'")
            return cls(
                key=key,
                data=raw["data"],
                created_at=float(raw["createdAt"]),
                ttl=float(raw["ttl"]),
                tags=tuple(tags),
                priority=int(raw.get("priority", DEFAULT_PRIORITY)),
                access_count=int(raw.get("accessCount", 0)),
                last_accessed_at=float(raw.get("lastAccessedAt", 0.0)),
                origin_ttl=float(raw["originTtl"]) if raw.get("originTtl") is not None else None,
            )
        except (KeyError, TypeError) as e:
            raise ValueError(f"Malformed cache entry for '{key}': {e}") from e


def estimate_size(entry: CacheEntry) -> int:
    """
    Estimate the serialized size of an entry in bytes.

    Counts the compact JSON encoding as UTF-16 (two bytes per character),
    which is how browser storage quotas are accounted.
    """
    encoded = json.dumps(entry.to_dict(), separators=(",", ":"), default=str)
    return len(encoded) * 2


@dataclass(frozen=True)
class CacheOptions:
    """
    Per-call cache options with explicit defaults.

    ttl=None means "use the target tier's default". stale_threshold=None
    means ttl * stale_ratio.
    """
    ttl: Optional[float] = None
    tags: Tuple[str, ...] = ()
    priority: int = DEFAULT_PRIORITY
    persistent: bool = False
    fallback_to_persistent: bool = True
    stale_while_revalidate: bool = False
    background_refresh: bool = False
    stale_threshold: Optional[float] = None
    stale_ratio: float = DEFAULT_STALE_RATIO

    def __post_init__(self):
        object.__setattr__(self, "tags", normalize_tags(self.tags))

    def with_overrides(self, **changes: Any) -> "CacheOptions":
        return replace(self, **changes)

    def threshold_for(self, entry: CacheEntry) -> float:
        """Age after which `entry` counts as stale."""
        if self.stale_threshold is not None:
            return self.stale_threshold
        if self.ttl is not None:
            return self.ttl * self.stale_ratio
        return entry.freshness_ttl * self.stale_ratio


@dataclass
class TierStats:
    """Size and utilization snapshot for one tier."""
    size: int
    entries: int
    max_size: int
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def utilization(self) -> float:
        if self.max_size <= 0:
            return 0.0
        return self.size / self.max_size * 100

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "size": self.size,
            "entries": self.entries,
            "maxSize": self.max_size,
            "utilization": round(self.utilization, 2),
        }
        result.update(self.extra)
        return result
