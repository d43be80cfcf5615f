"""Records kept by the offline queue and sync coordinators."""

import random
import string
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def make_record_id(prefix: str) -> str:
    """Unique-enough id: '<prefix>_<epoch ms>_<9 random chars>'."""
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"{prefix}_{int(time.time() * 1000)}_{suffix}"


class OfflineQueueItem(BaseModel):
    """A mutating request that could not be sent while offline."""

    id: str = Field(default_factory=lambda: make_record_id("req"))
    endpoint: str
    method: str = "POST"
    data: Any = None
    headers: Dict[str, str] = Field(default_factory=dict)
    invalidate_tags: List[str] = Field(default_factory=list)
    timestamp: str = Field(default_factory=_utc_now_iso)
    attempts: int = 0
    last_error: Optional[str] = None


class PendingChange(BaseModel):
    """A local change waiting to be reconciled with the server."""

    id: str = Field(default_factory=lambda: make_record_id("change"))
    timestamp: str = Field(default_factory=_utc_now_iso)
    payload: Any = None


@dataclass
class ItemResult:
    """Outcome of replaying one queued request."""
    id: str
    success: bool
    error: Optional[str] = None


@dataclass
class DrainReport:
    """Aggregate outcome of one queue drain."""
    results: List[ItemResult] = field(default_factory=list)
    remaining: int = 0

    @property
    def processed(self) -> int:
        return len(self.results)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        return self.processed - self.succeeded

    @property
    def failed_ids(self) -> Tuple[str, ...]:
        return tuple(r.id for r in self.results if not r.success)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "remaining": self.remaining,
            "results": [
                {"id": r.id, "success": r.success, "error": r.error}
                for r in self.results
            ],
        }


@dataclass
class SyncResult:
    """What a sync function reports back."""
    success: bool
    error: Optional[str] = None
    synced: int = 0

    @classmethod
    def coerce(cls, value: Any) -> "SyncResult":
        """
        Accept a SyncResult, a mapping with a 'success' key, or a bool.

        Anything else counts as success (the call returned without raising).
        """
        if isinstance(value, SyncResult):
            return value
        if isinstance(value, dict):
            return cls(
                success=bool(value.get("success")),
                error=value.get("error"),
                synced=int(value.get("synced", 0) or 0),
            )
        if isinstance(value, bool):
            return cls(success=value)
        return cls(success=True)
