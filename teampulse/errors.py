"""
Exception hierarchy for the data-access layer.
"""
from typing import Optional


class TeamPulseError(Exception):
    """Base class for all data-access errors."""


class StorageError(TeamPulseError):
    """The backing key-value store rejected an operation."""


class StorageQuotaExceeded(StorageError):
    """A write would push the backing store past its capacity."""

    def __init__(self, key: str, required: int, capacity: int):
        self.key = key
        self.required = required
        self.capacity = capacity
        super().__init__(
            f"Storage quota exceeded writing '{key}': "
            f"{required} > {capacity} bytes"
        )


class TransportError(TeamPulseError):
    """An upstream request failed (connection problem or HTTP error status)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class OfflineDataUnavailable(TeamPulseError):
    """Offline and nothing is cached for the requested resource."""

    def __init__(self, endpoint: str):
        self.endpoint = endpoint
        super().__init__("No cached data available offline")
