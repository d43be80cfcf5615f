"""
Dashboard data client: typed helpers over the offline-aware fetcher.
"""
import json
import logging
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import urlencode

from .cache import create_cache_key, get_invalidation_tags, get_policy_for_endpoint
from .cache.ttl_policies import SEARCH_TTL
from .errors import OfflineDataUnavailable
from .fetcher import OfflineAwareFetcher, RequestOptions

logger = logging.getLogger("client")


class TeamPulseClient:
    """
    One method per dashboard resource.

    Reads use the caching policy registered for their endpoint; writes are
    never cached and invalidate the tags registered for their endpoint.
    """

    def __init__(self, fetcher: OfflineAwareFetcher):
        self.fetcher = fetcher
        self.cache = fetcher.cache

    # ------------------------------------------------------------------
    # Generic helpers
    # ------------------------------------------------------------------

    def _read(self, endpoint: str) -> Any:
        policy = get_policy_for_endpoint(endpoint)
        return self.fetcher.request(
            endpoint,
            options=RequestOptions(
                ttl=policy.ttl,
                persistent=policy.persistent,
                stale_while_revalidate=policy.stale_while_revalidate,
                tags=policy.tags,
                priority=policy.priority,
            ),
        )

    def _write(self, endpoint: str, method: str, data: Any) -> Any:
        return self.fetcher.request(
            endpoint,
            method=method,
            data=data,
            options=RequestOptions(
                cache=False,
                invalidate_tags=get_invalidation_tags(endpoint),
            ),
        )

    # ------------------------------------------------------------------
    # Dashboard
    # ------------------------------------------------------------------

    def get_dashboard_stats(self) -> Any:
        return self._read("/dashboard/stats")

    # ------------------------------------------------------------------
    # Team
    # ------------------------------------------------------------------

    def get_team_members(self) -> Any:
        return self._read("/team/members")

    def add_team_member(self, member: Dict[str, Any]) -> Any:
        return self._write("/team/members", "POST", member)

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    def get_projects(self) -> Any:
        return self._read("/projects")

    def add_project(self, project: Dict[str, Any]) -> Any:
        return self._write("/projects", "POST", project)

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def get_tasks(self, filters: Optional[Dict[str, Any]] = None) -> Any:
        endpoint = "/tasks"
        if filters:
            endpoint += "?" + urlencode(sorted(filters.items()))
        return self._read(endpoint)

    def add_task(self, task: Dict[str, Any]) -> Any:
        return self._write("/tasks", "POST", task)

    def update_task(self, task_id: Any, updates: Dict[str, Any]) -> Any:
        return self._write(f"/tasks/{task_id}", "PUT", updates)

    def bulk_update_tasks(self, updates: List[Dict[str, Any]]) -> Any:
        return self._write("/tasks/bulk", "PUT", {"updates": updates})

    def bulk_delete_tasks(self, task_ids: Iterable[Any]) -> Any:
        return self._write("/tasks/bulk", "DELETE", {"ids": list(task_ids)})

    # ------------------------------------------------------------------
    # Performance, notifications, activity
    # ------------------------------------------------------------------

    def get_performance_metrics(self) -> Any:
        return self._read("/performance/metrics")

    def get_performance_trends(self, period: str = "30d") -> Any:
        return self._read(f"/performance/trends?period={period}")

    def get_notifications(self) -> Any:
        return self._read("/notifications")

    def get_activities(self, limit: int = 50) -> Any:
        return self._read(f"/activities?limit={limit}")

    # ------------------------------------------------------------------
    # Search / export
    # ------------------------------------------------------------------

    def search(self, query: str, type: str = "all", **options: Any) -> Any:
        """Search results are cached for five minutes under the 'search' tag."""
        key = create_cache_key("search", type, query, json.dumps(options, sort_keys=True))

        def fetch():
            # a POST made offline would be queued, not answered
            if not self.fetcher.is_online:
                raise OfflineDataUnavailable("/search")
            return self.fetcher.request(
                "/search",
                method="POST",
                data={"query": query, "type": type, **options},
                options=RequestOptions(cache=False),
            )

        return self.cache.get_or_fetch(
            key,
            fetch,
            ttl=SEARCH_TTL,
            tags=("search",),
        )

    def export_data(self, type: str, format: str = "json", filters: Optional[Dict[str, Any]] = None) -> Any:
        params = {"format": format, **(filters or {})}
        accept = "text/csv" if format == "csv" else "application/json"
        return self.fetcher.request(
            f"/export/{type}?{urlencode(params)}",
            options=RequestOptions(cache=False, headers={"Accept": accept}),
        )

    # ------------------------------------------------------------------
    # Cache management
    # ------------------------------------------------------------------

    def clear_cache(self, tags: Optional[Iterable[str]] = None) -> int:
        if tags:
            return self.cache.clear_by_tags(tags)
        return self.cache.clear()

    def get_cache_stats(self) -> Dict[str, Any]:
        return self.cache.get_stats()

    CRITICAL_LOADERS = (
        ("get_dashboard_stats", 1),
        ("get_team_members", 2),
        ("get_projects", 2),
        ("get_tasks", 3),
    )

    def preload_critical_data(self) -> List[str]:
        """
        Warm the cache for the first dashboard render, in priority order.

        Returns:
            Names of the loaders that succeeded
        """
        loaded = []
        for name, _priority in sorted(self.CRITICAL_LOADERS, key=lambda item: item[1]):
            try:
                getattr(self, name)()
                loaded.append(name)
            except Exception as e:
                logger.warning(f"Failed to preload {name}: {e}")
        return loaded
