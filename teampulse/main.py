"""
TeamPulse data layer - composition root and diagnostics API.

Wires the cache tiers, offline queue and fetcher from settings, and exposes
cache/queue/connectivity diagnostics over FastAPI.
"""
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from fastapi import FastAPI, HTTPException, Request
from pydantic import BaseModel

from config.settings import Settings, settings as default_settings

from .cache import CacheOrchestrator, MemoryTier, PersistentTier
from .client import TeamPulseClient
from .fetcher import OfflineAwareFetcher
from .network import NetworkMonitor
from .offline import OfflineSyncCoordinator
from .storage import InMemoryKeyValueStore, KeyValueStore, SqliteKeyValueStore
from .transport import HttpTransport

APP_VERSION = "v0.3.0"
APP_NAME = "TeamPulse Data Layer"

logger = logging.getLogger("teampulse")


def configure_logging(config: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def build_store(config: Settings) -> KeyValueStore:
    if config.storage_backend == "memory":
        return InMemoryKeyValueStore(capacity_bytes=config.storage_quota_bytes)
    return SqliteKeyValueStore(config.storage_path, capacity_bytes=config.storage_quota_bytes)


@dataclass
class Services:
    """Everything the data layer owns, for one application instance."""
    settings: Settings
    store: KeyValueStore
    monitor: NetworkMonitor
    cache: CacheOrchestrator
    fetcher: OfflineAwareFetcher
    client: TeamPulseClient
    transport: Optional[HttpTransport] = None
    sync_coordinators: Dict[str, OfflineSyncCoordinator] = field(default_factory=dict)

    def register_sync(self, coordinator: OfflineSyncCoordinator) -> OfflineSyncCoordinator:
        self.sync_coordinators[coordinator.sync_key] = coordinator
        return coordinator

    def close(self) -> None:
        for coordinator in self.sync_coordinators.values():
            coordinator.close()
        self.fetcher.close()
        self.cache.close()
        if self.transport is not None:
            self.transport.close()
        logger.info("Data layer services closed")


def build_services(
    config: Optional[Settings] = None,
    store: Optional[KeyValueStore] = None,
    transport=None,
    monitor: Optional[NetworkMonitor] = None,
) -> Services:
    """
    Construct the data layer.

    Args:
        config: Settings (defaults to the environment-loaded settings)
        store: Backing key-value store (defaults per `storage_backend`)
        transport: Request callable (defaults to HttpTransport)
        monitor: Connectivity signal (defaults to a monitor starting online)
    """
    config = config or default_settings
    store = store if store is not None else build_store(config)
    monitor = monitor or NetworkMonitor(online=True)
    http_transport = None
    if transport is None:
        http_transport = HttpTransport(
            timeout=config.request_timeout_seconds,
            retry_attempts=config.transport_retry_attempts,
        )
        transport = http_transport

    memory = MemoryTier(
        max_size=config.memory_cache_max_bytes,
        default_ttl=config.default_ttl_seconds,
    )
    persistent = PersistentTier(
        store,
        max_size=config.persistent_cache_max_bytes,
        default_ttl=config.persistent_ttl_seconds,
        namespace=config.cache_namespace,
        quota_eviction_ratio=config.quota_eviction_ratio,
    )
    cache = CacheOrchestrator(
        memory,
        persistent,
        max_background_workers=config.background_workers,
        promotion_ttl=config.promotion_ttl_seconds,
        stale_ratio=config.stale_ratio,
        sweep_interval=config.sweep_interval_seconds,
    )
    fetcher = OfflineAwareFetcher(
        cache,
        transport,
        monitor,
        store,
        base_url=config.api_base_url,
        queue_key=config.offline_queue_key,
    )
    return Services(
        settings=config,
        store=store,
        monitor=monitor,
        cache=cache,
        fetcher=fetcher,
        client=TeamPulseClient(fetcher),
        transport=http_transport,
    )


class ClearCacheRequest(BaseModel):
    tags: Optional[List[str]] = None


def create_app(config: Optional[Settings] = None, services: Optional[Services] = None) -> FastAPI:
    """
    Build the diagnostics app.

    Injected services are used as-is and left open on shutdown; otherwise
    services are built on startup and closed on shutdown.
    """
    config = config or (services.settings if services else default_settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = app.state.services is None
        if owned:
            configure_logging(config)
            app.state.services = build_services(config)
        try:
            yield
        finally:
            if owned:
                app.state.services.close()
                app.state.services = None

    app = FastAPI(
        title=APP_NAME,
        description="Cache, offline queue and connectivity diagnostics",
        version=APP_VERSION,
        lifespan=lifespan,
    )
    app.state.services = services

    def get_services(request: Request) -> Services:
        current = request.app.state.services
        if current is None:
            raise HTTPException(status_code=503, detail="Services not started")
        return current

    @app.get("/health")
    def health_check(request: Request):
        """Health check endpoint."""
        current = request.app.state.services
        return {
            "status": "ok",
            "online": current.monitor.is_online if current else None,
        }

    @app.get("/version")
    def version_info():
        return {"name": APP_NAME, "version": APP_VERSION}

    @app.get("/cache/stats")
    def cache_stats(request: Request):
        """Get cache statistics."""
        return get_services(request).cache.get_stats()

    @app.post("/cache/clear")
    def clear_cache(request: Request, body: Optional[ClearCacheRequest] = None):
        """Clear the cache, or only entries carrying any of the given tags."""
        tags = body.tags if body else None
        removed = get_services(request).client.clear_cache(tags)
        return {"removed": removed, "tags": tags}

    @app.post("/cache/sweep")
    def sweep_cache(request: Request):
        return {"removed": get_services(request).cache.sweep()}

    @app.get("/offline/queue")
    def offline_queue(request: Request):
        queue = get_services(request).fetcher.queue
        return {
            "queueLength": queue.queue_length,
            "draining": queue.is_draining,
            "items": [item.model_dump(mode="json") for item in queue.items],
        }

    @app.post("/offline/drain")
    def drain_queue(request: Request):
        current = get_services(request)
        report = current.fetcher.queue.drain()
        if report is None:
            return {
                "skipped": True,
                "online": current.monitor.is_online,
                "queueLength": current.fetcher.queue.queue_length,
            }
        return {"skipped": False, **report.to_dict()}

    @app.get("/network")
    def network_status(request: Request):
        current = get_services(request)
        return {"online": current.monitor.is_online, "fetcherState": current.fetcher.state}

    @app.post("/network/online")
    def network_online(request: Request):
        current = get_services(request)
        changed = current.monitor.mark_online()
        return {"online": True, "changed": changed}

    @app.post("/network/offline")
    def network_offline(request: Request):
        current = get_services(request)
        changed = current.monitor.mark_offline()
        return {"online": False, "changed": changed}

    return app


app = create_app()
