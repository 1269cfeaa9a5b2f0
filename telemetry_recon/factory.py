"""Engine factory."""

from __future__ import annotations

import aiohttp

from .auth import TokenCache
from .backend.thingsboard import InventoryClient
from .config import ReconcileConfig
from .engine import ReconciliationEngine
from .hierarchy import HierarchyResolver
from .ingestion import IngestionClient


def build_engine(
    session: aiohttp.ClientSession,
    config: ReconcileConfig,
    *,
    jwt_token: str | None = None,
) -> ReconciliationEngine:
    """Create a reconciliation engine wired from ``config``.

    The inventory backend and the hierarchy resolver are only attached
    when both ``config.inventory_base_url`` and ``jwt_token`` are given;
    otherwise callers must pass a snapshot to every pass.
    """

    tokens = TokenCache(
        session,
        config.data_api_host,
        config.client_id,
        config.client_secret,
        renew_skew_seconds=config.renew_skew_seconds,
        retry_base_ms=config.retry_base_ms,
        retry_max_attempts=config.retry_max_attempts,
        request_timeout=config.request_timeout,
    )
    totals = IngestionClient(
        session,
        config.data_api_host,
        tokens,
        page_size=config.totals_page_size,
        request_timeout=config.request_timeout,
    )
    inventory: InventoryClient | None = None
    hierarchy: HierarchyResolver | None = None
    if config.inventory_base_url and jwt_token:
        inventory = InventoryClient(
            session,
            config.inventory_base_url,
            jwt_token,
            request_timeout=config.request_timeout,
        )
        hierarchy = HierarchyResolver(
            inventory, inventory, chunk_size=config.detail_chunk_size
        )
    return ReconciliationEngine(
        tokens,
        totals,
        inventory=inventory,
        hierarchy=hierarchy,
        result_ttl=config.result_ttl,
    )


__all__ = ["build_engine"]
