"""Telemetry reconciliation for building-management dashboards."""

from __future__ import annotations

from .attributes import AttributeIndex, AttributeIndexBuilder
from .auth import IngestionAuthError, TokenCache
from .backend import InventoryClient, InventoryRequestError
from .config import CONFIG_SCHEMA, ReconcileConfig
from .domain import (
    BaseItem,
    CanonicalItem,
    InventorySnapshot,
    PassDiagnostics,
    ReconcilePeriod,
    ReconcileResult,
    ReconcileScope,
)
from .engine import (
    EVENT_DATA_READY,
    EVENT_PERIOD_CHANGED,
    AuthUnavailableError,
    ReconciliationEngine,
)
from .factory import build_engine
from .hierarchy import HierarchyResolver
from .identity import IdentityResolver
from .ingestion import IngestionClient, IngestionRequestError
from .limits import PowerLimitRanges, classify_power, resolve_limits

__all__ = [
    "CONFIG_SCHEMA",
    "EVENT_DATA_READY",
    "EVENT_PERIOD_CHANGED",
    "AttributeIndex",
    "AttributeIndexBuilder",
    "AuthUnavailableError",
    "BaseItem",
    "CanonicalItem",
    "HierarchyResolver",
    "IdentityResolver",
    "IngestionAuthError",
    "IngestionClient",
    "IngestionRequestError",
    "InventoryClient",
    "InventoryRequestError",
    "InventorySnapshot",
    "PassDiagnostics",
    "PowerLimitRanges",
    "ReconcileConfig",
    "ReconcilePeriod",
    "ReconcileResult",
    "ReconcileScope",
    "ReconciliationEngine",
    "TokenCache",
    "build_engine",
    "classify_power",
    "resolve_limits",
]
