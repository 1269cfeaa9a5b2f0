"""Domain models for telemetry reconciliation."""

from .diagnostics import (
    IdentityAmbiguity,
    ParseFailure,
    PartialFetchFailure,
    PassDiagnostics,
)
from .ids import (
    ConnectionStatus,
    IdentityKeySet,
    PeriodKey,
    ReconcilePeriod,
    ReconcileScope,
    normalize_connection_status,
    normalize_key,
)
from .records import (
    Annotation,
    AssetDetails,
    AttributeRow,
    BaseItem,
    CanonicalItem,
    DeviceAttributes,
    GroupSummary,
    HierarchyInfo,
    InventorySnapshot,
    ReconcileResult,
)

__all__ = [
    "Annotation",
    "AssetDetails",
    "AttributeRow",
    "BaseItem",
    "CanonicalItem",
    "ConnectionStatus",
    "DeviceAttributes",
    "GroupSummary",
    "HierarchyInfo",
    "IdentityAmbiguity",
    "IdentityKeySet",
    "InventorySnapshot",
    "ParseFailure",
    "PartialFetchFailure",
    "PassDiagnostics",
    "PeriodKey",
    "ReconcilePeriod",
    "ReconcileResult",
    "ReconcileScope",
    "normalize_connection_status",
    "normalize_key",
]
