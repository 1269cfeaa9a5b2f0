"""Backend package exports."""
from __future__ import annotations

from .base import (
    BatchDetailProto,
    InventoryBackendProto,
    RelationQueryProto,
    TotalsSourceProto,
)
from .thingsboard import InventoryClient, InventoryRequestError

__all__ = [
    "BatchDetailProto",
    "InventoryBackendProto",
    "InventoryClient",
    "InventoryRequestError",
    "RelationQueryProto",
    "TotalsSourceProto",
]
