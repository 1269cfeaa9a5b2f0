"""Collaborator protocols consumed by the reconciliation core."""
from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol

from telemetry_recon.domain.ids import ReconcilePeriod, ReconcileScope
from telemetry_recon.domain.records import InventorySnapshot
from telemetry_recon.models import AssetRecord, RelationRecord, TotalsRow


class RelationQueryProto(Protocol):
    """Look up the relations pointing at an entity."""

    async def query_relations(
        self, entity_id: str, entity_type: str
    ) -> Sequence[RelationRecord]:
        """Return relations whose target is ``entity_id``, in service order."""


class BatchDetailProto(Protocol):
    """Resolve container details for a bounded list of ids."""

    async def fetch_asset_details(self, ids: Sequence[str]) -> Sequence[AssetRecord]:
        """Return records for every resolvable id in ``ids``."""


class InventoryBackendProto(RelationQueryProto, BatchDetailProto, Protocol):
    """Inventory service exposing both hierarchy collaborators."""

    async def load_snapshot(self, customer_id: str) -> InventorySnapshot:
        """Return the device listing and attribute feed of a customer."""


class TotalsSourceProto(Protocol):
    """Period totals keyed by external ingestion id."""

    async def fetch_totals(
        self, scope: ReconcileScope, period: ReconcilePeriod
    ) -> Sequence[TotalsRow]:
        """Return every totals row for ``scope`` over ``period``."""
