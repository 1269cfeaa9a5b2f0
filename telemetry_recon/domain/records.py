"""Typed device records produced by a reconciliation pass."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, NamedTuple

from ..const import CATEGORY_OTHER
from ..models import PowerLimitsDocument
from .diagnostics import PassDiagnostics
from .ids import ConnectionStatus, IdentityKeySet, PeriodKey


class AttributeRow(NamedTuple):
    """One server-scope attribute observation."""

    device_id: str
    key: str
    value: Any


@dataclass(frozen=True, slots=True)
class BaseItem:
    """Raw device listing entry.

    ``id`` is either the native device id or, when an upstream step has
    overwritten it, the external ingestion id of the same device.
    """

    id: str
    label: str | None = None
    name: str | None = None
    identifier: str | None = None
    value: float | None = None


@dataclass(frozen=True, slots=True)
class InventorySnapshot:
    """Device listing and attribute feed captured for one pass."""

    base_items: tuple[BaseItem, ...] = ()
    attribute_rows: tuple[AttributeRow, ...] = ()


@dataclass(frozen=True, slots=True)
class Annotation:
    """Operator note attached to a device."""

    id: str
    type: str
    text: str
    importance: int
    status: str
    created_at: str | None = None


@dataclass(slots=True)
class DeviceAttributes:
    """Server-scope attributes of one device, keyed by native id."""

    native_id: str
    ingestion_id: str | None = None
    identifier: str | None = None
    label: str | None = None
    slave_id: str | None = None
    central_id: str | None = None
    device_type: str | None = None
    device_profile: str | None = None
    central_name: str | None = None
    customer_name: str | None = None
    connection_status: ConnectionStatus = ConnectionStatus.UNKNOWN
    last_connect_time: int | None = None
    last_disconnect_time: int | None = None
    last_activity_time: int | None = None
    power_limits: PowerLimitsDocument | None = None
    annotations: tuple[Annotation, ...] | None = None


@dataclass(frozen=True, slots=True)
class AssetDetails:
    """Display details of a container asset."""

    id: str
    name: str | None = None
    label: str | None = None

    @property
    def display_name(self) -> str:
        """Return the label, then the name, then the id."""

        return self.label or self.name or self.id


@dataclass(frozen=True, slots=True)
class HierarchyInfo:
    """Resolved parent and grandparent containers of a device."""

    parent: AssetDetails | None = None
    grandparent: AssetDetails | None = None


@dataclass(slots=True)
class CanonicalItem:
    """De-duplicated device record used by the aggregation stages."""

    native_id: str
    external_ingestion_id: str | None
    human_identifier: str | None
    label: str
    device_type: str | None
    attributes: DeviceAttributes | None
    value: float = 0.0
    percentage: float = 0.0
    category: str = CATEGORY_OTHER
    subcategory: str | None = None
    hierarchy: HierarchyInfo | None = None
    resolved_by: str = "unresolved"

    @property
    def resolved(self) -> bool:
        """Return ``True`` when the native id was found in the attribute index."""

        return self.resolved_by != "unresolved"

    @property
    def keys(self) -> IdentityKeySet:
        """Return the identity keys known for this item."""

        return IdentityKeySet(
            native_id=self.native_id,
            external_ingestion_id=self.external_ingestion_id,
            human_identifier=self.human_identifier,
        )


@dataclass(slots=True)
class GroupSummary:
    """Totals of one classification category."""

    category: str
    total: float = 0.0
    count: int = 0
    subcategories: dict[str, float] = field(default_factory=dict)


@dataclass(slots=True)
class ReconcileResult:
    """Finished output of one reconciliation pass."""

    scope_key: str
    period_key: PeriodKey
    items: list[CanonicalItem]
    group_totals: dict[str, float]
    groups: dict[str, GroupSummary]
    diagnostics: PassDiagnostics
    completed_at: datetime
