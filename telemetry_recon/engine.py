"""Reconciliation passes merging inventory records with period totals."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Collection, Sequence
from datetime import datetime, timezone
import logging
import time
from typing import Any, Final

from .attributes import AttributeIndexBuilder
from .auth import IngestionAuthError, TokenCache
from .backend.base import InventoryBackendProto, TotalsSourceProto
from .backend.thingsboard import InventoryRequestError
from .classification import (
    DEFAULT_RULES,
    ClassificationRule,
    classify,
    classify_subcategory,
    effective_device_type,
)
from .const import DEFAULT_RESULT_TTL_SECONDS, LOCAL_TELEMETRY_DEVICE_TYPES
from .domain.diagnostics import PassDiagnostics
from .domain.ids import PeriodKey, ReconcilePeriod, ReconcileScope
from .domain.records import (
    CanonicalItem,
    GroupSummary,
    HierarchyInfo,
    InventorySnapshot,
    ReconcileResult,
)
from .hierarchy import HierarchyResolver
from .identity import IdentityResolver
from .ingestion import IngestionRequestError
from .models import TotalsRow
from .sanitize import mask_identifier

_LOGGER = logging.getLogger(__name__)

EVENT_PERIOD_CHANGED: Final = "period-changed"
EVENT_DATA_READY: Final = "data-ready"

STAGE_TOTALS = "totals"
STAGE_INVENTORY = "inventory"
STAGE_HIERARCHY = "hierarchy"

Listener = Callable[[str, Any], None]
DedupKey = tuple[str, PeriodKey]


class AuthUnavailableError(Exception):
    """No credential could be obtained, so no totals can be fetched."""


def merge_totals(
    items: Sequence[CanonicalItem],
    rows: Sequence[TotalsRow],
    local_types: Collection[str] = LOCAL_TELEMETRY_DEVICE_TYPES,
) -> None:
    """Assign each item its total, defaulting to zero when none was returned.

    Items of a local-telemetry device type keep the value they already
    carry.
    """

    lookup = {row.external_id: row.total_value for row in rows}
    for item in items:
        dtype = effective_device_type(item.device_type, item.label)
        if dtype in local_types:
            continue
        key = item.external_ingestion_id
        item.value = float(lookup.get(key, 0.0)) if key else 0.0


def classify_items(
    items: Sequence[CanonicalItem],
    rules: Sequence[ClassificationRule] = DEFAULT_RULES,
) -> None:
    """Set the category and subcategory of every item."""

    for item in items:
        dtype = effective_device_type(item.device_type, item.label)
        profile = item.attributes.device_profile if item.attributes else None
        item.category = classify(
            dtype, item.human_identifier, rules, device_profile=profile
        )
        item.subcategory = classify_subcategory(
            item.category, dtype, item.human_identifier, device_profile=profile
        )


def aggregate(
    items: list[CanonicalItem],
) -> tuple[dict[str, float], dict[str, GroupSummary]]:
    """Sum values per category, set percentages and sort ``items`` in place.

    Percentages are relative to the item's category total and are zero when
    that total is zero. Items are ordered by descending value, then label.
    """

    groups: dict[str, GroupSummary] = {}
    for item in items:
        summary = groups.get(item.category)
        if summary is None:
            summary = GroupSummary(category=item.category)
            groups[item.category] = summary
        summary.total += item.value
        summary.count += 1
        if item.subcategory:
            summary.subcategories[item.subcategory] = (
                summary.subcategories.get(item.subcategory, 0.0) + item.value
            )

    for item in items:
        total = groups[item.category].total
        item.percentage = (100.0 * item.value / total) if total else 0.0

    items.sort(key=lambda item: (-item.value, item.label.casefold(), item.native_id))
    group_totals = {category: summary.total for category, summary in groups.items()}
    return group_totals, groups


class ReconciliationEngine:
    """Run deduplicated reconciliation passes for customer scopes.

    A pass authorises, loads the inventory snapshot when none is supplied,
    resolves identities, fetches totals and hierarchy concurrently, then
    merges, classifies and aggregates. Only a missing credential fails a
    pass; every other failure degrades data and is recorded in the pass
    diagnostics.

    Calls sharing a scope and period key while a pass is in flight join
    that pass. Once it has completed, further calls return its result
    while it is younger than ``result_ttl`` seconds, until ``force`` is
    passed or another period is requested for the scope. A pass that
    finishes after a newer period was requested is returned to its own
    callers only.
    """

    def __init__(
        self,
        tokens: TokenCache,
        totals: TotalsSourceProto,
        *,
        inventory: InventoryBackendProto | None = None,
        hierarchy: HierarchyResolver | None = None,
        rules: Sequence[ClassificationRule] = DEFAULT_RULES,
        local_telemetry_types: Collection[str] = LOCAL_TELEMETRY_DEVICE_TYPES,
        result_ttl: float = DEFAULT_RESULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Wire the engine to its collaborators."""

        self._tokens = tokens
        self._totals = totals
        self._inventory = inventory
        self._hierarchy = hierarchy
        self._rules = tuple(rules)
        self._local_types = frozenset(local_telemetry_types)
        self._result_ttl = max(float(result_ttl), 0.0)
        self._clock = clock
        self._builder = AttributeIndexBuilder()
        self._identity = IdentityResolver()
        self._inflight: dict[DedupKey, asyncio.Task[ReconcileResult]] = {}
        self._completed: dict[str, ReconcileResult] = {}
        self._latest_period: dict[str, PeriodKey] = {}
        self._listeners: list[Listener] = []

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------
    def add_listener(self, callback: Listener) -> Callable[[], None]:
        """Register ``callback(event, payload)`` and return an unsubscriber."""

        self._listeners.append(callback)

        def _remove() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return _remove

    def _emit(self, event: str, payload: Any) -> None:
        for callback in list(self._listeners):
            try:
                callback(event, payload)
            except Exception:  # noqa: BLE001 - listeners must not break a pass
                _LOGGER.exception("Listener raised while handling %s", event)

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------
    def last_result(self, scope: ReconcileScope) -> ReconcileResult | None:
        """Return the most recent successful result for ``scope``."""

        return self._completed.get(scope.key)

    def is_current(self, result: ReconcileResult) -> bool:
        """Return ``True`` while ``result`` matches the latest requested period."""

        return self._latest_period.get(result.scope_key) == result.period_key

    # ------------------------------------------------------------------
    # Passes
    # ------------------------------------------------------------------
    async def reconcile(
        self,
        period: ReconcilePeriod,
        scope: ReconcileScope,
        snapshot: InventorySnapshot | None = None,
        *,
        force: bool = False,
    ) -> ReconcileResult:
        """Return the reconciled items and group totals for ``period``.

        Raises ``AuthUnavailableError`` when no credential can be obtained.
        """

        period_key = period.key
        dedup_key: DedupKey = (scope.key, period_key)
        if self._latest_period.get(scope.key) != period_key:
            self._latest_period[scope.key] = period_key
            self._emit(EVENT_PERIOD_CHANGED, period_key)

        task = self._inflight.get(dedup_key)
        if task is not None:
            _LOGGER.debug("Joining in-flight pass %s/%s", scope.key, period_key)
            return await asyncio.shield(task)

        completed = self._completed.get(scope.key)
        if not force and completed is not None and completed.period_key == period_key:
            age = self._clock() - completed.completed_at.timestamp()
            if age < self._result_ttl:
                _LOGGER.debug(
                    "Reusing completed pass %s/%s (age %.0fs)",
                    scope.key,
                    period_key,
                    age,
                )
                return completed
            _LOGGER.debug(
                "Completed pass %s/%s expired (age %.0fs)", scope.key, period_key, age
            )

        task = asyncio.get_running_loop().create_task(
            self._run(period, scope, snapshot)
        )
        self._inflight[dedup_key] = task
        task.add_done_callback(lambda done: self._finish(dedup_key, done))
        return await asyncio.shield(task)

    def _finish(self, key: DedupKey, task: asyncio.Task[ReconcileResult]) -> None:
        """Forget the in-flight task and publish its result."""

        if self._inflight.get(key) is task:
            del self._inflight[key]
        if task.cancelled():
            return
        err = task.exception()
        if err is not None:
            _LOGGER.debug("Pass %s/%s failed: %s", key[0], key[1], err)
            return
        result = task.result()
        if self._latest_period.get(result.scope_key) != result.period_key:
            _LOGGER.debug(
                "Pass %s/%s superseded by %s; not publishing",
                key[0],
                key[1],
                self._latest_period.get(result.scope_key),
            )
            return
        self._completed[result.scope_key] = result
        self._emit(EVENT_DATA_READY, result)

    async def _authorize(self, scope: ReconcileScope) -> None:
        try:
            await self._tokens.get_token()
        except IngestionAuthError as err:
            _LOGGER.error(
                "Reconciliation for %s aborted: credential unavailable",
                mask_identifier(scope.customer_id),
            )
            raise AuthUnavailableError(str(err)) from err

    async def _load_snapshot(
        self, scope: ReconcileScope, diagnostics: PassDiagnostics
    ) -> InventorySnapshot:
        if self._inventory is None:
            msg = "snapshot is required when no inventory backend is configured"
            raise ValueError(msg)
        try:
            return await self._inventory.load_snapshot(scope.customer_id)
        except InventoryRequestError as err:
            _LOGGER.warning(
                "Inventory for %s unavailable: %s",
                mask_identifier(scope.customer_id),
                err,
            )
            diagnostics.record_fetch_failure(STAGE_INVENTORY, scope.key, err)
            return InventorySnapshot()

    async def _fetch_totals(
        self,
        scope: ReconcileScope,
        period: ReconcilePeriod,
        diagnostics: PassDiagnostics,
    ) -> Sequence[TotalsRow]:
        try:
            return await self._totals.fetch_totals(scope, period)
        except (IngestionRequestError, IngestionAuthError) as err:
            _LOGGER.warning(
                "Totals for %s unavailable, zero-filling: %s",
                mask_identifier(scope.customer_id),
                err,
            )
            diagnostics.record_fetch_failure(STAGE_TOTALS, scope.key, err)
            return []

    async def _resolve_hierarchy(
        self, items: Sequence[CanonicalItem], diagnostics: PassDiagnostics
    ) -> dict[str, HierarchyInfo]:
        if self._hierarchy is None:
            return {}
        return await self._hierarchy.resolve_bulk(
            [item.native_id for item in items], diagnostics
        )

    async def _run(
        self,
        period: ReconcilePeriod,
        scope: ReconcileScope,
        snapshot: InventorySnapshot | None,
    ) -> ReconcileResult:
        diagnostics = PassDiagnostics()
        _LOGGER.debug("Pass %s/%s: authorizing", scope.key, period.key)
        await self._authorize(scope)

        if snapshot is None:
            snapshot = await self._load_snapshot(scope, diagnostics)
        index = self._builder.build(snapshot.attribute_rows, diagnostics)
        items, _ambiguities = self._identity.resolve(
            snapshot.base_items, index, diagnostics
        )

        _LOGGER.debug("Pass %s/%s: fetching totals", scope.key, period.key)
        rows, hierarchy = await asyncio.gather(
            self._fetch_totals(scope, period, diagnostics),
            self._resolve_hierarchy(items, diagnostics),
            return_exceptions=True,
        )
        for outcome in (rows, hierarchy):
            if isinstance(outcome, BaseException) and not isinstance(
                outcome, Exception
            ):
                raise outcome
        if isinstance(rows, Exception):
            raise rows
        if isinstance(hierarchy, Exception):
            _LOGGER.warning(
                "Hierarchy for %s unavailable: %s",
                mask_identifier(scope.customer_id),
                hierarchy,
            )
            diagnostics.record_fetch_failure(STAGE_HIERARCHY, scope.key, hierarchy)
            hierarchy = {}
        for item in items:
            item.hierarchy = hierarchy.get(item.native_id)

        merge_totals(items, rows, self._local_types)
        classify_items(items, self._rules)
        group_totals, groups = aggregate(items)

        _LOGGER.debug(
            "Pass %s/%s done: %d items, %d groups, %d totals rows",
            scope.key,
            period.key,
            len(items),
            len(groups),
            len(rows),
        )
        if not diagnostics.is_clean:
            _LOGGER.warning(
                "Pass %s/%s degraded: %d fetch failures, %d ambiguities, "
                "%d parse failures",
                scope.key,
                period.key,
                len(diagnostics.fetch_failures),
                len(diagnostics.ambiguities),
                len(diagnostics.parse_failures),
            )
        return ReconcileResult(
            scope_key=scope.key,
            period_key=period.key,
            items=items,
            group_totals=group_totals,
            groups=groups,
            diagnostics=diagnostics,
            completed_at=datetime.fromtimestamp(self._clock(), timezone.utc),
        )


__all__ = [
    "EVENT_DATA_READY",
    "EVENT_PERIOD_CHANGED",
    "AuthUnavailableError",
    "ReconciliationEngine",
    "aggregate",
    "classify_items",
    "merge_totals",
]
