from __future__ import annotations

import asyncio
import logging
from typing import Any

import pytest

from telemetry_recon.auth import IngestionAuthError
from telemetry_recon.backend import InventoryRequestError
from telemetry_recon.domain import (
    AttributeRow,
    BaseItem,
    CanonicalItem,
    InventorySnapshot,
    ReconcileScope,
)
from telemetry_recon.engine import (
    EVENT_DATA_READY,
    EVENT_PERIOD_CHANGED,
    AuthUnavailableError,
    ReconciliationEngine,
    aggregate,
    merge_totals,
)
from telemetry_recon.hierarchy import HierarchyResolver
from telemetry_recon.ingestion import IngestionRequestError
from telemetry_recon.models import TotalsRow
from tests.test_hierarchy import sample_inventory


class StubTokens:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.calls = 0

    async def get_token(self) -> str:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return "tok"


class StubTotals:
    def __init__(
        self,
        rows: list[dict[str, Any]] | None = None,
        *,
        error: Exception | None = None,
        gate: asyncio.Event | None = None,
    ) -> None:
        self.rows = rows or []
        self.error = error
        self.gate = gate
        self.calls: list[tuple[str, str]] = []

    async def fetch_totals(self, scope, period) -> list[TotalsRow]:
        self.calls.append((scope.key, period.key))
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return [TotalsRow.model_validate(row) for row in self.rows]


class StubSnapshotSource:
    def __init__(
        self,
        snapshot: InventorySnapshot | None = None,
        *,
        error: Exception | None = None,
    ) -> None:
        self.snapshot = snapshot or InventorySnapshot()
        self.error = error
        self.calls: list[str] = []

    async def load_snapshot(self, customer_id: str) -> InventorySnapshot:
        self.calls.append(customer_id)
        if self.error is not None:
            raise self.error
        return self.snapshot


def scenario_snapshot() -> InventorySnapshot:
    attrs = {
        "D1": {"deviceType": "CHILLER", "identifier": ""},
        "D2": {"deviceType": "BOMBA", "identifier": "CAG-1"},
        "D3": {"deviceType": "MOTOR", "identifier": "X"},
    }
    rows = tuple(
        AttributeRow(device, key, value)
        for device, values in attrs.items()
        for key, value in values.items()
    )
    base = tuple(
        BaseItem(id=device, label=f"Device {device[-1]}") for device in attrs
    )
    return InventorySnapshot(base_items=base, attribute_rows=rows)


SCENARIO_TOTALS = [
    {"id": "D1", "total_value": 100},
    {"id": "D2", "total_value": 50},
]


def test_end_to_end_scenario(make_period, scope) -> None:
    async def _run() -> None:
        totals = StubTotals(SCENARIO_TOTALS)
        engine = ReconciliationEngine(StubTokens(), totals)  # type: ignore[arg-type]

        result = await engine.reconcile(make_period(), scope, scenario_snapshot())

        assert result.group_totals == {"climatizacao": 150.0, "other": 0.0}
        by_id = {item.native_id: item for item in result.items}
        assert by_id["D1"].value == 100.0
        assert by_id["D2"].value == 50.0
        assert by_id["D3"].value == 0.0
        assert by_id["D1"].category == "climatizacao"
        assert by_id["D2"].category == "climatizacao"
        assert by_id["D3"].category == "other"
        assert [item.native_id for item in result.items] == ["D1", "D2", "D3"]
        assert by_id["D1"].percentage == pytest.approx(100 * 100 / 150)
        assert by_id["D2"].percentage == pytest.approx(100 * 50 / 150)
        assert by_id["D3"].percentage == 0.0
        assert result.groups["climatizacao"].count == 2
        assert result.groups["climatizacao"].subcategories == {
            "Chillers": 100.0,
            "CAG": 50.0,
        }
        assert result.groups["other"].subcategories == {"Geral": 0.0}
        assert result.diagnostics.is_clean
        assert result.period_key == make_period().key
        assert result.scope_key == scope.key

    asyncio.run(_run())


def test_merge_zero_fill_law() -> None:
    items = [
        CanonicalItem("n1", "X", None, "x", "MOTOR", None),
        CanonicalItem("n2", "Y", None, "y", "MOTOR", None),
    ]

    merge_totals(items, [TotalsRow.model_validate({"id": "X", "total_value": 10})])

    assert {item.external_ingestion_id: item.value for item in items} == {
        "X": 10.0,
        "Y": 0.0,
    }


def test_merge_keeps_local_telemetry_values() -> None:
    tank = CanonicalItem("t1", "T1", None, "Tank", "TANK", None, value=72.5)
    unnamed_tank = CanonicalItem("t2", None, None, "Reservatorio B", None, None, value=40)
    meter = CanonicalItem("m1", None, None, "Meter", "3F_MEDIDOR", None, value=9.0)

    merge_totals(
        [tank, unnamed_tank, meter],
        [TotalsRow.model_validate({"id": "T1", "total_value": 1})],
    )

    assert tank.value == 72.5
    assert unnamed_tank.value == 40
    assert meter.value == 0.0


def test_zero_group_total_gives_zero_percentage() -> None:
    items = [CanonicalItem("a", "A", None, "a", None, None, value=0.0, category="A")]

    group_totals, _ = aggregate(items)

    assert group_totals == {"A": 0.0}
    assert items[0].percentage == 0.0


def test_sort_is_by_value_then_label() -> None:
    items = [
        CanonicalItem("3", None, None, "beta", None, None, value=5.0),
        CanonicalItem("1", None, None, "Alpha", None, None, value=5.0),
        CanonicalItem("2", None, None, "gamma", None, None, value=9.0),
    ]

    aggregate(items)

    assert [item.label for item in items] == ["gamma", "Alpha", "beta"]


def test_concurrent_calls_share_one_totals_request(make_period, scope) -> None:
    async def _run() -> None:
        gate = asyncio.Event()
        totals = StubTotals(SCENARIO_TOTALS, gate=gate)
        engine = ReconciliationEngine(StubTokens(), totals)  # type: ignore[arg-type]
        period = make_period()
        snapshot = scenario_snapshot()

        first = asyncio.ensure_future(engine.reconcile(period, scope, snapshot))
        second = asyncio.ensure_future(engine.reconcile(period, scope, snapshot))
        await asyncio.sleep(0)
        gate.set()
        results = await asyncio.gather(first, second)

        assert len(totals.calls) == 1
        assert results[0] is results[1]

    asyncio.run(_run())


def test_completed_pass_is_reused_unless_forced(make_period, scope) -> None:
    async def _run() -> None:
        totals = StubTotals(SCENARIO_TOTALS)
        engine = ReconciliationEngine(StubTokens(), totals)  # type: ignore[arg-type]
        period = make_period()

        first = await engine.reconcile(period, scope, scenario_snapshot())
        second = await engine.reconcile(period, scope, scenario_snapshot())
        assert second is first
        assert len(totals.calls) == 1

        forced = await engine.reconcile(
            period, scope, scenario_snapshot(), force=True
        )
        assert forced is not first
        assert len(totals.calls) == 2

    asyncio.run(_run())


def test_scopes_are_deduplicated_independently(make_period, scope) -> None:
    async def _run() -> None:
        totals = StubTotals(SCENARIO_TOTALS)
        engine = ReconciliationEngine(StubTokens(), totals)  # type: ignore[arg-type]
        period = make_period()
        water = ReconcileScope(customer_id=scope.customer_id, domain="water")

        await engine.reconcile(period, scope, scenario_snapshot())
        await engine.reconcile(period, water, scenario_snapshot())

        assert totals.calls == [
            (scope.key, period.key),
            (water.key, period.key),
        ]

    asyncio.run(_run())


def test_new_period_supersedes_previous_result(make_period, scope) -> None:
    async def _run() -> None:
        totals = StubTotals(SCENARIO_TOTALS)
        engine = ReconciliationEngine(StubTokens(), totals)  # type: ignore[arg-type]
        events: list[tuple[str, Any]] = []
        engine.add_listener(lambda event, payload: events.append((event, payload)))

        old = await engine.reconcile(make_period(1), scope, scenario_snapshot())
        assert engine.is_current(old)
        new = await engine.reconcile(make_period(2), scope, scenario_snapshot())

        assert not engine.is_current(old)
        assert engine.is_current(new)
        assert engine.last_result(scope) is new
        assert [event for event, _ in events] == [
            EVENT_PERIOD_CHANGED,
            EVENT_DATA_READY,
            EVENT_PERIOD_CHANGED,
            EVENT_DATA_READY,
        ]
        assert events[0][1] == make_period(1).key
        assert events[3][1] is new

    asyncio.run(_run())


def test_auth_failure_is_fatal_and_keeps_last_result(make_period, scope) -> None:
    async def _run() -> None:
        tokens = StubTokens()
        totals = StubTotals(SCENARIO_TOTALS)
        engine = ReconciliationEngine(tokens, totals)  # type: ignore[arg-type]
        good = await engine.reconcile(make_period(1), scope, scenario_snapshot())

        tokens.error = IngestionAuthError("credential endpoint down")
        with pytest.raises(AuthUnavailableError) as err:
            await engine.reconcile(make_period(2), scope, scenario_snapshot())

        assert isinstance(err.value.__cause__, IngestionAuthError)
        assert len(totals.calls) == 1
        assert engine.last_result(scope) is good

        tokens.error = None
        retry = await engine.reconcile(make_period(2), scope, scenario_snapshot())
        assert retry.period_key == make_period(2).key

    asyncio.run(_run())


@pytest.mark.parametrize(
    "error",
    [
        IngestionRequestError("HTTP 503", status=503),
        IngestionAuthError("renewal after 401 failed"),
    ],
)
def test_totals_failure_zero_fills(make_period, scope, error, caplog) -> None:
    async def _run():
        totals = StubTotals(error=error)
        engine = ReconciliationEngine(StubTokens(), totals)  # type: ignore[arg-type]
        return await engine.reconcile(make_period(), scope, scenario_snapshot())

    with caplog.at_level(logging.WARNING, logger="telemetry_recon.engine"):
        result = asyncio.run(_run())

    assert len(result.items) == 3
    assert all(item.value == 0.0 for item in result.items)
    assert result.group_totals == {"climatizacao": 0.0, "other": 0.0}
    assert [failure.stage for failure in result.diagnostics.fetch_failures] == [
        "totals"
    ]
    assert "zero-filling" in caplog.text


def test_listener_errors_do_not_break_pass(make_period, scope, caplog) -> None:
    async def _run():
        engine = ReconciliationEngine(  # type: ignore[arg-type]
            StubTokens(), StubTotals(SCENARIO_TOTALS)
        )
        received: list[str] = []

        def _broken(event: str, payload: Any) -> None:
            raise RuntimeError("listener bug")

        engine.add_listener(_broken)
        remove = engine.add_listener(lambda event, payload: received.append(event))
        first = await engine.reconcile(make_period(1), scope, scenario_snapshot())
        remove()
        await engine.reconcile(make_period(2), scope, scenario_snapshot())
        return first, received

    with caplog.at_level(logging.ERROR, logger="telemetry_recon.engine"):
        first, received = asyncio.run(_run())

    assert first.items
    assert received == [EVENT_PERIOD_CHANGED, EVENT_DATA_READY]
    assert "Listener raised" in caplog.text


def test_hierarchy_enrichment(make_period, scope) -> None:
    async def _run() -> None:
        inventory = sample_inventory()
        engine = ReconciliationEngine(  # type: ignore[arg-type]
            StubTokens(),
            StubTotals(SCENARIO_TOTALS),
            hierarchy=HierarchyResolver(inventory, inventory),
        )

        result = await engine.reconcile(make_period(), scope, scenario_snapshot())

        by_id = {item.native_id: item for item in result.items}
        assert by_id["D1"].hierarchy.parent.display_name == "Floor 1"
        assert by_id["D1"].hierarchy.grandparent.display_name == "Main building"
        assert by_id["D3"].hierarchy.parent.id == "ROOM-9"

    asyncio.run(_run())


def test_snapshot_loaded_from_inventory_when_missing(make_period, scope) -> None:
    async def _run() -> None:
        source = StubSnapshotSource(scenario_snapshot())
        engine = ReconciliationEngine(  # type: ignore[arg-type]
            StubTokens(), StubTotals(SCENARIO_TOTALS), inventory=source
        )

        result = await engine.reconcile(make_period(), scope)

        assert source.calls == [scope.customer_id]
        assert len(result.items) == 3

    asyncio.run(_run())


def test_inventory_failure_degrades_to_empty_pass(make_period, scope) -> None:
    async def _run() -> None:
        source = StubSnapshotSource(error=InventoryRequestError("HTTP 502", status=502))
        engine = ReconciliationEngine(  # type: ignore[arg-type]
            StubTokens(), StubTotals(SCENARIO_TOTALS), inventory=source
        )

        result = await engine.reconcile(make_period(), scope)

        assert result.items == []
        assert result.group_totals == {}
        assert [failure.stage for failure in result.diagnostics.fetch_failures] == [
            "inventory"
        ]

    asyncio.run(_run())


@pytest.mark.asyncio
async def test_missing_snapshot_without_inventory_is_an_error(make_period, scope) -> None:
    engine = ReconciliationEngine(StubTokens(), StubTotals())  # type: ignore[arg-type]
    with pytest.raises(ValueError):
        await engine.reconcile(make_period(), scope)


def test_ambiguities_surface_in_diagnostics(make_period, scope) -> None:
    async def _run() -> None:
        snapshot = InventorySnapshot(
            base_items=(BaseItem(id="ING-A", identifier="CAG-9"),),
            attribute_rows=(
                AttributeRow("DA", "ingestionId", "ING-A"),
                AttributeRow("DA", "deviceType", "ELEVADOR"),
                AttributeRow("DB", "identifier", "CAG-9"),
            ),
        )
        engine = ReconciliationEngine(  # type: ignore[arg-type]
            StubTokens(), StubTotals([{"id": "ING-A", "total_value": 4}])
        )

        result = await engine.reconcile(make_period(), scope, snapshot)

        assert result.items[0].native_id == "DA"
        assert result.items[0].value == 4.0
        assert result.items[0].category == "elevadores"
        assert len(result.diagnostics.ambiguities) == 1

    asyncio.run(_run())


class GatedTotals(StubTotals):
    """Totals source that holds each period until it is released."""

    def __init__(self, rows: list[dict[str, Any]]) -> None:
        super().__init__(rows)
        self.gates: dict[str, asyncio.Event] = {}

    def release(self, period_key: str) -> None:
        self.gates.setdefault(period_key, asyncio.Event()).set()

    async def fetch_totals(self, scope, period) -> list[TotalsRow]:
        self.calls.append((scope.key, period.key))
        await self.gates.setdefault(period.key, asyncio.Event()).wait()
        return [TotalsRow.model_validate(row) for row in self.rows]


def test_late_pass_for_older_period_is_not_published(make_period, scope) -> None:
    async def _run() -> None:
        totals = GatedTotals(SCENARIO_TOTALS)
        engine = ReconciliationEngine(StubTokens(), totals)  # type: ignore[arg-type]
        published: list[Any] = []

        def _on_event(event: str, payload: Any) -> None:
            if event == EVENT_DATA_READY:
                published.append(payload)

        engine.add_listener(_on_event)
        older, newer = make_period(1), make_period(2)

        slow = asyncio.ensure_future(
            engine.reconcile(older, scope, scenario_snapshot())
        )
        while not totals.calls:
            await asyncio.sleep(0)
        totals.release(newer.key)
        latest = await engine.reconcile(newer, scope, scenario_snapshot())
        totals.release(older.key)
        stale = await slow

        assert stale.period_key == older.key
        assert not engine.is_current(stale)
        assert engine.last_result(scope) is latest
        assert published == [latest]

        again = await engine.reconcile(newer, scope, scenario_snapshot())
        assert again is latest
        assert len(totals.calls) == 2

    asyncio.run(_run())


def test_completed_pass_expires_after_ttl(make_period, scope, fake_clock) -> None:
    async def _run() -> None:
        totals = StubTotals(SCENARIO_TOTALS)
        engine = ReconciliationEngine(  # type: ignore[arg-type]
            StubTokens(), totals, result_ttl=300, clock=fake_clock
        )
        period = make_period(realtime=True)

        first = await engine.reconcile(period, scope, scenario_snapshot())
        assert first.completed_at.timestamp() == fake_clock.now

        fake_clock.advance(299)
        assert await engine.reconcile(period, scope, scenario_snapshot()) is first
        assert len(totals.calls) == 1

        fake_clock.advance(2)
        refreshed = await engine.reconcile(period, scope, scenario_snapshot())
        assert refreshed is not first
        assert len(totals.calls) == 2
        assert engine.last_result(scope) is refreshed

    asyncio.run(_run())


def test_device_profile_drives_classification(make_period, scope) -> None:
    async def _run() -> None:
        attrs = {
            "M1": {"deviceType": "3F_MEDIDOR", "deviceProfile": "CHILLER"},
            "M2": {"deviceType": "3F_MEDIDOR", "deviceProfile": "3F_MEDIDOR"},
            "M3": {"deviceType": "3F_MEDIDOR"},
        }
        snapshot = InventorySnapshot(
            base_items=tuple(BaseItem(id=device) for device in attrs),
            attribute_rows=tuple(
                AttributeRow(device, key, value)
                for device, values in attrs.items()
                for key, value in values.items()
            ),
        )
        engine = ReconciliationEngine(  # type: ignore[arg-type]
            StubTokens(),
            StubTotals(
                [
                    {"id": "M1", "total_value": 10},
                    {"id": "M2", "total_value": 20},
                    {"id": "M3", "total_value": 5},
                ]
            ),
        )

        result = await engine.reconcile(make_period(), scope, snapshot)

        by_id = {item.native_id: item for item in result.items}
        assert (by_id["M1"].category, by_id["M1"].subcategory) == (
            "climatizacao",
            "Chillers",
        )
        assert (by_id["M2"].category, by_id["M2"].subcategory) == ("lojas", None)
        assert (by_id["M3"].category, by_id["M3"].subcategory) == ("other", "Geral")
        assert result.group_totals == {
            "climatizacao": 10.0,
            "lojas": 20.0,
            "other": 5.0,
        }

    asyncio.run(_run())


class BrokenHierarchy:
    async def resolve_bulk(self, device_ids, diagnostics=None):
        raise RuntimeError("hierarchy bug")


def test_hierarchy_error_degrades_after_totals_settle(
    make_period, scope, caplog
) -> None:
    async def _run():
        engine = ReconciliationEngine(  # type: ignore[arg-type]
            StubTokens(),
            StubTotals(SCENARIO_TOTALS),
            hierarchy=BrokenHierarchy(),
        )
        return await engine.reconcile(make_period(), scope, scenario_snapshot())

    with caplog.at_level(logging.WARNING, logger="telemetry_recon.engine"):
        result = asyncio.run(_run())

    by_id = {item.native_id: item for item in result.items}
    assert by_id["D1"].value == 100.0
    assert all(item.hierarchy is None for item in result.items)
    assert [failure.stage for failure in result.diagnostics.fetch_failures] == [
        "hierarchy"
    ]
    assert "Hierarchy for" in caplog.text
