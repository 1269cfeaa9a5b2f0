# ruff: noqa: D100,D101,D102,D103,D104,D105,D106,D107,INP001,E402
from __future__ import annotations

import asyncio
from datetime import datetime, timezone
import inspect
from pathlib import Path
import sys
from typing import Any, Callable

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from telemetry_recon.domain import ReconcilePeriod, ReconcileScope


def pytest_configure(config: pytest.Config) -> None:
    """Register custom pytest markers used across the suite."""

    if not config.pluginmanager.hasplugin("pytest_asyncio"):
        config.addinivalue_line(
            "markers", "asyncio: mark test as requiring asyncio event loop support."
        )


def pytest_pyfunc_call(pyfuncitem: pytest.Function) -> bool | None:
    """Execute async tests when pytest-asyncio is unavailable."""

    if pyfuncitem.config.pluginmanager.hasplugin("pytest_asyncio"):
        return None

    testfunction = pyfuncitem.obj
    if not inspect.iscoroutinefunction(testfunction):
        return None

    marker = pyfuncitem.get_closest_marker("asyncio")
    if marker is None:
        return None

    with asyncio.Runner(debug=False) as runner:
        runner.run(testfunction(**pyfuncitem.funcargs))
    return True


class SleepRecorder:
    """Awaitable stand-in for ``asyncio.sleep`` that records delays."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.calls.append(delay)


class FakeClock:
    """Manually advanced wall clock."""

    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def sleep_recorder() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_period() -> Callable[..., ReconcilePeriod]:
    def _factory(day: int = 1, *, realtime: bool = False) -> ReconcilePeriod:
        start = datetime(2025, 1, day, tzinfo=timezone.utc)
        end = datetime(2025, 1, day, 23, 59, 59, tzinfo=timezone.utc)
        return ReconcilePeriod(start=start, end=end, realtime=realtime)

    return _factory


@pytest.fixture
def scope() -> ReconcileScope:
    return ReconcileScope(customer_id="cust-1", domain="energy")


@pytest.fixture
def rows_from() -> Callable[[dict[str, dict[str, Any]]], list[tuple[str, str, Any]]]:
    """Flatten ``{device: {key: value}}`` into attribute rows."""

    def _flatten(mapping: dict[str, dict[str, Any]]) -> list[tuple[str, str, Any]]:
        return [
            (device, key, value)
            for device, attrs in mapping.items()
            for key, value in attrs.items()
        ]

    return _flatten
