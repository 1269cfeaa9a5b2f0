"""Instantaneous power ranges per device type."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
import logging
from types import MappingProxyType
from typing import Final, Literal

from .models import PowerLimitsDocument

_LOGGER = logging.getLogger(__name__)

PowerStatus = Literal["standby", "normal", "alert", "failure"]

DEFAULT_TELEMETRY_TYPE: Final = "consumption"
DEFAULT_LIMITS_KEY: Final = "DEFAULT"

_STATUSES: Final = ("standby", "normal", "alert", "failure")


@dataclass(frozen=True, slots=True)
class Range:
    """Closed interval of power readings."""

    down: float
    up: float

    def __contains__(self, value: object) -> bool:
        if not isinstance(value, (int, float)) or isinstance(value, bool):
            return False
        return self.down <= value <= self.up


@dataclass(frozen=True, slots=True)
class PowerLimitRanges:
    """Standby, normal, alert and failure ranges for one device type."""

    standby: Range
    normal: Range
    alert: Range
    failure: Range
    source: str = "default"
    name: str | None = None
    description: str | None = None
    version: str | None = None
    telemetry_type: str = DEFAULT_TELEMETRY_TYPE


def _ranges(
    standby: tuple[float, float],
    normal: tuple[float, float],
    alert: tuple[float, float],
    failure: tuple[float, float],
) -> PowerLimitRanges:
    return PowerLimitRanges(
        standby=Range(*standby),
        normal=Range(*normal),
        alert=Range(*alert),
        failure=Range(*failure),
    )


DEFAULT_CONSUMPTION_RANGES: Final[Mapping[str, PowerLimitRanges]] = MappingProxyType(
    {
        "ELEVADOR": _ranges((0, 150), (151, 800), (801, 1200), (1201, 99999)),
        "ESCADA_ROLANTE": _ranges((0, 200), (201, 1000), (1001, 1500), (1501, 99999)),
        "CHILLER": _ranges((0, 1000), (1001, 6000), (6001, 8000), (8001, 99999)),
        "AR_CONDICIONADO": _ranges((0, 500), (501, 3000), (3001, 5000), (5001, 99999)),
        "HVAC": _ranges((0, 500), (501, 3000), (3001, 5000), (5001, 99999)),
        "MOTOR": _ranges((0, 200), (201, 1000), (1001, 1500), (1501, 99999)),
        "BOMBA": _ranges((0, 200), (201, 1000), (1001, 1500), (1501, 99999)),
        DEFAULT_LIMITS_KEY: _ranges((0, 100), (101, 1000), (1001, 2000), (2001, 99999)),
    }
)


def extract_limits(
    doc: PowerLimitsDocument | None,
    device_type: str | None,
    telemetry_type: str = DEFAULT_TELEMETRY_TYPE,
) -> PowerLimitRanges | None:
    """Return the ranges configured for ``device_type`` in ``doc``.

    Returns ``None`` when the document has no entry for the telemetry type
    or the device type. Statuses missing from the entry collapse to an
    empty ``Range(0, 0)``.
    """

    if doc is None or not device_type:
        return None
    wanted = device_type.strip()
    telemetry = next(
        (
            item
            for item in doc.limits_by_type
            if item.telemetry_type == telemetry_type
        ),
        None,
    )
    if telemetry is None:
        _LOGGER.debug("Telemetry type %s not present in limits", telemetry_type)
        return None
    entry = next(
        (
            item
            for item in telemetry.items_by_device_type
            if item.device_type in (wanted, wanted.upper())
        ),
        None,
    )
    if entry is None:
        _LOGGER.debug(
            "Device type %s not present for telemetry %s", wanted, telemetry_type
        )
        return None

    found: dict[str, Range] = {}
    for status in entry.limits_by_device_status:
        name = status.device_status_name.lower()
        if name not in _STATUSES:
            continue
        values = status.limits_values
        found[name] = Range(values.base_value, values.top_value)

    empty = Range(0.0, 0.0)
    return PowerLimitRanges(
        standby=found.get("standby", empty),
        normal=found.get("normal", empty),
        alert=found.get("alert", empty),
        failure=found.get("failure", empty),
        source="json",
        name=entry.name,
        description=entry.description,
        version=doc.version,
        telemetry_type=telemetry_type,
    )


def default_limits(device_type: str | None) -> PowerLimitRanges:
    """Return the built-in ranges for ``device_type``."""

    key = (device_type or "").strip().upper()
    return DEFAULT_CONSUMPTION_RANGES.get(key) or DEFAULT_CONSUMPTION_RANGES[
        DEFAULT_LIMITS_KEY
    ]


def resolve_limits(
    device_doc: PowerLimitsDocument | None,
    customer_doc: PowerLimitsDocument | None,
    device_type: str | None,
    telemetry_type: str = DEFAULT_TELEMETRY_TYPE,
) -> PowerLimitRanges:
    """Return device-level, then customer-level, then built-in ranges."""

    for doc in (device_doc, customer_doc):
        ranges = extract_limits(doc, device_type, telemetry_type)
        if ranges is not None:
            return ranges
    return default_limits(device_type)


def classify_power(
    value: float | None, ranges: PowerLimitRanges
) -> PowerStatus | None:
    """Return the first status whose range contains ``value``.

    Returns ``None`` when there is no reading or it falls outside every
    configured range.
    """

    if value is None:
        return None
    for status in _STATUSES:
        if value in getattr(ranges, status):
            return status  # type: ignore[return-value]
    return None


__all__ = [
    "DEFAULT_CONSUMPTION_RANGES",
    "PowerLimitRanges",
    "PowerStatus",
    "Range",
    "classify_power",
    "default_limits",
    "extract_limits",
    "resolve_limits",
]
