"""Identifiers and keys for reconciled devices and passes."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from ..const import (
    CONNECTION_OFFLINE_VALUES,
    CONNECTION_ONLINE_VALUES,
    DOMAIN_ENERGY,
    REALTIME_PERIOD_KEY,
    SUPPORTED_DOMAINS,
)

PeriodKey = str


class ConnectionStatus(str, Enum):
    """Connection state reported by the inventory service."""

    ONLINE = "online"
    OFFLINE = "offline"
    UNKNOWN = "unknown"


def normalize_connection_status(value: Any) -> ConnectionStatus:
    """Map assorted raw connection states onto ``ConnectionStatus``."""

    if isinstance(value, ConnectionStatus):
        return value
    if value is None:
        return ConnectionStatus.UNKNOWN
    lowered = str(value).strip().lower()
    if lowered in CONNECTION_ONLINE_VALUES:
        return ConnectionStatus.ONLINE
    if lowered in CONNECTION_OFFLINE_VALUES:
        return ConnectionStatus.OFFLINE
    return ConnectionStatus.UNKNOWN


def normalize_key(value: Any) -> str | None:
    """Return ``value`` as a trimmed string, or ``None`` when blank."""

    if value is None:
        return None
    text = str(value).strip()
    return text or None


@dataclass(frozen=True, slots=True)
class IdentityKeySet:
    """Known keys for one logical device across both services."""

    native_id: str
    external_ingestion_id: str | None = None
    human_identifier: str | None = None

    def __post_init__(self) -> None:
        """Ensure the native id is a non-empty string."""

        native = normalize_key(self.native_id)
        if native is None:
            msg = "native_id must not be empty"
            raise ValueError(msg)
        object.__setattr__(self, "native_id", native)
        object.__setattr__(
            self, "external_ingestion_id", normalize_key(self.external_ingestion_id)
        )
        object.__setattr__(
            self, "human_identifier", normalize_key(self.human_identifier)
        )


@dataclass(frozen=True, slots=True)
class ReconcilePeriod:
    """Time window of a reconciliation pass."""

    start: datetime
    end: datetime
    realtime: bool = False

    def __post_init__(self) -> None:
        """Require timezone-qualified bounds in chronological order."""

        if self.start.tzinfo is None or self.end.tzinfo is None:
            msg = "period bounds must be timezone-aware"
            raise ValueError(msg)
        if self.end < self.start:
            msg = "period end must not precede its start"
            raise ValueError(msg)

    @property
    def start_iso(self) -> str:
        """Return the start bound as an ISO 8601 timestamp."""

        return self.start.isoformat(timespec="milliseconds")

    @property
    def end_iso(self) -> str:
        """Return the end bound as an ISO 8601 timestamp."""

        return self.end.isoformat(timespec="milliseconds")

    @property
    def key(self) -> PeriodKey:
        """Return the opaque key used to deduplicate passes."""

        if self.realtime:
            return REALTIME_PERIOD_KEY
        return f"{self.start_iso}_{self.end_iso}"


@dataclass(frozen=True, slots=True)
class ReconcileScope:
    """Customer and telemetry domain targeted by a pass."""

    customer_id: str
    domain: str = DOMAIN_ENERGY

    def __post_init__(self) -> None:
        """Validate the customer id and the domain."""

        customer = normalize_key(self.customer_id)
        if customer is None:
            msg = "customer_id must not be empty"
            raise ValueError(msg)
        domain = str(self.domain).strip().lower()
        if domain not in SUPPORTED_DOMAINS:
            msg = f"Unsupported domain: {self.domain!r}"
            raise ValueError(msg)
        object.__setattr__(self, "customer_id", customer)
        object.__setattr__(self, "domain", domain)

    @property
    def key(self) -> str:
        """Return the key identifying this scope."""

        return f"{self.customer_id}:{self.domain}"
