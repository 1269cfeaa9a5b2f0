"""Configuration schema for the reconciliation layer."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import voluptuous as vol

from .const import (
    DEFAULT_DETAIL_CHUNK_SIZE,
    DEFAULT_RENEW_SKEW_SECONDS,
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_RESULT_TTL_SECONDS,
    DEFAULT_RETRY_BASE_MS,
    DEFAULT_RETRY_MAX_ATTEMPTS,
    DEFAULT_TOTALS_PAGE_SIZE,
)

CONF_DATA_API_HOST = "data_api_host"
CONF_CLIENT_ID = "client_id"
CONF_CLIENT_SECRET = "client_secret"
CONF_RENEW_SKEW_SECONDS = "renew_skew_seconds"
CONF_RETRY_BASE_MS = "retry_base_ms"
CONF_RETRY_MAX_ATTEMPTS = "retry_max_attempts"
CONF_DETAIL_CHUNK_SIZE = "detail_chunk_size"
CONF_TOTALS_PAGE_SIZE = "totals_page_size"
CONF_REQUEST_TIMEOUT = "request_timeout"
CONF_INVENTORY_BASE_URL = "inventory_base_url"
CONF_RESULT_TTL = "result_ttl"

_NON_EMPTY_STR = vol.All(str, vol.Strip, vol.Length(min=1))

CONFIG_SCHEMA = vol.Schema(
    {
        vol.Required(CONF_DATA_API_HOST): vol.All(_NON_EMPTY_STR, vol.Url()),
        vol.Required(CONF_CLIENT_ID): _NON_EMPTY_STR,
        vol.Required(CONF_CLIENT_SECRET): _NON_EMPTY_STR,
        vol.Optional(
            CONF_RENEW_SKEW_SECONDS, default=DEFAULT_RENEW_SKEW_SECONDS
        ): vol.All(vol.Coerce(float), vol.Range(min=0)),
        vol.Optional(CONF_RETRY_BASE_MS, default=DEFAULT_RETRY_BASE_MS): vol.All(
            vol.Coerce(float), vol.Range(min=0)
        ),
        vol.Optional(
            CONF_RETRY_MAX_ATTEMPTS, default=DEFAULT_RETRY_MAX_ATTEMPTS
        ): vol.All(vol.Coerce(int), vol.Range(min=1)),
        vol.Optional(
            CONF_DETAIL_CHUNK_SIZE, default=DEFAULT_DETAIL_CHUNK_SIZE
        ): vol.All(vol.Coerce(int), vol.Range(min=1)),
        vol.Optional(
            CONF_TOTALS_PAGE_SIZE, default=DEFAULT_TOTALS_PAGE_SIZE
        ): vol.All(vol.Coerce(int), vol.Range(min=1)),
        vol.Optional(
            CONF_REQUEST_TIMEOUT, default=DEFAULT_REQUEST_TIMEOUT
        ): vol.All(vol.Coerce(float), vol.Range(min=0, min_included=False)),
        vol.Optional(CONF_INVENTORY_BASE_URL): vol.Any(
            None, vol.All(_NON_EMPTY_STR, vol.Url())
        ),
        vol.Optional(CONF_RESULT_TTL, default=DEFAULT_RESULT_TTL_SECONDS): vol.All(
            vol.Coerce(float), vol.Range(min=0)
        ),
    },
    extra=vol.REMOVE_EXTRA,
)


@dataclass(frozen=True, slots=True)
class ReconcileConfig:
    """Validated settings for one reconciliation deployment."""

    data_api_host: str
    client_id: str
    client_secret: str
    renew_skew_seconds: float = float(DEFAULT_RENEW_SKEW_SECONDS)
    retry_base_ms: float = float(DEFAULT_RETRY_BASE_MS)
    retry_max_attempts: int = DEFAULT_RETRY_MAX_ATTEMPTS
    detail_chunk_size: int = DEFAULT_DETAIL_CHUNK_SIZE
    totals_page_size: int = DEFAULT_TOTALS_PAGE_SIZE
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    inventory_base_url: str | None = None
    result_ttl: float = float(DEFAULT_RESULT_TTL_SECONDS)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> ReconcileConfig:
        """Validate ``data`` against ``CONFIG_SCHEMA`` and build the config.

        Raises ``voluptuous.MultipleInvalid`` when validation fails.
        """

        validated = CONFIG_SCHEMA(dict(data))
        return cls(
            data_api_host=validated[CONF_DATA_API_HOST].rstrip("/"),
            client_id=validated[CONF_CLIENT_ID],
            client_secret=validated[CONF_CLIENT_SECRET],
            renew_skew_seconds=validated[CONF_RENEW_SKEW_SECONDS],
            retry_base_ms=validated[CONF_RETRY_BASE_MS],
            retry_max_attempts=validated[CONF_RETRY_MAX_ATTEMPTS],
            detail_chunk_size=validated[CONF_DETAIL_CHUNK_SIZE],
            totals_page_size=validated[CONF_TOTALS_PAGE_SIZE],
            request_timeout=validated[CONF_REQUEST_TIMEOUT],
            inventory_base_url=validated.get(CONF_INVENTORY_BASE_URL),
            result_ttl=validated[CONF_RESULT_TTL],
        )

    def __repr__(self) -> str:
        return (
            f"ReconcileConfig(data_api_host={self.data_api_host!r}, "
            f"client_id={self.client_id!r}, client_secret='***')"
        )


__all__ = [
    "CONFIG_SCHEMA",
    "ReconcileConfig",
]
