"""Async client for the inventory (entity/relation graph) service."""
from __future__ import annotations

import asyncio
from collections.abc import Iterable, Sequence
import logging
from typing import Any

import aiohttp
from pydantic import ValidationError

from telemetry_recon.const import (
    ASSETS_PATH,
    CUSTOMER_DEVICES_PATH_FMT,
    DEFAULT_INVENTORY_PAGE_SIZE,
    DEFAULT_REQUEST_TIMEOUT,
    DEVICE_ATTRIBUTES_PATH_FMT,
    DEVICE_ENTITY_TYPE,
    IDENTIFIER_KEY,
    RELATIONS_PATH,
)
from telemetry_recon.domain.records import AttributeRow, BaseItem, InventorySnapshot
from telemetry_recon.models import (
    AssetRecord,
    AttributeEntry,
    DevicePage,
    DeviceRecord,
    RelationRecord,
)
from telemetry_recon.sanitize import mask_identifier, redact_text

_LOGGER = logging.getLogger(__name__)


class InventoryRequestError(Exception):
    """A call to the inventory service failed."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        """Store the HTTP status alongside the message."""

        super().__init__(message)
        self.status = status


def _validate_each(model: type[Any], items: Any, *, context: str) -> list[Any]:
    """Validate ``items`` one by one, skipping entries that do not fit."""

    if not isinstance(items, list):
        _LOGGER.debug(
            "Unexpected %s payload (%s); returning empty list",
            context,
            type(items).__name__,
        )
        return []
    parsed: list[Any] = []
    for item in items:
        try:
            parsed.append(model.model_validate(item))
        except ValidationError as err:
            _LOGGER.debug(
                "Skipping malformed %s entry: %s", context, err.error_count()
            )
    return parsed


class InventoryClient:
    """Thin async client for relations, assets, devices and attributes."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        base_url: str,
        jwt_token: str,
        *,
        page_size: int = DEFAULT_INVENTORY_PAGE_SIZE,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
    ) -> None:
        """Initialise the client with the host-issued JWT."""

        self._session = session
        self._base_url = base_url.rstrip("/")
        self._jwt_token = jwt_token
        self._page_size = max(int(page_size), 1)
        self._timeout = aiohttp.ClientTimeout(total=request_timeout)

    async def _request(
        self,
        method: str,
        path: str,
        *,
        ignore_statuses: Iterable[int] = (),
        **kwargs: Any,
    ) -> Any | None:
        """Perform an HTTP request and return the decoded JSON body.

        HTTP statuses listed in ``ignore_statuses`` are logged and yield
        ``None`` instead of raising.
        """

        ignore = set(ignore_statuses)
        url = f"{self._base_url}{path}"
        headers = {
            "X-Authorization": f"Bearer {self._jwt_token}",
            "Accept": "application/json",
        }
        _LOGGER.debug("HTTP %s %s", method, url)
        try:
            async with self._session.request(
                method, url, headers=headers, timeout=self._timeout, **kwargs
            ) as resp:
                if resp.status in ignore:
                    _LOGGER.debug("HTTP %s -> %s (ignored)", url, resp.status)
                    return None
                if resp.status >= 400:
                    try:
                        body_text = await resp.text()
                    except Exception:  # noqa: BLE001 - body is informational only
                        body_text = "<no body>"
                    _LOGGER.error(
                        "HTTP error %s %s -> %s; body=%s",
                        method,
                        url,
                        resp.status,
                        redact_text(body_text),
                    )
                    raise InventoryRequestError(
                        f"HTTP {resp.status} for {method} {path}",
                        status=resp.status,
                    )
                _LOGGER.debug("HTTP %s -> %s", url, resp.status)
                return await resp.json(content_type=None)
        except (InventoryRequestError, asyncio.CancelledError):
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as err:
            _LOGGER.error(
                "Request %s %s failed (sanitized): %s",
                method,
                url,
                redact_text(str(err)),
            )
            raise InventoryRequestError(
                f"{method} {path} failed: {type(err).__name__}"
            ) from err

    async def query_relations(
        self, entity_id: str, entity_type: str
    ) -> list[RelationRecord]:
        """Return the common-group relations that point at ``entity_id``."""

        params = {
            "toId": entity_id,
            "toType": entity_type,
            "relationTypeGroup": "COMMON",
        }
        data = await self._request(
            "GET", RELATIONS_PATH, params=params, ignore_statuses=(404,)
        )
        if data is None:
            return []
        return _validate_each(RelationRecord, data, context="relations")

    async def fetch_asset_details(self, ids: Sequence[str]) -> list[AssetRecord]:
        """Return asset records for ``ids`` using one batch request."""

        if not ids:
            return []
        params = {"assetIds": ",".join(ids)}
        data = await self._request("GET", ASSETS_PATH, params=params)
        return _validate_each(AssetRecord, data, context="assets")

    async def list_devices(self, customer_id: str) -> list[DeviceRecord]:
        """Return every device owned by ``customer_id``, following pages."""

        path = CUSTOMER_DEVICES_PATH_FMT.format(customer_id=customer_id)
        devices: list[DeviceRecord] = []
        page = 0
        while True:
            params = {"pageSize": self._page_size, "page": page}
            data = await self._request("GET", path, params=params)
            try:
                parsed = DevicePage.model_validate(data or {})
            except ValidationError as err:
                raise InventoryRequestError(
                    f"Malformed device page {page}: {err.error_count()} errors"
                ) from err
            devices.extend(parsed.data)
            if not parsed.has_next:
                break
            page += 1
        _LOGGER.debug(
            "Customer %s lists %d devices",
            mask_identifier(customer_id),
            len(devices),
        )
        return devices

    async def fetch_attribute_rows(self, device_id: str) -> list[AttributeRow]:
        """Return the server-scope attributes of ``device_id`` as flat rows."""

        path = DEVICE_ATTRIBUTES_PATH_FMT.format(device_id=device_id)
        data = await self._request("GET", path, ignore_statuses=(404,))
        if data is None:
            return []
        entries = _validate_each(AttributeEntry, data, context="attributes")
        return [AttributeRow(device_id, entry.key, entry.value) for entry in entries]

    async def load_snapshot(self, customer_id: str) -> InventorySnapshot:
        """Return the device listing and attribute feed for a customer.

        Attribute lookups run concurrently; a device whose lookup fails is
        kept in the listing without attributes.
        """

        devices = await self.list_devices(customer_id)
        results = await asyncio.gather(
            *(self.fetch_attribute_rows(device.id) for device in devices),
            return_exceptions=True,
        )
        base_items: list[BaseItem] = []
        rows: list[AttributeRow] = []
        for device, result in zip(devices, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            device_rows: list[AttributeRow] = []
            if isinstance(result, Exception):
                _LOGGER.warning(
                    "Attributes for %s %s unavailable: %s",
                    DEVICE_ENTITY_TYPE.lower(),
                    mask_identifier(device.id),
                    result,
                )
            else:
                device_rows = result
            identifier = next(
                (
                    row.value
                    for row in device_rows
                    if row.key.lower() == IDENTIFIER_KEY and row.value is not None
                ),
                None,
            )
            base_items.append(
                BaseItem(
                    id=device.id,
                    label=device.label or device.name,
                    name=device.name,
                    identifier=str(identifier) if identifier is not None else None,
                )
            )
            rows.extend(device_rows)
        return InventorySnapshot(base_items=tuple(base_items), attribute_rows=tuple(rows))


__all__ = ["InventoryClient", "InventoryRequestError"]
