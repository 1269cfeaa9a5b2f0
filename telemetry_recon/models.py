"""Pydantic models for analytics and inventory service payloads."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def _flatten_entity_id(value: Any) -> Any:
    """Return the bare id from ``{"entityType": ..., "id": ...}`` wrappers."""

    if isinstance(value, dict):
        return value.get("id")
    return value


class TokenResponse(BaseModel):
    """Bearer token payload returned by the analytics auth endpoint."""

    model_config = ConfigDict(extra="ignore")

    access_token: str = Field(min_length=1)
    expires_in: float = Field(gt=0)
    token_type: str | None = None


class TotalsRow(BaseModel):
    """Consumption total for one device, keyed by external ingestion id."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    external_id: str = Field(alias="id")
    total_value: float = 0.0

    @model_validator(mode="before")
    @classmethod
    def _pick_total(cls, data: Any) -> Any:
        """Use volume or pulse totals when ``total_value`` is absent."""

        if not isinstance(data, dict):
            return data
        payload = dict(data)
        if "id" not in payload and "externalId" in payload:
            payload["id"] = payload["externalId"]
        if payload.get("total_value") is None:
            for key in ("totalValue", "total_volume", "total_pulses"):
                if payload.get(key) is not None:
                    payload["total_value"] = payload[key]
                    break
        if payload.get("total_value") is None:
            payload["total_value"] = 0.0
        return payload

    @field_validator("external_id", mode="before")
    @classmethod
    def _stringify_id(cls, value: Any) -> Any:
        """Accept numeric ids."""

        if isinstance(value, int):
            return str(value)
        return value


class Pagination(BaseModel):
    """Pagination metadata returned alongside paged listings."""

    model_config = ConfigDict(extra="ignore")

    page: int = 1
    limit: int | None = None
    total: int | None = None
    pages: int = 1


class TotalsPage(BaseModel):
    """One page of the totals endpoint."""

    model_config = ConfigDict(extra="ignore")

    data: list[TotalsRow] = Field(default_factory=list)
    pagination: Pagination | None = None

    @model_validator(mode="before")
    @classmethod
    def _accept_bare_list(cls, data: Any) -> Any:
        """Wrap bare row lists returned by older deployments."""

        if isinstance(data, list):
            return {"data": data}
        return data

    @property
    def pages(self) -> int:
        """Return the total number of pages (at least one)."""

        if self.pagination is None:
            return 1
        return max(self.pagination.pages, 1)


class EntityRef(BaseModel):
    """Typed reference to an inventory entity."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str
    entity_type: str = Field(alias="entityType")


class RelationRecord(BaseModel):
    """A directed relation between two inventory entities."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    from_: EntityRef = Field(alias="from")
    to: EntityRef
    type: str
    type_group: str | None = Field(default=None, alias="typeGroup")


class AssetRecord(BaseModel):
    """Asset details returned by the batch lookup endpoint."""

    model_config = ConfigDict(extra="ignore")

    id: str
    name: str | None = None
    label: str | None = None

    @field_validator("id", mode="before")
    @classmethod
    def _flatten_id(cls, value: Any) -> Any:
        """Unwrap typed entity ids."""

        return _flatten_entity_id(value)


class DeviceRecord(BaseModel):
    """Device listing entry from the inventory service."""

    model_config = ConfigDict(extra="ignore")

    id: str
    name: str | None = None
    label: str | None = None
    type: str | None = None

    @field_validator("id", mode="before")
    @classmethod
    def _flatten_id(cls, value: Any) -> Any:
        """Unwrap typed entity ids."""

        return _flatten_entity_id(value)


class DevicePage(BaseModel):
    """Paged device listing."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    data: list[DeviceRecord] = Field(default_factory=list)
    has_next: bool = Field(default=False, alias="hasNext")


class AttributeEntry(BaseModel):
    """Server-scope attribute value as returned by the inventory service."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    key: str
    value: Any = None
    last_update_ts: int | None = Field(default=None, alias="lastUpdateTs")


class LimitValues(BaseModel):
    """Lower and upper bound of a power range."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    base_value: float = Field(default=0.0, alias="baseValue")
    top_value: float = Field(default=99999.0, alias="topValue")


class DeviceStatusLimits(BaseModel):
    """Range configured for one operational status."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    device_status_name: str = Field(alias="deviceStatusName")
    limits_values: LimitValues = Field(
        default_factory=LimitValues, alias="limitsValues"
    )

    @model_validator(mode="before")
    @classmethod
    def _accept_legacy_spelling(cls, data: Any) -> Any:
        """Older documents spell the values block ``limitsVales``."""

        if isinstance(data, dict) and "limitsValues" not in data:
            legacy = data.get("limitsVales")
            if legacy is not None:
                return {**data, "limitsValues": legacy}
        return data


class DeviceTypeLimits(BaseModel):
    """Power ranges configured for a device type."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    device_type: str = Field(alias="deviceType")
    name: str | None = None
    description: str | None = None
    limits_by_device_status: list[DeviceStatusLimits] = Field(
        default_factory=list, alias="limitsByDeviceStatus"
    )


class TelemetryTypeLimits(BaseModel):
    """Device type ranges grouped by telemetry type."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    telemetry_type: str = Field(alias="telemetryType")
    items_by_device_type: list[DeviceTypeLimits] = Field(
        default_factory=list, alias="itemsByDeviceType"
    )


class PowerLimitsDocument(BaseModel):
    """Instantaneous power limits attribute document."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    version: str | None = None
    limits_by_type: list[TelemetryTypeLimits] = Field(
        default_factory=list, alias="limitsByInstantaneoustPowerType"
    )

    @field_validator("version", mode="before")
    @classmethod
    def _stringify_version(cls, value: Any) -> Any:
        """Accept numeric versions."""

        if isinstance(value, (int, float)):
            return str(value)
        return value


class AnnotationPayload(BaseModel):
    """Operator note stored in the ``log_annotations`` attribute."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str
    type: Literal["observation", "pending", "maintenance", "activity"]
    text: str = Field(default="", max_length=255)
    importance: int = Field(default=3, ge=1, le=5)
    status: Literal["created", "modified", "archived"] = "created"
    created_at: str | None = Field(default=None, alias="createdAt")


__all__ = [
    "AnnotationPayload",
    "AssetRecord",
    "AttributeEntry",
    "DevicePage",
    "DeviceRecord",
    "DeviceStatusLimits",
    "DeviceTypeLimits",
    "EntityRef",
    "LimitValues",
    "Pagination",
    "PowerLimitsDocument",
    "RelationRecord",
    "TelemetryTypeLimits",
    "TokenResponse",
    "TotalsPage",
    "TotalsRow",
]
