"""Build typed per-device records from the flat attribute feed."""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
import json
import logging
from typing import Any

from pydantic import ValidationError

from .const import (
    ANNOTATIONS_KEY,
    ATTRIBUTE_FIELD_MAP,
    IDENTIFIER_KEY,
    INGESTION_ID_KEY,
    LABEL_KEY,
    POWER_LIMITS_KEYS,
)
from .domain.diagnostics import PassDiagnostics
from .domain.ids import normalize_connection_status, normalize_key
from .domain.records import Annotation, AttributeRow, DeviceAttributes
from .models import AnnotationPayload, PowerLimitsDocument
from .sanitize import mask_identifier

_LOGGER = logging.getLogger(__name__)

_TIMESTAMP_FIELDS = frozenset(
    {"last_connect_time", "last_disconnect_time", "last_activity_time"}
)


class AttributeParseError(ValueError):
    """A structured attribute value could not be decoded."""


@dataclass(slots=True)
class AttributeIndex(Mapping[str, DeviceAttributes]):
    """Per-device records keyed by native id plus secondary lookups."""

    records: dict[str, DeviceAttributes] = field(default_factory=dict)
    by_ingestion_id: dict[str, str] = field(default_factory=dict)
    by_identifier: dict[str, str] = field(default_factory=dict)

    def __getitem__(self, native_id: str) -> DeviceAttributes:
        return self.records[native_id]

    def __iter__(self) -> Iterator[str]:
        return iter(self.records)

    def __len__(self) -> int:
        return len(self.records)

    def native_for_ingestion_id(self, ingestion_id: str | None) -> str | None:
        """Return the native id registered for ``ingestion_id``."""

        key = normalize_key(ingestion_id)
        return self.by_ingestion_id.get(key) if key else None

    def native_for_identifier(self, identifier: str | None) -> str | None:
        """Return the native id registered for a human identifier."""

        key = normalize_key(identifier)
        return self.by_identifier.get(key.upper()) if key else None


def _decode_json(value: Any) -> Any:
    """Return ``value`` decoded when it is a JSON string."""

    if isinstance(value, (dict, list)):
        return value
    if isinstance(value, (bytes, bytearray)):
        value = value.decode("utf-8", errors="replace")
    if not isinstance(value, str):
        raise AttributeParseError(f"expected JSON text, got {type(value).__name__}")
    try:
        return json.loads(value)
    except json.JSONDecodeError as err:
        raise AttributeParseError(f"invalid JSON at position {err.pos}") from err


def parse_power_limits(value: Any) -> PowerLimitsDocument:
    """Decode a power limits attribute into its document model."""

    decoded = _decode_json(value)
    if not isinstance(decoded, dict):
        raise AttributeParseError("power limits must be a JSON object")
    try:
        return PowerLimitsDocument.model_validate(decoded)
    except ValidationError as err:
        raise AttributeParseError(
            f"power limits failed validation ({err.error_count()} errors)"
        ) from err


def parse_annotations(value: Any) -> tuple[Annotation, ...]:
    """Decode an annotations attribute, skipping individual invalid notes."""

    decoded = _decode_json(value)
    if isinstance(decoded, dict):
        decoded = decoded.get("annotations")
    if not isinstance(decoded, list):
        raise AttributeParseError("annotations must be a list")
    notes: list[Annotation] = []
    for raw in decoded:
        try:
            note = AnnotationPayload.model_validate(raw)
        except ValidationError as err:
            _LOGGER.debug("Skipping invalid annotation: %s", err.error_count())
            continue
        notes.append(
            Annotation(
                id=note.id,
                type=note.type,
                text=note.text,
                importance=note.importance,
                status=note.status,
                created_at=note.created_at,
            )
        )
    return tuple(notes)


def _coerce_timestamp(value: Any) -> int | None:
    """Return ``value`` as integer epoch milliseconds."""

    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise AttributeParseError("boolean is not a timestamp")
    try:
        return int(float(value))
    except (TypeError, ValueError) as err:
        raise AttributeParseError(f"invalid timestamp {value!r}") from err


class AttributeIndexBuilder:
    """Group attribute rows by device into ``DeviceAttributes`` records.

    Every call starts from an empty index, so fields never leak between
    passes. Keys are matched case-insensitively and unknown keys are
    ignored. Malformed structured values are logged, recorded in the
    pass diagnostics and left as ``None``.
    """

    def build(
        self,
        rows: Iterable[AttributeRow | tuple[str, str, Any]],
        diagnostics: PassDiagnostics | None = None,
    ) -> AttributeIndex:
        """Return a fresh index built from ``rows``."""

        index = AttributeIndex()
        for row in rows:
            try:
                device_id, key, value = row
            except (TypeError, ValueError):
                _LOGGER.debug("Ignoring malformed attribute row: %r", row)
                continue
            native_id = normalize_key(device_id)
            if native_id is None or not isinstance(key, str):
                continue
            record = index.records.get(native_id)
            if record is None:
                record = DeviceAttributes(native_id=native_id)
                index.records[native_id] = record
            self._assign(index, record, key.strip().lower(), value, diagnostics)

        _LOGGER.debug(
            "Attribute index: %d devices, %d ingestion ids, %d identifiers",
            len(index.records),
            len(index.by_ingestion_id),
            len(index.by_identifier),
        )
        return index

    def _assign(
        self,
        index: AttributeIndex,
        record: DeviceAttributes,
        key: str,
        value: Any,
        diagnostics: PassDiagnostics | None,
    ) -> None:
        """Store one attribute value on ``record``."""

        target: str | None = None
        try:
            if key == INGESTION_ID_KEY:
                record.ingestion_id = normalize_key(value)
                if record.ingestion_id:
                    index.by_ingestion_id.setdefault(
                        record.ingestion_id, record.native_id
                    )
            elif key == IDENTIFIER_KEY:
                record.identifier = normalize_key(value)
                if record.identifier:
                    index.by_identifier.setdefault(
                        record.identifier.upper(), record.native_id
                    )
            elif key == LABEL_KEY:
                record.label = normalize_key(value)
            elif key in POWER_LIMITS_KEYS:
                target = "power_limits"
                record.power_limits = parse_power_limits(value)
            elif key == ANNOTATIONS_KEY:
                target = "annotations"
                record.annotations = parse_annotations(value)
            else:
                attr = ATTRIBUTE_FIELD_MAP.get(key)
                if attr is None:
                    return
                if attr == "connection_status":
                    record.connection_status = normalize_connection_status(value)
                elif attr in _TIMESTAMP_FIELDS:
                    target = attr
                    setattr(record, attr, _coerce_timestamp(value))
                else:
                    setattr(record, attr, normalize_key(value))
        except AttributeParseError as err:
            if target is not None:
                setattr(record, target, None)
            _LOGGER.warning(
                "Attribute %s of device %s ignored: %s",
                key,
                mask_identifier(record.native_id),
                err,
            )
            if diagnostics is not None:
                diagnostics.record_parse_failure(record.native_id, key, err)


__all__ = [
    "AttributeIndex",
    "AttributeIndexBuilder",
    "AttributeParseError",
    "parse_annotations",
    "parse_power_limits",
]
