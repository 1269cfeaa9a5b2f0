"""Canonical device identity across the inventory and analytics key spaces."""

from __future__ import annotations

from collections.abc import Iterable
import logging

from .attributes import AttributeIndex
from .domain.diagnostics import IdentityAmbiguity, PassDiagnostics
from .domain.ids import normalize_key
from .domain.records import BaseItem, CanonicalItem
from .sanitize import mask_identifier

_LOGGER = logging.getLogger(__name__)

RESOLVED_DIRECT = "direct"
RESOLVED_INGESTION_ID = "ingestion_id"
RESOLVED_IDENTIFIER = "identifier"
UNRESOLVED = "unresolved"


class IdentityResolver:
    """Map raw listing entries onto native device ids.

    Lookup order is the native id itself, then the external ingestion id,
    then the human identifier. When the ingestion id and the identifier
    both match but point at different devices the ingestion id wins and
    the disagreement is reported as an ambiguity. Every input entry yields
    exactly one ``CanonicalItem``; entries nothing matches keep their raw
    id.
    """

    def resolve(
        self,
        base_items: Iterable[BaseItem],
        index: AttributeIndex,
        diagnostics: PassDiagnostics | None = None,
    ) -> tuple[list[CanonicalItem], list[IdentityAmbiguity]]:
        """Return canonical items plus the ambiguities found on the way."""

        items: list[CanonicalItem] = []
        ambiguities: list[IdentityAmbiguity] = []
        counts = {
            RESOLVED_DIRECT: 0,
            RESOLVED_INGESTION_ID: 0,
            RESOLVED_IDENTIFIER: 0,
            UNRESOLVED: 0,
        }
        for item in base_items:
            canonical, ambiguity = self._resolve_one(item, index)
            counts[canonical.resolved_by] += 1
            items.append(canonical)
            if ambiguity is None:
                continue
            _LOGGER.warning(
                "Ambiguous identity for %s: ingestion id -> %s, identifier %s -> %s",
                mask_identifier(ambiguity.raw_id),
                mask_identifier(ambiguity.chosen_native_id),
                ambiguity.human_identifier,
                mask_identifier(ambiguity.rejected_native_id),
            )
            ambiguities.append(ambiguity)
            if diagnostics is not None:
                diagnostics.record_ambiguity(ambiguity)

        _LOGGER.debug(
            "Identity: %d direct, %d by ingestion id, %d by identifier, %d unresolved",
            counts[RESOLVED_DIRECT],
            counts[RESOLVED_INGESTION_ID],
            counts[RESOLVED_IDENTIFIER],
            counts[UNRESOLVED],
        )
        return items, ambiguities

    def _resolve_one(
        self, item: BaseItem, index: AttributeIndex
    ) -> tuple[CanonicalItem, IdentityAmbiguity | None]:
        raw_id = normalize_key(item.id) or str(item.id)
        identifier = normalize_key(item.identifier)
        ambiguity: IdentityAmbiguity | None = None

        if raw_id in index:
            native_id, resolved_by = raw_id, RESOLVED_DIRECT
        else:
            via_ingestion = index.native_for_ingestion_id(raw_id)
            via_identifier = index.native_for_identifier(identifier)
            if via_ingestion is not None:
                native_id, resolved_by = via_ingestion, RESOLVED_INGESTION_ID
                if via_identifier is not None and via_identifier != via_ingestion:
                    ambiguity = IdentityAmbiguity(
                        raw_id=raw_id,
                        chosen_native_id=via_ingestion,
                        rejected_native_id=via_identifier,
                        human_identifier=identifier,
                    )
            elif via_identifier is not None:
                native_id, resolved_by = via_identifier, RESOLVED_IDENTIFIER
            else:
                native_id, resolved_by = raw_id, UNRESOLVED

        attrs = index.get(native_id)
        if attrs is not None:
            # Without an ingestionId attribute the listing id is the best key.
            external_id = attrs.ingestion_id or raw_id
            human_identifier = attrs.identifier or identifier
            device_type = attrs.device_type
            label = item.label or item.name or attrs.label or native_id
        else:
            # The raw id may already be the analytics-side key.
            external_id = raw_id
            human_identifier = identifier
            device_type = None
            label = item.label or item.name or raw_id

        canonical = CanonicalItem(
            native_id=native_id,
            external_ingestion_id=external_id,
            human_identifier=human_identifier,
            label=label,
            device_type=device_type,
            attributes=attrs,
            value=float(item.value) if item.value is not None else 0.0,
            resolved_by=resolved_by,
        )
        return canonical, ambiguity


__all__ = [
    "RESOLVED_DIRECT",
    "RESOLVED_IDENTIFIER",
    "RESOLVED_INGESTION_ID",
    "UNRESOLVED",
    "IdentityResolver",
]
