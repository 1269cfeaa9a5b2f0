"""Bulk resolution of parent and grandparent containers."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable, Sequence
import logging

from .backend.base import BatchDetailProto, RelationQueryProto
from .const import (
    DEFAULT_DETAIL_CHUNK_SIZE,
    DEVICE_ENTITY_TYPE,
    PARENT_ENTITY_TYPE,
    PARENT_RELATION_TYPE,
)
from .domain.diagnostics import PassDiagnostics
from .domain.records import AssetDetails, HierarchyInfo
from .models import AssetRecord, RelationRecord
from .sanitize import mask_identifier

_LOGGER = logging.getLogger(__name__)

STAGE_PARENTS = "parents"
STAGE_GRANDPARENTS = "grandparents"
STAGE_DETAILS = "asset_details"


def _chunks(ids: Sequence[str], size: int) -> list[list[str]]:
    """Split ``ids`` into lists of at most ``size`` items."""

    return [list(ids[pos : pos + size]) for pos in range(0, len(ids), size)]


class HierarchyResolver:
    """Resolve each device's parent and grandparent assets.

    A pass runs four stages in order: parent lookups, grandparent lookups,
    chunked asset detail lookups and assembly. Every lookup within a stage
    runs concurrently and settles independently; failures are logged,
    recorded in the pass diagnostics and treated as absent data. Nothing
    is cached between calls.
    """

    def __init__(
        self,
        relations: RelationQueryProto,
        details: BatchDetailProto,
        *,
        chunk_size: int = DEFAULT_DETAIL_CHUNK_SIZE,
        relation_type: str = PARENT_RELATION_TYPE,
        parent_entity_type: str = PARENT_ENTITY_TYPE,
    ) -> None:
        """Store the collaborators and lookup policy."""

        if chunk_size < 1:
            msg = "chunk_size must be positive"
            raise ValueError(msg)
        self._relations = relations
        self._details = details
        self._chunk_size = chunk_size
        self._relation_type = relation_type
        self._parent_entity_type = parent_entity_type

    def _pick_parent(self, relations: Sequence[RelationRecord]) -> str | None:
        """Return the source of the first matching containment relation."""

        for relation in relations:
            if (
                relation.type == self._relation_type
                and relation.from_.entity_type == self._parent_entity_type
            ):
                return relation.from_.id
        return None

    async def _fetch_parents(
        self,
        ids: Sequence[str],
        entity_type: str,
        stage: str,
        diagnostics: PassDiagnostics,
    ) -> dict[str, str]:
        """Return a child -> parent map for ``ids``."""

        results = await asyncio.gather(
            *(self._relations.query_relations(item, entity_type) for item in ids),
            return_exceptions=True,
        )
        edges: dict[str, str] = {}
        for child, result in zip(ids, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, Exception):
                _LOGGER.warning(
                    "Relation lookup (%s) for %s failed: %s",
                    stage,
                    mask_identifier(child),
                    result,
                )
                diagnostics.record_fetch_failure(stage, child, result)
                continue
            parent = self._pick_parent(result or ())
            if parent:
                edges[child] = parent
        _LOGGER.debug("Stage %s: %d/%d edges", stage, len(edges), len(ids))
        return edges

    async def _fetch_details(
        self, ids: Sequence[str], diagnostics: PassDiagnostics
    ) -> dict[str, AssetDetails]:
        """Return display details for ``ids`` using chunked batch lookups."""

        chunks = _chunks(ids, self._chunk_size)
        results = await asyncio.gather(
            *(self._details.fetch_asset_details(chunk) for chunk in chunks),
            return_exceptions=True,
        )
        details: dict[str, AssetDetails] = {}
        for pos, (chunk, result) in enumerate(zip(chunks, results)):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, Exception):
                _LOGGER.warning(
                    "Asset detail chunk %d (%d ids) failed: %s",
                    pos,
                    len(chunk),
                    result,
                )
                diagnostics.record_fetch_failure(
                    STAGE_DETAILS, ",".join(chunk), result
                )
                continue
            wanted = set(chunk)
            for record in result or ():
                if isinstance(record, AssetRecord) and record.id in wanted:
                    details[record.id] = AssetDetails(
                        id=record.id, name=record.name, label=record.label
                    )
        _LOGGER.debug(
            "Stage %s: %d/%d assets over %d chunk(s)",
            STAGE_DETAILS,
            len(details),
            len(ids),
            len(chunks),
        )
        return details

    async def resolve_bulk(
        self,
        device_ids: Iterable[str],
        diagnostics: PassDiagnostics | None = None,
    ) -> dict[str, HierarchyInfo]:
        """Return ``{native_id: HierarchyInfo}`` for every input device.

        Devices without a recorded edge get ``HierarchyInfo(None, None)``.
        Containers whose details could not be fetched keep their id with no
        name or label.
        """

        if diagnostics is None:
            diagnostics = PassDiagnostics()
        devices = list(dict.fromkeys(item for item in device_ids if item))
        if not devices:
            return {}

        parents = await self._fetch_parents(
            devices, DEVICE_ENTITY_TYPE, STAGE_PARENTS, diagnostics
        )
        parent_ids = list(dict.fromkeys(parents.values()))
        grandparents = await self._fetch_parents(
            parent_ids, self._parent_entity_type, STAGE_GRANDPARENTS, diagnostics
        )
        asset_ids = list(dict.fromkeys([*parent_ids, *grandparents.values()]))
        details = await self._fetch_details(asset_ids, diagnostics)

        def _asset(asset_id: str | None) -> AssetDetails | None:
            if asset_id is None:
                return None
            return details.get(asset_id) or AssetDetails(id=asset_id)

        resolved: dict[str, HierarchyInfo] = {}
        for device in devices:
            parent_id = parents.get(device)
            grandparent_id = grandparents.get(parent_id) if parent_id else None
            resolved[device] = HierarchyInfo(
                parent=_asset(parent_id), grandparent=_asset(grandparent_id)
            )
        return resolved


__all__ = ["HierarchyResolver"]
