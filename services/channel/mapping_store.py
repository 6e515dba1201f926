"""External identity mapping store.

Maps provider ids to internal ids, unique on (provider, entity_type,
external_id). Upserts overwrite on conflict, so the last write wins. For
hotels, room types and guests a reverse row (internal id -> provider id) is
written under "internal_<entity_type>"; bookings are looked up one way only.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from loguru import logger

from db.models.external_mapping import (
    ExternalMapping,
    REVERSIBLE_ENTITY_TYPES,
    reverse_entity_type,
)
from services.channel.mapping_repo import IMappingRepo, MappingRepo


def _entity(entity_type) -> str:
    return str(getattr(entity_type, "value", entity_type))


@dataclass
class BidirectionalMapping:
    forward: ExternalMapping
    reverse: Optional[ExternalMapping] = None


@dataclass
class BulkUpsertResult:
    mappings: List[ExternalMapping] = field(default_factory=list)
    errors: List[Dict[str, Any]] = field(default_factory=list)


class MappingStore:
    """Service over IMappingRepo."""

    def __init__(self, repo: Optional[IMappingRepo] = None):
        self._repo = repo or MappingRepo()

    async def find_by_external_id(self, provider: str, entity_type, external_id: str) -> Optional[ExternalMapping]:
        return await self._repo.find_by_external(provider, _entity(entity_type), str(external_id))

    async def find_by_internal_id(self, provider: str, entity_type, internal_id: str) -> Optional[ExternalMapping]:
        return await self._repo.find_by_internal(provider, _entity(entity_type), str(internal_id))

    async def upsert(
        self,
        provider: str,
        entity_type,
        external_id: str,
        internal_id: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ExternalMapping:
        mapping = ExternalMapping(
            provider=provider,
            entity_type=_entity(entity_type),
            external_id=str(external_id),
            internal_id=str(internal_id),
            metadata=metadata or {},
        )
        return await self._repo.upsert(mapping)

    async def upsert_bidirectional(
        self,
        provider: str,
        entity_type,
        external_id: str,
        internal_id: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> BidirectionalMapping:
        """Forward row, plus the reverse row for reversible entity types.

        A failed reverse write is logged and reported as reverse=None; the
        forward row is kept.
        """
        entity = _entity(entity_type)
        forward = await self.upsert(provider, entity, external_id, internal_id, metadata)
        if entity not in {e.value for e in REVERSIBLE_ENTITY_TYPES}:
            return BidirectionalMapping(forward=forward)

        try:
            reverse = await self.upsert(
                provider,
                reverse_entity_type(entity),
                internal_id,
                external_id,
                {**(metadata or {}), "reverse_of": entity},
            )
        except Exception as e:
            logger.warning(f"Reverse mapping failed for {provider} {entity} {external_id} -> {internal_id}: {e}")
            reverse = None
        return BidirectionalMapping(forward=forward, reverse=reverse)

    async def bulk_upsert(self, mappings: List[ExternalMapping]) -> BulkUpsertResult:
        """Upsert each mapping independently; failures are collected, not raised."""
        result = BulkUpsertResult()
        for mapping in mappings:
            try:
                result.mappings.append(await self._repo.upsert(mapping))
            except Exception as e:
                logger.error(f"Mapping upsert failed for {mapping.key}: {e}")
                result.errors.append({"key": list(mapping.key), "error": str(e)})
        return result

    async def get_mappings(self, provider: str, entity_type, internal_ids: List[str]) -> Dict[str, str]:
        """internal_id -> external_id for the given internal ids."""
        return await self._repo.get_for_internal_ids(provider, _entity(entity_type), [str(i) for i in internal_ids])

    async def delete(self, provider: str, entity_type, external_id: str) -> None:
        await self._repo.delete(provider, _entity(entity_type), str(external_id))
