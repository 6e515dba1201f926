"""External id mapping persistence."""

import json
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable, Tuple

from db.client import queries, get_conn
from db.models.external_mapping import ExternalMapping


@runtime_checkable
class IMappingRepo(Protocol):
    """Protocol for the external_ids table."""

    async def find_by_external(self, provider: str, entity_type: str, external_id: str) -> Optional[ExternalMapping]:
        ...

    async def find_by_internal(self, provider: str, entity_type: str, internal_id: str) -> Optional[ExternalMapping]:
        ...

    async def upsert(self, mapping: ExternalMapping) -> ExternalMapping:
        ...

    async def get_for_internal_ids(
        self, provider: str, entity_type: str, internal_ids: List[str]
    ) -> Dict[str, str]:
        ...

    async def delete(self, provider: str, entity_type: str, external_id: str) -> None:
        ...


class MappingRepo(IMappingRepo):

    async def find_by_external(self, provider: str, entity_type: str, external_id: str) -> Optional[ExternalMapping]:
        async with get_conn() as conn:
            row = await queries.find_mapping_by_external(
                conn, provider=provider, entity_type=entity_type, external_id=external_id
            )
            return ExternalMapping.model_validate(dict(row)) if row else None

    async def find_by_internal(self, provider: str, entity_type: str, internal_id: str) -> Optional[ExternalMapping]:
        async with get_conn() as conn:
            row = await queries.find_mapping_by_internal(
                conn, provider=provider, entity_type=entity_type, internal_id=internal_id
            )
            return ExternalMapping.model_validate(dict(row)) if row else None

    async def upsert(self, mapping: ExternalMapping) -> ExternalMapping:
        async with get_conn() as conn:
            row = await queries.upsert_mapping(
                conn,
                provider=mapping.provider,
                entity_type=mapping.entity_type,
                external_id=mapping.external_id,
                internal_id=mapping.internal_id,
                metadata=json.dumps(mapping.metadata, default=str),
            )
            return ExternalMapping.model_validate(dict(row))

    async def get_for_internal_ids(
        self, provider: str, entity_type: str, internal_ids: List[str]
    ) -> Dict[str, str]:
        if not internal_ids:
            return {}
        async with get_conn() as conn:
            rows = await queries.get_mappings_for_internal_ids(
                conn, provider=provider, entity_type=entity_type, internal_ids=internal_ids
            )
            return {r["internal_id"]: r["external_id"] for r in rows}

    async def delete(self, provider: str, entity_type: str, external_id: str) -> None:
        async with get_conn() as conn:
            await queries.delete_mapping(
                conn, provider=provider, entity_type=entity_type, external_id=external_id
            )


class MockMappingRepo(IMappingRepo):
    """In-memory mapping store.

    fail_entity_types makes upserts for those entity types raise, to exercise
    partial-failure paths.
    """

    def __init__(self, fail_entity_types: Optional[List[str]] = None):
        self._rows: Dict[Tuple[str, str, str], ExternalMapping] = {}
        self.fail_entity_types = set(fail_entity_types or [])
        self.upsert_calls = 0

    @property
    def rows(self) -> List[ExternalMapping]:
        return list(self._rows.values())

    async def find_by_external(self, provider: str, entity_type: str, external_id: str) -> Optional[ExternalMapping]:
        return self._rows.get((provider, entity_type, external_id))

    async def find_by_internal(self, provider: str, entity_type: str, internal_id: str) -> Optional[ExternalMapping]:
        for m in reversed(list(self._rows.values())):
            if m.provider == provider and m.entity_type == entity_type and m.internal_id == internal_id:
                return m
        return None

    async def upsert(self, mapping: ExternalMapping) -> ExternalMapping:
        self.upsert_calls += 1
        if mapping.entity_type in self.fail_entity_types:
            raise ConnectionError(f"mapping write failed for {mapping.entity_type}")
        key = mapping.key
        existing = self._rows.pop(key, None)
        stored = mapping.model_copy(update={"created_at": existing.created_at if existing else None})
        self._rows[key] = stored
        return stored

    async def get_for_internal_ids(
        self, provider: str, entity_type: str, internal_ids: List[str]
    ) -> Dict[str, str]:
        wanted = set(internal_ids)
        return {
            m.internal_id: m.external_id
            for m in self._rows.values()
            if m.provider == provider and m.entity_type == entity_type and m.internal_id in wanted
        }

    async def delete(self, provider: str, entity_type: str, external_id: str) -> None:
        self._rows.pop((provider, entity_type, external_id), None)
