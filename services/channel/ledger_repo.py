"""Persistence for the audit ledger and per-hotel sync state."""

import json
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable, Tuple

from db.client import queries, get_conn
from db.models.audit_record import AuditRecord
from db.models.sync_state import SyncState


@runtime_checkable
class IAuditRepo(Protocol):
    """Append-only audit storage. There is no update or delete."""

    async def insert(self, record: AuditRecord) -> AuditRecord:
        ...

    async def get_by_trace(self, trace_id: str) -> List[AuditRecord]:
        ...


@runtime_checkable
class ISyncStateRepo(Protocol):

    async def get(self, hotel_id: str, provider: str) -> Optional[SyncState]:
        ...

    async def ensure(self, hotel_id: str, provider: str, metadata: Dict[str, Any]) -> SyncState:
        ...

    async def mark_bootstrapped(
        self,
        hotel_id: str,
        provider: str,
        completed_at: datetime,
        cursors: Dict[str, str],
        status: str,
        error: Optional[str],
    ) -> Optional[SyncState]:
        ...

    async def record_attempt(
        self,
        hotel_id: str,
        provider: str,
        attempted_at: datetime,
        status: str,
        error: Optional[str],
        cursors: Dict[str, str],
    ) -> Optional[SyncState]:
        ...

    async def set_enabled(self, hotel_id: str, provider: str, enabled: bool) -> None:
        ...

    async def list_enabled(self, provider: str) -> List[SyncState]:
        ...


class AuditRepo(IAuditRepo):

    async def insert(self, record: AuditRecord) -> AuditRecord:
        async with get_conn() as conn:
            row = await queries.insert_audit_record(
                conn,
                provider=record.provider,
                operation=record.operation,
                status=record.status,
                hotel_id=record.hotel_id,
                trace_id=record.trace_id,
                cost=record.cost,
                credits_remaining=record.credits_remaining,
                duration_ms=record.duration_ms,
                error=record.error,
                payload=json.dumps(record.payload, default=str) if record.payload is not None else None,
            )
            return AuditRecord.model_validate(dict(row))

    async def get_by_trace(self, trace_id: str) -> List[AuditRecord]:
        async with get_conn() as conn:
            rows = await queries.get_audit_records_by_trace(conn, trace_id=trace_id)
            return [AuditRecord.model_validate(dict(r)) for r in rows]


class SyncStateRepo(ISyncStateRepo):

    async def get(self, hotel_id: str, provider: str) -> Optional[SyncState]:
        async with get_conn() as conn:
            row = await queries.get_sync_state(conn, hotel_id=hotel_id, provider=provider)
            return SyncState.model_validate(dict(row)) if row else None

    async def ensure(self, hotel_id: str, provider: str, metadata: Dict[str, Any]) -> SyncState:
        async with get_conn() as conn:
            row = await queries.ensure_sync_state(
                conn, hotel_id=hotel_id, provider=provider, metadata=json.dumps(metadata)
            )
            return SyncState.model_validate(dict(row))

    async def mark_bootstrapped(
        self,
        hotel_id: str,
        provider: str,
        completed_at: datetime,
        cursors: Dict[str, str],
        status: str,
        error: Optional[str],
    ) -> Optional[SyncState]:
        async with get_conn() as conn:
            row = await queries.mark_bootstrapped(
                conn,
                hotel_id=hotel_id,
                provider=provider,
                completed_at=completed_at,
                cursors=json.dumps(cursors),
                status=status,
                error=error,
            )
            return SyncState.model_validate(dict(row)) if row else None

    async def record_attempt(
        self,
        hotel_id: str,
        provider: str,
        attempted_at: datetime,
        status: str,
        error: Optional[str],
        cursors: Dict[str, str],
    ) -> Optional[SyncState]:
        async with get_conn() as conn:
            row = await queries.record_sync_attempt(
                conn,
                hotel_id=hotel_id,
                provider=provider,
                attempted_at=attempted_at,
                status=status,
                error=error,
                cursors=json.dumps(cursors),
            )
            return SyncState.model_validate(dict(row)) if row else None

    async def set_enabled(self, hotel_id: str, provider: str, enabled: bool) -> None:
        async with get_conn() as conn:
            await queries.set_sync_enabled(conn, hotel_id=hotel_id, provider=provider, enabled=enabled)

    async def list_enabled(self, provider: str) -> List[SyncState]:
        async with get_conn() as conn:
            rows = await queries.list_enabled_sync_states(conn, provider=provider)
            return [SyncState.model_validate(dict(r)) for r in rows]


class MockAuditRepo(IAuditRepo):
    """In-memory audit store. Set fail=True to simulate a broken writer."""

    def __init__(self, fail: bool = False):
        self.records: List[AuditRecord] = []
        self.fail = fail

    async def insert(self, record: AuditRecord) -> AuditRecord:
        if self.fail:
            raise ConnectionError("audit store unavailable")
        stored = record.model_copy(update={"id": len(self.records) + 1, "created_at": datetime.now()})
        self.records.append(stored)
        return stored

    async def get_by_trace(self, trace_id: str) -> List[AuditRecord]:
        return [r for r in self.records if r.trace_id == trace_id]


class MockSyncStateRepo(ISyncStateRepo):

    def __init__(self, states: Optional[List[SyncState]] = None):
        self._states: Dict[Tuple[str, str], SyncState] = {}
        for s in states or []:
            self._states[(s.hotel_id, s.provider)] = s

    async def get(self, hotel_id: str, provider: str) -> Optional[SyncState]:
        return self._states.get((hotel_id, provider))

    async def ensure(self, hotel_id: str, provider: str, metadata: Dict[str, Any]) -> SyncState:
        key = (hotel_id, provider)
        current = self._states.get(key)
        if current is None:
            current = SyncState(hotel_id=hotel_id, provider=provider, enabled=False, metadata=dict(metadata))
        else:
            current = current.model_copy(update={"metadata": {**current.metadata, **metadata}})
        self._states[key] = current
        return current

    async def mark_bootstrapped(
        self,
        hotel_id: str,
        provider: str,
        completed_at: datetime,
        cursors: Dict[str, str],
        status: str,
        error: Optional[str],
    ) -> Optional[SyncState]:
        key = (hotel_id, provider)
        current = self._states.get(key)
        if current is None:
            return None
        current = current.model_copy(update={
            "bootstrap_completed_at": completed_at,
            "enabled": current.enabled if current.bootstrap_completed_at else True,
            "cursors": {**current.cursors, **cursors},
            "last_attempt_at": completed_at,
            "last_status": status,
            "last_error": error,
        })
        self._states[key] = current
        return current

    async def record_attempt(
        self,
        hotel_id: str,
        provider: str,
        attempted_at: datetime,
        status: str,
        error: Optional[str],
        cursors: Dict[str, str],
    ) -> Optional[SyncState]:
        key = (hotel_id, provider)
        current = self._states.get(key)
        if current is None:
            return None
        current = current.model_copy(update={
            "last_attempt_at": attempted_at,
            "last_status": status,
            "last_error": error,
            "cursors": {**current.cursors, **cursors},
        })
        self._states[key] = current
        return current

    async def set_enabled(self, hotel_id: str, provider: str, enabled: bool) -> None:
        key = (hotel_id, provider)
        if key in self._states:
            self._states[key] = self._states[key].model_copy(update={"enabled": enabled})

    async def list_enabled(self, provider: str) -> List[SyncState]:
        return sorted(
            (s for s in self._states.values()
             if s.provider == provider and s.enabled and s.bootstrap_completed_at is not None),
            key=lambda s: s.hotel_id,
        )
