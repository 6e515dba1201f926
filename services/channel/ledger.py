"""Sync state and audit ledger.

The audit ledger is append-only. A long operation writes a "running" record
when it starts and a second, final record when it ends; both share the trace
id. Nothing is updated in place, so a crash mid-operation leaves a running
record with no matching final one.

Audit writes never raise. A failed write is logged and the caller carries on.
"""

import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from loguru import logger

from db.models.audit_record import AuditRecord
from db.models.sync_state import SyncState
from services.channel.config import DEFAULT_REDACT_KEYS
from services.channel.ledger_repo import (
    AuditRepo,
    IAuditRepo,
    ISyncStateRepo,
    SyncStateRepo,
)

REDACTED = "[REDACTED]"

STATUS_RUNNING = "running"
STATUS_SUCCESS = "success"
STATUS_PARTIAL = "partial"
STATUS_ERROR = "error"


def new_trace_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def redact(value: Any, keys: Iterable[str]) -> Any:
    """Copy of value with every dict entry whose key contains a sensitive word masked."""
    keys = [k.lower() for k in keys]

    def _walk(v):
        if isinstance(v, dict):
            out = {}
            for k, item in v.items():
                if any(s in str(k).lower() for s in keys):
                    out[k] = REDACTED
                else:
                    out[k] = _walk(item)
            return out
        if isinstance(v, (list, tuple)):
            return [_walk(item) for item in v]
        return v

    return _walk(value)


@dataclass
class AuditSpan:
    """Mutable totals collected while a span is open."""

    operation: str
    trace_id: str
    hotel_id: Optional[str] = None
    cost: int = 0
    credits_remaining: Optional[int] = None
    counts: Dict[str, Any] = field(default_factory=dict)
    errors: List[Any] = field(default_factory=list)
    status: Optional[str] = None  # override; default is success/partial from errors

    def add_cost(self, cost: int, remaining: Optional[int] = None) -> None:
        self.cost += cost or 0
        if remaining is not None:
            self.credits_remaining = remaining


class AuditLedger:
    """Writes redacted, append-only audit records."""

    def __init__(
        self,
        repo: Optional[IAuditRepo] = None,
        provider: str = "beds24",
        redact_keys: Optional[List[str]] = None,
    ):
        self._repo = repo or AuditRepo()
        self.provider = provider
        self.redact_keys = list(redact_keys) if redact_keys is not None else list(DEFAULT_REDACT_KEYS)

    async def record(
        self,
        operation: str,
        status: str,
        trace_id: str,
        hotel_id: Optional[str] = None,
        cost: int = 0,
        credits_remaining: Optional[int] = None,
        duration_ms: Optional[int] = None,
        error: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Optional[AuditRecord]:
        """Append one record. Returns None when the write failed."""
        try:
            record = AuditRecord(
                provider=self.provider,
                operation=operation,
                status=status,
                hotel_id=hotel_id,
                trace_id=trace_id,
                cost=cost,
                credits_remaining=credits_remaining,
                duration_ms=duration_ms,
                error=error,
                payload=redact(payload, self.redact_keys) if payload is not None else None,
            )
            return await self._repo.insert(record)
        except Exception as e:
            logger.error(f"Audit write failed for {operation} [{trace_id}]: {e}")
            return None

    @asynccontextmanager
    async def span(
        self,
        operation: str,
        hotel_id: Optional[str] = None,
        trace_id: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
    ):
        """Record start and end of an operation.

        Exceptions are recorded with status "error" and re-raised.
        """
        span = AuditSpan(operation=operation, trace_id=trace_id or new_trace_id(), hotel_id=hotel_id)
        await self.record(operation, STATUS_RUNNING, span.trace_id, hotel_id=hotel_id, payload=payload)
        started = time.monotonic()
        try:
            yield span
        except Exception as e:
            await self.record(
                operation,
                STATUS_ERROR,
                span.trace_id,
                hotel_id=span.hotel_id,
                cost=span.cost,
                credits_remaining=span.credits_remaining,
                duration_ms=int((time.monotonic() - started) * 1000),
                error=str(e),
                payload={**span.counts, "errors": span.errors, "error_type": type(e).__name__},
            )
            raise
        status = span.status or (STATUS_PARTIAL if span.errors else STATUS_SUCCESS)
        await self.record(
            operation,
            status,
            span.trace_id,
            hotel_id=span.hotel_id,
            cost=span.cost,
            credits_remaining=span.credits_remaining,
            duration_ms=int((time.monotonic() - started) * 1000),
            payload={**span.counts, "errors": span.errors},
        )

    async def history(self, trace_id: str) -> List[AuditRecord]:
        return await self._repo.get_by_trace(trace_id)


class SyncStateStore:
    """Per (hotel, provider) enable flag, bootstrap marker and cursors."""

    def __init__(self, repo: Optional[ISyncStateRepo] = None, provider: str = "beds24"):
        self._repo = repo or SyncStateRepo()
        self.provider = provider

    async def get(self, hotel_id: str) -> Optional[SyncState]:
        return await self._repo.get(hotel_id, self.provider)

    async def ensure(self, hotel_id: str, metadata: Optional[Dict[str, Any]] = None) -> SyncState:
        """Create the row (disabled) on first use; existing flags are kept."""
        return await self._repo.ensure(hotel_id, self.provider, metadata or {})

    async def mark_bootstrapped(
        self,
        hotel_id: str,
        cursors: Dict[str, date],
        status: str = STATUS_SUCCESS,
        error: Optional[str] = None,
        completed_at: Optional[datetime] = None,
    ) -> Optional[SyncState]:
        return await self._repo.mark_bootstrapped(
            hotel_id,
            self.provider,
            completed_at or utcnow(),
            {k: v.isoformat() for k, v in cursors.items()},
            status,
            error,
        )

    async def record_attempt(
        self,
        hotel_id: str,
        status: str,
        error: Optional[str] = None,
        cursors: Optional[Dict[str, date]] = None,
        attempted_at: Optional[datetime] = None,
    ) -> Optional[SyncState]:
        return await self._repo.record_attempt(
            hotel_id,
            self.provider,
            attempted_at or utcnow(),
            status,
            error,
            {k: v.isoformat() for k, v in (cursors or {}).items()},
        )

    async def set_enabled(self, hotel_id: str, enabled: bool) -> None:
        await self._repo.set_enabled(hotel_id, self.provider, enabled)
        logger.info(f"Sync {'enabled' if enabled else 'disabled'} for hotel {hotel_id}")

    async def is_enabled(self, hotel_id: str) -> bool:
        """Enabled and bootstrapped."""
        state = await self.get(hotel_id)
        return bool(state and state.enabled and state.bootstrap_completed_at is not None)

    async def list_enabled(self) -> List[SyncState]:
        return await self._repo.list_enabled(self.provider)

    async def default_pull_window(
        self,
        hotel_id: str,
        today: Optional[date] = None,
        lookback_days: int = 30,
        resource: str = "bookings",
    ) -> Tuple[date, date]:
        """From the stored cursor (or today - lookback) to tomorrow."""
        today = today or utcnow().date()
        state = await self.get(hotel_id)
        start = state.cursor(resource) if state else None
        if start is None or start > today:
            start = today - timedelta(days=lookback_days)
        return start, today + timedelta(days=1)
