"""Connection records and refresh-secret resolution."""

import os
from datetime import datetime
from typing import Dict, List, Optional, Protocol, runtime_checkable

from db.client import queries, get_conn
from db.models.connection import Connection


@runtime_checkable
class IConnectionRepo(Protocol):
    """Protocol for hotel-to-provider connection records."""

    async def get_connection(self, connection_id: str) -> Optional[Connection]:
        ...

    async def get_active_connection(self, hotel_id: str, provider: str) -> Optional[Connection]:
        ...

    async def touch_token_use(self, connection_id: str, used_at: datetime) -> None:
        ...

    async def update_sync(
        self, connection_id: str, synced_at: datetime, credits_remaining: Optional[int]
    ) -> None:
        ...


class ConnectionRepo(IConnectionRepo):
    """Postgres connection store."""

    async def get_connection(self, connection_id: str) -> Optional[Connection]:
        async with get_conn() as conn:
            row = await queries.get_connection(conn, connection_id=connection_id)
            return Connection.model_validate(dict(row)) if row else None

    async def get_active_connection(self, hotel_id: str, provider: str) -> Optional[Connection]:
        async with get_conn() as conn:
            row = await queries.get_active_connection(conn, hotel_id=hotel_id, provider=provider)
            return Connection.model_validate(dict(row)) if row else None

    async def touch_token_use(self, connection_id: str, used_at: datetime) -> None:
        async with get_conn() as conn:
            await queries.touch_connection_token_use(conn, connection_id=connection_id, used_at=used_at)

    async def update_sync(
        self, connection_id: str, synced_at: datetime, credits_remaining: Optional[int]
    ) -> None:
        async with get_conn() as conn:
            await queries.update_connection_sync(
                conn,
                connection_id=connection_id,
                synced_at=synced_at,
                credits_remaining=credits_remaining,
            )


class MockConnectionRepo(IConnectionRepo):
    """In-memory connection store for unit tests."""

    def __init__(self, connections: Optional[List[Connection]] = None):
        self._connections: Dict[str, Connection] = {c.id: c for c in connections or []}

    def add(self, connection: Connection) -> None:
        self._connections[connection.id] = connection

    async def get_connection(self, connection_id: str) -> Optional[Connection]:
        return self._connections.get(connection_id)

    async def get_active_connection(self, hotel_id: str, provider: str) -> Optional[Connection]:
        for c in self._connections.values():
            if c.hotel_id == hotel_id and c.provider == provider and c.active:
                return c
        return None

    async def touch_token_use(self, connection_id: str, used_at: datetime) -> None:
        if connection_id in self._connections:
            self._connections[connection_id] = self._connections[connection_id].model_copy(
                update={"last_token_use_at": used_at}
            )

    async def update_sync(
        self, connection_id: str, synced_at: datetime, credits_remaining: Optional[int]
    ) -> None:
        if connection_id not in self._connections:
            return
        update = {"last_sync_at": synced_at}
        if credits_remaining is not None:
            update["credits_remaining"] = credits_remaining
        self._connections[connection_id] = self._connections[connection_id].model_copy(update=update)


@runtime_checkable
class ISecretResolver(Protocol):
    """Resolves a secret reference (never stored in the database) to its value."""

    def resolve(self, secret_ref: str) -> Optional[str]:
        ...


class EnvSecretResolver(ISecretResolver):
    """Secret references are environment variable names, e.g. BEDS24_REFRESH_TOKEN."""

    def resolve(self, secret_ref: str) -> Optional[str]:
        if not secret_ref:
            return None
        return os.getenv(secret_ref) or None


class MockSecretResolver(ISecretResolver):

    def __init__(self, secrets: Optional[Dict[str, str]] = None):
        self.secrets = dict(secrets or {})

    def resolve(self, secret_ref: str) -> Optional[str]:
        return self.secrets.get(secret_ref)
