"""API keys for interactive callers of the sync API. Only sha256 hashes are stored."""

import hashlib
import secrets
from typing import Dict, List, Optional, Protocol, runtime_checkable

from pydantic import BaseModel

from db.client import queries, get_conn

ADMIN_ROLE = "admin"
AUTOMATION_ROLE = "automation"


class Principal(BaseModel):
    subject: str
    roles: List[str] = []
    via: str = "api_key"

    @property
    def is_admin(self) -> bool:
        return ADMIN_ROLE in self.roles


def hash_api_key(key: str) -> str:
    return hashlib.sha256(key.encode()).hexdigest()


def new_api_key() -> str:
    return f"cs_{secrets.token_urlsafe(32)}"


@runtime_checkable
class IApiKeyRepo(Protocol):

    async def get_principal(self, key_hash: str) -> Optional[Principal]:
        ...

    async def create(self, user_id: str, roles: List[str]) -> str:
        """Store a new key and return it. The plain key is never stored."""
        ...


class ApiKeyRepo(IApiKeyRepo):

    async def get_principal(self, key_hash: str) -> Optional[Principal]:
        async with get_conn() as conn:
            row = await queries.get_api_key(conn, key_hash=key_hash)
            if not row:
                return None
            return Principal(subject=row["user_id"], roles=list(row["roles"] or []))

    async def create(self, user_id: str, roles: List[str]) -> str:
        key = new_api_key()
        async with get_conn() as conn:
            await queries.insert_api_key(conn, key_hash=hash_api_key(key), user_id=user_id, roles=roles)
        return key


class MockApiKeyRepo(IApiKeyRepo):
    """Takes plain keys; lookups go through the hash like the real store."""

    def __init__(self, keys: Optional[Dict[str, Principal]] = None):
        self._by_hash = {hash_api_key(k): p for k, p in (keys or {}).items()}

    async def get_principal(self, key_hash: str) -> Optional[Principal]:
        return self._by_hash.get(key_hash)

    async def create(self, user_id: str, roles: List[str]) -> str:
        key = new_api_key()
        self._by_hash[hash_api_key(key)] = Principal(subject=user_id, roles=list(roles))
        return key
