"""Token storage.

Tokens are keyed on (provider, token_type). Writes are a compare-and-swap on
issued_at: a token only replaces the stored one when it was issued later, so
two processes refreshing at the same time cannot roll each other back.
"""

import base64
import hashlib
from datetime import datetime
from typing import Dict, List, Optional, Protocol, runtime_checkable, Tuple

from cryptography.fernet import Fernet, InvalidToken

from db.client import queries, get_conn
from db.models.provider_token import ProviderToken


class TokenCipher:
    """Fernet encryption for token values at rest."""

    def __init__(self, key: str):
        if not key:
            raise ValueError("A token encryption key is required (CHANNEL_TOKEN_KEY)")
        self.fernet = Fernet(self._derive_key(key))

    @staticmethod
    def _derive_key(key: str) -> bytes:
        """Accept a real Fernet key, otherwise derive one from the passphrase."""
        raw = key.encode()
        try:
            if len(base64.urlsafe_b64decode(raw)) == 32:
                return raw
        except ValueError:
            pass
        return base64.urlsafe_b64encode(hashlib.sha256(raw).digest())

    def encrypt(self, value: str) -> str:
        return self.fernet.encrypt(value.encode()).decode()

    def decrypt(self, encrypted: str) -> str:
        try:
            return self.fernet.decrypt(encrypted.encode()).decode()
        except InvalidToken as e:
            raise ValueError("Token decryption failed (wrong CHANNEL_TOKEN_KEY?)") from e


@runtime_checkable
class ITokenRepo(Protocol):
    """Protocol for token persistence."""

    async def get_token(self, provider: str, token_type: str) -> Optional[ProviderToken]:
        ...

    async def store_if_newer(self, token: ProviderToken) -> Optional[ProviderToken]:
        """Store unless a token with the same or later issued_at exists. None when the write lost."""
        ...

    async def touch(self, provider: str, token_type: str, used_at: datetime) -> None:
        ...

    async def list_tokens(self, provider: str) -> List[ProviderToken]:
        ...


class TokenRepo(ITokenRepo):
    """Postgres token store; values are encrypted with TokenCipher."""

    def __init__(self, cipher: TokenCipher):
        self.cipher = cipher

    def _to_model(self, row) -> ProviderToken:
        data = dict(row)
        data["value"] = self.cipher.decrypt(data.pop("encrypted_token"))
        return ProviderToken.model_validate(data)

    async def get_token(self, provider: str, token_type: str) -> Optional[ProviderToken]:
        async with get_conn() as conn:
            row = await queries.get_token(conn, provider=provider, token_type=token_type)
            return self._to_model(row) if row else None

    async def store_if_newer(self, token: ProviderToken) -> Optional[ProviderToken]:
        async with get_conn() as conn:
            row = await queries.store_token_if_newer(
                conn,
                provider=token.provider,
                token_type=token.token_type.value,
                encrypted_token=self.cipher.encrypt(token.value),
                scopes=token.scopes,
                properties_access=token.properties_access,
                issued_at=token.issued_at,
                expires_at=token.expires_at,
            )
            return self._to_model(row) if row else None

    async def touch(self, provider: str, token_type: str, used_at: datetime) -> None:
        async with get_conn() as conn:
            await queries.touch_token(conn, provider=provider, token_type=token_type, used_at=used_at)

    async def list_tokens(self, provider: str) -> List[ProviderToken]:
        async with get_conn() as conn:
            rows = await queries.list_tokens(conn, provider=provider)
            return [self._to_model(r) for r in rows]


class MockTokenRepo(ITokenRepo):
    """In-memory token store with the same compare-and-swap rule."""

    def __init__(self, tokens: Optional[List[ProviderToken]] = None):
        self._tokens: Dict[Tuple[str, str], ProviderToken] = {}
        self.store_calls = 0
        for token in tokens or []:
            self._tokens[(token.provider, token.token_type.value)] = token

    async def get_token(self, provider: str, token_type: str) -> Optional[ProviderToken]:
        return self._tokens.get((provider, str(getattr(token_type, "value", token_type))))

    async def store_if_newer(self, token: ProviderToken) -> Optional[ProviderToken]:
        self.store_calls += 1
        key = (token.provider, token.token_type.value)
        current = self._tokens.get(key)
        if current is not None and current.issued_at >= token.issued_at:
            return None
        stored = token.model_copy(update={"last_used_at": current.last_used_at if current else None})
        self._tokens[key] = stored
        return stored

    async def touch(self, provider: str, token_type: str, used_at: datetime) -> None:
        key = (provider, str(getattr(token_type, "value", token_type)))
        if key in self._tokens:
            self._tokens[key] = self._tokens[key].model_copy(update={"last_used_at": used_at})

    async def list_tokens(self, provider: str) -> List[ProviderToken]:
        return sorted(
            (t for (p, _), t in self._tokens.items() if p == provider),
            key=lambda t: t.token_type.value,
        )
