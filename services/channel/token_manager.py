"""Provider token lifecycle.

Keeps one read and one write token per provider usable. A token is only handed
out when it is more than the refresh buffer away from expiry; otherwise it is
refreshed first. Concurrent callers in one process share a single refresh
(lock plus double check). Across processes the store's compare-and-swap on
issued_at keeps the newest token.
"""

import asyncio
import time
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from loguru import logger

from db.models.connection import Connection
from db.models.provider_token import ProviderToken, TokenType
from lib.beds24.api_client import Beds24APIError, Beds24Client, Beds24Timeout
from services.channel.config import ChannelConfig
from services.channel.connection_repo import (
    ConnectionRepo,
    EnvSecretResolver,
    IConnectionRepo,
    ISecretResolver,
)
from services.channel.errors import AuthError, RefreshError, provider_error
from services.channel.ledger import AuditLedger, STATUS_ERROR, STATUS_SUCCESS, new_trace_id, utcnow
from services.channel.token_repo import ITokenRepo, TokenCipher, TokenRepo


class TokenState(str, Enum):
    UNSET = "unset"
    VALID = "valid"
    NEAR_EXPIRY = "near_expiry"
    EXPIRED = "expired"
    REFRESHING = "refreshing"


def token_state(token: Optional[ProviderToken], now: datetime, buffer: timedelta) -> TokenState:
    if token is None:
        return TokenState.UNSET
    if token.expires_at is None:
        return TokenState.VALID
    if now >= token.expires_at:
        return TokenState.EXPIRED
    if now >= token.expires_at - buffer:
        return TokenState.NEAR_EXPIRY
    return TokenState.VALID


def _type_value(token_type) -> str:
    return TokenType(token_type).value


class TokenManager:
    """Hands out valid provider tokens, refreshing them when needed."""

    def __init__(
        self,
        config: Optional[ChannelConfig] = None,
        token_repo: Optional[ITokenRepo] = None,
        connection_repo: Optional[IConnectionRepo] = None,
        secrets: Optional[ISecretResolver] = None,
        client_factory: Optional[Callable[[], Beds24Client]] = None,
        ledger: Optional[AuditLedger] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.config = config or ChannelConfig.from_env()
        self._repo = token_repo or TokenRepo(TokenCipher(self.config.token_key))
        self._connections = connection_repo or ConnectionRepo()
        self._secrets = secrets or EnvSecretResolver()
        self._client_factory = client_factory or (
            lambda: Beds24Client(self.config.base_url, self.config.http_timeout)
        )
        self._ledger = ledger
        self._clock = clock
        self._locks: Dict[str, asyncio.Lock] = {}
        self.provider = self.config.provider

    @property
    def buffer(self) -> timedelta:
        return timedelta(seconds=self.config.refresh_buffer_seconds)

    def _lock(self, token_type: str) -> asyncio.Lock:
        if token_type not in self._locks:
            self._locks[token_type] = asyncio.Lock()
        return self._locks[token_type]

    def _is_usable(self, token: Optional[ProviderToken]) -> bool:
        return token_state(token, self._clock(), self.buffer) == TokenState.VALID

    async def state(self, token_type) -> TokenState:
        type_value = _type_value(token_type)
        if self._lock(type_value).locked():
            return TokenState.REFRESHING
        token = await self._repo.get_token(self.provider, type_value)
        return token_state(token, self._clock(), self.buffer)

    async def get_valid_token(
        self,
        token_type=TokenType.READ,
        connection: Optional[Connection] = None,
        trace_id: Optional[str] = None,
    ) -> ProviderToken:
        """Stored token if still valid, else a freshly refreshed one.

        Raises:
            AuthError: no token stored and no refresh credential available
            RefreshError: the provider rejected the refresh
            ProviderTimeout: the refresh call timed out (retryable)
        """
        type_value = _type_value(token_type)
        token = await self._repo.get_token(self.provider, type_value)

        if not self._is_usable(token):
            async with self._lock(type_value):
                # Another caller may have refreshed while we waited
                token = await self._repo.get_token(self.provider, type_value)
                if not self._is_usable(token):
                    state = token_state(token, self._clock(), self.buffer)
                    logger.info(f"{self.provider} {type_value} token is {state.value}, refreshing")
                    token = await self._refresh_locked(type_value, connection, trace_id)

        return await self._touch(token, connection)

    async def refresh(
        self,
        token_type=TokenType.READ,
        connection: Optional[Connection] = None,
        trace_id: Optional[str] = None,
    ) -> ProviderToken:
        """Force a refresh. Never retried here; the caller decides."""
        type_value = _type_value(token_type)
        async with self._lock(type_value):
            return await self._refresh_locked(type_value, connection, trace_id)

    async def _refresh_locked(
        self, type_value: str, connection: Optional[Connection], trace_id: Optional[str]
    ) -> ProviderToken:
        trace_id = trace_id or new_trace_id()
        secret_ref = connection.secret_ref if connection else self.config.refresh_secret_ref
        refresh_secret = self._secrets.resolve(secret_ref)
        if not refresh_secret:
            raise AuthError(
                f"No {type_value} token can be obtained: secret '{secret_ref}' is not configured",
                trace_id=trace_id,
            )

        previous = await self._repo.get_token(self.provider, type_value)
        issued_at = self._clock()
        started = time.monotonic()
        try:
            async with self._client_factory() as client:
                resp = await client.refresh_token(refresh_secret)
        except Beds24Timeout as e:
            await self._audit_refresh(type_value, STATUS_ERROR, trace_id, started, connection, error=str(e))
            raise provider_error(e, trace_id) from e
        except Beds24APIError as e:
            await self._audit_refresh(type_value, STATUS_ERROR, trace_id, started, connection, error=str(e))
            raise RefreshError(f"{self.provider} rejected {type_value} token refresh: {e}", trace_id=trace_id) from e

        data = resp.data
        token = ProviderToken(
            provider=self.provider,
            token_type=TokenType(type_value),
            value=data.token,
            scopes=data.scopes or (previous.scopes if previous else []),
            properties_access=data.properties or (previous.properties_access if previous else []),
            issued_at=issued_at,
            expires_at=issued_at + timedelta(seconds=data.expires_in) if data.expires_in else None,
        )

        stored = await self._repo.store_if_newer(token)
        if stored is None:
            # Lost the compare-and-swap; a newer token is already stored
            stored = await self._repo.get_token(self.provider, type_value)
            logger.info(f"{self.provider} {type_value} token refreshed concurrently, keeping newer one")
            if stored is None:
                raise RefreshError(f"{self.provider} {type_value} token vanished during refresh", trace_id=trace_id)

        await self._audit_refresh(
            type_value,
            STATUS_SUCCESS,
            trace_id,
            started,
            connection,
            cost=resp.credits.request_cost,
            remaining=resp.credits.remaining,
        )
        logger.info(f"Refreshed {self.provider} {type_value} token (expires {stored.expires_at})")
        return stored

    async def _audit_refresh(
        self,
        type_value: str,
        status: str,
        trace_id: str,
        started: float,
        connection: Optional[Connection],
        error: Optional[str] = None,
        cost: int = 0,
        remaining: Optional[int] = None,
    ) -> None:
        if self._ledger is None:
            return
        await self._ledger.record(
            "token_refresh",
            status,
            trace_id,
            hotel_id=connection.hotel_id if connection else None,
            cost=cost,
            credits_remaining=remaining,
            duration_ms=int((time.monotonic() - started) * 1000),
            error=error,
            payload={"token_type": type_value},
        )

    async def _touch(self, token: ProviderToken, connection: Optional[Connection]) -> ProviderToken:
        now = self._clock()
        await self._repo.touch(self.provider, token.token_type.value, now)
        if connection:
            await self._connections.touch_token_use(connection.id, now)
        return token.model_copy(update={"last_used_at": now})

    async def store(
        self,
        token_type,
        value: str,
        scopes: Optional[List[str]] = None,
        expires_at: Optional[datetime] = None,
        properties_access: Optional[List[str]] = None,
        issued_at: Optional[datetime] = None,
    ) -> ProviderToken:
        """Link a token obtained out of band (admin path). Same CAS as refresh."""
        if not value:
            raise ValueError("token value is required")
        token = ProviderToken(
            provider=self.provider,
            token_type=TokenType(_type_value(token_type)),
            value=value,
            scopes=scopes or [],
            properties_access=properties_access or [],
            issued_at=issued_at or self._clock(),
            expires_at=expires_at,
        )
        stored = await self._repo.store_if_newer(token)
        if stored is None:
            logger.warning(f"Not storing {token.token_type.value} token: a newer one already exists")
            stored = await self._repo.get_token(self.provider, token.token_type.value)
        return stored

    async def diagnostics(self) -> List[Dict[str, Any]]:
        """Token metadata for admins. Never includes the token value."""
        now = self._clock()
        tokens = await self._repo.list_tokens(self.provider)
        return [
            {
                "type": t.token_type.value,
                "scopes": t.scopes,
                "expires_at": t.expires_at.isoformat() if t.expires_at else None,
                "last_used_at": t.last_used_at.isoformat() if t.last_used_at else None,
                "properties_count": len(t.properties_access),
                "is_expired": token_state(t, now, timedelta(0)) == TokenState.EXPIRED,
                "state": token_state(t, now, self.buffer).value,
            }
            for t in tokens
        ]
