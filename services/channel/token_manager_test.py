"""Tests for the token lifecycle manager."""

import asyncio
from datetime import timedelta

import pytest

from db.models.provider_token import TokenType
from lib.beds24.api_client import Beds24APIError, Beds24Timeout
from services.channel.conftest import NOW, FakeBeds24, make_token
from services.channel.connection_repo import MockConnectionRepo, MockSecretResolver
from services.channel.errors import AuthError, ProviderTimeout, RefreshError
from services.channel.ledger import AuditLedger
from services.channel.ledger_repo import MockAuditRepo
from services.channel.token_manager import TokenManager, TokenState, token_state
from services.channel.token_repo import MockTokenRepo


def build_manager(config, tokens=None, secrets=None, connections=None, provider=None, audit=None):
    provider = provider or FakeBeds24()
    manager = TokenManager(
        config,
        token_repo=tokens if tokens is not None else MockTokenRepo(),
        connection_repo=connections or MockConnectionRepo(),
        secrets=secrets or MockSecretResolver(),
        client_factory=provider.factory,
        ledger=AuditLedger(audit or MockAuditRepo()),
        clock=lambda: NOW,
    )
    return manager, provider


class RacingTokenRepo(MockTokenRepo):
    """Another process stores a newer token just before our write lands."""

    def __init__(self, tokens=None):
        super().__init__(tokens)
        self.winner = None

    async def store_if_newer(self, token):
        self.winner = make_token(token.token_type, "winner-token", issued_at=token.issued_at + timedelta(seconds=1))
        self._tokens[(self.winner.provider, self.winner.token_type.value)] = self.winner
        return await super().store_if_newer(token)


@pytest.mark.no_db
class TestTokenState:

    def test_unset(self):
        assert token_state(None, NOW, timedelta(minutes=5)) == TokenState.UNSET

    def test_valid(self):
        assert token_state(make_token(expires_in=timedelta(hours=1)), NOW, timedelta(minutes=5)) == TokenState.VALID

    def test_near_expiry_inside_buffer(self):
        token = make_token(expires_in=timedelta(minutes=4))
        assert token_state(token, NOW, timedelta(minutes=5)) == TokenState.NEAR_EXPIRY

    def test_expired(self):
        token = make_token(expires_in=timedelta(minutes=-1))
        assert token_state(token, NOW, timedelta(minutes=5)) == TokenState.EXPIRED

    def test_long_lived_token_never_expires(self):
        token = make_token(expires_in=None)
        assert token_state(token, NOW, timedelta(minutes=5)) == TokenState.VALID


@pytest.mark.no_db
class TestGetValidToken:

    @pytest.mark.asyncio
    async def test_returns_stored_token_without_refresh(self, config, connection):
        connections = MockConnectionRepo([connection])
        tokens = MockTokenRepo([make_token()])
        manager, provider = build_manager(config, tokens=tokens, connections=connections)

        token = await manager.get_valid_token(TokenType.READ, connection)

        assert token.value == "stored-token"
        assert provider.calls == []
        assert token.last_used_at == NOW
        assert (await tokens.get_token("beds24", "read")).last_used_at == NOW
        assert (await connections.get_connection("conn-1")).last_token_use_at == NOW

    @pytest.mark.asyncio
    async def test_refreshes_token_near_expiry(self, config, connection):
        tokens = MockTokenRepo([make_token(expires_in=timedelta(minutes=2))])
        secrets = MockSecretResolver({connection.secret_ref: "refresh-secret"})
        manager, provider = build_manager(config, tokens=tokens, secrets=secrets)

        token = await manager.get_valid_token(TokenType.READ, connection)

        assert token.value == "fresh-token"
        assert token.issued_at == NOW
        assert token.expires_at == NOW + timedelta(seconds=86400)
        assert provider.calls == [("refresh_token", "refresh-secret")]
        # Scopes the provider did not report are carried over
        assert token.scopes == ["read:bookings"]

    @pytest.mark.asyncio
    async def test_uses_configured_secret_without_connection(self, config):
        secrets = MockSecretResolver({config.refresh_secret_ref: "env-secret"})
        manager, provider = build_manager(config, secrets=secrets)

        token = await manager.get_valid_token(TokenType.WRITE)

        assert token.value == "fresh-token"
        assert token.token_type == TokenType.WRITE
        assert provider.calls == [("refresh_token", "env-secret")]

    @pytest.mark.asyncio
    async def test_auth_error_without_token_or_secret(self, config):
        manager, provider = build_manager(config)

        with pytest.raises(AuthError):
            await manager.get_valid_token(TokenType.READ)
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_refresh(self, config):
        tokens = MockTokenRepo([make_token(expires_in=timedelta(minutes=-5))])
        secrets = MockSecretResolver({config.refresh_secret_ref: "s"})
        manager, provider = build_manager(config, tokens=tokens, secrets=secrets)

        results = await asyncio.gather(*(manager.get_valid_token(TokenType.READ) for _ in range(5)))

        assert {t.value for t in results} == {"fresh-token"}
        assert provider.call_names().count("refresh_token") == 1
        assert tokens.store_calls == 1


@pytest.mark.no_db
class TestRefresh:

    @pytest.mark.asyncio
    async def test_rejected_refresh_keeps_previous_token(self, config):
        previous = make_token(expires_in=timedelta(minutes=-5))
        tokens = MockTokenRepo([previous])
        audit = MockAuditRepo()
        secrets = MockSecretResolver({config.refresh_secret_ref: "s"})
        manager, provider = build_manager(config, tokens=tokens, secrets=secrets, audit=audit)
        provider.token_response = Beds24APIError("invalid refresh token", status_code=401)

        with pytest.raises(RefreshError):
            await manager.refresh(TokenType.READ)

        assert (await tokens.get_token("beds24", "read")).value == previous.value
        assert tokens.store_calls == 0
        assert [(r.operation, r.status) for r in audit.records] == [("token_refresh", "error")]

    @pytest.mark.asyncio
    async def test_refresh_timeout_is_retryable_not_rejected(self, config):
        previous = make_token(expires_in=timedelta(minutes=-5))
        tokens = MockTokenRepo([previous])
        audit = MockAuditRepo()
        secrets = MockSecretResolver({config.refresh_secret_ref: "s"})
        manager, provider = build_manager(config, tokens=tokens, secrets=secrets, audit=audit)
        provider.token_response = Beds24Timeout("timed out")

        with pytest.raises(ProviderTimeout) as exc:
            await manager.refresh(TokenType.READ, trace_id="t-slow")

        assert not isinstance(exc.value, RefreshError)
        assert exc.value.retryable is True
        assert exc.value.trace_id == "t-slow"
        assert (await tokens.get_token("beds24", "read")).value == previous.value
        assert [(r.operation, r.status, r.trace_id) for r in audit.records] == [("token_refresh", "error", "t-slow")]

    @pytest.mark.asyncio
    async def test_successful_refresh_is_audited(self, config):
        audit = MockAuditRepo()
        secrets = MockSecretResolver({config.refresh_secret_ref: "s"})
        manager, _ = build_manager(config, secrets=secrets, audit=audit)

        await manager.refresh(TokenType.READ, trace_id="trace-1")

        assert [(r.operation, r.status, r.trace_id) for r in audit.records] == [
            ("token_refresh", "success", "trace-1")
        ]

    @pytest.mark.asyncio
    async def test_lost_compare_and_swap_returns_newer_token(self, config):
        tokens = RacingTokenRepo()
        secrets = MockSecretResolver({config.refresh_secret_ref: "s"})
        manager, _ = build_manager(config, tokens=tokens, secrets=secrets)

        token = await manager.refresh(TokenType.READ)

        assert token.value == "winner-token"
        assert (await tokens.get_token("beds24", "read")).value == "winner-token"


@pytest.mark.no_db
class TestStoreAndDiagnostics:

    @pytest.mark.asyncio
    async def test_store_does_not_overwrite_newer_token(self, config):
        tokens = MockTokenRepo([make_token(value="current")])
        manager, _ = build_manager(config, tokens=tokens)

        stored = await manager.store(TokenType.READ, "older", issued_at=NOW - timedelta(days=1))

        assert stored.value == "current"

    @pytest.mark.asyncio
    async def test_store_requires_value(self, config):
        manager, _ = build_manager(config)
        with pytest.raises(ValueError):
            await manager.store(TokenType.READ, "")

    @pytest.mark.asyncio
    async def test_diagnostics_hide_token_value(self, config):
        tokens = MockTokenRepo([
            make_token(TokenType.READ),
            make_token(TokenType.WRITE, expires_in=timedelta(minutes=-1)),
        ])
        manager, _ = build_manager(config, tokens=tokens)

        diagnostics = await manager.diagnostics()

        assert [d["type"] for d in diagnostics] == ["read", "write"]
        assert all("value" not in d for d in diagnostics)
        assert diagnostics[0]["is_expired"] is False
        assert diagnostics[0]["properties_count"] == 1
        assert diagnostics[1]["is_expired"] is True
        assert diagnostics[1]["state"] == "expired"

    @pytest.mark.asyncio
    async def test_state_reports_refreshing_while_locked(self, config):
        manager, _ = build_manager(config, tokens=MockTokenRepo([make_token()]))

        assert await manager.state(TokenType.READ) == TokenState.VALID
        async with manager._lock("read"):
            assert await manager.state(TokenType.READ) == TokenState.REFRESHING
