"""Tests for API key storage."""

import pytest

from services.channel.api_key_repo import MockApiKeyRepo, Principal, hash_api_key


@pytest.mark.no_db
class TestApiKeys:

    def test_hash_is_stable_and_not_the_key(self):
        assert hash_api_key("abc") == hash_api_key("abc")
        assert hash_api_key("abc") != "abc"
        assert len(hash_api_key("abc")) == 64

    @pytest.mark.asyncio
    async def test_created_key_resolves_to_principal(self):
        repo = MockApiKeyRepo()

        key = await repo.create("ops@example.com", ["admin"])

        principal = await repo.get_principal(hash_api_key(key))
        assert principal.subject == "ops@example.com"
        assert principal.is_admin is True

    @pytest.mark.asyncio
    async def test_unknown_key(self):
        repo = MockApiKeyRepo({"k": Principal(subject="u")})

        assert await repo.get_principal(hash_api_key("other")) is None
        assert (await repo.get_principal(hash_api_key("k"))).is_admin is False
