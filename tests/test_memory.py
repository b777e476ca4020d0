"""Tests for the in-memory collaborators (gatehouse_memory.py)."""
import sys
import time
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from gatehouse_backends import Authorization, AuthorizeError, OwnerIdentity, PasswordIdentity
from gatehouse_memory import MemoryBackend, hash_password
from gatehouse_scope import EMPTY_SCOPE, parse_scope


@pytest.fixture
def backend():
    backend = MemoryBackend()
    backend.add_client("webapp", name="Web App",
                       redirect_uris=["https://app.example.com/cb"],
                       internal_id="internal-webapp")
    backend.add_user("u-alice", username="alice", password_sha256=hash_password("hunter2"))
    backend.add_scope("profile", "Read your profile")
    return backend


class TestAuthorize:
    @pytest.mark.asyncio
    async def test_missing_redirect_uri_uses_single_registered(self, backend):
        authorization = await backend.authorize_code(
            PasswordIdentity("alice", "hunter2"), "webapp", None, EMPTY_SCOPE)
        assert authorization.redirect_uri == "https://app.example.com/cb"

    @pytest.mark.asyncio
    async def test_missing_redirect_uri_with_several_registered(self, backend):
        backend.add_client("multi", name="Multi",
                           redirect_uris=["https://a.example.com/cb", "https://b.example.com/cb"])
        with pytest.raises(AuthorizeError) as exc_info:
            await backend.authorize_code(
                PasswordIdentity("alice", "hunter2"), "multi", None, EMPTY_SCOPE)
        assert exc_info.value.error == "invalid_request"

    @pytest.mark.asyncio
    async def test_password_grant_by_internal_id(self, backend):
        authorization = await backend.authorize_password(
            OwnerIdentity("u-alice"), "internal-webapp", None, parse_scope("profile"))
        assert authorization.client_id == "webapp"
        assert authorization.scopes == ["profile"]

    @pytest.mark.asyncio
    async def test_unknown_internal_id(self, backend):
        with pytest.raises(AuthorizeError) as exc_info:
            await backend.authorize_password(
                OwnerIdentity("u-alice"), "webapp", None, EMPTY_SCOPE)
        assert exc_info.value.error == "unauthorized_client"

    @pytest.mark.asyncio
    async def test_unknown_owner(self, backend):
        with pytest.raises(AuthorizeError) as exc_info:
            await backend.authorize_code(OwnerIdentity("u-ghost"), "webapp", None, EMPTY_SCOPE)
        assert exc_info.value.error == "access_denied"

    @pytest.mark.asyncio
    async def test_unknown_username(self, backend):
        with pytest.raises(AuthorizeError) as exc_info:
            await backend.authorize_code(
                PasswordIdentity("mallory", "hunter2"), "webapp", None, EMPTY_SCOPE)
        assert exc_info.value.error == "access_denied"


class TestIssuance:
    @pytest.mark.asyncio
    async def test_code_stored_with_authorization(self, backend):
        authorization = Authorization(resource_owner="u-alice", client_id="webapp")
        code = await backend.issue_code(authorization)
        assert backend.auth_codes[code].authorization == authorization
        assert backend.auth_codes[code].expires_at > time.time()

    @pytest.mark.asyncio
    async def test_expired_code_purged_on_next_issue(self, backend):
        backend.code_ttl = -1
        stale = await backend.issue_code(Authorization(resource_owner="u-alice",
                                                       client_id="webapp"))
        backend.code_ttl = 60
        fresh = await backend.issue_code(Authorization(resource_owner="u-alice",
                                                       client_id="webapp"))
        assert list(backend.auth_codes) == [fresh]
        assert stale not in backend.auth_codes

    @pytest.mark.asyncio
    async def test_token_without_scope(self, backend):
        token = await backend.issue_token(Authorization(resource_owner="u-alice",
                                                        client_id="webapp"))
        assert token.scope is None
        assert token.token_type == "Bearer"

    @pytest.mark.asyncio
    async def test_expired_token_dropped(self, backend):
        token = await backend.issue_token(Authorization(resource_owner="u-alice",
                                                        client_id="webapp"))
        backend.access_tokens[token.access_token].expires_at = time.time() - 1
        assert await backend.verify_access_token(token.access_token) is None
        assert token.access_token not in backend.access_tokens

    @pytest.mark.asyncio
    async def test_expired_token_purged_on_next_issue(self, backend):
        authorization = Authorization(resource_owner="u-alice", client_id="webapp")
        stale = await backend.issue_token(authorization)
        backend.access_tokens[stale.access_token].expires_at = time.time() - 1
        fresh = await backend.issue_token(authorization)
        assert list(backend.access_tokens) == [fresh.access_token]


class TestStepUpClaims:
    @pytest.mark.asyncio
    async def test_claimed_once(self, backend):
        expires_at = int(time.time()) + 300
        assert await backend.claim_step_up("jti-1", expires_at) is True
        assert await backend.claim_step_up("jti-1", expires_at) is False
        assert await backend.claim_step_up("jti-2", expires_at) is True

    @pytest.mark.asyncio
    async def test_expired_claims_purged(self, backend):
        await backend.claim_step_up("jti-old", int(time.time()) - 1)
        await backend.claim_step_up("jti-new", int(time.time()) + 300)
        assert set(backend.step_up_claims) == {"jti-new"}


class TestLookups:
    @pytest.mark.asyncio
    async def test_describe_falls_back_to_name(self, backend):
        assert await backend.describe(parse_scope("profile other")) == \
            ["Read your profile", "other"]

    @pytest.mark.asyncio
    async def test_user_defaults(self, backend):
        user = await backend.get_user("u-alice")
        assert user.name == "alice"
        assert await backend.second_factors("u-alice") == []
        assert await backend.second_factors("u-ghost") == []
        assert await backend.get_user("u-ghost") is None
