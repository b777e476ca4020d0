"""
gatehouse_memory.py — in-memory collaborators for the authorization endpoint.

One object implements every collaborator protocol from gatehouse_backends:
bearer verification, client and user registries, scope descriptions and
the grant authorizer. Codes and access tokens are opaque random strings
kept in dicts; nothing survives a restart. Meant for the development
server and tests.

Passwords are stored as SHA-256 hex digests and compared in constant time.
"""

import hashlib
import hmac
import logging
import secrets
import time
from dataclasses import dataclass, field
from typing import Any, Iterable

from gatehouse_backends import (
    Authorization,
    AuthorizeError,
    ClientRecord,
    Identity,
    OAuthToken,
    OwnerIdentity,
    PasswordIdentity,
    TokenContext,
    UserRecord,
)
from gatehouse_scope import Scope

logger = logging.getLogger("gatehouse-memory")

TOKEN_EXPIRY = 8 * 3600  # 8 hours
AUTH_CODE_TTL = 300  # 5 minutes


def hash_password(password: str) -> str:
    return hashlib.sha256(password.encode()).hexdigest()


@dataclass
class _User:
    record: UserRecord
    username: str
    password_sha256: str
    second_factors: list[str] = field(default_factory=list)


@dataclass
class _IssuedCode:
    authorization: Authorization
    expires_at: float


@dataclass
class _IssuedToken:
    context: TokenContext
    expires_at: float


class MemoryBackend:
    def __init__(self, token_expiry: int = TOKEN_EXPIRY, code_ttl: int = AUTH_CODE_TTL):
        self.token_expiry = token_expiry
        self.code_ttl = code_ttl
        self.clients: dict[str, ClientRecord] = {}
        self.users: dict[str, _User] = {}
        self.scope_descriptions: dict[str, str] = {}
        self.auth_codes: dict[str, _IssuedCode] = {}
        self.access_tokens: dict[str, _IssuedToken] = {}
        self.step_up_claims: dict[str, float] = {}  # jti -> expires_at

    # --- Seeding ---

    def add_client(
        self,
        client_id: str,
        name: str = "",
        redirect_uris: Iterable[str] = (),
        internal_id: str | None = None,
    ) -> ClientRecord:
        client = ClientRecord(
            client_id=client_id,
            name=name or client_id,
            internal_id=internal_id or f"client-{secrets.token_hex(8)}",
            redirect_uris=list(redirect_uris),
        )
        self.clients[client_id] = client
        return client

    def add_user(
        self,
        owner_id: str,
        username: str,
        password_sha256: str,
        name: str = "",
        second_factors: Iterable[str] = (),
    ) -> UserRecord:
        record = UserRecord(owner_id=owner_id, name=name or username)
        self.users[owner_id] = _User(
            record=record,
            username=username,
            password_sha256=password_sha256,
            second_factors=list(second_factors),
        )
        return record

    def add_scope(self, name: str, description: str) -> None:
        self.scope_descriptions[name] = description

    @classmethod
    def from_config(cls, raw: dict[str, Any]) -> "MemoryBackend":
        """Build a backend from the ``backend:`` section of the YAML config."""
        backend = cls(
            token_expiry=int(raw.get("token_expiry", TOKEN_EXPIRY)),
            code_ttl=int(raw.get("code_ttl", AUTH_CODE_TTL)),
        )
        for client_id, cfg in (raw.get("clients") or {}).items():
            cfg = cfg or {}
            backend.add_client(
                client_id,
                name=cfg.get("name", ""),
                redirect_uris=cfg.get("redirect_uris", []),
                internal_id=cfg.get("internal_id"),
            )
        for owner_id, cfg in (raw.get("users") or {}).items():
            if not isinstance(cfg, dict) or "username" not in cfg or "password_sha256" not in cfg:
                raise ValueError(f"user '{owner_id}' needs 'username' and 'password_sha256'")
            backend.add_user(
                owner_id,
                username=cfg["username"],
                password_sha256=cfg["password_sha256"],
                name=cfg.get("name", ""),
                second_factors=cfg.get("second_factors", []),
            )
        for name, description in (raw.get("scopes") or {}).items():
            backend.add_scope(name, str(description))
        return backend

    # --- TokenVerifier ---

    async def verify_access_token(self, token: str) -> TokenContext | None:
        issued = self.access_tokens.get(token)
        if issued is None:
            return None
        if issued.expires_at < time.time():
            logger.info("verify_access_token: expired token for %s", issued.context.client_id)
            del self.access_tokens[token]
            return None
        return issued.context

    # --- ClientRegistry ---

    async def get_client(self, client_id: str) -> ClientRecord | None:
        return self.clients.get(client_id)

    def _client_by_internal_id(self, internal_id: str) -> ClientRecord | None:
        for client in self.clients.values():
            if client.internal_id == internal_id:
                return client
        return None

    # --- UserRegistry ---

    async def get_user(self, owner_id: str) -> UserRecord | None:
        user = self.users.get(owner_id)
        return user.record if user else None

    async def second_factors(self, owner_id: str) -> list[str]:
        user = self.users.get(owner_id)
        return list(user.second_factors) if user else []

    # --- ScopeCatalog ---

    async def describe(self, scope: Scope) -> list[str]:
        return [self.scope_descriptions.get(name, name) for name in scope]

    # --- GrantAuthorizer ---

    async def authorize_code(
        self,
        identity: Identity,
        client_id: str,
        redirect_uri: str | None,
        scope: Scope,
    ) -> Authorization:
        return self._authorize(identity, self.clients.get(client_id), redirect_uri, scope)

    async def authorize_password(
        self,
        identity: Identity,
        client_internal_id: str,
        redirect_uri: str | None,
        scope: Scope,
    ) -> Authorization:
        return self._authorize(
            identity, self._client_by_internal_id(client_internal_id), redirect_uri, scope)

    def _authorize(
        self,
        identity: Identity,
        client: ClientRecord | None,
        redirect_uri: str | None,
        scope: Scope,
    ) -> Authorization:
        if client is None:
            raise AuthorizeError("unauthorized_client", "client is not registered")
        redirect_uri = self._check_redirect_uri(client, redirect_uri)
        owner_id = self._authenticate(identity)
        unknown = [name for name in scope if name not in self.scope_descriptions]
        if unknown:
            raise AuthorizeError("invalid_scope", f"unknown scope: {' '.join(unknown)}")
        return Authorization(
            resource_owner=owner_id,
            client_id=client.client_id,
            redirect_uri=redirect_uri,
            scopes=scope.to_list(),
        )

    @staticmethod
    def _check_redirect_uri(client: ClientRecord, redirect_uri: str | None) -> str:
        if redirect_uri is None:
            # Fall back to the registered URI when there is exactly one.
            if len(client.redirect_uris) != 1:
                raise AuthorizeError("invalid_request", "redirect_uri is required for this client")
            return client.redirect_uris[0]
        if redirect_uri not in client.redirect_uris:
            raise AuthorizeError("unauthorized_client", "redirect_uri not registered for client")
        return redirect_uri

    def _authenticate(self, identity: Identity) -> str:
        if isinstance(identity, OwnerIdentity):
            if identity.owner_id not in self.users:
                raise AuthorizeError("access_denied", "unknown resource owner")
            return identity.owner_id

        if isinstance(identity, PasswordIdentity):
            candidate = hash_password(identity.password)
            for owner_id, user in self.users.items():
                if user.username == identity.username:
                    if hmac.compare_digest(candidate, user.password_sha256):
                        return owner_id
                    break
        raise AuthorizeError("access_denied", "invalid username or password")

    async def issue_code(self, authorization: Authorization) -> str:
        now = time.time()
        expired = [c for c, issued in self.auth_codes.items() if issued.expires_at < now]
        for c in expired:
            del self.auth_codes[c]

        code = secrets.token_urlsafe(32)
        self.auth_codes[code] = _IssuedCode(authorization, now + self.code_ttl)
        return code

    async def issue_token(self, authorization: Authorization) -> OAuthToken:
        now = time.time()
        expired = [t for t, issued in self.access_tokens.items() if issued.expires_at < now]
        for t in expired:
            del self.access_tokens[t]

        access_tok = secrets.token_urlsafe(32)
        self.access_tokens[access_tok] = _IssuedToken(
            context=TokenContext(
                resource_owner=authorization.resource_owner,
                client_id=authorization.client_id,
                scopes=list(authorization.scopes),
            ),
            expires_at=now + self.token_expiry,
        )
        return OAuthToken(
            access_token=access_tok,
            token_type="Bearer",
            expires_in=self.token_expiry,
            scope=" ".join(authorization.scopes) or None,
        )

    async def claim_step_up(self, jti: str, expires_at: int) -> bool:
        now = time.time()
        expired = [j for j, exp in self.step_up_claims.items() if exp < now]
        for j in expired:
            del self.step_up_claims[j]

        if jti in self.step_up_claims:
            return False
        self.step_up_claims[jti] = expires_at
        return True
