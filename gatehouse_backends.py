"""
gatehouse_backends.py — collaborator contracts for the authorization endpoint.

The endpoint never owns clients, users, grants or tokens. It reads them
through the protocols below and the hosting application injects concrete
implementations (see gatehouse_memory.py for the in-memory ones).

Grant authorizers signal a refused grant by raising
``mcp.server.auth.provider.AuthorizeError``; its ``error`` field is the
OAuth error code reported back to the client.
"""

from dataclasses import dataclass, field
from typing import Any, Protocol, Union

from mcp.server.auth.provider import AuthorizeError
from mcp.shared.auth import OAuthToken
from pydantic import BaseModel

from gatehouse_scope import Scope

__all__ = [
    "AuthorizeError",
    "Authorization",
    "ClientRecord",
    "ClientRegistry",
    "FormRenderer",
    "GrantAuthorizer",
    "Identity",
    "OAuthToken",
    "OwnerIdentity",
    "PasswordIdentity",
    "ScopeCatalog",
    "TokenContext",
    "TokenVerifier",
    "UserRecord",
    "UserRegistry",
]


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PasswordIdentity:
    username: str
    password: str

    def __repr__(self) -> str:
        return f"PasswordIdentity(username={self.username!r})"


@dataclass(frozen=True)
class OwnerIdentity:
    owner_id: str


Identity = Union[PasswordIdentity, OwnerIdentity]


@dataclass
class ClientRecord:
    client_id: str
    name: str
    internal_id: str
    redirect_uris: list[str] = field(default_factory=list)


@dataclass
class UserRecord:
    owner_id: str
    name: str


@dataclass
class TokenContext:
    """What a verified bearer token says about its holder."""
    resource_owner: str | None = None
    client_id: str | None = None
    scopes: list[str] = field(default_factory=list)


class Authorization(BaseModel):
    """A grant the authorizer accepted but has not issued yet."""

    resource_owner: str
    client_id: str
    redirect_uri: str | None = None
    scopes: list[str] = []
    details: dict[str, Any] = {}


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------

class TokenVerifier(Protocol):
    async def verify_access_token(self, token: str) -> TokenContext | None: ...


class ClientRegistry(Protocol):
    async def get_client(self, client_id: str) -> ClientRecord | None: ...


class UserRegistry(Protocol):
    async def get_user(self, owner_id: str) -> UserRecord | None: ...

    async def second_factors(self, owner_id: str) -> list[str]: ...


class GrantAuthorizer(Protocol):
    async def authorize_code(
        self,
        identity: Identity,
        client_id: str,
        redirect_uri: str | None,
        scope: Scope,
    ) -> Authorization: ...

    async def authorize_password(
        self,
        identity: Identity,
        client_internal_id: str,
        redirect_uri: str | None,
        scope: Scope,
    ) -> Authorization: ...

    async def issue_code(self, authorization: Authorization) -> str: ...

    async def issue_token(self, authorization: Authorization) -> OAuthToken: ...

    async def claim_step_up(self, jti: str, expires_at: int) -> bool:
        """Mark a step-up context as used; False if it was already claimed."""
        ...


class ScopeCatalog(Protocol):
    async def describe(self, scope: Scope) -> list[str]: ...


class FormRenderer(Protocol):
    def render(self, params: dict[str, Any]) -> str: ...
