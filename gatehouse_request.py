"""
gatehouse_request.py — request normalization for the authorization endpoint.

Turns the raw parameters of one GET (query string) or POST (form body) into
an immutable AuthorizationRequest, and decodes the Authorization header into
exactly one AuthenticationMethod. Nothing here fails: missing or unknown
values are carried as-is so later stages can report them in context.
"""

import base64
import binascii
from dataclasses import dataclass
from enum import Enum
from typing import Mapping, Union


class ResponseType(Enum):
    CODE = "code"
    TOKEN = "token"
    UNSUPPORTED = "unsupported"


_RESPONSE_TYPES = {
    "code": ResponseType.CODE,
    "token": ResponseType.TOKEN,
}


def decode_response_type(value: str | None) -> ResponseType:
    return _RESPONSE_TYPES.get(value or "", ResponseType.UNSUPPORTED)


class RequestMethod(Enum):
    GET = "GET"
    POST = "POST"


@dataclass(frozen=True)
class EndpointURLs:
    form_target: str = "/"
    step_up_url: str | None = None


# ---------------------------------------------------------------------------
# Authentication methods
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class NoCredentials:
    pass


@dataclass(frozen=True)
class BasicCredentials:
    username: str
    password: str


@dataclass(frozen=True)
class BearerToken:
    token: str


@dataclass(frozen=True)
class FormCredentials:
    username: str | None
    password: str | None


AuthenticationMethod = Union[NoCredentials, BasicCredentials, BearerToken, FormCredentials]


def parse_authorization_header(value: str | None) -> AuthenticationMethod:
    """Decode an ``Authorization`` header value.

    Only the Basic and Bearer schemes are recognized. Anything malformed is
    treated as if no header was sent.
    """
    if not value:
        return NoCredentials()
    scheme, _, payload = value.strip().partition(" ")
    scheme = scheme.lower()
    payload = payload.strip()

    if scheme == "basic":
        try:
            decoded = base64.b64decode(payload, validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError):
            return NoCredentials()
        username, sep, password = decoded.partition(":")
        if not sep:
            return NoCredentials()
        return BasicCredentials(username=username, password=password)

    if scheme == "bearer" and payload:
        return BearerToken(token=payload)

    return NoCredentials()


# ---------------------------------------------------------------------------
# AuthorizationRequest
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class AuthorizationRequest:
    method: RequestMethod
    response_type: ResponseType
    urls: EndpointURLs
    client_id: str | None = None
    redirect_uri: str | None = None
    raw_scope: str | None = None
    state: str | None = None
    username: str | None = None
    password: str | None = None
    resource_owner_id: str | None = None


def normalize_request(
    method: RequestMethod,
    params: Mapping[str, str],
    urls: EndpointURLs,
) -> AuthorizationRequest:
    """Build the canonical request from query or form parameters."""
    return AuthorizationRequest(
        method=method,
        response_type=decode_response_type(params.get("response_type")),
        urls=urls,
        client_id=params.get("client_id"),
        redirect_uri=params.get("redirect_uri"),
        raw_scope=params.get("scope"),
        state=params.get("state"),
        username=params.get("username"),
        password=params.get("password"),
    )
