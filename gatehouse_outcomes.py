"""
gatehouse_outcomes.py — terminal outcomes of one authorization request.

Every request ends in exactly one of the outcome variants below. The
composer in gatehouse_responses.py turns them into HTTP responses.

Also holds the step-up context: a short-lived HS256 JWT that carries a
pending authorization to the second-factor challenge and back.
"""

import secrets
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Union

import jwt

from gatehouse_backends import Authorization


class ErrorKind(str, Enum):
    INVALID_REQUEST = "invalid_request"
    UNAUTHORIZED_CLIENT = "unauthorized_client"
    ACCESS_DENIED = "access_denied"
    UNSUPPORTED_RESPONSE_TYPE = "unsupported_response_type"
    SERVER_ERROR = "server_error"
    NO_CLIENT_ID = "no_client_id"


ERROR_DESCRIPTIONS = {
    ErrorKind.INVALID_REQUEST.value: "The request is missing credentials or a client_id.",
    ErrorKind.UNAUTHORIZED_CLIENT.value: "Unknown client_id or redirect_uri not registered.",
    ErrorKind.ACCESS_DENIED.value: "The resource owner could not be authenticated.",
    ErrorKind.UNSUPPORTED_RESPONSE_TYPE.value: "response_type must be 'code' or 'token'.",
    ErrorKind.SERVER_ERROR.value: "The authorization server could not complete the request.",
}


@dataclass(frozen=True)
class RenderForm:
    params: dict[str, Any]


@dataclass(frozen=True)
class RedirectCode:
    redirect_uri: str | None
    code: str
    state: str | None = None


@dataclass(frozen=True)
class RedirectToken:
    redirect_uri: str | None
    access_token: str
    token_type: str
    expires_in: int | None
    granted_scope: str | None
    state: str | None = None


@dataclass(frozen=True)
class RedirectStepUp:
    flow: str
    owner_id: str
    authorization: Authorization
    state: str | None
    redirect_uri: str | None
    step_up_url: str
    pending: str


@dataclass(frozen=True)
class RedirectError:
    redirect_uri: str | None
    error: str
    state: str | None = None


@dataclass(frozen=True)
class InlineError:
    error: str


Outcome = Union[RenderForm, RedirectCode, RedirectToken, RedirectStepUp, RedirectError, InlineError]


# ---------------------------------------------------------------------------
# Step-up context
# ---------------------------------------------------------------------------

STEP_UP_ALGORITHM = "HS256"
STEP_UP_AUDIENCE = "gatehouse-step-up"


@dataclass(frozen=True)
class StepUpContext:
    flow: str
    owner_id: str
    authorization: Authorization
    state: str | None = None
    redirect_uri: str | None = None
    # Set from the verified token; single-use key and its expiry.
    jti: str | None = None
    expires_at: int | None = None


def encode_step_up(context: StepUpContext, secret: str, ttl: int) -> str:
    now = int(time.time())
    claims = {
        "aud": STEP_UP_AUDIENCE,
        "sub": context.owner_id,
        "flow": context.flow,
        "authorization": context.authorization.model_dump(mode="json"),
        "state": context.state,
        "redirect_uri": context.redirect_uri,
        "iat": now,
        "exp": now + ttl,
        "jti": secrets.token_hex(16),
    }
    return jwt.encode(claims, secret, algorithm=STEP_UP_ALGORITHM)


def decode_step_up(token: str, secret: str) -> StepUpContext:
    """Verify and unpack a step-up context.

    Raises ``jwt.InvalidTokenError`` (or a subclass such as
    ``jwt.ExpiredSignatureError``) when the token cannot be trusted.
    """
    claims = jwt.decode(
        token,
        secret,
        algorithms=[STEP_UP_ALGORITHM],
        audience=STEP_UP_AUDIENCE,
        options={"require": ["sub", "exp", "jti", "aud"]},
    )
    flow = claims.get("flow")
    if flow not in ("code", "token"):
        raise jwt.InvalidTokenError(f"unknown step-up flow: {flow!r}")
    try:
        authorization = Authorization.model_validate(claims.get("authorization"))
    except ValueError as e:
        raise jwt.InvalidTokenError("malformed pending authorization") from e
    if authorization.resource_owner != claims["sub"]:
        raise jwt.InvalidTokenError("step-up subject does not own the authorization")
    return StepUpContext(
        flow=flow,
        owner_id=claims["sub"],
        authorization=authorization,
        state=claims.get("state"),
        redirect_uri=claims.get("redirect_uri"),
        jti=claims["jti"],
        expires_at=claims["exp"],
    )
