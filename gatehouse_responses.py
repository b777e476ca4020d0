"""
gatehouse_responses.py — turn an Outcome into a Starlette response.

Three shapes only:
  - 200 HTML for the login/consent form,
  - 302 redirect with parameters appended (query for codes and errors,
    fragment for implicit-grant tokens),
  - 200 JSON for inline errors, which never touch the redirect_uri.

A redirect outcome without a redirect_uri has nowhere to go and degrades
to an inline error.
"""

from urllib.parse import urlencode, urlparse, urlunparse

from mcp.server.auth.provider import construct_redirect_uri
from starlette.responses import HTMLResponse, JSONResponse, RedirectResponse, Response

from gatehouse_backends import FormRenderer
from gatehouse_outcomes import (
    ERROR_DESCRIPTIONS,
    ErrorKind,
    InlineError,
    Outcome,
    RedirectCode,
    RedirectError,
    RedirectStepUp,
    RedirectToken,
    RenderForm,
)

_NO_STORE = {"cache-control": "no-store", "pragma": "no-cache"}


def construct_fragment_uri(redirect_uri_base: str, **params: str | int | None) -> str:
    """Like ``construct_redirect_uri`` but puts the parameters in the fragment."""
    parsed = urlparse(redirect_uri_base)
    fragment = urlencode([(k, str(v)) for k, v in params.items() if v is not None])
    return urlunparse(parsed._replace(fragment=fragment))


def error_body(error: str) -> dict[str, str]:
    body = {"error": error}
    description = ERROR_DESCRIPTIONS.get(error)
    if description:
        body["error_description"] = description
    return body


def inline_error_response(error: str) -> JSONResponse:
    return JSONResponse(error_body(error), status_code=200, headers=_NO_STORE)


def _redirect(location: str) -> RedirectResponse:
    return RedirectResponse(location, status_code=302, headers=_NO_STORE)


def compose_response(outcome: Outcome, renderer: FormRenderer) -> Response:
    if isinstance(outcome, RenderForm):
        return HTMLResponse(renderer.render(outcome.params), headers=_NO_STORE)

    if isinstance(outcome, InlineError):
        return inline_error_response(outcome.error)

    if isinstance(outcome, RedirectStepUp):
        return _redirect(construct_redirect_uri(
            outcome.step_up_url,
            type=outcome.flow,
            uid=outcome.owner_id,
            pending=outcome.pending,
            redirect_uri=outcome.redirect_uri,
            state=outcome.state,
        ))

    if isinstance(outcome, RedirectError):
        if not outcome.redirect_uri:
            return inline_error_response(outcome.error)
        return _redirect(construct_redirect_uri(
            outcome.redirect_uri, error=outcome.error, state=outcome.state))

    if isinstance(outcome, RedirectCode):
        if not outcome.redirect_uri:
            return inline_error_response(ErrorKind.INVALID_REQUEST.value)
        return _redirect(construct_redirect_uri(
            outcome.redirect_uri, code=outcome.code, state=outcome.state))

    if isinstance(outcome, RedirectToken):
        if not outcome.redirect_uri:
            return inline_error_response(ErrorKind.INVALID_REQUEST.value)
        return _redirect(construct_fragment_uri(
            outcome.redirect_uri,
            access_token=outcome.access_token,
            token_type=outcome.token_type,
            expires_in=outcome.expires_in,
            scope=outcome.granted_scope,
            state=outcome.state,
        ))

    raise TypeError(f"unhandled authorization outcome: {outcome!r}")
