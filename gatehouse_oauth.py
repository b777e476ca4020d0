"""
gatehouse_oauth.py — authorization endpoint decision core.

One inbound authorization request (GET shows the login/consent form, POST
submits it) runs through a short pipeline:

  normalize → resolve authentication → resolve scope → dispatch grant
            → (step-up challenge | issue code/token) → compose response

Each stage takes the immutable AuthorizationRequest and returns either a
new request or a terminal Outcome. Collaborators (client/user registries,
grant authorizer, bearer verifier, scope catalog, renderer) are injected at
construction; the endpoint keeps no state between requests.

Error policy:
  - unauthorized_client is always returned inline, the redirect_uri is not
    trusted in that case.
  - Other grant refusals are redirected back to the client with the
    authorizer's error code.
  - Unexpected collaborator failures become server_error (or the stage's
    own error kind) and are logged; nothing is raised to the transport.
"""

import dataclasses
import json
import logging
import time
from typing import Any, Mapping

import jwt
from pydantic import BaseModel
from starlette.requests import Request
from starlette.responses import Response

from gatehouse_backends import (
    Authorization,
    AuthorizeError,
    ClientRegistry,
    FormRenderer,
    GrantAuthorizer,
    Identity,
    OwnerIdentity,
    PasswordIdentity,
    ScopeCatalog,
    TokenVerifier,
    UserRegistry,
)
from gatehouse_outcomes import (
    ErrorKind,
    InlineError,
    Outcome,
    RedirectCode,
    RedirectError,
    RedirectStepUp,
    RedirectToken,
    RenderForm,
    StepUpContext,
    decode_step_up,
    encode_step_up,
)
from gatehouse_request import (
    AuthenticationMethod,
    AuthorizationRequest,
    BasicCredentials,
    BearerToken,
    EndpointURLs,
    FormCredentials,
    NoCredentials,
    RequestMethod,
    ResponseType,
    normalize_request,
    parse_authorization_header,
)
from gatehouse_responses import compose_response
from gatehouse_scope import Scope, parse_scope

logger = logging.getLogger("gatehouse-oauth")
audit_logger = logging.getLogger("gatehouse-audit")

STEP_UP_TTL = 300  # 5 minutes


def _audit(event: str, **kwargs: Any) -> None:
    entry = {"ts": time.time(), "event": event, **kwargs}
    audit_logger.info(json.dumps(entry))


def _present(value: str | None) -> bool:
    return isinstance(value, str) and value != ""


class EndpointSettings(BaseModel):
    """Process-wide endpoint configuration.

    Step-up redirects are enabled only when both the challenge URL and the
    secret used to sign the pending context are configured.
    """

    form_target: str = "/"
    step_up_url: str | None = None
    step_up_secret: str | None = None
    step_up_ttl: int = STEP_UP_TTL

    @property
    def step_up_enabled(self) -> bool:
        return bool(self.step_up_url and self.step_up_secret)

    @property
    def urls(self) -> EndpointURLs:
        return EndpointURLs(form_target=self.form_target, step_up_url=self.step_up_url)


class AuthorizationEndpoint:
    """Decides the single outcome of an OAuth2 authorization request."""

    def __init__(
        self,
        settings: EndpointSettings,
        *,
        tokens: TokenVerifier,
        clients: ClientRegistry,
        users: UserRegistry,
        grants: GrantAuthorizer,
        scopes: ScopeCatalog,
        renderer: FormRenderer,
    ):
        self.settings = settings
        self.tokens = tokens
        self.clients = clients
        self.users = users
        self.grants = grants
        self.scopes = scopes
        self.renderer = renderer

    # --- Transport ---

    async def handle(self, request: Request) -> Response:
        # The route only admits GET and POST; Starlette adds HEAD, served as GET.
        if request.method == "POST":
            method = RequestMethod.POST
            form = await request.form()
            params = {k: v for k, v in form.items() if isinstance(v, str)}
        else:
            method = RequestMethod.GET
            params = dict(request.query_params)

        outcome = await self.authorize(method, params, request.headers.get("authorization"))
        logger.info("authorize: %s %s -> %s", method.value,
                    params.get("client_id") or "-", type(outcome).__name__)
        return compose_response(outcome, self.renderer)

    # --- Pipeline ---

    async def authorize(
        self,
        method: RequestMethod,
        params: Mapping[str, str],
        authorization_header: str | None = None,
    ) -> Outcome:
        request = normalize_request(method, params, self.settings.urls)
        resolved = await self.resolve_authentication(
            request, parse_authorization_header(authorization_header))
        if isinstance(resolved, InlineError):
            return resolved
        request, auth_method = resolved
        return await self.dispatch(request, parse_scope(request.raw_scope), auth_method)

    async def resolve_authentication(
        self,
        request: AuthorizationRequest,
        header: AuthenticationMethod,
    ) -> tuple[AuthorizationRequest, AuthenticationMethod] | InlineError:
        """Pick the one authentication method that applies to ``request``.

        The Authorization header wins over body/query credentials. A bearer
        token that does not verify to a resource owner ends the request.
        """
        if isinstance(header, BasicCredentials):
            request = dataclasses.replace(
                request, username=header.username, password=header.password)
            return request, header

        if isinstance(header, BearerToken):
            owner = await self._verify_bearer(header.token)
            if owner is None:
                return InlineError(ErrorKind.ACCESS_DENIED.value)
            return dataclasses.replace(request, resource_owner_id=owner), header

        if request.username is not None or request.password is not None:
            return request, FormCredentials(request.username, request.password)
        return request, NoCredentials()

    async def _verify_bearer(self, token: str) -> str | None:
        try:
            context = await self.tokens.verify_access_token(token)
        except Exception:
            logger.exception("bearer verification failed")
            _audit("collaborator_failed", stage="verify_access_token")
            return None
        if context is None:
            _audit("bearer_rejected", reason="invalid_token")
            return None
        if not context.resource_owner:
            _audit("bearer_rejected", reason="no_resource_owner",
                   client_id=context.client_id)
            return None
        return context.resource_owner

    async def dispatch(
        self,
        request: AuthorizationRequest,
        scope: Scope,
        auth_method: AuthenticationMethod,
    ) -> Outcome:
        if request.method is RequestMethod.GET:
            return RenderForm(await self.build_form_params(request, scope))

        if request.response_type is ResponseType.UNSUPPORTED:
            return InlineError(ErrorKind.UNSUPPORTED_RESPONSE_TYPE.value)

        identity = self._identity(request, auth_method)
        if identity is None:
            _audit("authorize_denied", reason="invalid_request",
                   client_id=request.client_id)
            return RedirectError(request.redirect_uri,
                                 ErrorKind.INVALID_REQUEST.value, request.state)

        if request.response_type is ResponseType.CODE:
            return await self._code_grant(request, identity, scope)
        return await self._token_grant(request, identity, scope)

    @staticmethod
    def _identity(
        request: AuthorizationRequest,
        auth_method: AuthenticationMethod,
    ) -> Identity | None:
        # Owner id from a verified bearer token beats posted credentials.
        if (isinstance(auth_method, BearerToken) and _present(request.resource_owner_id)
                and _present(request.client_id)):
            return OwnerIdentity(request.resource_owner_id)
        if (_present(request.username) and _present(request.password)
                and _present(request.client_id)):
            return PasswordIdentity(request.username, request.password)
        return None

    # --- Login/consent form ---

    async def build_form_params(self, request: AuthorizationRequest, scope: Scope) -> dict[str, Any]:
        if request.response_type is ResponseType.UNSUPPORTED:
            return {"error": ErrorKind.UNSUPPORTED_RESPONSE_TYPE.value}

        params: dict[str, Any] = {
            "response_type": request.response_type.value,
            "form_target": request.urls.form_target,
        }

        client = None
        if _present(request.client_id):
            try:
                client = await self.clients.get_client(request.client_id)
            except Exception:
                logger.exception("client lookup failed for %s", request.client_id)
        if client is None:
            return {"error": ErrorKind.NO_CLIENT_ID.value}
        params["client_id"] = request.client_id
        params["client_name"] = client.name

        if request.redirect_uri is not None:
            params["redirect_uri"] = request.redirect_uri

        if scope:
            params["scope"] = scope.to_string()
            try:
                params["scope_list"] = await self.scopes.describe(scope)
            except Exception:
                logger.exception("scope description lookup failed")
                params["scope_list"] = scope.to_list()

        if request.resource_owner_id is not None:
            try:
                user = await self.users.get_user(request.resource_owner_id)
            except Exception:
                logger.exception("user lookup failed for %s", request.resource_owner_id)
                user = None
            if user is not None:
                params["user_name"] = user.name

        if request.state is not None:
            params["state"] = request.state

        _audit("authorize_form", client_id=request.client_id)
        return params

    # --- Grant flows ---

    async def _code_grant(
        self,
        request: AuthorizationRequest,
        identity: Identity,
        scope: Scope,
    ) -> Outcome:
        try:
            authorization = await self.grants.authorize_code(
                identity, request.client_id, request.redirect_uri, scope)
        except AuthorizeError as e:
            return self._refused(request, e.error)
        except Exception:
            logger.exception("authorize_code failed for client %s", request.client_id)
            _audit("collaborator_failed", stage="authorize_code", client_id=request.client_id)
            return RedirectError(request.redirect_uri,
                                 ErrorKind.SERVER_ERROR.value, request.state)
        return await self._complete_or_step_up("code", authorization, request)

    async def _token_grant(
        self,
        request: AuthorizationRequest,
        identity: Identity,
        scope: Scope,
    ) -> Outcome:
        try:
            client = await self.clients.get_client(request.client_id)
        except Exception:
            logger.exception("client lookup failed for %s", request.client_id)
            client = None
        if client is None:
            _audit("authorize_denied", reason="unauthorized_client",
                   client_id=request.client_id)
            return InlineError(ErrorKind.UNAUTHORIZED_CLIENT.value)

        try:
            authorization = await self.grants.authorize_password(
                identity, client.internal_id, request.redirect_uri, scope)
        except AuthorizeError as e:
            return self._refused(request, e.error)
        except Exception:
            logger.exception("authorize_password failed for client %s", request.client_id)
            _audit("collaborator_failed", stage="authorize_password", client_id=request.client_id)
            return RedirectError(request.redirect_uri,
                                 ErrorKind.SERVER_ERROR.value, request.state)
        return await self._complete_or_step_up("token", authorization, request)

    def _refused(self, request: AuthorizationRequest, error: str) -> Outcome:
        _audit("authorize_denied", reason=error, client_id=request.client_id)
        if error == ErrorKind.UNAUTHORIZED_CLIENT.value:
            return InlineError(error)
        return RedirectError(request.redirect_uri, error, request.state)

    # --- Two-factor branch ---

    async def _complete_or_step_up(
        self,
        flow: str,
        authorization: Authorization,
        request: AuthorizationRequest,
    ) -> Outcome:
        owner = authorization.resource_owner
        redirect_uri = request.redirect_uri or authorization.redirect_uri
        if not redirect_uri:
            # Nowhere to deliver a code or token.
            _audit("authorize_denied", reason="no_redirect_uri",
                   client_id=authorization.client_id)
            return RedirectError(None, ErrorKind.INVALID_REQUEST.value, request.state)
        try:
            factors = await self.users.second_factors(owner)
        except Exception:
            logger.exception("second factor lookup failed for %s", owner)
            _audit("collaborator_failed", stage="second_factors")
            return RedirectError(redirect_uri, ErrorKind.SERVER_ERROR.value, request.state)

        if not factors:
            return await self._issue(flow, authorization, redirect_uri, request.state)

        if not self.settings.step_up_enabled:
            logger.warning("owner %s has second factors but step-up is not configured", owner)
            _audit("step_up_disabled", client_id=authorization.client_id)
            return RedirectError(redirect_uri, ErrorKind.ACCESS_DENIED.value, request.state)

        context = StepUpContext(
            flow=flow,
            owner_id=owner,
            authorization=authorization,
            state=request.state,
            redirect_uri=redirect_uri,
        )
        pending = encode_step_up(context, self.settings.step_up_secret, self.settings.step_up_ttl)
        _audit("step_up_required", flow=flow, client_id=authorization.client_id,
               factors=len(factors))
        return RedirectStepUp(
            flow=flow,
            owner_id=owner,
            authorization=authorization,
            state=request.state,
            redirect_uri=redirect_uri,
            step_up_url=self.settings.step_up_url,
            pending=pending,
        )

    async def resume_step_up(self, pending: str) -> Outcome:
        """Finish a grant that was parked behind a second-factor challenge.

        Called by the step-up flow once the second factor has been verified.
        """
        if not self.settings.step_up_enabled:
            return InlineError(ErrorKind.ACCESS_DENIED.value)
        try:
            context = decode_step_up(pending, self.settings.step_up_secret)
        except jwt.InvalidTokenError as e:
            _audit("step_up_rejected", reason=str(e))
            return InlineError(ErrorKind.ACCESS_DENIED.value)

        try:
            claimed = await self.grants.claim_step_up(context.jti, context.expires_at)
        except Exception:
            logger.exception("step-up claim failed for %s", context.owner_id)
            _audit("collaborator_failed", stage="claim_step_up")
            claimed = False
        if not claimed:
            _audit("step_up_rejected", reason="already_used",
                   client_id=context.authorization.client_id)
            return InlineError(ErrorKind.ACCESS_DENIED.value)
        return await self._issue(context.flow, context.authorization,
                                 context.redirect_uri, context.state)

    async def _issue(
        self,
        flow: str,
        authorization: Authorization,
        redirect_uri: str | None,
        state: str | None,
    ) -> Outcome:
        try:
            if flow == "code":
                code = await self.grants.issue_code(authorization)
            else:
                token = await self.grants.issue_token(authorization)
        except Exception:
            logger.exception("issue_%s failed for client %s", flow, authorization.client_id)
            _audit("collaborator_failed", stage=f"issue_{flow}",
                   client_id=authorization.client_id)
            return RedirectError(redirect_uri, ErrorKind.SERVER_ERROR.value, state)

        if flow == "code":
            _audit("code_issued", client_id=authorization.client_id)
            return RedirectCode(redirect_uri, code, state)

        _audit("token_issued", client_id=authorization.client_id,
               expires_in=token.expires_in)
        return RedirectToken(
            redirect_uri=redirect_uri,
            access_token=token.access_token,
            token_type=token.token_type,
            expires_in=token.expires_in,
            granted_scope=token.scope,
            state=state,
        )
