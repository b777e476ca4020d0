#!/usr/bin/env python3
"""
Gatehouse — OAuth2 authorization endpoint server.

Serves the authorization endpoint (GET → login/consent form, POST → code,
token, step-up redirect or error) over HTTP with Starlette + uvicorn.
Clients, users, scopes and second factors come from the in-memory backend,
seeded from a YAML config file:

    endpoint:
      form_target: /oauth/authorize
      step_up_url: https://login.example.com/step-up
    backend:
      clients:
        webapp: {name: Web App, redirect_uris: [https://app.example.com/cb]}
      users:
        u-1: {username: alice, password_sha256: <hex>, second_factors: []}
      scopes:
        profile: Read your profile

Environment overrides: GATEHOUSE_CONFIG, GATEHOUSE_FORM_TARGET,
GATEHOUSE_STEP_UP_URL, GATEHOUSE_STEP_UP_SECRET.
"""

import argparse
import logging
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError
from starlette.applications import Starlette
from starlette.routing import Route

from gatehouse_memory import MemoryBackend
from gatehouse_oauth import AuthorizationEndpoint, EndpointSettings
from gatehouse_pages import LoginFormRenderer

logger = logging.getLogger("gatehouse")

AUTHORIZE_PATH = "/oauth/authorize"

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

_ENV_OVERRIDES = {
    "GATEHOUSE_FORM_TARGET": "form_target",
    "GATEHOUSE_STEP_UP_URL": "step_up_url",
    "GATEHOUSE_STEP_UP_SECRET": "step_up_secret",
}


def _load_raw_config(config_path: Path | None) -> dict[str, Any]:
    if config_path is None:
        return {}
    if not config_path.exists():
        raise SystemExit(f"Config not found: {config_path}")
    with open(config_path) as f:
        raw = yaml.safe_load(f)
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise SystemExit(f"Invalid config: expected a mapping at the top level of {config_path}")
    return raw


def load_settings(
    raw: dict[str, Any],
    environ: dict[str, str] | None = None,
) -> EndpointSettings:
    """Endpoint settings from the ``endpoint:`` section plus env overrides."""
    environ = os.environ if environ is None else environ
    section = dict(raw.get("endpoint") or {})
    for var, key in _ENV_OVERRIDES.items():
        if environ.get(var):
            section[key] = environ[var]
    try:
        settings = EndpointSettings(**section)
    except ValidationError as e:
        raise SystemExit(f"Invalid endpoint config: {e}")
    if settings.step_up_url and not settings.step_up_secret:
        logger.warning("step_up_url is set without step_up_secret; "
                       "owners with second factors will be denied")
    return settings


def load_backend(raw: dict[str, Any]) -> MemoryBackend:
    try:
        return MemoryBackend.from_config(raw.get("backend") or {})
    except (ValueError, AttributeError) as e:
        raise SystemExit(f"Invalid backend config: {e}")


def build_endpoint(settings: EndpointSettings, backend: MemoryBackend) -> AuthorizationEndpoint:
    return AuthorizationEndpoint(
        settings,
        tokens=backend,
        clients=backend,
        users=backend,
        grants=backend,
        scopes=backend,
        renderer=LoginFormRenderer(),
    )


def create_app(endpoint: AuthorizationEndpoint) -> Starlette:
    return Starlette(routes=[
        Route(AUTHORIZE_PATH, endpoint.handle, methods=["GET", "POST"]),
    ])


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Gatehouse OAuth2 authorization endpoint")
    parser.add_argument("--config", type=Path,
                        default=os.environ.get("GATEHOUSE_CONFIG") or None)
    parser.add_argument("--port", type=int, default=8333)
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--audit-log", type=Path, default=None,
                        help="write JSON-lines audit events to this file")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )

    if args.audit_log:
        args.audit_log.parent.mkdir(parents=True, exist_ok=True)
        audit_handler = logging.FileHandler(args.audit_log)
        audit_handler.setFormatter(logging.Formatter("%(message)s"))
        audit_logger = logging.getLogger("gatehouse-audit")
        audit_logger.addHandler(audit_handler)
        audit_logger.setLevel(logging.INFO)
        audit_logger.propagate = False

    raw = _load_raw_config(args.config)
    settings = load_settings(raw)
    backend = load_backend(raw)
    app = create_app(build_endpoint(settings, backend))

    import uvicorn

    logger.info("gatehouse: %d clients, %d users, step-up %s",
                len(backend.clients), len(backend.users),
                "enabled" if settings.step_up_enabled else "disabled")
    logger.info("gatehouse: starting HTTP server on %s:%d", args.host, args.port)
    uvicorn.run(app, host=args.host, port=args.port, log_level="info",
                proxy_headers=True, forwarded_allow_ips="*")


if __name__ == "__main__":
    main()
