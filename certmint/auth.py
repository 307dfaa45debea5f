# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""Caller authentication for the CertMint API.

Two layers:

- Bearer token middleware for inter-service calls from the gateway
  (CERTMINT_AUTH_TOKEN). Probe endpoints are exempt.
- The acting wallet, established by the gateway after login, arrives in
  the ``X-Acting-Wallet`` header and is exposed as a FastAPI dependency.
"""
import hmac
import logging

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

import certmint.config as _config
from certmint.directory import normalize_wallet
from certmint.exceptions import UnauthenticatedError
from certmint.models import ErrorCode, make_error

log = logging.getLogger(__name__)

# Paths exempt from bearer token auth (health probes)
EXEMPT_PATHS: set[str] = {"/livez", "/healthz", "/version"}


def _unauthorized(message: str) -> JSONResponse:
    return JSONResponse(
        status_code=401,
        content=make_error(ErrorCode.UNAUTHENTICATED.value, message).model_dump(),
        headers={"WWW-Authenticate": "Bearer"},
    )


class BearerTokenMiddleware(BaseHTTPMiddleware):
    """Validates bearer token on all non-exempt requests.

    If CERTMINT_AUTH_TOKEN is empty, auth is disabled (development mode).
    The token is read from config at request time so that config reloads
    in tests take effect.
    """

    async def dispatch(self, request: Request, call_next):
        if request.url.path in EXEMPT_PATHS:
            return await call_next(request)

        auth_token = _config.AUTH_TOKEN
        if not auth_token:
            return await call_next(request)

        auth_header = request.headers.get("authorization", "")
        if not auth_header.startswith("Bearer "):
            return _unauthorized("Missing or invalid Authorization header")

        token = auth_header[7:]
        if not hmac.compare_digest(token.encode(), auth_token.encode()):
            client = request.client.host if request.client else "unknown"
            log.warning(f"Invalid bearer token from {client}")
            return _unauthorized("Invalid bearer token")

        return await call_next(request)


def get_acting_wallet(request: Request) -> str:
    """FastAPI dependency: checksummed wallet of the authenticated caller."""
    value = request.headers.get(_config.ACTING_WALLET_HEADER, "").strip()
    if not value:
        raise UnauthenticatedError(f"Missing {_config.ACTING_WALLET_HEADER} header")
    return normalize_wallet(value)
