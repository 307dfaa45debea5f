# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.

"""CertMint FastAPI application.

Exposes production request submission, certification, rejection and
claim-mint, plus identity onboarding and verification.

The async lifespan context manager handles ordered startup and shutdown:

1. Configure structured logging.
2. Create database tables and seed bootstrap admins.
3. Load certifier signing keys and the ledger collaborator.
4. Yield (application serves requests).
5. Close the ledger collaborator.
"""

import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

import certmint
import certmint.config as _config
from certmint.auth import BearerTokenMiddleware
from certmint.exceptions import CertMintError
from certmint.ledger import close_ledger, get_ledger
from certmint.logging_config import configure_logging
from certmint.models import ERROR_HTTP_STATUS, make_error

logger = logging.getLogger("certmint.main")


# ======================================================================
# Application lifespan
# ======================================================================


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Ordered startup and shutdown of CertMint subsystems."""
    from certmint.db.session import get_db_session, init_database
    from certmint.directory import seed_bootstrap_admins
    from certmint.keyring import get_keyring

    configure_logging()
    logger.info("Starting CertMint service...")

    init_database()
    if _config.BOOTSTRAP_ADMINS:
        with get_db_session() as db:
            seed_bootstrap_admins(db, _config.BOOTSTRAP_ADMINS)

    keyring = get_keyring()
    get_ledger()
    logger.info(
        f"CertMint started: ledger_mode={_config.LEDGER_MODE} "
        f"certifier_keys={len(keyring.addresses)} chain_id={_config.CHAIN_ID}"
    )

    yield

    logger.info("Shutting down CertMint service...")
    await close_ledger()
    logger.info("CertMint service stopped")


app = FastAPI(
    title="CertMint",
    version=certmint.__version__,
    description="Production certification and claim-mint workflow service",
    lifespan=lifespan,
)


# ----------------------------------------------------------------------
# Authentication Middleware
# ----------------------------------------------------------------------

app.add_middleware(BearerTokenMiddleware)


# ----------------------------------------------------------------------
# Error mapping
# ----------------------------------------------------------------------


@app.exception_handler(CertMintError)
async def certmint_error_handler(request: Request, exc: CertMintError) -> JSONResponse:
    """Map typed workflow errors to ErrorDetail responses."""
    status_code = ERROR_HTTP_STATUS.get(exc.code, 500)
    if status_code >= 500:
        logger.warning(f"{request.method} {request.url.path} failed: {exc.code}: {exc.message}")
    return JSONResponse(
        status_code=status_code,
        content=make_error(exc.code, exc.message).model_dump(),
    )


# ----------------------------------------------------------------------
# API Routers
# ----------------------------------------------------------------------

from certmint.api import health, identities, requests  # noqa: E402

app.include_router(health.router)
app.include_router(requests.router)
app.include_router(identities.router)


# ----------------------------------------------------------------------
# Request Logging Middleware
# ----------------------------------------------------------------------


@app.middleware("http")
async def request_logging(request: Request, call_next):
    """Log all requests with timing."""
    start = time.time()
    response = await call_next(request)
    duration_ms = int((time.time() - start) * 1000)

    logger.info(
        f"request_complete status={response.status_code} duration_ms={duration_ms}",
        extra={
            "route": request.url.path,
            "method": request.method,
            "status": response.status_code,
        },
    )
    return response


def main() -> None:
    """Run CertMint using uvicorn.

    For production deployments, use uvicorn directly::

        uvicorn certmint.main:app --host 0.0.0.0 --port 8010
    """
    import uvicorn

    configure_logging()
    logger.info("Starting CertMint: HTTP=%s:%d", _config.HTTP_HOST, _config.HTTP_PORT)
    uvicorn.run(
        "certmint.main:app",
        host=_config.HTTP_HOST,
        port=_config.HTTP_PORT,
        log_level=_config.LOG_LEVEL.lower(),
        reload=False,
    )


if __name__ == "__main__":
    main()
