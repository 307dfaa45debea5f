# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""Health check endpoints.

- /livez   -- Liveness: is the process alive? Always 200.
- /healthz -- Readiness: is the database reachable? 200 or 503.
- /version -- Service version and git commit.
"""
import logging
import os

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

import certmint
import certmint.config as _config

router = APIRouter(tags=["health"])
log = logging.getLogger(__name__)


@router.get("/livez")
async def livez():
    """Liveness probe -- always returns 200."""
    return {"status": "alive"}


@router.get("/healthz")
async def healthz():
    """Readiness probe -- checks database connectivity."""
    from certmint.db import session as session_module
    from certmint.keyring import get_keyring

    try:
        with session_module.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        log.error(f"Health check failed: {e}")
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "database": False},
        )

    return {
        "status": "ok",
        "database": True,
        "ledger_mode": _config.LEDGER_MODE,
        "certifier_keys": len(get_keyring().addresses),
    }


@router.get("/version")
def version():
    """Return service version with GitHub commit link."""
    git_sha = os.getenv("GIT_SHA", "unknown")
    repo = os.getenv("GITHUB_REPOSITORY", "")

    result = {"service": "certmint", "version": certmint.__version__, "git_sha": git_sha}
    if git_sha != "unknown":
        result["short_sha"] = git_sha[:7]
        if repo:
            result["github_url"] = f"https://github.com/{repo}/commit/{git_sha}"
    return result
