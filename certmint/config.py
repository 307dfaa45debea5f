# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""CertMint service configuration.

Protocol constants are fixed. Operational defaults may be overridden via
``CERTMINT_*`` environment variables. Modules that must observe config
changes made by test fixtures read these values through the module
(``import certmint.config as _config``) rather than binding them at import.
"""

import json
import os
from pathlib import Path
from typing import Any


# =============================================================================
# PROTOCOL CONSTANTS (fixed)
# =============================================================================

# EIP-712 struct name and field order of the certification payload.
CERTIFICATION_TYPE_NAME: str = "Certification"
EVIDENCE_FINGERPRINT_VERSION: int = 1


# =============================================================================
# SIGNING DOMAIN
# =============================================================================

DOMAIN_NAME: str = os.getenv("CERTMINT_DOMAIN_NAME", "CertMint")
DOMAIN_VERSION: str = os.getenv("CERTMINT_DOMAIN_VERSION", "1")
CHAIN_ID: int = int(os.getenv("CERTMINT_CHAIN_ID", "31337"))
# Optional: address of the settlement contract the signature is bound to
VERIFYING_CONTRACT: str = os.getenv("CERTMINT_VERIFYING_CONTRACT", "")


# =============================================================================
# PERSISTENCE
# =============================================================================

def _get_data_dir() -> Path:
    """Determine data directory.

    Priority:
    1. CERTMINT_DATA_DIR env var (explicit override)
    2. ~/.certmint (local development)
    """
    env_path = os.getenv("CERTMINT_DATA_DIR")
    if env_path:
        return Path(env_path)
    return Path.home() / ".certmint"


DATA_DIR: Path = _get_data_dir()

DATABASE_URL: str = os.getenv(
    "CERTMINT_DATABASE_URL",
    f"sqlite:///{DATA_DIR}/certmint.db",
)


# =============================================================================
# WORKFLOW POLICY
# =============================================================================

DEFAULT_TTL_SECONDS: int = int(os.getenv("CERTMINT_DEFAULT_TTL_SECONDS", "3600"))
MIN_TTL_SECONDS: int = int(os.getenv("CERTMINT_MIN_TTL_SECONDS", "1"))
MAX_TTL_SECONDS: int = int(os.getenv("CERTMINT_MAX_TTL_SECONDS", str(30 * 24 * 3600)))

MAX_AMOUNT_KG: int = int(os.getenv("CERTMINT_MAX_AMOUNT_KG", "1000000"))
MAX_PENDING_PER_PRODUCER: int = int(os.getenv("CERTMINT_MAX_PENDING_PER_PRODUCER", "5"))

# When true, a certification attempt that hits a duplicate batch moves the
# request to REJECTED instead of leaving it PENDING.
REJECT_DUPLICATES: bool = os.getenv("CERTMINT_REJECT_DUPLICATES", "false").lower() == "true"


# =============================================================================
# SIGNING MATERIAL
# =============================================================================

# Inline JSON object {"0xCertifierAddress": "0xprivatekey", ...}.
# Takes precedence over CERTIFIER_KEYS_FILE.
CERTIFIER_KEYS_JSON: str = os.getenv("CERTMINT_CERTIFIER_KEYS", "")
CERTIFIER_KEYS_FILE: str = os.getenv("CERTMINT_CERTIFIER_KEYS_FILE", "")


# =============================================================================
# LEDGER COLLABORATOR
# =============================================================================

# "http" talks to LEDGER_URL; "mock" uses the in-process development ledger.
LEDGER_MODE: str = os.getenv("CERTMINT_LEDGER_MODE", "mock").lower()
LEDGER_URL: str = os.getenv("CERTMINT_LEDGER_URL", "http://localhost:8545")
LEDGER_AUTH_TOKEN: str = os.getenv("CERTMINT_LEDGER_AUTH_TOKEN", "")
LEDGER_TIMEOUT_SECONDS: float = float(os.getenv("CERTMINT_LEDGER_TIMEOUT", "15.0"))
LEDGER_CONNECT_TIMEOUT_SECONDS: float = float(os.getenv("CERTMINT_LEDGER_CONNECT_TIMEOUT", "5.0"))


# =============================================================================
# IDENTITY BOOTSTRAP
# =============================================================================

def _load_bootstrap_admins() -> list[dict[str, Any]]:
    """Parse CERTMINT_BOOTSTRAP_ADMINS (JSON list of identity objects)."""
    raw = os.getenv("CERTMINT_BOOTSTRAP_ADMINS", "")
    if not raw:
        return []
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        return []
    return data if isinstance(data, list) else []


BOOTSTRAP_ADMINS: list[dict[str, Any]] = _load_bootstrap_admins()


# =============================================================================
# NETWORK / AUTH
# =============================================================================

HTTP_HOST: str = os.getenv("CERTMINT_HTTP_HOST", "0.0.0.0")
HTTP_PORT: int = int(os.getenv("CERTMINT_HTTP_PORT", "8010"))

# Bearer token shared with the upstream gateway. Empty disables auth
# (development mode).
AUTH_TOKEN: str = os.getenv("CERTMINT_AUTH_TOKEN", "")

# Header carrying the authenticated wallet of the caller, set by the gateway.
ACTING_WALLET_HEADER: str = os.getenv("CERTMINT_ACTING_WALLET_HEADER", "X-Acting-Wallet")


# =============================================================================
# LOGGING
# =============================================================================

LOG_LEVEL: str = os.getenv("CERTMINT_LOG_LEVEL", "INFO")
LOG_FORMAT: str = os.getenv("CERTMINT_LOG_FORMAT", "json")
