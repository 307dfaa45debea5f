# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""Settlement ledger collaborator.

``CERTMINT_LEDGER_MODE=http`` selects :class:`LedgerClient`; ``mock``
selects the in-process :class:`MockLedger`.
"""
import logging
from typing import Optional

import certmint.config as _config
from certmint.ledger.base import SettlementLedger, SettlementReceipt, idempotency_key
from certmint.ledger.client import CircuitBreaker, LedgerClient
from certmint.ledger.mock import MockLedger

log = logging.getLogger(__name__)

__all__ = [
    "CircuitBreaker",
    "LedgerClient",
    "MockLedger",
    "SettlementLedger",
    "SettlementReceipt",
    "close_ledger",
    "get_ledger",
    "idempotency_key",
    "reset_ledger",
]

_ledger: Optional[SettlementLedger] = None


def get_ledger() -> SettlementLedger:
    """Get or create the ledger collaborator singleton."""
    global _ledger
    if _ledger is None:
        if _config.LEDGER_MODE == "http":
            _ledger = LedgerClient(
                base_url=_config.LEDGER_URL,
                auth_token=_config.LEDGER_AUTH_TOKEN,
                timeout=_config.LEDGER_TIMEOUT_SECONDS,
                connect_timeout=_config.LEDGER_CONNECT_TIMEOUT_SECONDS,
            )
            log.info(f"Using HTTP settlement ledger at {_config.LEDGER_URL}")
        else:
            from certmint.keyring import get_keyring
            _ledger = MockLedger(certifiers=get_keyring().addresses)
            log.info("Using in-process mock settlement ledger")
    return _ledger


def reset_ledger() -> None:
    """Reset the singleton (for testing)."""
    global _ledger
    _ledger = None


async def close_ledger() -> None:
    """Close the collaborator (call during shutdown)."""
    global _ledger
    if _ledger is not None:
        await _ledger.close()
        _ledger = None
