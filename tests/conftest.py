# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""Shared test fixtures for the CertMint test suite.

Every test that touches persistence gets an isolated SQLite database in
``tmp_path``: the fixture points ``CERTMINT_DATABASE_URL`` at it and
reloads ``certmint.config`` and ``certmint.db.session`` so the engine is
rebuilt. Signing uses real secp256k1 keys with fixed private keys so that
wallet addresses are stable across runs.
"""

from __future__ import annotations

import importlib
from typing import Dict, Iterator

import pytest
from eth_account import Account
from eth_account.signers.local import LocalAccount

from certmint.audit import reset_audit_logger
from certmint.keyring import SignerKeyring, reset_keyring
from certmint.ledger import reset_ledger


# =========================================================================
# Deterministic accounts
# =========================================================================

def _account(byte: int) -> LocalAccount:
    return Account.from_key("0x" + f"{byte:02x}" * 32)


@pytest.fixture(scope="session")
def accounts() -> Dict[str, LocalAccount]:
    """Named wallets used across the hierarchy fixtures."""
    return {
        "country_admin": _account(0x01),
        "state_admin": _account(0x02),
        "mumbai_admin": _account(0x03),
        "pune_admin": _account(0x04),
        "producer": _account(0x05),
        "producer2": _account(0x06),
        "pune_producer": _account(0x07),
        "buyer": _account(0x08),
        "auditor": _account(0x09),
        "unverified_admin": _account(0x0A),
        "outsider": _account(0x0B),
    }


# =========================================================================
# Clock
# =========================================================================

class FakeClock:
    """Injectable unix-seconds clock."""

    def __init__(self, now: int = 1_700_000_000):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# =========================================================================
# Environment and database
# =========================================================================

@pytest.fixture
def certmint_env(tmp_path, monkeypatch) -> Iterator[None]:
    """Point CertMint at an isolated SQLite database and reset singletons."""
    db_path = tmp_path / "certmint.db"
    monkeypatch.setenv("CERTMINT_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("CERTMINT_DATABASE_URL", f"sqlite:///{db_path}")
    monkeypatch.setenv("CERTMINT_LOG_FORMAT", "text")
    monkeypatch.delenv("CERTMINT_AUTH_TOKEN", raising=False)
    monkeypatch.delenv("CERTMINT_CERTIFIER_KEYS", raising=False)
    monkeypatch.delenv("CERTMINT_CERTIFIER_KEYS_FILE", raising=False)
    monkeypatch.delenv("CERTMINT_REJECT_DUPLICATES", raising=False)
    monkeypatch.delenv("CERTMINT_LEDGER_MODE", raising=False)

    import certmint.config as config_module
    importlib.reload(config_module)
    import certmint.db.session as session_module
    importlib.reload(session_module)
    session_module.init_database()

    reset_audit_logger()
    reset_keyring()
    reset_ledger()

    yield

    reset_audit_logger()
    reset_keyring()
    reset_ledger()
    session_module.engine.dispose()
    monkeypatch.undo()
    importlib.reload(config_module)


@pytest.fixture
def db(certmint_env):
    """A session on the isolated test database."""
    import certmint.db.session as session_module

    session = session_module.SessionLocal()
    try:
        yield session
    finally:
        session.close()


# =========================================================================
# Identity hierarchy
# =========================================================================

def hierarchy_entries(accounts: Dict[str, LocalAccount]) -> list:
    """Identity rows for a small two-city hierarchy in one state."""
    india = {"country": "India"}
    maharashtra = {**india, "state": "Maharashtra"}
    mumbai = {**maharashtra, "city": "Mumbai"}
    pune = {**maharashtra, "city": "Pune"}
    return [
        {"wallet": accounts["country_admin"].address, "role": "COUNTRY_ADMIN", **india},
        {"wallet": accounts["state_admin"].address, "role": "STATE_ADMIN", **maharashtra},
        {"wallet": accounts["mumbai_admin"].address, "role": "CITY_ADMIN", **mumbai},
        {"wallet": accounts["pune_admin"].address, "role": "CITY_ADMIN", **pune},
        {"wallet": accounts["producer"].address, "role": "PRODUCER", **mumbai},
        {"wallet": accounts["producer2"].address, "role": "PRODUCER", **mumbai},
        {"wallet": accounts["pune_producer"].address, "role": "PRODUCER", **pune},
        {"wallet": accounts["buyer"].address, "role": "BUYER", **mumbai},
        {"wallet": accounts["auditor"].address, "role": "AUDITOR"},
    ]


@pytest.fixture
def hierarchy(db, accounts):
    """Seed verified identities plus one unverified city admin."""
    from certmint.db.models import IdentityRecord
    from certmint.directory import seed_bootstrap_admins

    seed_bootstrap_admins(db, hierarchy_entries(accounts))
    db.add(IdentityRecord(
        wallet=accounts["unverified_admin"].address,
        role="CITY_ADMIN",
        country="India",
        state="Maharashtra",
        city="Mumbai",
        verified=False,
    ))
    db.commit()
    return accounts


@pytest.fixture
def keyring(accounts) -> SignerKeyring:
    """Keyring holding every city admin's signing key."""
    return SignerKeyring({
        accounts["mumbai_admin"].address: accounts["mumbai_admin"].key,
        accounts["pune_admin"].address: accounts["pune_admin"].key,
        accounts["unverified_admin"].address: accounts["unverified_admin"].key,
    })

