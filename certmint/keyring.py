# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""Custody of certifier signing keys.

Keys are loaded once from ``CERTMINT_CERTIFIER_KEYS`` (inline JSON object
mapping address to private key) or ``CERTMINT_CERTIFIER_KEYS_FILE``. Each
key must derive to the address it is registered under.

Access goes through :meth:`SignerKeyring.signer`, which holds a per-address
lock for the duration of one signature. Keys never appear in logs or
reprs.
"""
import json
import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List, Mapping, Optional, Union

from eth_account import Account
from eth_utils import is_address, to_checksum_address

import certmint.config as _config
from certmint.exceptions import SignerUnavailableError

log = logging.getLogger(__name__)

KeyMaterial = Union[str, bytes]


class SignerKeyring:
    """Registry of certifier private keys, keyed by checksummed address."""

    def __init__(self, keys: Optional[Mapping[str, KeyMaterial]] = None):
        self._keys: Dict[str, bytes] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()
        for address, key in (keys or {}).items():
            self.add(address, key)

    def add(self, address: str, key: KeyMaterial) -> str:
        """Register ``key`` for ``address``.

        Raises:
            ValueError: If the address is malformed or the key derives to a
                different address.
        """
        if not is_address(address):
            raise ValueError(f"Invalid certifier address: {address!r}")
        expected = to_checksum_address(address)
        account = Account.from_key(key)
        if account.address != expected:
            raise ValueError(f"Signing key for {expected} derives to a different address")
        with self._registry_lock:
            self._keys[expected] = bytes(account.key)
            self._locks.setdefault(expected, threading.Lock())
        log.info("Registered certifier signing key", extra={"certifier": expected})
        return expected

    def has(self, address: str) -> bool:
        return is_address(address) and to_checksum_address(address) in self._keys

    @property
    def addresses(self) -> List[str]:
        return sorted(self._keys)

    @contextmanager
    def signer(self, address: str) -> Iterator[bytes]:
        """Exclusive, short-lived access to the key for ``address``."""
        if not self.has(address):
            raise SignerUnavailableError.for_certifier(address)
        checksum = to_checksum_address(address)
        with self._locks[checksum]:
            yield self._keys[checksum]

    def __repr__(self) -> str:
        return f"SignerKeyring(addresses={self.addresses!r})"

    @classmethod
    def from_config(cls) -> "SignerKeyring":
        """Build a keyring from the configured inline JSON or key file."""
        raw = _config.CERTIFIER_KEYS_JSON
        if not raw and _config.CERTIFIER_KEYS_FILE:
            path = Path(_config.CERTIFIER_KEYS_FILE)
            if not path.exists():
                raise ValueError(f"Certifier keys file not found: {path}")
            raw = path.read_text()
        if not raw:
            log.warning("No certifier signing keys configured; certification will fail")
            return cls()
        try:
            keys = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ValueError(f"Certifier keys are not valid JSON: {e.msg}") from e
        if not isinstance(keys, dict):
            raise ValueError("Certifier keys must be a JSON object of address -> key")
        return cls(keys)


# Module-level singleton
_keyring: Optional[SignerKeyring] = None


def get_keyring() -> SignerKeyring:
    """Get or create the keyring singleton."""
    global _keyring
    if _keyring is None:
        _keyring = SignerKeyring.from_config()
    return _keyring


def reset_keyring() -> None:
    """Reset the singleton (for testing)."""
    global _keyring
    _keyring = None
