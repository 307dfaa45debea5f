# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.

"""Certification codec: canonical encoding, signing and signer recovery.

A certification payload ``{producer, amount, requestId, expiry, certifier}``
is signed as EIP-712 typed data under a signing domain that binds the
signature to one deployment (name, version, chain id and, optionally, the
settlement contract address).  The canonical bytes are the EIP-191
version-1 envelope::

    0x19 0x01 || domainSeparator || hashStruct(Certification)

Addresses are checksum-normalized before encoding, so two spellings of the
same address produce identical bytes.

The workflows depend only on :class:`CertificationCodec`; the typed-data
scheme can be replaced without touching them.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from eth_account import Account
from eth_account.messages import SignableMessage, encode_typed_data
from eth_keys.exceptions import BadSignature
from eth_utils import is_address, to_checksum_address

import certmint.config as _config
from certmint.exceptions import SignatureInvalidError

log = logging.getLogger(__name__)

SIGNATURE_LENGTH = 65

CERTIFICATION_FIELDS = [
    {"name": "producer", "type": "address"},
    {"name": "amount", "type": "uint256"},
    {"name": "requestId", "type": "uint256"},
    {"name": "expiry", "type": "uint256"},
    {"name": "certifier", "type": "address"},
]

_UINT256_MAX = 2**256 - 1


@dataclass(frozen=True)
class SigningDomain:
    """Deployment binding for certification signatures."""

    name: str
    version: str
    chain_id: int
    verifying_contract: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        domain: Dict[str, Any] = {
            "name": self.name,
            "version": self.version,
            "chainId": int(self.chain_id),
        }
        if self.verifying_contract:
            domain["verifyingContract"] = to_checksum_address(self.verifying_contract)
        return domain

    def type_fields(self) -> list:
        fields = [
            {"name": "name", "type": "string"},
            {"name": "version", "type": "string"},
            {"name": "chainId", "type": "uint256"},
        ]
        if self.verifying_contract:
            fields.append({"name": "verifyingContract", "type": "address"})
        return fields


def default_domain() -> SigningDomain:
    """Signing domain from the ``CERTMINT_DOMAIN_*`` / chain settings."""
    return SigningDomain(
        name=_config.DOMAIN_NAME,
        version=_config.DOMAIN_VERSION,
        chain_id=_config.CHAIN_ID,
        verifying_contract=_config.VERIFYING_CONTRACT or None,
    )


@dataclass(frozen=True)
class CertificationPayload:
    """The exact tuple that is signed at certification and re-derived at claim."""

    producer: str
    amount: int
    request_id: int
    expiry: int
    certifier: str

    def to_message(self) -> Dict[str, Any]:
        for label, value in (("producer", self.producer), ("certifier", self.certifier)):
            if not isinstance(value, str) or not is_address(value):
                raise SignatureInvalidError(f"Payload {label} is not an address: {value!r}")
        for label, value in (
            ("amount", self.amount), ("requestId", self.request_id), ("expiry", self.expiry),
        ):
            if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= _UINT256_MAX:
                raise SignatureInvalidError(f"Payload {label} is not a uint256: {value!r}")
        return {
            "producer": to_checksum_address(self.producer),
            "amount": self.amount,
            "requestId": self.request_id,
            "expiry": self.expiry,
            "certifier": to_checksum_address(self.certifier),
        }

    @classmethod
    def from_message(cls, message: Dict[str, Any]) -> "CertificationPayload":
        try:
            return cls(
                producer=message["producer"],
                amount=int(message["amount"]),
                request_id=int(message["requestId"]),
                expiry=int(message["expiry"]),
                certifier=message["certifier"],
            )
        except (KeyError, TypeError, ValueError) as e:
            raise SignatureInvalidError(f"Malformed certification payload: {e}") from e


def signature_to_hex(signature: bytes) -> str:
    return "0x" + bytes(signature).hex()


def signature_from_hex(signature: Union[str, bytes]) -> bytes:
    """Parse a 65-byte ``r || s || v`` signature.

    Raises
    ------
    SignatureInvalidError
        If the value is not hex or has the wrong length.
    """
    if isinstance(signature, (bytes, bytearray)):
        raw = bytes(signature)
    elif isinstance(signature, str):
        text = signature[2:] if signature[:2].lower() == "0x" else signature
        try:
            raw = bytes.fromhex(text)
        except ValueError as e:
            raise SignatureInvalidError("Signature is not valid hex") from e
    else:
        raise SignatureInvalidError("Signature must be a hex string")
    if len(raw) != SIGNATURE_LENGTH:
        raise SignatureInvalidError(
            f"Signature must be {SIGNATURE_LENGTH} bytes, got {len(raw)}"
        )
    return raw


class CertificationCodec(ABC):
    """Encode, sign and recover certification payloads."""

    @abstractmethod
    def encode(self, domain: SigningDomain, payload: CertificationPayload) -> bytes:
        """Canonical bytes covered by the signature."""

    @abstractmethod
    def sign(self, private_key: bytes, domain: SigningDomain, payload: CertificationPayload) -> str:
        """Sign ``payload`` and return the signature as 0x-hex."""

    @abstractmethod
    def recover(self, domain: SigningDomain, payload: CertificationPayload, signature: str) -> str:
        """Return the checksummed address that produced ``signature``."""

    def verify(self, domain: SigningDomain, payload: CertificationPayload, signature: str) -> str:
        """Recover the signer and require it to be ``payload.certifier``.

        A well-formed signature by anyone other than the named certifier
        is rejected, so a certifier cannot attribute a certification to
        someone else.
        """
        signer = self.recover(domain, payload, signature)
        if signer != to_checksum_address(payload.certifier):
            raise SignatureInvalidError(
                "Certification was not signed by the certifier named in the payload"
            )
        return signer


class TypedDataCodec(CertificationCodec):
    """EIP-712 typed-data codec over secp256k1."""

    def signable(self, domain: SigningDomain, payload: CertificationPayload) -> SignableMessage:
        return encode_typed_data(full_message={
            "types": {
                "EIP712Domain": domain.type_fields(),
                _config.CERTIFICATION_TYPE_NAME: CERTIFICATION_FIELDS,
            },
            "primaryType": _config.CERTIFICATION_TYPE_NAME,
            "domain": domain.to_dict(),
            "message": payload.to_message(),
        })

    def encode(self, domain: SigningDomain, payload: CertificationPayload) -> bytes:
        message = self.signable(domain, payload)
        return b"\x19" + message.version + message.header + message.body

    def sign(self, private_key: bytes, domain: SigningDomain, payload: CertificationPayload) -> str:
        signed = Account.sign_message(self.signable(domain, payload), private_key=private_key)
        return signature_to_hex(signed.signature)

    def recover(self, domain: SigningDomain, payload: CertificationPayload, signature: str) -> str:
        raw = signature_from_hex(signature)
        message = self.signable(domain, payload)
        try:
            signer = Account.recover_message(message, signature=raw)
        except (BadSignature, ValueError) as e:
            log.debug(f"Signature recovery failed: {e}")
            raise SignatureInvalidError("Signature could not be recovered") from e
        return to_checksum_address(signer)
