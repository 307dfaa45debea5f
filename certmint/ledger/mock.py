# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""In-process settlement ledger for development and tests.

Performs the collaborator's own checks independently of the workflow:
signature re-verification under its signing domain, certifier
authorization and expiry.

Settlement is idempotent per requestId and signature: resubmitting the
exact certification that already settled returns the original receipt
without issuing credits again. A different submission for a settled
request is refused as AlreadySettled.
"""
import asyncio
import hashlib
import logging
import time
from typing import Callable, Dict, Iterable, Optional, Tuple

from eth_utils import to_checksum_address

from certmint.codec import (
    CertificationCodec,
    CertificationPayload,
    SigningDomain,
    TypedDataCodec,
    default_domain,
)
from certmint.exceptions import SettlementRejectedError, SignatureInvalidError
from certmint.ledger.base import SettlementLedger, SettlementReceipt, idempotency_key
from certmint.models import SettlementRejection

log = logging.getLogger(__name__)

GENESIS_BLOCK = 1_000_000


class MockLedger(SettlementLedger):
    """Ledger collaborator that settles in memory.

    ``certifiers`` is the set of addresses holding certifier authority on
    the ledger; ``None`` accepts any correctly signed certification.
    """

    def __init__(
        self,
        domain: Optional[SigningDomain] = None,
        certifiers: Optional[Iterable[str]] = None,
        codec: Optional[CertificationCodec] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.domain = domain or default_domain()
        self.codec = codec or TypedDataCodec()
        self.certifiers = (
            {to_checksum_address(c) for c in certifiers} if certifiers is not None else None
        )
        self._clock = clock or (lambda: int(time.time()))
        self._settled: Dict[int, SettlementReceipt] = {}
        self._submissions: Dict[int, Tuple[CertificationPayload, str]] = {}
        self._minted: Dict[str, int] = {}
        self._block = GENESIS_BLOCK
        self._lock = asyncio.Lock()

    def minted_amount(self, producer: str) -> int:
        """Total credits settled to ``producer``."""
        return self._minted.get(to_checksum_address(producer), 0)

    def receipt_for(self, request_id: int) -> Optional[SettlementReceipt]:
        return self._settled.get(request_id)

    async def settle(self, payload: CertificationPayload, signature: str) -> SettlementReceipt:
        key = idempotency_key(payload.request_id, signature)
        async with self._lock:
            if payload.request_id in self._settled:
                if self._submissions[payload.request_id] == (payload, key):
                    log.info(
                        "Mock ledger replayed settled certification",
                        extra={"request_id": payload.request_id},
                    )
                    return self._settled[payload.request_id]
                raise SettlementRejectedError(
                    SettlementRejection.ALREADY_SETTLED.value,
                    f"request {payload.request_id} already settled",
                )
            try:
                signer = self.codec.verify(self.domain, payload, signature)
            except SignatureInvalidError as e:
                raise SettlementRejectedError(SettlementRejection.BAD_SIGNATURE.value, e.message)
            if self.certifiers is not None and signer not in self.certifiers:
                raise SettlementRejectedError(
                    SettlementRejection.INSUFFICIENT_AUTHORIZATION.value,
                    "signer does not hold certifier authority",
                )
            now = self._clock()
            if now > payload.expiry:
                raise SettlementRejectedError(
                    SettlementRejection.EXPIRED.value, f"expired at {payload.expiry}"
                )

            self._block += 1
            tx_hash = "0x" + hashlib.sha256(
                f"{payload.request_id}:{signature}:{self._block}".encode("utf-8")
            ).hexdigest()
            receipt = SettlementReceipt(settlement_ref=tx_hash, block_number=self._block)
            self._settled[payload.request_id] = receipt
            self._submissions[payload.request_id] = (payload, key)
            producer = to_checksum_address(payload.producer)
            self._minted[producer] = self._minted.get(producer, 0) + payload.amount

        log.info(
            "Mock ledger settled certification",
            extra={"request_id": payload.request_id, "block_number": receipt.block_number},
        )
        return receipt
