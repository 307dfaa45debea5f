# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""Settlement ledger boundary.

The ledger collaborator receives exactly the certification payload and
its signature. It answers with a :class:`SettlementReceipt` or one of the
rejection reasons in :class:`~certmint.models.SettlementRejection`.
Implementations raise :class:`~certmint.exceptions.SettlementRejectedError`
for a definite refusal and :class:`~certmint.exceptions.SettlementUnknownError`
when the outcome cannot be known (timeout, outage).
"""
import hashlib
from abc import ABC, abstractmethod
from dataclasses import dataclass

from certmint.codec import CertificationPayload


@dataclass(frozen=True)
class SettlementReceipt:
    """Opaque settlement reference plus its position on the ledger."""

    settlement_ref: str
    block_number: int
    log_index: int = 0


def idempotency_key(request_id: int, signature: str) -> str:
    """Key under which a settlement submission may be safely retried."""
    return hashlib.sha256(f"{request_id}:{signature.lower()}".encode("utf-8")).hexdigest()


class SettlementLedger(ABC):
    """Collaborator that performs the authoritative credit issuance."""

    @abstractmethod
    async def settle(self, payload: CertificationPayload, signature: str) -> SettlementReceipt:
        """Submit a signed certification for settlement."""

    async def close(self) -> None:
        """Release any resources held by the collaborator."""
