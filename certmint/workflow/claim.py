# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""Claim-mint workflow controller.

The only operation that crosses into the settlement ledger. Local state
moves to MINTED only after the ledger confirms; a rejection or an unknown
outcome leaves the request CERTIFIED so the producer may retry.
"""
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from sqlalchemy.orm import Session

from certmint.audit import AuditLogger, get_audit_logger
from certmint.codec import CertificationPayload
from certmint.directory import normalize_wallet
from certmint.exceptions import ExpiredError, ForbiddenError, InvalidStateError
from certmint.ledger import SettlementLedger, SettlementReceipt, get_ledger
from certmint.models import RequestStatus
from certmint.store import ProductionRequest, ProductionRequestStore

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClaimResult:
    request: ProductionRequest
    receipt: SettlementReceipt


def certification_payload(request: ProductionRequest) -> CertificationPayload:
    """Re-derive the signed payload from the stored request fields."""
    return CertificationPayload(
        producer=request.producer,
        amount=request.amount,
        request_id=request.request_id,
        expiry=request.expiry,
        certifier=request.certifier,
    )


class ClaimWorkflow:
    """Settle a CERTIFIED request on the ledger and record it as MINTED."""

    def __init__(
        self,
        db: Session,
        ledger: Optional[SettlementLedger] = None,
        clock: Optional[Callable[[], int]] = None,
        audit: Optional[AuditLogger] = None,
    ):
        self.store = ProductionRequestStore(db)
        self.ledger = ledger or get_ledger()
        self.clock = clock or (lambda: int(time.time()))
        self.audit = audit or get_audit_logger()

    async def claim_mint(self, request_id: int, acting_producer: str) -> ClaimResult:
        """Claim the credit for ``request_id`` on behalf of its producer.

        Raises:
            NotFoundError: No such request.
            ForbiddenError: The caller is not the request's producer.
            InvalidStateError: The request is not CERTIFIED.
            ExpiredError: The certification expired before the claim.
            SettlementRejectedError: The ledger refused; status unchanged.
            SettlementUnknownError: Outcome unknown; status unchanged.
        """
        with self.audit.invocation("request.claim", acting_producer, request_id) as detail:
            actor = detail["actor"] = normalize_wallet(acting_producer)
            request = self.store.require(request_id)
            if actor != request.producer:
                raise ForbiddenError.not_producer()
            if request.status != RequestStatus.CERTIFIED:
                raise InvalidStateError.transition(
                    request_id, request.status.value, RequestStatus.MINTED.value
                )

            # The same instant governs the expiry check and the MINTED write.
            now = self.clock()
            if now > request.expiry:
                raise ExpiredError.certification(request_id, request.expiry, now)

            receipt = await self.ledger.settle(
                certification_payload(request), request.certification_signature
            )
            detail.update(settlement_ref=receipt.settlement_ref, block_number=receipt.block_number)

            minted = self.store.transition_to_minted(request_id, receipt, now)
            return ClaimResult(request=minted, receipt=receipt)
