# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""Production request store.

Authoritative record of each request's lifecycle::

    PENDING -> CERTIFIED -> MINTED
    PENDING -> REJECTED

Every transition is a single conditional ``UPDATE`` whose ``WHERE`` clause
carries the required source state. When no row changes, the store reads
the row back to classify the failure. The certify transition also embeds
the duplicate-batch predicate, and the partial unique index on
``evidence_fingerprint`` backs it up across concurrent transactions.
"""
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional, Sequence, Tuple

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

import certmint.config as _config
from certmint.db.models import ProductionRequestRecord
from certmint.duplicates import conflict_exists_clause
from certmint.exceptions import (
    DuplicateBatchError,
    ExpiredError,
    InvalidAmountError,
    InvalidRequestError,
    InvalidStateError,
    NotFoundError,
    PendingLimitExceededError,
)
from certmint.ledger.base import SettlementReceipt
from certmint.models import RequestStatus

log = logging.getLogger(__name__)

MAX_REJECTION_REASON = 500


@dataclass(frozen=True)
class ProductionRequest:
    """Read-only snapshot of a stored request."""

    request_id: int
    producer: str
    amount: int
    evidence_fingerprint: str
    document_hashes: List[str]
    status: RequestStatus
    certifier: Optional[str] = None
    certification_signature: Optional[str] = None
    expiry: Optional[int] = None
    rejection_reason: Optional[str] = None
    settlement_ref: Optional[str] = None
    settlement_block: Optional[int] = None
    settlement_index: Optional[int] = None
    created_at: Optional[datetime] = None
    certified_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    minted_at: Optional[datetime] = None


def _to_request(record: ProductionRequestRecord) -> ProductionRequest:
    return ProductionRequest(
        request_id=record.request_id,
        producer=record.producer,
        amount=record.amount,
        evidence_fingerprint=record.evidence_fingerprint,
        document_hashes=json.loads(record.document_hashes or "[]"),
        status=RequestStatus(record.status),
        certifier=record.certifier,
        certification_signature=record.certification_signature,
        expiry=record.expiry,
        rejection_reason=record.rejection_reason,
        settlement_ref=record.settlement_ref,
        settlement_block=record.settlement_block,
        settlement_index=record.settlement_index,
        created_at=record.created_at,
        certified_at=record.certified_at,
        rejected_at=record.rejected_at,
        minted_at=record.minted_at,
    )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProductionRequestStore:
    """Lifecycle persistence for production requests.

    Each write commits its own transaction on ``db``.
    """

    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _load(self, request_id: int) -> Optional[ProductionRequestRecord]:
        return (
            self.db.query(ProductionRequestRecord)
            .filter(ProductionRequestRecord.request_id == request_id)
            .populate_existing()
            .one_or_none()
        )

    def get(self, request_id: int) -> Optional[ProductionRequest]:
        record = self._load(request_id)
        return _to_request(record) if record is not None else None

    def require(self, request_id: int) -> ProductionRequest:
        request = self.get(request_id)
        if request is None:
            raise NotFoundError.request(request_id)
        return request

    def list(
        self,
        status: Optional[RequestStatus] = None,
        producer: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Tuple[List[ProductionRequest], int]:
        """Return one page of requests, newest first, and the total count."""
        query = self.db.query(ProductionRequestRecord)
        if status is not None:
            query = query.filter(ProductionRequestRecord.status == RequestStatus(status).value)
        if producer is not None:
            query = query.filter(ProductionRequestRecord.producer == producer)
        total = query.count()
        records = (
            query.order_by(ProductionRequestRecord.request_id.desc())
            .offset(max(page - 1, 0) * limit)
            .limit(limit)
            .all()
        )
        return [_to_request(r) for r in records], total

    def count_pending(self, producer: str) -> int:
        return (
            self.db.query(func.count(ProductionRequestRecord.request_id))
            .filter(
                ProductionRequestRecord.producer == producer,
                ProductionRequestRecord.status == RequestStatus.PENDING.value,
            )
            .scalar()
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(
        self,
        producer: str,
        amount: int,
        evidence_fingerprint: str,
        document_hashes: Sequence[str] = (),
    ) -> int:
        """Insert a PENDING request and return its store-assigned id."""
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise InvalidAmountError.not_positive(amount)
        if amount > _config.MAX_AMOUNT_KG:
            raise InvalidAmountError.too_large(amount, _config.MAX_AMOUNT_KG)

        limit = _config.MAX_PENDING_PER_PRODUCER
        if limit > 0 and self.count_pending(producer) >= limit:
            raise PendingLimitExceededError(limit)

        record = ProductionRequestRecord(
            producer=producer,
            amount=amount,
            evidence_fingerprint=evidence_fingerprint,
            document_hashes=json.dumps(list(document_hashes)),
            status=RequestStatus.PENDING.value,
        )
        self.db.add(record)
        self.db.commit()
        log.info(
            "Production request created",
            extra={"request_id": record.request_id, "producer": producer, "amount": amount},
        )
        return record.request_id

    def _execute_transition(self, stmt) -> int:
        try:
            result = self.db.execute(stmt.execution_options(synchronize_session=False))
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise
        return result.rowcount

    def transition_to_certified(
        self, request_id: int, certifier: str, signature: str, expiry: int
    ) -> ProductionRequest:
        """PENDING -> CERTIFIED, atomically guarded against duplicate batches.

        Raises:
            NotFoundError: No such request.
            InvalidStateError: The request is not PENDING.
            DuplicateBatchError: Another request with the same fingerprint
                is CERTIFIED or MINTED.
        """
        record = self._load(request_id)
        if record is None:
            raise NotFoundError.request(request_id)
        fingerprint = record.evidence_fingerprint

        stmt = (
            update(ProductionRequestRecord)
            .where(
                ProductionRequestRecord.request_id == request_id,
                ProductionRequestRecord.status == RequestStatus.PENDING.value,
                ~conflict_exists_clause(fingerprint, request_id),
            )
            .values(
                status=RequestStatus.CERTIFIED.value,
                certifier=certifier,
                certification_signature=signature,
                expiry=expiry,
                certified_at=_utcnow(),
            )
        )
        try:
            updated = self._execute_transition(stmt)
        except IntegrityError:
            log.info("Certification lost fingerprint race", extra={"request_id": request_id})
            raise DuplicateBatchError()

        if updated == 0:
            current = self._load(request_id)
            if current is None:
                raise NotFoundError.request(request_id)
            if current.status != RequestStatus.PENDING.value:
                raise InvalidStateError.transition(
                    request_id, current.status, RequestStatus.CERTIFIED.value
                )
            raise DuplicateBatchError()

        log.info(
            "Production request certified",
            extra={"request_id": request_id, "certifier": certifier, "expiry": expiry},
        )
        return self.require(request_id)

    def transition_to_minted(
        self, request_id: int, settlement: SettlementReceipt, now: int
    ) -> ProductionRequest:
        """CERTIFIED -> MINTED, provided the certification has not expired at ``now``."""
        stmt = (
            update(ProductionRequestRecord)
            .where(
                ProductionRequestRecord.request_id == request_id,
                ProductionRequestRecord.status == RequestStatus.CERTIFIED.value,
                ProductionRequestRecord.expiry >= now,
            )
            .values(
                status=RequestStatus.MINTED.value,
                settlement_ref=settlement.settlement_ref,
                settlement_block=settlement.block_number,
                settlement_index=settlement.log_index,
                minted_at=_utcnow(),
            )
        )
        if self._execute_transition(stmt) == 0:
            current = self._load(request_id)
            if current is None:
                raise NotFoundError.request(request_id)
            if current.status != RequestStatus.CERTIFIED.value:
                raise InvalidStateError.transition(
                    request_id, current.status, RequestStatus.MINTED.value
                )
            raise ExpiredError.certification(request_id, current.expiry, now)

        log.info(
            "Production request minted",
            extra={"request_id": request_id, "settlement_ref": settlement.settlement_ref},
        )
        return self.require(request_id)

    def transition_to_rejected(self, request_id: int, reason: str) -> ProductionRequest:
        """PENDING -> REJECTED with a free-text reason."""
        reason = (reason or "").strip()
        if not reason or len(reason) > MAX_REJECTION_REASON:
            raise InvalidRequestError(
                f"Rejection reason must be 1-{MAX_REJECTION_REASON} characters"
            )
        stmt = (
            update(ProductionRequestRecord)
            .where(
                ProductionRequestRecord.request_id == request_id,
                ProductionRequestRecord.status == RequestStatus.PENDING.value,
            )
            .values(
                status=RequestStatus.REJECTED.value,
                rejection_reason=reason,
                rejected_at=_utcnow(),
            )
        )
        if self._execute_transition(stmt) == 0:
            current = self._load(request_id)
            if current is None:
                raise NotFoundError.request(request_id)
            raise InvalidStateError.transition(
                request_id, current.status, RequestStatus.REJECTED.value
            )

        log.info("Production request rejected", extra={"request_id": request_id})
        return self.require(request_id)
