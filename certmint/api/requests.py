# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""Production request endpoints.

Submission, certification, rejection and claim-mint. Every endpoint acts
on behalf of the wallet in the ``X-Acting-Wallet`` header.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from certmint.audit import get_audit_logger
from certmint.auth import get_acting_wallet
from certmint.db.session import get_db
from certmint.directory import IdentityDirectory, normalize_wallet
from certmint.exceptions import ForbiddenError, NotFoundError
from certmint.keyring import SignerKeyring, get_keyring
from certmint.ledger import SettlementLedger, get_ledger
from certmint.models import (
    AuditEventView,
    AuditTrail,
    CertificationPayloadView,
    CertifyRequest,
    CertifyResponse,
    ClaimResponse,
    ProductionRequestList,
    ProductionRequestView,
    RejectRequest,
    RequestStatus,
    Role,
    SubmitProductionRequest,
)
from certmint.store import ProductionRequest, ProductionRequestStore
from certmint.workflow import CertificationWorkflow, ClaimWorkflow, submit_production

log = logging.getLogger(__name__)
router = APIRouter(prefix="/requests", tags=["requests"])

AUDIT_READER_ROLES = frozenset({
    Role.AUDITOR, Role.COUNTRY_ADMIN, Role.STATE_ADMIN, Role.CITY_ADMIN,
})


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _to_view(request: ProductionRequest) -> ProductionRequestView:
    return ProductionRequestView(
        request_id=request.request_id,
        producer=request.producer,
        amount=request.amount,
        evidence_fingerprint=request.evidence_fingerprint,
        status=request.status,
        certifier=request.certifier,
        certification_signature=request.certification_signature,
        expiry=request.expiry,
        rejection_reason=request.rejection_reason,
        settlement_ref=request.settlement_ref,
        settlement_block=request.settlement_block,
        created_at=_iso(request.created_at),
        certified_at=_iso(request.certified_at),
        minted_at=_iso(request.minted_at),
    )


def _readable(db: Session, request_id: int, actor: str) -> ProductionRequest:
    """Load a request the caller may see; producers see only their own."""
    identity = IdentityDirectory(db).require_actor(actor)
    request = ProductionRequestStore(db).require(request_id)
    if identity.role == Role.PRODUCER and request.producer != identity.wallet:
        raise NotFoundError.request(request_id)
    return request


@router.post("", response_model=ProductionRequestView, status_code=201)
async def submit_request(
    body: SubmitProductionRequest,
    actor: str = Depends(get_acting_wallet),
    db: Session = Depends(get_db),
) -> ProductionRequestView:
    """Submit production evidence; creates a PENDING request."""
    request = submit_production(db, actor, body.amount, body.document_hashes, body.metadata)
    return _to_view(request)


@router.get("", response_model=ProductionRequestList)
async def list_requests(
    status: Optional[RequestStatus] = Query(None),
    producer: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    actor: str = Depends(get_acting_wallet),
    db: Session = Depends(get_db),
) -> ProductionRequestList:
    """List requests. Producers are restricted to their own."""
    identity = IdentityDirectory(db).require_actor(actor)
    if identity.role == Role.PRODUCER:
        producer = identity.wallet
    elif producer is not None:
        producer = normalize_wallet(producer)

    requests, total = ProductionRequestStore(db).list(
        status=status, producer=producer, page=page, limit=limit
    )
    return ProductionRequestList(
        requests=[_to_view(r) for r in requests], page=page, limit=limit, total=total
    )


@router.get("/{request_id}", response_model=ProductionRequestView)
async def get_request(
    request_id: int,
    actor: str = Depends(get_acting_wallet),
    db: Session = Depends(get_db),
) -> ProductionRequestView:
    return _to_view(_readable(db, request_id, actor))


@router.post("/{request_id}/certify", response_model=CertifyResponse)
async def certify_request(
    request_id: int,
    body: Optional[CertifyRequest] = None,
    actor: str = Depends(get_acting_wallet),
    db: Session = Depends(get_db),
    keyring: SignerKeyring = Depends(get_keyring),
) -> CertifyResponse:
    """Certify a PENDING request as the acting certifying authority."""
    ttl = body.ttl_seconds if body is not None else None
    result = CertificationWorkflow(db, keyring=keyring).certify(request_id, actor, ttl)
    return CertifyResponse(
        request_id=request_id,
        status=RequestStatus.CERTIFIED,
        certification=CertificationPayloadView(**result.payload.to_message()),
        signature=result.signature,
    )


@router.post("/{request_id}/reject", response_model=ProductionRequestView)
async def reject_request(
    request_id: int,
    body: RejectRequest,
    actor: str = Depends(get_acting_wallet),
    db: Session = Depends(get_db),
    keyring: SignerKeyring = Depends(get_keyring),
) -> ProductionRequestView:
    rejected = CertificationWorkflow(db, keyring=keyring).reject(request_id, actor, body.reason)
    return _to_view(rejected)


@router.post("/{request_id}/claim", response_model=ClaimResponse)
async def claim_request(
    request_id: int,
    actor: str = Depends(get_acting_wallet),
    db: Session = Depends(get_db),
    ledger: SettlementLedger = Depends(get_ledger),
) -> ClaimResponse:
    """Settle a CERTIFIED request on the ledger and mark it MINTED."""
    result = await ClaimWorkflow(db, ledger=ledger).claim_mint(request_id, actor)
    return ClaimResponse(
        request_id=request_id,
        status=result.request.status,
        settlement_ref=result.receipt.settlement_ref,
        block_number=result.receipt.block_number,
        log_index=result.receipt.log_index,
    )


@router.get("/{request_id}/audit", response_model=AuditTrail)
async def request_audit(
    request_id: int,
    actor: str = Depends(get_acting_wallet),
    db: Session = Depends(get_db),
) -> AuditTrail:
    """Audit trail for one request (auditors and admins)."""
    identity = IdentityDirectory(db).require_actor(actor)
    if identity.role not in AUDIT_READER_ROLES:
        raise ForbiddenError.wrong_role("AUDITOR or admin", identity.role.value)
    ProductionRequestStore(db).require(request_id)

    events = get_audit_logger().events_for_request(request_id)
    return AuditTrail(
        request_id=request_id,
        events=[
            AuditEventView(
                id=e.id,
                action=e.action,
                actor=e.actor,
                request_id=e.request_id,
                target=e.target,
                outcome=e.outcome,
                detail=e.detail,
                created_at=e.created_at.isoformat(),
            )
            for e in events
        ],
    )
