# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""CertMint API models and shared enumerations."""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


# =============================================================================
# Enumerations
# =============================================================================

class RequestStatus(str, Enum):
    PENDING = "PENDING"
    CERTIFIED = "CERTIFIED"
    REJECTED = "REJECTED"
    MINTED = "MINTED"


class Role(str, Enum):
    COUNTRY_ADMIN = "COUNTRY_ADMIN"
    STATE_ADMIN = "STATE_ADMIN"
    CITY_ADMIN = "CITY_ADMIN"
    PRODUCER = "PRODUCER"
    BUYER = "BUYER"
    AUDITOR = "AUDITOR"


class SettlementRejection(str, Enum):
    ALREADY_SETTLED = "AlreadySettled"
    EXPIRED = "Expired"
    BAD_SIGNATURE = "BadSignature"
    INSUFFICIENT_AUTHORIZATION = "InsufficientAuthorization"
    FAULT = "Fault"


# =============================================================================
# Error Models
# =============================================================================

class ErrorCode(str, Enum):
    NOT_FOUND = "NOT_FOUND"
    FORBIDDEN = "FORBIDDEN"
    INVALID_STATE = "INVALID_STATE"
    DUPLICATE_BATCH = "DUPLICATE_BATCH"
    EXPIRED = "EXPIRED"
    SETTLEMENT_REJECTED = "SETTLEMENT_REJECTED"
    SETTLEMENT_UNKNOWN = "SETTLEMENT_UNKNOWN"
    INVALID_AMOUNT = "INVALID_AMOUNT"
    PENDING_LIMIT_EXCEEDED = "PENDING_LIMIT_EXCEEDED"
    SIGNER_UNAVAILABLE = "SIGNER_UNAVAILABLE"
    SIGNATURE_INVALID = "SIGNATURE_INVALID"
    INVALID_EVIDENCE = "INVALID_EVIDENCE"
    UNAUTHENTICATED = "UNAUTHENTICATED"
    INVALID_REQUEST = "INVALID_REQUEST"
    INTERNAL_ERROR = "INTERNAL_ERROR"


ERROR_HTTP_STATUS: Dict[str, int] = {
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.FORBIDDEN: 403,
    ErrorCode.INVALID_STATE: 409,
    ErrorCode.DUPLICATE_BATCH: 409,
    ErrorCode.EXPIRED: 410,
    ErrorCode.SETTLEMENT_REJECTED: 422,
    ErrorCode.SETTLEMENT_UNKNOWN: 503,
    ErrorCode.INVALID_AMOUNT: 422,
    ErrorCode.PENDING_LIMIT_EXCEEDED: 429,
    ErrorCode.SIGNER_UNAVAILABLE: 503,
    ErrorCode.SIGNATURE_INVALID: 422,
    ErrorCode.INVALID_EVIDENCE: 422,
    ErrorCode.UNAUTHENTICATED: 401,
    ErrorCode.INVALID_REQUEST: 422,
    ErrorCode.INTERNAL_ERROR: 500,
}

ERROR_RECOVERABILITY: Dict[str, bool] = {
    ErrorCode.SETTLEMENT_UNKNOWN: True,
    ErrorCode.PENDING_LIMIT_EXCEEDED: True,
    ErrorCode.SIGNER_UNAVAILABLE: True,
    ErrorCode.INTERNAL_ERROR: True,
}


class ErrorDetail(BaseModel):
    code: str
    message: str
    recoverable: bool


def make_error(code: str, message: str) -> ErrorDetail:
    """Create an ErrorDetail with auto-determined recoverability."""
    return ErrorDetail(
        code=code,
        message=message,
        recoverable=ERROR_RECOVERABILITY.get(code, False),
    )


# =============================================================================
# Production requests
# =============================================================================

class SubmitProductionRequest(BaseModel):
    amount: int = Field(..., description="Produced quantity in kilograms")
    document_hashes: List[str] = Field(
        ..., description="Hex digests of the uploaded evidence documents"
    )
    metadata: Dict[str, Any] = Field(
        default_factory=dict, description="Declared production metadata"
    )


class CertifyRequest(BaseModel):
    ttl_seconds: Optional[int] = Field(
        None, description="Certification lifetime; server default when omitted"
    )


class RejectRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


class ProductionRequestView(BaseModel):
    request_id: int
    producer: str
    amount: int
    evidence_fingerprint: str
    status: RequestStatus
    certifier: Optional[str] = None
    certification_signature: Optional[str] = None
    expiry: Optional[int] = None
    rejection_reason: Optional[str] = None
    settlement_ref: Optional[str] = None
    settlement_block: Optional[int] = None
    created_at: Optional[str] = None
    certified_at: Optional[str] = None
    minted_at: Optional[str] = None


class ProductionRequestList(BaseModel):
    requests: List[ProductionRequestView]
    page: int
    limit: int
    total: int


class CertificationPayloadView(BaseModel):
    producer: str
    amount: int
    requestId: int
    expiry: int
    certifier: str


class CertifyResponse(BaseModel):
    request_id: int
    status: RequestStatus
    certification: CertificationPayloadView
    signature: str


class ClaimResponse(BaseModel):
    request_id: int
    status: RequestStatus
    settlement_ref: str
    block_number: int
    log_index: int = 0


# =============================================================================
# Identities
# =============================================================================

class OnboardIdentityRequest(BaseModel):
    wallet: str
    role: Role
    country: Optional[str] = None
    state: Optional[str] = None
    city: Optional[str] = None
    name: Optional[str] = Field(None, max_length=100)
    organization: Optional[str] = Field(None, max_length=100)


class VerifyIdentityRequest(BaseModel):
    verified: bool = True


class IdentityView(BaseModel):
    wallet: str
    role: Role
    country: Optional[str] = None
    state: Optional[str] = None
    city: Optional[str] = None
    name: Optional[str] = None
    organization: Optional[str] = None
    verified: bool
    verified_by: Optional[str] = None


# =============================================================================
# Audit
# =============================================================================

class AuditEventView(BaseModel):
    id: int
    action: str
    actor: Optional[str] = None
    request_id: Optional[int] = None
    target: Optional[str] = None
    outcome: str
    detail: Optional[Dict[str, Any]] = None
    created_at: str


class AuditTrail(BaseModel):
    request_id: int
    events: List[AuditEventView]
