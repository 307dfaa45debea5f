# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""Certification workflow controller.

Steps for ``certify``:

1. Load the request (NotFound).
2. Require the acting authority to be allowed to certify the producer's
   jurisdiction (Forbidden, with the concrete reason).
3. Require status PENDING (InvalidState).
4. ``expiry = now + ttl``.
5. Build the payload ``{producer, amount, requestId, expiry, certifier}``.
6. Sign it with the authority's key from the keyring.
7. Persist CERTIFIED through the store's conditional update, which also
   performs the duplicate-batch check. On DuplicateBatch the signature
   is discarded and never returned.

One audit event is written per invocation, whatever the outcome.
"""
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from sqlalchemy.orm import Session

import certmint.config as _config
from certmint.audit import AuditLogger, get_audit_logger
from certmint.codec import (
    CertificationCodec,
    CertificationPayload,
    SigningDomain,
    TypedDataCodec,
    default_domain,
)
from certmint.directory import (
    Identity,
    IdentityDirectory,
    describe_certify_denial,
    normalize_wallet,
)
from certmint.exceptions import (
    DuplicateBatchError,
    ForbiddenError,
    InvalidRequestError,
    InvalidStateError,
)
from certmint.keyring import SignerKeyring, get_keyring
from certmint.models import RequestStatus
from certmint.store import ProductionRequest, ProductionRequestStore

log = logging.getLogger(__name__)

DUPLICATE_REJECTION_REASON = "duplicate batch"


@dataclass(frozen=True)
class CertificationResult:
    """A granted certification: the signed payload and its signature."""

    payload: CertificationPayload
    signature: str


def _system_clock() -> int:
    return int(time.time())


class CertificationWorkflow:
    """Certify or reject PENDING production requests."""

    def __init__(
        self,
        db: Session,
        keyring: Optional[SignerKeyring] = None,
        codec: Optional[CertificationCodec] = None,
        domain: Optional[SigningDomain] = None,
        clock: Optional[Callable[[], int]] = None,
        audit: Optional[AuditLogger] = None,
    ):
        self.db = db
        self.store = ProductionRequestStore(db)
        self.directory = IdentityDirectory(db)
        self.keyring = keyring or get_keyring()
        self.codec = codec or TypedDataCodec()
        self.domain = domain or default_domain()
        self.clock = clock or _system_clock
        self.audit = audit or get_audit_logger()

    def _authorize(self, request: ProductionRequest, actor: str) -> Identity:
        authority = self.directory.require_actor(actor)
        producer = self.directory.require(request.producer)
        reason = describe_certify_denial(authority, producer.jurisdiction)
        if reason is not None:
            raise ForbiddenError(f"Cannot certify request {request.request_id}: {reason}")
        return authority

    @staticmethod
    def _ttl(ttl_seconds: Optional[int]) -> int:
        if ttl_seconds is None:
            return _config.DEFAULT_TTL_SECONDS
        if not _config.MIN_TTL_SECONDS <= ttl_seconds <= _config.MAX_TTL_SECONDS:
            raise InvalidRequestError(
                f"ttl_seconds must be between {_config.MIN_TTL_SECONDS} "
                f"and {_config.MAX_TTL_SECONDS}"
            )
        return ttl_seconds

    def certify(
        self, request_id: int, acting_authority: str, ttl_seconds: Optional[int] = None
    ) -> CertificationResult:
        with self.audit.invocation("request.certify", acting_authority, request_id) as detail:
            actor = detail["actor"] = normalize_wallet(acting_authority)
            request = self.store.require(request_id)
            authority = self._authorize(request, actor)
            if request.status != RequestStatus.PENDING:
                raise InvalidStateError.transition(
                    request_id, request.status.value, RequestStatus.CERTIFIED.value
                )

            expiry = self.clock() + self._ttl(ttl_seconds)
            payload = CertificationPayload(
                producer=request.producer,
                amount=request.amount,
                request_id=request.request_id,
                expiry=expiry,
                certifier=authority.wallet,
            )
            with self.keyring.signer(authority.wallet) as key:
                signature = self.codec.sign(key, self.domain, payload)

            try:
                self.store.transition_to_certified(
                    request_id, authority.wallet, signature, expiry
                )
            except DuplicateBatchError:
                del signature
                if _config.REJECT_DUPLICATES:
                    self._reject_duplicate(request_id)
                    detail["rejected"] = True
                raise

            detail.update(expiry=expiry, fingerprint=request.evidence_fingerprint)
            return CertificationResult(payload=payload, signature=signature)

    def _reject_duplicate(self, request_id: int) -> None:
        try:
            self.store.transition_to_rejected(request_id, DUPLICATE_REJECTION_REASON)
        except InvalidStateError:
            # Another invocation already moved the request on.
            log.info(f"Duplicate request {request_id} no longer pending; not rejected")

    def reject(self, request_id: int, acting_authority: str, reason: str) -> ProductionRequest:
        """Move a PENDING request to REJECTED; same authorization as certify."""
        with self.audit.invocation("request.reject", acting_authority, request_id) as detail:
            actor = detail["actor"] = normalize_wallet(acting_authority)
            request = self.store.require(request_id)
            self._authorize(request, actor)
            rejected = self.store.transition_to_rejected(request_id, reason)
            detail["reason"] = rejected.rejection_reason
            return rejected
