# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""Production evidence submission."""
import logging
from typing import Any, Dict, Iterable, Optional

from sqlalchemy.orm import Session

from certmint.audit import AuditLogger, get_audit_logger
from certmint.directory import IdentityDirectory, normalize_wallet
from certmint.evidence import fingerprint_evidence, normalize_document_hashes
from certmint.exceptions import ForbiddenError
from certmint.models import Role
from certmint.store import ProductionRequest, ProductionRequestStore

log = logging.getLogger(__name__)


def submit_production(
    db: Session,
    acting_producer: str,
    amount: int,
    document_hashes: Iterable[str],
    metadata: Optional[Dict[str, Any]] = None,
    audit: Optional[AuditLogger] = None,
) -> ProductionRequest:
    """Create a PENDING request for a verified producer.

    The evidence fingerprint is computed here from the submitted bundle;
    clients never supply it.
    """
    audit = audit or get_audit_logger()
    with audit.invocation("request.submit", acting_producer) as detail:
        actor = detail["actor"] = normalize_wallet(acting_producer)
        producer = IdentityDirectory(db).require_actor(actor)
        if producer.role != Role.PRODUCER:
            raise ForbiddenError.wrong_role(Role.PRODUCER.value, producer.role.value)
        if not producer.verified:
            raise ForbiddenError.not_verified(producer.wallet)

        hashes = list(document_hashes)
        fingerprint = fingerprint_evidence(hashes, metadata)
        store = ProductionRequestStore(db)
        request_id = store.create(
            producer.wallet, amount, fingerprint, normalize_document_hashes(hashes)
        )
        detail.update(request_id=request_id, amount=amount, fingerprint=fingerprint)
        return store.require(request_id)
