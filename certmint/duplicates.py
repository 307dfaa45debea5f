# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""Duplicate-batch guard.

A production batch is identified by its evidence fingerprint. Only one
request per fingerprint may ever hold CERTIFIED or MINTED status.

:func:`conflict_exists_clause` is the predicate the store embeds in its
certify ``UPDATE`` so that the check and the write are one statement.
:func:`has_conflict` is the standalone read, used for diagnostics and
for classifying a failed update.
"""
from typing import Optional

from sqlalchemy import Exists, select
from sqlalchemy.orm import Session, aliased

from certmint.db.models import LOCKED_STATUSES, ProductionRequestRecord


def conflict_exists_clause(fingerprint: str, request_id: Optional[int] = None) -> Exists:
    """EXISTS predicate: another request with ``fingerprint`` is CERTIFIED/MINTED."""
    sibling = aliased(ProductionRequestRecord, name="sibling")
    query = select(sibling.request_id).where(
        sibling.evidence_fingerprint == fingerprint,
        sibling.status.in_(LOCKED_STATUSES),
    )
    if request_id is not None:
        query = query.where(sibling.request_id != request_id)
    return query.exists()


def has_conflict(db: Session, fingerprint: str, exclude_request_id: Optional[int] = None) -> bool:
    """True iff some other request with ``fingerprint`` is CERTIFIED or MINTED."""
    return bool(db.scalar(select(conflict_exists_clause(fingerprint, exclude_request_id))))
