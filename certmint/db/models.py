# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""SQLAlchemy models for CertMint persistence.

Production requests carry the certification lifecycle. Identities hold
the jurisdiction-scoped hierarchy consulted for authorization. Audit
events are append-only.
"""
from datetime import datetime, timezone

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.orm import DeclarativeBase


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


# Statuses that hold a fingerprint exclusively.
LOCKED_STATUSES = ("CERTIFIED", "MINTED")
_LOCKED_SQL = text("status IN ('CERTIFIED', 'MINTED')")


class ProductionRequestRecord(Base):
    """One production request and its certification lifecycle.

    ``request_id`` is assigned by the store and never reused; SQLite needs
    AUTOINCREMENT for that guarantee, PostgreSQL uses a sequence.
    """
    __tablename__ = "production_requests"
    __table_args__ = (
        Index(
            "uq_production_requests_locked_fingerprint",
            "evidence_fingerprint",
            unique=True,
            sqlite_where=_LOCKED_SQL,
            postgresql_where=_LOCKED_SQL,
        ),
        Index("ix_production_requests_producer_status", "producer", "status"),
        {"sqlite_autoincrement": True},
    )

    request_id = Column(Integer, primary_key=True, autoincrement=True)
    producer = Column(String(42), nullable=False)
    certifier = Column(String(42), nullable=True)
    amount = Column(BigInteger, nullable=False)
    evidence_fingerprint = Column(String(64), nullable=False, index=True)
    document_hashes = Column(Text, nullable=False)  # JSON array of hex digests
    status = Column(String(16), nullable=False, default="PENDING")
    certification_signature = Column(String(132), nullable=True)
    expiry = Column(BigInteger, nullable=True)  # unix seconds
    rejection_reason = Column(String(500), nullable=True)
    settlement_ref = Column(String(128), nullable=True)
    settlement_block = Column(BigInteger, nullable=True)
    settlement_index = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)
    certified_at = Column(DateTime(timezone=True), nullable=True)
    rejected_at = Column(DateTime(timezone=True), nullable=True)
    minted_at = Column(DateTime(timezone=True), nullable=True)


class IdentityRecord(Base):
    """A participant wallet with its role and jurisdiction tuple."""
    __tablename__ = "identities"

    wallet = Column(String(42), primary_key=True)  # EIP-55 checksummed
    role = Column(String(20), nullable=False)
    country = Column(String(100), nullable=True)
    state = Column(String(100), nullable=True)
    city = Column(String(100), nullable=True)
    name = Column(String(100), nullable=True)
    organization = Column(String(100), nullable=True)
    verified = Column(Boolean, default=False, nullable=False)
    verified_by = Column(String(42), nullable=True)
    verified_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class AuditEventRecord(Base):
    """Immutable record of one workflow invocation."""
    __tablename__ = "audit_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    action = Column(String(50), nullable=False, index=True)
    actor = Column(String(100), nullable=True)
    request_id = Column(Integer, nullable=True, index=True)
    target = Column(String(100), nullable=True)
    outcome = Column(String(50), nullable=False)
    detail_json = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
