# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""Audit trail for workflow invocations.

Every submit, certify, reject, claim and identity change appends exactly
one immutable event carrying actor, target, outcome and timestamp.
Events are written through their own session so that a workflow failure
(and its rollback) still leaves a record of the attempt.
"""

import json
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional

from certmint.db.models import AuditEventRecord
from certmint.exceptions import CertMintError

log = logging.getLogger("certmint.audit")

OUTCOME_SUCCESS = "success"


@dataclass(frozen=True)
class AuditEvent:
    """Single audit event as stored."""

    id: int
    action: str
    actor: Optional[str]
    request_id: Optional[int]
    target: Optional[str]
    outcome: str
    detail: Optional[Dict[str, Any]]
    created_at: datetime


def _to_event(record: AuditEventRecord) -> AuditEvent:
    return AuditEvent(
        id=record.id,
        action=record.action,
        actor=record.actor,
        request_id=record.request_id,
        target=record.target,
        outcome=record.outcome,
        detail=json.loads(record.detail_json) if record.detail_json else None,
        created_at=record.created_at,
    )


class AuditLogger:
    """Persists audit events and mirrors them to the ``certmint.audit`` log."""

    def _session(self):
        # Late-bound so tests that reload the session module are honoured.
        from certmint.db import session as session_module
        return session_module.SessionLocal()

    def record(
        self,
        action: str,
        actor: Optional[str],
        outcome: str,
        request_id: Optional[int] = None,
        target: Optional[str] = None,
        detail: Optional[Dict[str, Any]] = None,
    ) -> None:
        log.info(
            f"audit {action} -> {outcome}",
            extra={
                "audit_action": action,
                "actor": actor,
                "request_id": request_id,
                "target": target,
                "outcome": outcome,
            },
        )
        db = self._session()
        try:
            db.add(AuditEventRecord(
                action=action,
                actor=actor,
                request_id=request_id,
                target=target,
                outcome=outcome,
                detail_json=json.dumps(detail, default=str) if detail else None,
            ))
            db.commit()
        except Exception:
            db.rollback()
            log.exception(f"Failed to persist audit event {action} for request {request_id}")
        finally:
            db.close()

    @contextmanager
    def invocation(
        self,
        action: str,
        actor: Optional[str],
        request_id: Optional[int] = None,
        target: Optional[str] = None,
    ) -> Iterator[Dict[str, Any]]:
        """Record one event for the enclosed block, whatever its outcome.

        Yields a dict the caller may fill with detail fields. ``request_id``,
        ``actor`` and ``target`` keys set by the block (for a request created
        inside it, or a wallet once normalized) override the arguments.
        Typed errors are recorded under their code and re-raised.
        """
        detail: Dict[str, Any] = {}

        def _record(outcome: str, extra: Optional[Dict[str, Any]] = None) -> None:
            rid = detail.pop("request_id", request_id)
            who = detail.pop("actor", actor)
            subject = detail.pop("target", target)
            fields = {**detail, **(extra or {})}
            self.record(action, who, outcome, rid, subject, fields or None)

        try:
            yield detail
        except CertMintError as e:
            _record(e.code, {"message": e.message})
            raise
        except Exception as e:
            _record("INTERNAL_ERROR", {"error": type(e).__name__})
            raise
        else:
            _record(OUTCOME_SUCCESS)

    def events_for_request(self, request_id: int) -> List[AuditEvent]:
        db = self._session()
        try:
            records = (
                db.query(AuditEventRecord)
                .filter(AuditEventRecord.request_id == request_id)
                .order_by(AuditEventRecord.id)
                .all()
            )
            return [_to_event(r) for r in records]
        finally:
            db.close()


# Module-level singleton
_audit_logger: Optional[AuditLogger] = None


def get_audit_logger() -> AuditLogger:
    """Get or create the audit logger singleton."""
    global _audit_logger
    if _audit_logger is None:
        _audit_logger = AuditLogger()
    return _audit_logger


def reset_audit_logger() -> None:
    """Reset the singleton (for testing)."""
    global _audit_logger
    _audit_logger = None
