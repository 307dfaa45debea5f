# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""Identity onboarding and verification endpoints."""
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from certmint.audit import get_audit_logger
from certmint.auth import get_acting_wallet
from certmint.db.session import get_db
from certmint.directory import (
    Identity,
    IdentityDirectory,
    Jurisdiction,
    normalize_wallet,
    onboard_identity,
    set_verified,
)
from certmint.models import IdentityView, OnboardIdentityRequest, VerifyIdentityRequest

log = logging.getLogger(__name__)
router = APIRouter(prefix="/identities", tags=["identities"])


def _to_view(identity: Identity) -> IdentityView:
    return IdentityView(
        wallet=identity.wallet,
        role=identity.role,
        country=identity.jurisdiction.country,
        state=identity.jurisdiction.state,
        city=identity.jurisdiction.city,
        name=identity.name,
        organization=identity.organization,
        verified=identity.verified,
        verified_by=identity.verified_by,
    )


@router.post("", response_model=IdentityView, status_code=201)
async def onboard(
    body: OnboardIdentityRequest,
    actor: str = Depends(get_acting_wallet),
    db: Session = Depends(get_db),
) -> IdentityView:
    """Register a subordinate identity within the caller's jurisdiction."""
    with get_audit_logger().invocation("identity.onboard", actor, target=body.wallet) as detail:
        target = detail["target"] = normalize_wallet(body.wallet)
        admin = IdentityDirectory(db).require_actor(actor)
        identity = onboard_identity(
            db,
            admin,
            target,
            body.role,
            Jurisdiction(country=body.country, state=body.state, city=body.city),
            name=body.name,
            organization=body.organization,
        )
        detail["role"] = identity.role.value
    return _to_view(identity)


@router.get("/{wallet}", response_model=IdentityView)
async def get_identity(
    wallet: str,
    actor: str = Depends(get_acting_wallet),
    db: Session = Depends(get_db),
) -> IdentityView:
    directory = IdentityDirectory(db)
    directory.require_actor(actor)
    return _to_view(directory.require(wallet))


@router.post("/{wallet}/verify", response_model=IdentityView)
async def verify(
    wallet: str,
    body: VerifyIdentityRequest,
    actor: str = Depends(get_acting_wallet),
    db: Session = Depends(get_db),
) -> IdentityView:
    """Set or clear the verification flag of a subordinate identity."""
    with get_audit_logger().invocation("identity.verify", actor, target=wallet) as detail:
        target = detail["target"] = normalize_wallet(wallet)
        admin = IdentityDirectory(db).require_actor(actor)
        identity = set_verified(db, admin, target, body.verified)
        detail["verified"] = body.verified
    return _to_view(identity)
