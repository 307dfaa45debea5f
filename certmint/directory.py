# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.

"""Identity and hierarchy directory.

Holds each participant's wallet, role and jurisdiction tuple and answers
the two authorization questions the workflows ask:

* **can_certify** -- may this authority attest a production request from
  a producer located at the given jurisdiction?
* **can_administer** -- may this actor onboard, verify or unverify the
  target identity?

Both are pure functions over :data:`ROLE_POLICIES`.  Neither raises; the
caller converts ``False`` into :class:`~certmint.exceptions.ForbiddenError`
using the reason from :func:`describe_certify_denial` or
:func:`describe_administer_denial`.

Jurisdiction components are compared after stripping whitespace and
case-folding, so ``"São Paulo "`` and ``"são paulo"`` name the same city.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, Iterable, Optional, Tuple

from eth_utils import is_address, to_checksum_address
from sqlalchemy.orm import Session

from certmint.db.models import IdentityRecord
from certmint.exceptions import (
    ForbiddenError,
    InvalidRequestError,
    InvalidStateError,
    NotFoundError,
)
from certmint.models import Role

logger = logging.getLogger("certmint.directory")

__all__ = [
    "Identity",
    "IdentityDirectory",
    "Jurisdiction",
    "ROLE_POLICIES",
    "RolePolicy",
    "can_administer",
    "can_certify",
    "describe_administer_denial",
    "describe_certify_denial",
    "normalize_wallet",
    "onboard_identity",
    "seed_bootstrap_admins",
    "set_verified",
]

# ======================================================================
# Value types
# ======================================================================


def normalize_wallet(wallet: str) -> str:
    """Return the EIP-55 checksummed form of ``wallet``.

    Raises
    ------
    InvalidRequestError
        If ``wallet`` is not a 20-byte hex address.
    """
    if not isinstance(wallet, str) or not is_address(wallet.strip()):
        raise InvalidRequestError(f"Invalid wallet address: {wallet!r}")
    return to_checksum_address(wallet.strip())


def _fold(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    folded = value.strip().casefold()
    return folded or None


@dataclass(frozen=True)
class Jurisdiction:
    """A (country, state, city) triple.  Unset components are ``None``."""

    country: Optional[str] = None
    state: Optional[str] = None
    city: Optional[str] = None

    def component(self, name: str) -> Optional[str]:
        return _fold(getattr(self, name))

    def as_dict(self) -> Dict[str, Optional[str]]:
        return {"country": self.country, "state": self.state, "city": self.city}


@dataclass(frozen=True)
class Identity:
    """A registered participant as seen by the authorization checks."""

    wallet: str
    role: Role
    jurisdiction: Jurisdiction
    verified: bool = False
    name: Optional[str] = None
    organization: Optional[str] = None
    verified_by: Optional[str] = None


@dataclass(frozen=True)
class RolePolicy:
    """Authorization data for one role.

    Attributes
    ----------
    rank : int
        Position in the hierarchy; lower is more senior.
    subordinates : frozenset[Role]
        Roles this role may onboard and verify.
    jurisdiction_fields : tuple[str, ...]
        Jurisdiction components an identity of this role must carry.
        For admins these fields form the prefix that scopes authority.
    certifies : bool
        Whether this role is a certifying authority for producers.
    """

    rank: int
    subordinates: FrozenSet[Role]
    jurisdiction_fields: Tuple[str, ...]
    certifies: bool = False


ROLE_POLICIES: Dict[Role, RolePolicy] = {
    Role.COUNTRY_ADMIN: RolePolicy(
        rank=1,
        subordinates=frozenset({
            Role.STATE_ADMIN, Role.CITY_ADMIN, Role.PRODUCER, Role.BUYER, Role.AUDITOR,
        }),
        jurisdiction_fields=("country",),
    ),
    Role.STATE_ADMIN: RolePolicy(
        rank=2,
        subordinates=frozenset({Role.CITY_ADMIN, Role.PRODUCER, Role.BUYER, Role.AUDITOR}),
        jurisdiction_fields=("country", "state"),
    ),
    Role.CITY_ADMIN: RolePolicy(
        rank=3,
        subordinates=frozenset({Role.PRODUCER, Role.BUYER, Role.AUDITOR}),
        jurisdiction_fields=("country", "state", "city"),
        certifies=True,
    ),
    Role.PRODUCER: RolePolicy(
        rank=4,
        subordinates=frozenset(),
        jurisdiction_fields=("country", "state", "city"),
    ),
    Role.BUYER: RolePolicy(rank=4, subordinates=frozenset(), jurisdiction_fields=()),
    Role.AUDITOR: RolePolicy(rank=4, subordinates=frozenset(), jurisdiction_fields=()),
}

CERTIFYING_ROLES: FrozenSet[Role] = frozenset(
    role for role, policy in ROLE_POLICIES.items() if policy.certifies
)


# ======================================================================
# Authorization predicates
# ======================================================================


def _covers(policy: RolePolicy, scope: Jurisdiction, target: Jurisdiction) -> bool:
    """True if ``scope`` restricted to the policy's fields is a prefix of ``target``."""
    for name in policy.jurisdiction_fields:
        own = scope.component(name)
        if own is None or own != target.component(name):
            return False
    return True


def describe_certify_denial(
    authority: Identity, producer_jurisdiction: Jurisdiction
) -> Optional[str]:
    """Return why ``authority`` may not certify, or ``None`` if it may."""
    policy = ROLE_POLICIES.get(authority.role)
    if policy is None or not policy.certifies:
        required = ", ".join(sorted(r.value for r in CERTIFYING_ROLES))
        return f"role {required} required, caller has role {Role(authority.role).value}"
    if not authority.verified:
        return "authority is not verified"
    if not _covers(policy, authority.jurisdiction, producer_jurisdiction):
        return "producer is outside your jurisdiction"
    return None


def can_certify(authority: Identity, producer_jurisdiction: Jurisdiction) -> bool:
    """Whether ``authority`` may certify a producer at ``producer_jurisdiction``.

    The authority must be verified, hold a certifying role, and its
    jurisdiction tuple must be an exact or ancestor match of the
    producer's.
    """
    return describe_certify_denial(authority, producer_jurisdiction) is None


def describe_administer_denial(actor: Identity, target: Identity) -> Optional[str]:
    """Return why ``actor`` may not administer ``target``, or ``None``."""
    policy = ROLE_POLICIES.get(actor.role)
    if policy is None or not policy.subordinates:
        return f"role {Role(actor.role).value} administers no identities"
    if not actor.verified:
        return "actor is not verified"
    if target.role not in policy.subordinates:
        return f"role {Role(target.role).value} is not subordinate to {Role(actor.role).value}"
    if not _covers(policy, actor.jurisdiction, target.jurisdiction):
        return "target is outside your jurisdiction"
    return None


def can_administer(actor: Identity, target: Identity) -> bool:
    """Whether ``actor`` may onboard or change verification of ``target``.

    A rank acts only on strictly lower ranks listed in its policy, and
    only within a jurisdiction tuple that has its own as a prefix.
    """
    return describe_administer_denial(actor, target) is None


# ======================================================================
# Persistence
# ======================================================================


def _to_identity(record: IdentityRecord) -> Identity:
    return Identity(
        wallet=record.wallet,
        role=Role(record.role),
        jurisdiction=Jurisdiction(
            country=record.country, state=record.state, city=record.city
        ),
        verified=bool(record.verified),
        name=record.name,
        organization=record.organization,
        verified_by=record.verified_by,
    )


class IdentityDirectory:
    """Read access to registered identities."""

    def __init__(self, db: Session):
        self.db = db

    def _record(self, wallet: str) -> Optional[IdentityRecord]:
        return self.db.get(IdentityRecord, normalize_wallet(wallet))

    def get(self, wallet: str) -> Optional[Identity]:
        record = self._record(wallet)
        return _to_identity(record) if record is not None else None

    def require(self, wallet: str) -> Identity:
        """Return the identity for ``wallet`` or raise ``NotFoundError``."""
        identity = self.get(wallet)
        if identity is None:
            raise NotFoundError.identity(normalize_wallet(wallet))
        return identity

    def require_actor(self, wallet: str) -> Identity:
        """Return the acting identity or raise ``ForbiddenError``."""
        identity = self.get(wallet)
        if identity is None:
            raise ForbiddenError.unregistered(normalize_wallet(wallet))
        return identity


def _validate_jurisdiction(role: Role, jurisdiction: Jurisdiction) -> Jurisdiction:
    missing = [
        name for name in ROLE_POLICIES[role].jurisdiction_fields
        if jurisdiction.component(name) is None
    ]
    if missing:
        raise InvalidRequestError(
            f"Role {role.value} requires jurisdiction fields: {', '.join(missing)}"
        )
    return Jurisdiction(
        country=(jurisdiction.country or "").strip() or None,
        state=(jurisdiction.state or "").strip() or None,
        city=(jurisdiction.city or "").strip() or None,
    )


def _insert(db: Session, identity: Identity, verified_at: Optional[datetime] = None) -> None:
    db.add(IdentityRecord(
        wallet=identity.wallet,
        role=identity.role.value,
        country=identity.jurisdiction.country,
        state=identity.jurisdiction.state,
        city=identity.jurisdiction.city,
        name=identity.name,
        organization=identity.organization,
        verified=identity.verified,
        verified_by=identity.verified_by,
        verified_at=verified_at,
    ))


def onboard_identity(
    db: Session,
    actor: Identity,
    wallet: str,
    role: Role,
    jurisdiction: Jurisdiction,
    name: Optional[str] = None,
    organization: Optional[str] = None,
) -> Identity:
    """Register a new, unverified identity on behalf of ``actor``.

    Raises
    ------
    InvalidRequestError
        Malformed wallet or missing jurisdiction fields for ``role``.
    InvalidStateError
        The wallet is already registered.
    ForbiddenError
        ``actor`` may not administer an identity of this role and place.
    """
    target = Identity(
        wallet=normalize_wallet(wallet),
        role=Role(role),
        jurisdiction=_validate_jurisdiction(Role(role), jurisdiction),
        name=name,
        organization=organization,
    )
    reason = describe_administer_denial(actor, target)
    if reason is not None:
        raise ForbiddenError.cannot_administer(reason)
    if db.get(IdentityRecord, target.wallet) is not None:
        raise InvalidStateError(f"Identity {target.wallet} is already registered")

    _insert(db, target)
    db.commit()
    logger.info(
        "Identity onboarded",
        extra={"wallet": target.wallet, "role": target.role.value, "actor": actor.wallet},
    )
    return target


def set_verified(db: Session, actor: Identity, wallet: str, verified: bool = True) -> Identity:
    """Verify or unverify ``wallet``; gated by :func:`can_administer`."""
    record = db.get(IdentityRecord, normalize_wallet(wallet))
    if record is None:
        raise NotFoundError.identity(normalize_wallet(wallet))
    reason = describe_administer_denial(actor, _to_identity(record))
    if reason is not None:
        raise ForbiddenError.cannot_administer(reason)

    record.verified = verified
    record.verified_by = actor.wallet if verified else None
    record.verified_at = datetime.now(timezone.utc) if verified else None
    db.commit()
    logger.info(
        "Identity verification changed",
        extra={"wallet": record.wallet, "verified": verified, "actor": actor.wallet},
    )
    return _to_identity(record)


def seed_bootstrap_admins(db: Session, entries: Iterable[Dict[str, Any]]) -> int:
    """Create verified identities from configuration.

    Used at startup to install the root of the hierarchy, which no other
    identity can onboard.  Existing wallets are left untouched.  Returns
    the number of identities created.
    """
    created = 0
    now = datetime.now(timezone.utc)
    for entry in entries:
        role = Role(entry["role"])
        identity = Identity(
            wallet=normalize_wallet(entry["wallet"]),
            role=role,
            jurisdiction=_validate_jurisdiction(role, Jurisdiction(
                country=entry.get("country"),
                state=entry.get("state"),
                city=entry.get("city"),
            )),
            verified=True,
            name=entry.get("name"),
            organization=entry.get("organization"),
        )
        if db.get(IdentityRecord, identity.wallet) is not None:
            continue
        _insert(db, replace(identity, verified_by=identity.wallet), verified_at=now)
        created += 1
    db.commit()
    if created:
        logger.info("Seeded bootstrap identities", extra={"count": created})
    return created
