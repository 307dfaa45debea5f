# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""CertMint exceptions mapped to error codes.

Every failure in the certification and claim workflows is scoped to the
single request under operation and surfaces as one of these typed errors.
"""

from __future__ import annotations

from typing import Optional


class CertMintError(Exception):
    """Base exception for workflow errors.

    Carries a machine-readable ``code`` (see ``certmint.models.ErrorCode``)
    and a human-readable ``message``.
    """

    code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, code: Optional[str] = None):
        if code is not None:
            self.code = code
        self.message = message
        super().__init__(message)


class NotFoundError(CertMintError):
    code = "NOT_FOUND"

    @classmethod
    def request(cls, request_id: int) -> "NotFoundError":
        return cls(f"Production request {request_id} not found")

    @classmethod
    def identity(cls, wallet: str) -> "NotFoundError":
        return cls(f"Identity {wallet} is not registered")


class ForbiddenError(CertMintError):
    """Authorization failure.  The message names the concrete reason."""

    code = "FORBIDDEN"

    @classmethod
    def not_producer(cls) -> "ForbiddenError":
        return cls("Only the producer who submitted this request may claim it")

    @classmethod
    def not_verified(cls, wallet: str) -> "ForbiddenError":
        return cls(f"Identity {wallet} is not verified")

    @classmethod
    def wrong_role(cls, required: str, actual: str) -> "ForbiddenError":
        return cls(f"Role {required} required, caller has role {actual}")

    @classmethod
    def cannot_administer(cls, reason: str) -> "ForbiddenError":
        return cls(f"Cannot administer target identity: {reason}")

    @classmethod
    def unregistered(cls, wallet: str) -> "ForbiddenError":
        return cls(f"Wallet {wallet} is not a registered identity")


class InvalidStateError(CertMintError):
    code = "INVALID_STATE"

    @classmethod
    def transition(cls, request_id: int, current: str, target: str) -> "InvalidStateError":
        return cls(
            f"Request {request_id} cannot move from {current} to {target}"
        )


class DuplicateBatchError(CertMintError):
    """Another request with the same evidence is already certified or minted.

    The message deliberately omits the conflicting request.
    """

    code = "DUPLICATE_BATCH"

    def __init__(self, message: str = "This production batch has already been certified"):
        super().__init__(message)


class ExpiredError(CertMintError):
    code = "EXPIRED"

    @classmethod
    def certification(cls, request_id: int, expiry: int, now: int) -> "ExpiredError":
        return cls(
            f"Certification for request {request_id} expired at {expiry} (now={now})"
        )


class InvalidAmountError(CertMintError):
    code = "INVALID_AMOUNT"

    @classmethod
    def not_positive(cls, amount: int) -> "InvalidAmountError":
        return cls(f"Amount must be a positive number of kilograms, got {amount}")

    @classmethod
    def too_large(cls, amount: int, maximum: int) -> "InvalidAmountError":
        return cls(f"Amount {amount} kg exceeds the maximum of {maximum} kg")


class PendingLimitExceededError(CertMintError):
    code = "PENDING_LIMIT_EXCEEDED"

    def __init__(self, limit: int):
        self.limit = limit
        super().__init__(f"Producer already has {limit} pending requests")


class InvalidEvidenceError(CertMintError):
    code = "INVALID_EVIDENCE"


class SignatureInvalidError(CertMintError):
    """Certification signature is malformed or attributed to the wrong signer."""

    code = "SIGNATURE_INVALID"


class SignerUnavailableError(CertMintError):
    code = "SIGNER_UNAVAILABLE"

    @classmethod
    def for_certifier(cls, wallet: str) -> "SignerUnavailableError":
        return cls(f"No signing key is registered for certifier {wallet}")


class SettlementRejectedError(CertMintError):
    """The ledger collaborator refused the settlement.

    ``reason`` is one of ``SettlementRejection`` values.  Local state is
    left unchanged.
    """

    code = "SETTLEMENT_REJECTED"

    def __init__(self, reason: str, detail: str = ""):
        self.reason = reason
        self.detail = detail
        message = f"Ledger rejected settlement: {reason}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class SettlementUnknownError(CertMintError):
    """The settlement outcome is unknown (timeout, outage).  Safe to retry."""

    code = "SETTLEMENT_UNKNOWN"


class UnauthenticatedError(CertMintError):
    code = "UNAUTHENTICATED"


class InvalidRequestError(CertMintError):
    """Malformed input such as an unparseable wallet address."""

    code = "INVALID_REQUEST"
