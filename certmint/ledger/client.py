# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""Settlement ledger HTTP client.

Async HTTP client for the external settlement collaborator.

Key features:
- Bearer token auth (CERTMINT_LEDGER_AUTH_TOKEN)
- Bounded timeout; timeouts, connection failures and 5xx are
  SettlementUnknown (outcome not known, safe to retry)
- Circuit breaker (5 failures in 60s -> open 30s -> half-open probe)
- Idempotency-Key header derived from requestId and signature, so a
  retry after SettlementUnknown is the same submission
- 4xx bodies mapped onto the SettlementRejection taxonomy only
"""
import logging
import time
from typing import Optional

import httpx

from certmint.codec import CertificationPayload
from certmint.exceptions import SettlementRejectedError, SettlementUnknownError
from certmint.ledger.base import SettlementLedger, SettlementReceipt, idempotency_key
from certmint.models import SettlementRejection

log = logging.getLogger(__name__)

SETTLEMENTS_PATH = "/settlements"

_KNOWN_REASONS = {r.value: r for r in SettlementRejection}


# =============================================================================
# Circuit Breaker
# =============================================================================


class CircuitBreaker:
    """Simple circuit breaker for the ledger connection.

    States:
    - closed: Normal operation, all calls pass through
    - open: Ledger is considered down, calls fail immediately
    - half_open: One probe call allowed to test recovery
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        failure_window: float = 60.0,
        recovery_timeout: float = 30.0,
    ):
        self.failure_threshold = failure_threshold
        self.failure_window = failure_window
        self.recovery_timeout = recovery_timeout

        self._state = "closed"
        self._failures: list[float] = []
        self._opened_at: float = 0.0
        self._half_open_in_flight = False

    @property
    def state(self) -> str:
        if self._state == "open":
            if time.monotonic() - self._opened_at >= self.recovery_timeout:
                self._state = "half_open"
                self._half_open_in_flight = False
        return self._state

    def record_success(self) -> None:
        if self._state in ("half_open", "open"):
            log.info("Ledger circuit breaker: closed (recovery successful)")
        self._state = "closed"
        self._failures.clear()
        self._half_open_in_flight = False

    def record_failure(self) -> None:
        now = time.monotonic()
        self._failures = [t for t in self._failures if now - t < self.failure_window]
        self._failures.append(now)

        if self._state == "half_open":
            self._state = "open"
            self._opened_at = now
            log.warning("Ledger circuit breaker: open (half-open probe failed)")
        elif len(self._failures) >= self.failure_threshold:
            self._state = "open"
            self._opened_at = now
            log.warning(
                f"Ledger circuit breaker: open "
                f"({len(self._failures)} failures in {self.failure_window}s)"
            )

    def allow_request(self) -> bool:
        state = self.state
        if state == "closed":
            return True
        if state == "half_open":
            if not self._half_open_in_flight:
                self._half_open_in_flight = True
                return True
            return False
        return False  # open


# =============================================================================
# Client
# =============================================================================


def _parse_rejection(response: httpx.Response) -> SettlementRejectedError:
    """Map a 4xx body onto the rejection taxonomy."""
    reason = SettlementRejection.FAULT
    detail = ""
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        reason = _KNOWN_REASONS.get(body.get("reason"), SettlementRejection.FAULT)
        detail = str(body.get("detail") or "")[:200]
    else:
        detail = response.text[:200]
    return SettlementRejectedError(reason.value, detail)


def _parse_receipt(response: httpx.Response) -> SettlementReceipt:
    try:
        body = response.json()
        return SettlementReceipt(
            settlement_ref=str(body["tx_hash"]),
            block_number=int(body["block_number"]),
            log_index=int(body.get("log_index") or 0),
        )
    except (ValueError, KeyError, TypeError) as e:
        raise SettlementUnknownError(
            f"Ledger accepted settlement but returned an unreadable receipt: {e}"
        ) from e


class LedgerClient(SettlementLedger):
    """Async HTTP client for the settlement collaborator."""

    def __init__(
        self,
        base_url: str = "http://localhost:8545",
        auth_token: str = "",
        timeout: float = 15.0,
        connect_timeout: float = 5.0,
    ):
        self.base_url = base_url.rstrip("/")
        self._circuit = CircuitBreaker()

        headers = {}
        if auth_token:
            headers["Authorization"] = f"Bearer {auth_token}"

        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=httpx.Timeout(timeout, connect=connect_timeout),
        )

    async def close(self) -> None:
        await self._http.aclose()

    @property
    def circuit_state(self) -> str:
        return self._circuit.state

    async def settle(self, payload: CertificationPayload, signature: str) -> SettlementReceipt:
        """Submit ``(payload, signature)`` and return the settlement receipt.

        Raises:
            SettlementRejectedError: The ledger refused the certification.
            SettlementUnknownError: Timeout, connection failure, 5xx, or
                the circuit is open.
        """
        if not self._circuit.allow_request():
            raise SettlementUnknownError(
                "Ledger circuit breaker is open; ledger considered unavailable"
            )

        body = {"certification": payload.to_message(), "signature": signature}
        headers = {"Idempotency-Key": idempotency_key(payload.request_id, signature)}

        try:
            response = await self._http.post(SETTLEMENTS_PATH, json=body, headers=headers)
        except httpx.TimeoutException as e:
            self._circuit.record_failure()
            log.warning(f"Ledger settlement for request {payload.request_id} timed out")
            raise SettlementUnknownError(f"Ledger request timed out: {e}") from e
        except httpx.TransportError as e:
            self._circuit.record_failure()
            log.warning(f"Ledger settlement for request {payload.request_id} failed: {e}")
            raise SettlementUnknownError(f"Ledger connection failed: {e}") from e

        if response.status_code >= 500:
            self._circuit.record_failure()
            raise SettlementUnknownError(
                f"Ledger returned {response.status_code}: {response.text[:200]}"
            )

        self._circuit.record_success()

        if response.status_code >= 400:
            error = _parse_rejection(response)
            log.info(
                f"Ledger rejected settlement for request {payload.request_id}: {error.reason}"
            )
            raise error

        receipt = _parse_receipt(response)
        log.info(
            "Ledger settled certification",
            extra={"request_id": payload.request_id, "settlement_ref": receipt.settlement_ref},
        )
        return receipt
