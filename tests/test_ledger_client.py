# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""Tests for the settlement ledger HTTP client.

Covers the circuit breaker, outcome mapping and the request shape using a
mock HTTP transport (no ledger node needed).
"""
import json
import time

import httpx
import pytest

from certmint.codec import CertificationPayload
from certmint.exceptions import SettlementRejectedError, SettlementUnknownError
from certmint.ledger import (
    CircuitBreaker,
    LedgerClient,
    get_ledger,
    idempotency_key,
    reset_ledger,
)
from certmint.models import SettlementRejection


# =============================================================================
# Mock transport for httpx
# =============================================================================


class MockTransport(httpx.AsyncBaseTransport):
    """Mock HTTP transport that returns canned responses."""

    def __init__(self):
        self.responses: list[httpx.Response] = []
        self.requests: list[httpx.Request] = []
        self._call_count = 0

    def add_response(
        self,
        status_code: int = 200,
        json_data: dict | list | None = None,
        content: bytes = b"",
    ):
        """Queue a response to be returned by the next request."""
        headers = {}
        if json_data is not None:
            content = json.dumps(json_data).encode()
            headers["content-type"] = "application/json"
        self.responses.append(
            httpx.Response(status_code=status_code, content=content, headers=headers)
        )

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self._call_count < len(self.responses):
            resp = self.responses[self._call_count]
            self._call_count += 1
            return resp
        return httpx.Response(500, content=b'{"detail": "No mock response queued"}')


class TimeoutTransport(httpx.AsyncBaseTransport):
    """Transport that always times out."""

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("Mock timeout")


class ConnectErrorTransport(httpx.AsyncBaseTransport):
    """Transport that always fails to connect."""

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("Connection refused")


# =============================================================================
# Fixtures
# =============================================================================

SIGNATURE = "0x" + "1b" * 65

SAMPLE_RECEIPT = {
    "tx_hash": "0x" + "ab" * 32,
    "block_number": 1_234_567,
    "log_index": 3,
}


@pytest.fixture
def payload(accounts):
    return CertificationPayload(
        producer=accounts["producer"].address,
        amount=500,
        request_id=7,
        expiry=1_700_003_600,
        certifier=accounts["mumbai_admin"].address,
    )


def _make_client(transport: httpx.AsyncBaseTransport) -> LedgerClient:
    """Create a client with a mock transport."""
    client = LedgerClient(base_url="http://test-ledger:8545", auth_token="test-token")
    client._http = httpx.AsyncClient(
        transport=transport,
        base_url="http://test-ledger:8545",
        headers={"Authorization": "Bearer test-token"},
    )
    return client


# =============================================================================
# Circuit Breaker Tests
# =============================================================================


class TestCircuitBreaker:

    def test_initial_state_is_closed(self):
        cb = CircuitBreaker()
        assert cb.state == "closed"
        assert cb.allow_request() is True

    def test_failures_at_threshold_opens_circuit(self):
        cb = CircuitBreaker(failure_threshold=3)
        for _ in range(2):
            cb.record_failure()
        assert cb.state == "closed"
        cb.record_failure()
        assert cb.state == "open"
        assert cb.allow_request() is False

    def test_half_open_allows_one_probe(self):
        cb = CircuitBreaker(failure_threshold=2, recovery_timeout=0.01)
        cb.record_failure()
        cb.record_failure()
        time.sleep(0.02)
        assert cb.allow_request() is True
        assert cb.allow_request() is False

    def test_half_open_success_closes_circuit(self):
        cb = CircuitBreaker(failure_threshold=2, recovery_timeout=0.01)
        cb.record_failure()
        cb.record_failure()
        time.sleep(0.02)
        cb.record_success()
        assert cb.state == "closed"

    def test_half_open_failure_reopens_circuit(self):
        cb = CircuitBreaker(failure_threshold=2, recovery_timeout=0.01)
        cb.record_failure()
        cb.record_failure()
        time.sleep(0.02)
        assert cb.state == "half_open"
        cb.record_failure()
        assert cb.state == "open"

    def test_old_failures_outside_window_dont_count(self):
        cb = CircuitBreaker(failure_threshold=3, failure_window=0.01)
        cb.record_failure()
        cb.record_failure()
        time.sleep(0.02)
        cb.record_failure()
        assert cb.state == "closed"


# =============================================================================
# Settlement Tests
# =============================================================================


class TestSettle:

    @pytest.mark.asyncio
    async def test_success_returns_receipt(self, payload):
        transport = MockTransport()
        transport.add_response(200, SAMPLE_RECEIPT)
        client = _make_client(transport)

        receipt = await client.settle(payload, SIGNATURE)

        assert receipt.settlement_ref == SAMPLE_RECEIPT["tx_hash"]
        assert receipt.block_number == 1_234_567
        assert receipt.log_index == 3

    @pytest.mark.asyncio
    async def test_request_carries_payload_and_idempotency_key(self, payload):
        transport = MockTransport()
        transport.add_response(200, SAMPLE_RECEIPT)
        client = _make_client(transport)

        await client.settle(payload, SIGNATURE)

        request = transport.requests[0]
        assert request.method == "POST"
        assert request.url.path == "/settlements"
        assert request.headers["Authorization"] == "Bearer test-token"
        assert request.headers["Idempotency-Key"] == idempotency_key(7, SIGNATURE)
        body = json.loads(request.content)
        assert body == {"certification": payload.to_message(), "signature": SIGNATURE}
        assert body["certification"]["requestId"] == 7

    @pytest.mark.asyncio
    async def test_retry_reuses_idempotency_key(self, payload):
        transport = MockTransport()
        transport.add_response(503, {"detail": "syncing"})
        transport.add_response(200, SAMPLE_RECEIPT)
        client = _make_client(transport)

        with pytest.raises(SettlementUnknownError):
            await client.settle(payload, SIGNATURE)
        await client.settle(payload, SIGNATURE)

        keys = {r.headers["Idempotency-Key"] for r in transport.requests}
        assert len(keys) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("reason", [r.value for r in SettlementRejection])
    async def test_rejection_reasons(self, payload, reason):
        transport = MockTransport()
        transport.add_response(422, {"reason": reason, "detail": "refused"})
        client = _make_client(transport)

        with pytest.raises(SettlementRejectedError) as exc_info:
            await client.settle(payload, SIGNATURE)
        assert exc_info.value.reason == reason
        assert exc_info.value.detail == "refused"

    @pytest.mark.asyncio
    async def test_unrecognised_reason_is_fault(self, payload):
        transport = MockTransport()
        transport.add_response(400, {"reason": "OutOfGas"})
        client = _make_client(transport)

        with pytest.raises(SettlementRejectedError) as exc_info:
            await client.settle(payload, SIGNATURE)
        assert exc_info.value.reason == SettlementRejection.FAULT.value

    @pytest.mark.asyncio
    async def test_non_json_rejection_is_fault(self, payload):
        transport = MockTransport()
        transport.add_response(409, content=b"conflict")
        client = _make_client(transport)

        with pytest.raises(SettlementRejectedError) as exc_info:
            await client.settle(payload, SIGNATURE)
        assert exc_info.value.reason == SettlementRejection.FAULT.value
        assert exc_info.value.detail == "conflict"

    @pytest.mark.asyncio
    async def test_server_error_is_unknown(self, payload):
        transport = MockTransport()
        transport.add_response(500, {"detail": "node crashed"})
        client = _make_client(transport)

        with pytest.raises(SettlementUnknownError, match="500"):
            await client.settle(payload, SIGNATURE)

    @pytest.mark.asyncio
    async def test_unreadable_receipt_is_unknown(self, payload):
        transport = MockTransport()
        transport.add_response(200, {"status": "ok"})
        client = _make_client(transport)

        with pytest.raises(SettlementUnknownError, match="unreadable receipt"):
            await client.settle(payload, SIGNATURE)

    @pytest.mark.asyncio
    async def test_timeout_is_unknown(self, payload):
        client = _make_client(TimeoutTransport())
        with pytest.raises(SettlementUnknownError, match="timed out"):
            await client.settle(payload, SIGNATURE)

    @pytest.mark.asyncio
    async def test_connect_error_is_unknown(self, payload):
        client = _make_client(ConnectErrorTransport())
        with pytest.raises(SettlementUnknownError, match="connection failed"):
            await client.settle(payload, SIGNATURE)

    @pytest.mark.asyncio
    async def test_open_circuit_fails_fast(self, payload):
        transport = MockTransport()
        client = _make_client(transport)
        client._circuit = CircuitBreaker(failure_threshold=2, recovery_timeout=30.0)

        for _ in range(2):
            with pytest.raises(SettlementUnknownError):
                await client.settle(payload, SIGNATURE)
        assert client.circuit_state == "open"

        with pytest.raises(SettlementUnknownError, match="circuit breaker is open"):
            await client.settle(payload, SIGNATURE)
        assert len(transport.requests) == 2

    @pytest.mark.asyncio
    async def test_rejection_does_not_trip_circuit(self, payload):
        transport = MockTransport()
        for _ in range(6):
            transport.add_response(422, {"reason": "Expired"})
        client = _make_client(transport)

        for _ in range(6):
            with pytest.raises(SettlementRejectedError):
                await client.settle(payload, SIGNATURE)
        assert client.circuit_state == "closed"


# =============================================================================
# Singleton selection
# =============================================================================


class TestGetLedger:

    @pytest.mark.asyncio
    async def test_http_mode(self, monkeypatch):
        import certmint.config as config_module

        monkeypatch.setattr(config_module, "LEDGER_MODE", "http")
        monkeypatch.setattr(config_module, "LEDGER_URL", "http://ledger.internal:9000/")
        reset_ledger()
        try:
            ledger = get_ledger()
            assert isinstance(ledger, LedgerClient)
            assert ledger.base_url == "http://ledger.internal:9000"
            assert get_ledger() is ledger
            await ledger.close()
        finally:
            reset_ledger()
