# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""Tests for the CertMint HTTP API."""

from typing import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient

import certmint.config as config_module
from certmint.codec import CertificationPayload, TypedDataCodec, default_domain
from certmint.keyring import get_keyring
from certmint.ledger import MockLedger, get_ledger

DOCS = ["d4" * 32, "e5" * 32]


@pytest.fixture
def ledger(keyring):
    return MockLedger(certifiers=keyring.addresses)


@pytest.fixture
async def client(hierarchy, keyring, ledger) -> AsyncGenerator[AsyncClient, None]:
    """API client on an isolated database with the test keyring and mock ledger.

    ASGITransport does not run the lifespan; the ``certmint_env`` fixture
    has already created the tables.
    """
    from certmint.main import app

    app.dependency_overrides[get_keyring] = lambda: keyring
    app.dependency_overrides[get_ledger] = lambda: ledger
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as async_client:
        yield async_client
    app.dependency_overrides.clear()


def as_wallet(account) -> dict:
    return {"X-Acting-Wallet": account.address}


async def _submit(client, account, amount=500, docs=DOCS):
    response = await client.post(
        "/requests",
        json={"amount": amount, "document_hashes": docs, "metadata": {"batch": "B-7"}},
        headers=as_wallet(account),
    )
    return response


# =============================================================================
# Health
# =============================================================================


class TestHealth:

    async def test_livez(self, client):
        response = await client.get("/livez")
        assert response.status_code == 200
        assert response.json() == {"status": "alive"}

    async def test_healthz(self, client):
        response = await client.get("/healthz")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["database"] is True
        assert data["ledger_mode"] == "mock"

    async def test_version(self, client):
        response = await client.get("/version")
        assert response.json()["service"] == "certmint"


# =============================================================================
# Authentication
# =============================================================================


class TestAuth:

    async def test_missing_acting_wallet(self, client):
        response = await client.get("/requests")
        assert response.status_code == 401
        assert response.json()["code"] == "UNAUTHENTICATED"

    async def test_malformed_acting_wallet(self, client):
        response = await client.get("/requests", headers={"X-Acting-Wallet": "nope"})
        assert response.status_code == 422
        assert response.json()["code"] == "INVALID_REQUEST"

    async def test_unregistered_wallet(self, client, hierarchy):
        response = await client.get("/requests", headers=as_wallet(hierarchy["outsider"]))
        assert response.status_code == 403

    async def test_bearer_token_enforced(self, client, hierarchy, monkeypatch):
        monkeypatch.setattr(config_module, "AUTH_TOKEN", "gateway-secret")
        headers = as_wallet(hierarchy["producer"])

        response = await client.get("/requests", headers=headers)
        assert response.status_code == 401

        response = await client.get(
            "/requests", headers={**headers, "Authorization": "Bearer wrong"}
        )
        assert response.status_code == 401

        response = await client.get(
            "/requests", headers={**headers, "Authorization": "Bearer gateway-secret"}
        )
        assert response.status_code == 200

        # Probes stay open.
        assert (await client.get("/livez")).status_code == 200


# =============================================================================
# Request lifecycle
# =============================================================================


class TestLifecycle:

    async def test_submit_certify_claim(self, client, hierarchy, ledger):
        response = await _submit(client, hierarchy["producer"])
        assert response.status_code == 201
        request = response.json()
        assert request["status"] == "PENDING"
        request_id = request["request_id"]

        response = await client.post(
            f"/requests/{request_id}/certify",
            json={"ttl_seconds": 3600},
            headers=as_wallet(hierarchy["mumbai_admin"]),
        )
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "CERTIFIED"
        certification = data["certification"]
        assert certification["requestId"] == request_id
        assert certification["amount"] == 500
        signer = TypedDataCodec().verify(
            default_domain(), CertificationPayload.from_message(certification), data["signature"]
        )
        assert signer == hierarchy["mumbai_admin"].address

        response = await client.post(
            f"/requests/{request_id}/claim", headers=as_wallet(hierarchy["producer"])
        )
        assert response.status_code == 200
        claim = response.json()
        assert claim["status"] == "MINTED"
        assert claim["settlement_ref"] == ledger.receipt_for(request_id).settlement_ref

        response = await client.get(
            f"/requests/{request_id}", headers=as_wallet(hierarchy["producer"])
        )
        assert response.json()["status"] == "MINTED"

        response = await client.post(
            f"/requests/{request_id}/claim", headers=as_wallet(hierarchy["producer"])
        )
        assert response.status_code == 409
        assert response.json()["code"] == "INVALID_STATE"

    async def test_certify_without_body_uses_default_ttl(self, client, hierarchy):
        request_id = (await _submit(client, hierarchy["producer"])).json()["request_id"]
        response = await client.post(
            f"/requests/{request_id}/certify", headers=as_wallet(hierarchy["mumbai_admin"])
        )
        assert response.status_code == 200

    async def test_duplicate_batch(self, client, hierarchy):
        first = (await _submit(client, hierarchy["producer"])).json()["request_id"]
        second = (await _submit(client, hierarchy["producer2"])).json()["request_id"]
        admin = as_wallet(hierarchy["mumbai_admin"])

        assert (await client.post(f"/requests/{first}/certify", headers=admin)).status_code == 200
        response = await client.post(f"/requests/{second}/certify", headers=admin)
        assert response.status_code == 409
        body = response.json()
        assert body["code"] == "DUPLICATE_BATCH"
        assert body["recoverable"] is False
        assert "signature" not in body

        response = await client.get(f"/requests/{second}", headers=admin)
        assert response.json()["status"] == "PENDING"
        assert response.json()["certification_signature"] is None

    async def test_other_city_cannot_certify(self, client, hierarchy):
        request_id = (await _submit(client, hierarchy["producer"])).json()["request_id"]
        response = await client.post(
            f"/requests/{request_id}/certify", headers=as_wallet(hierarchy["pune_admin"])
        )
        assert response.status_code == 403
        assert "jurisdiction" in response.json()["message"]

    async def test_reject(self, client, hierarchy):
        request_id = (await _submit(client, hierarchy["producer"])).json()["request_id"]
        response = await client.post(
            f"/requests/{request_id}/reject",
            json={"reason": "meter photos missing"},
            headers=as_wallet(hierarchy["mumbai_admin"]),
        )
        assert response.status_code == 200
        assert response.json()["status"] == "REJECTED"
        assert response.json()["rejection_reason"] == "meter photos missing"

    async def test_claim_by_other_producer(self, client, hierarchy):
        request_id = (await _submit(client, hierarchy["producer"])).json()["request_id"]
        await client.post(
            f"/requests/{request_id}/certify", headers=as_wallet(hierarchy["mumbai_admin"])
        )
        response = await client.post(
            f"/requests/{request_id}/claim", headers=as_wallet(hierarchy["producer2"])
        )
        assert response.status_code == 403

    async def test_invalid_amount(self, client, hierarchy):
        response = await _submit(client, hierarchy["producer"], amount=-3)
        assert response.status_code == 422
        assert response.json()["code"] == "INVALID_AMOUNT"

    async def test_invalid_evidence(self, client, hierarchy):
        response = await _submit(client, hierarchy["producer"], docs=["not-hex"])
        assert response.status_code == 422
        assert response.json()["code"] == "INVALID_EVIDENCE"

    async def test_pending_limit(self, client, hierarchy):
        for _ in range(config_module.MAX_PENDING_PER_PRODUCER):
            assert (await _submit(client, hierarchy["producer"])).status_code == 201
        response = await _submit(client, hierarchy["producer"])
        assert response.status_code == 429
        assert response.json()["recoverable"] is True

    async def test_missing_request(self, client, hierarchy):
        response = await client.get("/requests/12345", headers=as_wallet(hierarchy["auditor"]))
        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"


# =============================================================================
# Listing and visibility
# =============================================================================


class TestVisibility:

    async def test_producer_sees_only_own_requests(self, client, hierarchy):
        await _submit(client, hierarchy["producer"])
        other = (await _submit(client, hierarchy["producer2"])).json()["request_id"]

        response = await client.get("/requests", headers=as_wallet(hierarchy["producer"]))
        data = response.json()
        assert data["total"] == 1
        assert data["requests"][0]["producer"] == hierarchy["producer"].address

        response = await client.get(f"/requests/{other}", headers=as_wallet(hierarchy["producer"]))
        assert response.status_code == 404

    async def test_admin_filters_by_status_and_producer(self, client, hierarchy):
        await _submit(client, hierarchy["producer"])
        await _submit(client, hierarchy["producer2"])
        admin = as_wallet(hierarchy["mumbai_admin"])

        data = (await client.get("/requests", params={"status": "PENDING"}, headers=admin)).json()
        assert data["total"] == 2

        data = (await client.get(
            "/requests",
            params={"producer": hierarchy["producer2"].address.lower()},
            headers=admin,
        )).json()
        assert data["total"] == 1

    async def test_audit_trail(self, client, hierarchy):
        request_id = (await _submit(client, hierarchy["producer"])).json()["request_id"]
        await client.post(
            f"/requests/{request_id}/certify", headers=as_wallet(hierarchy["pune_admin"])
        )

        response = await client.get(
            f"/requests/{request_id}/audit", headers=as_wallet(hierarchy["auditor"])
        )
        assert response.status_code == 200
        events = response.json()["events"]
        assert [(e["action"], e["outcome"]) for e in events] == [
            ("request.submit", "success"),
            ("request.certify", "FORBIDDEN"),
        ]
        assert events[1]["actor"] == hierarchy["pune_admin"].address

        response = await client.get(
            f"/requests/{request_id}/audit", headers=as_wallet(hierarchy["producer"])
        )
        assert response.status_code == 403


# =============================================================================
# Identities
# =============================================================================


class TestIdentities:

    async def test_onboard_and_verify(self, client, hierarchy):
        admin = as_wallet(hierarchy["mumbai_admin"])
        response = await client.post(
            "/identities",
            json={
                "wallet": hierarchy["outsider"].address.lower(),
                "role": "PRODUCER",
                "country": "India",
                "state": "Maharashtra",
                "city": "Mumbai",
                "name": "Green Plant 9",
            },
            headers=admin,
        )
        assert response.status_code == 201
        assert response.json()["wallet"] == hierarchy["outsider"].address
        assert response.json()["verified"] is False

        response = await client.post(
            f"/identities/{hierarchy['outsider'].address}/verify", json={}, headers=admin
        )
        assert response.status_code == 200
        assert response.json()["verified"] is True
        assert response.json()["verified_by"] == hierarchy["mumbai_admin"].address

    async def test_onboard_outside_jurisdiction(self, client, hierarchy):
        response = await client.post(
            "/identities",
            json={
                "wallet": hierarchy["outsider"].address,
                "role": "PRODUCER",
                "country": "India",
                "state": "Maharashtra",
                "city": "Pune",
            },
            headers=as_wallet(hierarchy["mumbai_admin"]),
        )
        assert response.status_code == 403

    async def test_onboard_malformed_wallet_is_audited(self, client, hierarchy, db):
        from certmint.db.models import AuditEventRecord

        response = await client.post(
            "/identities",
            json={"wallet": "0xfeed", "role": "BUYER"},
            headers=as_wallet(hierarchy["mumbai_admin"]),
        )
        assert response.status_code == 422
        assert response.json()["code"] == "INVALID_REQUEST"

        record = (
            db.query(AuditEventRecord)
            .filter(AuditEventRecord.action == "identity.onboard")
            .one()
        )
        assert record.outcome == "INVALID_REQUEST"
        assert record.actor == hierarchy["mumbai_admin"].address
        assert record.target == "0xfeed"

    async def test_get_identity(self, client, hierarchy):
        response = await client.get(
            f"/identities/{hierarchy['producer'].address}",
            headers=as_wallet(hierarchy["buyer"]),
        )
        assert response.status_code == 200
        assert response.json()["role"] == "PRODUCER"
        assert response.json()["city"] == "Mumbai"

        response = await client.get(
            f"/identities/{hierarchy['outsider'].address}",
            headers=as_wallet(hierarchy["buyer"]),
        )
        assert response.status_code == 404
