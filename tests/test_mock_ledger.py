# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""Tests for the in-process settlement ledger."""

import dataclasses

import pytest

from certmint.codec import CertificationPayload, SigningDomain, TypedDataCodec
from certmint.exceptions import SettlementRejectedError
from certmint.ledger import MockLedger
from certmint.ledger.mock import GENESIS_BLOCK
from certmint.models import SettlementRejection

DOMAIN = SigningDomain(name="CertMint", version="1", chain_id=31337)


@pytest.fixture
def sign(accounts):
    codec = TypedDataCodec()

    def _sign(request_id=1, amount=500, expiry=1_700_003_600, signer="mumbai_admin"):
        payload = CertificationPayload(
            producer=accounts["producer"].address,
            amount=amount,
            request_id=request_id,
            expiry=expiry,
            certifier=accounts[signer].address,
        )
        return payload, codec.sign(accounts[signer].key, DOMAIN, payload)

    return _sign


@pytest.fixture
def ledger(accounts, clock):
    return MockLedger(domain=DOMAIN, certifiers=[accounts["mumbai_admin"].address], clock=clock)


async def test_settles_and_tracks_balance(ledger, sign, accounts):
    first = await ledger.settle(*sign(request_id=1, amount=500))
    second = await ledger.settle(*sign(request_id=2, amount=250))

    assert first.block_number == GENESIS_BLOCK + 1
    assert second.block_number == GENESIS_BLOCK + 2
    assert first.settlement_ref != second.settlement_ref
    assert first.settlement_ref.startswith("0x") and len(first.settlement_ref) == 66
    assert ledger.minted_amount(accounts["producer"].address.lower()) == 750
    assert ledger.receipt_for(2) == second


async def test_identical_resubmission_returns_original_receipt(ledger, sign, accounts):
    payload, signature = sign()
    first = await ledger.settle(payload, signature)
    again = await ledger.settle(payload, signature)

    assert again == first
    assert ledger.minted_amount(accounts["producer"].address) == 500


async def test_identical_resubmission_after_expiry_still_replays(ledger, sign, clock):
    payload, signature = sign(expiry=clock.now + 5)
    first = await ledger.settle(payload, signature)
    clock.advance(10)
    assert await ledger.settle(payload, signature) == first


async def test_other_certification_for_settled_request(ledger, sign):
    await ledger.settle(*sign(expiry=1_700_003_600))
    with pytest.raises(SettlementRejectedError) as exc_info:
        await ledger.settle(*sign(expiry=1_700_007_200))
    assert exc_info.value.reason == SettlementRejection.ALREADY_SETTLED.value


async def test_tampered_amount_is_bad_signature(ledger, sign):
    payload, signature = sign(amount=500)
    with pytest.raises(SettlementRejectedError) as exc_info:
        await ledger.settle(dataclasses.replace(payload, amount=5000), signature)
    assert exc_info.value.reason == SettlementRejection.BAD_SIGNATURE.value


async def test_unauthorized_certifier(ledger, sign):
    with pytest.raises(SettlementRejectedError) as exc_info:
        await ledger.settle(*sign(signer="pune_admin"))
    assert exc_info.value.reason == SettlementRejection.INSUFFICIENT_AUTHORIZATION.value


async def test_expired(ledger, sign, clock):
    with pytest.raises(SettlementRejectedError) as exc_info:
        await ledger.settle(*sign(expiry=clock.now - 1))
    assert exc_info.value.reason == SettlementRejection.EXPIRED.value


async def test_open_certifier_set_accepts_any_valid_signer(sign, clock):
    ledger = MockLedger(domain=DOMAIN, certifiers=None, clock=clock)
    receipt = await ledger.settle(*sign(signer="pune_admin"))
    assert receipt.block_number == GENESIS_BLOCK + 1
