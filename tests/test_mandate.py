"""Tests for mandate models, typed data and signatures."""

import time

import pytest
from eth_account import Account

from tollgate.errors import SignatureError
from tollgate.mandate import (
    UNSIGNED,
    Mandate,
    MandateScope,
    RateLimit,
    derive_mandate_id,
    mandate_typed_data,
    recover_mandate_signer,
    sign_mandate,
)


def _key(account) -> str:
    return "0x" + bytes(account.key).hex()


@pytest.fixture
def principal():
    return Account.create()


@pytest.fixture
def agent():
    return Account.create()


@pytest.fixture
def mandate(principal, agent):
    expiry = int(time.time()) + 3600
    return Mandate(
        id=derive_mandate_id(agent.address, principal.address, expiry, 0),
        agent=agent.address,
        principal=principal.address,
        scope=MandateScope(
            max_amount=10 ** 18,
            total_budget=5 * 10 ** 18,
            allowed_recipients=["0x" + "11" * 20],
            rate_limit=RateLimit(max_transactions=3, period_seconds=60),
        ),
        expiry=expiry,
        signature=UNSIGNED,
        created_at=int(time.time()),
        nonce=0,
    )


class TestMandateId:
    def test_deterministic(self, principal, agent):
        a = derive_mandate_id(agent.address, principal.address, 1000, 1)
        b = derive_mandate_id(agent.address.lower(), principal.address.lower(), 1000, 1)
        assert a == b
        assert a.startswith("0x") and len(a) == 66

    def test_nonce_changes_id(self, principal, agent):
        assert derive_mandate_id(agent.address, principal.address, 1000, 0) != derive_mandate_id(
            agent.address, principal.address, 1000, 1
        )


class TestTypedData:
    def test_message_fields(self, mandate):
        typed = mandate_typed_data(mandate, chain_id=5003)
        assert typed["primaryType"] == "Mandate"
        assert typed["domain"]["chainId"] == 5003
        assert typed["message"]["maxAmount"] == 10 ** 18
        assert typed["message"]["nonce"] == 0
        assert typed["message"]["agent"] == mandate.agent


class TestSignatures:
    def test_sign_and_recover(self, mandate, principal):
        mandate.signature = sign_mandate(mandate, _key(principal))
        assert mandate.is_signed
        assert recover_mandate_signer(mandate) == principal.address

    def test_domain_mismatch_recovers_other_address(self, mandate, principal):
        mandate.signature = sign_mandate(mandate, _key(principal), chain_id=5003)
        assert recover_mandate_signer(mandate, chain_id=1) != principal.address

    def test_unsigned_mandate_cannot_be_recovered(self, mandate):
        with pytest.raises(SignatureError, match="unsigned"):
            recover_mandate_signer(mandate)

    def test_garbage_signature(self, mandate):
        mandate.signature = "0xdeadbeef"
        with pytest.raises(SignatureError):
            recover_mandate_signer(mandate)


class TestSerialization:
    def test_round_trip_keeps_wei_exact(self, mandate):
        mandate.used_amount = 123456789012345678901
        data = mandate.to_dict()
        assert data["scope"]["max_amount"] == str(10 ** 18)
        assert data["used_amount"] == "123456789012345678901"

        restored = Mandate.from_dict(data)
        assert restored == mandate

    def test_scope_defaults(self):
        scope = MandateScope.from_dict({"max_amount": "100"})
        assert scope.total_budget is None
        assert scope.allowed_tokens == []
        assert scope.rate_limit is None
