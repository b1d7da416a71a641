"""Tests for the built-in rule sets."""

from tollgate.policy import PolicyContext
from tollgate.policy_engine import RuleEngine, RuleEngineConfig
from tollgate.rules import (
    allowed_tokens_only,
    default_payment_policies,
    policies_for_environment,
    rule,
)


ETH = 10 ** 18


def _ids(policies):
    return [p.id for p in policies]


def test_environment_selection():
    assert "strict-payment-limit" in _ids(policies_for_environment("production"))
    assert _ids(policies_for_environment("test")) == ["blacklist-check", "default-allow"]
    assert _ids(policies_for_environment("staging")) == _ids(default_payment_policies())


def test_rule_sets_are_fresh_objects():
    first = default_payment_policies()
    first[0].enabled = False
    assert default_payment_policies()[0].enabled


def test_rule_builder_accepts_tuples():
    policy = rule("r", "R", ("amount", "gt", 1), applies_to=("payment",), effect="deny")
    assert policy.conditions[0].field == "amount"
    assert policy.applies_to == ["payment"]
    assert policy.created_at == policy.updated_at > 0


class TestStrictRules:
    def _engine(self):
        return RuleEngine(RuleEngineConfig(environment="production"))

    def test_kyc_required_over_threshold(self):
        engine = self._engine()
        ctx = PolicyContext(action="payment", actor="0xa", target="0xb", amount=2 * ETH)
        decision = engine.evaluate(ctx)
        assert not decision.allowed
        assert decision.denying_policy == "kyc-required"

        ctx.data["kycVerified"] = True
        assert engine.evaluate(ctx).allowed

    def test_strict_limit(self):
        engine = self._engine()
        ctx = PolicyContext(
            action="transfer",
            actor="0xa",
            target="0xb",
            amount=11 * ETH,
            data={"kycVerified": True},
        )
        assert engine.evaluate(ctx).denying_policy == "strict-payment-limit"


def test_allowed_tokens_is_opt_in():
    assert "allowed-tokens" not in _ids(default_payment_policies())
    policy = allowed_tokens_only()
    assert policy.effect == "allow"
    assert policy.conditions[0].value[0] is None
