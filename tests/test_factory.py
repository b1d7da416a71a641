"""Tests for environment-driven provider selection."""

import pytest

from tollgate.errors import ConfigurationError
from tollgate.factory import (
    ProviderSettings,
    create_mandate_authority,
    create_policy_engine,
    create_risk_engine,
    settings_from_env,
)
from tollgate.mandate_authority import InMemoryMandateAuthority, MandateAuthority
from tollgate.policy import PolicyContext
from tollgate.policy_engine import InMemoryPolicyEngine, RuleEngine
from tollgate.risk_engine import InMemoryRiskEngine, RiskEngine


BAD = "0x" + "ba" * 20


def test_defaults_are_in_memory():
    settings = settings_from_env({})
    assert isinstance(create_mandate_authority(settings), InMemoryMandateAuthority)
    assert isinstance(create_policy_engine(settings), InMemoryPolicyEngine)
    assert isinstance(create_risk_engine(settings), InMemoryRiskEngine)


def test_production_providers():
    settings = settings_from_env(
        {
            "TOLLGATE_MANDATE_PROVIDER": "production",
            "TOLLGATE_POLICY_PROVIDER": "Rules",
            "TOLLGATE_RISK_PROVIDER": "default",
            "TOLLGATE_RISK_SWEEP_INTERVAL": "0",
            "TOLLGATE_CHAIN_ID": "1",
            "TOLLGATE_ENV": "production",
        }
    )
    authority = create_mandate_authority(settings)
    assert isinstance(authority, MandateAuthority)
    assert authority.config.chain_id == 1

    engine = create_policy_engine(settings)
    assert isinstance(engine, RuleEngine)
    assert engine.get_policy("kyc-required") is not None

    with create_risk_engine(settings) as risk:
        assert isinstance(risk, RiskEngine)


def test_unknown_provider_falls_back(caplog):
    settings = ProviderSettings(policy_provider="opa")
    assert isinstance(create_policy_engine(settings), InMemoryPolicyEngine)
    assert "Unknown policy provider" in caplog.text


def test_blacklist_reaches_both_variants():
    settings = settings_from_env(
        {"TOLLGATE_POLICY_BLACKLIST": f" {BAD} , ", "TOLLGATE_RISK_BLACKLIST": BAD}
    )
    assert settings.policy.blacklist == [BAD]
    assert settings.memory_policy.deny_addresses == [BAD]
    assert settings.memory_risk.blacklisted_addresses == [BAD]

    engine = create_policy_engine(settings)
    decision = engine.evaluate(PolicyContext(action="payment", actor="0xa", target=BAD))
    assert not decision.allowed


def test_bad_numbers_raise():
    with pytest.raises(ConfigurationError, match="TOLLGATE_CHAIN_ID"):
        settings_from_env({"TOLLGATE_CHAIN_ID": "mainnet"})
    with pytest.raises(ConfigurationError, match="TOLLGATE_RISK_SWEEP_INTERVAL"):
        settings_from_env({"TOLLGATE_RISK_SWEEP_INTERVAL": "often"})


def test_flags_and_expiry():
    settings = settings_from_env(
        {
            "TOLLGATE_REQUIRE_SIGNATURE": "yes",
            "TOLLGATE_MANDATE_APPROVE_ALL": "1",
            "TOLLGATE_RISK_BLACKLIST_EXPIRY": "3600",
        }
    )
    assert settings.mandate.require_signature
    assert settings.memory_mandate.approve_all
    assert settings.risk.blacklist_expiry == 3600
    assert settings_from_env({}).risk.blacklist_expiry is None
