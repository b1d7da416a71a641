"""
Provider selection.

Constructors take explicit config objects; this module is the only place
that reads the environment. Unknown provider kinds fall back to the
in-memory variants.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Mapping, Optional

from .audit import AuditTrail
from .errors import ConfigurationError
from .mandate import DEFAULT_CHAIN_ID
from .mandate_authority import (
    InMemoryMandateAuthority,
    InMemoryMandateConfig,
    MandateAuthority,
    MandateAuthorityConfig,
    MandateAuthorityProvider,
)
from .policy_engine import (
    InMemoryPolicyConfig,
    InMemoryPolicyEngine,
    PolicyEngineProvider,
    RuleEngine,
    RuleEngineConfig,
)
from .risk_engine import (
    InMemoryRiskConfig,
    InMemoryRiskEngine,
    RiskEngine,
    RiskEngineConfig,
    RiskEngineProvider,
)


logger = logging.getLogger(__name__)

MANDATE_PRODUCTION = "production"
POLICY_RULES = "rules"
RISK_DEFAULT = "default"
MEMORY = "memory"


@dataclass
class ProviderSettings:
    mandate_provider: str = MEMORY
    mandate: MandateAuthorityConfig = field(default_factory=MandateAuthorityConfig)
    memory_mandate: InMemoryMandateConfig = field(default_factory=InMemoryMandateConfig)

    policy_provider: str = MEMORY
    policy: RuleEngineConfig = field(default_factory=RuleEngineConfig)
    memory_policy: InMemoryPolicyConfig = field(default_factory=InMemoryPolicyConfig)

    risk_provider: str = MEMORY
    risk: RiskEngineConfig = field(default_factory=RiskEngineConfig)
    memory_risk: InMemoryRiskConfig = field(default_factory=InMemoryRiskConfig)


def _get_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw.strip())
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from None


def _get_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw.strip())
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from None


def _get_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _get_list(env: Mapping[str, str], name: str) -> list[str]:
    raw = env.get(name) or ""
    return [item.strip() for item in raw.split(",") if item.strip()]


def settings_from_env(environ: Optional[Mapping[str, str]] = None) -> ProviderSettings:
    """Build provider settings from TOLLGATE_* environment variables."""
    env = os.environ if environ is None else environ

    policy_blacklist = _get_list(env, "TOLLGATE_POLICY_BLACKLIST")
    risk_blacklist = _get_list(env, "TOLLGATE_RISK_BLACKLIST")
    blacklist_expiry = _get_int(env, "TOLLGATE_RISK_BLACKLIST_EXPIRY", 0)

    return ProviderSettings(
        mandate_provider=(env.get("TOLLGATE_MANDATE_PROVIDER") or MEMORY).strip().lower(),
        mandate=MandateAuthorityConfig(
            chain_id=_get_int(env, "TOLLGATE_CHAIN_ID", DEFAULT_CHAIN_ID),
            verifying_contract=env.get("TOLLGATE_MANDATE_VERIFIER") or None,
            signer_key=env.get("TOLLGATE_SIGNER_KEY") or None,
            require_signature=_get_bool(env, "TOLLGATE_REQUIRE_SIGNATURE", False),
        ),
        memory_mandate=InMemoryMandateConfig(
            approve_all=_get_bool(env, "TOLLGATE_MANDATE_APPROVE_ALL", False),
            simulated_delay=_get_float(env, "TOLLGATE_MANDATE_DELAY", 0.0),
        ),
        policy_provider=(env.get("TOLLGATE_POLICY_PROVIDER") or MEMORY).strip().lower(),
        policy=RuleEngineConfig(
            use_defaults=_get_bool(env, "TOLLGATE_POLICY_USE_DEFAULTS", True),
            environment=(env.get("TOLLGATE_ENV") or "development").strip().lower(),
            blacklist=policy_blacklist,
        ),
        memory_policy=InMemoryPolicyConfig(
            default_decision=(env.get("TOLLGATE_POLICY_DEFAULT") or "allow").strip().lower(),
            deny_addresses=policy_blacklist,
            simulated_delay=_get_float(env, "TOLLGATE_POLICY_DELAY", 0.0),
        ),
        risk_provider=(env.get("TOLLGATE_RISK_PROVIDER") or MEMORY).strip().lower(),
        risk=RiskEngineConfig(
            base_reputation_score=_get_float(env, "TOLLGATE_RISK_BASE_SCORE", 50),
            score_validity_period=_get_int(env, "TOLLGATE_RISK_SCORE_TTL", 86400),
            min_transactions_for_score=_get_int(env, "TOLLGATE_RISK_MIN_TX", 5),
            high_value_threshold=_get_int(env, "TOLLGATE_RISK_HIGH_VALUE", 10 * 10 ** 18),
            velocity_limit=_get_int(env, "TOLLGATE_RISK_VELOCITY_LIMIT", 50),
            blacklist_expiry=blacklist_expiry or None,
            sweep_interval=_get_float(env, "TOLLGATE_RISK_SWEEP_INTERVAL", 60),
            initial_blacklist=risk_blacklist,
        ),
        memory_risk=InMemoryRiskConfig(
            default_reputation_score=_get_float(env, "TOLLGATE_RISK_MOCK_SCORE", 75),
            blacklisted_addresses=risk_blacklist,
            always_safe=_get_bool(env, "TOLLGATE_RISK_MOCK_SAFE", True),
            simulated_delay=_get_float(env, "TOLLGATE_RISK_DELAY", 0.0),
        ),
    )


def _fallback(layer: str, kind: str) -> None:
    if kind != MEMORY:
        logger.warning("Unknown %s provider %r; using in-memory provider", layer, kind)


def create_mandate_authority(
    settings: Optional[ProviderSettings] = None,
    audit: Optional[AuditTrail] = None,
) -> MandateAuthorityProvider:
    settings = settings or settings_from_env()
    if settings.mandate_provider == MANDATE_PRODUCTION:
        return MandateAuthority(settings.mandate, audit=audit)
    _fallback("mandate", settings.mandate_provider)
    return InMemoryMandateAuthority(settings.memory_mandate)


def create_policy_engine(
    settings: Optional[ProviderSettings] = None,
    audit: Optional[AuditTrail] = None,
) -> PolicyEngineProvider:
    settings = settings or settings_from_env()
    if settings.policy_provider == POLICY_RULES:
        return RuleEngine(settings.policy, audit=audit)
    _fallback("policy", settings.policy_provider)
    return InMemoryPolicyEngine(settings.memory_policy)


def create_risk_engine(
    settings: Optional[ProviderSettings] = None,
    audit: Optional[AuditTrail] = None,
) -> RiskEngineProvider:
    settings = settings or settings_from_env()
    if settings.risk_provider == RISK_DEFAULT:
        return RiskEngine(settings.risk, audit=audit)
    _fallback("risk", settings.risk_provider)
    return InMemoryRiskEngine(settings.memory_risk)
