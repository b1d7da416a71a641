"""
Tollgate — authorization core for agent-initiated payments.

Three independent checks gate every payment:
Mandate bounds what the agent may spend → Policy applies business rules →
Risk screens the counterparties.
"""

__version__ = "0.1.0"

from .errors import (
    AuditIntegrityError,
    ConfigurationError,
    ExpiredError,
    NotApprovedError,
    NotFoundError,
    RevokedError,
    ScopeViolationError,
    SignatureError,
    TollgateError,
    ValidationError,
)
from .mandate import (
    Action,
    Mandate,
    MandateDecision,
    MandateScope,
    MandateStatus,
    MandateValidation,
    RateLimit,
    ScopeViolation,
)
from .mandate_authority import (
    InMemoryMandateAuthority,
    MandateAuthority,
    MandateAuthorityConfig,
    MandateAuthorityProvider,
)
from .policy import BulkDecision, Condition, Policy, PolicyContext, PolicyDecision
from .policy_engine import InMemoryPolicyEngine, PolicyEngineProvider, RuleEngine, RuleEngineConfig
from .risk import (
    BlacklistEntry,
    PatternMatch,
    ReputationFactor,
    ReputationScore,
    SweepReport,
    TransactionAnalysis,
    TransactionData,
)
from .risk_engine import InMemoryRiskEngine, RiskEngine, RiskEngineConfig, RiskEngineProvider
from .factory import (
    ProviderSettings,
    create_mandate_authority,
    create_policy_engine,
    create_risk_engine,
    settings_from_env,
)
from .audit import AuditTrail, EventType

__all__ = [
    "TollgateError", "NotFoundError", "NotApprovedError", "ExpiredError", "RevokedError",
    "ScopeViolationError", "ValidationError", "ConfigurationError", "SignatureError",
    "AuditIntegrityError",
    "Action", "Mandate", "MandateDecision", "MandateScope", "MandateStatus",
    "MandateValidation", "RateLimit", "ScopeViolation",
    "MandateAuthority", "MandateAuthorityConfig", "InMemoryMandateAuthority",
    "MandateAuthorityProvider",
    "BulkDecision", "Condition", "Policy", "PolicyContext", "PolicyDecision",
    "RuleEngine", "RuleEngineConfig", "InMemoryPolicyEngine", "PolicyEngineProvider",
    "BlacklistEntry", "PatternMatch", "ReputationFactor", "ReputationScore", "SweepReport",
    "TransactionAnalysis", "TransactionData",
    "RiskEngine", "RiskEngineConfig", "InMemoryRiskEngine", "RiskEngineProvider",
    "ProviderSettings", "settings_from_env",
    "create_mandate_authority", "create_policy_engine", "create_risk_engine",
    "AuditTrail", "EventType",
]
