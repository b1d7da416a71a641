"""
Built-in payment rule sets.

Each accessor returns freshly built Policy objects, so an engine can mutate
what it loads without touching other engines.
"""

from __future__ import annotations

import time
from typing import Any, Iterable, Sequence

from .money import WEI_PER_ETHER
from .policy import Condition, Policy, PolicyEffect


MAX_PAYMENT = 100 * WEI_PER_ETHER
STRICT_MAX_PAYMENT = 10 * WEI_PER_ETHER
KYC_THRESHOLD = 1 * WEI_PER_ETHER
HIGH_VALUE = 10 * WEI_PER_ETHER
DUST_THRESHOLD = 10 ** 12
RATE_WARNING_COUNT = 80

USDC_MANTLE = "0x09bc4e0d864854c6afb6eb9a9cdf58ac190d0df9"
ETH_WRAPPER = "0xdeaddeaddeaddeaddeaddeaddeaddeaddead1111"

ALL_VALUE_ACTIONS = ("payment", "transfer", "swap", "stake", "lend")


def rule(
    id: str,
    name: str,
    *conditions: Sequence[Any],
    description: str = "",
    priority: int = 100,
    applies_to: Iterable[str] = (),
    effect: str = PolicyEffect.ALLOW.value,
    enabled: bool = True,
) -> Policy:
    """Build a policy from keyword arguments and (field, operator, value) tuples."""
    now = int(time.time())
    return Policy(
        id=id,
        name=name,
        description=description,
        priority=priority,
        enabled=enabled,
        applies_to=list(applies_to),
        conditions=[Condition.coerce(c) for c in conditions],
        effect=effect,
        created_at=now,
        updated_at=now,
    )


def max_payment_limit() -> Policy:
    return rule(
        "max-payment-limit",
        "Maximum Payment Limit",
        ("amount", "gt", MAX_PAYMENT),
        description="Deny payments exceeding maximum allowed amount",
        priority=10,
        applies_to=("payment", "transfer"),
        effect="deny",
    )


def blacklist_check() -> Policy:
    # The empty list is filled at evaluation time from the engine's blacklist.
    return rule(
        "blacklist-check",
        "Blacklist Check",
        ("target", "in", []),
        description="Deny actions to/from blacklisted addresses",
        priority=1,
        applies_to=ALL_VALUE_ACTIONS,
        effect="deny",
    )


def min_payment_threshold() -> Policy:
    return rule(
        "min-payment-threshold",
        "Minimum Payment Threshold",
        ("amount", "lt", DUST_THRESHOLD),
        description="Deny payments below dust threshold",
        priority=20,
        applies_to=("payment", "transfer"),
        effect="deny",
    )


def allowed_tokens_only() -> Policy:
    """Opt-in rule; not part of any built-in set."""
    return rule(
        "allowed-tokens",
        "Allowed Tokens Only",
        ("token", "in", [None, USDC_MANTLE, ETH_WRAPPER]),
        description="Only allow approved tokens",
        priority=15,
        applies_to=("swap", "transfer", "stake"),
        effect="allow",
    )


def rate_limit_warning() -> Policy:
    return rule(
        "rate-limit-warning",
        "Rate Limit Warning",
        ("data.transactionCount24h", "gte", RATE_WARNING_COUNT),
        description="Warn when approaching rate limits",
        priority=50,
        applies_to=("payment", "transfer", "swap"),
        effect="warn",
    )


def high_value_warning() -> Policy:
    return rule(
        "high-value-warning",
        "High Value Warning",
        ("amount", "gte", HIGH_VALUE),
        description="Warn on high value transactions",
        priority=40,
        applies_to=("payment", "transfer", "swap"),
        effect="warn",
    )


def default_allow() -> Policy:
    return rule(
        "default-allow",
        "Default Allow",
        description="Allow all actions not explicitly denied",
        priority=1000,
        applies_to=("payment", "transfer", "swap", "stake", "lend", "withdraw", "approve"),
        effect="allow",
    )


def strict_payment_limit() -> Policy:
    return rule(
        "strict-payment-limit",
        "Strict Payment Limit",
        ("amount", "gt", STRICT_MAX_PAYMENT),
        description="Lower payment limit for production",
        priority=10,
        applies_to=("payment", "transfer"),
        effect="deny",
    )


def kyc_required() -> Policy:
    return rule(
        "kyc-required",
        "KYC Required",
        ("amount", "gt", KYC_THRESHOLD),
        ("data.kycVerified", "neq", True),
        description="Require KYC for transactions over threshold",
        priority=5,
        applies_to=("payment", "transfer", "swap"),
        effect="deny",
    )


def default_payment_policies() -> list[Policy]:
    return [
        max_payment_limit(),
        blacklist_check(),
        min_payment_threshold(),
        high_value_warning(),
        rate_limit_warning(),
        default_allow(),
    ]


def strict_policies() -> list[Policy]:
    return [
        strict_payment_limit(),
        kyc_required(),
        blacklist_check(),
        min_payment_threshold(),
        high_value_warning(),
        default_allow(),
    ]


def permissive_policies() -> list[Policy]:
    return [blacklist_check(), default_allow()]


def policies_for_environment(env: str) -> list[Policy]:
    if env == "production":
        return strict_policies()
    if env == "test":
        return permissive_policies()
    return default_payment_policies()
