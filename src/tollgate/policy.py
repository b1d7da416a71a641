"""Policy definitions, evaluation contexts and decisions."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional, Sequence, Union

from .mandate import DEFAULT_CHAIN_ID
from .money import parse_base_units


class PolicyEffect(str, Enum):
    ALLOW = "allow"
    DENY = "deny"
    WARN = "warn"


class PolicyAction(str, Enum):
    PAYMENT = "payment"
    SWAP = "swap"
    TRANSFER = "transfer"
    STAKE = "stake"
    LEND = "lend"
    WITHDRAW = "withdraw"
    APPROVE = "approve"
    CUSTOM = "custom"


OPERATORS = frozenset(
    {"eq", "neq", "gt", "gte", "lt", "lte", "in", "notIn", "contains", "matches"}
)
EFFECTS = frozenset(e.value for e in PolicyEffect)
ACTION_TYPES = frozenset(a.value for a in PolicyAction)


@dataclass
class Condition:
    field: str
    operator: str
    value: Any = None

    def to_dict(self) -> dict[str, Any]:
        return {"field": self.field, "operator": self.operator, "value": self.value}

    @classmethod
    def coerce(cls, raw: Union["Condition", Mapping[str, Any], Sequence[Any]]) -> "Condition":
        """Build a condition from a mapping or a (field, operator, value) tuple."""
        if isinstance(raw, Condition):
            return raw
        if isinstance(raw, Mapping):
            return cls(
                field=str(raw.get("field") or ""),
                operator=str(raw.get("operator") or ""),
                value=raw.get("value"),
            )
        field_name, operator, value = raw
        return cls(field=field_name, operator=operator, value=value)


@dataclass
class Policy:
    id: str
    name: str
    description: str = ""
    priority: int = 100
    enabled: bool = True
    applies_to: list[str] = field(default_factory=list)
    conditions: list[Condition] = field(default_factory=list)
    effect: str = PolicyEffect.ALLOW.value
    created_at: int = 0
    updated_at: int = 0

    def applies(self, action: str) -> bool:
        return self.enabled and action in self.applies_to

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "priority": self.priority,
            "enabled": self.enabled,
            "applies_to": list(self.applies_to),
            "conditions": [c.to_dict() for c in self.conditions],
            "effect": self.effect,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Policy":
        return cls(
            id=str(data.get("id") or ""),
            name=str(data.get("name") or ""),
            description=str(data.get("description") or ""),
            priority=int(data.get("priority", 100)),
            enabled=bool(data.get("enabled", True)),
            applies_to=[str(a) for a in data.get("applies_to") or []],
            conditions=[Condition.coerce(c) for c in data.get("conditions") or []],
            effect=str(data.get("effect") or ""),
            created_at=int(data.get("created_at", 0)),
            updated_at=int(data.get("updated_at", 0)),
        )


@dataclass
class PolicyContext:
    """Everything a condition may look at for one attempted action."""

    action: str
    actor: str
    target: Optional[str] = None
    amount: Optional[int] = None
    token: Optional[str] = None
    chain_id: int = DEFAULT_CHAIN_ID
    timestamp: int = field(default_factory=lambda: int(time.time()))
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action,
            "actor": self.actor,
            "target": self.target,
            "amount": str(self.amount) if self.amount is not None else None,
            "token": self.token,
            "chain_id": self.chain_id,
            "timestamp": self.timestamp,
            "data": dict(self.data),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PolicyContext":
        amount = data.get("amount")
        return cls(
            action=str(data["action"]),
            actor=str(data.get("actor") or ""),
            target=data.get("target"),
            amount=parse_base_units(amount) if amount is not None else None,
            token=data.get("token"),
            chain_id=int(data.get("chain_id", data.get("chainId", DEFAULT_CHAIN_ID))),
            timestamp=int(data.get("timestamp") or time.time()),
            data=dict(data.get("data") or {}),
        )


@dataclass
class PolicyDecision:
    allowed: bool
    reason: str
    policies_evaluated: list[str] = field(default_factory=list)
    denying_policy: Optional[str] = None
    warnings: Optional[list[str]] = None
    required_modifications: Optional[dict[str, Any]] = None
    evaluated_at: int = field(default_factory=lambda: int(time.time()))

    def to_dict(self) -> dict[str, Any]:
        return {
            "allowed": self.allowed,
            "reason": self.reason,
            "policies_evaluated": list(self.policies_evaluated),
            "denying_policy": self.denying_policy,
            "warnings": self.warnings,
            "required_modifications": self.required_modifications,
            "evaluated_at": self.evaluated_at,
        }


@dataclass
class BulkDecision:
    decisions: list[PolicyDecision]
    overall_allowed: bool
    denial_summary: list[str]

    @classmethod
    def from_decisions(cls, decisions: list[PolicyDecision]) -> "BulkDecision":
        return cls(
            decisions=decisions,
            overall_allowed=all(d.allowed for d in decisions),
            denial_summary=[d.reason for d in decisions if not d.allowed],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "decisions": [d.to_dict() for d in self.decisions],
            "overall_allowed": self.overall_allowed,
            "denial_summary": list(self.denial_summary),
        }
