"""
Policy engine providers.

RuleEngine evaluates prioritized policies locally; no external policy
server is involved. InMemoryPolicyEngine returns configured decisions
without looking at conditions at all.
"""

from __future__ import annotations

import copy
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Protocol, Union

from .audit import AuditTrail, EventType
from .conditions import conditions_match, is_known_field
from .errors import NotFoundError, ValidationError
from .policy import (
    ACTION_TYPES,
    EFFECTS,
    OPERATORS,
    BulkDecision,
    Condition,
    Policy,
    PolicyContext,
    PolicyDecision,
    PolicyEffect,
)
from .rules import default_payment_policies, policies_for_environment


logger = logging.getLogger(__name__)

PolicyLike = Union[Policy, Mapping[str, Any]]


class PolicyEngineProvider(Protocol):
    def evaluate(self, context: PolicyContext) -> PolicyDecision: ...

    def evaluate_batch(self, contexts: list[PolicyContext]) -> BulkDecision: ...

    def add_policy(self, policy: PolicyLike) -> Policy: ...

    def update_policy(self, policy_id: str, updates: Mapping[str, Any]) -> Policy: ...

    def remove_policy(self, policy_id: str) -> None: ...

    def get_policy(self, policy_id: str) -> Optional[Policy]: ...

    def list_policies(
        self, enabled: Optional[bool] = None, applies_to: Optional[str] = None
    ) -> list[Policy]: ...

    def set_enabled(self, policy_id: str, enabled: bool) -> None: ...

    def validate_policy(self, policy: PolicyLike) -> tuple[bool, list[str]]: ...

    def health_check(self) -> bool: ...


@dataclass
class RuleEngineConfig:
    initial_policies: list[Policy] = field(default_factory=list)
    blacklist: list[str] = field(default_factory=list)
    use_defaults: bool = True
    # None loads the default payment rules
    environment: Optional[str] = None


@dataclass
class InMemoryPolicyConfig:
    default_decision: str = "allow"
    action_decisions: dict[str, str] = field(default_factory=dict)
    deny_addresses: list[str] = field(default_factory=list)
    simulated_delay: float = 0.0


def _as_policy(policy: PolicyLike) -> Policy:
    if isinstance(policy, Policy):
        return copy.deepcopy(policy)
    return Policy.from_dict(policy)


def _merge(existing: Policy, updates: Mapping[str, Any]) -> Policy:
    merged = existing.to_dict()
    for key, value in updates.items():
        if key == "conditions":
            value = [Condition.coerce(c).to_dict() for c in value]
        merged[key] = value
    merged["id"] = existing.id
    merged["created_at"] = existing.created_at
    merged["updated_at"] = int(time.time())
    return Policy.from_dict(merged)


class RuleEngine:
    """Prioritized condition matching with a local address blacklist."""

    name = "rule-engine"

    def __init__(
        self,
        config: Optional[RuleEngineConfig] = None,
        audit: Optional[AuditTrail] = None,
    ):
        config = config or RuleEngineConfig()
        self.audit = audit
        self._lock = threading.Lock()
        self._policies: dict[str, Policy] = {}
        self._blacklist: set[str] = set()

        if config.use_defaults:
            defaults = (
                policies_for_environment(config.environment)
                if config.environment
                else default_payment_policies()
            )
            for policy in defaults:
                self._policies[policy.id] = policy
        for policy in config.initial_policies:
            self._policies[policy.id] = copy.deepcopy(policy)
        for address in config.blacklist:
            self._blacklist.add(address.lower())

    def _snapshot(self, action: str) -> tuple[list[Policy], frozenset[str]]:
        with self._lock:
            applicable = [p for p in self._policies.values() if p.applies(action)]
            blacklist = frozenset(self._blacklist)
        applicable.sort(key=lambda p: p.priority)
        return applicable, blacklist

    def evaluate(self, context: PolicyContext) -> PolicyDecision:
        policies, blacklist = self._snapshot(context.action)
        logger.debug("Evaluating %d policies for action %s", len(policies), context.action)

        evaluated: list[str] = []
        warnings: list[str] = []
        for policy in policies:
            evaluated.append(policy.id)
            if not conditions_match(policy.conditions, context, blacklist):
                continue

            if policy.effect == PolicyEffect.DENY.value:
                logger.info("Action %s denied by policy %s", context.action, policy.id)
                if self.audit:
                    self.audit.log(
                        EventType.POLICY_DENIED,
                        subject=policy.id,
                        actor=context.actor,
                        amount=context.amount,
                        success=False,
                        reason=f"Denied by policy: {policy.name}",
                        details={"action": context.action, "target": context.target},
                    )
                return PolicyDecision(
                    allowed=False,
                    reason=f"Denied by policy: {policy.name}",
                    policies_evaluated=evaluated,
                    denying_policy=policy.id,
                )
            if policy.effect == PolicyEffect.WARN.value:
                warnings.append(f"{policy.name}: {policy.description}")

        logger.debug("Action %s allowed with %d warnings", context.action, len(warnings))
        return PolicyDecision(
            allowed=True,
            reason="All policies passed",
            policies_evaluated=evaluated,
            warnings=warnings or None,
        )

    def evaluate_batch(self, contexts: list[PolicyContext]) -> BulkDecision:
        return BulkDecision.from_decisions([self.evaluate(c) for c in contexts])

    def validate_policy(self, policy: PolicyLike) -> tuple[bool, list[str]]:
        raw = policy.to_dict() if isinstance(policy, Policy) else dict(policy)
        errors: list[str] = []

        if not raw.get("id"):
            errors.append("Policy ID is required")
        if not raw.get("name"):
            errors.append("Policy name is required")
        if raw.get("effect") not in EFFECTS:
            errors.append("Policy effect must be allow, deny, or warn")

        applies_to = raw.get("applies_to")
        if not isinstance(applies_to, (list, tuple)) or not applies_to:
            errors.append("Policy must apply to at least one action type")
        else:
            for action in applies_to:
                if action not in ACTION_TYPES:
                    errors.append(f"Unknown action type: {action}")

        for i, cond in enumerate(raw.get("conditions") or []):
            cond = Condition.coerce(cond)
            if not cond.field:
                errors.append(f"Condition {i}: field is required")
            elif not is_known_field(cond.field):
                errors.append(f"Condition {i}: unknown field {cond.field}")
            if not cond.operator:
                errors.append(f"Condition {i}: operator is required")
            elif cond.operator not in OPERATORS:
                errors.append(f"Condition {i}: unknown operator {cond.operator}")

        return not errors, errors

    def add_policy(self, policy: PolicyLike) -> Policy:
        valid, errors = self.validate_policy(policy)
        if not valid:
            raise ValidationError(errors)

        stored = _as_policy(policy)
        now = int(time.time())
        stored.created_at = now
        stored.updated_at = now
        with self._lock:
            self._policies[stored.id] = stored

        logger.info("Policy added: %s", stored.id)
        self._audit_change(stored.id, "added")
        return copy.deepcopy(stored)

    def update_policy(self, policy_id: str, updates: Mapping[str, Any]) -> Policy:
        with self._lock:
            existing = self._policies.get(policy_id)
            if existing is None:
                raise NotFoundError("policy", policy_id)
            updated = _merge(existing, updates)
            valid, errors = self.validate_policy(updated)
            if not valid:
                raise ValidationError(errors)
            self._policies[policy_id] = updated

        logger.info("Policy updated: %s", policy_id)
        self._audit_change(policy_id, "updated")
        return copy.deepcopy(updated)

    def remove_policy(self, policy_id: str) -> None:
        with self._lock:
            if self._policies.pop(policy_id, None) is None:
                raise NotFoundError("policy", policy_id)
        logger.info("Policy removed: %s", policy_id)
        self._audit_change(policy_id, "removed")

    def get_policy(self, policy_id: str) -> Optional[Policy]:
        with self._lock:
            policy = self._policies.get(policy_id)
            return copy.deepcopy(policy) if policy else None

    def list_policies(
        self, enabled: Optional[bool] = None, applies_to: Optional[str] = None
    ) -> list[Policy]:
        with self._lock:
            policies = [copy.deepcopy(p) for p in self._policies.values()]
        if enabled is not None:
            policies = [p for p in policies if p.enabled == enabled]
        if applies_to:
            policies = [p for p in policies if applies_to in p.applies_to]
        return sorted(policies, key=lambda p: p.priority)

    def set_enabled(self, policy_id: str, enabled: bool) -> None:
        with self._lock:
            policy = self._policies.get(policy_id)
            if policy is None:
                raise NotFoundError("policy", policy_id)
            policy.enabled = enabled
            policy.updated_at = int(time.time())
        logger.info("Policy %s %s", policy_id, "enabled" if enabled else "disabled")
        self._audit_change(policy_id, "enabled" if enabled else "disabled")

    def _audit_change(self, policy_id: str, change: str) -> None:
        if self.audit:
            self.audit.log(EventType.POLICY_CHANGED, subject=policy_id, details={"change": change})

    def health_check(self) -> bool:
        return True

    # Blacklist helpers
    def add_to_blacklist(self, address: str) -> None:
        with self._lock:
            self._blacklist.add(address.lower())
        logger.info("Address added to policy blacklist: %s", address)
        if self.audit:
            self.audit.log(EventType.BLACKLIST_ADDED, subject=address.lower())

    def remove_from_blacklist(self, address: str) -> None:
        with self._lock:
            if address.lower() not in self._blacklist:
                return
            self._blacklist.discard(address.lower())
        logger.info("Address removed from policy blacklist: %s", address)
        if self.audit:
            self.audit.log(EventType.BLACKLIST_REMOVED, subject=address.lower())

    def is_blacklisted(self, address: str) -> bool:
        with self._lock:
            return address.lower() in self._blacklist

    def get_blacklist(self) -> list[str]:
        with self._lock:
            return sorted(self._blacklist)


class InMemoryPolicyEngine:
    """Configurable canned decisions for tests and local development."""

    name = "in-memory-policy-engine"

    def __init__(self, config: Optional[InMemoryPolicyConfig] = None):
        config = config or InMemoryPolicyConfig()
        self.default_decision = config.default_decision
        self.action_decisions = dict(config.action_decisions)
        self.simulated_delay = config.simulated_delay
        self._deny_addresses = {a.lower() for a in config.deny_addresses}
        self._policies: dict[str, Policy] = {}
        self._lock = threading.Lock()

    def _delay(self) -> None:
        if self.simulated_delay > 0:
            time.sleep(self.simulated_delay)

    def evaluate(self, context: PolicyContext) -> PolicyDecision:
        self._delay()
        return self._decide(context)

    def _decide(self, context: PolicyContext) -> PolicyDecision:
        if context.target and context.target.lower() in self._deny_addresses:
            return PolicyDecision(
                allowed=False,
                reason="Address in deny list",
                policies_evaluated=["mock-deny-list"],
                denying_policy="mock-deny-list",
            )

        decision = self.action_decisions.get(context.action)
        if decision:
            policy_id = f"mock-action-{context.action}"
            return PolicyDecision(
                allowed=decision == "allow",
                reason=f"Action-specific decision for {context.action}",
                policies_evaluated=[policy_id],
                denying_policy=policy_id if decision == "deny" else None,
            )

        allowed = self.default_decision == "allow"
        return PolicyDecision(
            allowed=allowed,
            reason=f"Default decision ({self.default_decision})",
            policies_evaluated=["mock-default"],
            denying_policy=None if allowed else "mock-default",
        )

    def evaluate_batch(self, contexts: list[PolicyContext]) -> BulkDecision:
        self._delay()
        return BulkDecision.from_decisions([self._decide(c) for c in contexts])

    def add_policy(self, policy: PolicyLike) -> Policy:
        self._delay()
        stored = _as_policy(policy)
        now = int(time.time())
        stored.created_at = now
        stored.updated_at = now
        with self._lock:
            self._policies[stored.id] = stored
        return copy.deepcopy(stored)

    def update_policy(self, policy_id: str, updates: Mapping[str, Any]) -> Policy:
        self._delay()
        with self._lock:
            existing = self._policies.get(policy_id)
            if existing is None:
                raise NotFoundError("policy", policy_id)
            updated = _merge(existing, updates)
            self._policies[policy_id] = updated
        return copy.deepcopy(updated)

    def remove_policy(self, policy_id: str) -> None:
        self._delay()
        with self._lock:
            if self._policies.pop(policy_id, None) is None:
                raise NotFoundError("policy", policy_id)

    def get_policy(self, policy_id: str) -> Optional[Policy]:
        self._delay()
        with self._lock:
            policy = self._policies.get(policy_id)
            return copy.deepcopy(policy) if policy else None

    def list_policies(
        self, enabled: Optional[bool] = None, applies_to: Optional[str] = None
    ) -> list[Policy]:
        self._delay()
        with self._lock:
            policies = [copy.deepcopy(p) for p in self._policies.values()]
        if enabled is not None:
            policies = [p for p in policies if p.enabled == enabled]
        if applies_to:
            policies = [p for p in policies if applies_to in p.applies_to]
        return policies

    def set_enabled(self, policy_id: str, enabled: bool) -> None:
        self._delay()
        with self._lock:
            policy = self._policies.get(policy_id)
            if policy is None:
                raise NotFoundError("policy", policy_id)
            policy.enabled = enabled
            policy.updated_at = int(time.time())

    def validate_policy(self, policy: PolicyLike) -> tuple[bool, list[str]]:
        self._delay()
        raw = policy.to_dict() if isinstance(policy, Policy) else dict(policy)
        errors = []
        if not raw.get("id"):
            errors.append("ID required")
        if not raw.get("name"):
            errors.append("Name required")
        return not errors, errors

    def health_check(self) -> bool:
        return True

    # The deny list doubles as this engine's blacklist.
    def add_to_blacklist(self, address: str) -> None:
        with self._lock:
            self._deny_addresses.add(address.lower())

    def remove_from_blacklist(self, address: str) -> None:
        with self._lock:
            self._deny_addresses.discard(address.lower())

    def is_blacklisted(self, address: str) -> bool:
        with self._lock:
            return address.lower() in self._deny_addresses

    def get_blacklist(self) -> list[str]:
        with self._lock:
            return sorted(self._deny_addresses)

    # Test helpers
    def set_default_decision(self, decision: str) -> None:
        self.default_decision = decision

    def set_action_decision(self, action: str, decision: str) -> None:
        self.action_decisions[action] = decision

    def clear_policies(self) -> None:
        with self._lock:
            self._policies.clear()
