"""
Mandate authority providers.

Both variants keep mandates in process memory and are safe to share between
threads. All mutations of a mandate happen under that mandate's lock, and
execute_action holds it across validation and recording so two concurrent
executions cannot both spend the last unit of a budget.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Optional, Protocol

from eth_abi.packed import encode_packed
from eth_account import Account
from eth_utils import keccak

from .audit import AuditTrail, EventType
from .errors import (
    ConfigurationError,
    ExpiredError,
    NotFoundError,
    RevokedError,
    ScopeViolationError,
    SignatureError,
    ValidationError,
)
from .locks import KeyedLock
from .mandate import (
    DEFAULT_CHAIN_ID,
    UNSIGNED,
    Action,
    Mandate,
    MandateDecision,
    MandateScope,
    MandateStatus,
    MandateValidation,
    ScopeViolation,
    derive_mandate_id,
    is_address,
    normalize_address,
    recover_mandate_signer,
    sign_mandate,
)


logger = logging.getLogger(__name__)


class MandateAuthorityProvider(Protocol):
    def create_mandate(
        self, agent: str, principal: str, scope: MandateScope, duration: int
    ) -> Mandate: ...

    def validate_mandate(self, mandate_id: str, action: Action) -> MandateDecision: ...

    def execute_action(self, mandate_id: str, action: Action) -> str: ...

    def record_execution(self, mandate_id: str, action: Action, reference: str) -> None: ...

    def revoke_mandate(self, mandate_id: str) -> None: ...

    def get_mandate(self, mandate_id: str) -> Optional[Mandate]: ...

    def get_mandates_for_agent(self, agent: str) -> list[Mandate]: ...

    def get_mandates_from_principal(self, principal: str) -> list[Mandate]: ...

    def validate_mandate_signature(self, mandate: Mandate) -> MandateValidation: ...

    def health_check(self) -> bool: ...


@dataclass
class MandateAuthorityConfig:
    chain_id: int = DEFAULT_CHAIN_ID
    verifying_contract: Optional[str] = None
    signer_key: Optional[str] = None
    require_signature: bool = False


@dataclass
class InMemoryMandateConfig:
    approve_all: bool = False
    initial_mandates: list[Mandate] = field(default_factory=list)
    simulated_delay: float = 0.0


@dataclass
class _RateWindow:
    count: int
    window_start: int


def _deny(
    mandate_id: str,
    violation: ScopeViolation,
    reason: str,
    **extra,
) -> MandateDecision:
    return MandateDecision(
        approved=False,
        reason=reason,
        mandate_id=mandate_id,
        violation=violation,
        **extra,
    )


def _refuse(decision: MandateDecision) -> None:
    """Raise the exception matching a rejected decision."""
    if decision.violation is ScopeViolation.NOT_FOUND:
        raise NotFoundError("mandate", decision.mandate_id)
    if decision.violation is ScopeViolation.REVOKED:
        raise RevokedError(decision.reason, decision)
    if decision.violation is ScopeViolation.EXPIRED:
        raise ExpiredError(decision.reason, decision)
    raise ScopeViolationError(decision.violation, decision.reason, decision)


def _check_lifecycle(mandate: Mandate, now: int) -> Optional[MandateDecision]:
    if mandate.status != MandateStatus.ACTIVE.value:
        violation = (
            ScopeViolation.REVOKED
            if mandate.status == MandateStatus.REVOKED.value
            else ScopeViolation.EXPIRED
        )
        return _deny(mandate.id, violation, f"Mandate is {mandate.status}")
    if now >= mandate.expiry:
        mandate.status = MandateStatus.EXPIRED.value
        return _deny(mandate.id, ScopeViolation.EXPIRED, "Mandate has expired")
    return None


def _check_amount_and_budget(
    mandate: Mandate, action: Action, warnings: list[str]
) -> Optional[MandateDecision]:
    scope = mandate.scope
    if action.amount < 0:
        return _deny(mandate.id, ScopeViolation.AMOUNT, "Amount must be non-negative")
    if action.amount > scope.max_amount:
        return _deny(
            mandate.id,
            ScopeViolation.AMOUNT,
            f"Amount {action.amount} exceeds max {scope.max_amount}",
        )
    if scope.total_budget is not None:
        new_total = mandate.used_amount + action.amount
        if new_total > scope.total_budget:
            return _deny(
                mandate.id,
                ScopeViolation.BUDGET,
                "Action would exceed total budget",
                remaining_budget=scope.total_budget - mandate.used_amount,
            )
        remaining = scope.total_budget - new_total
        if remaining < scope.max_amount:
            warnings.append(f"Low remaining budget: {remaining}")
    return None


def _check_recipient(mandate: Mandate, action: Action) -> Optional[MandateDecision]:
    allowed = mandate.scope.allowed_recipients
    if allowed and normalize_address(action.recipient) not in {
        normalize_address(r) for r in allowed
    }:
        return _deny(mandate.id, ScopeViolation.RECIPIENT, "Recipient not in allowed list")
    return None


def _check_recordable(mandate: Mandate, action: Action) -> None:
    """Refuse a recording that would lower or overrun the used amount."""
    if action.amount < 0:
        raise ScopeViolationError(
            ScopeViolation.AMOUNT, f"Cannot record negative amount {action.amount}"
        )
    budget = mandate.scope.total_budget
    if budget is not None and mandate.used_amount + action.amount > budget:
        raise ScopeViolationError(
            ScopeViolation.BUDGET,
            f"Recording {action.amount} would exceed total budget {budget}",
        )


def _structural_errors(mandate: Mandate) -> list[str]:
    errors = []
    if not is_address(mandate.agent):
        errors.append("Invalid agent address")
    if not is_address(mandate.principal):
        errors.append("Invalid principal address")
    if mandate.expiry <= int(time.time()):
        errors.append("Mandate has expired")
    return errors


class MandateAuthority:
    """Issues EIP-712 signed mandates and enforces their scope."""

    name = "mandate-authority"

    def __init__(
        self,
        config: Optional[MandateAuthorityConfig] = None,
        audit: Optional[AuditTrail] = None,
    ):
        self.config = config or MandateAuthorityConfig()
        self.audit = audit
        self._mandates: dict[str, Mandate] = {}
        self._rate_windows: dict[str, _RateWindow] = {}
        self._locks = KeyedLock()
        self._nonce_lock = threading.Lock()
        self._nonce = 0
        self._signer_address: Optional[str] = None
        if self.config.signer_key:
            self._signer_address = Account.from_key(self.config.signer_key).address

    def _next_nonce(self) -> int:
        with self._nonce_lock:
            nonce = self._nonce
            self._nonce += 1
            return nonce

    def create_mandate(
        self, agent: str, principal: str, scope: MandateScope, duration: int
    ) -> Mandate:
        errors = []
        if not is_address(agent):
            errors.append(f"Invalid agent address: {agent}")
        if not is_address(principal):
            errors.append(f"Invalid principal address: {principal}")
        if errors:
            raise ValidationError(errors)
        if self.config.require_signature and not self.config.signer_key:
            raise ConfigurationError("Mandate signing required but no signer key is configured")

        now = int(time.time())
        expiry = now + int(duration)
        nonce = self._next_nonce()
        mandate = Mandate(
            id=derive_mandate_id(agent, principal, expiry, nonce),
            agent=agent,
            principal=principal,
            scope=scope,
            expiry=expiry,
            signature=UNSIGNED,
            created_at=now,
            nonce=nonce,
        )

        if self.config.signer_key:
            if normalize_address(self._signer_address) != normalize_address(principal):
                logger.warning(
                    "Signer %s is not the principal %s; mandate %s will fail verification",
                    self._signer_address,
                    principal,
                    mandate.id,
                )
            mandate.signature = sign_mandate(
                mandate,
                self.config.signer_key,
                self.config.chain_id,
                self.config.verifying_contract,
            )

        with self._locks.hold(mandate.id):
            self._mandates[mandate.id] = mandate

        logger.info(
            "Mandate created: %s (agent=%s, principal=%s, expiry=%d)",
            mandate.id,
            agent,
            principal,
            expiry,
        )
        if self.audit:
            self.audit.log(
                EventType.MANDATE_CREATED,
                subject=mandate.id,
                actor=principal,
                amount=scope.max_amount,
                details={"agent": agent, "expiry": expiry},
            )
        return mandate

    def validate_mandate(self, mandate_id: str, action: Action) -> MandateDecision:
        with self._locks.hold(mandate_id):
            return self._validate_locked(mandate_id, action)

    def _validate_locked(self, mandate_id: str, action: Action) -> MandateDecision:
        mandate = self._mandates.get(mandate_id)
        if mandate is None:
            return _deny(mandate_id, ScopeViolation.NOT_FOUND, "Mandate not found")

        now = int(time.time())
        was_active = mandate.status == MandateStatus.ACTIVE.value
        decision = _check_lifecycle(mandate, now)
        if decision is not None:
            if was_active and mandate.status == MandateStatus.EXPIRED.value:
                logger.info("Mandate expired: %s", mandate_id)
                if self.audit:
                    self.audit.log(EventType.MANDATE_EXPIRED, subject=mandate_id)
            return decision

        scope = mandate.scope
        warnings: list[str] = []
        decision = (
            _check_amount_and_budget(mandate, action, warnings)
            or _check_recipient(mandate, action)
            or self._check_token(mandate, action)
            or self._check_action_type(mandate, action)
            or self._check_rate_limit(mandate, now)
        )
        if decision is not None:
            logger.debug("Mandate %s rejected action: %s", mandate_id, decision.reason)
            return decision

        remaining_transactions = None
        if scope.rate_limit:
            window = self._active_window(mandate, now)
            used = window.count if window else 0
            remaining_transactions = scope.rate_limit.max_transactions - used - 1

        return MandateDecision(
            approved=True,
            reason="Action approved within mandate scope",
            mandate_id=mandate_id,
            remaining_budget=(
                scope.total_budget - mandate.used_amount - action.amount
                if scope.total_budget is not None
                else None
            ),
            remaining_transactions=remaining_transactions,
            warnings=warnings or None,
        )

    def _check_token(self, mandate: Mandate, action: Action) -> Optional[MandateDecision]:
        if not action.token:
            return None
        allowed = mandate.scope.allowed_tokens
        if not allowed:
            return _deny(
                mandate.id, ScopeViolation.TOKEN, "Token transfers not allowed (native only)"
            )
        if action.token.lower() not in {t.lower() for t in allowed}:
            return _deny(mandate.id, ScopeViolation.TOKEN, "Token not in allowed list")
        return None

    def _check_action_type(self, mandate: Mandate, action: Action) -> Optional[MandateDecision]:
        allowed = mandate.scope.allowed_actions
        if allowed and action.type not in allowed:
            return _deny(
                mandate.id,
                ScopeViolation.ACTION_TYPE,
                f"Action type '{action.type}' not allowed",
            )
        return None

    def _active_window(self, mandate: Mandate, now: int) -> Optional[_RateWindow]:
        window = self._rate_windows.get(mandate.id)
        rate = mandate.scope.rate_limit
        if window is None or rate is None:
            return None
        if window.window_start >= now - rate.period_seconds:
            return window
        return None

    def _check_rate_limit(self, mandate: Mandate, now: int) -> Optional[MandateDecision]:
        rate = mandate.scope.rate_limit
        if rate is None:
            return None
        window = self._active_window(mandate, now)
        if window and window.count >= rate.max_transactions:
            return _deny(
                mandate.id,
                ScopeViolation.RATE_LIMIT,
                "Rate limit exceeded",
                remaining_transactions=0,
            )
        return None

    def execute_action(self, mandate_id: str, action: Action) -> str:
        with self._locks.hold(mandate_id):
            decision = self._validate_locked(mandate_id, action)
            if not decision.approved:
                if self.audit:
                    self.audit.log(
                        EventType.ACTION_DENIED,
                        subject=mandate_id,
                        actor=action.recipient,
                        amount=action.amount,
                        success=False,
                        reason=decision.reason,
                    )
                _refuse(decision)

            # Placeholder settlement reference; on-chain submission happens elsewhere.
            reference = "0x" + keccak(
                encode_packed(
                    ["bytes32", "bytes32", "uint256", "uint256"],
                    [
                        bytes.fromhex(mandate_id[2:]),
                        keccak(text=action.recipient),
                        action.amount,
                        time.time_ns(),
                    ],
                )
            ).hex()
            self._record_locked(mandate_id, action, reference)

        logger.info(
            "Action executed: mandate=%s type=%s amount=%d reference=%s",
            mandate_id,
            action.type,
            action.amount,
            reference,
        )
        if self.audit:
            self.audit.log(
                EventType.ACTION_EXECUTED,
                subject=mandate_id,
                actor=action.recipient,
                amount=action.amount,
                details={"type": action.type, "reference": reference},
            )
        return reference

    def record_execution(self, mandate_id: str, action: Action, reference: str) -> None:
        with self._locks.hold(mandate_id):
            self._record_locked(mandate_id, action, reference)

    def _record_locked(self, mandate_id: str, action: Action, reference: str) -> None:
        mandate = self._mandates.get(mandate_id)
        if mandate is None:
            raise NotFoundError("mandate", mandate_id)

        _check_recordable(mandate, action)
        mandate.used_amount += action.amount
        mandate.transaction_count += 1

        now = int(time.time())
        window = self._rate_windows.get(mandate_id)
        rate = mandate.scope.rate_limit
        if window and rate and window.window_start >= now - rate.period_seconds:
            window.count += 1
        else:
            self._rate_windows[mandate_id] = _RateWindow(count=1, window_start=now)

        logger.debug("Execution recorded: mandate=%s reference=%s", mandate_id, reference)

    def revoke_mandate(self, mandate_id: str) -> None:
        """Revoke an active mandate. Expired or revoked mandates are left as they are."""
        with self._locks.hold(mandate_id):
            mandate = self._mandates.get(mandate_id)
            if mandate is None:
                raise NotFoundError("mandate", mandate_id)
            if mandate.status != MandateStatus.ACTIVE.value:
                logger.debug("Revoke ignored: mandate=%s status=%s", mandate_id, mandate.status)
                return
            mandate.status = MandateStatus.REVOKED.value

        logger.info("Mandate revoked: %s", mandate_id)
        if self.audit:
            self.audit.log(EventType.MANDATE_REVOKED, subject=mandate_id, actor=mandate.principal)

    def get_mandate(self, mandate_id: str) -> Optional[Mandate]:
        return self._mandates.get(mandate_id)

    def get_mandates_for_agent(self, agent: str) -> list[Mandate]:
        wanted = normalize_address(agent)
        return [m for m in list(self._mandates.values()) if normalize_address(m.agent) == wanted]

    def get_mandates_from_principal(self, principal: str) -> list[Mandate]:
        wanted = normalize_address(principal)
        return [
            m for m in list(self._mandates.values()) if normalize_address(m.principal) == wanted
        ]

    def validate_mandate_signature(self, mandate: Mandate) -> MandateValidation:
        errors = _structural_errors(mandate)
        if not mandate.is_signed:
            errors.append("Missing signature")
        if errors:
            return MandateValidation(valid=False, errors=errors)

        try:
            recovered = recover_mandate_signer(
                mandate, self.config.chain_id, self.config.verifying_contract
            )
        except SignatureError as exc:
            return MandateValidation(valid=False, errors=[str(exc)])

        if normalize_address(recovered) != normalize_address(mandate.principal):
            return MandateValidation(valid=False, errors=["Signature does not match principal"])
        return MandateValidation(valid=True, errors=[], mandate=mandate)

    def health_check(self) -> bool:
        return True


class InMemoryMandateAuthority:
    """Deterministic mandate authority for tests and local development.

    No cryptography: ids and signatures are hashes of fixed text seeds.
    """

    name = "in-memory-mandate-authority"

    def __init__(self, config: Optional[InMemoryMandateConfig] = None):
        config = config or InMemoryMandateConfig()
        self.approve_all = config.approve_all
        self.simulated_delay = config.simulated_delay
        self._mandates: dict[str, Mandate] = {m.id: m for m in config.initial_mandates}
        self._locks = KeyedLock()
        self._nonce_lock = threading.Lock()
        self._nonce = 0

    def _delay(self) -> None:
        if self.simulated_delay > 0:
            time.sleep(self.simulated_delay)

    def create_mandate(
        self, agent: str, principal: str, scope: MandateScope, duration: int
    ) -> Mandate:
        self._delay()
        with self._nonce_lock:
            nonce = self._nonce
            self._nonce += 1

        now = int(time.time())
        mandate_id = "0x" + keccak(text=f"mock-mandate-{agent}-{principal}-{nonce}").hex()
        mandate = Mandate(
            id=mandate_id,
            agent=agent,
            principal=principal,
            scope=scope,
            expiry=now + int(duration),
            signature="0x" + keccak(text=f"mock-sig-{mandate_id}").hex(),
            created_at=now,
            nonce=nonce,
        )
        self._mandates[mandate_id] = mandate
        return mandate

    def validate_mandate(self, mandate_id: str, action: Action) -> MandateDecision:
        self._delay()
        with self._locks.hold(mandate_id):
            return self._validate_locked(mandate_id, action)

    def _validate_locked(self, mandate_id: str, action: Action) -> MandateDecision:
        if self.approve_all:
            return MandateDecision(
                approved=True,
                reason="approve_all mode enabled",
                mandate_id=mandate_id,
            )

        mandate = self._mandates.get(mandate_id)
        if mandate is None:
            return _deny(mandate_id, ScopeViolation.NOT_FOUND, "Mandate not found")

        decision = (
            _check_lifecycle(mandate, int(time.time()))
            or _check_amount_and_budget(mandate, action, [])
            or _check_recipient(mandate, action)
        )
        if decision is not None:
            return decision

        budget = mandate.scope.total_budget
        return MandateDecision(
            approved=True,
            reason="In-memory validation passed",
            mandate_id=mandate_id,
            remaining_budget=(
                budget - mandate.used_amount - action.amount if budget is not None else None
            ),
        )

    def execute_action(self, mandate_id: str, action: Action) -> str:
        self._delay()
        with self._locks.hold(mandate_id):
            decision = self._validate_locked(mandate_id, action)
            if not decision.approved:
                _refuse(decision)
            reference = "0x" + keccak(text=f"mock-tx-{mandate_id}-{time.time_ns()}").hex()
            self._record_locked(mandate_id, action)
        return reference

    def record_execution(self, mandate_id: str, action: Action, reference: str) -> None:
        with self._locks.hold(mandate_id):
            self._record_locked(mandate_id, action)

    def _record_locked(self, mandate_id: str, action: Action) -> None:
        mandate = self._mandates.get(mandate_id)
        if mandate is not None:
            _check_recordable(mandate, action)
            mandate.used_amount += action.amount
            mandate.transaction_count += 1

    def revoke_mandate(self, mandate_id: str) -> None:
        self._delay()
        with self._locks.hold(mandate_id):
            mandate = self._mandates.get(mandate_id)
            if mandate is not None and mandate.status == MandateStatus.ACTIVE.value:
                mandate.status = MandateStatus.REVOKED.value

    def get_mandate(self, mandate_id: str) -> Optional[Mandate]:
        self._delay()
        return self._mandates.get(mandate_id)

    def get_mandates_for_agent(self, agent: str) -> list[Mandate]:
        self._delay()
        wanted = normalize_address(agent)
        return [m for m in list(self._mandates.values()) if normalize_address(m.agent) == wanted]

    def get_mandates_from_principal(self, principal: str) -> list[Mandate]:
        self._delay()
        wanted = normalize_address(principal)
        return [
            m for m in list(self._mandates.values()) if normalize_address(m.principal) == wanted
        ]

    def validate_mandate_signature(self, mandate: Mandate) -> MandateValidation:
        self._delay()
        if self.approve_all:
            return MandateValidation(valid=True, errors=[], mandate=mandate)

        errors = _structural_errors(mandate)
        if not mandate.signature or len(mandate.signature) < 10:
            errors.append("Missing or invalid signature")
        return MandateValidation(
            valid=not errors,
            errors=errors,
            mandate=None if errors else mandate,
        )

    def health_check(self) -> bool:
        return True

    # Test helpers
    def set_approve_all(self, value: bool) -> None:
        self.approve_all = value

    def clear_mandates(self) -> None:
        self._mandates.clear()

    def mandate_count(self) -> int:
        return len(self._mandates)
