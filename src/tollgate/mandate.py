"""
Mandate models and authorization proofs.

A Mandate is a bounded spending capability a principal grants to an agent.
The principal's proof is an EIP-712 signature over the agent, principal,
per-action ceiling, expiry and nonce.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional

from eth_abi.packed import encode_packed
from eth_account import Account
from eth_account.messages import encode_typed_data
from eth_utils import is_address as _eth_is_address
from eth_utils import keccak, to_checksum_address

from .errors import SignatureError
from .money import parse_base_units


ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
DEFAULT_CHAIN_ID = 5003

MANDATE_DOMAIN_NAME = "Tollgate Mandate"
MANDATE_DOMAIN_VERSION = "1"

MANDATE_TYPES = {
    "Mandate": [
        {"name": "agent", "type": "address"},
        {"name": "principal", "type": "address"},
        {"name": "maxAmount", "type": "uint256"},
        {"name": "expiry", "type": "uint256"},
        {"name": "nonce", "type": "uint256"},
    ],
}

UNSIGNED = "0x"


class MandateStatus(str, Enum):
    ACTIVE = "active"
    REVOKED = "revoked"
    EXPIRED = "expired"


class ActionType(str, Enum):
    TRANSFER = "transfer"
    SWAP = "swap"
    STAKE = "stake"
    LEND = "lend"


class ScopeViolation(str, Enum):
    """Which scope check rejected an action."""

    NOT_FOUND = "not_found"
    REVOKED = "revoked"
    EXPIRED = "expired"
    AMOUNT = "amount"
    BUDGET = "budget"
    RECIPIENT = "recipient"
    TOKEN = "token"
    ACTION_TYPE = "action_type"
    RATE_LIMIT = "rate_limit"


@dataclass
class RateLimit:
    max_transactions: int
    period_seconds: int


@dataclass
class MandateScope:
    """Limits attached to a mandate. Empty lists mean "no restriction",
    except for tokens, where empty means native asset only."""

    max_amount: int
    total_budget: Optional[int] = None
    allowed_recipients: list[str] = field(default_factory=list)
    allowed_tokens: list[str] = field(default_factory=list)
    allowed_actions: list[str] = field(default_factory=list)
    rate_limit: Optional[RateLimit] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "max_amount": str(self.max_amount),
            "total_budget": str(self.total_budget) if self.total_budget is not None else None,
            "allowed_recipients": list(self.allowed_recipients),
            "allowed_tokens": list(self.allowed_tokens),
            "allowed_actions": list(self.allowed_actions),
            "rate_limit": (
                {
                    "max_transactions": self.rate_limit.max_transactions,
                    "period_seconds": self.rate_limit.period_seconds,
                }
                if self.rate_limit
                else None
            ),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "MandateScope":
        rate = data.get("rate_limit")
        budget = data.get("total_budget")
        return cls(
            max_amount=parse_base_units(data["max_amount"], "max_amount"),
            total_budget=parse_base_units(budget, "total_budget") if budget is not None else None,
            allowed_recipients=[str(r) for r in data.get("allowed_recipients") or []],
            allowed_tokens=[str(t) for t in data.get("allowed_tokens") or []],
            allowed_actions=[str(a) for a in data.get("allowed_actions") or []],
            rate_limit=(
                RateLimit(int(rate["max_transactions"]), int(rate["period_seconds"]))
                if rate
                else None
            ),
        )


@dataclass
class Mandate:
    """A grant from principal to agent and its running usage."""

    id: str
    agent: str
    principal: str
    scope: MandateScope
    expiry: int
    signature: str
    created_at: int
    nonce: int
    status: str = MandateStatus.ACTIVE.value
    used_amount: int = 0
    transaction_count: int = 0

    @property
    def is_expired(self) -> bool:
        return int(time.time()) >= self.expiry

    @property
    def is_signed(self) -> bool:
        return bool(self.signature) and self.signature != UNSIGNED

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "agent": self.agent,
            "principal": self.principal,
            "scope": self.scope.to_dict(),
            "expiry": self.expiry,
            "signature": self.signature,
            "created_at": self.created_at,
            "nonce": self.nonce,
            "status": self.status,
            "used_amount": str(self.used_amount),
            "transaction_count": self.transaction_count,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Mandate":
        return cls(
            id=str(data["id"]),
            agent=str(data["agent"]),
            principal=str(data["principal"]),
            scope=MandateScope.from_dict(data["scope"]),
            expiry=int(data["expiry"]),
            signature=str(data.get("signature") or UNSIGNED),
            created_at=int(data["created_at"]),
            nonce=int(data.get("nonce", 0)),
            status=str(data.get("status", MandateStatus.ACTIVE.value)),
            used_amount=parse_base_units(data.get("used_amount", 0), "used_amount"),
            transaction_count=int(data.get("transaction_count", 0)),
        )


@dataclass
class Action:
    """A proposed transfer, evaluated and never stored."""

    type: str
    recipient: str
    amount: int
    token: Optional[str] = None
    data: dict[str, Any] = field(default_factory=dict)


@dataclass
class MandateDecision:
    approved: bool
    reason: str
    mandate_id: str
    remaining_budget: Optional[int] = None
    remaining_transactions: Optional[int] = None
    warnings: Optional[list[str]] = None
    violation: Optional[ScopeViolation] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "approved": self.approved,
            "reason": self.reason,
            "mandate_id": self.mandate_id,
            "remaining_budget": (
                str(self.remaining_budget) if self.remaining_budget is not None else None
            ),
            "remaining_transactions": self.remaining_transactions,
            "warnings": self.warnings,
            "violation": self.violation.value if self.violation else None,
        }


@dataclass
class MandateValidation:
    valid: bool
    errors: list[str] = field(default_factory=list)
    mandate: Optional[Mandate] = None


def is_address(value: Any) -> bool:
    return isinstance(value, str) and _eth_is_address(value)


def normalize_address(address: str) -> str:
    """Lower-case hex form used as a case-insensitive lookup key."""
    return address.strip().lower()


def mandate_domain(chain_id: int, verifying_contract: Optional[str] = None) -> dict[str, Any]:
    return {
        "name": MANDATE_DOMAIN_NAME,
        "version": MANDATE_DOMAIN_VERSION,
        "chainId": int(chain_id),
        "verifyingContract": to_checksum_address(verifying_contract or ZERO_ADDRESS),
    }


def mandate_typed_data(
    mandate: Mandate,
    chain_id: int = DEFAULT_CHAIN_ID,
    verifying_contract: Optional[str] = None,
) -> dict[str, Any]:
    """EIP-712 typed data covering the fields the principal signs."""
    return {
        "domain": mandate_domain(chain_id, verifying_contract),
        "types": MANDATE_TYPES,
        "primaryType": "Mandate",
        "message": {
            "agent": to_checksum_address(mandate.agent),
            "principal": to_checksum_address(mandate.principal),
            "maxAmount": int(mandate.scope.max_amount),
            "expiry": int(mandate.expiry),
            "nonce": int(mandate.nonce),
        },
    }


def sign_mandate(
    mandate: Mandate,
    private_key: str,
    chain_id: int = DEFAULT_CHAIN_ID,
    verifying_contract: Optional[str] = None,
) -> str:
    """Sign the mandate's typed data and return the 0x-prefixed signature."""
    typed_data = mandate_typed_data(mandate, chain_id, verifying_contract)
    try:
        signed = Account.sign_typed_data(
            private_key,
            typed_data["domain"],
            typed_data["types"],
            typed_data["message"],
        )
    except Exception as exc:
        raise SignatureError(f"Mandate signing failed: {exc}") from exc
    return "0x" + bytes(signed.signature).hex()


def recover_mandate_signer(
    mandate: Mandate,
    chain_id: int = DEFAULT_CHAIN_ID,
    verifying_contract: Optional[str] = None,
) -> str:
    """Recover the address that produced the mandate's signature."""
    if not mandate.is_signed:
        raise SignatureError("Mandate is unsigned")
    typed_data = mandate_typed_data(mandate, chain_id, verifying_contract)
    try:
        signable = encode_typed_data(
            typed_data["domain"],
            typed_data["types"],
            typed_data["message"],
        )
        return Account.recover_message(
            signable,
            signature=bytes.fromhex(_strip_0x(mandate.signature)),
        )
    except Exception as exc:
        raise SignatureError(f"Signature verification failed: {exc}") from exc


def derive_mandate_id(agent: str, principal: str, expiry: int, nonce: int) -> str:
    """keccak256 over the packed (agent, principal, expiry, nonce) tuple."""
    packed = encode_packed(
        ["address", "address", "uint256", "uint256"],
        [to_checksum_address(agent), to_checksum_address(principal), int(expiry), int(nonce)],
    )
    return "0x" + keccak(packed).hex()


def _strip_0x(value: str) -> str:
    return value[2:] if value.lower().startswith("0x") else value
