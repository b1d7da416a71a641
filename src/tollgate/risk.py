"""Risk models: reputation, blacklist entries, transactions and findings."""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional

from .mandate import DEFAULT_CHAIN_ID
from .money import parse_base_units


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    DANGER = "danger"
    CRITICAL = "critical"


class ThreatType(str, Enum):
    BLACKLIST = "blacklist"
    AMOUNT = "amount"
    VELOCITY = "velocity"
    PATTERN = "pattern"


class PatternType(str, Enum):
    SUSPICIOUS = "suspicious"
    MALICIOUS = "malicious"
    FRAUD = "fraud"
    WASH_TRADING = "wash_trading"
    CUSTOM = "custom"


BLACKLIST_SEVERITIES = frozenset({"warning", "danger", "critical"})


def reputation_risk_level(score: float) -> str:
    if score >= 70:
        return RiskLevel.LOW.value
    if score >= 50:
        return RiskLevel.MEDIUM.value
    if score >= 25:
        return RiskLevel.HIGH.value
    return RiskLevel.CRITICAL.value


def transaction_risk_level(score: int) -> str:
    if score < 20:
        return RiskLevel.LOW.value
    if score < 40:
        return RiskLevel.MEDIUM.value
    if score < 70:
        return RiskLevel.HIGH.value
    return RiskLevel.CRITICAL.value


def clamp_score(score: float) -> float:
    return max(0.0, min(100.0, score))


@dataclass
class ReputationFactor:
    name: str
    contribution: float
    weight: float
    description: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ReputationScore:
    address: str
    score: float
    confidence: float
    risk_level: str
    factors: list[ReputationFactor] = field(default_factory=list)
    updated_at: int = 0
    valid_until: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "score": self.score,
            "confidence": self.confidence,
            "risk_level": self.risk_level,
            "factors": [f.to_dict() for f in self.factors],
            "updated_at": self.updated_at,
            "valid_until": self.valid_until,
        }


@dataclass
class BlacklistEntry:
    address: str
    reason: str
    severity: str
    source: str
    added_at: int
    expires_at: Optional[int] = None
    tags: list[str] = field(default_factory=list)

    def is_expired(self, now: Optional[int] = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at < (now if now is not None else int(time.time()))

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class TransactionData:
    sender: str
    recipient: str
    value: int
    chain_id: int = DEFAULT_CHAIN_ID
    timestamp: int = field(default_factory=lambda: int(time.time()))
    tx_hash: Optional[str] = None
    token: Optional[str] = None
    data: Optional[str] = None
    gas_limit: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "tx_hash": self.tx_hash,
            "from": self.sender,
            "to": self.recipient,
            "value": str(self.value),
            "token": self.token,
            "data": self.data,
            "gas_limit": str(self.gas_limit) if self.gas_limit is not None else None,
            "chain_id": self.chain_id,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "TransactionData":
        gas = raw.get("gas_limit", raw.get("gasLimit"))
        return cls(
            sender=str(raw.get("from") or raw.get("sender") or ""),
            recipient=str(raw.get("to") or raw.get("recipient") or ""),
            value=parse_base_units(raw.get("value", 0), "value"),
            chain_id=int(raw.get("chain_id", raw.get("chainId", DEFAULT_CHAIN_ID))),
            timestamp=int(raw.get("timestamp") or time.time()),
            tx_hash=raw.get("tx_hash") or raw.get("txHash"),
            token=raw.get("token"),
            data=raw.get("data"),
            gas_limit=parse_base_units(gas, "gas_limit") if gas is not None else None,
        )


@dataclass
class ThreatIndicator:
    type: str
    severity: str
    description: str
    details: Optional[dict[str, Any]] = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class TransactionAnalysis:
    tx_id: str
    risk_score: int
    risk_level: str
    threats: list[ThreatIndicator] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    should_block: bool = False
    analyzed_at: int = field(default_factory=lambda: int(time.time()))

    def to_dict(self) -> dict[str, Any]:
        return {
            "tx_id": self.tx_id,
            "risk_score": self.risk_score,
            "risk_level": self.risk_level,
            "threats": [t.to_dict() for t in self.threats],
            "recommendations": list(self.recommendations),
            "should_block": self.should_block,
            "analyzed_at": self.analyzed_at,
        }


@dataclass
class PatternMatch:
    pattern_name: str
    pattern_type: str
    confidence: float
    involved_addresses: list[str]
    description: str
    detected_at: int = field(default_factory=lambda: int(time.time()))

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class Alert:
    activity: str
    severity: str
    timestamp: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class SweepReport:
    """What one maintenance pass removed."""

    reputations_evicted: int = 0
    blacklist_evicted: int = 0
    alerts_trimmed: int = 0
    history_trimmed: int = 0
    # Whole per-address logs dropped, including ones already empty
    alert_keys_evicted: int = 0
    history_keys_evicted: int = 0

    @property
    def total(self) -> int:
        return (
            self.reputations_evicted
            + self.blacklist_evicted
            + self.alerts_trimmed
            + self.history_trimmed
            + self.alert_keys_evicted
            + self.history_keys_evicted
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
