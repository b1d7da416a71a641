"""
Risk engine providers.

RiskEngine keeps reputation scores, a blacklist, per-address alert logs and
per-sender transaction history in memory. Every store is bounded: per-address
logs have fixed lengths and a background sweeper evicts expired entries and
trims the stores when their totals pass configured ceilings.
"""

from __future__ import annotations

import copy
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Iterable, Optional, Protocol

from eth_utils import keccak

from .audit import AuditTrail, EventType
from .errors import ValidationError
from .money import format_ether
from .risk import (
    BLACKLIST_SEVERITIES,
    Alert,
    BlacklistEntry,
    PatternMatch,
    PatternType,
    ReputationFactor,
    ReputationScore,
    RiskLevel,
    Severity,
    SweepReport,
    ThreatIndicator,
    ThreatType,
    TransactionAnalysis,
    TransactionData,
    clamp_score,
    reputation_risk_level,
    transaction_risk_level,
)


logger = logging.getLogger(__name__)

VELOCITY_WINDOW_SECONDS = 3600
ALERT_SEVERITIES = frozenset(s.value for s in Severity)


class RiskEngineProvider(Protocol):
    def get_reputation(self, address: str) -> ReputationScore: ...

    def update_reputation(self, address: str, factor: ReputationFactor) -> ReputationScore: ...

    def meets_reputation_threshold(self, address: str, min_score: float) -> bool: ...

    def check_blacklist(self, address: str) -> Optional[BlacklistEntry]: ...

    def add_to_blacklist(
        self,
        address: str,
        reason: str,
        severity: str = "danger",
        source: str = "manual",
        expires_at: Optional[int] = None,
        tags: Optional[Iterable[str]] = None,
    ) -> BlacklistEntry: ...

    def remove_from_blacklist(self, address: str) -> None: ...

    def get_blacklist(
        self, severity: Optional[str] = None, source: Optional[str] = None
    ) -> list[BlacklistEntry]: ...

    def analyze_transaction(self, tx: TransactionData) -> TransactionAnalysis: ...

    def analyze_batch(self, transactions: list[TransactionData]) -> list[TransactionAnalysis]: ...

    def detect_patterns(self, transactions: list[TransactionData]) -> list[PatternMatch]: ...

    def report_activity(self, address: str, activity: str, severity: str) -> None: ...

    def get_recent_alerts(self, address: str, limit: int = 10) -> list[Alert]: ...

    def sweep(self) -> SweepReport: ...

    def close(self) -> None: ...

    def health_check(self) -> bool: ...


@dataclass
class RiskEngineConfig:
    base_reputation_score: float = 50
    score_validity_period: int = 86400
    min_transactions_for_score: int = 5
    high_value_threshold: int = 10 * 10 ** 18
    velocity_limit: int = 50
    # Seconds; None keeps entries until removed
    blacklist_expiry: Optional[int] = None
    # Seconds between background sweeps; 0 disables the sweeper thread
    sweep_interval: float = 60
    initial_blacklist: list[str] = field(default_factory=list)

    max_reputations: int = 50_000
    max_blacklist: int = 10_000
    max_alerts_total: int = 100_000
    max_history_total: int = 500_000
    alerts_per_address: int = 50
    history_per_address: int = 100
    alert_trim_size: int = 10
    history_trim_size: int = 50


@dataclass
class InMemoryRiskConfig:
    default_reputation_score: float = 75
    custom_scores: dict[str, float] = field(default_factory=dict)
    blacklisted_addresses: list[str] = field(default_factory=list)
    always_safe: bool = True
    simulated_delay: float = 0.0
    alerts_per_address: int = 50


def _validate_severity(severity: str, allowed: frozenset) -> None:
    if severity not in allowed:
        raise ValidationError([f"Unknown severity: {severity}"])


def _trim_front(log: deque, size: int) -> int:
    removed = 0
    while len(log) > size:
        log.popleft()
        removed += 1
    return removed


def _evict_oldest_logs(store: dict[str, deque], ceiling: int) -> tuple[int, int]:
    """Drop empty logs, then whole logs by oldest last entry until the total fits.

    Returns the number of logs dropped and the number of entries they held.
    """
    keys_before = len(store)
    for key in [k for k, log in store.items() if not log]:
        del store[key]

    total = sum(len(log) for log in store.values())
    dropped = 0
    if total > ceiling:
        for key in sorted(store, key=lambda k: store[k][-1].timestamp):
            if total <= ceiling:
                break
            removed = len(store.pop(key))
            total -= removed
            dropped += removed
    return keys_before - len(store), dropped


def detect_patterns(transactions: list[TransactionData]) -> list[PatternMatch]:
    """Find self-transfer bursts and reciprocal transfers within one batch."""
    now = int(time.time())
    patterns: list[PatternMatch] = []

    by_sender: dict[str, list[TransactionData]] = {}
    for tx in transactions:
        by_sender.setdefault(tx.sender.lower(), []).append(tx)

    for sender, txs in by_sender.items():
        self_transfers = sum(1 for t in txs if t.recipient.lower() == sender)
        if self_transfers >= 3:
            patterns.append(
                PatternMatch(
                    pattern_name="Self-transfer Activity",
                    pattern_type=PatternType.SUSPICIOUS.value,
                    confidence=min(self_transfers / 10, 1.0),
                    involved_addresses=[sender],
                    description=f"{self_transfers} self-transfers detected",
                    detected_at=now,
                )
            )

    edges: dict[str, set[str]] = {}
    for tx in transactions:
        edges.setdefault(tx.sender.lower(), set()).add(tx.recipient.lower())

    reported: set[frozenset] = set()
    for sender, recipients in edges.items():
        for recipient in sorted(recipients):
            if recipient == sender or sender not in edges.get(recipient, ()):
                continue
            pair = frozenset((sender, recipient))
            if pair in reported:
                continue
            reported.add(pair)
            patterns.append(
                PatternMatch(
                    pattern_name="Circular Transfer",
                    pattern_type=PatternType.WASH_TRADING.value,
                    confidence=0.7,
                    involved_addresses=[sender, recipient],
                    description=(
                        f"Circular transfers between {sender[:10]}... and {recipient[:10]}..."
                    ),
                    detected_at=now,
                )
            )

    return patterns


def _tx_id(tx: TransactionData) -> str:
    if tx.tx_hash:
        return tx.tx_hash
    seed = f"{tx.sender}:{tx.recipient}:{tx.value}:{tx.timestamp}".lower()
    return "0x" + keccak(text=seed).hex()


class RiskEngine:
    """Reputation scoring, blacklist screening and transaction analysis."""

    name = "risk-engine"

    def __init__(
        self,
        config: Optional[RiskEngineConfig] = None,
        audit: Optional[AuditTrail] = None,
    ):
        self.config = config or RiskEngineConfig()
        self.audit = audit
        self._lock = threading.RLock()
        self._reputations: dict[str, ReputationScore] = {}
        self._blacklist: dict[str, BlacklistEntry] = {}
        self._alerts: dict[str, deque[Alert]] = {}
        self._history: dict[str, deque[TransactionData]] = {}
        self._closed = False

        for address in self.config.initial_blacklist:
            self.add_to_blacklist(address, "Configured blacklist", source="config")

        self._stop = threading.Event()
        self._sweeper: Optional[threading.Thread] = None
        if self.config.sweep_interval > 0:
            self._sweeper = threading.Thread(
                target=self._sweep_loop,
                name="tollgate-risk-sweeper",
                daemon=True,
            )
            self._sweeper.start()

    def __enter__(self) -> "RiskEngine":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _sweep_loop(self) -> None:
        while not self._stop.wait(self.config.sweep_interval):
            try:
                self.sweep()
            except Exception:
                logger.exception("Risk engine sweep failed")

    def close(self) -> None:
        """Stop the sweeper and drop all state."""
        self._stop.set()
        if self._sweeper is not None and self._sweeper is not threading.current_thread():
            self._sweeper.join()
        self._sweeper = None
        with self._lock:
            self._reputations.clear()
            self._blacklist.clear()
            self._alerts.clear()
            self._history.clear()
            self._closed = True

    def health_check(self) -> bool:
        return not self._closed

    # Reputation

    def get_reputation(self, address: str) -> ReputationScore:
        """Return a copy of the cached score, recalculating it once stale."""
        with self._lock:
            return copy.deepcopy(self._cached_reputation(address.lower()))

    def _cached_reputation(self, key: str) -> ReputationScore:
        now = int(time.time())
        existing = self._reputations.get(key)
        if existing and existing.valid_until > now:
            return existing
        score = self._calculate_reputation(key, now)
        self._reputations[key] = score
        return score

    def _calculate_reputation(self, address: str, now: int) -> ReputationScore:
        factors: list[ReputationFactor] = []

        entry = self._blacklist.get(address)
        if entry and not entry.is_expired(now):
            factors.append(
                ReputationFactor(
                    name="blacklisted",
                    contribution=-100,
                    weight=1,
                    description=f"Blacklisted: {entry.reason}",
                )
            )

        history = self._history.get(address) or ()
        if len(history) >= self.config.min_transactions_for_score:
            factors.append(self._history_factor(list(history)))

        factors.append(
            ReputationFactor(
                name="account_age",
                contribution=10,
                weight=0.2,
                description="Account age contribution",
            )
        )

        score = self._score(factors)
        return ReputationScore(
            address=address,
            score=score,
            confidence=min(len(history) / 20, 1.0),
            risk_level=reputation_risk_level(score),
            factors=factors,
            updated_at=now,
            valid_until=now + max(self.config.score_validity_period, 1),
        )

    def _score(self, factors: list[ReputationFactor]) -> float:
        total = self.config.base_reputation_score
        for factor in factors:
            total += factor.contribution * factor.weight
        return clamp_score(total)

    @staticmethod
    def _history_factor(history: list[TransactionData]) -> ReputationFactor:
        contribution = 0
        if len(history) >= 10:
            contribution += 10

        recent = history[-10:]
        unique_recipients = {t.recipient.lower() for t in recent}
        if len(unique_recipients) >= 5:
            contribution += 5
        # Repeated transfers to a single recipient
        if len(unique_recipients) == 1 and len(recent) >= 5:
            contribution -= 10

        return ReputationFactor(
            name="transaction_history",
            contribution=contribution,
            weight=0.5,
            description=f"Based on {len(history)} transactions",
        )

    def update_reputation(self, address: str, factor: ReputationFactor) -> ReputationScore:
        key = address.lower()
        with self._lock:
            reputation = self._cached_reputation(key)
            for i, existing in enumerate(reputation.factors):
                if existing.name == factor.name:
                    reputation.factors[i] = factor
                    break
            else:
                reputation.factors.append(factor)

            now = int(time.time())
            reputation.score = self._score(reputation.factors)
            reputation.risk_level = reputation_risk_level(reputation.score)
            reputation.updated_at = now
            reputation.valid_until = now + max(self.config.score_validity_period, 1)
            self._reputations[key] = reputation
            result = copy.deepcopy(reputation)

        logger.info("Reputation updated: %s score=%.1f", key, result.score)
        return result

    def meets_reputation_threshold(self, address: str, min_score: float) -> bool:
        return self.get_reputation(address).score >= min_score

    # Blacklist

    def check_blacklist(self, address: str) -> Optional[BlacklistEntry]:
        key = address.lower()
        with self._lock:
            entry = self._blacklist.get(key)
            if entry is None:
                return None
            if entry.is_expired():
                del self._blacklist[key]
                self._reputations.pop(key, None)
                logger.info("Blacklist entry expired: %s", key)
                return None
            return entry

    def add_to_blacklist(
        self,
        address: str,
        reason: str,
        severity: str = "danger",
        source: str = "manual",
        expires_at: Optional[int] = None,
        tags: Optional[Iterable[str]] = None,
    ) -> BlacklistEntry:
        _validate_severity(severity, BLACKLIST_SEVERITIES)
        key = address.lower()
        now = int(time.time())
        if expires_at is None and self.config.blacklist_expiry:
            expires_at = now + self.config.blacklist_expiry

        entry = BlacklistEntry(
            address=key,
            reason=reason,
            severity=severity,
            source=source,
            added_at=now,
            expires_at=expires_at,
            tags=list(tags or []),
        )
        with self._lock:
            self._blacklist[key] = entry
            self._reputations.pop(key, None)

        logger.info(
            "Address added to blacklist: %s (reason=%s, severity=%s)", key, reason, severity
        )
        if self.audit:
            self.audit.log(
                EventType.BLACKLIST_ADDED,
                subject=key,
                reason=reason,
                details={"severity": severity, "source": source},
            )
        return entry

    def remove_from_blacklist(self, address: str) -> None:
        key = address.lower()
        with self._lock:
            removed = self._blacklist.pop(key, None)
            self._reputations.pop(key, None)
        if removed is None:
            return

        logger.info("Address removed from blacklist: %s", key)
        if self.audit:
            self.audit.log(EventType.BLACKLIST_REMOVED, subject=key)

    def get_blacklist(
        self, severity: Optional[str] = None, source: Optional[str] = None
    ) -> list[BlacklistEntry]:
        now = int(time.time())
        with self._lock:
            entries = [e for e in self._blacklist.values() if not e.is_expired(now)]
        if severity:
            entries = [e for e in entries if e.severity == severity]
        if source:
            entries = [e for e in entries if e.source == source]
        return entries

    # Transaction analysis

    def analyze_transaction(self, tx: TransactionData) -> TransactionAnalysis:
        threats: list[ThreatIndicator] = []
        risk_score = 0

        with self._lock:
            for role, address in (("Sender", tx.sender), ("Recipient", tx.recipient)):
                entry = self.check_blacklist(address)
                if entry is None:
                    continue
                critical = entry.severity == Severity.CRITICAL.value
                threats.append(
                    ThreatIndicator(
                        type=ThreatType.BLACKLIST.value,
                        severity=Severity.CRITICAL.value if critical else Severity.DANGER.value,
                        description=f"{role} is blacklisted: {entry.reason}",
                        details={"address": address, "entry": entry.to_dict()},
                    )
                )
                risk_score += 50 if critical else 30

            if tx.value >= self.config.high_value_threshold:
                threats.append(
                    ThreatIndicator(
                        type=ThreatType.AMOUNT.value,
                        severity=Severity.WARNING.value,
                        description=f"High value transaction: {format_ether(tx.value)} ETH",
                        details={
                            "value": str(tx.value),
                            "threshold": str(self.config.high_value_threshold),
                        },
                    )
                )
                risk_score += 15

            history = self._history.get(tx.sender.lower()) or ()
            window_start = tx.timestamp - VELOCITY_WINDOW_SECONDS
            recent_count = sum(1 for t in history if t.timestamp >= window_start)
            if recent_count >= self.config.velocity_limit:
                threats.append(
                    ThreatIndicator(
                        type=ThreatType.VELOCITY.value,
                        severity=Severity.WARNING.value,
                        description=f"High transaction velocity: {recent_count} in last hour",
                        details={"count": recent_count, "limit": self.config.velocity_limit},
                    )
                )
                risk_score += 20

            reputation = self._cached_reputation(tx.sender.lower())
            if reputation.risk_level in (RiskLevel.HIGH.value, RiskLevel.CRITICAL.value):
                threats.append(
                    ThreatIndicator(
                        type=ThreatType.PATTERN.value,
                        severity=Severity.WARNING.value,
                        description=f"Low sender reputation: {reputation.score:g}/100",
                        details={"score": reputation.score, "risk_level": reputation.risk_level},
                    )
                )
                risk_score += 10

            self._store_transaction(tx)

        risk_score = min(100, risk_score)
        risk_level = transaction_risk_level(risk_score)
        threat_types = {t.type for t in threats}

        recommendations = []
        if risk_level in (RiskLevel.HIGH.value, RiskLevel.CRITICAL.value):
            recommendations.append("Consider additional verification before proceeding")
        if ThreatType.BLACKLIST.value in threat_types:
            recommendations.append("Block transaction - involves blacklisted address")
        if ThreatType.VELOCITY.value in threat_types:
            recommendations.append("Apply rate limiting")

        analysis = TransactionAnalysis(
            tx_id=_tx_id(tx),
            risk_score=risk_score,
            risk_level=risk_level,
            threats=threats,
            recommendations=recommendations,
            should_block=(
                risk_level == RiskLevel.CRITICAL.value
                or ThreatType.BLACKLIST.value in threat_types
            ),
        )
        logger.debug(
            "Transaction %s analyzed: score=%d level=%s", analysis.tx_id, risk_score, risk_level
        )
        if analysis.should_block:
            logger.info("Transaction %s should be blocked (score=%d)", analysis.tx_id, risk_score)
            if self.audit:
                self.audit.log(
                    EventType.TRANSACTION_BLOCKED,
                    subject=analysis.tx_id,
                    actor=tx.sender,
                    amount=tx.value,
                    success=False,
                    reason="; ".join(t.description for t in threats),
                    details={"to": tx.recipient, "risk_score": risk_score},
                )
        return analysis

    def _store_transaction(self, tx: TransactionData) -> None:
        key = tx.sender.lower()
        history = self._history.get(key)
        if history is None:
            history = deque(maxlen=self.config.history_per_address)
            self._history[key] = history
        history.append(tx)

    def analyze_batch(self, transactions: list[TransactionData]) -> list[TransactionAnalysis]:
        return [self.analyze_transaction(tx) for tx in transactions]

    def detect_patterns(self, transactions: list[TransactionData]) -> list[PatternMatch]:
        return detect_patterns(transactions)

    # Monitoring

    def report_activity(self, address: str, activity: str, severity: str) -> None:
        _validate_severity(severity, ALERT_SEVERITIES)
        key = address.lower()
        with self._lock:
            alerts = self._alerts.get(key)
            if alerts is None:
                alerts = deque(maxlen=self.config.alerts_per_address)
                self._alerts[key] = alerts
            alerts.append(Alert(activity=activity, severity=severity, timestamp=int(time.time())))
        logger.info("Activity reported for %s: %s (%s)", key, activity, severity)

    def get_recent_alerts(self, address: str, limit: int = 10) -> list[Alert]:
        if limit <= 0:
            return []
        with self._lock:
            alerts = list(self._alerts.get(address.lower()) or ())
        return alerts[-limit:]

    # Maintenance

    def sweep(self) -> SweepReport:
        """Evict expired entries and trim stores that outgrew their ceilings."""
        report = SweepReport()
        cfg = self.config
        with self._lock:
            now = int(time.time())

            for key in [k for k, r in self._reputations.items() if r.valid_until <= now]:
                del self._reputations[key]
                report.reputations_evicted += 1

            for key in [k for k, e in self._blacklist.items() if e.is_expired(now)]:
                del self._blacklist[key]
                self._reputations.pop(key, None)
                report.blacklist_evicted += 1

            excess = len(self._reputations) - cfg.max_reputations
            if excess > 0:
                oldest = sorted(self._reputations.items(), key=lambda kv: kv[1].updated_at)
                for key, _ in oldest[:excess]:
                    del self._reputations[key]
                report.reputations_evicted += excess

            excess = len(self._blacklist) - cfg.max_blacklist
            if excess > 0:
                oldest = sorted(self._blacklist.items(), key=lambda kv: kv[1].added_at)
                for key, _ in oldest[:excess]:
                    del self._blacklist[key]
                    self._reputations.pop(key, None)
                report.blacklist_evicted += excess

            if sum(len(a) for a in self._alerts.values()) > cfg.max_alerts_total:
                for alerts in self._alerts.values():
                    report.alerts_trimmed += _trim_front(alerts, cfg.alert_trim_size)
            keys, dropped = _evict_oldest_logs(self._alerts, cfg.max_alerts_total)
            report.alert_keys_evicted += keys
            report.alerts_trimmed += dropped

            if sum(len(h) for h in self._history.values()) > cfg.max_history_total:
                for history in self._history.values():
                    report.history_trimmed += _trim_front(history, cfg.history_trim_size)
            keys, dropped = _evict_oldest_logs(self._history, cfg.max_history_total)
            report.history_keys_evicted += keys
            report.history_trimmed += dropped

        if report.total:
            logger.debug("Risk sweep: %s", report.to_dict())
        return report


class InMemoryRiskEngine:
    """Canned reputation and analysis results for tests and local development."""

    name = "in-memory-risk-engine"

    def __init__(self, config: Optional[InMemoryRiskConfig] = None):
        config = config or InMemoryRiskConfig()
        self.default_reputation_score = config.default_reputation_score
        self.custom_scores = {k.lower(): v for k, v in config.custom_scores.items()}
        self.always_safe = config.always_safe
        self.simulated_delay = config.simulated_delay
        self.alerts_per_address = config.alerts_per_address
        self._lock = threading.RLock()
        self._reputations: dict[str, ReputationScore] = {}
        self._blacklist: dict[str, BlacklistEntry] = {}
        self._alerts: dict[str, deque[Alert]] = {}

        now = int(time.time())
        for address in config.blacklisted_addresses:
            key = address.lower()
            self._blacklist[key] = BlacklistEntry(
                address=key,
                reason="Mock blacklisted",
                severity=Severity.DANGER.value,
                source="mock",
                added_at=now,
                tags=["mock"],
            )

    def __enter__(self) -> "InMemoryRiskEngine":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _delay(self) -> None:
        if self.simulated_delay > 0:
            time.sleep(self.simulated_delay)

    def get_reputation(self, address: str) -> ReputationScore:
        self._delay()
        with self._lock:
            return copy.deepcopy(self._cached_reputation(address))

    def _cached_reputation(self, address: str) -> ReputationScore:
        key = address.lower()
        existing = self._reputations.get(key)
        if existing:
            return existing
        score = self.custom_scores.get(key, self.default_reputation_score)
        now = int(time.time())
        reputation = ReputationScore(
            address=address,
            score=score,
            confidence=0.9,
            risk_level=reputation_risk_level(score),
            factors=[
                ReputationFactor(
                    name="mock_factor",
                    contribution=score - 50,
                    weight=1,
                    description="Mock reputation factor",
                )
            ],
            updated_at=now,
            valid_until=now + 86400,
        )
        self._reputations[key] = reputation
        return reputation

    def update_reputation(self, address: str, factor: ReputationFactor) -> ReputationScore:
        with self._lock:
            reputation = self._cached_reputation(address)
            reputation.factors.append(factor)
            reputation.score = clamp_score(reputation.score + factor.contribution * factor.weight)
            reputation.risk_level = reputation_risk_level(reputation.score)
            reputation.updated_at = int(time.time())
            return copy.deepcopy(reputation)

    def meets_reputation_threshold(self, address: str, min_score: float) -> bool:
        return self.get_reputation(address).score >= min_score

    def _live_entry(self, key: str) -> Optional[BlacklistEntry]:
        entry = self._blacklist.get(key)
        if entry is not None and entry.is_expired():
            del self._blacklist[key]
            return None
        return entry

    def check_blacklist(self, address: str) -> Optional[BlacklistEntry]:
        self._delay()
        with self._lock:
            return self._live_entry(address.lower())

    def add_to_blacklist(
        self,
        address: str,
        reason: str,
        severity: str = "danger",
        source: str = "manual",
        expires_at: Optional[int] = None,
        tags: Optional[Iterable[str]] = None,
    ) -> BlacklistEntry:
        self._delay()
        _validate_severity(severity, BLACKLIST_SEVERITIES)
        key = address.lower()
        entry = BlacklistEntry(
            address=key,
            reason=reason,
            severity=severity,
            source=source,
            added_at=int(time.time()),
            expires_at=expires_at,
            tags=list(tags or []),
        )
        with self._lock:
            self._blacklist[key] = entry
        return entry

    def remove_from_blacklist(self, address: str) -> None:
        self._delay()
        with self._lock:
            self._blacklist.pop(address.lower(), None)

    def get_blacklist(
        self, severity: Optional[str] = None, source: Optional[str] = None
    ) -> list[BlacklistEntry]:
        self._delay()
        now = int(time.time())
        with self._lock:
            entries = [e for e in self._blacklist.values() if not e.is_expired(now)]
        if severity:
            entries = [e for e in entries if e.severity == severity]
        if source:
            entries = [e for e in entries if e.source == source]
        return entries

    def analyze_transaction(self, tx: TransactionData) -> TransactionAnalysis:
        self._delay()
        now = int(time.time())
        tx_id = tx.tx_hash or "0x" + keccak(text=f"mock-tx-{tx.sender}-{tx.recipient}-{now}").hex()

        if self.always_safe:
            return TransactionAnalysis(tx_id=tx_id, risk_score=5, risk_level=RiskLevel.LOW.value)

        with self._lock:
            hit = (
                self._live_entry(tx.sender.lower()) is not None
                or self._live_entry(tx.recipient.lower()) is not None
            )
        if hit:
            return TransactionAnalysis(
                tx_id=tx_id,
                risk_score=95,
                risk_level=RiskLevel.CRITICAL.value,
                threats=[
                    ThreatIndicator(
                        type=ThreatType.BLACKLIST.value,
                        severity=Severity.CRITICAL.value,
                        description="Blacklisted address involved",
                    )
                ],
                recommendations=["Block transaction"],
                should_block=True,
            )
        return TransactionAnalysis(tx_id=tx_id, risk_score=10, risk_level=RiskLevel.LOW.value)

    def analyze_batch(self, transactions: list[TransactionData]) -> list[TransactionAnalysis]:
        return [self.analyze_transaction(tx) for tx in transactions]

    def detect_patterns(self, transactions: list[TransactionData]) -> list[PatternMatch]:
        self._delay()
        return []

    def report_activity(self, address: str, activity: str, severity: str) -> None:
        self._delay()
        _validate_severity(severity, ALERT_SEVERITIES)
        key = address.lower()
        with self._lock:
            alerts = self._alerts.get(key)
            if alerts is None:
                alerts = deque(maxlen=self.alerts_per_address)
                self._alerts[key] = alerts
            alerts.append(Alert(activity=activity, severity=severity, timestamp=int(time.time())))

    def get_recent_alerts(self, address: str, limit: int = 10) -> list[Alert]:
        self._delay()
        if limit <= 0:
            return []
        with self._lock:
            return list(self._alerts.get(address.lower()) or ())[-limit:]

    def sweep(self) -> SweepReport:
        return SweepReport()

    def close(self) -> None:
        pass

    def health_check(self) -> bool:
        return True

    # Test helpers
    def set_custom_score(self, address: str, score: float) -> None:
        with self._lock:
            self.custom_scores[address.lower()] = score
            self._reputations.pop(address.lower(), None)

    def set_always_safe(self, value: bool) -> None:
        self.always_safe = value

    def clear_all(self) -> None:
        with self._lock:
            self._reputations.clear()
            self._blacklist.clear()
            self._alerts.clear()
