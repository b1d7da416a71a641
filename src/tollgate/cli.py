"""
Tollgate CLI — authorization checks for agent payments.

Commands:
    tollgate mandate create     Sign a new mandate as its principal
    tollgate mandate verify     Verify a mandate file's signature
    tollgate policy defaults    Print a built-in rule set
    tollgate policy validate    Validate a policy file
    tollgate policy evaluate    Evaluate one action against a policy file
    tollgate risk analyze       Score a file of transactions
    tollgate risk patterns      Look for wash-trading patterns in a file
    tollgate audit              View audit trail
"""

from __future__ import annotations

import json
import logging
import os
import sys
import time
from pathlib import Path
from typing import Any, Optional

import click
from click.core import ParameterSource
from eth_account import Account

from .audit import DEFAULT_AUDIT_PATH, AuditTrail
from .errors import AuditIntegrityError, TollgateError, ValidationError
from .mandate import DEFAULT_CHAIN_ID, Mandate, MandateScope, RateLimit
from .mandate_authority import MandateAuthority, MandateAuthorityConfig
from .money import format_ether
from .policy import PolicyContext
from .policy_engine import RuleEngine, RuleEngineConfig
from .risk import TransactionData
from .risk_engine import RiskEngine, RiskEngineConfig
from .rules import policies_for_environment


def _env_chain_id() -> int:
    return int(os.getenv("TOLLGATE_CHAIN_ID", str(DEFAULT_CHAIN_ID)))


def _audit_trail() -> AuditTrail:
    override_path = os.getenv("TOLLGATE_AUDIT_PATH")
    return AuditTrail(Path(override_path) if override_path else DEFAULT_AUDIT_PATH)


def _parse_duration_to_seconds(value: str) -> int:
    raw = value.strip().lower()
    units = {"s": 1, "m": 60, "h": 3600, "d": 86400}
    if len(raw) < 2 or raw[-1] not in units or not raw[:-1].isdigit() or int(raw[:-1]) == 0:
        raise ValueError(f"Invalid duration: {value} (expected formats like 90m, 72h, 30d)")
    return int(raw[:-1]) * units[raw[-1]]


def _normalize_private_key(key_input: str) -> str:
    candidate = key_input.strip()
    if candidate.startswith("0x"):
        candidate = candidate[2:]
    if len(candidate) != 64:
        raise ValueError("Private key must be a 32-byte hex string")
    int(candidate, 16)
    return "0x" + candidate


def _parse_list(raw: str) -> list[str]:
    return [item.strip() for item in raw.split(",") if item.strip()]


def _parse_data(pairs: tuple[str, ...]) -> dict[str, Any]:
    """KEY=VALUE pairs; values are decoded as JSON when possible."""
    data: dict[str, Any] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected KEY=VALUE, got {pair!r}", param_hint="--data")
        try:
            data[key] = json.loads(value)
        except json.JSONDecodeError:
            data[key] = value
    return data


def _load_json(path: str) -> Any:
    with open(path, encoding="utf-8") as f:
        return json.load(f)


def _load_list(path: str) -> list[Any]:
    raw = _load_json(path)
    return raw if isinstance(raw, list) else [raw]


def _echo_json(payload: Any) -> None:
    click.echo(json.dumps(payload, indent=2))


# ── CLI ───────────────────────────────────────────────────────────

@click.group()
@click.version_option(version="0.1.0")
@click.option("-v", "--verbose", is_flag=True, default=False, help="Enable debug logging.")
def main(verbose: bool):
    """Tollgate — mandate, policy and risk checks for agent payments."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@main.group("mandate")
def mandate_group():
    """Mandate signing and verification."""
    pass


@mandate_group.command("create")
@click.option("--agent", required=True, help="Agent wallet address")
@click.option("--max-amount", type=int, required=True, help="Max amount per action (wei)")
@click.option("--total-budget", type=int, default=None, help="Total budget (wei)")
@click.option("--recipients", default="", help="Comma-separated recipient allow-list")
@click.option("--tokens", default="", help="Comma-separated token allow-list (empty = native only)")
@click.option("--actions", default="", help="Comma-separated action types (transfer,swap,stake,lend)")
@click.option("--rate-max", type=int, default=None, help="Max transactions per rate window")
@click.option("--rate-period", type=int, default=3600, help="Rate window length in seconds")
@click.option("--duration", default="24h", help="Validity period (e.g., 90m, 72h, 30d)")
@click.option("--chain-id", type=int, default=_env_chain_id, help="EIP-712 domain chain id")
@click.option(
    "--verifying-contract",
    default=lambda: os.getenv("TOLLGATE_MANDATE_VERIFIER", ""),
    show_default="env TOLLGATE_MANDATE_VERIFIER or zero address",
    help="Verifying contract address for EIP-712 domain",
)
@click.option("--principal-key", prompt=True, hide_input=True, help="Principal private key (hex)")
@click.option(
    "--unsafe-allow-key-arg",
    is_flag=True,
    default=False,
    help="Allow passing --principal-key via argv (unsafe; can leak in shell/process history).",
)
@click.option("--output", "output_path", type=click.Path(dir_okay=False), default=None,
              help="Write the mandate JSON to this file instead of stdout")
def mandate_create(
    agent: str,
    max_amount: int,
    total_budget: Optional[int],
    recipients: str,
    tokens: str,
    actions: str,
    rate_max: Optional[int],
    rate_period: int,
    duration: str,
    chain_id: int,
    verifying_contract: str,
    principal_key: str,
    unsafe_allow_key_arg: bool,
    output_path: Optional[str],
):
    """Create a mandate signed by the principal's key."""
    ctx = click.get_current_context(silent=True)
    key_from_argv = (
        ctx is not None
        and ctx.get_parameter_source("principal_key") == ParameterSource.COMMANDLINE
    )
    if key_from_argv and not unsafe_allow_key_arg:
        click.echo(
            "❌ Refusing --principal-key from argv. Re-run with prompt input or pass "
            "--unsafe-allow-key-arg to acknowledge the risk.",
            err=True,
        )
        sys.exit(1)

    try:
        private_key = _normalize_private_key(principal_key)
        principal = Account.from_key(private_key).address
        scope = MandateScope(
            max_amount=max_amount,
            total_budget=total_budget,
            allowed_recipients=_parse_list(recipients),
            allowed_tokens=_parse_list(tokens),
            allowed_actions=_parse_list(actions),
            rate_limit=RateLimit(rate_max, rate_period) if rate_max else None,
        )
        authority = MandateAuthority(
            MandateAuthorityConfig(
                chain_id=chain_id,
                verifying_contract=verifying_contract or None,
                signer_key=private_key,
                require_signature=True,
            ),
            audit=_audit_trail(),
        )
        mandate = authority.create_mandate(
            agent, principal, scope, _parse_duration_to_seconds(duration)
        )
    except (TollgateError, ValueError) as exc:
        click.echo(f"❌ Failed to create mandate: {exc}", err=True)
        sys.exit(1)

    payload = mandate.to_dict()
    if output_path:
        with open(output_path, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2)
        click.echo(f"✅ Mandate created: {mandate.id}")
        click.echo(f"   Principal: {mandate.principal}")
        click.echo(f"   Agent:     {mandate.agent}")
        click.echo(f"   Max:       {format_ether(scope.max_amount)} ETH per action")
        click.echo(f"   Expires:   {time.strftime('%Y-%m-%d %H:%M', time.localtime(mandate.expiry))}")
        click.echo(f"   Saved to:  {output_path}")
    else:
        _echo_json(payload)


@mandate_group.command("verify")
@click.argument("mandate_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--chain-id", type=int, default=_env_chain_id, help="EIP-712 domain chain id")
@click.option(
    "--verifying-contract",
    default=lambda: os.getenv("TOLLGATE_MANDATE_VERIFIER", ""),
    help="Verifying contract address for EIP-712 domain",
)
def mandate_verify(mandate_file: str, chain_id: int, verifying_contract: str):
    """Verify a mandate's signature and validity."""
    try:
        mandate = Mandate.from_dict(_load_json(mandate_file))
    except (KeyError, ValueError, TypeError) as exc:
        click.echo(f"❌ Could not read mandate: {exc}", err=True)
        sys.exit(1)

    authority = MandateAuthority(
        MandateAuthorityConfig(chain_id=chain_id, verifying_contract=verifying_contract or None)
    )
    result = authority.validate_mandate_signature(mandate)
    if result.valid:
        click.echo(f"✅ Mandate is valid: {mandate.id}")
        click.echo(f"   Principal: {mandate.principal}")
        click.echo(f"   Agent:     {mandate.agent}")
        click.echo(f"   Expires:   {time.strftime('%Y-%m-%d %H:%M', time.localtime(mandate.expiry))}")
    else:
        click.echo(f"❌ Mandate is invalid: {'; '.join(result.errors)}")
        sys.exit(1)


@main.group("policy")
def policy_group():
    """Policy rule sets and evaluation."""
    pass


@policy_group.command("defaults")
@click.option(
    "--env",
    "environment",
    type=click.Choice(["production", "staging", "development", "test"]),
    default="development",
    help="Which built-in rule set to print",
)
def policy_defaults(environment: str):
    """Print a built-in rule set as JSON."""
    _echo_json([p.to_dict() for p in policies_for_environment(environment)])


@policy_group.command("validate")
@click.argument("policy_file", type=click.Path(exists=True, dir_okay=False))
def policy_validate(policy_file: str):
    """Validate every policy in a JSON file."""
    engine = RuleEngine(RuleEngineConfig(use_defaults=False))
    failed = False
    for raw in _load_list(policy_file):
        valid, errors = engine.validate_policy(raw)
        label = raw.get("id") or "<missing id>"
        if valid:
            click.echo(f"✅ {label}")
        else:
            failed = True
            click.echo(f"❌ {label}: {'; '.join(errors)}")
    if failed:
        sys.exit(1)


@policy_group.command("evaluate")
@click.argument("policy_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--action", required=True, help="Action type, e.g. payment or transfer")
@click.option("--actor", default="", help="Address performing the action")
@click.option("--target", default=None, help="Recipient or contract address")
@click.option("--amount", type=int, default=None, help="Amount in wei")
@click.option("--token", default=None, help="Token address (omit for native)")
@click.option("--chain-id", type=int, default=_env_chain_id)
@click.option("--data", "data_pairs", multiple=True, help="Extra context as KEY=VALUE")
@click.option("--blacklist", multiple=True, help="Address to treat as blacklisted")
def policy_evaluate(
    policy_file: str,
    action: str,
    actor: str,
    target: Optional[str],
    amount: Optional[int],
    token: Optional[str],
    chain_id: int,
    data_pairs: tuple[str, ...],
    blacklist: tuple[str, ...],
):
    """Evaluate one action against the policies in a JSON file."""
    engine = RuleEngine(RuleEngineConfig(use_defaults=False, blacklist=list(blacklist)))
    try:
        for raw in _load_list(policy_file):
            engine.add_policy(raw)
    except ValidationError as exc:
        click.echo(f"❌ Invalid policy file: {exc}", err=True)
        sys.exit(1)

    context = PolicyContext(
        action=action,
        actor=actor,
        target=target,
        amount=amount,
        token=token,
        chain_id=chain_id,
        data=_parse_data(data_pairs),
    )
    decision = engine.evaluate(context)
    _echo_json(decision.to_dict())
    if not decision.allowed:
        sys.exit(1)


@main.group("risk")
def risk_group():
    """Transaction risk analysis."""
    pass


def _load_transactions(path: str) -> list[TransactionData]:
    try:
        return [TransactionData.from_dict(raw) for raw in _load_list(path)]
    except (ValueError, TypeError, AttributeError) as exc:
        click.echo(f"❌ Could not read transactions: {exc}", err=True)
        sys.exit(1)


@risk_group.command("analyze")
@click.argument("tx_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--blacklist", multiple=True, help="Address to treat as blacklisted")
def risk_analyze(tx_file: str, blacklist: tuple[str, ...]):
    """Score each transaction in a JSON file, in order."""
    transactions = _load_transactions(tx_file)
    config = RiskEngineConfig(sweep_interval=0, initial_blacklist=list(blacklist))
    with RiskEngine(config) as engine:
        analyses = engine.analyze_batch(transactions)
    _echo_json([a.to_dict() for a in analyses])


@risk_group.command("patterns")
@click.argument("tx_file", type=click.Path(exists=True, dir_okay=False))
def risk_patterns(tx_file: str):
    """Detect self-transfer and circular-transfer patterns in a JSON file."""
    transactions = _load_transactions(tx_file)
    with RiskEngine(RiskEngineConfig(sweep_interval=0)) as engine:
        patterns = engine.detect_patterns(transactions)
    _echo_json([p.to_dict() for p in patterns])


@main.command()
@click.option("--subject", default=None, help="Filter by mandate, policy or address")
@click.option("--limit", type=int, default=20, help="Number of events")
@click.option("--summary", "show_summary", is_flag=True, default=False, help="Print counts only")
def audit(subject: Optional[str], limit: int, show_summary: bool):
    """View the audit trail."""
    trail = _audit_trail()
    try:
        if show_summary:
            _echo_json(trail.summary(subject=subject))
            return
        events = trail.read_events(subject=subject, limit=limit)
    except AuditIntegrityError as exc:
        click.echo(f"❌ {exc}", err=True)
        sys.exit(1)

    if not events:
        click.echo("No audit events found.")
        return

    for event in events:
        ts = time.strftime("%H:%M:%S", time.localtime(event.timestamp))
        status = "✅" if event.success else "❌"
        target = f" {event.subject}" if event.subject else ""
        amount = f" {format_ether(int(event.amount))} ETH" if event.amount else ""
        reason = f" ({event.reason})" if event.reason and not event.success else ""
        click.echo(f"  {ts} {status} {event.event_type}{target}{amount}{reason}")


if __name__ == "__main__":
    main()
