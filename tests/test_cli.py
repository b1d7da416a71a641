"""CLI tests: mandate signing, policy files, risk files and the audit view."""

import json

import pytest
from click.testing import CliRunner
from eth_account import Account

from tollgate.cli import main


ETH = 10 ** 18
BAD = "0x" + "ba" * 20
GOOD = "0x" + "60" * 20


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    monkeypatch.setenv("TOLLGATE_AUDIT_PATH", str(tmp_path / "audit" / "audit.jsonl"))
    monkeypatch.setenv("TOLLGATE_AUDIT_HMAC_KEY", "cli-test-key")
    monkeypatch.delenv("TOLLGATE_CHAIN_ID", raising=False)
    monkeypatch.delenv("TOLLGATE_MANDATE_VERIFIER", raising=False)


@pytest.fixture
def runner():
    return CliRunner()


def _key(account) -> str:
    return "0x" + bytes(account.key).hex()


def _write_json(path, payload):
    path.write_text(json.dumps(payload))
    return str(path)


def _create_mandate(runner, tmp_path, principal, agent):
    out = tmp_path / "mandate.json"
    result = runner.invoke(
        main,
        [
            "mandate", "create",
            "--agent", agent.address,
            "--max-amount", str(ETH),
            "--total-budget", str(5 * ETH),
            "--duration", "2h",
            "--output", str(out),
        ],
        input=_key(principal) + "\n",
    )
    assert result.exit_code == 0, result.output
    return out


class TestMandateCommands:
    def test_create_rejects_raw_key_on_argv(self, runner):
        principal = Account.create()
        agent = Account.create()
        result = runner.invoke(
            main,
            [
                "mandate", "create",
                "--agent", agent.address,
                "--max-amount", "1",
                "--principal-key", _key(principal),
            ],
        )
        assert result.exit_code != 0
        assert "Refusing --principal-key from argv" in result.output

    def test_create_then_verify(self, runner, tmp_path):
        principal = Account.create()
        agent = Account.create()
        out = _create_mandate(runner, tmp_path, principal, agent)

        data = json.loads(out.read_text())
        assert data["principal"] == principal.address
        assert data["scope"]["total_budget"] == str(5 * ETH)

        result = runner.invoke(main, ["mandate", "verify", str(out)])
        assert result.exit_code == 0, result.output
        assert f"Mandate is valid: {data['id']}" in result.output

    def test_verify_detects_tampering(self, runner, tmp_path):
        out = _create_mandate(runner, tmp_path, Account.create(), Account.create())
        data = json.loads(out.read_text())
        data["scope"]["max_amount"] = str(100 * ETH)
        out.write_text(json.dumps(data))

        result = runner.invoke(main, ["mandate", "verify", str(out)])
        assert result.exit_code == 1
        assert "Signature does not match principal" in result.output

    def test_verify_with_other_chain_fails(self, runner, tmp_path):
        out = _create_mandate(runner, tmp_path, Account.create(), Account.create())
        result = runner.invoke(main, ["mandate", "verify", str(out), "--chain-id", "1"])
        assert result.exit_code == 1

    def test_create_rejects_bad_duration(self, runner):
        result = runner.invoke(
            main,
            [
                "mandate", "create",
                "--agent", Account.create().address,
                "--max-amount", "1",
                "--duration", "soon",
            ],
            input=_key(Account.create()) + "\n",
        )
        assert result.exit_code == 1
        assert "Invalid duration" in result.output


class TestPolicyCommands:
    def test_defaults(self, runner):
        result = runner.invoke(main, ["policy", "defaults", "--env", "test"])
        assert result.exit_code == 0
        assert [p["id"] for p in json.loads(result.stdout)] == ["blacklist-check", "default-allow"]

    def test_validate(self, runner, tmp_path):
        path = _write_json(
            tmp_path / "policies.json",
            [
                {"id": "good", "name": "Good", "applies_to": ["payment"], "effect": "allow"},
                {"id": "bad", "name": "Bad", "applies_to": [], "effect": "deny"},
            ],
        )
        result = runner.invoke(main, ["policy", "validate", path])
        assert result.exit_code == 1
        assert "✅ good" in result.output
        assert "❌ bad: Policy must apply to at least one action type" in result.output

    def test_evaluate(self, runner, tmp_path):
        path = _write_json(
            tmp_path / "policies.json",
            [
                {
                    "id": "cap",
                    "name": "Cap",
                    "applies_to": ["transfer"],
                    "conditions": [{"field": "amount", "operator": "gt", "value": 10 * ETH}],
                    "effect": "deny",
                },
                {
                    "id": "vip",
                    "name": "VIP",
                    "description": "vip customer",
                    "applies_to": ["transfer"],
                    "conditions": [{"field": "data.tier", "operator": "eq", "value": "vip"}],
                    "effect": "warn",
                },
            ],
        )
        allowed = runner.invoke(
            main,
            ["policy", "evaluate", path, "--action", "transfer", "--amount", str(ETH),
             "--data", "tier=vip"],
        )
        assert allowed.exit_code == 0, allowed.output
        decision = json.loads(allowed.stdout)
        assert decision["allowed"] is True
        assert decision["warnings"] == ["VIP: vip customer"]

        denied = runner.invoke(
            main, ["policy", "evaluate", path, "--action", "transfer", "--amount", str(11 * ETH)]
        )
        assert denied.exit_code == 1
        assert json.loads(denied.stdout)["denying_policy"] == "cap"

    def test_evaluate_rejects_invalid_file(self, runner, tmp_path):
        path = _write_json(tmp_path / "policies.json", [{"id": "x", "effect": "deny"}])
        result = runner.invoke(main, ["policy", "evaluate", path, "--action", "transfer"])
        assert result.exit_code == 1
        assert "Invalid policy file" in result.output


class TestRiskCommands:
    def test_analyze(self, runner, tmp_path):
        path = _write_json(
            tmp_path / "txs.json",
            [
                {"from": GOOD, "to": BAD, "value": str(ETH), "tx_hash": "0x1"},
                {"from": GOOD, "to": GOOD, "value": str(ETH), "tx_hash": "0x2"},
            ],
        )
        result = runner.invoke(main, ["risk", "analyze", path, "--blacklist", BAD])
        assert result.exit_code == 0, result.output
        analyses = json.loads(result.stdout)
        assert [a["should_block"] for a in analyses] == [True, False]

    def test_patterns(self, runner, tmp_path):
        path = _write_json(
            tmp_path / "txs.json",
            [
                {"from": GOOD, "to": BAD, "value": "1"},
                {"from": BAD, "to": GOOD, "value": "1"},
            ],
        )
        result = runner.invoke(main, ["risk", "patterns", path])
        assert result.exit_code == 0, result.output
        assert [p["pattern_name"] for p in json.loads(result.stdout)] == ["Circular Transfer"]

    def test_analyze_rejects_bad_value(self, runner, tmp_path):
        path = _write_json(tmp_path / "txs.json", [{"from": GOOD, "to": BAD, "value": "-5"}])
        result = runner.invoke(main, ["risk", "analyze", path])
        assert result.exit_code == 1
        assert "Could not read transactions" in result.output


class TestAuditCommand:
    def test_empty(self, runner):
        result = runner.invoke(main, ["audit"])
        assert result.exit_code == 0
        assert "No audit events found." in result.output

    def test_shows_created_mandate(self, runner, tmp_path):
        out = _create_mandate(runner, tmp_path, Account.create(), Account.create())
        mandate_id = json.loads(out.read_text())["id"]

        result = runner.invoke(main, ["audit", "--subject", mandate_id])
        assert result.exit_code == 0
        assert f"mandate_created {mandate_id} 1 ETH" in result.output

        summary = runner.invoke(main, ["audit", "--summary"])
        assert json.loads(summary.stdout)["by_type"] == {"mandate_created": 1}

    def test_broken_chain_is_reported(self, runner, tmp_path):
        _create_mandate(runner, tmp_path, Account.create(), Account.create())
        audit_path = tmp_path / "audit" / "audit.jsonl"
        record = json.loads(audit_path.read_text().splitlines()[0])
        record["subject"] = "0x" + "00" * 32
        audit_path.write_text(json.dumps(record) + "\n")

        result = runner.invoke(main, ["audit"])
        assert result.exit_code == 1
        assert "Audit chain broken at line 1" in result.output
