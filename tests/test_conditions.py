"""Tests for condition field resolution, comparison and regex screening."""

from decimal import Decimal

from tollgate.conditions import (
    compare_values,
    conditions_match,
    evaluate_condition,
    is_known_field,
    is_safe_pattern,
    resolve_field,
    safe_match,
)
from tollgate.policy import Condition, PolicyContext


def _context(**overrides):
    fields = dict(
        action="payment",
        actor="0xactor",
        target="0xTarget",
        amount=5 * 10 ** 18,
        data={"kycVerified": True, "meta": {"tier": "gold"}},
    )
    fields.update(overrides)
    return PolicyContext(**fields)


class TestFieldResolution:
    def test_top_level_fields(self):
        ctx = _context()
        assert resolve_field("amount", ctx) == 5 * 10 ** 18
        assert resolve_field("chainId", ctx) == ctx.chain_id

    def test_nested_data(self):
        ctx = _context()
        assert resolve_field("data.meta.tier", ctx) == "gold"
        assert resolve_field("data.meta.missing", ctx) is None
        assert resolve_field("data.kycVerified.deeper", ctx) is None

    def test_unknown_fields(self):
        assert resolve_field("__class__", _context()) is None
        assert resolve_field("amount.real", _context()) is None
        assert is_known_field("data.anything")
        assert not is_known_field("secret")


class TestCompareValues:
    def test_large_integers_stay_exact(self):
        a = 10 ** 30 + 1
        assert compare_values(a, 10 ** 30) == 1
        assert compare_values(str(a), 10 ** 30) == 1
        assert compare_values(Decimal("1.5"), 1) == 1

    def test_none_sorts_lowest(self):
        assert compare_values(None, 0) == -1
        assert compare_values(0, None) == 1
        assert compare_values(None, None) == 0

    def test_strings_are_case_insensitive(self):
        assert compare_values("0xABC", "0xabc") == 0

    def test_bools_only_compare_for_equality(self):
        assert compare_values(True, True) == 0
        assert compare_values(True, 1) is None


class TestEvaluateCondition:
    def test_neq_is_true_for_missing_value(self):
        assert evaluate_condition(Condition("data.kycVerified", "neq", True), None)
        assert not evaluate_condition(Condition("data.kycVerified", "neq", True), True)

    def test_ordering_operators(self):
        assert evaluate_condition(Condition("amount", "gt", 10), 11)
        assert not evaluate_condition(Condition("amount", "gt", 10), None)
        assert evaluate_condition(Condition("amount", "lte", 10), 10)

    def test_membership(self):
        assert evaluate_condition(Condition("token", "in", [None, "0xA"]), None)
        assert evaluate_condition(Condition("token", "in", ["0xa"]), "0xA")
        assert evaluate_condition(Condition("token", "notIn", ["0xb"]), "0xA")

    def test_blacklist_feeds_target_in(self):
        cond = Condition("target", "in", [])
        assert evaluate_condition(cond, "0xBAD", blacklist={"0xbad"})
        assert not evaluate_condition(cond, "0xgood", blacklist={"0xbad"})

    def test_contains_and_matches(self):
        assert evaluate_condition(Condition("actor", "contains", "act"), "0xactor")
        assert evaluate_condition(Condition("actor", "matches", "^0x[a-z]+$"), "0xactor")

    def test_unknown_operator_never_matches(self):
        assert not evaluate_condition(Condition("amount", "between", [1, 2]), 1)


class TestRegexScreening:
    def test_rejects_catastrophic_shapes(self):
        assert not is_safe_pattern("(a+)+$")
        assert not is_safe_pattern("(?=a)")
        assert not is_safe_pattern("a" * 201)
        assert is_safe_pattern("^0x[0-9a-f]{40}$")

    def test_invalid_pattern_does_not_match(self):
        assert not safe_match("([", "anything")

    def test_unsafe_pattern_does_not_match(self):
        assert not safe_match("(a+)+$", "aaaa")


def test_conditions_match_requires_all():
    ctx = _context()
    assert conditions_match([], ctx)
    assert conditions_match(
        [Condition("amount", "gt", 10 ** 18), Condition("data.meta.tier", "eq", "GOLD")], ctx
    )
    assert not conditions_match(
        [Condition("amount", "gt", 10 ** 18), Condition("target", "eq", "0xother")], ctx
    )
