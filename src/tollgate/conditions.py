"""
Condition matching for policy evaluation.

Fields are looked up through a fixed accessor table, never by attribute
reflection. Values are compared with a total-ish ordering that keeps wei
amounts exact.
"""

from __future__ import annotations

import logging
import math
import re
from decimal import Decimal, InvalidOperation
from functools import lru_cache
from typing import Any, Callable, Collection, Mapping, Optional

from .policy import Condition, PolicyContext


logger = logging.getLogger(__name__)

MAX_PATTERN_LENGTH = 200
MAX_CANDIDATE_LENGTH = 10_000

# Lookaround, (x+)+ / (x*)* style nesting, and runs of .*
_DANGEROUS_PATTERNS = (
    re.compile(r"\(\?[<>=!]"),
    re.compile(r"\([^)]*\+\)[*+]"),
    re.compile(r"\([^)]*\*\)[*+]"),
    re.compile(r"\.\*\.\*\.\*"),
)

_INTEGER_RE = re.compile(r"^\s*-?\d+\s*$")

FIELD_ACCESSORS: dict[str, Callable[[PolicyContext], Any]] = {
    "action": lambda ctx: ctx.action,
    "actor": lambda ctx: ctx.actor,
    "target": lambda ctx: ctx.target,
    "amount": lambda ctx: ctx.amount,
    "token": lambda ctx: ctx.token,
    "chain_id": lambda ctx: ctx.chain_id,
    "chainId": lambda ctx: ctx.chain_id,
    "timestamp": lambda ctx: ctx.timestamp,
}

DATA_ROOT = "data"


def is_known_field(path: str) -> bool:
    root = path.split(".", 1)[0]
    if root == DATA_ROOT:
        return True
    return root in FIELD_ACCESSORS and "." not in path


def resolve_field(path: str, context: PolicyContext) -> Any:
    """Return the value at ``path`` or None when any segment is missing."""
    root, _, rest = path.partition(".")
    if root == DATA_ROOT:
        value: Any = context.data
        if not rest:
            return value
        for key in rest.split("."):
            if not isinstance(value, Mapping):
                return None
            value = value.get(key)
            if value is None:
                return None
        return value

    accessor = FIELD_ACCESSORS.get(root)
    if accessor is None or rest:
        return None
    return accessor(context)


def _as_decimal(value: Any) -> Optional[Decimal]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    if isinstance(value, float):
        return Decimal(repr(value)) if math.isfinite(value) else None
    if isinstance(value, str) and _INTEGER_RE.match(value):
        try:
            return Decimal(value.strip())
        except InvalidOperation:
            return None
    return None


def _sign(a: Any, b: Any) -> int:
    return (a > b) - (a < b)


def compare_values(a: Any, b: Any) -> Optional[int]:
    """Three-way compare. None means the values are unequal and unordered."""
    if a is None and b is None:
        return 0
    if a is None:
        return -1
    if b is None:
        return 1

    if isinstance(a, bool) or isinstance(b, bool):
        if isinstance(a, bool) and isinstance(b, bool) and a == b:
            return 0
        return None

    if isinstance(a, (int, float, Decimal)) or isinstance(b, (int, float, Decimal)):
        left, right = _as_decimal(a), _as_decimal(b)
        if left is not None and right is not None:
            return _sign(left, right)

    if isinstance(a, str) and isinstance(b, str):
        return _sign(a.casefold(), b.casefold())

    return _sign(str(a), str(b))


def _equal(a: Any, b: Any) -> bool:
    return compare_values(a, b) == 0


def is_safe_pattern(pattern: str) -> bool:
    if len(pattern) > MAX_PATTERN_LENGTH:
        logger.warning("Regex pattern too long: %s...", pattern[:50])
        return False
    for dangerous in _DANGEROUS_PATTERNS:
        if dangerous.search(pattern):
            logger.warning("Potentially dangerous regex pattern blocked: %s", pattern)
            return False
    return True


@lru_cache(maxsize=256)
def _compile(pattern: str) -> Optional["re.Pattern[str]"]:
    try:
        return re.compile(pattern)
    except re.error:
        logger.warning("Invalid regex pattern: %s", pattern)
        return None


def safe_match(pattern: str, candidate: str) -> bool:
    """Search ``candidate`` for ``pattern`` after screening the pattern.

    The screening is heuristic; it does not guarantee linear-time matching.
    """
    if not is_safe_pattern(pattern):
        return False
    compiled = _compile(pattern)
    if compiled is None:
        return False
    return compiled.search(candidate[:MAX_CANDIDATE_LENGTH]) is not None


def evaluate_condition(
    condition: Condition,
    value: Any,
    blacklist: Collection[str] = (),
) -> bool:
    operator, expected = condition.operator, condition.value

    if (
        condition.field == "target"
        and operator == "in"
        and isinstance(expected, (list, tuple))
        and isinstance(value, str)
        and value.lower() in blacklist
    ):
        return True

    if operator in ("eq", "neq", "gt", "gte", "lt", "lte"):
        result = compare_values(value, expected)
        if operator == "eq":
            return result == 0
        if operator == "neq":
            return result != 0
        if result is None:
            return False
        if operator == "gt":
            return result > 0
        if operator == "gte":
            return result >= 0
        if operator == "lt":
            return result < 0
        return result <= 0

    if operator == "in":
        if not isinstance(expected, (list, tuple)):
            return False
        return any(_equal(value, item) for item in expected)

    if operator == "notIn":
        if not isinstance(expected, (list, tuple)):
            return True
        return not any(_equal(value, item) for item in expected)

    if operator == "contains":
        if isinstance(value, str) and isinstance(expected, str):
            return expected in value
        if isinstance(value, (list, tuple)):
            return any(_equal(item, expected) for item in value)
        return False

    if operator == "matches":
        if isinstance(value, str) and isinstance(expected, str):
            return safe_match(expected, value)
        return False

    return False


def conditions_match(
    conditions: list[Condition],
    context: PolicyContext,
    blacklist: Collection[str] = (),
) -> bool:
    """All conditions must hold; an empty list always matches."""
    for condition in conditions:
        value = resolve_field(condition.field, context)
        if not evaluate_condition(condition, value, blacklist):
            return False
    return True
