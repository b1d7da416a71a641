"""Base-unit (wei) amount helpers. Amounts are always exact integers."""

from __future__ import annotations

from decimal import Decimal
from typing import Any


WEI_PER_ETHER = 10 ** 18


def parse_base_units(value: Any, field_name: str = "amount", *, allow_zero: bool = True) -> int:
    """Parse an integer base-unit amount from int, Decimal or a digit string."""
    if isinstance(value, bool):
        raise ValueError(f"{field_name} must be an integer base-unit value")
    if isinstance(value, int):
        parsed = value
    elif isinstance(value, Decimal) and value == value.to_integral_value():
        parsed = int(value)
    elif isinstance(value, str) and value.strip().isdigit():
        parsed = int(value.strip())
    else:
        raise ValueError(f"{field_name} must be an integer base-unit value")
    if parsed < 0 or (parsed == 0 and not allow_zero):
        raise ValueError(f"{field_name} must be {'>= 0' if allow_zero else '> 0'}")
    return parsed


def format_ether(value: int) -> str:
    """Format wei as an ether string without trailing zeros."""
    whole, frac = divmod(abs(value), WEI_PER_ETHER)
    sign = "-" if value < 0 else ""
    frac_text = f"{frac:018d}".rstrip("0")
    return f"{sign}{whole}.{frac_text}" if frac_text else f"{sign}{whole}"
