"""
fixed_point.py - Scaled-Integer Arithmetic for Pool Accounting

Every balance, rate and price in the pool is an integer. Ratios and prices are
scaled by WAD (10**18); limits and fees are expressed in basis points.

All functions in this module are pure. Rounding direction is always explicit:
the *_down variants truncate toward zero, the *_up variants round away from
zero. Results are bounded to the unsigned 256-bit range so that the books stay
representable by any settlement layer the pool is mirrored to.

Conversions between WAD integers and Decimal use the package Decimal context
(prec=50, ROUND_HALF_EVEN).
"""

from __future__ import annotations
from decimal import Decimal, ROUND_DOWN, ROUND_HALF_EVEN, getcontext, InvalidOperation
from typing import Union

from .core import ArithmeticOverflow, InvalidAmount


# ============================================================================
# DECIMAL CONTEXT CONFIGURATION
# ============================================================================
#
# Decimal is only used at the edges (configuration and display). All pool
# arithmetic is integer arithmetic.
#
_POOL_DECIMAL_CONTEXT = getcontext()
_POOL_DECIMAL_CONTEXT.prec = 50
_POOL_DECIMAL_CONTEXT.rounding = ROUND_HALF_EVEN


# ============================================================================
# CONSTANTS
# ============================================================================

WAD = 10 ** 18
BPS_DENOMINATOR = 10_000
UINT256_MAX = 2 ** 256 - 1

AmountLike = Union[int, Decimal, str]


# ============================================================================
# CHECKED OPERATIONS
# ============================================================================

def _check_range(value: int, op: str) -> int:
    if value < 0 or value > UINT256_MAX:
        raise ArithmeticOverflow(f"{op} result out of range: {value}")
    return value


def checked_add(a: int, b: int) -> int:
    """Add two non-negative integers, raising ArithmeticOverflow outside uint256."""
    return _check_range(a + b, "add")


def checked_sub(a: int, b: int) -> int:
    """Subtract b from a. Underflow below zero raises ArithmeticOverflow."""
    return _check_range(a - b, "sub")


def checked_mul(a: int, b: int) -> int:
    return _check_range(a * b, "mul")


# ============================================================================
# MUL-DIV
# ============================================================================

def mul_div_down(a: int, b: int, denominator: int) -> int:
    """
    Compute a * b / denominator, rounded toward zero.

    The intermediate product is exact (Python ints are unbounded); only the
    final result is range checked.

    Raises:
        ZeroDivisionError: If denominator is zero
        ArithmeticOverflow: If an operand is negative or the result exceeds uint256
    """
    if denominator == 0:
        raise ZeroDivisionError("mul_div denominator is zero")
    if a < 0 or b < 0 or denominator < 0:
        raise ArithmeticOverflow(f"mul_div operands must be non-negative: {a}, {b}, {denominator}")
    return _check_range((a * b) // denominator, "mul_div")


def mul_div_up(a: int, b: int, denominator: int) -> int:
    """Compute a * b / denominator, rounded away from zero."""
    if denominator == 0:
        raise ZeroDivisionError("mul_div denominator is zero")
    if a < 0 or b < 0 or denominator < 0:
        raise ArithmeticOverflow(f"mul_div operands must be non-negative: {a}, {b}, {denominator}")
    product = a * b
    result = product // denominator
    if product % denominator:
        result += 1
    return _check_range(result, "mul_div")


def wad_mul_down(a: int, b: int) -> int:
    return mul_div_down(a, b, WAD)


def wad_div_down(a: int, b: int) -> int:
    return mul_div_down(a, WAD, b)


def wad_div_up(a: int, b: int) -> int:
    return mul_div_up(a, WAD, b)


def bps_of(amount: int, bps: int) -> int:
    """Return amount * bps / 10000, rounded down."""
    return mul_div_down(amount, bps, BPS_DENOMINATOR)


# ============================================================================
# CONVERSIONS
# ============================================================================

def to_wad(value: AmountLike) -> int:
    """
    Convert a human-readable ratio to a WAD integer.

    Example:
        to_wad("0.15") == 150_000_000_000_000_000
    """
    if isinstance(value, bool):
        raise InvalidAmount(f"Cannot convert {value!r} to WAD")
    if isinstance(value, float):
        raise InvalidAmount("Floats are not accepted for WAD values; pass a Decimal or str")
    try:
        d = value if isinstance(value, Decimal) else Decimal(str(value))
    except InvalidOperation as e:
        raise InvalidAmount(f"Cannot convert {value!r} to WAD") from e
    if not d.is_finite() or d < 0:
        raise InvalidAmount(f"WAD value must be finite and non-negative, got {value!r}")
    return int((d * WAD).to_integral_value(rounding=ROUND_DOWN))


def from_wad(value: int) -> Decimal:
    """Convert a WAD integer to a Decimal ratio (exact)."""
    return Decimal(value) / Decimal(WAD)


def as_amount(value: AmountLike, name: str = "amount") -> int:
    """
    Normalise an amount to a non-negative integer in base units.

    Accepts int, integral Decimal or an integral numeric string. Floats,
    fractional values and negatives are rejected with InvalidAmount.
    """
    if isinstance(value, bool):
        raise InvalidAmount(f"{name} must be an integer, got {value!r}")
    if isinstance(value, int):
        result = value
    elif isinstance(value, (Decimal, str)):
        try:
            d = value if isinstance(value, Decimal) else Decimal(value.strip())
        except InvalidOperation as e:
            raise InvalidAmount(f"{name} is not a number: {value!r}") from e
        if not d.is_finite() or d != d.to_integral_value():
            raise InvalidAmount(f"{name} must be integral base units, got {value!r}")
        result = int(d)
    else:
        raise InvalidAmount(f"{name} must be int, Decimal or str, got {type(value).__name__}")
    if result < 0:
        raise InvalidAmount(f"{name} must be non-negative, got {result}")
    return _check_range(result, name)
