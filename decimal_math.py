"""
Fixed-point decimal helpers.

Staking amounts are carried as Decimal values with 18 fractional digits, the
precision Cosmos SDK chains use for shares. Every division truncates toward zero.
"""

from decimal import Context, Decimal, DivisionByZero, InvalidOperation, Overflow, ROUND_DOWN
from typing import Union

PRECISION = 18
QUANTUM = Decimal(1).scaleb(-PRECISION)
ZERO = Decimal(0)

# Wide enough that the only truncation ever applied is the final quantize.
CONTEXT = Context(prec=200, rounding=ROUND_DOWN, traps=[InvalidOperation, DivisionByZero, Overflow])

Number = Union[Decimal, int, str]


def to_dec(value: Number) -> Decimal:
    """
    Parse a value into an 18-digit fixed-point Decimal.

    Floats are refused: a float has already lost the exact decimal text.

    Raises:
        ValueError: if the value is not numeric, is not finite, or carries more
            than 18 fractional digits.
    """
    if isinstance(value, bool) or isinstance(value, float):
        raise ValueError(f"Refusing to parse {value!r}: only str, int and Decimal are exact")

    try:
        dec = Decimal(value.strip()) if isinstance(value, str) else Decimal(value)
    except (InvalidOperation, TypeError) as e:
        raise ValueError(f"Invalid decimal value {value!r}") from e

    if not dec.is_finite():
        raise ValueError(f"Decimal value {value!r} is not finite")

    quantized = dec.quantize(QUANTUM, context=CONTEXT)
    if quantized != dec:
        raise ValueError(f"Decimal value {value!r} exceeds {PRECISION} fractional digits")
    return quantized


def mul(a: Decimal, b: Number) -> Decimal:
    """Exact product of two fixed-point values (no rounding of the fractional tail)."""
    return CONTEXT.multiply(a, Decimal(b))


def quo_truncate(numerator: Decimal, denominator: Decimal) -> Decimal:
    """
    Divide and truncate the quotient toward zero at 18 fractional digits.

    Raises:
        ZeroDivisionError: if the denominator is zero.
    """
    if denominator == 0:
        raise ZeroDivisionError("Fixed-point division by zero")
    quotient = CONTEXT.divide(numerator, denominator)
    return quotient.quantize(QUANTUM, context=CONTEXT)


def truncate(value: Decimal) -> Decimal:
    """Drop the fractional part, toward zero."""
    return value.to_integral_value(rounding=ROUND_DOWN)


def truncate_int(value: Decimal) -> int:
    return int(truncate(value))
