# MIT License
# Copyright (c) 2025 Hashborn

"""
Fixed-point helpers (18 decimals).

Every product is formed in an unbounded intermediate and divided back down,
so only operands and results are range checked. Anything outside the
unsigned 256-bit range raises FixedPointOverflow.
"""

import math

ONE = 10**18
UINT256_MAX = 2**256 - 1

# Resolution of fractional exponents in pow_fixed (2^-48)
FRACTION_BITS = 48


class FixedPointOverflow(ArithmeticError):
    pass


def _check_range(value: int, what: str) -> int:
    if value < 0 or value > UINT256_MAX:
        raise FixedPointOverflow(f"{what} out of uint256 range: {value}")
    return value


def mul_div(a: int, b: int, denominator: int) -> int:
    """floor(a * b / denominator)."""
    _check_range(a, "operand")
    _check_range(b, "operand")
    if denominator <= 0:
        raise ZeroDivisionError("mul_div denominator must be positive")
    return _check_range(a * b // denominator, "result")


def mul(a: int, b: int) -> int:
    return mul_div(a, b, ONE)


def sqrt(x: int) -> int:
    """Square root of a fixed-point value, rounded down."""
    _check_range(x, "operand")
    return math.isqrt(x * ONE)


def pow_fixed(base: int, exponent: int) -> int:
    """
    base ** exponent for a fixed-point base and a non-negative fixed-point exponent.

    The integer part of the exponent is handled by square-and-multiply, the
    fractional part by multiplying successive square roots of the base
    (base^(1/2), base^(1/4), ...) selected by the binary digits of the fraction.
    Each step rounds down by at most one unit, so a result near 3.0 carries an
    error well below 1e-12, which is ample for 7 significant digits.

    Args:
        base: Fixed-point base (ONE == 1.0)
        exponent: Fixed-point exponent (ONE == 1.0)

    Returns:
        Fixed-point power
    """
    if exponent < 0:
        raise ValueError("Negative exponents are not supported")

    whole, fraction = divmod(exponent, ONE)
    result = _pow_int(base, whole)
    if fraction:
        result = mul(result, _pow_fraction(base, fraction))
    return result


def _pow_int(base: int, n: int) -> int:
    result = ONE
    while n:
        if n & 1:
            result = mul(result, base)
        n >>= 1
        if n:
            base = mul(base, base)
    return result


def _pow_fraction(base: int, fraction: int) -> int:
    bits = mul_div(fraction, 1 << FRACTION_BITS, ONE)
    result = ONE
    root = base
    for position in range(FRACTION_BITS - 1, -1, -1):
        root = sqrt(root)
        if root == ONE:
            break
        if bits >> position & 1:
            result = mul(result, root)
    return result
