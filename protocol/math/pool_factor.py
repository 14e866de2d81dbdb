# MIT License
# Copyright (c) 2025 Hashborn

"""
Pool Factor Curve

Maps the remaining reward pool balance to an emission multiplier:

    t      = (pMax - balance) / pMax
    factor = floor + (ceiling - floor) * (1 + cos(pi * t)) / 2

A full pool emits at the ceiling, an empty pool at the floor, and the
half-cosine makes the throttle gentle near both ends.
"""

from .fixed_point import ONE, mul, mul_div

# pi and pi/2 with 18 decimals (rounded down)
PI = 3_141_592_653_589_793_238
HALF_PI = 1_570_796_326_794_896_619


def cos(x: int) -> int:
    """
    Fixed-point cosine for angles in [0, PI].

    Angles above PI/2 are folded back with cos(x) = -cos(PI - x), so the
    Taylor series only ever runs on [0, PI/2] where it converges quickly.
    Result is accurate to a few units in the 18th decimal.
    """
    if x < 0 or x > PI:
        raise ValueError(f"Angle {x} outside [0, PI]")
    if x > HALF_PI:
        return -_cos_series(PI - x)
    return _cos_series(x)


def _cos_series(x: int) -> int:
    x_squared = mul(x, x)
    term = ONE
    result = ONE
    n = 0
    while term:
        n += 2
        term = mul_div(term, x_squared, ONE * (n - 1) * n)
        if (n // 2) % 2:
            result -= term
        else:
            result += term
    return result


def pool_factor(balance: int, config) -> int:
    """
    Emission multiplier for a pool balance.

    Args:
        balance: Remaining reward pool balance (minimal units)
        config: EconomicConfig providing pMax, floor and ceiling

    Returns:
        Pool factor as percent with 18 decimals
    """
    p_max = config.initial_pool_balance
    balance = min(max(balance, 0), p_max)

    t = mul_div(p_max - balance, ONE, p_max)
    angle = mul_div(PI, t, ONE)
    spread = config.full_pool_factor - config.floor_pool_factor

    return config.floor_pool_factor + mul_div(spread, ONE + cos(angle), 2 * ONE)
