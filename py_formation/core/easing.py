"""Easing curves applied to the elapsed-time fraction of a transition."""

import math
from enum import Enum


class Easing(str, Enum):
    """Closed set of supported easing curves."""
    LINEAR = "linear"
    EASE_IN_QUAD = "ease_in_quad"
    EASE_OUT_QUAD = "ease_out_quad"
    EASE_IN_OUT_QUAD = "ease_in_out_quad"
    EASE_IN_CUBIC = "ease_in_cubic"
    EASE_OUT_CUBIC = "ease_out_cubic"
    EASE_IN_OUT_CUBIC = "ease_in_out_cubic"
    EASE_OUT_EXPO = "ease_out_expo"

    def __call__(self, t: float) -> float:
        return ease(self, t)


def _ease_in_out_quad(t: float) -> float:
    if t < 0.5:
        return 2 * t * t
    return 1 - (-2 * t + 2) ** 2 / 2


def _ease_in_out_cubic(t: float) -> float:
    if t < 0.5:
        return 4 * t * t * t
    return 1 - (-2 * t + 2) ** 3 / 2


def _ease_out_expo(t: float) -> float:
    if t >= 1.0:
        return 1.0
    return 1 - math.pow(2, -10 * t)


_CURVES = {
    Easing.LINEAR: lambda t: t,
    Easing.EASE_IN_QUAD: lambda t: t * t,
    Easing.EASE_OUT_QUAD: lambda t: 1 - (1 - t) * (1 - t),
    Easing.EASE_IN_OUT_QUAD: _ease_in_out_quad,
    Easing.EASE_IN_CUBIC: lambda t: t * t * t,
    Easing.EASE_OUT_CUBIC: lambda t: 1 - (1 - t) ** 3,
    Easing.EASE_IN_OUT_CUBIC: _ease_in_out_cubic,
    Easing.EASE_OUT_EXPO: _ease_out_expo,
}


def ease(curve: Easing, t: float) -> float:
    """
    Evaluate an easing curve.

    Args:
        curve: Easing curve
        t: Elapsed-time fraction; clamped to [0, 1]

    Returns:
        Eased value in [0, 1], with ease(0) == 0 and ease(1) == 1
    """
    t = min(max(t, 0.0), 1.0)
    return float(_CURVES[Easing(curve)](t))
