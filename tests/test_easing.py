"""Tests for easing curves."""

import numpy as np
import pytest

from py_formation.core.easing import Easing, ease


class TestEasing:
    """Test easing curve properties."""

    @pytest.mark.parametrize("curve", list(Easing))
    def test_endpoints(self, curve):
        assert ease(curve, 0.0) == pytest.approx(0.0, abs=1e-3)
        assert ease(curve, 1.0) == pytest.approx(1.0)

    @pytest.mark.parametrize("curve", list(Easing))
    def test_monotonic(self, curve):
        values = [ease(curve, t) for t in np.linspace(0, 1, 101)]
        assert all(b >= a for a, b in zip(values, values[1:]))

    @pytest.mark.parametrize("curve", list(Easing))
    def test_clamped(self, curve):
        assert ease(curve, -2.0) == ease(curve, 0.0)
        assert ease(curve, 5.0) == ease(curve, 1.0)

    def test_midpoints(self):
        assert ease(Easing.LINEAR, 0.25) == pytest.approx(0.25)
        assert ease(Easing.EASE_IN_OUT_CUBIC, 0.5) == pytest.approx(0.5)
        assert ease(Easing.EASE_IN_CUBIC, 0.5) == pytest.approx(0.125)
        assert ease(Easing.EASE_OUT_QUAD, 0.5) == pytest.approx(0.75)

    def test_ease_in_starts_slower_than_ease_out(self):
        assert ease(Easing.EASE_IN_QUAD, 0.2) < ease(Easing.LINEAR, 0.2) < ease(Easing.EASE_OUT_QUAD, 0.2)

    def test_callable_and_string_values(self):
        assert Easing.LINEAR(0.4) == pytest.approx(0.4)
        assert ease("ease_in_quad", 0.5) == pytest.approx(0.25)
