"""Tests for the formation-seeking motion model."""

import math

import numpy as np
import pytest

from py_formation.core.errors import ConfigurationError
from py_formation.core.geometry import Particle, Point
from py_formation.core.motion import MotionModel, MotionParams, stagger_offsets

FRAME_MS = 1000.0 / 60.0


def distance(particle):
    target = particle.assigned_target
    return math.hypot(target.x - particle.x, target.y - particle.y)


def run_steps(model, particle, steps, dt_ms=FRAME_MS, strength=1.0):
    """Step the model and integrate the position like a host loop would."""
    history = [distance(particle)]
    scale = dt_ms / model.params.reference_frame_ms
    for _ in range(steps):
        step = model.step(particle, dt_ms, strength)
        particle.vx += step.dvx
        particle.vy += step.dvy
        particle.x += particle.vx * scale
        particle.y += particle.vy * scale
        history.append(distance(particle))
    return history


class TestMotionParams:
    """Test parameter validation."""

    @pytest.mark.parametrize("field,value", [
        ("attraction", 0),
        ("damping_radius", -1),
        ("min_damping", 0),
        ("min_damping", 1.5),
        ("drag", 1.0),
        ("drag", 0),
        ("epsilon", 0),
        ("max_speed", 0),
    ])
    def test_invalid(self, field, value):
        with pytest.raises(ConfigurationError):
            MotionParams(**{field: value})


class TestMotionModel:
    """Test attraction, damping and arrival."""

    @pytest.fixture
    def model(self):
        return MotionModel()

    def test_idle_particle_untouched(self, model):
        """Particles without a target are left to the caller."""
        particle = Particle(10, 10, vx=3.0, vy=-2.0)
        step = model.step(particle, FRAME_MS)

        assert step.dvx == 0.0 and step.dvy == 0.0
        assert not step.arrived

    def test_damping_clamped(self, model):
        damping = model.damping(np.array([0.0, 3.0, 30.0, 60.0, 600.0]))
        np.testing.assert_allclose(damping, [0.1, 0.1, 0.5, 1.0, 1.0])

    def test_moves_toward_target(self, model):
        particle = Particle(100, 0, assigned_target=Point(0, 0))
        step = model.step(particle, FRAME_MS)

        assert step.dvx < 0
        assert step.dvy == pytest.approx(0.0)

    def test_converges_from_far_away(self, model):
        """An assigned particle ends up within epsilon of its target."""
        particle = Particle(200, 120, vx=4.0, vy=-3.0, assigned_target=Point(0, 0))
        history = run_steps(model, particle, 2000)

        assert history[-1] <= model.params.epsilon

    def test_monotonic_once_damping_engages(self, model):
        """Starting at rest inside the damped zone, distance strictly decreases."""
        particle = Particle(5.0, 0.0, assigned_target=Point(0, 0))
        history = run_steps(model, particle, 600)

        arrived_at = next(i for i, d in enumerate(history) if d <= model.params.epsilon)
        assert arrived_at > 0
        assert all(b < a for a, b in zip(history[:arrived_at], history[1:arrived_at + 1]))

    def test_arrival_zeroes_velocity(self, model):
        particle = Particle(0.2, 0.1, vx=2.0, vy=1.0, assigned_target=Point(0, 0))
        step = model.step(particle, FRAME_MS)

        assert step.arrived
        assert particle.vx + step.dvx == 0.0
        assert particle.vy + step.dvy == 0.0

    def test_zero_strength_only_drags(self, model):
        particle = Particle(100, 0, vx=2.0, assigned_target=Point(0, 0))
        step = model.step(particle, FRAME_MS, strength=0.0)

        assert particle.vx + step.dvx == pytest.approx(2.0 * model.params.drag)

    def test_zero_dt_changes_nothing(self, model):
        particle = Particle(100, 0, vx=2.0, assigned_target=Point(0, 0))
        step = model.step(particle, 0.0)

        assert step.dvx == pytest.approx(0.0)
        assert step.dvy == pytest.approx(0.0)

    def test_max_speed(self):
        model = MotionModel(MotionParams(attraction=5.0, max_speed=3.0))
        particle = Particle(1000, 0, assigned_target=Point(0, 0))
        step = model.step(particle, FRAME_MS)

        assert math.hypot(step.dvx, step.dvy) == pytest.approx(3.0)

    def test_integrate_batch(self, model):
        positions = np.array([[10.0, 0.0], [0.0, 0.1], [0.0, -50.0]])
        velocities = np.zeros((3, 2))
        targets = np.zeros((3, 2))
        new_v, arrived = model.integrate(positions, velocities, targets, np.ones(3), FRAME_MS)

        assert arrived.tolist() == [False, True, False]
        assert new_v[0, 0] < 0
        assert new_v[2, 1] > 0
        assert np.all(new_v[1] == 0)

    def test_longer_tick_moves_further(self, model):
        short = model.step(Particle(100, 0, assigned_target=Point(0, 0)), FRAME_MS)
        long = model.step(Particle(100, 0, assigned_target=Point(0, 0)), 2 * FRAME_MS)

        assert abs(long.dvx) > abs(short.dvx)


class TestStaggerOffsets:
    """Test activation offsets."""

    def test_groups_cycle(self):
        offsets = stagger_offsets(6, 100, 3)
        assert offsets.tolist() == [0, 100, 200, 0, 100, 200]

    def test_no_stagger(self):
        assert stagger_offsets(4, 0, 3).tolist() == [0, 0, 0, 0]
