"""
Per-tick motion toward assigned targets.

Velocities are expressed in pixels per reference frame (1/60 s by default);
a tick of dt milliseconds advances the model by dt / reference_frame_ms
frames. The caller integrates positions; this module only produces
velocities.
"""

from dataclasses import dataclass
from typing import NamedTuple, Optional

import numpy as np

from .errors import ConfigurationError


@dataclass
class MotionParams:
    """Attraction, damping and drag constants for formation seeking."""
    attraction: float = 0.02  # Acceleration per pixel of distance per frame
    damping_radius: float = 60.0  # Distance below which attraction weakens
    min_damping: float = 0.1  # Floor of the damping factor
    drag: float = 0.85  # Velocity multiplier per frame, < 1
    epsilon: float = 0.5  # Arrival distance
    max_speed: Optional[float] = None  # Optional speed cap, pixels per frame
    reference_frame_ms: float = 1000.0 / 60.0

    def __post_init__(self):
        if self.attraction <= 0:
            raise ConfigurationError("attraction must be > 0")
        if self.damping_radius <= 0:
            raise ConfigurationError("damping_radius must be > 0")
        if not 0 < self.min_damping <= 1:
            raise ConfigurationError("min_damping must be within (0, 1]")
        if not 0 < self.drag < 1:
            raise ConfigurationError("drag must be within (0, 1)")
        if self.epsilon <= 0:
            raise ConfigurationError("epsilon must be > 0")
        if self.max_speed is not None and self.max_speed <= 0:
            raise ConfigurationError("max_speed must be > 0")
        if self.reference_frame_ms <= 0:
            raise ConfigurationError("reference_frame_ms must be > 0")


class MotionStep(NamedTuple):
    """Velocity change for one particle over one tick."""
    dvx: float
    dvy: float
    arrived: bool


class MotionModel:
    """Moves assigned particles toward their targets with damping and drag."""

    def __init__(self, params: Optional[MotionParams] = None):
        self.params = params or MotionParams()

    def damping(self, distance: np.ndarray) -> np.ndarray:
        """damping = clamp(distance / damping_radius, min_damping, 1)"""
        p = self.params
        return np.clip(distance / p.damping_radius, p.min_damping, 1.0)

    def integrate(
        self,
        positions: np.ndarray,
        velocities: np.ndarray,
        targets: np.ndarray,
        strengths: np.ndarray,
        dt_ms: float,
    ):
        """
        Compute new velocities for a batch of active, assigned particles.

        Args:
            positions: (N, 2) current positions
            velocities: (N, 2) current velocities
            targets: (N, 2) assigned target positions
            strengths: (N,) eased attraction strength in [0, 1]
            dt_ms: Tick length in milliseconds

        Returns:
            Tuple of (new velocities (N, 2), arrived mask (N,))
        """
        p = self.params
        scale = dt_ms / p.reference_frame_ms

        offset = targets - positions
        distance = np.hypot(offset[:, 0], offset[:, 1])
        arrived = distance <= p.epsilon

        gain = p.attraction * strengths * self.damping(distance) * scale
        new_velocities = (velocities + offset * gain[:, None]) * (p.drag ** scale)

        if p.max_speed is not None:
            speed = np.hypot(new_velocities[:, 0], new_velocities[:, 1])
            too_fast = speed > p.max_speed
            if too_fast.any():
                new_velocities[too_fast] *= (p.max_speed / speed[too_fast])[:, None]

        new_velocities[arrived] = 0.0
        return new_velocities, arrived

    def step(self, particle, dt_ms: float, strength: float = 1.0) -> MotionStep:
        """
        Velocity change for a single particle.

        Idle particles (no assigned target) get a zero delta and are
        reported as not arrived; their motion belongs to the caller.
        """
        target = particle.assigned_target
        if target is None:
            return MotionStep(0.0, 0.0, False)

        new_v, arrived = self.integrate(
            np.array([[particle.x, particle.y]], dtype=np.float64),
            np.array([[particle.vx, particle.vy]], dtype=np.float64),
            np.array([[target.x, target.y]], dtype=np.float64),
            np.array([strength], dtype=np.float64),
            dt_ms,
        )
        return MotionStep(
            float(new_v[0, 0] - particle.vx),
            float(new_v[0, 1] - particle.vy),
            bool(arrived[0]),
        )


def stagger_offsets(count: int, stagger_ms: float, stagger_groups: int) -> np.ndarray:
    """Activation offset of each particle: (index mod groups) * stagger_ms."""
    if stagger_ms <= 0 or count == 0:
        return np.zeros(count, dtype=np.float64)
    return (np.arange(count) % max(1, stagger_groups)) * float(stagger_ms)
