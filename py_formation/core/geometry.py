"""Point, target set and particle data structures shared by the engine."""

from dataclasses import dataclass, field, replace
from typing import Iterable, List, Optional, Tuple

import numpy as np

RGBA = Tuple[int, int, int, int]


@dataclass(frozen=True)
class Point:
    """A single target position, optionally carrying a sampled colour."""
    x: float
    y: float
    color: Optional[RGBA] = None


@dataclass(frozen=True)
class TargetSet:
    """
    Ordered points produced by one rasterization call.

    The generation id identifies which request produced the set; the engine
    uses it to detect assignments that belong to a cancelled formation.
    """
    points: Tuple[Point, ...]
    generation: int = 0
    width: float = 0.0   # Size of the surface the points were sampled from
    height: float = 0.0
    resolution: int = 1

    def __len__(self) -> int:
        return len(self.points)

    def __iter__(self):
        return iter(self.points)

    def __getitem__(self, index: int) -> Point:
        return self.points[index]

    def as_array(self) -> np.ndarray:
        """Return point coordinates as a float array of shape (N, 2)."""
        if not self.points:
            return np.empty((0, 2), dtype=np.float64)
        return np.array([(p.x, p.y) for p in self.points], dtype=np.float64)

    def with_generation(self, generation: int) -> "TargetSet":
        return replace(self, generation=generation)

    def bounds(self) -> Tuple[float, float, float, float]:
        """Return (min_x, min_y, max_x, max_y) of the points."""
        if not self.points:
            return (0.0, 0.0, 0.0, 0.0)
        coords = self.as_array()
        min_x, min_y = coords.min(axis=0)
        max_x, max_y = coords.max(axis=0)
        return (float(min_x), float(min_y), float(max_x), float(max_y))

    def fit(self, width: float, height: float, margin: float = 0.1) -> "TargetSet":
        """
        Scale and centre the points into a canvas of the given size.

        The aspect ratio is preserved and the points are never scaled up;
        `margin` is the fraction of each canvas dimension left empty.

        Args:
            width: Canvas width
            height: Canvas height
            margin: Fraction of the canvas kept free on each axis

        Returns:
            New TargetSet in canvas coordinates with the same generation
        """
        if not self.points:
            return replace(self, width=width, height=height)

        min_x, min_y, max_x, max_y = self.bounds()
        span_x = max(max_x - min_x, 1e-9)
        span_y = max(max_y - min_y, 1e-9)
        usable_w = width * (1.0 - margin)
        usable_h = height * (1.0 - margin)
        scale = min(usable_w / span_x, usable_h / span_y, 1.0)

        center_x = (min_x + max_x) / 2
        center_y = (min_y + max_y) / 2
        moved = tuple(
            Point(
                x=(p.x - center_x) * scale + width / 2,
                y=(p.y - center_y) * scale + height / 2,
                color=p.color,
            )
            for p in self.points
        )
        return replace(self, points=moved, width=width, height=height)


@dataclass
class Particle:
    """
    A particle as seen by the engine.

    Callers may pass any object exposing the same attributes. The engine
    reads x/y, writes vx/vy and the assignment fields, never the position.
    """
    x: float
    y: float
    vx: float = 0.0
    vy: float = 0.0
    assigned_target: Optional[Point] = field(default=None)
    assigned_generation: Optional[int] = field(default=None)

    @property
    def position(self) -> Tuple[float, float]:
        return (self.x, self.y)


def positions_of(particles: Iterable) -> np.ndarray:
    """Collect particle positions into an (N, 2) array."""
    coords: List[Tuple[float, float]] = [(p.x, p.y) for p in particles]
    if not coords:
        return np.empty((0, 2), dtype=np.float64)
    return np.asarray(coords, dtype=np.float64)
