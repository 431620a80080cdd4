"""
Particle-to-target assignment.

Greedy nearest-available matching: particles are visited in a stable order and
each claims the nearest target nobody has claimed yet. This is order-dependent
and not globally optimal, but runs in O(particles * log(targets)) on average,
which keeps a full reassignment inside a single animation frame for hundreds
of particles.

Ties in distance go to the lowest target index so identical inputs always give
identical assignments.
"""

import time
from typing import Iterable, List, Optional, Sequence, Union

import numpy as np
import structlog
from scipy.spatial import cKDTree

from .geometry import TargetSet, positions_of

logger = structlog.get_logger()

# Rebuild the k-d tree once this share of its points has been claimed
REBUILD_FRACTION = 0.5
INITIAL_NEIGHBOURS = 8


class UnclaimedTargetIndex:
    """
    k-d tree over the targets that are still free.

    Claimed targets stay in the tree until enough of them accumulate, at
    which point the tree is rebuilt over the remaining ones.
    """

    def __init__(self, points: np.ndarray):
        self.points = points
        self.claimed = np.zeros(len(points), dtype=bool)
        self.remaining = len(points)
        self._rebuild(np.arange(len(points)))

    def _rebuild(self, active: np.ndarray) -> None:
        self._active = active  # Original indices of the points in the tree
        self._tree = cKDTree(self.points[active]) if len(active) else None
        self._stale = 0

    def nearest(self, position: np.ndarray) -> Optional[int]:
        """
        Find the nearest unclaimed target.

        Args:
            position: [x, y] query point

        Returns:
            Original target index, or None when every target is claimed
        """
        if self.remaining == 0:
            return None

        n_active = len(self._active)
        k = min(INITIAL_NEIGHBOURS, n_active)
        while True:
            dist, idx = self._tree.query(position, k=k)
            dist = np.atleast_1d(dist)
            idx = np.atleast_1d(idx)
            original = self._active[idx]
            free = ~self.claimed[original]

            if free.any():
                best = dist[free].min()
                # A tie at the search horizon may hide a lower index further out
                if k == n_active or best < dist[-1]:
                    tied = original[free & (dist == best)]
                    return int(tied.min())

            if k == n_active:
                return None
            k = min(k * 2, n_active)

    def claim(self, index: int) -> None:
        self.claimed[index] = True
        self.remaining -= 1
        self._stale += 1
        if self.remaining and self._stale > len(self._active) * REBUILD_FRACTION:
            self._rebuild(np.flatnonzero(~self.claimed))


def assign_targets(
    positions: Union[np.ndarray, Sequence],
    targets: Union[TargetSet, np.ndarray, Sequence],
    order: Optional[Iterable[int]] = None,
) -> List[Optional[int]]:
    """
    Assign each particle to at most one distinct target.

    Args:
        positions: Particle positions, shape (P, 2)
        targets: TargetSet or target coordinates, shape (T, 2)
        order: Particle visiting order; defaults to index order

    Returns:
        Per-particle target index, or None for particles left without one.
        Exactly min(P, T) entries are not None and they are all distinct.
    """
    positions = np.asarray(positions, dtype=np.float64).reshape(-1, 2)
    if isinstance(targets, TargetSet):
        points = targets.as_array()
    else:
        points = np.asarray(targets, dtype=np.float64).reshape(-1, 2)

    n_particles = len(positions)
    result: List[Optional[int]] = [None] * n_particles
    if n_particles == 0 or len(points) == 0:
        return result

    visit = range(n_particles) if order is None else list(order)
    index = UnclaimedTargetIndex(points)
    started = time.perf_counter()

    for i in visit:
        if index.remaining == 0:
            break  # Surplus particles stay idle
        if result[i] is not None:
            continue
        j = index.nearest(positions[i])
        index.claim(j)
        result[i] = j

    logger.debug(
        "Assigned particles to targets",
        particles=n_particles,
        targets=len(points),
        assigned=min(n_particles, len(points)),
        elapsed_ms=round((time.perf_counter() - started) * 1000, 3),
    )
    return result


def total_travel(positions, targets, assignment: Sequence[Optional[int]]) -> float:
    """Sum of straight-line distances from particles to their assigned targets."""
    positions = np.asarray(positions, dtype=np.float64).reshape(-1, 2)
    points = targets.as_array() if isinstance(targets, TargetSet) else np.asarray(targets, dtype=np.float64)
    pairs = [(i, j) for i, j in enumerate(assignment) if j is not None]
    if not pairs:
        return 0.0
    src = positions[[i for i, _ in pairs]]
    dst = points[[j for _, j in pairs]]
    return float(np.sum(np.linalg.norm(dst - src, axis=1)))


def apply_assignment(particles: Sequence, target_set: TargetSet, assignment: Sequence[Optional[int]]) -> int:
    """
    Write assigned targets onto particles, replacing any previous assignment.

    Particles whose entry is None are returned to idle.

    Returns:
        Number of particles holding a target afterwards
    """
    assigned = 0
    for particle, j in zip(particles, assignment):
        if j is None:
            particle.assigned_target = None
            particle.assigned_generation = None
        else:
            particle.assigned_target = target_set[j]
            particle.assigned_generation = target_set.generation
            assigned += 1
    return assigned


def clear_assignments(particles: Iterable) -> None:
    """Return every particle to idle."""
    for particle in particles:
        particle.assigned_target = None
        particle.assigned_generation = None


def assign_particles(particles: Sequence, target_set: TargetSet) -> List[Optional[int]]:
    """Assign and apply in one call, visiting particles in index order."""
    assignment = assign_targets(positions_of(particles), target_set)
    apply_assignment(particles, target_set, assignment)
    logger.info(
        "Formation assigned",
        generation=target_set.generation,
        particles=len(assignment),
        targets=len(target_set),
        travel=round(total_travel(positions_of(particles), target_set, assignment), 1),
    )
    return assignment
