"""
Formation engine facade.

Ties the rasterizer, assigner, motion model and sequencer together behind the
control surface a host animation loop needs: register formations, play
sequences, pause/resume/stop, and tick once per frame with the caller's
particle array.
"""

import math
import threading
from concurrent.futures import Executor, Future
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np
import structlog

from ..config import Settings, settings as default_settings
from .assigner import clear_assignments
from .errors import AssetError, ConfigurationError
from .formation import Formation, FormationSequence
from .geometry import TargetSet
from .motion import MotionModel, MotionParams
from .rasterizer import RasterRequest, check_request, parse_request, rasterize
from .sequencer import Sequencer, SequencerSnapshot
from .workers import create_executor

logger = structlog.get_logger()

StepLike = Union[Formation, str, Dict[str, Any]]


@dataclass(frozen=True)
class TickResult:
    """
    Outcome of one tick.

    Velocity deltas have already been written to the particles; they are
    returned for hosts that keep their own velocity bookkeeping.
    """
    deltas: np.ndarray  # (N, 2)
    assigned: int
    arrived: int
    snapshot: SequencerSnapshot


class FormationEngine:
    """Drives a caller-owned particle array through formation sequences."""

    def __init__(
        self,
        motion: Optional[MotionParams] = None,
        *,
        executor: Optional[Executor] = None,
        canvas_size: Optional[Tuple[float, float]] = None,
        canvas_margin: float = 0.1,
        on_error: Optional[Callable[[Exception], None]] = None,
        config: Optional[Settings] = None,
    ):
        """
        Args:
            motion: Attraction/damping constants
            executor: Executor for rasterization; a thread pool is created
                (and owned) when omitted
            canvas_size: When set, target sets are scaled and centred into
                a canvas of this (width, height)
            canvas_margin: Fraction of the canvas left free when fitting
            on_error: Receives step failures and timeout warnings
            config: Settings, defaults to the module-level settings
        """
        if canvas_size is not None and (canvas_size[0] <= 0 or canvas_size[1] <= 0):
            raise ConfigurationError(f"canvas_size must be positive, got {canvas_size}")
        if not 0 <= canvas_margin < 1:
            raise ConfigurationError(f"canvas_margin must be within [0, 1), got {canvas_margin}")

        self.config = config or default_settings
        self.motion = MotionModel(motion)
        self.canvas_size = canvas_size
        self.canvas_margin = canvas_margin

        self._owns_executor = executor is None
        self._executor = executor or create_executor(self.config.rasterize_workers)
        self._formations: Dict[str, Formation] = {}
        self._cache: Dict[str, Tuple[RasterRequest, Future]] = {}
        # Failed entries are evicted from executor threads
        self._cache_lock = threading.Lock()
        self._sequencer = Sequencer(self._submit_rasterization, on_error=on_error)
        self._particles: Sequence = []

    # Lifecycle

    def close(self) -> None:
        """Stop playback and shut down an owned executor."""
        self._sequencer.stop(self._particles)
        if self._owns_executor:
            self._executor.shutdown(wait=False, cancel_futures=True)

    def __enter__(self) -> "FormationEngine":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # Formation registry

    def load_formation(self, formation_id: str, raster, **timing) -> Formation:
        """
        Register a formation and start rasterizing it in the background.

        Args:
            formation_id: Identifier used by play_sequence steps
            raster: TextRaster, ImageRaster or an equivalent mapping
            **timing: hold_duration_ms, transition_duration_ms,
                delay_before_ms, stagger_ms, stagger_groups, easing

        Returns:
            The validated Formation

        Raises:
            ConfigurationError: invalid raster parameters or timing, or a text
                surface too large to sample
        """
        request = parse_request(raster)
        formation = Formation(id=formation_id, raster=request, **timing)
        check_request(request)

        self._formations[formation_id] = formation
        with self._cache_lock:
            self._cache.pop(formation_id, None)
        self._cached_raster(formation)
        logger.info("Formation loaded", formation=formation_id, kind=formation.kind.value)
        return formation

    def formation(self, formation_id: str) -> Formation:
        try:
            return self._formations[formation_id]
        except KeyError:
            raise ConfigurationError(f"unknown formation {formation_id!r}") from None

    @property
    def formations(self) -> List[str]:
        return list(self._formations)

    def _resolve_step(self, step: StepLike) -> Formation:
        if isinstance(step, Formation):
            check_request(step.raster)
            return step
        if isinstance(step, str):
            return self.formation(step)
        if isinstance(step, dict):
            data = dict(step)
            if "raster" in data:
                data["raster"] = parse_request(data["raster"])
            formation = Formation.parse(data)
            check_request(formation.raster)
            return formation
        raise ConfigurationError(f"cannot use {type(step).__name__} as a sequence step")

    # Rasterization

    def _rasterize(self, request: RasterRequest) -> TargetSet:
        """Runs on the executor; touches no particle state."""
        target_set = rasterize(request)
        if self.canvas_size is not None:
            width, height = self.canvas_size
            target_set = target_set.fit(width, height, self.canvas_margin)
        return target_set

    def _cached_raster(self, formation: Formation) -> Future:
        """Future of the formation's generation-less target set, shared across runs."""
        with self._cache_lock:
            cached = self._cache.get(formation.id)
            if cached is not None and cached[0] == formation.raster:
                return cached[1]

            future = self._executor.submit(self._rasterize, formation.raster)
            self._cache[formation.id] = (formation.raster, future)

        def evict_on_failure(f: Future, formation_id=formation.id) -> None:
            if not (f.cancelled() or f.exception() is not None):
                return
            with self._cache_lock:
                entry = self._cache.get(formation_id)
                if entry is not None and entry[1] is f:
                    del self._cache[formation_id]

        future.add_done_callback(evict_on_failure)
        return future

    def _submit_rasterization(self, formation: Formation, generation: int) -> Future:
        """Future resolving to the formation's target set stamped with `generation`."""
        source = self._cached_raster(formation)
        stamped: Future = Future()

        def relay(f: Future) -> None:
            if not stamped.set_running_or_notify_cancel():
                return
            if f.cancelled():
                stamped.set_exception(AssetError(f"rasterization of {formation.id!r} was cancelled"))
            elif f.exception() is not None:
                stamped.set_exception(f.exception())
            else:
                stamped.set_result(f.result().with_generation(generation))

        source.add_done_callback(relay)
        return stamped

    # Playback control

    def play_sequence(
        self,
        steps: Iterable[StepLike],
        loop: bool = False,
        loop_delay_ms: float = 0.0,
        particles: Optional[Sequence] = None,
    ) -> FormationSequence:
        """
        Replace whatever is playing with a new sequence.

        Steps are validated before anything is cancelled, so an invalid call
        leaves the current sequence untouched.

        Raises:
            ConfigurationError: invalid steps or loop settings
        """
        resolved = tuple(self._resolve_step(step) for step in steps)
        sequence = FormationSequence(steps=resolved, loop=loop, loop_delay_ms=loop_delay_ms)
        target = self._particles if particles is None else particles
        self._sequencer.play(sequence, target)
        return sequence

    def pause(self) -> None:
        self._sequencer.pause()

    def resume(self) -> None:
        self._sequencer.resume()

    def stop(self, particles: Optional[Sequence] = None) -> None:
        """Cancel playback; every particle is idle when this returns."""
        target = self._particles if particles is None else particles
        self._sequencer.stop(target)

    def current_step(self) -> Optional[str]:
        return self._sequencer.current_step()

    def status(self) -> SequencerSnapshot:
        return self._sequencer.snapshot()

    @property
    def sequencer(self) -> Sequencer:
        return self._sequencer

    # Tick

    def tick(self, particles: Sequence, dt_ms: float) -> TickResult:
        """
        Advance the engine by dt_ms.

        Updates the sequencer, then writes new velocities for every assigned
        particle whose stagger delay has passed. Idle particles are left
        untouched. Assignments from a superseded generation are cleared.

        Args:
            particles: Caller-owned particles (x, y, vx, vy, assigned_target,
                assigned_generation)
            dt_ms: Elapsed time since the previous tick in milliseconds

        Returns:
            TickResult with the applied velocity deltas
        """
        if not math.isfinite(dt_ms) or dt_ms < 0:
            raise ConfigurationError(f"dt_ms must be a finite value >= 0, got {dt_ms}")

        self._particles = particles
        self._sequencer.update(dt_ms, particles)

        deltas = np.zeros((len(particles), 2), dtype=np.float64)
        run = self._sequencer.motion_run
        if run is None:
            clear_assignments(p for p in particles if p.assigned_target is not None)
            return TickResult(deltas, 0, 0, self._sequencer.snapshot())

        assigned = 0
        active: List[int] = []
        for i, particle in enumerate(particles):
            if particle.assigned_target is None:
                continue
            if particle.assigned_generation != run.generation:
                particle.assigned_target = None
                particle.assigned_generation = None
                continue
            assigned += 1
            if run.is_active(i):
                active.append(i)

        arrived = 0
        if active:
            chosen = [particles[i] for i in active]
            positions = np.array([(p.x, p.y) for p in chosen], dtype=np.float64)
            velocities = np.array([(p.vx, p.vy) for p in chosen], dtype=np.float64)
            targets = np.array(
                [(p.assigned_target.x, p.assigned_target.y) for p in chosen], dtype=np.float64
            )
            strengths = np.array([run.strength(i) for i in active], dtype=np.float64)

            new_velocities, arrived_mask = self.motion.integrate(
                positions, velocities, targets, strengths, dt_ms
            )
            deltas[active] = new_velocities - velocities
            for particle, (vx, vy) in zip(chosen, new_velocities):
                particle.vx = float(vx)
                particle.vy = float(vy)
            arrived = int(arrived_mask.sum())

        run.record_arrivals(arrived)
        return TickResult(deltas, assigned, arrived, self._sequencer.snapshot())
