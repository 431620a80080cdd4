"""
Sequencing of formations: delays, hold/transition timing, looping and
cancellation.

The sequencer is driven entirely by update(dt_ms, particles) calls from the
tick thread. Rasterization is the only asynchronous step: it is requested
through a submit callable returning a Future, and completions are posted
back through a thread-safe queue that update() drains. Every request carries
the generation id of the run that issued it; completions whose generation no
longer matches the current run are dropped.
"""

import itertools
import queue
from concurrent.futures import Future
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Sequence

import structlog

from .assigner import assign_particles, clear_assignments
from .errors import AssetError, StaleResultError, TimeoutWarning
from .formation import Formation, FormationRun, FormationSequence, FormationState

logger = structlog.get_logger()


class SequencerStatus(str, Enum):
    IDLE = "idle"  # Nothing played yet, or stopped
    PLAYING = "playing"
    LOOP_DELAY = "loop_delay"
    FINISHED = "finished"  # Ran out of steps without a formation to hold


@dataclass(frozen=True)
class SequencerSnapshot:
    """Point-in-time view of the sequencer for UI feedback."""
    status: SequencerStatus
    paused: bool
    step_index: Optional[int]
    formation_id: Optional[str]
    formation_state: Optional[FormationState]
    loop_iteration: int
    generation: Optional[int]
    assigned: int
    arrived: int


SubmitFn = Callable[[Formation, int], Future]
ErrorFn = Callable[[Exception], None]


class Sequencer:
    """Plays an ordered list of formations one step at a time."""

    def __init__(self, submit: SubmitFn, on_error: Optional[ErrorFn] = None):
        """
        Args:
            submit: Starts rasterization of a formation for a generation id and
                returns a Future resolving to its TargetSet
            on_error: Receives step failures and timeout warnings
        """
        self._submit = submit
        self._on_error = on_error
        self._generations = itertools.count(1)
        self._completions: "queue.SimpleQueue" = queue.SimpleQueue()
        self._reset()

    def _reset(self) -> None:
        self._sequence: Optional[FormationSequence] = None
        self._index: Optional[int] = None
        self._current: Optional[FormationRun] = None
        self._outgoing: Optional[FormationRun] = None
        self._status = SequencerStatus.IDLE
        self._paused = False
        self._loop_remaining_ms = 0.0
        self._loop_iteration = 0
        self._successes_in_pass = 0

    # Control

    def play(self, sequence: FormationSequence, particles: Sequence = ()) -> None:
        """Cancel whatever is playing and start the sequence from its first step."""
        self.stop(particles)
        self._sequence = sequence
        self._status = SequencerStatus.PLAYING
        logger.info(
            "Playing formation sequence",
            steps=[f.id for f in sequence.steps],
            loop=sequence.loop,
            loop_delay_ms=sequence.loop_delay_ms,
        )
        self._start_step(0)

    def stop(self, particles: Sequence = ()) -> None:
        """
        Cancel the sequence, discard pending steps and idle every particle.

        Results still in flight are dropped when they arrive because no run
        carries their generation any more.
        """
        was_active = self._sequence is not None
        for run in (self._current, self._outgoing):
            if run is not None:
                run.retire()
        clear_assignments(particles)
        self._reset()
        if was_active:
            logger.info("Formation sequence stopped")

    def pause(self) -> None:
        if self._sequence is not None and not self._paused:
            self._paused = True
            logger.info("Formation sequence paused", formation=self.current_step())

    def resume(self) -> None:
        if self._paused:
            self._paused = False
            logger.info("Formation sequence resumed", formation=self.current_step())

    @property
    def paused(self) -> bool:
        return self._paused

    @property
    def status(self) -> SequencerStatus:
        return self._status

    def current_step(self) -> Optional[str]:
        """Id of the formation being played, None when idle."""
        if self._current is None:
            return None
        return self._current.formation_id

    @property
    def current_run(self) -> Optional[FormationRun]:
        return self._current

    @property
    def motion_run(self) -> Optional[FormationRun]:
        """The run whose targets particles currently follow."""
        if self._current is not None and self._current.has_targets:
            return self._current
        if self._outgoing is not None and self._outgoing.has_targets:
            return self._outgoing
        return None

    def snapshot(self) -> SequencerSnapshot:
        run = self._current
        tracked = self.motion_run
        return SequencerSnapshot(
            status=self._status,
            paused=self._paused,
            step_index=self._index if run is not None else None,
            formation_id=run.formation_id if run is not None else None,
            formation_state=run.state if run is not None else None,
            loop_iteration=self._loop_iteration,
            generation=run.generation if run is not None else None,
            assigned=tracked.assigned_count if tracked is not None else 0,
            arrived=tracked.arrived_count if tracked is not None else 0,
        )

    # Tick

    def update(self, dt_ms: float, particles: Sequence) -> None:
        """Advance clocks by dt_ms and perform every state change now due."""
        self._drain_completions()
        if self._paused or self._status not in (SequencerStatus.PLAYING, SequencerStatus.LOOP_DELAY):
            return

        if self._status == SequencerStatus.LOOP_DELAY:
            self._loop_remaining_ms -= dt_ms
        for run in (self._current, self._outgoing):
            if run is not None:
                run.advance_clock(dt_ms)

        # Bounded so a sequence of instantly failing steps cannot spin forever
        budget = 8 * len(self._sequence.steps) + 8
        for _ in range(budget):
            if not self._advance(particles):
                break
            self._drain_completions()

    def _drain_completions(self) -> None:
        while True:
            try:
                generation = self._completions.get_nowait()
            except queue.Empty:
                return
            run = self._current
            if run is None or run.generation != generation or run.state != FormationState.RASTERIZING:
                stale = StaleResultError(generation, run.generation if run is not None else 0)
                logger.debug("Discarded rasterization result", reason=str(stale))
                continue
            run.raster_ready = True

    def _advance(self, particles: Sequence) -> bool:
        """Perform at most one state change. Returns whether anything changed."""
        if self._status == SequencerStatus.LOOP_DELAY:
            if self._loop_remaining_ms > 0:
                return False
            self._status = SequencerStatus.PLAYING
            self._loop_iteration += 1
            self._start_step(0)
            return True

        run = self._current
        if run is None:
            return False

        if run.state == FormationState.PENDING:
            if not run.delay_complete:
                return False
            self._request_raster(run)
            return True

        if run.state == FormationState.RASTERIZING:
            if not run.raster_ready:
                return False
            error = run.future.exception()
            if error is not None:
                self._fail(run, error, particles)
                return True
            run.target_set = run.future.result().with_generation(run.generation)
            run.transition(FormationState.ASSIGNING)
            return True

        if run.state == FormationState.ASSIGNING:
            if not len(run.target_set):
                self._fail(run, AssetError(f"formation {run.formation_id!r} produced no target points"), particles)
                return True
            assignment = assign_particles(particles, run.target_set)
            run.bind(run.target_set, assignment)
            if self._outgoing is not None:
                self._outgoing.retire()
                self._outgoing = None
            run.transition(FormationState.MORPHING_IN)
            self._successes_in_pass += 1
            return True

        if run.state == FormationState.MORPHING_IN:
            if not (run.all_arrived or run.transition_timed_out):
                return False
            if not run.all_arrived:
                warning = TimeoutWarning(run.formation_id, run.arrived_count, run.assigned_count)
                logger.warning(
                    "Transition timed out",
                    formation=run.formation_id,
                    arrived=run.arrived_count,
                    assigned=run.assigned_count,
                    elapsed_ms=round(run.transition_elapsed_ms, 1),
                )
                self._report(warning)
            run.transition(FormationState.HOLDING)
            logger.info("Formation holding", formation=run.formation_id, generation=run.generation)
            return True

        if run.state == FormationState.HOLDING:
            if not run.hold_complete or not self._has_next():
                return False
            self._next_step(particles)
            return True

        return False

    def _request_raster(self, run: FormationRun) -> None:
        run.transition(FormationState.RASTERIZING)
        generation = run.generation
        run.future = self._submit(run.formation, generation)
        run.future.add_done_callback(lambda _f: self._completions.put(generation))

    def _start_step(self, index: int) -> None:
        if index == 0:
            self._successes_in_pass = 0
        formation = self._sequence.steps[index]
        self._index = index
        self._current = FormationRun(formation, next(self._generations))
        logger.info(
            "Starting formation step",
            step=index,
            formation=formation.id,
            generation=self._current.generation,
            delay_ms=formation.delay_before_ms,
        )

    def _has_next(self) -> bool:
        return self._index + 1 < len(self._sequence.steps) or self._sequence.loop

    def _next_step(self, particles: Sequence) -> None:
        """Hand over from a held formation to the following step."""
        run = self._current
        last = self._index + 1 >= len(self._sequence.steps)
        if last and self._sequence.loop_delay_ms > 0:
            run.retire()
            self._enter_loop_delay(particles)
            return

        run.transition(FormationState.MORPHING_OUT)
        self._outgoing = run
        if last:
            self._loop_iteration += 1
            self._start_step(0)
        else:
            self._start_step(self._index + 1)

    def _enter_loop_delay(self, particles: Sequence) -> None:
        if self._outgoing is not None:
            self._outgoing.retire()
            self._outgoing = None
        clear_assignments(particles)
        self._current = None
        self._status = SequencerStatus.LOOP_DELAY
        self._loop_remaining_ms = self._sequence.loop_delay_ms
        logger.info("Loop delay started", delay_ms=self._sequence.loop_delay_ms)

    def _fail(self, run: FormationRun, error: BaseException, particles: Sequence) -> None:
        """Mark a step failed, report it and move on without stalling the sequence."""
        run.fail(error)
        logger.error(
            "Formation step failed",
            formation=run.formation_id,
            generation=run.generation,
            error=str(error),
            error_type=type(error).__name__,
        )
        self._report(error)

        if self._index + 1 < len(self._sequence.steps):
            self._start_step(self._index + 1)
        elif self._sequence.loop and self._successes_in_pass > 0:
            if self._sequence.loop_delay_ms > 0:
                self._enter_loop_delay(particles)
            else:
                self._loop_iteration += 1
                self._start_step(0)
        else:
            if self._sequence.loop:
                logger.error("No formation in the sequence could be played, giving up")
            if self._outgoing is not None:
                self._outgoing.retire()
                self._outgoing = None
            clear_assignments(particles)
            self._current = None
            self._status = SequencerStatus.FINISHED

    def _report(self, error: BaseException) -> None:
        if self._on_error is not None:
            self._on_error(error)
