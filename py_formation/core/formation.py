"""
Formation definitions and the per-formation lifecycle.

A Formation is the immutable description of one shape and its timing. A
FormationRun is one playback of it: it walks the state machine

    PENDING -> RASTERIZING -> ASSIGNING -> MORPHING_IN -> HOLDING
            -> MORPHING_OUT -> RETIRED

with FAILED reachable from RASTERIZING and ASSIGNING. Time is accounted
explicitly from the tick deltas fed in by the caller; no timers are used.
"""

from concurrent.futures import Future
from enum import Enum
from typing import Annotated, List, Optional, Tuple, Union

import numpy as np
import structlog
from pydantic import Field

from .easing import Easing, ease
from .errors import StateTransitionError
from .geometry import TargetSet
from .motion import stagger_offsets
from .rasterizer import ImageRaster, TextRaster
from .validation import ConfigModel

logger = structlog.get_logger()


class FormationKind(str, Enum):
    TEXT = "text"
    IMAGE = "image"


class FormationState(str, Enum):
    PENDING = "pending"
    RASTERIZING = "rasterizing"
    ASSIGNING = "assigning"
    MORPHING_IN = "morphing_in"
    HOLDING = "holding"
    MORPHING_OUT = "morphing_out"
    RETIRED = "retired"
    FAILED = "failed"


# Forced retirement (cancellation) is allowed from every non-terminal state
ALLOWED_TRANSITIONS = {
    FormationState.PENDING: {FormationState.RASTERIZING, FormationState.RETIRED},
    FormationState.RASTERIZING: {
        FormationState.ASSIGNING, FormationState.FAILED, FormationState.RETIRED,
    },
    FormationState.ASSIGNING: {
        FormationState.MORPHING_IN, FormationState.FAILED, FormationState.RETIRED,
    },
    FormationState.MORPHING_IN: {FormationState.HOLDING, FormationState.RETIRED},
    FormationState.HOLDING: {FormationState.MORPHING_OUT, FormationState.RETIRED},
    FormationState.MORPHING_OUT: {FormationState.RETIRED},
    FormationState.RETIRED: set(),
    FormationState.FAILED: set(),
}

TERMINAL_STATES = {FormationState.RETIRED, FormationState.FAILED}


RasterParams = Annotated[Union[TextRaster, ImageRaster], Field(discriminator="kind")]


class Formation(ConfigModel):
    """One target shape and its timing within a sequence."""

    id: str = Field(..., min_length=1, description="Formation identifier")
    raster: RasterParams
    hold_duration_ms: float = Field(2000.0, ge=0, description="Time spent holding the shape")
    transition_duration_ms: float = Field(1200.0, gt=0, description="Time allowed to morph in")
    delay_before_ms: float = Field(0.0, ge=0, description="Idle wait before rasterizing")
    stagger_ms: float = Field(0.0, ge=0, description="Activation offset between stagger groups")
    stagger_groups: int = Field(8, ge=1, description="Number of cascading activation groups")
    easing: Easing = Field(Easing.EASE_IN_OUT_CUBIC, description="Attraction strength curve")

    @property
    def kind(self) -> FormationKind:
        return FormationKind(self.raster.kind)


class FormationSequence(ConfigModel):
    """Ordered formations plus loop policy."""

    steps: Tuple[Formation, ...] = Field(..., min_length=1)
    loop: bool = False
    loop_delay_ms: float = Field(0.0, ge=0)


class FormationRun:
    """
    One playback of a formation.

    Keeps two clocks in milliseconds, both advanced only through
    advance_clock(): time in the current state, and time since the
    transition began (drives easing and stagger). Pausing is simply not
    advancing.
    """

    def __init__(self, formation: Formation, generation: int):
        self.formation = formation
        self.generation = generation
        self.state = FormationState.PENDING

        self.state_elapsed_ms = 0.0
        self.transition_elapsed_ms = 0.0

        self.future: Optional[Future] = None
        self.raster_ready = False
        self.target_set: Optional[TargetSet] = None
        self.assignment: List[Optional[int]] = []
        self.error: Optional[BaseException] = None

        self.assigned_count = 0
        self.arrived_count = 0
        self._offsets = np.zeros(0, dtype=np.float64)
        self._stagger_span_ms = 0.0

    def __repr__(self) -> str:
        return f"FormationRun(id={self.formation.id!r}, generation={self.generation}, state={self.state.value})"

    @property
    def formation_id(self) -> str:
        return self.formation.id

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def has_targets(self) -> bool:
        """True while particles should be attracted to this run's targets."""
        return self.state in (
            FormationState.MORPHING_IN, FormationState.HOLDING, FormationState.MORPHING_OUT,
        )

    def transition(self, new_state: FormationState) -> None:
        """
        Move to a new state, resetting the state clock.

        Raises:
            StateTransitionError: if the move is not allowed
        """
        if new_state not in ALLOWED_TRANSITIONS[self.state]:
            raise StateTransitionError(
                f"{self.formation.id}: cannot go from {self.state.value} to {new_state.value}"
            )
        logger.debug(
            "Formation state change",
            formation=self.formation.id,
            generation=self.generation,
            old=self.state.value,
            new=new_state.value,
        )
        self.state = new_state
        self.state_elapsed_ms = 0.0

    def fail(self, error: BaseException) -> None:
        self.error = error
        self.transition(FormationState.FAILED)

    def retire(self) -> None:
        if not self.is_terminal:
            self.transition(FormationState.RETIRED)
        if self.future is not None and not self.future.done():
            self.future.cancel()

    def advance_clock(self, dt_ms: float) -> None:
        if self.is_terminal:
            return
        self.state_elapsed_ms += dt_ms
        if self.has_targets:
            self.transition_elapsed_ms += dt_ms

    # Assignment bookkeeping

    def bind(self, target_set: TargetSet, assignment: List[Optional[int]]) -> None:
        """Record the targets and assignment and start the transition clock."""
        self.target_set = target_set
        self.assignment = list(assignment)
        self.assigned_count = sum(1 for j in assignment if j is not None)
        self.arrived_count = 0
        self.transition_elapsed_ms = 0.0
        f = self.formation
        self._offsets = stagger_offsets(len(assignment), f.stagger_ms, f.stagger_groups)
        assigned = [i for i, j in enumerate(assignment) if j is not None]
        self._stagger_span_ms = float(self._offsets[assigned].max()) if assigned else 0.0

    def record_arrivals(self, arrived: int) -> None:
        self.arrived_count = arrived

    @property
    def stagger_span_ms(self) -> float:
        """Offset of the last stagger group that actually has assigned particles."""
        return self._stagger_span_ms

    @property
    def transition_window_ms(self) -> float:
        """Transition duration extended by the stagger cascade."""
        return self.formation.transition_duration_ms + self.stagger_span_ms

    def activation_offset(self, index: int) -> float:
        if index < len(self._offsets):
            return float(self._offsets[index])
        return 0.0

    def is_active(self, index: int) -> bool:
        """Whether the particle's stagger delay has passed."""
        return self.transition_elapsed_ms >= self.activation_offset(index)

    def strength(self, index: int) -> float:
        """Eased attraction strength for a particle at the current time."""
        elapsed = self.transition_elapsed_ms - self.activation_offset(index)
        fraction = elapsed / self.formation.transition_duration_ms
        return ease(self.formation.easing, fraction)

    @property
    def all_arrived(self) -> bool:
        return self.assigned_count > 0 and self.arrived_count >= self.assigned_count

    @property
    def transition_timed_out(self) -> bool:
        return self.transition_elapsed_ms >= self.transition_window_ms

    @property
    def hold_complete(self) -> bool:
        return (
            self.state == FormationState.HOLDING
            and self.state_elapsed_ms >= self.formation.hold_duration_ms
        )

    @property
    def delay_complete(self) -> bool:
        return (
            self.state == FormationState.PENDING
            and self.state_elapsed_ms >= self.formation.delay_before_ms
        )
