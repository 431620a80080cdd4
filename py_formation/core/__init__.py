"""
Core formation engine functionality.
"""

from .assigner import apply_assignment, assign_particles, assign_targets, clear_assignments
from .easing import Easing, ease
from .engine import FormationEngine, TickResult
from .errors import (
    AssetError,
    ConfigurationError,
    FormationError,
    StaleResultError,
    StateTransitionError,
    TimeoutWarning,
)
from .formation import Formation, FormationKind, FormationRun, FormationSequence, FormationState
from .geometry import Particle, Point, TargetSet
from .motion import MotionModel, MotionParams, MotionStep
from .rasterizer import ImageRaster, TextRaster, rasterize
from .sequencer import Sequencer, SequencerSnapshot, SequencerStatus
from .workers import InlineExecutor

__all__ = ['apply_assignment', 'assign_particles', 'assign_targets', 'clear_assignments',
           'Easing', 'ease', 'FormationEngine', 'TickResult',
           'AssetError', 'ConfigurationError', 'FormationError', 'StaleResultError',
           'StateTransitionError', 'TimeoutWarning',
           'Formation', 'FormationKind', 'FormationRun', 'FormationSequence', 'FormationState',
           'Particle', 'Point', 'TargetSet', 'MotionModel', 'MotionParams', 'MotionStep',
           'ImageRaster', 'TextRaster', 'rasterize',
           'Sequencer', 'SequencerSnapshot', 'SequencerStatus', 'InlineExecutor']
