"""
Error hierarchy for the formation engine.

Propagation rules:
- ConfigurationError is raised synchronously and aborts the call.
- AssetError fails only the current sequence step.
- StaleResultError never leaves the engine.
- TimeoutWarning is reported and logged, never raised.
"""


class FormationError(Exception):
    """Base class for all formation engine errors."""


class ConfigurationError(FormationError, ValueError):
    """Invalid resolution, threshold, duration or other request parameter."""

    @classmethod
    def from_validation(cls, exc, context: str = "") -> "ConfigurationError":
        """Build from a pydantic ValidationError, keeping the field messages."""
        details = "; ".join(
            f"{'.'.join(str(loc) for loc in err['loc']) or 'value'}: {err['msg']}"
            for err in exc.errors()
        )
        prefix = f"{context}: " if context else ""
        return cls(f"{prefix}{details}")


class AssetError(FormationError):
    """An image or font asset could not be read or decoded."""


class StaleResultError(FormationError):
    """An asynchronous result arrived after its generation was cancelled."""

    def __init__(self, generation: int, current: int):
        super().__init__(f"result for generation {generation} is stale (current {current})")
        self.generation = generation
        self.current = current


class TimeoutWarning(FormationError, UserWarning):
    """A transition ran out of time before every particle arrived."""

    def __init__(self, formation_id: str, arrived: int, assigned: int):
        super().__init__(
            f"formation {formation_id!r}: {arrived}/{assigned} particles arrived before timeout"
        )
        self.formation_id = formation_id
        self.arrived = arrived
        self.assigned = assigned


class StateTransitionError(FormationError, RuntimeError):
    """An illegal formation state change was requested."""
