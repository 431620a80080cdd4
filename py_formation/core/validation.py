"""Base model for request and formation parameters."""

from pydantic import BaseModel, ConfigDict, ValidationError

from .errors import ConfigurationError


class ConfigModel(BaseModel):
    """
    Frozen pydantic model that reports invalid input as ConfigurationError.

    Validation happens once at the configuration boundary, so downstream
    code can rely on the values without re-checking them.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    def __init__(self, **data):
        try:
            super().__init__(**data)
        except ValidationError as exc:
            raise ConfigurationError.from_validation(exc, type(self).__name__) from exc

    @classmethod
    def parse(cls, data):
        """Validate a mapping (or pass through an instance) as this model."""
        if isinstance(data, cls):
            return data
        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise ConfigurationError.from_validation(exc, cls.__name__) from exc
