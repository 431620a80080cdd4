"""Configuration management."""

from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Engine settings, overridable through FORMATION_* environment variables."""

    model_config = SettingsConfigDict(env_prefix="FORMATION_", env_file=".env", extra="ignore")

    # Logging
    log_level: str = Field(default="INFO", description="Log level")
    log_format: Literal["console", "json"] = Field(default="console", description="Log renderer")

    # Rasterization
    rasterize_workers: int = Field(default=1, ge=1, description="Background rasterization threads")
    max_target_points: int = Field(
        default=20000, ge=1, description="Upper bound on grid samples per rasterization"
    )
    default_font_family: Optional[str] = Field(
        default=None, description="Font path or name used when a request names none"
    )
    default_resolution: int = Field(default=6, gt=0, description="Pixels between samples")
    default_threshold: int = Field(default=128, ge=0, le=255, description="Alpha cut-off")


settings = Settings()
