"""
Configuration for fpsimp.

Settings are read from FPSIMP_* environment variables; command-line flags
override them. Example:

    FPSIMP_NODE_LIMIT=50000 FPSIMP_LOG_LEVEL=debug fpsimp
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="FPSIMP_", extra="ignore")

    # Hard ceiling on e-graph nodes during saturation
    node_limit: int = Field(default=10_000, gt=0)
    iter_limit: int = Field(default=30, gt=0)

    log_level: str = "WARNING"
    log_format: str = "console"  # "console" | "json"


def load_settings(**overrides) -> Settings:
    """Load settings from the environment, applying non-None overrides."""
    return Settings(**{k: v for k, v in overrides.items() if v is not None})
