"""
GeoVault configuration.

Loads from environment variables with the GEO_ prefix, or from a .env file.

Usage:
    from geovault.shared.config import get_settings

    settings = get_settings()
    if settings.CELL_SIZE is not None:
        # grid bucketing leaks floor(coordinate / CELL_SIZE)
"""
from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class GeoVaultSettings(BaseSettings):
    """GeoVault engine and server settings."""
    model_config = SettingsConfigDict(
        env_prefix="GEO_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ==========================================================================
    # GENERAL
    # ==========================================================================
    ENVIRONMENT: str = Field(default="development", description="Runtime environment: development, staging, production")
    LOG_LEVEL: str = Field(default="INFO", description="Logging level: DEBUG, INFO, WARNING, ERROR")

    # ==========================================================================
    # INDEX
    # ==========================================================================
    CELL_SIZE: Optional[float] = Field(
        default=None,
        gt=0,
        description="Grid cell edge in coordinate units. Unset keeps every point in one cell (no location leakage)",
    )

    # ==========================================================================
    # QUERY EVALUATION
    # ==========================================================================
    NN_REDUCTION: Literal["tree", "sequential"] = Field(default="tree", description="Nearest-neighbor min-select strategy")
    PARALLEL_WORKERS: int = Field(default=1, ge=1, description="Worker threads for tree reduction levels")

    # ==========================================================================
    # ORACLE
    # ==========================================================================
    ORACLE_TOKEN: Optional[str] = Field(default=None, description="Shared secret for the oracle callback endpoint")

    # ==========================================================================
    # SERVER
    # ==========================================================================
    HOST: str = Field(default="127.0.0.1", description="Bind address")
    PORT: int = Field(default=8000, description="Bind port")


@lru_cache
def get_settings() -> GeoVaultSettings:
    """Return the process-wide settings instance."""
    return GeoVaultSettings()
