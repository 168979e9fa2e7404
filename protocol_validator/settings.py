"""
Configuration settings for protocol_validator.

Reads optional overrides from a .env file at the project root and the
process environment, and provides typed settings.
"""

import logging
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Resolve paths
PACKAGE_DIR = Path(__file__).parent
PROJECT_ROOT = PACKAGE_DIR.parent
ENV_FILE = PROJECT_ROOT / ".env"

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class Settings(BaseSettings):
    """Pipeline settings loaded from .env / environment."""

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Execution settings
    parallel_analysis: bool = Field(
        default=True,
        alias="PV_PARALLEL_ANALYSIS",
        description="Run structural and alignment analysis concurrently"
    )
    validation_timeout_seconds: Optional[float] = Field(
        default=None,
        alias="PV_VALIDATION_TIMEOUT",
        description="Deadline for a whole validation run; None disables it"
    )
    validation_id_prefix: str = Field(
        default="CRF-VAL",
        alias="PV_VALIDATION_ID_PREFIX",
        description="Prefix for generated validation ids"
    )
    risk_id_prefix: str = Field(
        default="RISK-MTX",
        alias="PV_RISK_ID_PREFIX",
        description="Prefix for generated risk assessment ids"
    )

    # Data locations
    reference_data_dir_override: Optional[Path] = Field(
        default=None,
        alias="PV_REFERENCE_DATA_DIR",
        description="Directory with industry benchmark JSON files"
    )
    config_dir_override: Optional[Path] = Field(
        default=None,
        alias="PV_CONFIG_DIR",
        description="Directory with validation_defaults.yaml"
    )

    @computed_field
    @property
    def reference_data_dir(self) -> Path:
        """Path to reference data directory."""
        return self.reference_data_dir_override or PACKAGE_DIR / "reference_data"

    @computed_field
    @property
    def config_dir(self) -> Path:
        """Path to YAML config directory."""
        return self.config_dir_override or PACKAGE_DIR / "config"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging the same way for every entry point."""
    logging.basicConfig(
        level=getattr(logging, (level or get_settings().log_level).upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=[
            logging.StreamHandler(),
        ]
    )
