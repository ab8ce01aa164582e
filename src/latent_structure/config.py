"""
Configuration and logging setup.

Uses Pydantic settings for environment-based configuration with
defaults matching the values used in the exploratory notebooks
(classes 2..6, 10 restarts, 1000 EM iterations).
"""

import logging
from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class Settings(BaseSettings):
    """Sweep defaults loaded from ``LATENT_*`` environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="LATENT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Sweep range
    min_classes: int = 2
    max_classes: int = 6

    # EM settings forwarded to the fitter
    restarts: int = 10
    max_iterations: int = 1000
    tolerance: float = 1e-10

    # Seeds the backend generator once per sweep
    seed: int = 42

    # Low-rank imputation
    impute_rank: Optional[int] = None

    log_level: str = "INFO"
    output_dir: str = "./sweep_results"

    @property
    def class_counts(self) -> list:
        """Default candidate class counts, ascending."""
        return list(range(self.min_classes, self.max_classes + 1))


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def configure_logging(level: str = "INFO") -> None:
    """Apply the package log format to the root logger."""
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
