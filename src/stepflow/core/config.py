"""Core configuration for stepflow."""

import logging
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from stepflow.runner.logging import configure_logging


class EngineConfig(BaseSettings):
    """Configuration for the workflow engine."""

    max_iterations: int = Field(
        default=1000,
        gt=0,
        description="Maximum steps per run before it is aborted as a possible infinite loop",
    )
    dry_run: bool = Field(
        default=False,
        description="Call handler dry-run instead of execute",
    )
    event_buffer_size: int = Field(
        default=256,
        gt=0,
        description="Capacity of the event queue created for observers",
    )

    model_config = SettingsConfigDict(
        env_prefix="STEPFLOW_ENGINE_",
        env_file=".env",
        extra="ignore",
    )


class StateConfig(BaseSettings):
    """Configuration for checkpoint storage."""

    storage_path: Path = Field(
        default=Path(".stepflow/state"),
        description="Directory holding one checkpoint file per run",
    )
    stale_after_seconds: float = Field(
        default=300.0,
        gt=0,
        description="Age after which a non-terminal run is reported as interrupted",
    )

    model_config = SettingsConfigDict(
        env_prefix="STEPFLOW_STATE_",
        env_file=".env",
        extra="ignore",
    )


class StepflowConfig(BaseSettings):
    """Main configuration."""

    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )
    log_format: Literal["json", "text"] = Field(
        default="json",
        description="Structured JSON lines or human-readable text",
    )
    debug: bool = Field(
        default=False,
        description="Enable debug logging for stepflow loggers",
    )

    engine: EngineConfig = Field(
        default_factory=EngineConfig,
        description="Engine configuration",
    )
    state: StateConfig = Field(
        default_factory=StateConfig,
        description="State configuration",
    )

    model_config = SettingsConfigDict(
        env_prefix="STEPFLOW_",
        env_file=".env",
        extra="ignore",
    )

    def setup_logging(self) -> None:
        """Configure logging based on settings."""
        configure_logging(self.log_level, fmt=self.log_format)

        if self.debug:
            logging.getLogger("stepflow").setLevel(logging.DEBUG)
