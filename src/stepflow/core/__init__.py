"""Core package initialization."""

from stepflow.core.config import EngineConfig, StateConfig, StepflowConfig

__all__ = [
    "EngineConfig",
    "StateConfig",
    "StepflowConfig",
]
