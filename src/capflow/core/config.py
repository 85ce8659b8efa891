"""
Engine Settings

Settings come from keyword arguments or from the environment (optionally a
.env file loaded with python-dotenv):

    CAPFLOW_MAX_CONCURRENCY   worker limit per run (default 4)
    CAPFLOW_RUN_TIMEOUT       seconds before a run is cancelled (unset = none)
    CAPFLOW_LOG_LEVEL         debug/info/warning/error (default info)
"""

import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import ConfigError
from .logger import level_from_name

ENV_PREFIX = "CAPFLOW_"


class EngineSettings(BaseModel):
    """Runtime settings for the workflow engine."""

    model_config = ConfigDict(frozen=True)

    max_concurrency: int = Field(default=4, ge=1)
    run_timeout_s: Optional[float] = Field(default=None, gt=0)
    log_level: str = "info"

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        level_from_name(value)
        return value.lower()

    @classmethod
    def create(cls, **values) -> "EngineSettings":
        """Build settings, raising ConfigError instead of ValidationError."""
        try:
            return cls(**values)
        except ValidationError as e:
            raise ConfigError.from_validation_error(e, source="engine") from e

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None) -> "EngineSettings":
        """
        Load settings from the process environment.

        Args:
            dotenv_path: Optional .env file; values already in the
                environment win

        Returns:
            Validated EngineSettings
        """
        load_dotenv(dotenv_path)
        values = {}
        concurrency = os.getenv(f"{ENV_PREFIX}MAX_CONCURRENCY")
        if concurrency:
            values["max_concurrency"] = concurrency
        timeout = os.getenv(f"{ENV_PREFIX}RUN_TIMEOUT")
        if timeout:
            values["run_timeout_s"] = timeout
        level = os.getenv(f"{ENV_PREFIX}LOG_LEVEL")
        if level:
            values["log_level"] = level
        return cls.create(**values)
