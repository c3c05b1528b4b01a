"""Configuration — Pydantic model for ptyredact settings."""

from __future__ import annotations

import json
import os
from typing import Any

from pydantic import BaseModel, Field


class RedactConfig(BaseModel):
    """Runtime tuning for a redacted PTY session.

    The secrets and the command are not part of the config; they come
    from the command line only.
    """

    read_size: int = Field(
        default=4096, gt=0, description="Max bytes per read from the PTY master"
    )
    drain_timeout: float = Field(
        default=1.0,
        ge=0,
        description=(
            "Seconds to keep reading child output after the child exits. "
            "Background processes holding the PTY open are cut off after this."
        ),
    )
    log_file: str | None = Field(
        default=None,
        description="Write log records here instead of stderr",
    )

    @classmethod
    def load(cls, config_path: str | None = None) -> RedactConfig:
        """Load config from file, env vars, or defaults.

        Priority: env vars > config file > defaults.

        Env vars:
            PTYREDACT_READ_SIZE       - Override read_size
            PTYREDACT_DRAIN_TIMEOUT   - Override drain_timeout (seconds)
            PTYREDACT_LOG_FILE        - Override log_file

        No .env file is loaded: the child must inherit the environment
        exactly as the caller had it.
        """
        config_data: dict[str, Any] = {}

        if config_path and os.path.exists(config_path):
            with open(config_path) as f:
                config_data = json.load(f)

        env_read_size = os.environ.get("PTYREDACT_READ_SIZE")
        if env_read_size:
            config_data["read_size"] = env_read_size

        env_drain_timeout = os.environ.get("PTYREDACT_DRAIN_TIMEOUT")
        if env_drain_timeout:
            config_data["drain_timeout"] = env_drain_timeout

        env_log_file = os.environ.get("PTYREDACT_LOG_FILE")
        if env_log_file:
            config_data["log_file"] = env_log_file

        return cls.model_validate(config_data)
