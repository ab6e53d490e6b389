"""CLI configuration management."""

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings


class CLIConfig(BaseSettings):
    """CLI configuration loaded from environment or config file."""

    # API connection
    api_url: str = Field(
        default="http://localhost:8010",
        description="Application Scheduler Service API URL",
    )
    api_token: str | None = Field(
        default=None,
        description="JWT token for authentication",
    )
    service_key: str | None = Field(
        default=None,
        description="Service API key, sent with X-User-Id for commands that act for a user",
    )
    api_timeout: int = Field(
        default=30,
        description="API request timeout in seconds",
    )

    # Output settings
    output_format: str = Field(
        default="table",
        description="Default output format (table, json)",
    )

    model_config = {
        "env_prefix": "APPSCHED_",
        "env_file": ".env",
        "extra": "ignore",
    }


def get_config_file() -> Path:
    """Get the CLI configuration file path."""
    return Path.home() / ".config" / "appsched" / "config.env"


def load_config() -> CLIConfig:
    """Load CLI configuration from environment and config file."""
    config_file = get_config_file()

    if config_file.exists():
        with open(config_file) as f:
            for line in f:
                line = line.strip()
                if line and not line.startswith("#") and "=" in line:
                    key, value = line.split("=", 1)
                    # Don't override existing env vars
                    if key not in os.environ:
                        os.environ[key] = value.strip('"').strip("'")

    return CLIConfig()


# Global config instance
_config: CLIConfig | None = None


def get_config() -> CLIConfig:
    """Get the global CLI configuration."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reset_config() -> None:
    """Drop the cached configuration (after CLI options changed the environment)."""
    global _config
    _config = None
