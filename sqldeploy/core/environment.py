"""
Environment detection for sqldeploy.

The environment decides two policies: whether a failed deployment also
triggers the platform restore (production only), and whether the approval
bypass variable is honored (development only).
"""

import os
import sys
from enum import Enum
from typing import Any, Dict

from sqldeploy.core.errors import ConfigurationError

# Variables that should never be logged in clear
SENSITIVE_VARS = {
    "DATABASE_URL",
}


class EnvironmentType(str, Enum):
    """Deployment environment types."""
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TEST = "test"


class Environment:
    """Environment detection and configuration summary."""

    @classmethod
    def current(cls) -> EnvironmentType:
        """
        Get current environment type.

        Detection order:
        1. ENVIRONMENT env var
        2. pytest detection
        3. Default to development
        """
        env_str = os.getenv("ENVIRONMENT", "").lower()

        if env_str:
            # Common short forms used by pipelines
            env_str = {"dev": "development", "prod": "production"}.get(env_str, env_str)
            try:
                return EnvironmentType(env_str)
            except ValueError:
                valid = ", ".join(e.value for e in EnvironmentType)
                raise ConfigurationError(
                    f"Invalid ENVIRONMENT value: '{env_str}'. "
                    f"Must be one of: {valid}"
                )

        if "pytest" in sys.modules:
            return EnvironmentType.TEST

        return EnvironmentType.DEVELOPMENT

    @classmethod
    def is_development(cls) -> bool:
        """Check if running in development."""
        return cls.current() == EnvironmentType.DEVELOPMENT

    @classmethod
    def is_production(cls) -> bool:
        """Check if running in production."""
        return cls.current() == EnvironmentType.PRODUCTION

    @classmethod
    def get_config_summary(cls, sanitize: bool = True) -> Dict[str, Any]:
        """
        Get configuration summary for logging.

        Args:
            sanitize: If True, mask sensitive values.

        Returns:
            Dictionary of configuration values.
        """
        config: Dict[str, Any] = {
            "environment": cls.current().value,
            "log_level": os.getenv("LOG_LEVEL", "INFO"),
            "log_format": os.getenv("LOG_FORMAT", "text"),
            "dialect": os.getenv("SQLDEPLOY_DIALECT"),
        }

        for var in sorted(SENSITIVE_VARS):
            value = os.getenv(var)
            if value and sanitize:
                # Show first 4 and last 4 chars only
                if len(value) > 12:
                    config[var.lower()] = f"{value[:4]}...{value[-4:]}"
                else:
                    config[var.lower()] = "****"
            else:
                config[var.lower()] = value

        return config
