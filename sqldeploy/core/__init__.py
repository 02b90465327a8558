"""
Core infrastructure for sqldeploy.

Shared components used across all modules:
- Configuration management
- Environment detection
- Structured logging
- Database engine construction
- Error taxonomy
"""

from sqldeploy.core.config import Settings, get_settings
from sqldeploy.core.environment import Environment, EnvironmentType
from sqldeploy.core.errors import OperationContext, SqlDeployError

__all__ = [
    'Settings',
    'get_settings',
    'Environment',
    'EnvironmentType',
    'OperationContext',
    'SqlDeployError',
]
