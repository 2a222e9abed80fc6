"""Core utilities: configuration, errors and logging."""

from courier_core.core.config import ConfigManager, get_config
from courier_core.core.errors import (
    AuthorizationError,
    ComplianceError,
    CourierError,
    InvalidTransitionError,
    NotFoundError,
    StaleStateError,
    ValidationError,
)
from courier_core.core.logging import configure_logging

__all__ = [
    "AuthorizationError",
    "ComplianceError",
    "ConfigManager",
    "CourierError",
    "InvalidTransitionError",
    "NotFoundError",
    "StaleStateError",
    "ValidationError",
    "configure_logging",
    "get_config",
]
