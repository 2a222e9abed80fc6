"""
Base service class for courier core services.

Provides common functionality:
- Configuration loading
- Structured logging bound to the service name
- Decision logging for audit and debugging
- Injectable clock
"""

from abc import ABC
from datetime import datetime, timezone
from typing import Any, Callable, Optional

import structlog
from pydantic import BaseModel

from courier_core.core.config import ConfigManager, get_config
from courier_core.core.logging import get_logger

Clock = Callable[[], datetime]


def system_clock() -> datetime:
    """Wall-clock time in UTC."""
    return datetime.now(timezone.utc)


class ServiceDecision(BaseModel):
    """
    Structured record of a service decision.

    Logged for every priced quote, compliance check and committed transition.
    """

    timestamp: datetime
    service_name: str
    decision_type: str
    input_data: dict[str, Any]
    output_data: dict[str, Any]
    execution_time_seconds: float


class BaseService(ABC):
    """
    Base class for courier core services.

    Services hold no per-request state: everything they need arrives as
    arguments, so one instance can serve concurrent requests.
    """

    def __init__(
        self,
        service_name: str,
        config_manager: Optional[ConfigManager] = None,
        logger: Optional[structlog.BoundLogger] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        """
        Initialize the base service.

        Args:
            service_name: Name of the service (e.g., "rate_engine", "compliance_gate")
            config_manager: Optional config manager (defaults to global instance)
            logger: Optional structured logger
            clock: Optional callable returning the current aware datetime
        """
        self.service_name = service_name
        self.config_manager = config_manager or get_config()
        self.logger = logger or get_logger(service_name)
        self.clock = clock or system_clock

    def now(self) -> datetime:
        """Current time from the injected clock."""
        return self.clock()

    def log_decision(self, decision: ServiceDecision) -> None:
        """
        Log a service decision for transparency and debugging.

        Args:
            decision: ServiceDecision instance with decision details
        """
        self.logger.info(
            "service_decision",
            decision_type=decision.decision_type,
            input_data=decision.input_data,
            output_data=decision.output_data,
            execution_time=decision.execution_time_seconds,
        )

    def __repr__(self) -> str:
        """String representation of the service."""
        return f"{self.__class__.__name__}(service_name='{self.service_name}')"
