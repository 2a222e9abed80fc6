"""
Caller identity passed explicitly into every mutating operation.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict

from courier_core.data.models.load import ActorType


class UserType(str, Enum):
    """Kind of authenticated caller."""

    DRIVER = "DRIVER"
    SHIPPER = "SHIPPER"
    ADMIN = "ADMIN"
    SYSTEM = "SYSTEM"


class AuthContext(BaseModel):
    """Trusted identity of the caller, produced by the transport layer."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    user_type: UserType
    role: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.user_type == UserType.ADMIN

    @property
    def actor_type(self) -> ActorType:
        """Actor recorded on tracking events and cancellations."""
        return ActorType(self.user_type.value)

    @classmethod
    def system(cls) -> "AuthContext":
        """Context for scheduled jobs acting without a user."""
        return cls(user_id="system", user_type=UserType.SYSTEM)
