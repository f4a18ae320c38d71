from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from tonotes.core.db import MongoModel
from tonotes.utils import now


class User(MongoModel):
    """User domain model with credentials and second-factor state.

    two_factor_secret is set iff two_factor_enabled; recovery_codes holds
    SHA-256 digests of the unused recovery codes.
    """

    username: str
    email: str
    password_hash: str  # argon2id PHC string
    created_at: datetime = Field(default_factory=now)
    last_password_change: datetime | None = None
    last_email_change: datetime | None = None
    is_active: bool = True
    two_factor_enabled: bool = False
    two_factor_secret: str | None = None
    recovery_codes: list[str] = Field(default_factory=list)


class UserView(BaseModel):
    """User account information (API representation)."""

    id: UUID = Field(..., description="User ID")
    username: str = Field(..., description="Username")
    email: str = Field(..., description="Email address")
    created_at: datetime = Field(..., description="Registration time")
    two_factor_enabled: bool = Field(..., description="Whether TOTP is required at login")

    @classmethod
    def from_domain(cls, user: User) -> "UserView":
        """Create view model from domain model."""
        return cls(
            id=user.id,
            username=user.username,
            email=user.email,
            created_at=user.created_at,
            two_factor_enabled=user.two_factor_enabled,
        )
