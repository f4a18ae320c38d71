"""Session management models."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from tonotes.core.db import MongoModel
from tonotes.utils import as_utc

MAX_ACTIVE_SESSIONS = 5


class DeviceInfo(BaseModel):
    """Parsed user agent."""

    browser: str = "Unknown Browser"
    os: str = "Unknown OS"
    device: str = "Desktop"

    def __str__(self) -> str:
        return f"{self.browser} on {self.os} ({self.device})"


class ClientInfo(BaseModel):
    """What the server knows about the client opening a session."""

    user_agent: str = ""
    ip_address: str = ""


class Session(MongoModel):
    """Server-side record of one logged-in client.

    Indexed on user_id and (user_id, is_active, expires_at).
    A session is live while is_active is true and expires_at is in the future;
    once is_active turns false it never turns back.
    """

    user_id: UUID
    created_at: datetime
    expires_at: datetime
    last_activity_at: datetime
    device: DeviceInfo = Field(default_factory=DeviceInfo)
    display_name: str = ""
    ip_address: str = ""
    location: str = "Unknown Location"
    is_active: bool = True

    def is_live(self, at: datetime) -> bool:
        return self.is_active and as_utc(self.expires_at) > at


class SessionView(BaseModel):
    """Session information (API representation)."""

    session_id: UUID = Field(..., description="Session ID")
    display_name: str = Field(..., description="Human-readable name, e.g. 'Chrome on Windows (Berlin, DE)'")
    device_info: str = Field(..., description="Browser, OS and device class")
    ip_address: str = Field(..., description="Client IP at login")
    location: str = Field(..., description="Coarse location derived from the IP")
    created_at: datetime
    expires_at: datetime
    last_activity_at: datetime
    is_active: bool
    is_current: bool = Field(False, description="Whether this is the session making the request")

    @classmethod
    def from_domain(cls, session: Session, current_session_id: UUID | None = None) -> "SessionView":
        return cls(
            session_id=session.id,
            display_name=session.display_name,
            device_info=str(session.device),
            ip_address=session.ip_address,
            location=session.location,
            created_at=session.created_at,
            expires_at=session.expires_at,
            last_activity_at=session.last_activity_at,
            is_active=session.is_active,
            is_current=session.id == current_session_id,
        )
