from dataclasses import dataclass
from uuid import UUID

from tonotes.core.modules.session.models import Session
from tonotes.core.modules.token.models import TokenClaims, TokenPair
from tonotes.core.modules.user.models import UserView

EVICTION_NOTICE = "Maximum number of active sessions reached. Your least recently used session was logged out."


@dataclass(frozen=True)
class LoginResult:
    """Successful login: a fresh token pair bound to a new session."""

    tokens: TokenPair
    session: Session
    user: UserView
    notice: str | None = None


@dataclass(frozen=True)
class LoginChallenge:
    """Password accepted but a TOTP code is required; no tokens were minted."""

    user_id: UUID


@dataclass(frozen=True)
class AuthContext:
    """Identity attached to an authenticated request."""

    claims: TokenClaims
    user_id: UUID
    access_token: str
    session: Session | None = None

    @property
    def session_id(self) -> UUID | None:
        return self.session.id if self.session else None
