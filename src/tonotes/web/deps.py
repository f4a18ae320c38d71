from typing import Annotated, cast
from uuid import UUID

from fastapi import Depends, Header, Request
from fastapi.security import APIKeyCookie, HTTPAuthorizationCredentials, HTTPBearer

from tonotes.app import App
from tonotes.config import Config
from tonotes.core.modules.auth.models import AuthContext
from tonotes.core.modules.session.models import ClientInfo
from tonotes.errors import UnauthorizedError

SESSION_COOKIE = "session_id"
SESSION_HEADER = "X-Session-ID"

# Security schemes
bearer_scheme = HTTPBearer(auto_error=False)
session_cookie_scheme = APIKeyCookie(name=SESSION_COOKIE, auto_error=False)


async def get_app(request: Request) -> App:
    return cast(App, request.app.state.app)


async def get_config(request: Request) -> Config:
    return cast(Config, request.app.state.config)


async def get_bearer_token(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)] = None,
) -> str:
    """Extract the token from the Authorization Bearer header."""
    if credentials is None or credentials.scheme.lower() != "bearer" or not credentials.credentials:
        raise UnauthorizedError("Missing or invalid token")
    return credentials.credentials


def _parse_session_id(value: str | None) -> UUID | None:
    if not value:
        return None
    try:
        return UUID(value)
    except ValueError as e:
        raise UnauthorizedError("Invalid session") from e


async def get_auth_context(
    app: Annotated[App, Depends(get_app)],
    token: Annotated[str, Depends(get_bearer_token)],
    session_header: Annotated[str | None, Header(alias=SESSION_HEADER)] = None,
    session_cookie: Annotated[str | None, Depends(session_cookie_scheme)] = None,
) -> AuthContext:
    """Validate the access token and the session it is used with (header first, then cookie)."""
    session_id = _parse_session_id(session_header or session_cookie)
    return await app.authenticate(token, session_id)


def get_client_info(request: Request, user_agent: Annotated[str, Header()] = "") -> ClientInfo:
    """Client details recorded on a new session; honours the first X-Forwarded-For hop."""
    forwarded = request.headers.get("X-Forwarded-For", "")
    ip_address = forwarded.split(",")[0].strip() if forwarded else ""
    if not ip_address and request.client is not None:
        ip_address = request.client.host
    return ClientInfo(user_agent=user_agent, ip_address=ip_address)


# Type aliases for dependencies
AppDep = Annotated[App, Depends(get_app)]
ConfigDep = Annotated[Config, Depends(get_config)]
BearerTokenDep = Annotated[str, Depends(get_bearer_token)]
AuthDep = Annotated[AuthContext, Depends(get_auth_context)]
ClientInfoDep = Annotated[ClientInfo, Depends(get_client_info)]
