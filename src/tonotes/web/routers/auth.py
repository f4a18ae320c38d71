from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Header, Response
from pydantic import BaseModel, Field

from tonotes.core.modules.auth.models import LoginChallenge
from tonotes.core.modules.user.models import UserView
from tonotes.errors import InvalidInputError
from tonotes.web.deps import (
    SESSION_COOKIE,
    SESSION_HEADER,
    AppDep,
    AuthDep,
    BearerTokenDep,
    ClientInfoDep,
    ConfigDep,
)
from tonotes.web.openapi import ErrorResponse

router = APIRouter(tags=["auth"])


class RegisterRequest(BaseModel):
    """Account registration request."""

    username: str = Field(..., description="Unique username, 4-20 characters without whitespace")
    email: str = Field(..., description="Email address, used as the authenticator account name")
    password: str = Field(..., description="Password satisfying the password policy")


class RegisterResponse(BaseModel):
    profile: UserView
    token: str = Field(..., description="Access token")
    refresh: str = Field(..., description="Refresh token")


class LoginRequest(BaseModel):
    """Authentication request."""

    username: str = Field(..., description="Username for authentication")
    password: str = Field(..., description="Password for authentication")
    code: str | None = Field(None, description="TOTP code, required when 2FA is enabled")


class LoginResponse(BaseModel):
    """Authentication response."""

    token: str = Field(..., description="Access token for subsequent requests")
    refresh: str = Field(..., description="Refresh token")
    session_id: UUID = Field(..., description="Session to send back in X-Session-ID or the session_id cookie")
    user: UserView
    notice: str | None = Field(None, description="Set when an older session was logged out to make room")


class TwoFactorRequiredResponse(BaseModel):
    """Password accepted; repeat the login with a TOTP code."""

    requires_2fa: bool = True
    user_id: UUID


class RefreshResponse(BaseModel):
    access_token: str
    new_refresh_token: str


class MessageResponse(BaseModel):
    message: str


@router.post(
    "/auth/register",
    summary="Register account",
    description="Create a new account and receive a token pair.",
    operation_id="register",
    status_code=201,
    responses={
        201: {"description": "Account created"},
        400: {"model": ErrorResponse, "description": "Invalid input or weak password"},
        409: {"model": ErrorResponse, "description": "Username already exists"},
    },
)
async def register(register_data: RegisterRequest, app: AppDep) -> RegisterResponse:
    profile, tokens = await app.register(register_data.username, register_data.email, register_data.password)
    return RegisterResponse(profile=profile, token=tokens.access_token, refresh=tokens.refresh_token)


@router.post(
    "/auth/login",
    summary="Authenticate user",
    description="Authenticate with username, password and, if enabled, a TOTP code.",
    operation_id="login",
    responses={
        200: {"description": "Authenticated, or a TOTP code is required"},
        401: {"model": ErrorResponse, "description": "Invalid credentials or 2FA code"},
    },
)
async def login(
    login_data: LoginRequest, app: AppDep, config: ConfigDep, client: ClientInfoDep, response: Response
) -> LoginResponse | TwoFactorRequiredResponse:
    """Authenticate user and create session."""
    result = await app.login(login_data.username, login_data.password, login_data.code, client)
    if isinstance(result, LoginChallenge):
        return TwoFactorRequiredResponse(user_id=result.user_id)

    session_id = str(result.session.id)
    response.set_cookie(
        key=SESSION_COOKIE,
        value=session_id,
        httponly=True,
        samesite="lax",
        secure=config.cookie_secure,
        max_age=config.session_duration,
    )
    response.headers[SESSION_HEADER] = session_id

    return LoginResponse(
        token=result.tokens.access_token,
        refresh=result.tokens.refresh_token,
        session_id=result.session.id,
        user=result.user,
        notice=result.notice,
    )


@router.post(
    "/auth/logout",
    summary="End session",
    description="Revoke the access and refresh tokens and end the current session.",
    operation_id="logout",
    responses={
        200: {"description": "Successfully logged out"},
        400: {"model": ErrorResponse, "description": "Refresh-Token header missing"},
        401: {"model": ErrorResponse, "description": "Not authenticated"},
        500: {"model": ErrorResponse, "description": "Logout did not complete"},
    },
)
async def logout(
    app: AppDep,
    ctx: AuthDep,
    response: Response,
    refresh_token: Annotated[str | None, Header(alias="Refresh-Token")] = None,
) -> MessageResponse:
    if not refresh_token:
        raise InvalidInputError("Refresh-Token header is required")
    await app.logout(ctx, refresh_token)
    response.delete_cookie(SESSION_COOKIE)
    return MessageResponse(message="Successfully logged out")


@router.post(
    "/auth/token/refresh",
    summary="Refresh tokens",
    description="Exchange the refresh token (sent as the bearer token) for a new token pair.",
    operation_id="refreshToken",
    responses={
        200: {"description": "New token pair"},
        401: {"model": ErrorResponse, "description": "Refresh token invalid, expired or revoked"},
    },
)
async def refresh_token(app: AppDep, token: BearerTokenDep) -> RefreshResponse:
    tokens = await app.refresh(token)
    return RefreshResponse(access_token=tokens.access_token, new_refresh_token=tokens.refresh_token)
