from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from uuid import UUID

import structlog

from tonotes.core.core import Core
from tonotes.core.modules.auth.models import EVICTION_NOTICE, AuthContext, LoginChallenge, LoginResult
from tonotes.core.modules.session.models import ClientInfo, SessionView
from tonotes.core.modules.token.models import TokenKind, TokenPair
from tonotes.core.modules.user.models import UserView
from tonotes.errors import (
    ForbiddenError,
    InternalError,
    InvalidTwoFactorError,
    MalformedTokenError,
    NotFoundError,
    ServiceError,
    UnauthorizedError,
    WrongTokenKindError,
)

logger = structlog.get_logger(__name__)


def _user_id_from_subject(subject: str) -> UUID:
    try:
        return UUID(subject)
    except ValueError as e:
        raise MalformedTokenError from e


class App:
    """Facade for all auth operations; composes the services held by Core into request flows."""

    def __init__(self, core: Core) -> None:
        self._core = core

    @asynccontextmanager
    async def lifespan(self) -> AsyncGenerator[None]:
        """Application lifespan management - delegates to Core."""
        async with self._core.lifespan():
            yield

    # --- Registration and login ---

    async def register(self, username: str, email: str, password: str) -> tuple[UserView, TokenPair]:
        """Create an account and mint its first token pair. No session is opened."""
        user = await self._core.services.user.register(username, email, password)
        return UserView.from_domain(user), self._core.tokens.mint_pair(str(user.id))

    async def login(
        self, username: str, password: str, code: str | None, client: ClientInfo
    ) -> LoginResult | LoginChallenge:
        """Verify credentials and the optional TOTP code, then open a session and mint tokens."""
        services = self._core.services
        user = await services.user.authenticate(username, password)

        if user.two_factor_enabled:
            if not code:
                logger.info("login_requires_2fa", user_id=str(user.id))
                return LoginChallenge(user_id=user.id)
            if not await services.two_factor.verify(user.id, code):
                logger.warning("login_invalid_2fa", user_id=str(user.id))
                raise InvalidTwoFactorError

        session, evicted = await services.session.open(user.id, client)
        tokens = self._core.tokens.mint_pair(str(user.id))
        logger.info("user_logged_in", user_id=str(user.id), session_id=str(session.id), evicted=len(evicted))
        return LoginResult(
            tokens=tokens,
            session=session,
            user=UserView.from_domain(user),
            notice=EVICTION_NOTICE if evicted else None,
        )

    async def authenticate(self, access_token: str, session_id: UUID | None = None) -> AuthContext:
        """Resolve a bearer token and optional session id into a request identity.

        A presented session must be live, owned by the token's subject and not idle;
        resolving it records activity.
        """
        claims = self._core.tokens.parse(access_token)
        if claims.kind is not TokenKind.ACCESS:
            raise WrongTokenKindError
        if await self._core.revocation.is_revoked(access_token):
            raise UnauthorizedError("Token has been revoked")
        user_id = _user_id_from_subject(claims.sub)

        session = None
        if session_id is not None:
            session = await self._core.services.session.resolve(session_id, user_id)
            if session is None:
                raise UnauthorizedError("Session is no longer active")

        return AuthContext(claims=claims, user_id=user_id, access_token=access_token, session=session)

    async def refresh(self, refresh_token: str) -> TokenPair:
        """Exchange a refresh token for a new pair. The old refresh token stays valid."""
        subject = self._core.tokens.validate_refresh(refresh_token)
        if await self._core.revocation.is_revoked(refresh_token):
            raise UnauthorizedError("Token has been revoked")
        user_id = _user_id_from_subject(subject)
        try:
            await self._core.services.user.get_user(user_id)
        except NotFoundError as e:
            raise UnauthorizedError("User no longer exists") from e
        return self._core.tokens.mint_pair(subject)

    async def logout(self, ctx: AuthContext, refresh_token: str) -> None:
        """Revoke both tokens and end the current session.

        The refresh token must be a well-formed refresh token of the caller; an
        expired one is accepted since it needs no revocation entry. Both steps
        run even if the other fails; any failure is reported afterwards.
        """
        claims = self._core.tokens.inspect(refresh_token)
        if claims.kind is not TokenKind.REFRESH:
            raise WrongTokenKindError("Refresh token required")
        if _user_id_from_subject(claims.sub) != ctx.user_id:
            raise UnauthorizedError("Refresh token does not belong to the current user")

        failed = False
        try:
            await self._core.revocation.revoke_pair(ctx.access_token, refresh_token)
        except ServiceError:
            logger.exception("logout_revocation_failed", user_id=str(ctx.user_id))
            failed = True

        if ctx.session_id is not None:
            try:
                await self._core.services.session.end(ctx.session_id)
            except ServiceError:
                logger.exception("logout_session_end_failed", user_id=str(ctx.user_id), session_id=str(ctx.session_id))
                failed = True

        if failed:
            raise InternalError("Logout did not complete")
        logger.info("user_logged_out", user_id=str(ctx.user_id))

    async def logout_all(self, ctx: AuthContext) -> int:
        """End every session of the caller and revoke the access token used for the request."""
        ended = await self._core.services.session.end_all(ctx.user_id)
        await self._core.revocation.revoke_access(ctx.access_token)
        logger.info("user_logged_out_everywhere", user_id=str(ctx.user_id), ended=ended)
        return ended

    # --- Sessions ---

    async def list_sessions(self, ctx: AuthContext) -> list[SessionView]:
        sessions = await self._core.services.session.list_active(ctx.user_id)
        return [SessionView.from_domain(session, ctx.session_id) for session in sessions]

    async def get_session(self, ctx: AuthContext, session_id: UUID) -> SessionView:
        session = await self._core.services.session.get(session_id)
        if session is None:
            raise NotFoundError("Session not found")
        if session.user_id != ctx.user_id:
            raise ForbiddenError
        return SessionView.from_domain(session, ctx.session_id)

    async def end_session(self, ctx: AuthContext, session_id: UUID) -> None:
        """End one of the caller's own sessions."""
        await self.get_session(ctx, session_id)
        await self._core.services.session.end(session_id)

    # --- Two-factor authentication ---

    async def setup_two_factor(self, ctx: AuthContext) -> tuple[str, str]:
        user = await self._core.services.user.get_user(ctx.user_id)
        return self._core.services.two_factor.generate_secret(user)

    async def enable_two_factor(self, ctx: AuthContext, secret: str, code: str) -> list[str]:
        return await self._core.services.two_factor.enable(ctx.user_id, secret, code)

    async def verify_two_factor(self, ctx: AuthContext, code: str) -> None:
        if not await self._core.services.two_factor.verify(ctx.user_id, code):
            raise InvalidTwoFactorError

    async def disable_two_factor(self, ctx: AuthContext, code: str) -> None:
        await self._core.services.two_factor.disable(ctx.user_id, code)

    async def use_recovery_code(self, ctx: AuthContext, code: str) -> tuple[int, str | None]:
        return await self._core.services.two_factor.consume_recovery(ctx.user_id, code)

    # --- Profile ---

    async def get_profile(self, ctx: AuthContext) -> UserView:
        user = await self._core.services.user.get_user(ctx.user_id)
        return UserView.from_domain(user)

    async def change_password(self, ctx: AuthContext, old_password: str, new_password: str) -> UserView:
        user = await self._core.services.user.change_password(ctx.user_id, old_password, new_password)
        return UserView.from_domain(user)

    async def change_email(self, ctx: AuthContext, new_email: str) -> UserView:
        user = await self._core.services.user.change_email(ctx.user_id, new_email)
        return UserView.from_domain(user)

    async def delete_account(self, ctx: AuthContext) -> None:
        """Delete the caller's account along with all of its sessions.

        The access token is revoked before anything is deleted.
        """
        await self._core.revocation.revoke_access(ctx.access_token)
        sessions = self._core.services.session
        await sessions.end_all(ctx.user_id)
        await sessions.delete_all(ctx.user_id)
        await self._core.services.user.delete_user(ctx.user_id)
