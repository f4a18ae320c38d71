import secrets
from datetime import timedelta
from typing import Any

import structlog
from jose import JWTError, jwt
from pydantic import ValidationError as PydanticValidationError

from tonotes.core.modules.token.models import ALGORITHM, ISSUER, TokenClaims, TokenKind, TokenPair
from tonotes.errors import MalformedTokenError, TokenExpiredError, WrongTokenKindError
from tonotes.utils import Clock, now

logger = structlog.get_logger(__name__)


class TokenService:
    """Mints and validates HS256 access and refresh tokens.

    Both kinds share one signing secret. Parsing accepts HS256 only, so a token
    re-signed with ``none`` or an asymmetric algorithm is rejected as malformed.
    """

    def __init__(self, secret: str, access_ttl: timedelta, refresh_ttl: timedelta, clock: Clock = now) -> None:
        if not secret:
            raise ValueError("Token signing secret must not be empty")
        self._secret = secret
        self._access_ttl = access_ttl
        self._refresh_ttl = refresh_ttl
        self._clock = clock

    def mint_access(self, user_id: str) -> str:
        return self._mint(user_id, TokenKind.ACCESS)

    def mint_refresh(self, user_id: str) -> str:
        return self._mint(user_id, TokenKind.REFRESH)

    def mint_pair(self, user_id: str) -> TokenPair:
        return TokenPair(access_token=self.mint_access(user_id), refresh_token=self.mint_refresh(user_id))

    def parse(self, token: str) -> TokenClaims:
        """Verify signature, issuer and expiry and return the typed claims.

        Expiry is strict: a token whose ``exp`` equals the current second is expired.
        """
        claims = self._decode(token)
        if claims.exp <= int(self._clock().timestamp()):
            raise TokenExpiredError
        return claims

    def validate_refresh(self, token: str) -> str:
        """Return the subject of a valid refresh token."""
        claims = self.parse(token)
        if claims.kind != TokenKind.REFRESH:
            raise WrongTokenKindError("Refresh token required")
        return claims.sub

    def inspect(self, token: str) -> TokenClaims:
        """Verify signature and issuer but not expiry."""
        return self._decode(token)

    def remaining_lifetime(self, token: str) -> timedelta:
        """Time left until the token expires, zero if it already has.

        The signature is still verified; only the expiry check is skipped.
        """
        claims = self._decode(token)
        remaining = claims.exp - self._clock().timestamp()
        return timedelta(seconds=max(0.0, remaining))

    def _mint(self, user_id: str, kind: TokenKind) -> str:
        issued_at = int(self._clock().timestamp())
        ttl = self._refresh_ttl if kind == TokenKind.REFRESH else self._access_ttl
        claims: dict[str, Any] = {
            "sub": user_id,
            "iat": issued_at,
            "exp": issued_at + int(ttl.total_seconds()),
            "iss": ISSUER,
            "jti": secrets.token_hex(8),
        }
        if kind == TokenKind.REFRESH:
            claims["type"] = TokenKind.REFRESH.value
        return str(jwt.encode(claims, self._secret, algorithm=ALGORITHM))

    def _decode(self, token: str) -> TokenClaims:
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[ALGORITHM],
                issuer=ISSUER,
                # Expiry is checked against the injected clock in parse()
                options={"verify_exp": False, "verify_aud": False},
            )
        except JWTError as e:
            logger.debug("token_decode_failed", error=str(e))
            raise MalformedTokenError from e

        try:
            return TokenClaims.model_validate(payload)
        except PydanticValidationError as e:
            raise MalformedTokenError from e
