import math

import structlog
from redis.asyncio import Redis
from redis.exceptions import RedisError

from tonotes.core.modules.token.models import TokenKind
from tonotes.core.modules.token.service import TokenService
from tonotes.errors import RevocationFailedError, UnauthorizedError

logger = structlog.get_logger(__name__)

REVOKED_SENTINEL = "true"


def revocation_key(kind: TokenKind, token: str) -> str:
    return f"blacklist:{kind.value}:{token}"


class RevocationList:
    """Redis-backed set of revoked tokens, each kept until its natural expiry.

    Failure policy towards Redis is asymmetric:

    - ``is_revoked`` fails OPEN: if Redis is unreachable the token is treated as
      not revoked, so already-authenticated traffic keeps flowing during an
      outage. Tokens revoked shortly before the outage may be accepted again
      until Redis recovers or the token expires.
    - ``revoke_pair`` fails CLOSED: any write failure raises
      RevocationFailedError so the caller can refuse to report a completed logout.
    """

    def __init__(self, client: Redis, tokens: TokenService) -> None:
        self._client = client
        self._tokens = tokens

    async def revoke_pair(self, access_token: str, refresh_token: str) -> None:
        """Revoke both tokens; both are attempted even if the first one fails."""
        failed: list[str] = []
        for kind, token in ((TokenKind.ACCESS, access_token), (TokenKind.REFRESH, refresh_token)):
            try:
                await self.revoke(kind, token)
            except (RedisError, UnauthorizedError) as e:
                logger.warning("token_revocation_failed", kind=kind.value, error=str(e))
                failed.append(kind.value)

        if failed:
            raise RevocationFailedError(f"Failed to revoke {', '.join(failed)} token")

    async def revoke_access(self, access_token: str) -> None:
        """Revoke one access token. Fails closed like revoke_pair."""
        try:
            await self.revoke(TokenKind.ACCESS, access_token)
        except RedisError as e:
            logger.warning("token_revocation_failed", kind=TokenKind.ACCESS.value, error=str(e))
            raise RevocationFailedError("Failed to revoke access token") from e

    async def revoke(self, kind: TokenKind, token: str) -> bool:
        """Record a single token as revoked. Returns False if it had already expired."""
        remaining = self._tokens.remaining_lifetime(token)
        ttl = math.ceil(remaining.total_seconds())
        if ttl <= 0:
            return False
        await self._client.set(revocation_key(kind, token), REVOKED_SENTINEL, ex=ttl)
        logger.debug("token_revoked", kind=kind.value, ttl=ttl)
        return True

    async def is_revoked(self, token: str) -> bool:
        """Check both namespaces in one round trip."""
        try:
            async with self._client.pipeline(transaction=False) as pipe:
                pipe.exists(revocation_key(TokenKind.ACCESS, token))
                pipe.exists(revocation_key(TokenKind.REFRESH, token))
                access_hits, refresh_hits = await pipe.execute()
        except RedisError as e:
            logger.warning("revocation_check_failed_open", error=str(e))
            return False
        return bool(access_hits) or bool(refresh_hits)

    async def close(self) -> None:
        await self._client.aclose()
