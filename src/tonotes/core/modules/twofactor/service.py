import base64
import hashlib
import io
import secrets
from uuid import UUID

import pyotp
import qrcode
import structlog

from tonotes.core.service import Service
from tonotes.core.modules.user.models import User
from tonotes.core.modules.user.repository import UserRepository
from tonotes.errors import (
    InvalidRecoveryCodeError,
    InvalidTwoFactorError,
    NotFoundError,
    TwoFactorAlreadyEnabledError,
    TwoFactorNotEnabledError,
)
from tonotes.utils import Clock, now

logger = structlog.get_logger(__name__)

TOTP_ISSUER = "ToNotes"
RECOVERY_CODE_COUNT = 10
# Accept the previous and next 30-second step to tolerate clock drift
TOTP_VALID_WINDOW = 1

LAST_RECOVERY_CODE_WARNING = "You have used your last recovery code. Please generate new recovery codes."


def generate_recovery_code() -> str:
    raw = secrets.token_hex(4).upper()
    return f"{raw[:4]}-{raw[4:]}"


def hash_recovery_code(code: str) -> str:
    """Digest a recovery code; dashes and case are ignored."""
    normalized = code.replace("-", "").strip().upper()
    return hashlib.sha256(normalized.encode()).hexdigest()


def qr_code_data_uri(provisioning_uri: str) -> str:
    """Render a provisioning URI as a base64 PNG data URI."""
    image = qrcode.make(provisioning_uri)
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode()


class TwoFactorService(Service):
    """TOTP second factor and single-use recovery codes."""

    def __init__(self, repository: UserRepository, clock: Clock = now) -> None:
        self._repository = repository
        self._clock = clock

    def generate_secret(self, user: User) -> tuple[str, str]:
        """Return a new base32 secret and its QR code. Nothing is stored until enable()."""
        if user.two_factor_enabled:
            raise TwoFactorAlreadyEnabledError
        secret = pyotp.random_base32()
        uri = pyotp.TOTP(secret).provisioning_uri(name=user.email, issuer_name=TOTP_ISSUER)
        return secret, qr_code_data_uri(uri)

    async def enable(self, user_id: UUID, secret: str, code: str) -> list[str]:
        """Enable 2FA with a secret confirmed by a code from the authenticator app.

        Returns the plaintext recovery codes; only their digests are stored.
        """
        user = await self._get_user(user_id)
        if user.two_factor_enabled:
            raise TwoFactorAlreadyEnabledError
        if not self._check_code(secret, code):
            raise InvalidTwoFactorError

        codes = [generate_recovery_code() for _ in range(RECOVERY_CODE_COUNT)]
        if not await self._repository.enable_two_factor(user_id, secret, [hash_recovery_code(c) for c in codes]):
            # Lost a race with another enable request
            raise TwoFactorAlreadyEnabledError
        logger.info("two_factor_enabled", user_id=str(user_id))
        return codes

    async def verify(self, user_id: UUID, code: str) -> bool:
        user = await self._get_user(user_id)
        if not user.two_factor_enabled or user.two_factor_secret is None:
            raise TwoFactorNotEnabledError
        return self._check_code(user.two_factor_secret, code)

    async def consume_recovery(self, user_id: UUID, code: str) -> tuple[int, str | None]:
        """Use up a recovery code. Returns the number of codes left and an optional warning."""
        user = await self._get_user(user_id)
        if not user.two_factor_enabled:
            raise TwoFactorNotEnabledError

        remaining = await self._repository.pull_recovery_code(user_id, hash_recovery_code(code))
        if remaining is None:
            logger.warning("recovery_code_rejected", user_id=str(user_id))
            raise InvalidRecoveryCodeError
        logger.info("recovery_code_used", user_id=str(user_id), remaining=remaining)
        return remaining, LAST_RECOVERY_CODE_WARNING if remaining == 0 else None

    async def disable(self, user_id: UUID, code: str) -> None:
        if not await self.verify(user_id, code):
            raise InvalidTwoFactorError
        await self._repository.disable_two_factor(user_id)
        logger.info("two_factor_disabled", user_id=str(user_id))

    def _check_code(self, secret: str, code: str) -> bool:
        code = code.strip()
        if len(code) != 6 or not code.isdigit():
            return False
        try:
            return pyotp.TOTP(secret).verify(code, for_time=self._clock(), valid_window=TOTP_VALID_WINDOW)
        except ValueError:
            # Secret is not valid base32
            return False

    async def _get_user(self, user_id: UUID) -> User:
        user = await self._repository.get(user_id)
        if user is None:
            raise NotFoundError(f"User '{user_id}' not found")
        return user
