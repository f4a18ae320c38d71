"""Argon2id password hashing."""

import secrets

from argon2 import PasswordHasher as Argon2Hasher
from argon2 import Type
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError

from tonotes.core.modules.user.validators import validate_password
from tonotes.errors import MalformedDigestError

MEMORY_COST_KIB = 64 * 1024
TIME_COST = 3
PARALLELISM = 2
HASH_LENGTH = 32
SALT_LENGTH = 16


class PasswordHasher:
    """Hashes and verifies passwords.

    Digests are argon2id PHC strings (``$argon2id$v=19$m=...,t=...,p=...$salt$key``),
    so the salt and cost parameters travel with the digest and verification
    needs no side table.
    """

    def __init__(
        self,
        memory_cost: int = MEMORY_COST_KIB,
        time_cost: int = TIME_COST,
        parallelism: int = PARALLELISM,
    ) -> None:
        self._hasher = Argon2Hasher(
            time_cost=time_cost,
            memory_cost=memory_cost,
            parallelism=parallelism,
            hash_len=HASH_LENGTH,
            salt_len=SALT_LENGTH,
            type=Type.ID,
        )
        self._dummy_digest: str | None = None

    def hash(self, plaintext: str) -> str:
        """Hash a password after checking it against the password policy."""
        validate_password(plaintext)
        return self._hasher.hash(plaintext)

    def verify(self, digest: str, plaintext: str) -> bool:
        """Check a password against a stored digest in constant time."""
        try:
            return self._hasher.verify(digest, plaintext)
        except VerifyMismatchError:
            return False
        except InvalidHashError as e:
            raise MalformedDigestError("Stored password digest cannot be parsed") from e
        except VerificationError:
            return False

    def verify_dummy(self, plaintext: str) -> None:
        """Verify against a throwaway digest so the attempt costs the same as verify().

        Used on login attempts for unknown usernames.
        """
        if self._dummy_digest is None:
            self._dummy_digest = self._hasher.hash(secrets.token_urlsafe(16))
        self.verify(self._dummy_digest, plaintext)
