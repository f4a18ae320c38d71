"""Tests for argon2id password hashing."""

import pytest

from tonotes.core.modules.password.hasher import PasswordHasher
from tonotes.errors import MalformedDigestError, WeakPasswordError


class TestPasswordHasher:
    """Tests for PasswordHasher."""

    def test_digest_is_argon2id_phc_string(self, hasher):
        """Test that digests are self-describing argon2id strings."""
        digest = hasher.hash("Ab12!!")
        assert digest.startswith("$argon2id$v=19$")

    def test_default_parameters_recorded_in_digest(self):
        """Test that the production cost parameters are embedded in the digest."""
        digest = PasswordHasher().hash("Ab12!!")
        assert "m=65536,t=3,p=2" in digest

    def test_verify_correct_password(self, hasher):
        digest = hasher.hash("Ab12!!")
        assert hasher.verify(digest, "Ab12!!") is True

    def test_verify_wrong_password(self, hasher):
        digest = hasher.hash("Ab12!!")
        assert hasher.verify(digest, "Ab12!?") is False

    def test_same_password_gets_distinct_salts(self, hasher):
        """Test that hashing the same password twice yields different digests."""
        assert hasher.hash("Ab12!!") != hasher.hash("Ab12!!")

    def test_digest_from_other_parameters_still_verifies(self, hasher):
        """Test that verification reads cost parameters from the digest itself."""
        digest = PasswordHasher(memory_cost=2048, time_cost=2, parallelism=1).hash("Ab12!!")
        assert hasher.verify(digest, "Ab12!!") is True

    def test_hash_enforces_policy(self, hasher):
        with pytest.raises(WeakPasswordError):
            hasher.hash("password")

    def test_malformed_digest_raises(self, hasher):
        """Test that an unparsable stored digest is a server-side error, not a mismatch."""
        with pytest.raises(MalformedDigestError):
            hasher.verify("not-a-digest", "Ab12!!")

    def test_verify_dummy_never_raises(self, hasher):
        """Test that the throwaway verification accepts any input, even a policy-violating one."""
        hasher.verify_dummy("x")
        hasher.verify_dummy("Ab12!!")
