"""Tests for account registration and profile changes."""

from uuid import uuid4

import pytest

from tonotes.core.modules.user.service import PROFILE_CHANGE_COOLDOWN
from tonotes.errors import (
    InvalidCredentialsError,
    InvalidInputError,
    NotFoundError,
    RateLimitedError,
    UsernameTakenError,
    WeakPasswordError,
)


@pytest.fixture
async def alice(user_service):
    return await user_service.register("alice", "a@x", "Ab12!!")


class TestRegister:
    """Tests for user registration."""

    async def test_register(self, alice, clock, hasher):
        assert alice.username == "alice"
        assert alice.email == "a@x"
        assert alice.created_at == clock()
        assert alice.last_password_change is None
        assert not alice.two_factor_enabled
        assert hasher.verify(alice.password_hash, "Ab12!!")

    async def test_duplicate_username(self, user_service, alice):
        with pytest.raises(UsernameTakenError):
            await user_service.register("alice", "other@x", "Cd34??")

    async def test_weak_password(self, user_service):
        with pytest.raises(WeakPasswordError):
            await user_service.register("bobby", "b@x", "password")

    async def test_invalid_username(self, user_service):
        with pytest.raises(InvalidInputError):
            await user_service.register("bo", "b@x", "Ab12!!")

    async def test_invalid_email(self, user_service):
        with pytest.raises(InvalidInputError, match="email"):
            await user_service.register("bobby", "bob", "Ab12!!")


class TestAuthenticate:
    async def test_correct_password(self, user_service, alice):
        assert (await user_service.authenticate("alice", "Ab12!!")).id == alice.id

    async def test_unknown_user_and_wrong_password_look_the_same(self, user_service, alice):
        """Test that the error does not reveal whether the username exists."""
        with pytest.raises(InvalidCredentialsError) as unknown:
            await user_service.authenticate("mallory", "Ab12!!")
        with pytest.raises(InvalidCredentialsError) as wrong:
            await user_service.authenticate("alice", "Zz99??")
        assert str(unknown.value) == str(wrong.value)

    async def test_unknown_user_costs_one_verification(self, user_service, hasher, monkeypatch, alice):
        """Test that a missing username still runs argon2 so timing does not reveal it."""
        calls = []
        real_verify = hasher.verify

        def counting_verify(digest, plaintext):
            calls.append(digest)
            return real_verify(digest, plaintext)

        monkeypatch.setattr(hasher, "verify", counting_verify)
        with pytest.raises(InvalidCredentialsError):
            await user_service.authenticate("mallory", "Ab12!!")
        assert len(calls) == 1
        assert calls[0].startswith("$argon2id$")
        assert calls[0] != alice.password_hash

    async def test_inactive_user_rejected(self, user_service, user_repository, alice):
        user_repository.users[alice.id].is_active = False
        with pytest.raises(InvalidCredentialsError):
            await user_service.authenticate("alice", "Ab12!!")


class TestChangePassword:
    """Tests for password changes."""

    async def test_change_password(self, user_service, alice, clock):
        updated = await user_service.change_password(alice.id, "Ab12!!", "Cd34??")
        assert updated.last_password_change == clock()
        await user_service.authenticate("alice", "Cd34??")
        with pytest.raises(InvalidCredentialsError):
            await user_service.authenticate("alice", "Ab12!!")

    async def test_wrong_old_password(self, user_service, alice):
        with pytest.raises(InvalidCredentialsError):
            await user_service.change_password(alice.id, "Wrong1!!", "Cd34??")

    async def test_weak_new_password(self, user_service, alice):
        with pytest.raises(WeakPasswordError):
            await user_service.change_password(alice.id, "Ab12!!", "weak")

    async def test_same_password(self, user_service, alice):
        with pytest.raises(InvalidInputError, match="same as current"):
            await user_service.change_password(alice.id, "Ab12!!", "Ab12!!")

    async def test_rate_limited(self, user_service, alice, clock):
        """Test that a second change within 14 days is refused with the next allowed time."""
        await user_service.change_password(alice.id, "Ab12!!", "Cd34??")
        changed_at = clock()
        clock.advance(days=13)
        with pytest.raises(RateLimitedError) as exc_info:
            await user_service.change_password(alice.id, "Cd34??", "Ef56%%")
        assert exc_info.value.next_allowed_change == changed_at + PROFILE_CHANGE_COOLDOWN

        clock.advance(days=1)
        await user_service.change_password(alice.id, "Cd34??", "Ef56%%")

    async def test_rate_limit_checked_before_old_password(self, user_service, alice):
        await user_service.change_password(alice.id, "Ab12!!", "Cd34??")
        with pytest.raises(RateLimitedError):
            await user_service.change_password(alice.id, "not it", "Ef56%%")

    async def test_unknown_user(self, user_service):
        with pytest.raises(NotFoundError):
            await user_service.change_password(uuid4(), "Ab12!!", "Cd34??")


class TestChangeEmail:
    async def test_change_email(self, user_service, alice, clock):
        updated = await user_service.change_email(alice.id, "alice@example.com")
        assert updated.email == "alice@example.com"
        assert updated.last_email_change == clock()

    async def test_same_email(self, user_service, alice):
        with pytest.raises(InvalidInputError):
            await user_service.change_email(alice.id, "a@x")

    async def test_rate_limited(self, user_service, alice, clock):
        await user_service.change_email(alice.id, "alice@example.com")
        clock.advance(days=7)
        with pytest.raises(RateLimitedError):
            await user_service.change_email(alice.id, "alice@example.org")
        clock.advance(days=7)
        await user_service.change_email(alice.id, "alice@example.org")


class TestDeleteUser:
    async def test_delete(self, user_service, alice):
        await user_service.delete_user(alice.id)
        with pytest.raises(NotFoundError):
            await user_service.get_user(alice.id)

    async def test_delete_unknown(self, user_service, alice):
        await user_service.delete_user(alice.id)
        with pytest.raises(NotFoundError):
            await user_service.delete_user(alice.id)
