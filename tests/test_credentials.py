"""
Test 4: Credential Verification (auth/credentials.py, auth/stores.py)

Tests password verification, brute-force lockout, administrative unlock
and password changes.
"""

import asyncio

import pytest
import pytest_asyncio

from trustgate.auth.core import User
from trustgate.auth.credentials import CredentialVerifier
from trustgate.auth.faults import (
    AUTH_ACCOUNT_LOCKED,
    AUTH_INVALID_CREDENTIALS,
    AUTH_PASSWORD_WEAK,
    AUTH_USER_NOT_FOUND,
)
from trustgate.auth.hashing import PasswordHasher
from trustgate.auth.stores import MemoryUserStore
from trustgate.config import LockoutConfig

from tests.conftest import PASSWORD


class SlowLookupUserStore(MemoryUserStore):
    """Username lookup that yields to the loop, as a database round trip would."""

    async def get_by_username(self, username):
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        return await super().get_by_username(username)


@pytest.fixture
def verifier(user_store, hasher, clock):
    return CredentialVerifier(user_store, hasher, LockoutConfig(max_failed_attempts=5), clock=clock)


@pytest_asyncio.fixture
async def alice_user(user_store, hasher):
    return await user_store.create(User(id="u-alice", username="alice", password_hash=hasher.hash(PASSWORD)))


# ============================================================================
# Verification
# ============================================================================

class TestVerify:

    @pytest.mark.asyncio
    async def test_success(self, verifier, alice_user, clock):
        user = await verifier.verify("alice", PASSWORD)
        assert user.id == alice_user.id
        assert user.last_login == clock.now
        assert user.failed_attempts == 0

    @pytest.mark.asyncio
    async def test_wrong_password(self, verifier, alice_user, user_store):
        with pytest.raises(AUTH_INVALID_CREDENTIALS):
            await verifier.verify("alice", "Wrong-Password-1")
        assert (await user_store.get(alice_user.id)).failed_attempts == 1

    @pytest.mark.asyncio
    async def test_unknown_user_indistinguishable(self, verifier, alice_user):
        with pytest.raises(AUTH_INVALID_CREDENTIALS) as unknown:
            await verifier.verify("mallory", PASSWORD)
        with pytest.raises(AUTH_INVALID_CREDENTIALS) as wrong:
            await verifier.verify("alice", "Wrong-Password-1")

        assert unknown.value.code == wrong.value.code
        assert unknown.value.public_message == wrong.value.public_message

    @pytest.mark.asyncio
    async def test_username_is_case_sensitive(self, verifier, alice_user):
        with pytest.raises(AUTH_INVALID_CREDENTIALS):
            await verifier.verify("Alice", PASSWORD)

    @pytest.mark.asyncio
    async def test_inactive_user_rejected_as_invalid(self, verifier, alice_user, user_store, clock):
        await user_store.set_active(alice_user.id, False, clock())
        with pytest.raises(AUTH_INVALID_CREDENTIALS):
            await verifier.verify("alice", PASSWORD)

    @pytest.mark.asyncio
    async def test_success_resets_counter(self, verifier, alice_user, user_store):
        for _ in range(3):
            with pytest.raises(AUTH_INVALID_CREDENTIALS):
                await verifier.verify("alice", "Wrong-Password-1")
        await verifier.verify("alice", PASSWORD)
        assert (await user_store.get(alice_user.id)).failed_attempts == 0

    @pytest.mark.asyncio
    async def test_rehash_on_parameter_upgrade(self, user_store, hasher, clock):
        legacy = PasswordHasher(algorithm="pbkdf2_sha256", iterations=1000)
        await user_store.create(User(id="u-bob", username="bob", password_hash=legacy.hash(PASSWORD)))

        verifier = CredentialVerifier(user_store, hasher, clock=clock)
        await verifier.verify("bob", PASSWORD)

        stored = await user_store.get("u-bob")
        assert stored.password_hash.startswith("$argon2id$")
        assert hasher.verify(stored.password_hash, PASSWORD)


# ============================================================================
# Lockout
# ============================================================================

class TestLockout:

    @pytest.mark.asyncio
    async def test_alice_locked_on_fifth_failure(self, verifier, alice_user, user_store):
        for attempt in range(1, 5):
            with pytest.raises(AUTH_INVALID_CREDENTIALS):
                await verifier.verify("alice", "Wrong-Password-1")
            assert (await user_store.get(alice_user.id)).failed_attempts == attempt

        with pytest.raises(AUTH_ACCOUNT_LOCKED):
            await verifier.verify("alice", "Wrong-Password-1")

        stored = await user_store.get(alice_user.id)
        assert stored.is_locked
        assert stored.failed_attempts == 5

        # Correct password no longer helps
        with pytest.raises(AUTH_ACCOUNT_LOCKED):
            await verifier.verify("alice", PASSWORD)

    @pytest.mark.asyncio
    async def test_concurrent_failures_counted_exactly(self, verifier, alice_user, user_store):
        results = await asyncio.gather(
            *(verifier.verify("alice", "Wrong-Password-1") for _ in range(8)),
            return_exceptions=True,
        )

        locked = [r for r in results if isinstance(r, AUTH_ACCOUNT_LOCKED)]
        invalid = [r for r in results if isinstance(r, AUTH_INVALID_CREDENTIALS)]
        assert len(invalid) == 4
        assert len(locked) == 4

        stored = await user_store.get(alice_user.id)
        assert stored.is_locked
        assert stored.failed_attempts == 5

    @pytest.mark.asyncio
    async def test_correct_password_racing_locking_failure(self, hasher, clock):
        store = SlowLookupUserStore()
        await store.create(User(
            id="u-alice", username="alice", password_hash=hasher.hash(PASSWORD), failed_attempts=4,
        ))
        verifier = CredentialVerifier(store, hasher, LockoutConfig(max_failed_attempts=5), clock=clock)

        results = await asyncio.gather(
            verifier.verify("alice", "Wrong-Password-1"),
            verifier.verify("alice", PASSWORD),
            return_exceptions=True,
        )

        assert all(isinstance(r, AUTH_ACCOUNT_LOCKED) for r in results)
        stored = await store.get("u-alice")
        assert stored.is_locked
        assert stored.failed_attempts == 5
        assert stored.last_login is None

    @pytest.mark.asyncio
    async def test_unlock(self, verifier, alice_user, user_store):
        for _ in range(5):
            with pytest.raises((AUTH_INVALID_CREDENTIALS, AUTH_ACCOUNT_LOCKED)):
                await verifier.verify("alice", "Wrong-Password-1")

        assert await verifier.unlock(alice_user.id) is True
        stored = await user_store.get(alice_user.id)
        assert not stored.is_locked
        assert stored.failed_attempts == 0

        user = await verifier.verify("alice", PASSWORD)
        assert user.id == alice_user.id

    @pytest.mark.asyncio
    async def test_unlock_noop(self, verifier, alice_user):
        assert await verifier.unlock(alice_user.id) is False

    @pytest.mark.asyncio
    async def test_unlock_unknown_user(self, verifier):
        with pytest.raises(AUTH_USER_NOT_FOUND):
            await verifier.unlock("u-missing")

    @pytest.mark.asyncio
    async def test_custom_threshold(self, user_store, hasher, alice_user, clock):
        verifier = CredentialVerifier(user_store, hasher, LockoutConfig(max_failed_attempts=2), clock=clock)
        with pytest.raises(AUTH_INVALID_CREDENTIALS):
            await verifier.verify("alice", "Wrong-Password-1")
        with pytest.raises(AUTH_ACCOUNT_LOCKED):
            await verifier.verify("alice", "Wrong-Password-1")


# ============================================================================
# Password management
# ============================================================================

class TestPasswordChange:

    @pytest.mark.asyncio
    async def test_check_password(self, verifier, alice_user):
        assert await verifier.check_password(alice_user.id, PASSWORD)
        assert not await verifier.check_password(alice_user.id, "nope")
        assert not await verifier.check_password("u-missing", PASSWORD)

    @pytest.mark.asyncio
    async def test_check_password_does_not_count_failures(self, verifier, alice_user, user_store):
        await verifier.check_password(alice_user.id, "nope")
        assert (await user_store.get(alice_user.id)).failed_attempts == 0

    @pytest.mark.asyncio
    async def test_change_password(self, verifier, alice_user, user_store, clock):
        await verifier.change_password(alice_user.id, PASSWORD, "Brand-New-Pass-7")
        user = await verifier.verify("alice", "Brand-New-Pass-7")
        assert user.password_changed_at == clock.now

    @pytest.mark.asyncio
    async def test_change_password_wrong_current(self, verifier, alice_user):
        with pytest.raises(AUTH_INVALID_CREDENTIALS):
            await verifier.change_password(alice_user.id, "nope", "Brand-New-Pass-7")

    @pytest.mark.asyncio
    async def test_change_password_weak(self, verifier, alice_user):
        with pytest.raises(AUTH_PASSWORD_WEAK) as exc:
            await verifier.change_password(alice_user.id, PASSWORD, "short")
        assert exc.value.errors
