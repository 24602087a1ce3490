"""
TrustGate Auth - Credential Verification

Username/password verification with brute-force lockout.
"""

from __future__ import annotations

import logging

from trustgate.config import LockoutConfig

from .audit import AuditEventType, AuditTrail
from .core import Clock, User, UserStore, utcnow
from .faults import (
    AUTH_ACCOUNT_LOCKED,
    AUTH_INVALID_CREDENTIALS,
    AUTH_PASSWORD_WEAK,
    AUTH_USER_NOT_FOUND,
)
from .hashing import PasswordHasher, PasswordPolicy

logger = logging.getLogger("trustgate.auth.credentials")


class CredentialVerifier:
    """
    Verifies passwords and applies the lockout policy.

    An unknown or inactive username fails exactly like a wrong password
    (same fault, comparable hashing cost) so responses do not reveal which
    accounts exist.
    """

    def __init__(
        self,
        users: UserStore,
        hasher: PasswordHasher | None = None,
        lockout: LockoutConfig | None = None,
        policy: PasswordPolicy | None = None,
        clock: Clock = utcnow,
        audit: AuditTrail | None = None,
    ):
        self.users = users
        self.hasher = hasher or PasswordHasher()
        self.lockout = lockout or LockoutConfig()
        self.policy = policy or PasswordPolicy()
        self.clock = clock
        self.audit = audit or AuditTrail(clock=clock)

    async def verify(self, username: str, password: str) -> User:
        """
        Verify username and password.

        Raises:
            AUTH_INVALID_CREDENTIALS: unknown user or wrong password
            AUTH_ACCOUNT_LOCKED: account locked (before or by this attempt)
        """
        user = await self.users.get_by_username(username)
        if user is None or not user.is_active:
            self.hasher.verify_dummy(password)
            raise AUTH_INVALID_CREDENTIALS(username=username)

        if user.is_locked:
            raise AUTH_ACCOUNT_LOCKED(user_id=user.id)

        now = self.clock()
        if not self.hasher.verify(user.password_hash, password):
            attempt = await self.users.record_failed_attempt(
                user.id, self.lockout.max_failed_attempts, now
            )
            if attempt.locked:
                logger.warning(
                    f"Account {user.id} locked after {attempt.failed_attempts} failed attempts"
                )
                raise AUTH_ACCOUNT_LOCKED(
                    user_id=user.id, failed_attempts=attempt.failed_attempts
                )
            raise AUTH_INVALID_CREDENTIALS(
                username=username, failed_attempts=attempt.failed_attempts
            )

        new_hash = None
        if self.hasher.check_needs_rehash(user.password_hash):
            new_hash = self.hasher.hash(password)

        # Locked by a concurrent failure since the read above.
        if not await self.users.record_success(user.id, now, password_hash=new_hash):
            raise AUTH_ACCOUNT_LOCKED(user_id=user.id)
        return await self.users.get(user.id)

    async def check_password(self, user_id: str, password: str) -> bool:
        """Re-verify a password without touching the lockout counter."""
        user = await self.users.get(user_id)
        if user is None:
            self.hasher.verify_dummy(password)
            return False
        return self.hasher.verify(user.password_hash, password)

    async def change_password(self, user_id: str, current_password: str, new_password: str) -> None:
        """
        Replace a password after re-verifying the current one.

        Raises:
            AUTH_INVALID_CREDENTIALS: current password wrong
            AUTH_PASSWORD_WEAK: new password fails the policy
        """
        if not await self.check_password(user_id, current_password):
            await self.audit.failure(
                AuditEventType.PASSWORD_CHANGED, AUTH_INVALID_CREDENTIALS.code, user_id=user_id
            )
            raise AUTH_INVALID_CREDENTIALS(user_id=user_id)

        valid, errors = self.policy.validate(new_password)
        if not valid:
            await self.audit.failure(
                AuditEventType.PASSWORD_CHANGED, AUTH_PASSWORD_WEAK.code, user_id=user_id
            )
            raise AUTH_PASSWORD_WEAK(errors=errors)

        await self.users.set_password(user_id, self.hasher.hash(new_password), self.clock())
        await self.audit.success(AuditEventType.PASSWORD_CHANGED, user_id=user_id)
        logger.info(f"Password changed for user {user_id}")

    async def unlock(self, user_id: str) -> bool:
        """
        Administrative unlock: clears the lock flag and the counter.

        Returns False if the account was neither locked nor had failures.
        """
        if await self.users.get(user_id) is None:
            raise AUTH_USER_NOT_FOUND(user_id=user_id)
        return await self.users.unlock(user_id, self.clock())
