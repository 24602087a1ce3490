"""
TrustGate Auth - Memory Stores

In-memory reference implementations of the storage protocols. Each store
serialises writes through an ``asyncio.Lock`` and hands out copies, so a
caller can never mutate a stored record outside an atomic operation.

Stores:
- MemoryUserStore: users, lockout counter, MFA configuration
- MemoryConsumerStore: registered consumers
- MemoryProviderKeyStore: provider key generations
- MemoryTokenStore: issued token records
"""

from __future__ import annotations

import asyncio
import copy
from datetime import datetime
from typing import Callable, TypeVar

from .core import (
    Consumer,
    FailedAttempt,
    KeyStatus,
    MfaConfiguration,
    ProviderKey,
    TokenRecord,
    User,
)

T = TypeVar("T")


class MemoryUserStore:
    """In-memory user storage for development/testing."""

    def __init__(self):
        self._users: dict[str, User] = {}
        self._by_username: dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def create(self, user: User) -> User:
        async with self._lock:
            if user.id in self._users:
                raise ValueError(f"User {user.id} already exists")
            if user.username in self._by_username:
                raise ValueError(f"Username {user.username!r} already taken")
            if user.email and any(u.email == user.email for u in self._users.values()):
                raise ValueError(f"Email {user.email!r} already registered")

            self._users[user.id] = copy.deepcopy(user)
            self._by_username[user.username] = user.id
            return copy.deepcopy(user)

    async def get(self, user_id: str) -> User | None:
        user = self._users.get(user_id)
        return copy.deepcopy(user) if user else None

    async def get_by_username(self, username: str) -> User | None:
        """Exact, case-sensitive lookup."""
        user_id = self._by_username.get(username)
        return await self.get(user_id) if user_id else None

    def _require(self, user_id: str) -> User:
        user = self._users.get(user_id)
        if user is None:
            raise KeyError(f"User {user_id} not found")
        return user

    async def record_failed_attempt(
        self, user_id: str, threshold: int, now: datetime
    ) -> FailedAttempt:
        async with self._lock:
            user = self._require(user_id)
            user.failed_attempts += 1
            if user.failed_attempts >= threshold and not user.is_locked:
                user.is_locked = True
                user.locked_at = now
            user.updated_at = now
            return FailedAttempt(failed_attempts=user.failed_attempts, locked=user.is_locked)

    async def record_success(
        self, user_id: str, now: datetime, password_hash: str | None = None
    ) -> bool:
        async with self._lock:
            user = self._require(user_id)
            if user.is_locked:
                return False
            user.failed_attempts = 0
            user.last_login = now
            if password_hash is not None:
                user.password_hash = password_hash
            user.updated_at = now
            return True

    async def unlock(self, user_id: str, now: datetime) -> bool:
        async with self._lock:
            user = self._require(user_id)
            was_locked = user.is_locked or user.failed_attempts > 0
            user.is_locked = False
            user.locked_at = None
            user.failed_attempts = 0
            user.updated_at = now
            return was_locked

    async def set_active(self, user_id: str, active: bool, now: datetime) -> bool:
        async with self._lock:
            user = self._require(user_id)
            changed = user.is_active != active
            user.is_active = active
            user.updated_at = now
            return changed

    async def set_password(self, user_id: str, password_hash: str, now: datetime) -> None:
        async with self._lock:
            user = self._require(user_id)
            user.password_hash = password_hash
            user.password_changed_at = now
            user.updated_at = now

    async def mutate_mfa(
        self, user_id: str, mutator: Callable[[MfaConfiguration], T]
    ) -> T:
        async with self._lock:
            user = self._require(user_id)
            draft = copy.deepcopy(user.mfa)
            result = mutator(draft)
            if not draft.is_consistent():
                raise ValueError("MFA enabled without a verified preferred method")
            user.mfa = draft
            return result


class MemoryConsumerStore:
    """In-memory consumer storage for development/testing."""

    def __init__(self):
        self._consumers: dict[str, Consumer] = {}
        self._lock = asyncio.Lock()

    async def create(self, consumer: Consumer) -> Consumer:
        async with self._lock:
            if consumer.id in self._consumers:
                raise ValueError(f"Consumer {consumer.id} already exists")
            if any(c.name == consumer.name for c in self._consumers.values()):
                raise ValueError(f"Consumer name {consumer.name!r} already taken")
            self._consumers[consumer.id] = copy.deepcopy(consumer)
            return copy.deepcopy(consumer)

    async def get(self, consumer_id: str) -> Consumer | None:
        consumer = self._consumers.get(consumer_id)
        return copy.deepcopy(consumer) if consumer else None

    async def get_by_name(self, name: str) -> Consumer | None:
        for consumer in self._consumers.values():
            if consumer.name == name:
                return copy.deepcopy(consumer)
        return None

    async def update(self, consumer: Consumer) -> Consumer:
        async with self._lock:
            if consumer.id not in self._consumers:
                raise KeyError(f"Consumer {consumer.id} not found")
            self._consumers[consumer.id] = copy.deepcopy(consumer)
            return copy.deepcopy(consumer)


class MemoryProviderKeyStore:
    """In-memory provider key storage for development/testing."""

    def __init__(self):
        self._keys: dict[str, ProviderKey] = {}
        self._lock = asyncio.Lock()

    async def get(self, key_id: str) -> ProviderKey | None:
        key = self._keys.get(key_id)
        return copy.deepcopy(key) if key else None

    async def list_keys(self, status: KeyStatus | None = None) -> list[ProviderKey]:
        keys = [k for k in self._keys.values() if status is None or k.status == status]
        return [copy.deepcopy(k) for k in sorted(keys, key=lambda k: k.version)]

    async def insert(self, key: ProviderKey) -> ProviderKey:
        """Raw insert with no status handling. Used to seed or restore state."""
        async with self._lock:
            self._keys[key.id] = copy.deepcopy(key)
            return copy.deepcopy(key)

    async def rotate(self, key: ProviderKey) -> ProviderKey:
        async with self._lock:
            if key.id in self._keys:
                raise ValueError(f"Provider key {key.id} already exists")

            # Build the next state completely before swapping it in
            staged = copy.deepcopy(self._keys)
            for existing in staged.values():
                if existing.status == KeyStatus.ACTIVE:
                    existing.status = KeyStatus.INACTIVE

            new_key = copy.deepcopy(key)
            new_key.version = max((k.version for k in staged.values()), default=0) + 1
            new_key.status = KeyStatus.ACTIVE
            staged[new_key.id] = new_key

            self._keys = staged
            return copy.deepcopy(new_key)

    async def revoke(self, key_id: str, revoked_by: str | None, now: datetime) -> bool:
        async with self._lock:
            key = self._keys.get(key_id)
            if key is None:
                raise KeyError(f"Provider key {key_id} not found")
            if key.status == KeyStatus.REVOKED:
                return False
            key.status = KeyStatus.REVOKED
            key.revoked_at = now
            key.revoked_by = revoked_by
            return True


class MemoryTokenStore:
    """In-memory token record storage for development/testing."""

    def __init__(self):
        self._tokens: dict[str, TokenRecord] = {}
        self._by_hash: dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def create(self, record: TokenRecord) -> TokenRecord:
        async with self._lock:
            if record.token_hash in self._by_hash:
                raise ValueError("Token hash collision")
            self._tokens[record.id] = copy.deepcopy(record)
            self._by_hash[record.token_hash] = record.id
            return copy.deepcopy(record)

    async def get(self, token_id: str) -> TokenRecord | None:
        record = self._tokens.get(token_id)
        return copy.deepcopy(record) if record else None

    async def find_by_hash(self, token_hash: str) -> TokenRecord | None:
        token_id = self._by_hash.get(token_hash)
        return await self.get(token_id) if token_id else None

    async def revoke(self, token_id: str, now: datetime) -> bool:
        async with self._lock:
            record = self._tokens.get(token_id)
            if record is None:
                raise KeyError(f"Token {token_id} not found")
            if record.is_revoked:
                return False
            record.is_revoked = True
            record.revoked_at = now
            return True

    async def revoke_all_for_user(self, user_id: str, now: datetime) -> int:
        async with self._lock:
            targets = [
                r for r in self._tokens.values()
                if r.user_id == user_id and not r.is_revoked and r.expires_at > now
            ]
            for record in targets:
                record.is_revoked = True
                record.revoked_at = now
            return len(targets)

    async def purge(self, cutoff: datetime) -> int:
        async with self._lock:
            doomed = [
                r.id for r in self._tokens.values()
                if r.expires_at < cutoff or (r.is_revoked and r.revoked_at and r.revoked_at < cutoff)
            ]
            for token_id in doomed:
                record = self._tokens.pop(token_id)
                self._by_hash.pop(record.token_hash, None)
            return len(doomed)

    async def list_for_user(self, user_id: str) -> list[TokenRecord]:
        records = [r for r in self._tokens.values() if r.user_id == user_id]
        return [copy.deepcopy(r) for r in sorted(records, key=lambda r: r.created_at)]
