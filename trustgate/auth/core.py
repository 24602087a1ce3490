"""
TrustGate Auth - Core Types

Users, MFA configuration, consumers, provider keys, token records, audit
events, and the storage protocols the broker depends on.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, ClassVar, Protocol, TypeVar

T = TypeVar("T")


def utcnow() -> datetime:
    """Timezone-aware current time; the default clock for every component."""
    return datetime.now(timezone.utc)


Clock = Callable[[], datetime]


# ============================================================================
# MFA Configuration (one explicit record per method)
# ============================================================================

class MfaMethod(str, Enum):
    """Second-factor methods a user can enroll."""
    TOTP = "totp"
    SMS = "sms"
    EMAIL = "email"


@dataclass
class MethodConfig:
    """
    Fields shared by every MFA method record.

    ``backup_codes`` holds SHA-256 digests of the unused codes; plaintext
    codes are only ever returned once, at generation time.
    """
    method: ClassVar[MfaMethod]

    verified: bool = False
    backup_codes: list[str] = field(default_factory=list)
    enrolled_at: datetime | None = None
    verified_at: datetime | None = None


@dataclass
class TotpConfig(MethodConfig):
    method: ClassVar[MfaMethod] = MfaMethod.TOTP

    secret: str = ""


@dataclass
class OtpChannelConfig(MethodConfig):
    """Out-of-band one-time-code method (SMS or email)."""
    destination: str = ""
    pending_code_hash: str | None = None
    pending_code_expires_at: datetime | None = None

    def has_pending_code(self) -> bool:
        return self.pending_code_hash is not None

    def clear_pending_code(self) -> None:
        self.pending_code_hash = None
        self.pending_code_expires_at = None


@dataclass
class SmsConfig(OtpChannelConfig):
    method: ClassVar[MfaMethod] = MfaMethod.SMS


@dataclass
class EmailConfig(OtpChannelConfig):
    method: ClassVar[MfaMethod] = MfaMethod.EMAIL


@dataclass
class MfaConfiguration:
    """
    Per-user MFA state.

    Invariant: ``enabled`` implies the preferred method's record exists and
    is verified.
    """
    enabled: bool = False
    preferred_method: MfaMethod | None = None
    totp: TotpConfig | None = None
    sms: SmsConfig | None = None
    email: EmailConfig | None = None

    # Audit trail of the last disable
    disabled_at: datetime | None = None
    disabled_method: MfaMethod | None = None

    def get(self, method: MfaMethod) -> MethodConfig | None:
        return getattr(self, method.value)

    def put(self, config: MethodConfig) -> None:
        setattr(self, config.method.value, config)

    def preferred(self) -> MethodConfig | None:
        if self.preferred_method is None:
            return None
        return self.get(self.preferred_method)

    def verified_methods(self) -> list[MfaMethod]:
        return [m for m in MfaMethod if (c := self.get(m)) is not None and c.verified]

    def is_consistent(self) -> bool:
        if not self.enabled:
            return True
        preferred = self.preferred()
        return preferred is not None and preferred.verified

    def clear(self, now: datetime) -> None:
        self.disabled_at = now
        self.disabled_method = self.preferred_method
        self.enabled = False
        self.preferred_method = None
        self.totp = None
        self.sms = None
        self.email = None


# ============================================================================
# Principals
# ============================================================================

@dataclass
class User:
    """
    Human account authenticated by the broker.

    ``password_hash`` is an encoded Argon2id/PBKDF2 string; the salt is
    embedded in it.
    """
    id: str
    username: str
    password_hash: str
    email: str | None = None
    mfa: MfaConfiguration = field(default_factory=MfaConfiguration)
    is_active: bool = True
    is_locked: bool = False
    failed_attempts: int = 0
    locked_at: datetime | None = None
    last_login: datetime | None = None
    password_changed_at: datetime | None = None
    permissions: set[str] = field(default_factory=set)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def summary(self) -> dict[str, Any]:
        """Public, non-sensitive view of the user."""
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "mfa_enabled": self.mfa.enabled,
            "last_login": self.last_login.isoformat() if self.last_login else None,
        }


@dataclass(frozen=True)
class FailedAttempt:
    """Result of an atomic failed-attempt increment."""
    failed_attempts: int
    locked: bool


@dataclass
class Consumer:
    """Registered client application."""
    id: str
    name: str
    api_key_hash: str
    api_key_salt: str
    public_key: str
    key_algorithm: str = "RS256"
    key_version: int = 1
    allowed_ips: list[str] = field(default_factory=list)
    is_active: bool = True
    created_at: datetime = field(default_factory=utcnow)


# ============================================================================
# Provider Keys
# ============================================================================

class KeyStatus(str, Enum):
    """Provider key lifecycle. ``revoked`` is terminal."""
    ACTIVE = "active"
    INACTIVE = "inactive"
    REVOKED = "revoked"


@dataclass
class ProviderKey:
    """Broker signing key generation."""
    id: str
    public_key: str
    private_key_encrypted: str
    algorithm: str
    valid_from: datetime
    valid_until: datetime
    version: int = 0
    status: KeyStatus = KeyStatus.ACTIVE
    created_by: str | None = None
    created_at: datetime = field(default_factory=utcnow)
    revoked_at: datetime | None = None
    revoked_by: str | None = None

    def is_within_validity(self, now: datetime) -> bool:
        return self.valid_from <= now < self.valid_until

    def can_verify(self) -> bool:
        return self.status in (KeyStatus.ACTIVE, KeyStatus.INACTIVE)

    def public_descriptor(self) -> dict[str, Any]:
        return {
            "key_id": self.id,
            "version": self.version,
            "algorithm": self.algorithm,
            "public_key": self.public_key,
            "status": self.status.value,
            "valid_from": self.valid_from.isoformat(),
            "valid_until": self.valid_until.isoformat(),
        }


# ============================================================================
# Tokens
# ============================================================================

@dataclass
class TokenRecord:
    """
    Stored half of an issued token.

    Only the SHA-256 of the secret is kept. ``provider_key_id`` pins the
    exact key generation that produced ``signature``.
    """
    id: str
    user_id: str
    consumer_id: str
    token_hash: str
    signature: str
    provider_key_id: str
    provider_key_version: int
    expires_at: datetime
    is_revoked: bool = False
    revoked_at: datetime | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def signing_payload(self) -> dict[str, Any]:
        """Fields covered by the provider signature."""
        return {
            "user_id": self.user_id,
            "consumer_id": self.consumer_id,
            "token_hash": self.token_hash,
            "expires_at": self.expires_at.isoformat(),
        }


# ============================================================================
# Audit
# ============================================================================

class AuditStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass(frozen=True)
class AuditEvent:
    """Append-only record of an authentication-relevant transition."""
    event_type: str
    status: AuditStatus
    user_id: str | None = None
    consumer_id: str | None = None
    reason: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_type": self.event_type,
            "status": self.status.value,
            "user_id": self.user_id,
            "consumer_id": self.consumer_id,
            "reason": self.reason,
            "metadata": self.metadata,
            "occurred_at": self.occurred_at.isoformat(),
        }


# ============================================================================
# Storage Protocols
# ============================================================================

class UserStore(Protocol):
    """User records with atomic lockout and MFA mutation."""

    async def create(self, user: User) -> User: ...

    async def get(self, user_id: str) -> User | None: ...

    async def get_by_username(self, username: str) -> User | None: ...

    async def record_failed_attempt(
        self, user_id: str, threshold: int, now: datetime
    ) -> FailedAttempt:
        """Increment the counter and lock at ``threshold`` in one update."""
        ...

    async def record_success(
        self, user_id: str, now: datetime, password_hash: str | None = None
    ) -> bool:
        """Reset the counter unless the account is locked; False if locked."""
        ...

    async def unlock(self, user_id: str, now: datetime) -> bool: ...

    async def set_active(self, user_id: str, active: bool, now: datetime) -> bool: ...

    async def set_password(self, user_id: str, password_hash: str, now: datetime) -> None: ...

    async def mutate_mfa(
        self, user_id: str, mutator: Callable[[MfaConfiguration], T]
    ) -> T:
        """Apply ``mutator`` to a copy and commit only if it returns normally."""
        ...


class ConsumerStore(Protocol):
    async def create(self, consumer: Consumer) -> Consumer: ...

    async def get(self, consumer_id: str) -> Consumer | None: ...

    async def get_by_name(self, name: str) -> Consumer | None: ...

    async def update(self, consumer: Consumer) -> Consumer: ...


class ProviderKeyStore(Protocol):
    async def get(self, key_id: str) -> ProviderKey | None: ...

    async def list_keys(self, status: KeyStatus | None = None) -> list[ProviderKey]: ...

    async def rotate(self, key: ProviderKey) -> ProviderKey:
        """Deactivate every active key and insert ``key`` as active (version max+1), atomically."""
        ...

    async def revoke(self, key_id: str, revoked_by: str | None, now: datetime) -> bool:
        """Flip active/inactive to revoked; False if already revoked."""
        ...


class TokenStore(Protocol):
    async def create(self, record: TokenRecord) -> TokenRecord: ...

    async def get(self, token_id: str) -> TokenRecord | None: ...

    async def find_by_hash(self, token_hash: str) -> TokenRecord | None: ...

    async def revoke(self, token_id: str, now: datetime) -> bool: ...

    async def revoke_all_for_user(self, user_id: str, now: datetime) -> int: ...

    async def purge(self, cutoff: datetime) -> int: ...

    async def list_for_user(self, user_id: str) -> list[TokenRecord]: ...


class AuditSink(Protocol):
    async def emit(self, event: AuditEvent) -> None: ...
