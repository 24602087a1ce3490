"""
TrustGate Auth - Key Management

KeyStore answers "which key signs now / which key verifies this token";
KeyRotationManager creates new provider key generations and retires old
ones. The active key is always re-read from storage, never cached.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from trustgate.config import KeySettings

from .audit import AuditEventType, AuditTrail
from .core import Clock, ConsumerStore, KeyStatus, ProviderKey, ProviderKeyStore, utcnow
from .crypto import CryptoError, KeyAlgorithm, SecretBox, generate_id, generate_key_pair
from .faults import AUTH_CONFIGURATION_ERROR, AUTH_KEY_INVARIANT_VIOLATION, AUTH_KEY_NOT_FOUND

logger = logging.getLogger("trustgate.auth.keys")


@dataclass(frozen=True)
class ConsumerKey:
    """Public half of a consumer's request-signing key."""
    public_key: str
    algorithm: str
    version: int


class KeyStore:
    """
    Read side of key management.

    - Current signing key (active and inside its validity window)
    - Historical keys for verification (active or inactive, never revoked)
    - Consumer public keys for request signatures
    """

    def __init__(
        self,
        provider_keys: ProviderKeyStore,
        consumers: ConsumerStore,
        secret_box: SecretBox,
        clock: Clock = utcnow,
    ):
        self.provider_keys = provider_keys
        self.consumers = consumers
        self.secret_box = secret_box
        self.clock = clock

    async def get_active_key(self, now: datetime | None = None) -> ProviderKey | None:
        """
        The single active key usable for signing at ``now``.

        Raises:
            AUTH_KEY_INVARIANT_VIOLATION: more than one key is active
        """
        now = now or self.clock()
        active = await self.provider_keys.list_keys(KeyStatus.ACTIVE)
        if len(active) > 1:
            raise AUTH_KEY_INVARIANT_VIOLATION(key_ids=[k.id for k in active])
        if active and active[0].is_within_validity(now):
            return active[0]
        return None

    async def load_signing_key(self, now: datetime | None = None) -> tuple[ProviderKey, str]:
        """
        Active key plus its decrypted private PEM.

        Raises:
            AUTH_CONFIGURATION_ERROR: no usable active key
        """
        key = await self.get_active_key(now)
        if key is None:
            raise AUTH_CONFIGURATION_ERROR(reason="no active provider key")

        try:
            private_pem = self.secret_box.decrypt(key.private_key_encrypted)
        except CryptoError as e:
            raise AUTH_CONFIGURATION_ERROR(
                reason="provider key could not be decrypted", key_id=key.id
            ) from e

        return key, private_pem

    async def get_verification_key(self, key_id: str) -> ProviderKey | None:
        """Key by id if it may still verify signatures."""
        key = await self.provider_keys.get(key_id)
        if key and key.can_verify():
            return key
        return None

    async def published_keys(self) -> list[dict[str, Any]]:
        """Public material of every non-revoked key, newest first."""
        keys = await self.provider_keys.list_keys()
        return [k.public_descriptor() for k in reversed(keys) if k.can_verify()]

    async def get_consumer_key(self, consumer_id: str) -> ConsumerKey | None:
        consumer = await self.consumers.get(consumer_id)
        if consumer is None or not consumer.public_key:
            return None
        return ConsumerKey(
            public_key=consumer.public_key,
            algorithm=consumer.key_algorithm,
            version=consumer.key_version,
        )


class KeyRotationManager:
    """
    Provider key lifecycle.

    Rotation is one store transaction: every active key becomes inactive
    and the new key is inserted active with version max+1. Revocation only
    moves active/inactive to revoked.
    """

    def __init__(
        self,
        provider_keys: ProviderKeyStore,
        secret_box: SecretBox,
        settings: KeySettings | None = None,
        clock: Clock = utcnow,
        audit: AuditTrail | None = None,
    ):
        self.provider_keys = provider_keys
        self.secret_box = secret_box
        self.settings = settings or KeySettings()
        self.clock = clock
        self.audit = audit or AuditTrail(clock=clock)

    async def rotate(
        self,
        algorithm: str | None = None,
        created_by: str | None = None,
        valid_days: int | None = None,
        key_size: int | None = None,
    ) -> ProviderKey:
        """Generate, encrypt and activate a new provider key."""
        algorithm = KeyAlgorithm.normalize(algorithm or self.settings.algorithm)

        # Key generation and encryption happen before the store transaction
        public_pem, private_pem = generate_key_pair(algorithm, key_size or self.settings.key_size)
        now = self.clock()
        candidate = ProviderKey(
            id=generate_id(),
            public_key=public_pem,
            private_key_encrypted=self.secret_box.encrypt(private_pem),
            algorithm=algorithm,
            valid_from=now,
            valid_until=now + timedelta(days=valid_days or self.settings.valid_days),
            created_by=created_by,
            created_at=now,
        )

        key = await self.provider_keys.rotate(candidate)
        logger.info(
            f"Rotated provider key: version={key.version} algorithm={key.algorithm} "
            f"valid_until={key.valid_until.isoformat()}"
        )
        await self.audit.success(
            AuditEventType.KEY_ROTATED,
            key_id=key.id,
            version=key.version,
            algorithm=key.algorithm,
            created_by=created_by,
        )
        return key

    async def revoke(self, key_id: str, revoked_by: str | None = None) -> bool:
        """
        Revoke a key. Returns False if it was already revoked.

        Raises:
            AUTH_KEY_NOT_FOUND: unknown key id
        """
        if await self.provider_keys.get(key_id) is None:
            raise AUTH_KEY_NOT_FOUND(key_id=key_id)

        revoked = await self.provider_keys.revoke(key_id, revoked_by, self.clock())
        if revoked:
            logger.warning(f"Revoked provider key {key_id}")
            await self.audit.success(AuditEventType.KEY_REVOKED, key_id=key_id, revoked_by=revoked_by)
        return revoked

    async def rotate_expiring(
        self,
        now: datetime | None = None,
        warning_days: int | None = None,
        created_by: str | None = "scheduler",
    ) -> ProviderKey | None:
        """
        Rotate if the active key expires within the warning threshold.

        Also rotates when the only active key has already expired. Returns
        the new key, or None if no rotation was needed.
        """
        now = now or self.clock()
        threshold = now + timedelta(
            days=self.settings.warning_days if warning_days is None else warning_days
        )

        active = await self.verify_invariant()
        if active is None:
            return None
        if active.valid_until > threshold:
            return None

        logger.info(
            f"Provider key version {active.version} expires {active.valid_until.isoformat()}, rotating"
        )
        return await self.rotate(algorithm=active.algorithm, created_by=created_by)

    async def verify_invariant(self) -> ProviderKey | None:
        """
        Check that at most one key is active.

        Returns the active key (or None). More than one active key is
        surfaced, not repaired.

        Raises:
            AUTH_KEY_INVARIANT_VIOLATION: more than one key is active
        """
        active = await self.provider_keys.list_keys(KeyStatus.ACTIVE)
        if len(active) > 1:
            logger.critical(
                f"Provider key invariant violated: {len(active)} active keys "
                f"(versions {[k.version for k in active]})"
            )
            raise AUTH_KEY_INVARIANT_VIOLATION(key_ids=[k.id for k in active])
        if not active:
            logger.critical("No active provider key: token issuance is unavailable")
            return None
        return active[0]

    async def ensure_active_key(self, created_by: str | None = "bootstrap") -> ProviderKey:
        """Startup helper: verify the invariant and create a key if none is active."""
        active = await self.verify_invariant()
        if active is not None and active.is_within_validity(self.clock()):
            return active
        return await self.rotate(created_by=created_by)
