"""
TrustGate Auth - Token Management

Bearer tokens have two trust layers:

- The wrapper (HS256 JWT, server-side secret) authenticates the reference
  to a token record and carries the raw secret.
- The record's provider signature (asymmetric, pinned key generation)
  authenticates the record's content to consumers holding the provider
  public key.

Only the SHA-256 of the secret is stored; lookups go by that hash.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

import jwt

from trustgate.config import TokenSettings

from .audit import AuditEventType, AuditTrail
from .core import Clock, Consumer, TokenRecord, TokenStore, User, utcnow
from .crypto import canonical_json, generate_id, random_token, sha256_hex, sign, verify_signature
from .faults import (
    AUTH_ACCOUNT_INACTIVE,
    AUTH_ACCOUNT_LOCKED,
    AUTH_CONSUMER_INVALID,
    AUTH_CONSUMER_MISMATCH,
    AUTH_SIGNATURE_INVALID,
    AUTH_TOKEN_EXPIRED,
    AUTH_TOKEN_INVALID,
    AUTH_TOKEN_NOT_FOUND,
    AUTH_TOKEN_REVOKED,
)
from .keys import KeyStore

logger = logging.getLogger("trustgate.auth.tokens")


# ============================================================================
# Bearer Wrapper
# ============================================================================

@dataclass(frozen=True)
class BearerClaims:
    subject: str
    consumer: str
    token_id: str
    secret: str
    issued_at: datetime
    expires_at: datetime


class BearerCodec:
    """
    Encodes and decodes the compact bearer wrapper.

    Claims: ``sub`` (user id), ``consumer`` (consumer name), ``tid`` (token
    record id), ``sec`` (raw token secret), ``iat``, ``exp``, ``iss``.
    Expiry is not enforced here: the token record is authoritative, so an
    expired token fails as expired rather than as malformed.
    """

    REQUIRED_CLAIMS = ["sub", "consumer", "tid", "sec", "iat", "exp"]

    def __init__(self, secret: str, algorithm: str = "HS256", issuer: str = "trustgate"):
        if not secret:
            raise ValueError("Bearer secret cannot be empty")
        self._secret = secret
        self.algorithm = algorithm
        self.issuer = issuer

    def encode(
        self,
        *,
        user_id: str,
        consumer_name: str,
        token_id: str,
        secret: str,
        issued_at: datetime,
        expires_at: datetime,
    ) -> str:
        payload = {
            "sub": user_id,
            "consumer": consumer_name,
            "tid": token_id,
            "sec": secret,
            "iat": int(issued_at.timestamp()),
            "exp": int(expires_at.timestamp()),
            "iss": self.issuer,
        }
        return jwt.encode(payload, self._secret, algorithm=self.algorithm)

    def decode(self, token: str) -> BearerClaims:
        """
        Raises:
            AUTH_TOKEN_INVALID: bad signature, wrong issuer, or missing claims
        """
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self.algorithm],
                issuer=self.issuer,
                options={
                    "require": self.REQUIRED_CLAIMS,
                    "verify_exp": False,
                    "verify_iat": False,
                    "verify_nbf": False,
                },
            )
            return BearerClaims(
                subject=str(payload["sub"]),
                consumer=str(payload["consumer"]),
                token_id=str(payload["tid"]),
                secret=str(payload["sec"]),
                issued_at=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
                expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
            )
        except jwt.InvalidTokenError as e:
            raise AUTH_TOKEN_INVALID(reason=str(e)) from e
        except (KeyError, TypeError, ValueError, OverflowError) as e:
            raise AUTH_TOKEN_INVALID(reason=f"malformed payload: {e}") from e


# ============================================================================
# Issuance
# ============================================================================

@dataclass(frozen=True)
class IssuedToken:
    bearer: str
    token_id: str
    expires_at: datetime
    provider_key_version: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "token": self.bearer,
            "token_type": "Bearer",
            "token_id": self.token_id,
            "expires_at": self.expires_at.isoformat(),
        }


class TokenIssuer:
    """Issues tokens bound to a user, a consumer, and the active provider key."""

    def __init__(
        self,
        tokens: TokenStore,
        key_store: KeyStore,
        codec: BearerCodec,
        settings: TokenSettings | None = None,
        clock: Clock = utcnow,
    ):
        self.tokens = tokens
        self.key_store = key_store
        self.codec = codec
        self.settings = settings or TokenSettings()
        self.clock = clock

    async def issue(
        self,
        user: User,
        consumer: Consumer,
        metadata: dict[str, Any] | None = None,
        ttl_seconds: int | None = None,
    ) -> IssuedToken:
        """
        Issue a token. The raw secret exists only in the returned bearer.

        Raises:
            AUTH_CONFIGURATION_ERROR: no active provider key
        """
        if not user.is_active:
            raise AUTH_ACCOUNT_INACTIVE(user_id=user.id)
        if user.is_locked:
            raise AUTH_ACCOUNT_LOCKED(user_id=user.id)
        if not consumer.is_active:
            raise AUTH_CONSUMER_INVALID(consumer_id=consumer.id)

        now = self.clock()
        key, private_pem = await self.key_store.load_signing_key(now)

        secret = random_token(32)
        record = TokenRecord(
            id=generate_id(),
            user_id=user.id,
            consumer_id=consumer.id,
            token_hash=sha256_hex(secret),
            signature="",
            provider_key_id=key.id,
            provider_key_version=key.version,
            expires_at=now + timedelta(seconds=ttl_seconds or self.settings.ttl_seconds),
            metadata=dict(metadata or {}),
            created_at=now,
        )
        record.signature = sign(canonical_json(record.signing_payload()), private_pem, key.algorithm)
        await self.tokens.create(record)

        bearer = self.codec.encode(
            user_id=user.id,
            consumer_name=consumer.name,
            token_id=record.id,
            secret=secret,
            issued_at=now,
            expires_at=record.expires_at,
        )
        logger.info(
            f"Issued token {record.id} for user {user.id} / consumer {consumer.id} "
            f"(key v{key.version})"
        )
        return IssuedToken(
            bearer=bearer,
            token_id=record.id,
            expires_at=record.expires_at,
            provider_key_version=key.version,
        )


# ============================================================================
# Validation
# ============================================================================

class TokenValidator:
    """Validates presented bearer tokens. Every rejection fails closed."""

    def __init__(
        self,
        tokens: TokenStore,
        key_store: KeyStore,
        codec: BearerCodec,
        clock: Clock = utcnow,
    ):
        self.tokens = tokens
        self.key_store = key_store
        self.codec = codec
        self.clock = clock

    async def validate(self, bearer: str, consumer_id: str, now: datetime | None = None) -> TokenRecord:
        """
        Validate a bearer token presented by ``consumer_id``.

        Raises:
            AUTH_TOKEN_INVALID: wrapper malformed or forged
            AUTH_TOKEN_NOT_FOUND: no record for the secret
            AUTH_TOKEN_REVOKED / AUTH_TOKEN_EXPIRED: record no longer usable
            AUTH_CONSUMER_MISMATCH: issued to another consumer
            AUTH_SIGNATURE_INVALID: provider signature does not verify
        """
        record = await self.resolve(bearer)

        if record.is_revoked:
            raise AUTH_TOKEN_REVOKED(token_id=record.id)

        if record.is_expired(now or self.clock()):
            raise AUTH_TOKEN_EXPIRED(token_id=record.id, expired_at=record.expires_at.isoformat())

        if record.consumer_id != consumer_id:
            raise AUTH_CONSUMER_MISMATCH(
                token_id=record.id, expected=record.consumer_id, presented=consumer_id
            )

        if not await self.verify_record_signature(record):
            raise AUTH_SIGNATURE_INVALID(token_id=record.id, key_id=record.provider_key_id)

        return record

    async def resolve(self, bearer: str) -> TokenRecord:
        """Map a bearer to its record without checking usability."""
        claims = self.codec.decode(bearer)

        # Look up by the hash of the secret, never by the decoded id
        record = await self.tokens.find_by_hash(sha256_hex(claims.secret))
        if record is None or record.id != claims.token_id or record.user_id != claims.subject:
            raise AUTH_TOKEN_NOT_FOUND(token_id=claims.token_id)
        return record

    async def verify_record_signature(self, record: TokenRecord) -> bool:
        """Check the provider signature with the key generation pinned on the record."""
        key = await self.key_store.get_verification_key(record.provider_key_id)
        if key is None:
            return False
        return verify_signature(
            canonical_json(record.signing_payload()),
            record.signature,
            key.public_key,
            key.algorithm,
        )


# ============================================================================
# Revocation
# ============================================================================

class TokenRevoker:
    """Single and bulk revocation, plus the retention sweep."""

    def __init__(
        self,
        tokens: TokenStore,
        settings: TokenSettings | None = None,
        clock: Clock = utcnow,
        audit: AuditTrail | None = None,
    ):
        self.tokens = tokens
        self.settings = settings or TokenSettings()
        self.clock = clock
        self.audit = audit or AuditTrail(clock=clock)

    async def revoke(self, token_id: str) -> bool:
        """
        Revoke one token. Returns False if it was already revoked.

        Raises:
            AUTH_TOKEN_NOT_FOUND: unknown token id
        """
        record = await self.tokens.get(token_id)
        if record is None:
            raise AUTH_TOKEN_NOT_FOUND(token_id=token_id)
        revoked = await self.tokens.revoke(token_id, self.clock())
        if revoked:
            logger.info(f"Revoked token {token_id}")
            await self.audit.success(
                AuditEventType.TOKEN_REVOKED,
                user_id=record.user_id,
                consumer_id=record.consumer_id,
                token_id=token_id,
            )
        return revoked

    async def revoke_all_for_user(self, user_id: str) -> int:
        """Revoke every unexpired, unrevoked token of a user in one batch."""
        count = await self.tokens.revoke_all_for_user(user_id, self.clock())
        logger.info(f"Revoked {count} token(s) for user {user_id}")
        if count:
            await self.audit.success(AuditEventType.TOKEN_REVOKED, user_id=user_id, tokens_revoked=count)
        return count

    async def cleanup(self, retention_days: int | None = None, now: datetime | None = None) -> int:
        """Purge tokens expired, or revoked, before the retention cutoff."""
        days = self.settings.retention_days if retention_days is None else retention_days
        cutoff = (now or self.clock()) - timedelta(days=days)
        purged = await self.tokens.purge(cutoff)
        logger.info(f"Token cleanup purged {purged} record(s) older than {cutoff.isoformat()}")
        return purged

    async def list_active(self, user_id: str) -> list[TokenRecord]:
        now = self.clock()
        return [
            r for r in await self.tokens.list_for_user(user_id)
            if not r.is_revoked and not r.is_expired(now)
        ]
