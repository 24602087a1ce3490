"""
TrustGate Auth - Multi-Factor Authentication

One strategy per method (TOTP, SMS one-time code, email one-time code)
behind a shared ``check`` contract, plus single-use backup codes accepted
for any method once MFA is enabled.

Every state change goes through ``UserStore.mutate_mfa`` so a code is
checked and consumed in the same atomic update.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import secrets
import struct
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import ClassVar, Protocol
from urllib.parse import quote

from trustgate.config import MfaSettings

from .audit import AuditEventType, AuditTrail
from .core import (
    Clock,
    EmailConfig,
    MethodConfig,
    MfaConfiguration,
    MfaMethod,
    OtpChannelConfig,
    SmsConfig,
    TotpConfig,
    User,
    UserStore,
    utcnow,
)
from .credentials import CredentialVerifier
from .crypto import constant_time_equals, sha256_hex
from .faults import (
    AUTH_INVALID_CREDENTIALS,
    AUTH_MFA_ALREADY_ENROLLED,
    AUTH_MFA_INVALID,
    AUTH_MFA_NOT_ENROLLED,
    AUTH_OTP_DELIVERY_FAILED,
    AUTH_USER_NOT_FOUND,
)

logger = logging.getLogger("trustgate.auth.mfa")

BACKUP_CODE_ALPHABET = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"


class MfaOutcome(str, Enum):
    """Result of checking a code against one method record."""
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EXPIRED = "expired"
    NO_PENDING_CODE = "no_pending_code"


# ============================================================================
# Notification Dispatch
# ============================================================================

@dataclass(frozen=True)
class DeliveryResult:
    delivered: bool
    error: str | None = None


class NotificationDispatcher(Protocol):
    """Out-of-band transport for one-time codes. The broker never retries."""

    async def send_one_time_code(
        self, destination: str, code: str, channel: MfaMethod
    ) -> DeliveryResult: ...


def mask_destination(destination: str) -> str:
    """``alice@example.com`` -> ``a***@example.com``, ``+15551234567`` -> ``***4567``."""
    if "@" in destination:
        local, _, domain = destination.partition("@")
        return f"{local[:1]}***@{domain}"
    return f"***{destination[-4:]}"


class LoggingDispatcher:
    """
    Development dispatcher: records the delivery in the log instead of
    sending it. The code itself is never logged.
    """

    def __init__(self, logger_name: str = "trustgate.notifications"):
        self.logger = logging.getLogger(logger_name)

    async def send_one_time_code(
        self, destination: str, code: str, channel: MfaMethod
    ) -> DeliveryResult:
        self.logger.info(
            f"[{channel.value.upper()}] one-time code for {mask_destination(destination)} "
            f"({len(code)} digits)"
        )
        return DeliveryResult(delivered=True)


# ============================================================================
# TOTP (RFC 6238)
# ============================================================================

class TotpGenerator:
    """
    RFC 6238 code generation. Compatible with Google Authenticator, Authy, etc.
    """

    def __init__(self, issuer: str = "TrustGate", digits: int = 6, period: int = 30):
        self.issuer = issuer
        self.digits = digits
        self.period = period

    def generate_secret(self) -> str:
        """160-bit random secret, base32 without padding."""
        return base64.b32encode(secrets.token_bytes(20)).decode("utf-8").rstrip("=")

    def generate_code(self, secret: str, timestamp: int) -> str:
        counter = timestamp // self.period
        secret_bytes = base64.b32decode(secret + "=" * (-len(secret) % 8))

        digest = hmac.new(secret_bytes, struct.pack(">Q", counter), hashlib.sha1).digest()

        # Dynamic truncation
        offset = digest[-1] & 0x0F
        code = struct.unpack(">I", digest[offset : offset + 4])[0] & 0x7FFFFFFF

        return str(code % (10 ** self.digits)).zfill(self.digits)

    def verify_code(self, secret: str, code: str, timestamp: int, window: int = 1) -> bool:
        """Accept codes from ``window`` periods either side of ``timestamp``."""
        for step in range(-window, window + 1):
            expected = self.generate_code(secret, timestamp + step * self.period)
            if constant_time_equals(code, expected):
                return True
        return False

    def provisioning_uri(self, secret: str, account_name: str) -> str:
        """otpauth:// URI for QR code generation."""
        label = quote(f"{self.issuer}:{account_name}")
        return (
            f"otpauth://totp/{label}"
            f"?secret={secret}"
            f"&issuer={quote(self.issuer)}"
            f"&algorithm=SHA1"
            f"&digits={self.digits}"
            f"&period={self.period}"
        )


# ============================================================================
# Strategies
# ============================================================================

class MfaStrategy(ABC):
    """Checks a submitted code against one method record."""

    method: ClassVar[MfaMethod]

    @abstractmethod
    def check(self, config: MethodConfig, code: str, now: datetime) -> MfaOutcome:
        ...


class TotpStrategy(MfaStrategy):
    method = MfaMethod.TOTP

    def __init__(self, generator: TotpGenerator, window: int = 1):
        self.generator = generator
        self.window = window

    def check(self, config: TotpConfig, code: str, now: datetime) -> MfaOutcome:
        if self.generator.verify_code(config.secret, code, int(now.timestamp()), self.window):
            return MfaOutcome.ACCEPTED
        return MfaOutcome.REJECTED


class OtpChannelStrategy(MfaStrategy):
    """Exact match against the pending code, within its expiry."""

    def check(self, config: OtpChannelConfig, code: str, now: datetime) -> MfaOutcome:
        if not config.has_pending_code():
            return MfaOutcome.NO_PENDING_CODE
        if now >= config.pending_code_expires_at:
            return MfaOutcome.EXPIRED
        if constant_time_equals(sha256_hex(code), config.pending_code_hash):
            return MfaOutcome.ACCEPTED
        return MfaOutcome.REJECTED


class SmsOtpStrategy(OtpChannelStrategy):
    method = MfaMethod.SMS


class EmailOtpStrategy(OtpChannelStrategy):
    method = MfaMethod.EMAIL


# ============================================================================
# Results
# ============================================================================

@dataclass(frozen=True)
class TotpEnrollment:
    secret: str
    provisioning_uri: str


@dataclass(frozen=True)
class CodeDispatch:
    """A one-time code was committed and handed to the dispatcher."""
    method: MfaMethod
    destination: str
    expires_at: datetime


@dataclass(frozen=True)
class MfaVerification:
    method: MfaMethod
    used_backup_code: bool
    backup_codes_remaining: int


@dataclass(frozen=True)
class MfaStatus:
    enabled: bool
    preferred_method: MfaMethod | None
    verified_methods: list[MfaMethod] = field(default_factory=list)
    pending_methods: list[MfaMethod] = field(default_factory=list)
    backup_codes_remaining: int = 0
    disabled_at: datetime | None = None


def generate_backup_codes(count: int = 10) -> list[str]:
    """Codes formatted ``XXXXX-XXXXX`` over 0-9A-Z."""
    def group() -> str:
        return "".join(secrets.choice(BACKUP_CODE_ALPHABET) for _ in range(5))

    return [f"{group()}-{group()}" for _ in range(count)]


def hash_backup_code(code: str) -> str:
    return sha256_hex(code.strip().upper())


# ============================================================================
# MFA Engine
# ============================================================================

class MfaEngine:
    """
    Enrollment, login-time verification, and management of second factors.
    """

    def __init__(
        self,
        users: UserStore,
        credentials: CredentialVerifier,
        dispatcher: NotificationDispatcher | None = None,
        settings: MfaSettings | None = None,
        clock: Clock = utcnow,
        audit: AuditTrail | None = None,
    ):
        self.users = users
        self.credentials = credentials
        self.dispatcher = dispatcher or LoggingDispatcher()
        self.settings = settings or MfaSettings()
        self.clock = clock
        self.audit = audit or AuditTrail(clock=clock)

        self.totp = TotpGenerator(
            issuer=self.settings.issuer,
            digits=self.settings.digits,
            period=self.settings.period,
        )
        self.strategies: dict[MfaMethod, MfaStrategy] = {
            MfaMethod.TOTP: TotpStrategy(self.totp, window=self.settings.window),
            MfaMethod.SMS: SmsOtpStrategy(),
            MfaMethod.EMAIL: EmailOtpStrategy(),
        }

    # ------------------------------------------------------------------
    # Enrollment
    # ------------------------------------------------------------------

    async def setup_totp(self, user_id: str) -> TotpEnrollment:
        """Create an unverified TOTP record and return the shared secret."""
        user = await self._require_user(user_id)
        secret = self.totp.generate_secret()
        now = self.clock()

        def stage(mfa: MfaConfiguration) -> None:
            self._ensure_not_enabled(mfa, user_id)
            mfa.totp = TotpConfig(secret=secret, enrolled_at=now)

        await self.users.mutate_mfa(user_id, stage)
        logger.info(f"TOTP setup started for user {user_id}")

        return TotpEnrollment(
            secret=secret,
            provisioning_uri=self.totp.provisioning_uri(secret, user.email or user.username),
        )

    async def setup_sms(self, user_id: str, phone_number: str) -> CodeDispatch:
        """Create an unverified SMS record and send a setup code."""
        await self._require_user(user_id)
        return await self._setup_channel(user_id, SmsConfig, phone_number)

    async def setup_email(self, user_id: str, email: str | None = None) -> CodeDispatch:
        """Create an unverified email record (defaults to the account email) and send a setup code."""
        user = await self._require_user(user_id)
        destination = email or user.email
        if not destination:
            raise ValueError("No email address available for email MFA")
        return await self._setup_channel(user_id, EmailConfig, destination)

    async def _setup_channel(
        self, user_id: str, config_cls: type[OtpChannelConfig], destination: str
    ) -> CodeDispatch:
        code = self._generate_numeric_code()
        now = self.clock()
        expires_at = now + timedelta(seconds=self.settings.setup_code_ttl)

        def stage(mfa: MfaConfiguration) -> None:
            self._ensure_not_enabled(mfa, user_id)
            mfa.put(config_cls(
                destination=destination,
                pending_code_hash=sha256_hex(code),
                pending_code_expires_at=expires_at,
                enrolled_at=now,
            ))

        await self.users.mutate_mfa(user_id, stage)
        logger.info(f"{config_cls.method.value.upper()} MFA setup started for user {user_id}")

        await self._dispatch(user_id, destination, code, config_cls.method)
        return CodeDispatch(method=config_cls.method, destination=mask_destination(destination), expires_at=expires_at)

    async def verify_and_enable(self, user_id: str, method: MfaMethod, code: str) -> list[str]:
        """
        Verify a pending method and enable MFA with it.

        Returns:
            The plaintext backup codes. They are not retrievable again.

        Raises:
            AUTH_MFA_NOT_ENROLLED: no pending record for ``method``
            AUTH_MFA_INVALID: wrong or expired code (no state changes)
        """
        method = MfaMethod(method)
        await self._require_user(user_id)
        strategy = self.strategies[method]
        backup_codes = generate_backup_codes(self.settings.backup_code_count)
        now = self.clock()

        def enable(mfa: MfaConfiguration) -> MfaOutcome:
            self._ensure_not_enabled(mfa, user_id)
            config = mfa.get(method)
            if config is None:
                raise AUTH_MFA_NOT_ENROLLED(user_id=user_id, method=method.value)

            outcome = strategy.check(config, code.strip(), now)
            if outcome is not MfaOutcome.ACCEPTED:
                return outcome

            config.verified = True
            config.verified_at = now
            config.backup_codes = [hash_backup_code(c) for c in backup_codes]
            if isinstance(config, OtpChannelConfig):
                config.clear_pending_code()
            mfa.enabled = True
            mfa.preferred_method = method
            return outcome

        outcome = await self.users.mutate_mfa(user_id, enable)
        if outcome is not MfaOutcome.ACCEPTED:
            raise AUTH_MFA_INVALID(user_id=user_id, method=method.value, outcome=outcome.value)

        await self.audit.success(AuditEventType.MFA_ENABLED, user_id=user_id, method=method.value)
        logger.info(f"MFA enabled for user {user_id} with {method.value}")
        return backup_codes

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    async def send_login_code(self, user_id: str) -> CodeDispatch | None:
        """
        Issue a login code for SMS/email methods. Returns None for TOTP.

        The code is committed before dispatch; a delivery failure leaves it
        valid.
        """
        user = await self._require_user(user_id)
        if not user.mfa.enabled:
            raise AUTH_MFA_NOT_ENROLLED(user_id=user_id)

        config = user.mfa.preferred()
        if not isinstance(config, OtpChannelConfig):
            return None

        code = self._generate_numeric_code()
        expires_at = self.clock() + timedelta(seconds=self.settings.login_code_ttl)

        def stage(mfa: MfaConfiguration) -> None:
            current = mfa.preferred()
            if not isinstance(current, OtpChannelConfig):
                raise AUTH_MFA_NOT_ENROLLED(user_id=user_id)
            current.pending_code_hash = sha256_hex(code)
            current.pending_code_expires_at = expires_at

        await self.users.mutate_mfa(user_id, stage)
        await self._dispatch(user_id, config.destination, code, config.method)
        return CodeDispatch(method=config.method, destination=mask_destination(config.destination), expires_at=expires_at)

    async def verify(self, user_id: str, code: str) -> MfaVerification:
        """
        Login-time verification.

        Backup codes are tried first and removed on use. Otherwise the
        preferred method's strategy decides; SMS/email codes are consumed
        on success and on expiry.

        Raises:
            AUTH_MFA_NOT_ENROLLED: MFA not enabled
            AUTH_MFA_INVALID: code rejected
        """
        submitted = code.strip()
        backup_digest = hash_backup_code(submitted)
        now = self.clock()

        def check(mfa: MfaConfiguration) -> tuple[MfaOutcome, MfaVerification | None]:
            if not mfa.enabled:
                raise AUTH_MFA_NOT_ENROLLED(user_id=user_id)
            config = mfa.preferred()

            for stored in config.backup_codes:
                if constant_time_equals(stored, backup_digest):
                    config.backup_codes.remove(stored)
                    return MfaOutcome.ACCEPTED, MfaVerification(
                        method=config.method,
                        used_backup_code=True,
                        backup_codes_remaining=len(config.backup_codes),
                    )

            outcome = self.strategies[config.method].check(config, submitted, now)
            if isinstance(config, OtpChannelConfig) and outcome in (MfaOutcome.ACCEPTED, MfaOutcome.EXPIRED):
                config.clear_pending_code()

            if outcome is not MfaOutcome.ACCEPTED:
                return outcome, None
            return outcome, MfaVerification(
                method=config.method,
                used_backup_code=False,
                backup_codes_remaining=len(config.backup_codes),
            )

        outcome, verification = await self.users.mutate_mfa(user_id, check)
        if verification is None:
            raise AUTH_MFA_INVALID(user_id=user_id, outcome=outcome.value)

        if verification.used_backup_code:
            logger.info(
                f"Backup code used by user {user_id}, {verification.backup_codes_remaining} remaining"
            )
        return verification

    # ------------------------------------------------------------------
    # Management
    # ------------------------------------------------------------------

    async def disable(self, user_id: str, password: str) -> None:
        """
        Disable MFA after re-verifying the account password.

        Clears every method record; keeps when and which method was disabled.
        """
        await self._require_password(user_id, password)
        now = self.clock()

        def clear(mfa: MfaConfiguration) -> str:
            if not mfa.enabled:
                raise AUTH_MFA_NOT_ENROLLED(user_id=user_id)
            method = mfa.preferred_method.value
            mfa.clear(now)
            return method

        method = await self.users.mutate_mfa(user_id, clear)
        await self.audit.success(AuditEventType.MFA_DISABLED, user_id=user_id, method=method)
        logger.warning(f"MFA disabled for user {user_id}")

    async def regenerate_backup_codes(self, user_id: str, password: str) -> list[str]:
        """Replace all backup codes after re-verifying the account password."""
        await self._require_password(user_id, password)
        codes = generate_backup_codes(self.settings.backup_code_count)

        def replace(mfa: MfaConfiguration) -> None:
            if not mfa.enabled:
                raise AUTH_MFA_NOT_ENROLLED(user_id=user_id)
            mfa.preferred().backup_codes = [hash_backup_code(c) for c in codes]

        await self.users.mutate_mfa(user_id, replace)
        await self.audit.success(
            AuditEventType.BACKUP_CODES_REGENERATED, user_id=user_id, count=len(codes)
        )
        logger.info(f"Backup codes regenerated for user {user_id}")
        return codes

    async def status(self, user_id: str) -> MfaStatus:
        user = await self._require_user(user_id)
        mfa = user.mfa
        preferred = mfa.preferred()
        return MfaStatus(
            enabled=mfa.enabled,
            preferred_method=mfa.preferred_method,
            verified_methods=mfa.verified_methods(),
            pending_methods=[m for m in MfaMethod if (c := mfa.get(m)) is not None and not c.verified],
            backup_codes_remaining=len(preferred.backup_codes) if preferred else 0,
            disabled_at=mfa.disabled_at,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _generate_numeric_code(self) -> str:
        return "".join(secrets.choice("0123456789") for _ in range(self.settings.digits))

    @staticmethod
    def _ensure_not_enabled(mfa: MfaConfiguration, user_id: str) -> None:
        if mfa.enabled:
            raise AUTH_MFA_ALREADY_ENROLLED(user_id=user_id, method=mfa.preferred_method.value)

    async def _require_user(self, user_id: str) -> User:
        user = await self.users.get(user_id)
        if user is None:
            raise AUTH_USER_NOT_FOUND(user_id=user_id)
        return user

    async def _require_password(self, user_id: str, password: str) -> None:
        await self._require_user(user_id)
        if not await self.credentials.check_password(user_id, password):
            raise AUTH_INVALID_CREDENTIALS(user_id=user_id)

    async def _dispatch(self, user_id: str, destination: str, code: str, channel: MfaMethod) -> None:
        try:
            result = await self.dispatcher.send_one_time_code(destination, code, channel)
        except Exception as e:
            logger.error(f"{channel.value} dispatch for user {user_id} raised: {e}")
            raise AUTH_OTP_DELIVERY_FAILED(user_id=user_id, channel=channel.value, reason=str(e)) from e

        if not result.delivered:
            logger.error(f"{channel.value} dispatch for user {user_id} failed: {result.error}")
            raise AUTH_OTP_DELIVERY_FAILED(user_id=user_id, channel=channel.value, reason=result.error)
