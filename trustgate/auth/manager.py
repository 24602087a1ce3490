"""
TrustGate Auth - Authentication Orchestrator

Central coordinator for the login and per-request flows. Runs consumer
trust, request signatures, credentials, MFA and token issuance in order,
routes every fault through the FaultEngine, and emits audit events.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, AsyncIterator

from trustgate.faults import Fault, FaultEngine

from .audit import AuditEventType, AuditTrail
from .consumers import ConsumerCredentials, ConsumerGuard
from .core import Clock, Consumer, User, UserStore, utcnow
from .credentials import CredentialVerifier
from .faults import (
    AUTH_ACCOUNT_INACTIVE,
    AUTH_ACCOUNT_LOCKED,
    AUTH_CONSUMER_MISMATCH,
    AUTH_MFA_REQUIRED,
    AUTH_SYSTEM_ERROR,
    AUTH_USER_NOT_FOUND,
)
from .mfa import CodeDispatch, MfaEngine, MfaVerification
from .signatures import SignatureCheck, SignatureGuard
from .tokens import IssuedToken, TokenIssuer, TokenRevoker, TokenValidator

logger = logging.getLogger("trustgate.auth.manager")


# ============================================================================
# Request / Result Types
# ============================================================================

@dataclass(frozen=True)
class RequestContext:
    """The parts of an inbound request the broker looks at."""
    method: str = "POST"
    path: str = "/"
    body: Any = None
    ip: str | None = None
    user_agent: str | None = None


@dataclass(frozen=True)
class LoginResult:
    user: dict[str, Any]
    token: IssuedToken
    signature: SignatureCheck
    mfa: MfaVerification | None = None

    def to_dict(self) -> dict[str, Any]:
        data = {"user": self.user, **self.token.to_dict()}
        if self.mfa is not None:
            data["mfa_method"] = self.mfa.method.value
            data["backup_codes_remaining"] = self.mfa.backup_codes_remaining
        return data


@dataclass(frozen=True)
class VerifiedRequest:
    user: dict[str, Any]
    user_id: str
    consumer_id: str
    token_id: str
    expires_at: datetime
    signature: SignatureCheck
    permissions: frozenset[str] = field(default_factory=frozenset)


# ============================================================================
# Orchestrator
# ============================================================================

class AuthenticationOrchestrator:
    """
    Entry point for consumers.

    Callers should render ``fault.public_message`` (or ``public_view()``)
    only; codes and metadata are for logs and audit.
    """

    def __init__(
        self,
        users: UserStore,
        consumers: ConsumerGuard,
        credentials: CredentialVerifier,
        mfa: MfaEngine,
        signatures: SignatureGuard,
        issuer: TokenIssuer,
        validator: TokenValidator,
        revoker: TokenRevoker,
        audit: AuditTrail | None = None,
        fault_engine: FaultEngine | None = None,
        clock: Clock = utcnow,
    ):
        self.users = users
        self.consumers = consumers
        self.credentials = credentials
        self.mfa = mfa
        self.signatures = signatures
        self.issuer = issuer
        self.validator = validator
        self.revoker = revoker
        self.audit = audit or AuditTrail()
        self.fault_engine = fault_engine or FaultEngine()
        self.clock = clock

    @asynccontextmanager
    async def _fault_scope(self, operation: str) -> AsyncIterator[dict[str, Any]]:
        """
        Process faults through the engine; wrap anything else as AUTH_SYSTEM_ERROR.

        Yields a scope dict; set ``consumer_id`` once the consumer is known.
        """
        scope: dict[str, Any] = {"consumer_id": None}
        try:
            yield scope
        except Fault as e:
            await self.fault_engine.process(e, operation=operation, consumer_id=scope["consumer_id"])
            raise
        except Exception as e:
            fault = AUTH_SYSTEM_ERROR(operation=operation, reason=f"{type(e).__name__}: {e}")
            await self.fault_engine.process(fault, operation=operation, consumer_id=scope["consumer_id"])
            raise fault from e

    async def _trusted_consumer(
        self, credentials: ConsumerCredentials, ip: str | None, scope: dict[str, Any]
    ) -> Consumer:
        consumer = await self.consumers.authenticate(credentials, ip)
        scope["consumer_id"] = consumer.id
        return consumer

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    async def login(
        self,
        username: str,
        password: str,
        client: ConsumerCredentials,
        *,
        mfa_code: str | None = None,
        signature_header: str | None = None,
        request: RequestContext | None = None,
    ) -> LoginResult:
        """
        Authenticate a user on behalf of a consumer and issue a token.

        Raises:
            AUTH_CONSUMER_INVALID / AUTH_IP_NOT_ALLOWED: consumer name, API key or
                address not trusted
            AUTH_SIGNATURE_INVALID / AUTH_SIGNATURE_EXPIRED: bad request signature
            AUTH_INVALID_CREDENTIALS / AUTH_ACCOUNT_LOCKED: credentials rejected
            AUTH_MFA_REQUIRED: no code submitted (a login code was sent for SMS/email)
            AUTH_OTP_DELIVERY_FAILED: login code could not be sent
            AUTH_MFA_INVALID: second factor rejected
            AUTH_CONFIGURATION_ERROR: no active provider key
        """
        request = request or RequestContext(path="/login")
        user: User | None = None
        consumer: Consumer | None = None

        async with self._fault_scope("login") as scope:
            try:
                consumer = await self._trusted_consumer(client, request.ip, scope)
                signature = await self.signatures.verify(
                    consumer.id, signature_header, request.method, request.path, request.body
                )

                try:
                    user = await self.credentials.verify(username, password)
                except AUTH_ACCOUNT_LOCKED as e:
                    if "failed_attempts" in e.metadata:
                        await self._on_locked(e.metadata["user_id"], consumer.id)
                    raise

                verification = None
                if user.mfa.enabled:
                    if not mfa_code:
                        dispatch = await self.mfa.send_login_code(user.id)
                        await self._challenge(user, consumer.id, dispatch)
                        raise AUTH_MFA_REQUIRED(
                            method=user.mfa.preferred_method.value, user_id=user.id
                        )
                    verification = await self.mfa.verify(user.id, mfa_code)

                token = await self.issuer.issue(
                    user,
                    consumer,
                    metadata={
                        "ip": request.ip,
                        "user_agent": request.user_agent,
                        "signature": signature.status.value,
                        "mfa": verification.method.value if verification else None,
                    },
                )
            except AUTH_MFA_REQUIRED:
                raise
            except Fault as e:
                await self.audit.failure(
                    AuditEventType.LOGIN,
                    e.code,
                    user_id=user.id if user else None,
                    consumer_id=consumer.id if consumer else None,
                    consumer_name=client.name,
                    ip=request.ip,
                )
                raise

        await self.audit.success(
            AuditEventType.LOGIN,
            user_id=user.id,
            consumer_id=consumer.id,
            token_id=token.token_id,
            ip=request.ip,
            used_backup_code=bool(verification and verification.used_backup_code),
        )
        logger.info(f"User {user.id} logged in via consumer {consumer.id}")
        return LoginResult(user=user.summary(), token=token, signature=signature, mfa=verification)

    async def _on_locked(self, user_id: str, consumer_id: str) -> None:
        revoked = await self.revoker.revoke_all_for_user(user_id)
        await self.audit.success(
            AuditEventType.ACCOUNT_LOCKED,
            user_id=user_id,
            consumer_id=consumer_id,
            tokens_revoked=revoked,
        )

    async def _challenge(self, user: User, consumer_id: str, dispatch: CodeDispatch | None) -> None:
        await self.audit.success(
            AuditEventType.MFA_CHALLENGE,
            user_id=user.id,
            consumer_id=consumer_id,
            method=user.mfa.preferred_method.value,
            destination=dispatch.destination if dispatch else None,
        )

    # ------------------------------------------------------------------
    # Per-request verification
    # ------------------------------------------------------------------

    async def verify_request(
        self,
        bearer: str,
        client: ConsumerCredentials,
        *,
        signature_header: str | None = None,
        request: RequestContext | None = None,
    ) -> VerifiedRequest:
        """
        Authenticate a consumer request carrying a user's bearer token.

        Raises:
            AUTH_CONSUMER_INVALID / AUTH_IP_NOT_ALLOWED: consumer not trusted
            AUTH_TOKEN_INVALID / AUTH_TOKEN_NOT_FOUND / AUTH_TOKEN_REVOKED /
            AUTH_TOKEN_EXPIRED / AUTH_CONSUMER_MISMATCH: token rejected
            AUTH_SIGNATURE_INVALID / AUTH_SIGNATURE_EXPIRED: bad signature
            AUTH_ACCOUNT_INACTIVE / AUTH_ACCOUNT_LOCKED: owner no longer usable
        """
        request = request or RequestContext(method="GET")

        async with self._fault_scope("verify_request") as scope:
            consumer = await self._trusted_consumer(client, request.ip, scope)
            signature = await self.signatures.verify(
                consumer.id, signature_header, request.method, request.path, request.body
            )
            record = await self.validator.validate(bearer, consumer.id)

            user = await self.users.get(record.user_id)
            if user is None or not user.is_active:
                raise AUTH_ACCOUNT_INACTIVE(user_id=record.user_id)
            if user.is_locked:
                raise AUTH_ACCOUNT_LOCKED(user_id=user.id)

        return VerifiedRequest(
            user=user.summary(),
            user_id=user.id,
            consumer_id=consumer.id,
            token_id=record.id,
            expires_at=record.expires_at,
            signature=signature,
            permissions=frozenset(user.permissions),
        )

    # ------------------------------------------------------------------
    # Logout / administration
    # ------------------------------------------------------------------

    async def logout(self, bearer: str, client: ConsumerCredentials, *, ip: str | None = None) -> bool:
        """
        Revoke the presented token. Returns False if it was already revoked.

        Raises:
            AUTH_TOKEN_INVALID / AUTH_TOKEN_NOT_FOUND: unknown token
            AUTH_CONSUMER_INVALID / AUTH_IP_NOT_ALLOWED: consumer not trusted
            AUTH_CONSUMER_MISMATCH: token belongs to another consumer
        """
        async with self._fault_scope("logout") as scope:
            consumer = await self._trusted_consumer(client, ip, scope)
            record = await self.validator.resolve(bearer)
            if record.consumer_id != consumer.id:
                raise AUTH_CONSUMER_MISMATCH(
                    token_id=record.id, expected=record.consumer_id, presented=consumer.id
                )
            revoked = await self.revoker.revoke(record.id)

        await self.audit.success(
            AuditEventType.LOGOUT,
            user_id=record.user_id,
            consumer_id=consumer.id,
            token_id=record.id,
            changed=revoked,
        )
        return revoked

    async def logout_everywhere(self, user_id: str) -> int:
        """Revoke every live token of a user. Returns how many were revoked."""
        async with self._fault_scope("logout_everywhere"):
            await self._require_user(user_id)
            count = await self.revoker.revoke_all_for_user(user_id)

        await self.audit.success(AuditEventType.LOGOUT_ALL, user_id=user_id, tokens_revoked=count)
        return count

    async def unlock_user(self, user_id: str, admin_id: str) -> bool:
        """Administrative unlock. Returns False if nothing needed clearing."""
        async with self._fault_scope("unlock_user"):
            changed = await self.credentials.unlock(user_id)

        await self.audit.success(
            AuditEventType.ACCOUNT_UNLOCKED, user_id=user_id, admin_id=admin_id, changed=changed
        )
        logger.info(f"User {user_id} unlocked by {admin_id}")
        return changed

    async def deactivate_user(self, user_id: str, admin_id: str) -> int:
        """Deactivate an account and revoke its live tokens. Returns tokens revoked."""
        async with self._fault_scope("deactivate_user"):
            await self._require_user(user_id)
            await self.users.set_active(user_id, False, self.clock())
            count = await self.revoker.revoke_all_for_user(user_id)

        await self.audit.success(
            AuditEventType.ACCOUNT_DEACTIVATED,
            user_id=user_id,
            admin_id=admin_id,
            tokens_revoked=count,
        )
        logger.warning(f"User {user_id} deactivated by {admin_id}")
        return count

    async def has_permission(self, user_id: str, permission: str) -> bool:
        """Flat set-membership check; inactive or unknown users have none."""
        user = await self.users.get(user_id)
        if user is None or not user.is_active:
            return False
        return permission in user.permissions

    async def _require_user(self, user_id: str) -> User:
        user = await self.users.get(user_id)
        if user is None:
            raise AUTH_USER_NOT_FOUND(user_id=user_id)
        return user
