"""
TrustGate broker assembly.

``TrustBroker`` wires every component from a ``BrokerConfig``. Stores,
the notification dispatcher and the audit sink are injectable; the
in-memory reference stores are used when none are given.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Iterable

from trustgate.auth.audit import AuditTrail
from trustgate.auth.consumers import ConsumerGuard
from trustgate.auth.core import (
    AuditSink,
    Clock,
    ConsumerStore,
    ProviderKey,
    ProviderKeyStore,
    TokenStore,
    User,
    UserStore,
    utcnow,
)
from trustgate.auth.credentials import CredentialVerifier
from trustgate.auth.crypto import SecretBox, generate_id
from trustgate.auth.faults import AUTH_PASSWORD_WEAK
from trustgate.auth.hashing import PasswordHasher, PasswordPolicy
from trustgate.auth.keys import KeyRotationManager, KeyStore
from trustgate.auth.manager import AuthenticationOrchestrator
from trustgate.auth.mfa import MfaEngine, NotificationDispatcher
from trustgate.auth.signatures import SignatureGuard
from trustgate.auth.stores import (
    MemoryConsumerStore,
    MemoryProviderKeyStore,
    MemoryTokenStore,
    MemoryUserStore,
)
from trustgate.auth.tokens import BearerCodec, TokenIssuer, TokenRevoker, TokenValidator
from trustgate.config import BrokerConfig
from trustgate.faults import FaultEngine
from trustgate.logging import configure_logging


class TrustBroker:
    """
    Composition root for the identity and trust broker.

    Usage:
        ```python
        broker = TrustBroker(BrokerConfig.load(env_file=".env"))
        await broker.startup()
        client = ConsumerCredentials("billing-app", api_key)
        result = await broker.orchestrator.login("alice", "...", client)
        ```
    """

    def __init__(
        self,
        config: BrokerConfig,
        *,
        users: UserStore | None = None,
        consumers: ConsumerStore | None = None,
        provider_keys: ProviderKeyStore | None = None,
        tokens: TokenStore | None = None,
        dispatcher: NotificationDispatcher | None = None,
        audit_sink: AuditSink | None = None,
        hasher: PasswordHasher | None = None,
        policy: PasswordPolicy | None = None,
        fault_engine: FaultEngine | None = None,
        clock: Clock = utcnow,
    ):
        self.config = config.validate()
        self.logger = logging.getLogger("trustgate.broker")
        self.clock = clock

        self.users = users or MemoryUserStore()
        self.consumer_store = consumers or MemoryConsumerStore()
        self.provider_keys = provider_keys or MemoryProviderKeyStore()
        self.tokens = tokens or MemoryTokenStore()

        self.fault_engine = fault_engine or FaultEngine()
        self.audit = AuditTrail(audit_sink, clock=clock)
        self.secret_box = SecretBox(config.keys.passphrase)

        self.key_store = KeyStore(self.provider_keys, self.consumer_store, self.secret_box, clock)
        self.rotation = KeyRotationManager(
            self.provider_keys, self.secret_box, config.keys, clock, audit=self.audit
        )
        self.consumers = ConsumerGuard(self.consumer_store)
        self.credentials = CredentialVerifier(
            self.users, hasher or PasswordHasher(), config.lockout, policy or PasswordPolicy(), clock,
            audit=self.audit,
        )
        self.mfa = MfaEngine(
            self.users, self.credentials, dispatcher, config.mfa, clock, audit=self.audit
        )
        self.signatures = SignatureGuard(self.key_store, config.signatures, clock)

        codec = BearerCodec(
            config.tokens.bearer_secret,
            algorithm=config.tokens.bearer_algorithm,
            issuer=config.tokens.issuer,
        )
        self.issuer = TokenIssuer(self.tokens, self.key_store, codec, config.tokens, clock)
        self.validator = TokenValidator(self.tokens, self.key_store, codec, clock)
        self.revoker = TokenRevoker(self.tokens, config.tokens, clock, audit=self.audit)

        self.orchestrator = AuthenticationOrchestrator(
            users=self.users,
            consumers=self.consumers,
            credentials=self.credentials,
            mfa=self.mfa,
            signatures=self.signatures,
            issuer=self.issuer,
            validator=self.validator,
            revoker=self.revoker,
            audit=self.audit,
            fault_engine=self.fault_engine,
            clock=clock,
        )

        self._startup_complete = False
        self._startup_lock = asyncio.Lock()

    @classmethod
    def from_env(cls, *, setup_logging: bool = True, **kwargs) -> "TrustBroker":
        """
        Load configuration (files, ``.env``, ``TRUSTGATE_*`` variables) and build a broker.

        Keyword arguments other than store/dispatcher injections are passed
        to ``BrokerConfig.load``.
        """
        injected = {
            name: kwargs.pop(name)
            for name in ("users", "consumers", "provider_keys", "tokens", "dispatcher",
                         "audit_sink", "hasher", "policy", "fault_engine", "clock")
            if name in kwargs
        }
        config = BrokerConfig.load(**kwargs)
        if setup_logging:
            configure_logging(config.logging.level)
        return cls(config, **injected)

    async def startup(self) -> ProviderKey:
        """
        Verify the provider key invariant and make sure an active key exists.

        Idempotent.
        """
        async with self._startup_lock:
            key = await self.rotation.ensure_active_key(created_by="bootstrap")
            if not self._startup_complete:
                self.logger.info(f"TrustGate broker started (provider key v{key.version})")
                self._startup_complete = True
            return key

    async def run_maintenance(self) -> dict[str, Any]:
        """Scheduled housekeeping: rotate an expiring key, purge old tokens."""
        rotated = await self.rotation.rotate_expiring()
        purged = await self.revoker.cleanup()
        return {
            "rotated_key_version": rotated.version if rotated else None,
            "tokens_purged": purged,
        }

    async def register_user(
        self,
        username: str,
        password: str,
        *,
        email: str | None = None,
        permissions: Iterable[str] = (),
    ) -> User:
        """
        Create a user after checking the password policy.

        Raises:
            AUTH_PASSWORD_WEAK: password fails the policy
            ValueError: username or email already taken
        """
        valid, errors = self.credentials.policy.validate(password)
        if not valid:
            raise AUTH_PASSWORD_WEAK(errors=errors)

        now = self.clock()
        user = await self.users.create(User(
            id=generate_id(),
            username=username,
            password_hash=self.credentials.hasher.hash(password),
            email=email,
            permissions=set(permissions),
            password_changed_at=now,
            created_at=now,
            updated_at=now,
        ))
        self.logger.info(f"Registered user {user.id}")
        return user
