"""
Shared test fixtures and helpers for the TrustGate test suite.
"""

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from trustgate.auth.audit import AuditTrail, MemoryAuditSink
from trustgate.auth.consumers import ConsumerCredentials
from trustgate.auth.core import MfaMethod
from trustgate.auth.crypto import KeyAlgorithm, SecretBox, generate_key_pair
from trustgate.auth.hashing import PasswordHasher
from trustgate.auth.mfa import DeliveryResult
from trustgate.auth.signatures import RequestSigner
from trustgate.auth.stores import (
    MemoryConsumerStore,
    MemoryProviderKeyStore,
    MemoryTokenStore,
    MemoryUserStore,
)
from trustgate.broker import TrustBroker
from trustgate.config import BrokerConfig, KeySettings, TokenSettings

T0 = datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc)
PASSWORD = "Correct-Horse-42"
BEARER_SECRET = "test-bearer-secret-0123456789abcdef"


# ============================================================================
# Helpers
# ============================================================================

class FakeClock:
    """Settable clock injected wherever components take ``clock=``."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> datetime:
        self.now += timedelta(**delta)
        return self.now

    def timestamp(self) -> int:
        return int(self.now.timestamp())


class RecordingDispatcher:
    """Captures one-time codes instead of sending them."""

    def __init__(self):
        self.sent: list[tuple[str, str, MfaMethod]] = []
        self.fail = False
        self.error: Exception | None = None

    async def send_one_time_code(self, destination, code, channel):
        self.sent.append((destination, code, channel))
        if self.error is not None:
            raise self.error
        if self.fail:
            return DeliveryResult(delivered=False, error="provider unavailable")
        return DeliveryResult(delivered=True)

    @property
    def last_code(self) -> str:
        return self.sent[-1][1]


def fast_hasher() -> PasswordHasher:
    return PasswordHasher(time_cost=1, memory_cost=8, parallelism=1)


def broker_config(**token_overrides) -> BrokerConfig:
    return BrokerConfig(
        tokens=TokenSettings(bearer_secret=BEARER_SECRET, **token_overrides),
        keys=KeySettings(passphrase="test-passphrase", algorithm=KeyAlgorithm.EdDSA),
    )


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def hasher():
    return fast_hasher()


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def audit_sink():
    return MemoryAuditSink()


@pytest.fixture
def audit(audit_sink, clock):
    return AuditTrail(audit_sink, clock=clock)


@pytest.fixture
def secret_box():
    return SecretBox("test-passphrase", n=2 ** 10)


@pytest.fixture
def user_store():
    return MemoryUserStore()


@pytest.fixture
def consumer_store():
    return MemoryConsumerStore()


@pytest.fixture
def key_store_backend():
    return MemoryProviderKeyStore()


@pytest.fixture
def token_store():
    return MemoryTokenStore()


@pytest.fixture
def consumer_keys():
    """(public_pem, private_pem) used by the consumer to sign requests."""
    return generate_key_pair(KeyAlgorithm.EdDSA)


@pytest.fixture
def broker(clock, hasher, dispatcher, audit_sink):
    return TrustBroker(
        broker_config(),
        hasher=hasher,
        dispatcher=dispatcher,
        audit_sink=audit_sink,
        clock=clock,
    )


@pytest_asyncio.fixture
async def started_broker(broker):
    await broker.startup()
    return broker


@pytest_asyncio.fixture
async def consumer(started_broker, consumer_keys, clock):
    """Registered consumer, the credentials it presents, and its request signer."""
    public_pem, private_pem = consumer_keys
    registered, api_key = await started_broker.consumers.register(
        "billing-app", public_pem, KeyAlgorithm.EdDSA
    )
    signer = RequestSigner(private_pem, KeyAlgorithm.EdDSA, clock=clock)
    return registered, ConsumerCredentials(registered.name, api_key), signer


@pytest_asyncio.fixture
async def alice(started_broker):
    return await started_broker.register_user(
        "alice",
        PASSWORD,
        email="alice@example.com",
        permissions={"reports:read"},
    )
