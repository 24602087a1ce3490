"""
Test 9: Consumer Trust (auth/consumers.py)
"""

import pytest

from trustgate.auth.consumers import ConsumerGuard, hash_api_key
from trustgate.auth.crypto import KeyAlgorithm
from trustgate.auth.faults import AUTH_CONSUMER_INVALID, AUTH_IP_NOT_ALLOWED


@pytest.fixture
def guard(consumer_store):
    return ConsumerGuard(consumer_store)


# ============================================================================
# Registration & API keys
# ============================================================================

class TestRegistration:

    @pytest.mark.asyncio
    async def test_register(self, guard, consumer_keys):
        public_pem, _ = consumer_keys
        consumer, api_key = await guard.register("billing-app", public_pem, KeyAlgorithm.EdDSA)

        assert consumer.name == "billing-app"
        assert consumer.key_version == 1
        assert consumer.api_key_hash == hash_api_key(api_key, consumer.api_key_salt)
        assert api_key not in consumer.api_key_hash

    @pytest.mark.asyncio
    async def test_duplicate_name(self, guard, consumer_keys):
        public_pem, _ = consumer_keys
        await guard.register("billing-app", public_pem, KeyAlgorithm.EdDSA)
        with pytest.raises(ValueError):
            await guard.register("billing-app", public_pem, KeyAlgorithm.EdDSA)

    @pytest.mark.asyncio
    async def test_bad_allow_list_entry(self, guard, consumer_keys):
        public_pem, _ = consumer_keys
        with pytest.raises(ValueError):
            await guard.register("billing-app", public_pem, KeyAlgorithm.EdDSA, allowed_ips=["not-an-ip"])

    @pytest.mark.asyncio
    async def test_authenticate_api_key(self, guard, consumer_keys):
        public_pem, _ = consumer_keys
        consumer, api_key = await guard.register("billing-app", public_pem, KeyAlgorithm.EdDSA)

        assert (await guard.authenticate_api_key("billing-app", api_key)).id == consumer.id
        with pytest.raises(AUTH_CONSUMER_INVALID):
            await guard.authenticate_api_key("billing-app", "wrong")
        with pytest.raises(AUTH_CONSUMER_INVALID):
            await guard.authenticate_api_key("unknown-app", api_key)

    @pytest.mark.asyncio
    async def test_rotate_api_key(self, guard, consumer_keys):
        public_pem, _ = consumer_keys
        consumer, old_key = await guard.register("billing-app", public_pem, KeyAlgorithm.EdDSA)

        new_key = await guard.rotate_api_key(consumer.id)
        assert new_key != old_key
        await guard.authenticate_api_key("billing-app", new_key)
        with pytest.raises(AUTH_CONSUMER_INVALID):
            await guard.authenticate_api_key("billing-app", old_key)

    @pytest.mark.asyncio
    async def test_update_public_key(self, guard, consumer_keys):
        public_pem, _ = consumer_keys
        consumer, _ = await guard.register("billing-app", public_pem, KeyAlgorithm.EdDSA)

        updated = await guard.update_public_key(consumer.id, "new-pem", KeyAlgorithm.ES256)
        assert updated.key_version == 2
        assert updated.key_algorithm == KeyAlgorithm.ES256

    @pytest.mark.asyncio
    async def test_inactive_consumer(self, guard, consumer_store, consumer_keys):
        public_pem, _ = consumer_keys
        consumer, api_key = await guard.register("billing-app", public_pem, KeyAlgorithm.EdDSA)
        consumer.is_active = False
        await consumer_store.update(consumer)

        with pytest.raises(AUTH_CONSUMER_INVALID):
            await guard.require_active(consumer.id)
        with pytest.raises(AUTH_CONSUMER_INVALID):
            await guard.authenticate_api_key("billing-app", api_key)

    @pytest.mark.asyncio
    async def test_require_active_unknown(self, guard):
        with pytest.raises(AUTH_CONSUMER_INVALID):
            await guard.require_active("c-missing")


# ============================================================================
# IP allow-list
# ============================================================================

class TestIpAllowList:

    @pytest.mark.asyncio
    async def test_empty_list_allows_all(self, guard, consumer_keys):
        consumer, _ = await guard.register("billing-app", consumer_keys[0], KeyAlgorithm.EdDSA)
        guard.check_ip(consumer, "203.0.113.9")
        guard.check_ip(consumer, None)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("ip", ["10.0.0.1", "10.0.255.254", "192.168.1.10", "2001:db8::1"])
    async def test_allowed(self, guard, consumer_keys, ip):
        consumer, _ = await guard.register(
            "billing-app", consumer_keys[0], KeyAlgorithm.EdDSA,
            allowed_ips=["10.0.0.0/16", "192.168.1.10", "2001:db8::/32"],
        )
        guard.check_ip(consumer, ip)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("ip", ["10.1.0.1", "192.168.1.11", None, "", "garbage"])
    async def test_rejected(self, guard, consumer_keys, ip):
        consumer, _ = await guard.register(
            "billing-app", consumer_keys[0], KeyAlgorithm.EdDSA,
            allowed_ips=["10.0.0.0/16", "192.168.1.10"],
        )
        with pytest.raises(AUTH_IP_NOT_ALLOWED):
            guard.check_ip(consumer, ip)
