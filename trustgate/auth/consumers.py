"""
TrustGate Auth - Consumer Trust

Registration of client applications, API key checks, and IP allow-lists.
"""

from __future__ import annotations

import ipaddress
import logging
import secrets
from dataclasses import dataclass, field

from .core import Consumer, ConsumerStore
from .crypto import KeyAlgorithm, constant_time_equals, generate_id, sha256_hex
from .faults import AUTH_CONSUMER_INVALID, AUTH_IP_NOT_ALLOWED

logger = logging.getLogger("trustgate.auth.consumers")


def hash_api_key(api_key: str, salt: str) -> str:
    return sha256_hex(api_key + salt)


@dataclass(frozen=True)
class ConsumerCredentials:
    """What a consumer presents on every call: its name and API key."""
    name: str
    api_key: str = field(repr=False)


class ConsumerGuard:
    """
    Consumer-level trust checks run before any user credential is looked at.
    """

    def __init__(self, consumers: ConsumerStore):
        self.consumers = consumers

    async def register(
        self,
        name: str,
        public_key: str,
        key_algorithm: str = KeyAlgorithm.RS256,
        allowed_ips: list[str] | None = None,
    ) -> tuple[Consumer, str]:
        """
        Register a consumer.

        Returns:
            (consumer, api_key). The API key is shown once; only its salted
            hash is stored.
        """
        key_algorithm = KeyAlgorithm.normalize(key_algorithm)
        for entry in allowed_ips or []:
            ipaddress.ip_network(entry, strict=False)

        api_key = secrets.token_urlsafe(32)
        salt = secrets.token_hex(16)
        consumer = await self.consumers.create(Consumer(
            id=generate_id(),
            name=name,
            api_key_hash=hash_api_key(api_key, salt),
            api_key_salt=salt,
            public_key=public_key,
            key_algorithm=key_algorithm,
            allowed_ips=list(allowed_ips or []),
        ))
        logger.info(f"Registered consumer {name!r} ({consumer.id})")
        return consumer, api_key

    async def authenticate_api_key(self, name: str, api_key: str) -> Consumer:
        """
        Raises:
            AUTH_CONSUMER_INVALID: unknown or inactive consumer, or wrong key
        """
        consumer = await self.consumers.get_by_name(name)
        if consumer is None or not consumer.is_active:
            raise AUTH_CONSUMER_INVALID(consumer_name=name)
        if not constant_time_equals(hash_api_key(api_key, consumer.api_key_salt), consumer.api_key_hash):
            raise AUTH_CONSUMER_INVALID(consumer_name=name, reason="api key mismatch")
        return consumer

    async def authenticate(self, credentials: ConsumerCredentials, ip: str | None = None) -> Consumer:
        """API key check, then the IP allow-list."""
        consumer = await self.authenticate_api_key(credentials.name, credentials.api_key)
        self.check_ip(consumer, ip)
        return consumer

    async def require_active(self, consumer_id: str) -> Consumer:
        consumer = await self.consumers.get(consumer_id)
        if consumer is None or not consumer.is_active:
            raise AUTH_CONSUMER_INVALID(consumer_id=consumer_id)
        return consumer

    def check_ip(self, consumer: Consumer, ip: str | None) -> None:
        """
        Enforce the allow-list. An empty list allows every address.

        Raises:
            AUTH_IP_NOT_ALLOWED: address missing, unparsable, or not listed
        """
        if not consumer.allowed_ips:
            return
        try:
            address = ipaddress.ip_address(ip or "")
        except ValueError as e:
            raise AUTH_IP_NOT_ALLOWED(consumer_id=consumer.id, ip=ip) from e

        for entry in consumer.allowed_ips:
            if address in ipaddress.ip_network(entry, strict=False):
                return
        raise AUTH_IP_NOT_ALLOWED(consumer_id=consumer.id, ip=ip)

    async def rotate_api_key(self, consumer_id: str) -> str:
        """Issue a new API key; the old one stops working immediately."""
        consumer = await self.require_active(consumer_id)
        api_key = secrets.token_urlsafe(32)
        consumer.api_key_salt = secrets.token_hex(16)
        consumer.api_key_hash = hash_api_key(api_key, consumer.api_key_salt)
        await self.consumers.update(consumer)
        logger.info(f"Rotated API key for consumer {consumer_id}")
        return api_key

    async def update_public_key(self, consumer_id: str, public_key: str, key_algorithm: str) -> Consumer:
        """Replace the request-signing key and bump its version."""
        key_algorithm = KeyAlgorithm.normalize(key_algorithm)
        consumer = await self.require_active(consumer_id)
        consumer.public_key = public_key
        consumer.key_algorithm = key_algorithm
        consumer.key_version += 1
        return await self.consumers.update(consumer)
