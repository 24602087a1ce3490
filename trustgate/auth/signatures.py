"""
TrustGate Auth - Request Signatures

Consumers sign outbound requests with their private key. The header is

    <base64-signature>:<unix-timestamp>:<nonce>

and the signed payload is

    <timestamp>:<nonce>:<METHOD>:<path>:<body as compact JSON, top-level keys sorted, or empty>
"""

from __future__ import annotations

import json
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from trustgate.config import SignatureSettings

from .core import Clock, utcnow
from .crypto import sign, verify_signature
from .faults import AUTH_SIGNATURE_EXPIRED, AUTH_SIGNATURE_INVALID
from .keys import KeyStore

logger = logging.getLogger("trustgate.auth.signatures")


class SignatureStatus(str, Enum):
    VERIFIED = "verified"
    ABSENT = "absent"


@dataclass(frozen=True)
class SignatureCheck:
    status: SignatureStatus
    timestamp: int | None = None
    nonce: str | None = None

    @property
    def verified(self) -> bool:
        return self.status is SignatureStatus.VERIFIED


def canonical_body(body: Any) -> str:
    """
    Serialize a request body for signing.

    Compact UTF-8 JSON with the top-level keys sorted; nested values keep
    the order the consumer sent. Raw JSON text is parsed first, so nested
    order is taken from the wire body. Empty bodies sign as the empty string.
    """
    if body is None or body == b"" or body == "":
        return ""
    if isinstance(body, (bytes, str)):
        try:
            body = json.loads(body)
        except ValueError as e:
            raise AUTH_SIGNATURE_INVALID(reason="body is not JSON") from e
    if isinstance(body, (dict, list)) and not body:
        return ""
    if isinstance(body, dict):
        body = {key: body[key] for key in sorted(body)}
    return json.dumps(body, ensure_ascii=False, separators=(",", ":"), default=str)


def canonical_payload(timestamp: int | str, nonce: str, method: str, path: str, body: Any = None) -> str:
    return f"{timestamp}:{nonce}:{method.upper()}:{path}:{canonical_body(body)}"


class SignatureGuard:
    """
    Verifies consumer request signatures against the consumer's registered
    public key, with a replay window.

    A missing header is "absent" unless signatures are required. A header
    that is present but malformed or wrong is always a failure.
    """

    def __init__(
        self,
        key_store: KeyStore,
        settings: SignatureSettings | None = None,
        clock: Clock = utcnow,
    ):
        self.key_store = key_store
        self.settings = settings or SignatureSettings()
        self.clock = clock

    async def verify(
        self,
        consumer_id: str,
        header: str | None,
        method: str,
        path: str,
        body: Any = None,
        now: datetime | None = None,
    ) -> SignatureCheck:
        """
        Verify a signature header.

        Raises:
            AUTH_SIGNATURE_INVALID: malformed header, unknown key, bad signature,
                or missing header when signatures are required
            AUTH_SIGNATURE_EXPIRED: timestamp outside the window
        """
        if not header:
            if self.settings.required:
                raise AUTH_SIGNATURE_INVALID(consumer_id=consumer_id, reason="missing")
            return SignatureCheck(status=SignatureStatus.ABSENT)

        parts = header.split(":")
        if len(parts) != 3 or not all(parts):
            raise AUTH_SIGNATURE_INVALID(consumer_id=consumer_id, reason="malformed header")
        signature, raw_timestamp, nonce = parts

        try:
            timestamp = int(raw_timestamp)
        except ValueError as e:
            raise AUTH_SIGNATURE_INVALID(consumer_id=consumer_id, reason="malformed timestamp") from e

        now_ts = int((now or self.clock()).timestamp())
        if abs(now_ts - timestamp) > self.settings.window_seconds:
            raise AUTH_SIGNATURE_EXPIRED(consumer_id=consumer_id, skew=now_ts - timestamp)

        key = await self.key_store.get_consumer_key(consumer_id)
        if key is None:
            raise AUTH_SIGNATURE_INVALID(consumer_id=consumer_id, reason="no public key registered")

        payload = canonical_payload(timestamp, nonce, method, path, body)
        if not verify_signature(payload, signature, key.public_key, key.algorithm):
            raise AUTH_SIGNATURE_INVALID(consumer_id=consumer_id, reason="signature mismatch")

        logger.debug(f"Verified request signature from consumer {consumer_id} ({method.upper()} {path})")
        return SignatureCheck(status=SignatureStatus.VERIFIED, timestamp=timestamp, nonce=nonce)


class RequestSigner:
    """Builds signature headers on the consumer side."""

    def __init__(self, private_pem: str, algorithm: str, clock: Clock = utcnow):
        self.private_pem = private_pem
        self.algorithm = algorithm
        self.clock = clock

    def sign(
        self,
        method: str,
        path: str,
        body: Any = None,
        *,
        timestamp: int | None = None,
        nonce: str | None = None,
    ) -> str:
        timestamp = int(self.clock().timestamp()) if timestamp is None else timestamp
        nonce = nonce or secrets.token_hex(8)
        signature = sign(canonical_payload(timestamp, nonce, method, path, body), self.private_pem, self.algorithm)
        return f"{signature}:{timestamp}:{nonce}"
