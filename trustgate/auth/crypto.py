"""
TrustGate Auth - Crypto Primitives

Symmetric protection of private key material at rest, asymmetric
signing/verification, random secrets, and one-way digests for lookups.
"""

from __future__ import annotations

import base64
import hashlib
import json
import secrets
import uuid
from enum import Enum
from typing import Any

from cryptography.exceptions import InvalidSignature
from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, padding, rsa
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt


class KeyAlgorithm(str, Enum):
    """Supported signing algorithms."""
    RS256 = "RS256"  # RSA PKCS#1 v1.5 with SHA-256
    ES256 = "ES256"  # ECDSA P-256 with SHA-256
    EdDSA = "EdDSA"  # Ed25519

    @classmethod
    def normalize(cls, value: str) -> str:
        """Plain name of a supported algorithm, as stored on keys and consumers."""
        try:
            return cls(value).value
        except ValueError:
            raise ValueError(f"Unsupported algorithm: {value}") from None


class CryptoError(Exception):
    """Key material could not be decrypted or parsed."""


# ============================================================================
# Encryption at rest
# ============================================================================

class SecretBox:
    """
    Encrypts private key material with a passphrase-derived Fernet key.

    Each ciphertext carries its own random scrypt salt:
    ``<urlsafe-b64 salt>.<fernet token>``.
    """

    SALT_BYTES = 16

    def __init__(self, passphrase: str, *, n: int = 2 ** 14, r: int = 8, p: int = 1):
        if not passphrase:
            raise ValueError("Passphrase must not be empty")
        self._passphrase = passphrase.encode()
        self._n = n
        self._r = r
        self._p = p

    def _fernet(self, salt: bytes) -> Fernet:
        kdf = Scrypt(salt=salt, length=32, n=self._n, r=self._r, p=self._p)
        return Fernet(base64.urlsafe_b64encode(kdf.derive(self._passphrase)))

    def encrypt(self, plaintext: str) -> str:
        salt = secrets.token_bytes(self.SALT_BYTES)
        token = self._fernet(salt).encrypt(plaintext.encode())
        return f"{base64.urlsafe_b64encode(salt).decode()}.{token.decode()}"

    def decrypt(self, ciphertext: str) -> str:
        try:
            salt_b64, token = ciphertext.split(".", 1)
            salt = base64.urlsafe_b64decode(salt_b64)
        except ValueError as e:
            raise CryptoError("Malformed ciphertext") from e

        try:
            return self._fernet(salt).decrypt(token.encode()).decode()
        except InvalidToken as e:
            raise CryptoError("Ciphertext could not be decrypted (wrong passphrase?)") from e


# ============================================================================
# Asymmetric keys
# ============================================================================

def generate_key_pair(algorithm: str = KeyAlgorithm.RS256, key_size: int = 2048) -> tuple[str, str]:
    """
    Generate a key pair.

    Returns:
        (public_pem, private_pem)
    """
    if algorithm == KeyAlgorithm.RS256:
        private_key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)
    elif algorithm == KeyAlgorithm.ES256:
        private_key = ec.generate_private_key(ec.SECP256R1())
    elif algorithm == KeyAlgorithm.EdDSA:
        private_key = ed25519.Ed25519PrivateKey.generate()
    else:
        raise ValueError(f"Unsupported algorithm: {algorithm}")

    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()

    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode()

    return public_pem, private_pem


def sign(data: str | bytes, private_pem: str, algorithm: str) -> str:
    """Sign data and return the signature as standard base64."""
    message = data.encode() if isinstance(data, str) else data
    try:
        private_key = serialization.load_pem_private_key(private_pem.encode(), password=None)
    except ValueError as e:
        raise CryptoError("Private key could not be loaded") from e

    if algorithm == KeyAlgorithm.RS256:
        signature = private_key.sign(message, padding.PKCS1v15(), hashes.SHA256())
    elif algorithm == KeyAlgorithm.ES256:
        signature = private_key.sign(message, ec.ECDSA(hashes.SHA256()))
    elif algorithm == KeyAlgorithm.EdDSA:
        signature = private_key.sign(message)
    else:
        raise ValueError(f"Unsupported algorithm: {algorithm}")

    return base64.b64encode(signature).decode()


def verify_signature(data: str | bytes, signature_b64: str, public_pem: str, algorithm: str) -> bool:
    """
    Verify a base64 signature.

    Never raises for bad input: malformed signatures, unparsable keys and
    algorithm/key mismatches all verify as False.
    """
    message = data.encode() if isinstance(data, str) else data
    try:
        signature = base64.b64decode(signature_b64, validate=True)
        public_key = serialization.load_pem_public_key(public_pem.encode())

        if algorithm == KeyAlgorithm.RS256 and isinstance(public_key, rsa.RSAPublicKey):
            public_key.verify(signature, message, padding.PKCS1v15(), hashes.SHA256())
        elif algorithm == KeyAlgorithm.ES256 and isinstance(public_key, ec.EllipticCurvePublicKey):
            public_key.verify(signature, message, ec.ECDSA(hashes.SHA256()))
        elif algorithm == KeyAlgorithm.EdDSA and isinstance(public_key, ed25519.Ed25519PublicKey):
            public_key.verify(signature, message)
        else:
            return False
        return True
    except (InvalidSignature, ValueError, TypeError):
        return False


# ============================================================================
# Random values & digests
# ============================================================================

def random_token(nbytes: int = 32) -> str:
    """High-entropy random secret, hex encoded."""
    return secrets.token_hex(nbytes)


def generate_id() -> str:
    return str(uuid.uuid4())


def sha256_hex(value: str | bytes) -> str:
    """Constant-output digest used for lookups (token hashes, backup codes)."""
    data = value.encode() if isinstance(value, str) else value
    return hashlib.sha256(data).hexdigest()


def constant_time_equals(a: str, b: str) -> bool:
    return secrets.compare_digest(a.encode(), b.encode())


def canonical_json(value: Any) -> str:
    """Deterministic JSON: sorted keys, compact separators."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)
