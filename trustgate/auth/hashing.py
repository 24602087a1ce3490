"""
TrustGate Auth - Password Hashing

Argon2id (default) or PBKDF2-HMAC-SHA256 password hashing, plus the
password policy applied on registration and password change.

Encoded forms:
    $argon2id$v=19$m=65536,t=2,p=4$<salt>$<hash>
    $pbkdf2_sha256$<iterations>$<salt>$<hash>
"""

from __future__ import annotations

import base64
import hashlib
import secrets
from typing import Literal

from argon2 import PasswordHasher as Argon2PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError

ARGON2_PREFIX = "$argon2id$"
PBKDF2_PREFIX = "$pbkdf2_sha256$"


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode()


class PasswordHasher:
    """
    Hashes new passwords with one scheme and verifies stored hashes of
    either scheme, so a deployment can switch schemes without a migration:
    old hashes are upgraded on the next successful login.
    """

    def __init__(
        self,
        algorithm: Literal["argon2id", "pbkdf2_sha256"] = "argon2id",
        time_cost: int = 2,
        memory_cost: int = 65536,
        parallelism: int = 4,
        hash_len: int = 32,
        salt_len: int = 16,
        iterations: int = 600000,
    ):
        if algorithm not in ("argon2id", "pbkdf2_sha256"):
            raise ValueError(f"Unsupported password hash algorithm: {algorithm}")

        self.algorithm = algorithm
        self.iterations = iterations
        self.hash_len = hash_len
        self.salt_len = salt_len
        self.argon2 = Argon2PasswordHasher(
            time_cost=time_cost,
            memory_cost=memory_cost,
            parallelism=parallelism,
            hash_len=hash_len,
            salt_len=salt_len,
        )
        self._dummy_hash: str | None = None

    def hash(self, password: str) -> str:
        if self.algorithm == "argon2id":
            return self.argon2.hash(password)

        salt = secrets.token_bytes(self.salt_len)
        digest = self._pbkdf2(password, salt, self.iterations, self.hash_len)
        return f"{PBKDF2_PREFIX}{self.iterations}${_b64(salt)}${_b64(digest)}"

    def verify(self, password_hash: str, password: str) -> bool:
        """False for a mismatch and for an unrecognised or corrupt hash."""
        if password_hash.startswith(ARGON2_PREFIX):
            try:
                return self.argon2.verify(password_hash, password)
            except (VerificationError, InvalidHashError):
                return False

        if password_hash.startswith(PBKDF2_PREFIX):
            parsed = self._parse_pbkdf2(password_hash)
            if parsed is None:
                return False
            iterations, salt, stored = parsed
            return secrets.compare_digest(self._pbkdf2(password, salt, iterations, len(stored)), stored)

        return False

    def verify_dummy(self, password: str) -> None:
        """Spend the cost of one real verification against a throwaway hash."""
        if self._dummy_hash is None:
            self._dummy_hash = self.hash(secrets.token_urlsafe(16))
        self.verify(self._dummy_hash, password)

    def check_needs_rehash(self, password_hash: str) -> bool:
        """True when the stored hash uses another scheme or older parameters."""
        if self.algorithm == "argon2id":
            if not password_hash.startswith(ARGON2_PREFIX):
                return True
            try:
                return self.argon2.check_needs_rehash(password_hash)
            except InvalidHashError:
                return True

        parsed = self._parse_pbkdf2(password_hash) if password_hash.startswith(PBKDF2_PREFIX) else None
        return parsed is None or parsed[0] != self.iterations

    @staticmethod
    def _pbkdf2(password: str, salt: bytes, iterations: int, length: int) -> bytes:
        return hashlib.pbkdf2_hmac("sha256", password.encode(), salt, iterations, dklen=length)

    @staticmethod
    def _parse_pbkdf2(password_hash: str) -> tuple[int, bytes, bytes] | None:
        parts = password_hash[len(PBKDF2_PREFIX):].split("$")
        if len(parts) != 3:
            return None
        try:
            return int(parts[0]), base64.b64decode(parts[1]), base64.b64decode(parts[2])
        except ValueError:
            return None


# ============================================================================
# Password Policy
# ============================================================================

COMMON_PASSWORDS = frozenset({
    "password", "password123", "password1234", "12345678", "123456789012",
    "qwerty", "qwerty123456", "abc123", "letmein", "trustno1", "iloveyou",
    "passw0rd", "welcome123", "admin123", "changeme", "correcthorse",
})


class PasswordPolicy:
    """Length, character classes and a common-password list."""

    def __init__(
        self,
        min_length: int = 12,
        require_uppercase: bool = True,
        require_lowercase: bool = True,
        require_digit: bool = True,
        require_special: bool = False,
    ):
        self.min_length = min_length
        self.rules = [
            (require_uppercase, str.isupper, "an uppercase letter"),
            (require_lowercase, str.islower, "a lowercase letter"),
            (require_digit, str.isdigit, "a digit"),
            (require_special, lambda c: not c.isalnum() and not c.isspace(), "a special character"),
        ]

    def validate(self, password: str) -> tuple[bool, list[str]]:
        """
        Returns:
            (is_valid, error_messages)
        """
        errors = []
        if len(password) < self.min_length:
            errors.append(f"Password must be at least {self.min_length} characters")

        for enabled, predicate, label in self.rules:
            if enabled and not any(predicate(c) for c in password):
                errors.append(f"Password must contain {label}")

        if password.lower() in COMMON_PASSWORDS:
            errors.append("Password is too common")

        return not errors, errors
