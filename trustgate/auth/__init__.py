"""
TrustGate Auth - Identity & Trust Broker

Authenticates users on behalf of registered consumer applications:
- Password verification with brute-force lockout
- Multi-factor authentication (TOTP, SMS/email one-time codes, backup codes)
- Consumer request signatures with a replay window
- Provider-signed bearer tokens with key rotation and revocation

Every failure surfaces as a typed fault from ``trustgate.auth.faults``.
"""

# Core types
from .core import (
    AuditEvent,
    AuditSink,
    AuditStatus,
    Consumer,
    ConsumerStore,
    EmailConfig,
    FailedAttempt,
    KeyStatus,
    MfaConfiguration,
    MfaMethod,
    ProviderKey,
    ProviderKeyStore,
    SmsConfig,
    TokenRecord,
    TokenStore,
    TotpConfig,
    User,
    UserStore,
    utcnow,
)

# Cryptography
from .crypto import (
    CryptoError,
    KeyAlgorithm,
    SecretBox,
    canonical_json,
    generate_key_pair,
    sign,
    verify_signature,
)

# Password hashing
from .hashing import PasswordHasher, PasswordPolicy

# Stores
from .stores import (
    MemoryConsumerStore,
    MemoryProviderKeyStore,
    MemoryTokenStore,
    MemoryUserStore,
)

# Components
from .audit import AuditEventType, AuditTrail, LoggingAuditSink, MemoryAuditSink
from .consumers import ConsumerCredentials, ConsumerGuard
from .credentials import CredentialVerifier
from .keys import ConsumerKey, KeyRotationManager, KeyStore
from .mfa import (
    DeliveryResult,
    LoggingDispatcher,
    MfaEngine,
    MfaStatus,
    MfaVerification,
    NotificationDispatcher,
    TotpGenerator,
)
from .signatures import RequestSigner, SignatureCheck, SignatureGuard, SignatureStatus
from .tokens import BearerCodec, IssuedToken, TokenIssuer, TokenRevoker, TokenValidator
from .manager import (
    AuthenticationOrchestrator,
    LoginResult,
    RequestContext,
    VerifiedRequest,
)

# Faults
from .faults import (
    AuthFault,
    AUTH_INVALID_CREDENTIALS,
    AUTH_ACCOUNT_LOCKED,
    AUTH_MFA_REQUIRED,
    AUTH_MFA_INVALID,
    AUTH_SIGNATURE_INVALID,
    AUTH_SIGNATURE_EXPIRED,
    AUTH_TOKEN_NOT_FOUND,
    AUTH_TOKEN_EXPIRED,
    AUTH_TOKEN_REVOKED,
    AUTH_CONSUMER_MISMATCH,
    AUTH_CONFIGURATION_ERROR,
    AUTH_SYSTEM_ERROR,
    AUTH_TOKEN_INVALID,
    AUTH_ACCOUNT_INACTIVE,
    AUTH_USER_NOT_FOUND,
    AUTH_PASSWORD_WEAK,
    AUTH_CONSUMER_INVALID,
    AUTH_IP_NOT_ALLOWED,
    AUTH_MFA_NOT_ENROLLED,
    AUTH_MFA_ALREADY_ENROLLED,
    AUTH_OTP_DELIVERY_FAILED,
    AUTH_KEY_NOT_FOUND,
    AUTH_KEY_INVARIANT_VIOLATION,
    is_auth_fault,
)

__all__ = [
    # Core
    "AuditEvent",
    "AuditSink",
    "AuditStatus",
    "Consumer",
    "ConsumerStore",
    "EmailConfig",
    "FailedAttempt",
    "KeyStatus",
    "MfaConfiguration",
    "MfaMethod",
    "ProviderKey",
    "ProviderKeyStore",
    "SmsConfig",
    "TokenRecord",
    "TokenStore",
    "TotpConfig",
    "User",
    "UserStore",
    "utcnow",
    # Crypto
    "CryptoError",
    "KeyAlgorithm",
    "SecretBox",
    "canonical_json",
    "generate_key_pair",
    "sign",
    "verify_signature",
    # Hashing
    "PasswordHasher",
    "PasswordPolicy",
    # Stores
    "MemoryConsumerStore",
    "MemoryProviderKeyStore",
    "MemoryTokenStore",
    "MemoryUserStore",
    # Components
    "AuditEventType",
    "AuditTrail",
    "LoggingAuditSink",
    "MemoryAuditSink",
    "ConsumerCredentials",
    "ConsumerGuard",
    "CredentialVerifier",
    "ConsumerKey",
    "KeyRotationManager",
    "KeyStore",
    "DeliveryResult",
    "LoggingDispatcher",
    "MfaEngine",
    "MfaStatus",
    "MfaVerification",
    "NotificationDispatcher",
    "TotpGenerator",
    "RequestSigner",
    "SignatureCheck",
    "SignatureGuard",
    "SignatureStatus",
    "BearerCodec",
    "IssuedToken",
    "TokenIssuer",
    "TokenRevoker",
    "TokenValidator",
    "AuthenticationOrchestrator",
    "LoginResult",
    "RequestContext",
    "VerifiedRequest",
    # Faults
    "AuthFault",
    "AUTH_INVALID_CREDENTIALS",
    "AUTH_ACCOUNT_LOCKED",
    "AUTH_MFA_REQUIRED",
    "AUTH_MFA_INVALID",
    "AUTH_SIGNATURE_INVALID",
    "AUTH_SIGNATURE_EXPIRED",
    "AUTH_TOKEN_NOT_FOUND",
    "AUTH_TOKEN_EXPIRED",
    "AUTH_TOKEN_REVOKED",
    "AUTH_CONSUMER_MISMATCH",
    "AUTH_CONFIGURATION_ERROR",
    "AUTH_SYSTEM_ERROR",
    "AUTH_TOKEN_INVALID",
    "AUTH_ACCOUNT_INACTIVE",
    "AUTH_USER_NOT_FOUND",
    "AUTH_PASSWORD_WEAK",
    "AUTH_CONSUMER_INVALID",
    "AUTH_IP_NOT_ALLOWED",
    "AUTH_MFA_NOT_ENROLLED",
    "AUTH_MFA_ALREADY_ENROLLED",
    "AUTH_OTP_DELIVERY_FAILED",
    "AUTH_KEY_NOT_FOUND",
    "AUTH_KEY_INVARIANT_VIOLATION",
    "is_auth_fault",
]
