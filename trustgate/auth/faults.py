"""
TrustGate Auth - Authentication Faults

Structured error types for every authentication outcome. The internal
``message`` and ``metadata`` go to the audit log; callers only ever see
``public_message``.
"""

from __future__ import annotations

from trustgate.faults import Fault, FaultDomain, Severity


class AuthFault(Fault):
    """Base for authentication faults; keyword context becomes metadata."""
    domain = FaultDomain.SECURITY

    def __init__(self, message: str | None = None, **context):
        super().__init__(message=message, metadata=context)


# ============================================================================
# Core Taxonomy
# ============================================================================

class AUTH_INVALID_CREDENTIALS(AuthFault):
    """Unknown username or wrong password (deliberately indistinguishable)."""
    code = "AUTH_001"
    severity = Severity.WARN
    message = "Invalid credentials"
    public_message = "Invalid username or password"
    retryable = False

    def __init__(self, username: str | None = None, **context):
        if username:
            context["username_hash"] = self._hash_identifier(username)
        super().__init__(**context)


class AUTH_ACCOUNT_LOCKED(AuthFault):
    """Account is locked due to failed login attempts."""
    code = "AUTH_002"
    severity = Severity.WARN
    message = "Account locked"
    public_message = "Account locked due to multiple failed login attempts"
    retryable = False


class AUTH_MFA_REQUIRED(AuthFault):
    """Password accepted, second factor still required."""
    code = "AUTH_003"
    severity = Severity.INFO
    message = "MFA required"
    public_message = "Please enter your verification code"
    retryable = True

    def __init__(self, method: str | None = None, **context):
        super().__init__(method=method, **context)
        self.method = method


class AUTH_MFA_INVALID(AuthFault):
    """Invalid or expired MFA code."""
    code = "AUTH_004"
    severity = Severity.WARN
    message = "Invalid MFA code"
    public_message = "Invalid verification code"
    retryable = True


class AUTH_SIGNATURE_INVALID(AuthFault):
    """Malformed or non-verifying signature."""
    code = "AUTH_005"
    severity = Severity.WARN
    message = "Invalid signature"
    public_message = "Request signature could not be verified"
    retryable = False


class AUTH_SIGNATURE_EXPIRED(AuthFault):
    """Signature timestamp outside the replay window."""
    code = "AUTH_006"
    severity = Severity.WARN
    message = "Signature expired"
    public_message = "Request signature has expired"
    retryable = True


class AUTH_TOKEN_NOT_FOUND(AuthFault):
    """No token record matches the presented secret."""
    code = "AUTH_007"
    severity = Severity.WARN
    message = "Token not found"
    public_message = "Invalid authentication token"
    retryable = False


class AUTH_TOKEN_EXPIRED(AuthFault):
    """Token is past its expiry."""
    code = "AUTH_008"
    severity = Severity.INFO
    message = "Token expired"
    public_message = "Your session has expired. Please log in again."
    retryable = False


class AUTH_TOKEN_REVOKED(AuthFault):
    """Token has been revoked."""
    code = "AUTH_009"
    severity = Severity.WARN
    message = "Token revoked"
    public_message = "Invalid authentication token"
    retryable = False


class AUTH_CONSUMER_MISMATCH(AuthFault):
    """Token presented by a consumer other than the one it was issued to."""
    code = "AUTH_010"
    severity = Severity.ERROR
    message = "Consumer mismatch"
    public_message = "Invalid authentication token"
    retryable = False


class AUTH_CONFIGURATION_ERROR(AuthFault):
    """Broker cannot operate (e.g. no active provider key). Alerts operators."""
    domain = FaultDomain.CONFIG
    code = "AUTH_011"
    severity = Severity.FATAL
    message = "Configuration error"
    public_message = "Authentication is temporarily unavailable"
    retryable = False


class AUTH_SYSTEM_ERROR(AuthFault):
    """Storage or unexpected failure."""
    domain = FaultDomain.SYSTEM
    code = "AUTH_012"
    severity = Severity.ERROR
    message = "System error"
    public_message = "An internal error occurred"
    retryable = True


# ============================================================================
# Token & Account Faults
# ============================================================================

class AUTH_TOKEN_INVALID(AuthFault):
    """Bearer wrapper malformed or its signature does not verify."""
    code = "AUTH_101"
    severity = Severity.WARN
    message = "Invalid token"
    public_message = "Invalid authentication token"
    retryable = False


class AUTH_ACCOUNT_INACTIVE(AuthFault):
    """Account has been deactivated."""
    code = "AUTH_102"
    severity = Severity.WARN
    message = "Account inactive"
    public_message = "Invalid authentication token"
    retryable = False


class AUTH_USER_NOT_FOUND(AuthFault):
    """Administrative operation referenced an unknown user."""
    code = "AUTH_103"
    severity = Severity.WARN
    message = "User not found"
    public_message = "User not found"
    retryable = False


class AUTH_PASSWORD_WEAK(AuthFault):
    """Password doesn't meet policy requirements."""
    code = "AUTH_104"
    severity = Severity.INFO
    message = "Weak password"
    public_message = "Password doesn't meet security requirements"
    retryable = True

    def __init__(self, errors: list[str] | None = None, **context):
        super().__init__(validation_errors=errors or [], **context)
        self.errors = errors or []


# ============================================================================
# Consumer Faults
# ============================================================================

class AUTH_CONSUMER_INVALID(AuthFault):
    """Unknown, inactive, or wrongly-keyed consumer."""
    code = "AUTH_201"
    severity = Severity.WARN
    message = "Invalid consumer"
    public_message = "Invalid client credentials"
    retryable = False


class AUTH_IP_NOT_ALLOWED(AuthFault):
    """Request origin not on the consumer's allow-list."""
    code = "AUTH_202"
    severity = Severity.WARN
    message = "IP address not allowed"
    public_message = "Access denied"
    retryable = False


# ============================================================================
# MFA Faults
# ============================================================================

class AUTH_MFA_NOT_ENROLLED(AuthFault):
    """MFA method not set up (or not pending verification)."""
    code = "AUTH_301"
    severity = Severity.INFO
    message = "MFA not enrolled"
    public_message = "Multi-factor authentication is not set up"
    retryable = False


class AUTH_MFA_ALREADY_ENROLLED(AuthFault):
    """MFA already enabled; disable it before setting up another method."""
    code = "AUTH_302"
    severity = Severity.INFO
    message = "MFA already enrolled"
    public_message = "Multi-factor authentication is already enabled"
    retryable = False


class AUTH_OTP_DELIVERY_FAILED(AuthFault):
    """Code was generated and stored but could not be delivered."""
    domain = FaultDomain.DELIVERY
    code = "AUTH_303"
    severity = Severity.WARN
    message = "One-time code delivery failed"
    public_message = "We could not send your verification code. Please try again."
    retryable = True


# ============================================================================
# Provider Key Faults
# ============================================================================

class AUTH_KEY_NOT_FOUND(AuthFault):
    """Provider key id is unknown."""
    domain = FaultDomain.CRYPTO
    code = "AUTH_401"
    severity = Severity.WARN
    message = "Provider key not found"
    public_message = "Key not found"
    retryable = False


class AUTH_KEY_INVARIANT_VIOLATION(AuthFault):
    """More than one provider key is active."""
    domain = FaultDomain.CRYPTO
    code = "AUTH_402"
    severity = Severity.FATAL
    message = "Multiple active provider keys"
    public_message = "Authentication is temporarily unavailable"
    retryable = False


# ============================================================================
# Utility Functions
# ============================================================================

def is_auth_fault(exception: BaseException) -> bool:
    """Check if exception is an auth fault."""
    return isinstance(exception, AuthFault)
