"""
TrustGate - Identity & Trust Broker

Authenticates users on behalf of registered consumer applications and
issues provider-signed bearer tokens.

- Password verification with lockout, multi-factor authentication
- Consumer request signatures with a replay window
- Provider key rotation with per-token key pinning
- Structured faults with caller-safe public messages
"""

__version__ = "0.1.0"

from .config import BrokerConfig, ConfigError, ConfigLoader
from .faults import Fault, FaultContext, FaultDomain, FaultEngine, Severity
from .logging import configure_logging
from .broker import TrustBroker
from .auth import (
    AuthenticationOrchestrator,
    ConsumerCredentials,
    LoginResult,
    RequestContext,
    VerifiedRequest,
)

__all__ = [
    "__version__",
    "BrokerConfig",
    "ConfigError",
    "ConfigLoader",
    "Fault",
    "FaultContext",
    "FaultDomain",
    "FaultEngine",
    "Severity",
    "configure_logging",
    "TrustBroker",
    "AuthenticationOrchestrator",
    "ConsumerCredentials",
    "LoginResult",
    "RequestContext",
    "VerifiedRequest",
]
