"""
TrustGate Faults - structured fault handling.

Failures in TrustGate are typed fault signals: each carries a stable code,
an internal message for the audit log, and a generic public message that is
the only thing ever returned to callers.

Core exports:
- Fault: Base fault class
- FaultContext: Runtime context wrapper
- FaultDomain: Domain taxonomy
- Severity: Severity levels
- FaultEngine: Runtime fault processor
"""

from .core import (
    DOMAIN_DEFAULTS,
    Fault,
    FaultContext,
    FaultDomain,
    Severity,
)
from .domains import SystemFault
from .engine import FaultEngine

__all__ = [
    "DOMAIN_DEFAULTS",
    "Fault",
    "FaultContext",
    "FaultDomain",
    "Severity",
    "SystemFault",
    "FaultEngine",
]
