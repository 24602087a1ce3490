"""
TrustGate Faults - Domain-specific base faults.

Generic faults used by the engine itself; authentication faults live in
``trustgate.auth.faults``.
"""

from __future__ import annotations

from typing import Any, Optional

from .core import Fault, FaultDomain, Severity


class SystemFault(Fault):
    """Unexpected failure that is not part of the fault taxonomy."""

    public_message = "An internal error occurred"

    def __init__(
        self,
        code: str,
        message: str,
        *,
        severity: Severity = Severity.FATAL,
        metadata: Optional[dict[str, Any]] = None,
    ):
        super().__init__(
            code=code,
            message=message,
            domain=FaultDomain.SYSTEM,
            severity=severity,
            retryable=False,
            metadata=metadata,
        )
