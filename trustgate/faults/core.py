"""
TrustGate Faults - Core types and fault taxonomy.

Defines:
- Fault base class (structured fault objects)
- FaultContext (runtime context wrapper)
- FaultDomain (explicit fault domains)
- Severity levels
"""

from __future__ import annotations

import sys
import time
import hashlib
import traceback
from enum import Enum
from dataclasses import dataclass, field
from typing import Any, Optional
from datetime import datetime, timezone


# ============================================================================
# Severity & Domain
# ============================================================================

class Severity(str, Enum):
    """
    Fault severity levels.

    Determines the log level a fault is emitted at.
    """
    INFO = "info"       # Expected outcome, no action needed
    WARN = "warn"       # Rejected request, worth reviewing in aggregate
    ERROR = "error"     # Broken invariant or failed dependency
    FATAL = "fatal"     # Operator intervention required

    # Aliases
    LOW = INFO
    MEDIUM = WARN
    HIGH = ERROR
    CRITICAL = FATAL


class FaultDomain:
    """
    Fault domains (taxonomy).

    Identifies the functional area where a fault occurred.
    """

    def __init__(self, name: str, description: str = ""):
        self.name = name
        self.value = name
        self.description = description

    def __str__(self) -> str:
        return self.name

    def __repr__(self) -> str:
        return f"FaultDomain(name='{self.name}')"

    def __eq__(self, other: Any) -> bool:
        if isinstance(other, FaultDomain):
            return self.name == other.name
        return str(self) == str(other)

    def __hash__(self) -> int:
        return hash(self.name)


# Standard Domains
FaultDomain.CONFIG = FaultDomain("config", "Configuration errors")
FaultDomain.SECURITY = FaultDomain("security", "Authentication and trust")
FaultDomain.CRYPTO = FaultDomain("crypto", "Key material and signatures")
FaultDomain.STORAGE = FaultDomain("storage", "Record store operations")
FaultDomain.DELIVERY = FaultDomain("delivery", "Out-of-band notifications")
FaultDomain.SYSTEM = FaultDomain("system", "System level faults")


# Domain defaults
DOMAIN_DEFAULTS = {
    FaultDomain.CONFIG: {"severity": Severity.FATAL, "retryable": False},
    FaultDomain.SECURITY: {"severity": Severity.WARN, "retryable": False},
    FaultDomain.CRYPTO: {"severity": Severity.ERROR, "retryable": False},
    FaultDomain.STORAGE: {"severity": Severity.ERROR, "retryable": True},
    FaultDomain.DELIVERY: {"severity": Severity.WARN, "retryable": True},
    FaultDomain.SYSTEM: {"severity": Severity.FATAL, "retryable": False},
}


# ============================================================================
# Fault - Base Class
# ============================================================================

class Fault(Exception):
    """
    Base fault class - structured, typed fault object.

    A fault carries:
    - Stable machine-readable code
    - Internal message (logged, never shown to callers)
    - Public message (safe to return to callers)
    - Severity level and domain classification
    - Retry semantics
    - Metadata for audit

    Subclasses usually declare everything as class attributes:

        ```python
        class AUTH_TOKEN_EXPIRED(Fault):
            domain = FaultDomain.SECURITY
            code = "AUTH_008"
            message = "Token expired"
            public_message = "Your session has expired"
        ```
    """

    public_message: str = "Request could not be completed"

    def __init__(
        self,
        code: str | None = None,
        message: str | None = None,
        *,
        domain: FaultDomain | None = None,
        severity: Optional[Severity] = None,
        retryable: Optional[bool] = None,
        public: bool = False,
        public_message: str | None = None,
        metadata: Optional[dict[str, Any]] = None,
    ):
        # Fallback to class attributes if not provided
        self.code = code if code is not None else getattr(self, "code", None)
        self.message = message if message is not None else getattr(self, "message", None)
        self.domain = domain if domain is not None else getattr(self, "domain", None)

        if self.code is None or self.message is None or self.domain is None:
            raise TypeError(f"{self.__class__.__name__} missing required code, message, or domain")

        super().__init__(self.message)

        defaults = DOMAIN_DEFAULTS.get(self.domain, {"severity": Severity.ERROR, "retryable": False})
        self.severity = severity or getattr(type(self), "severity", None) or defaults["severity"]
        if retryable is None:
            retryable = getattr(type(self), "retryable", None)
        self.retryable = retryable if retryable is not None else defaults["retryable"]

        self.public = public
        if public_message is not None:
            self.public_message = public_message

        self.metadata = metadata or {}

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(code={self.code!r}, domain={self.domain.value}, "
            f"severity={self.severity.value})"
        )

    @staticmethod
    def _hash_identifier(value: str) -> str:
        """Hash an identifier so it can be logged without being disclosed."""
        return hashlib.sha256(value.encode()).hexdigest()[:16]

    def public_view(self) -> dict[str, Any]:
        """Caller-safe representation: the code and the generic message only."""
        return {"code": self.code, "message": self.public_message}

    def to_dict(self) -> dict[str, Any]:
        """
        Serialize fault to dictionary.

        Returns:
            Dictionary representation suitable for logging
        """
        return {
            "code": self.code,
            "type": self.__class__.__name__,
            "message": self.message,
            "domain": self.domain.value,
            "severity": self.severity.value,
            "retryable": self.retryable,
            "metadata": {k: v for k, v in self.metadata.items() if not k.startswith("_")},
        }


# ============================================================================
# FaultContext - Runtime Context Wrapper
# ============================================================================

@dataclass(slots=True)
class FaultContext:
    """
    Runtime context wrapper for faults.

    Every fault processed by the engine is wrapped with the scope it
    occurred in (operation, consumer, request id) plus a trace id.
    """

    fault: Fault
    trace_id: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    # Scope context
    operation: Optional[str] = None
    consumer_id: Optional[str] = None
    request_id: Optional[str] = None

    # Causality
    cause: Optional[BaseException] = None
    stack: list[Any] = field(default_factory=list)

    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def capture(
        cls,
        fault: Fault,
        *,
        operation: Optional[str] = None,
        consumer_id: Optional[str] = None,
        request_id: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ) -> FaultContext:
        """
        Capture fault with runtime context.

        Extracts the stack trace of the cause (or the exception currently
        being handled) and generates a trace ID.
        """
        trace_data = f"{fault.code}:{time.time_ns()}"
        trace_id = hashlib.sha256(trace_data.encode()).hexdigest()[:16]

        stack = []
        origin = cause or fault.__cause__
        if origin is not None and origin.__traceback__ is not None:
            stack = traceback.extract_tb(origin.__traceback__)
        elif sys.exc_info()[2] is not None:
            stack = traceback.extract_tb(sys.exc_info()[2])

        return cls(
            fault=fault,
            trace_id=trace_id,
            operation=operation,
            consumer_id=consumer_id,
            request_id=request_id,
            cause=origin,
            stack=stack,
        )

    def fingerprint(self) -> str:
        """
        Stable fingerprint for this fault occurrence.

        Fingerprint = hash(code + domain + operation + consumer). Used to
        group repeated failures of the same kind from the same consumer.
        """
        data = ":".join([
            self.fault.code,
            self.fault.domain.value,
            self.operation or "",
            self.consumer_id or "",
        ])
        return hashlib.sha256(data.encode()).hexdigest()[:16]

    def to_dict(self) -> dict[str, Any]:
        return {
            "fault": self.fault.to_dict(),
            "trace_id": self.trace_id,
            "fingerprint": self.fingerprint(),
            "timestamp": self.timestamp.isoformat(),
            "scope": {
                "operation": self.operation,
                "consumer_id": self.consumer_id,
                "request_id": self.request_id,
            },
            "cause": repr(self.cause) if self.cause else None,
            "stack_depth": len(self.stack),
            "metadata": self.metadata,
        }

    def __str__(self) -> str:
        scope = f"operation={self.operation}" if self.operation else "global"
        return f"FaultContext[{self.trace_id}]({scope}): {self.fault}"
