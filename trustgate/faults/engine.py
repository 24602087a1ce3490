"""
TrustGate Faults - Fault Engine.

The FaultEngine is the runtime fault processor that:
1. Converts raw exceptions to faults
2. Wraps them in a FaultContext with the current scope
3. Logs them at a level derived from severity
4. Notifies listeners (audit, metrics)

It never swallows a fault: callers re-raise after processing.
"""

from __future__ import annotations

import asyncio
import logging
from contextvars import ContextVar
from typing import Any, Callable, Optional

from .core import Fault, FaultContext, Severity
from .domains import SystemFault


_current_operation: ContextVar[Optional[str]] = ContextVar("current_operation", default=None)
_current_consumer: ContextVar[Optional[str]] = ContextVar("current_consumer", default=None)
_current_request_id: ContextVar[Optional[str]] = ContextVar("current_request_id", default=None)


_LOG_LEVELS = {
    Severity.INFO: logging.INFO,
    Severity.WARN: logging.WARNING,
    Severity.ERROR: logging.ERROR,
    Severity.FATAL: logging.CRITICAL,
}


class FaultEngine:
    """
    Runtime fault processor.

    Usage:
        ```python
        engine = FaultEngine()
        engine.on_fault(lambda ctx: metrics.increment(ctx.fault.code))

        try:
            ...
        except Exception as e:
            ctx = await engine.process(e, operation="login")
            raise ctx.fault from e
        ```
    """

    def __init__(
        self,
        *,
        logger: Optional[logging.Logger] = None,
        debug: bool = False,
    ):
        """
        Initialize fault engine.

        Args:
            logger: Logger for fault events (creates default if None)
            debug: Retain recent fault contexts for inspection
        """
        self.logger = logger or logging.getLogger("trustgate.faults")
        self.debug = debug

        self._event_listeners: list[Callable[[FaultContext], Any]] = []

        self._history: list[FaultContext] = []
        self._max_history = 100

    def on_fault(self, listener: Callable[[FaultContext], Any]):
        """
        Register fault event listener.

        Listeners may be plain callables or coroutine functions. A listener
        that raises is logged and skipped.
        """
        self._event_listeners.append(listener)

    # ========================================================================
    # Fault Processing
    # ========================================================================

    async def process(
        self,
        exception: BaseException,
        *,
        operation: Optional[str] = None,
        consumer_id: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> FaultContext:
        """
        Process exception or fault.

        Args:
            exception: Exception or Fault to process
            operation: Operation name (or use context var)
            consumer_id: Consumer in scope (or use context var)
            request_id: Request ID (or use context var)

        Returns:
            FaultContext wrapping the (possibly converted) fault
        """
        fault = self.to_fault(exception)

        ctx = FaultContext.capture(
            fault,
            operation=operation or _current_operation.get(),
            consumer_id=consumer_id or _current_consumer.get(),
            request_id=request_id or _current_request_id.get(),
            cause=exception if not isinstance(exception, Fault) else None,
        )

        await self._emit(ctx)

        if self.debug:
            self._history.append(ctx)
            if len(self._history) > self._max_history:
                self._history.pop(0)

        return ctx

    def to_fault(self, exception: BaseException) -> Fault:
        """Convert an arbitrary exception to a Fault; faults pass through unchanged."""
        if isinstance(exception, Fault):
            return exception

        if isinstance(exception, asyncio.CancelledError):
            return SystemFault(
                code="OPERATION_CANCELLED",
                message="Operation cancelled",
                severity=Severity.INFO,
            )

        return SystemFault(
            code="UNHANDLED_EXCEPTION",
            message=f"Unhandled exception: {type(exception).__name__}: {exception}",
            severity=Severity.ERROR,
            metadata={"exception_type": type(exception).__name__},
        )

    async def _emit(self, ctx: FaultContext):
        """Log and notify listeners."""
        self.logger.log(
            _LOG_LEVELS[ctx.fault.severity],
            f"[{ctx.fault.domain.value.upper()}] {ctx.fault.code}: {ctx.fault.message}",
            extra={
                "fault_context": ctx.to_dict(),
                "trace_id": ctx.trace_id,
                "fingerprint": ctx.fingerprint(),
            },
        )

        for listener in self._event_listeners:
            try:
                result = listener(ctx)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                self.logger.error(f"Fault listener raised exception: {e}")

    # ========================================================================
    # Context Management
    # ========================================================================

    @staticmethod
    def set_context(
        *,
        operation: Optional[str] = None,
        consumer_id: Optional[str] = None,
        request_id: Optional[str] = None,
    ):
        """Set fault scope for the current async task."""
        if operation is not None:
            _current_operation.set(operation)
        if consumer_id is not None:
            _current_consumer.set(consumer_id)
        if request_id is not None:
            _current_request_id.set(request_id)

    @staticmethod
    def clear_context():
        """Clear fault scope for the current async task."""
        _current_operation.set(None)
        _current_consumer.set(None)
        _current_request_id.set(None)

    def get_history(self) -> list[FaultContext]:
        """Recent fault contexts (debug mode only)."""
        return self._history.copy()

    def clear_history(self):
        self._history.clear()
