"""Sandbox error hierarchy.

Every error raised by this package derives from :class:`SandboxError`
and carries a machine-readable ``code``:

* ``not_available`` -- no runtime could be selected (:class:`NotAvailableError`).
* ``execution_failed`` -- an adapter raised unexpectedly (:class:`ExecutionFailedError`).
* ``validation_error`` -- a request or configuration is malformed
  (:class:`SandboxValidationError`).
* ``pool_shutdown`` -- a pool was shut down while a caller waited
  (:class:`PoolShutdownError`).

Timeouts are deliberately absent: they are reported through
``ExecutionResult.timed_out`` and never raised.
"""

from __future__ import annotations

from typing import Any


class SandboxError(Exception):
    """Base exception for the sandbox subsystem.

    Attributes
    ----------
    code:
        Machine-readable error code.
    message:
        Human-readable description.  Must not contain host paths.
    details:
        Structured context specific to the error instance.
    """

    code: str = "sandbox_error"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message
        if code is not None:
            self.code = code
        self.details: dict[str, Any] = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            payload["detail"] = self.details
        return {"error": payload}

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r})"


class NotAvailableError(SandboxError):
    code = "not_available"


class ExecutionFailedError(SandboxError):
    code = "execution_failed"


class SandboxValidationError(SandboxError):
    code = "validation_error"


class PoolShutdownError(SandboxError):
    code = "pool_shutdown"
