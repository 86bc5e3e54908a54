"""Audit sinks receiving one :class:`AuditRecord` per audited execution.

:class:`AuditSink` is a structural interface (``typing.Protocol``); any
object with a matching ``log`` method can be injected into a
:class:`~secure_sandbox.executor.SandboxExecutor`.  Two implementations
ship with the package:

* :class:`LoggingAuditSink` -- writes each record as one JSON line to the
  ``secure_sandbox.audit`` logger.  This is the default.
* :class:`InMemoryAuditSink` -- keeps records in a list, for tests.
"""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

from secure_sandbox.models.audit import AuditRecord
from secure_sandbox.models.enums import AuditSeverity

AUDIT_LOGGER_NAME = "secure_sandbox.audit"

_LEVELS: dict[AuditSeverity, int] = {
    AuditSeverity.INFO: logging.INFO,
    AuditSeverity.WARN: logging.WARNING,
    AuditSeverity.ERROR: logging.ERROR,
}


@runtime_checkable
class AuditSink(Protocol):
    """Destination for audit records.

    Implementations must not raise; the executor logs and discards sink
    failures so auditing never changes an execution's outcome.
    """

    def log(self, record: AuditRecord) -> None:
        ...


class LoggingAuditSink:
    """Emit audit records through the standard logging machinery."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or logging.getLogger(AUDIT_LOGGER_NAME)

    def log(self, record: AuditRecord) -> None:
        self._logger.log(
            _LEVELS[record.severity],
            "%s",
            record.model_dump_json(by_alias=True),
        )


class InMemoryAuditSink:
    """Collect audit records in memory (not thread-safe)."""

    def __init__(self) -> None:
        self.records: list[AuditRecord] = []

    def log(self, record: AuditRecord) -> None:
        self.records.append(record)

    def clear(self) -> None:
        self.records.clear()
