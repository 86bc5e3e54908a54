"""Core data models for the sandbox subsystem."""

from secure_sandbox.models.audit import AuditActor, AuditDetails, AuditRecord, AuditResource
from secure_sandbox.models.config import (
    SandboxConfig,
    SandboxOptions,
    bytes_to_memory,
    normalize_config,
    parse_memory,
)
from secure_sandbox.models.enums import (
    AuditOutcome,
    AuditSeverity,
    ExecutorState,
    NetworkMode,
    RuntimeName,
)
from secure_sandbox.models.request import (
    CodeExecutionRequest,
    CommandExecutionRequest,
    ExecutionContext,
    ExecutionRequest,
    parse_context,
    parse_request,
)
from secure_sandbox.models.result import (
    ExecutionResult,
    PoolStats,
    RuntimeDescriptor,
    merge_output,
)

__all__ = [
    "AuditActor",
    "AuditDetails",
    "AuditOutcome",
    "AuditRecord",
    "AuditResource",
    "AuditSeverity",
    "CodeExecutionRequest",
    "CommandExecutionRequest",
    "ExecutionContext",
    "ExecutionRequest",
    "ExecutionResult",
    "ExecutorState",
    "NetworkMode",
    "PoolStats",
    "RuntimeDescriptor",
    "RuntimeName",
    "SandboxConfig",
    "SandboxOptions",
    "bytes_to_memory",
    "normalize_config",
    "parse_context",
    "parse_memory",
    "parse_request",
]
