"""RuntimeName, NetworkMode, ExecutorState, and audit enums."""

from enum import StrEnum


class RuntimeName(StrEnum):
    """Isolation technologies an executor can be configured with.

    ``AUTO`` is a selector rather than a technology: it resolves to the
    highest-priority runtime detected on the host.  ``MOCK`` is a
    deterministic stand-in that never touches the operating system.
    """

    GVISOR = "gvisor"
    NSJAIL = "nsjail"
    DOCKER = "docker"
    PODMAN = "podman"
    BUBBLEWRAP = "bubblewrap"
    FIREJAIL = "firejail"
    MACOS = "macos"
    MOCK = "mock"
    AUTO = "auto"


class NetworkMode(StrEnum):
    """Network visibility granted to sandboxed code."""

    NONE = "none"
    HOST = "host"


class ExecutorState(StrEnum):
    """Lifecycle states of a :class:`~secure_sandbox.executor.SandboxExecutor`."""

    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"


class AuditSeverity(StrEnum):
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class AuditOutcome(StrEnum):
    SUCCESS = "success"
    FAILURE = "failure"
    ERROR = "error"
