"""Process supervision, resource policies, and environment filtering."""

from secure_sandbox.sandbox.process import (
    KILL_GRACE_S,
    CappedBuffer,
    ProcessOutcome,
    kill_process_tree,
    redact_host_paths,
    run_process,
    sanitize_output,
)
from secure_sandbox.sandbox.security import (
    BASE_ENV,
    ResourcePolicy,
    build_child_env,
    filter_env,
)

__all__ = [
    "BASE_ENV",
    "CappedBuffer",
    "KILL_GRACE_S",
    "ProcessOutcome",
    "ResourcePolicy",
    "build_child_env",
    "filter_env",
    "kill_process_tree",
    "redact_host_paths",
    "run_process",
    "sanitize_output",
]
