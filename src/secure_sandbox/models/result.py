"""ExecutionResult, RuntimeDescriptor, and PoolStats models."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from secure_sandbox.models.enums import RuntimeName


class ExecutionResult(BaseModel):
    """Normalised outcome of one sandboxed execution.

    Two invariants are enforced at construction time, whatever the
    producing adapter claims:

    * ``timed_out`` implies ``killed`` and not ``success``.
    * ``success`` holds exactly when ``exit_code == 0`` and the run did
      not time out.
    """

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    success: bool = Field(default=False, description="Derived from exit_code and timed_out.")
    exit_code: int = Field(description="Process exit code; -1 when none was observed.")
    stdout: str = Field(default="", description="Captured standard output.")
    stderr: str = Field(default="", description="Captured standard error.")
    output: str = Field(default="", description="stdout and stderr joined and trimmed.")
    timed_out: bool = Field(default=False, description="The timeout elapsed before exit.")
    killed: bool = Field(default=False, description="The process tree was forcibly terminated.")
    duration_ms: int = Field(default=0, ge=0, description="Wall-clock duration.")
    error: str | None = Field(default=None, description="Short failure reason, if any.")

    @model_validator(mode="before")
    @classmethod
    def _enforce_invariants(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        timed_out = bool(data.get("timed_out", data.get("timedOut", False)))
        exit_code = data.get("exit_code", data.get("exitCode"))
        if timed_out:
            data.pop("killed", None)
            data["killed"] = True
        data.pop("success", None)
        data["success"] = exit_code == 0 and not timed_out
        return data


def merge_output(stdout: str, stderr: str) -> str:
    """Join the non-empty streams with a newline and trim the result."""
    return "\n".join(part for part in (stdout, stderr) if part).strip()


class RuntimeDescriptor(BaseModel):
    """Availability of one isolation technology on this host."""

    model_config = ConfigDict(frozen=True)

    name: RuntimeName
    available: bool
    version: str | None = None


class PoolStats(BaseModel):
    """Point-in-time view of a :class:`~secure_sandbox.pool.SandboxPool`.

    Before the pool is initialised ``total`` and ``available`` report the
    configured capacity while ``pool_size`` and ``waiting`` are zero.
    """

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    total: int
    available: int
    pool_size: int
    waiting: int
    in_use: int = 0
