"""SandboxConfig, SandboxOptions, and config normalisation."""

from __future__ import annotations

import math
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from secure_sandbox.errors import SandboxValidationError
from secure_sandbox.models.enums import NetworkMode, RuntimeName

MIB: int = 1024 * 1024

DEFAULT_POOL_SIZE: int = 4

_MEMORY_UNITS: dict[str, int] = {"Ki": 1024, "Mi": MIB, "Gi": 1024 * MIB}


def parse_memory(quantity: str) -> int:
    """Convert a Kubernetes-style quantity (``"256Mi"``) into bytes.

    A bare number is read as mebibytes.
    """
    unit = quantity[-2:]
    if unit in _MEMORY_UNITS:
        return int(quantity[:-2]) * _MEMORY_UNITS[unit]
    return int(quantity) * MIB


def bytes_to_memory(value: int) -> str:
    """Round a byte count to the nearest whole mebibyte (halves round up)."""
    return f"{max(1, math.floor(value / MIB + 0.5))}Mi"


class SandboxConfig(BaseModel):
    """Canonical, immutable configuration shared by an executor or pool."""

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    runtime: RuntimeName = Field(
        default=RuntimeName.AUTO,
        description="Isolation technology to use, or 'auto' to pick by priority.",
    )
    memory: str = Field(
        default="256Mi",
        pattern=r"^\d+(Ki|Mi|Gi)?$",
        description="Memory ceiling as a Ki/Mi/Gi quantity.",
    )
    cpu: str = Field(
        default="0.5",
        description="CPU share, expressed in cores (e.g. '0.5').",
    )
    timeout_ms: int = Field(
        default=30_000,
        gt=0,
        description="Wall-clock timeout for a single execution.",
    )
    max_output_bytes: int = Field(
        default=MIB,
        gt=0,
        description="Cap applied independently to captured stdout and stderr.",
    )
    network: NetworkMode = Field(
        default=NetworkMode.NONE,
        description="Network visibility inside the sandbox.",
    )
    read_only: bool = Field(
        default=True,
        description="Mount the sandbox root filesystem read-only.",
    )
    fallback_enabled: bool = Field(
        default=True,
        description="Fall back to another runtime when the requested one is missing.",
    )
    pool_size: int = Field(
        default=DEFAULT_POOL_SIZE,
        gt=0,
        description="Number of executors held by a SandboxPool.",
    )
    work_dir: str | None = Field(
        default=None,
        description="Default working directory inside the sandbox.",
    )
    allowed_paths: tuple[str, ...] = Field(
        default=(),
        description="Host paths exposed to the sandbox (read-only when read_only is set).",
    )
    image: str = Field(
        default="alpine:latest",
        description="Base image for container runtimes when no language image applies.",
    )
    pids_limit: int = Field(
        default=64,
        gt=0,
        description="Maximum number of processes inside the sandbox.",
    )

    @field_validator("cpu")
    @classmethod
    def _cpu_is_positive(cls, value: str) -> str:
        try:
            cores = float(value)
        except ValueError as exc:
            raise ValueError(f"cpu must be a number of cores, got {value!r}") from exc
        if cores <= 0:
            raise ValueError("cpu must be positive.")
        return value

    @property
    def memory_bytes(self) -> int:
        return parse_memory(self.memory)

    @property
    def cpu_cores(self) -> float:
        return float(self.cpu)

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000


class SandboxOptions(BaseModel):
    """Caller-facing options accepting both the canonical and simplified shapes.

    Every field is optional.  The simplified fields are ``memory_limit``
    (bytes), ``network_access`` (bool) and ``timeout`` (milliseconds); when
    set they take precedence over ``memory``, ``network`` and
    ``timeout_ms`` respectively.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
    )

    runtime: RuntimeName | None = None
    memory: str | None = None
    memory_limit: int | None = Field(default=None, ge=0)
    cpu: str | None = None
    timeout_ms: int | None = None
    timeout: int | None = Field(default=None, ge=0)
    max_output_bytes: int | None = None
    network: NetworkMode | None = None
    network_access: bool | None = None
    read_only: bool | None = None
    fallback_enabled: bool | None = None
    pool_size: int | None = None
    work_dir: str | None = None
    allowed_paths: tuple[str, ...] | None = None
    image: str | None = None
    pids_limit: int | None = None


# Canonical fields copied verbatim from SandboxOptions when present.
_PASSTHROUGH_FIELDS: tuple[str, ...] = (
    "runtime",
    "memory",
    "cpu",
    "timeout_ms",
    "max_output_bytes",
    "network",
    "read_only",
    "fallback_enabled",
    "pool_size",
    "work_dir",
    "allowed_paths",
    "image",
    "pids_limit",
)


def normalize_config(
    options: SandboxConfig | SandboxOptions | Mapping[str, Any] | None = None,
) -> SandboxConfig:
    """Collapse any accepted configuration shape into a :class:`SandboxConfig`.

    Parameters
    ----------
    options:
        A ready ``SandboxConfig`` (returned unchanged), a
        ``SandboxOptions``, a mapping using snake_case or camelCase keys,
        or ``None`` for all defaults.

    Raises
    ------
    SandboxValidationError
        If a value is out of range or a key is unknown.
    """
    if isinstance(options, SandboxConfig):
        return options

    try:
        if options is None:
            opts = SandboxOptions()
        elif isinstance(options, SandboxOptions):
            opts = options
        else:
            opts = SandboxOptions.model_validate(dict(options))

        values: dict[str, Any] = {
            name: getattr(opts, name)
            for name in _PASSTHROUGH_FIELDS
            if getattr(opts, name) is not None
        }
        if opts.memory_limit:
            values["memory"] = bytes_to_memory(opts.memory_limit)
        if opts.network_access is not None:
            values["network"] = NetworkMode.HOST if opts.network_access else NetworkMode.NONE
        if opts.timeout:
            values["timeout_ms"] = opts.timeout

        return SandboxConfig(**values)
    except ValidationError as exc:
        raise SandboxValidationError(
            "Invalid sandbox configuration",
            details={"errors": exc.errors(include_url=False, include_context=False)},
        ) from exc
