"""Execution requests and the caller context attached to them."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from secure_sandbox.errors import SandboxValidationError

_MODEL_CONFIG = ConfigDict(
    frozen=True,
    alias_generator=to_camel,
    populate_by_name=True,
    extra="forbid",
)


class CodeExecutionRequest(BaseModel):
    """Run a snippet of source code with the interpreter for ``language``."""

    model_config = _MODEL_CONFIG

    code: str = Field(description="Source code to execute.")
    language: str = Field(
        min_length=1,
        description="Language of the snippet (e.g. 'python', 'javascript').",
    )
    env: dict[str, str] = Field(
        default_factory=dict,
        description="Environment variables visible to the code.",
    )
    files: dict[str, str] = Field(
        default_factory=dict,
        description="Virtual files (relative path -> content) placed in the workspace.",
    )

    @field_validator("language")
    @classmethod
    def _normalise_language(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator("files")
    @classmethod
    def _reject_path_traversal(cls, value: dict[str, str]) -> dict[str, str]:
        for path in value:
            if path.startswith("/") or ".." in path.split("/"):
                raise ValueError(f"Path traversal in files key: {path!r}")
        return value

    @property
    def resource_name(self) -> str:
        return self.language


class CommandExecutionRequest(BaseModel):
    """Run ``command`` with ``args`` directly, without a shell."""

    model_config = _MODEL_CONFIG

    command: str = Field(min_length=1, description="Executable to run.")
    args: list[str] = Field(default_factory=list, description="Arguments for the command.")
    env: dict[str, str] = Field(
        default_factory=dict,
        description="Environment variables visible to the command.",
    )
    cwd: str | None = Field(default=None, description="Working directory inside the sandbox.")
    stdin: str | None = Field(default=None, description="Data written to the command's stdin.")

    @property
    def resource_name(self) -> str:
        return self.command


ExecutionRequest = Union[CodeExecutionRequest, CommandExecutionRequest]


class ExecutionContext(BaseModel):
    """Who is asking, for auditing purposes."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    user_id: str | None = None
    request_id: str | None = None


def parse_request(data: ExecutionRequest | Mapping[str, Any]) -> ExecutionRequest:
    """Return *data* as a typed request.

    Mappings are dispatched on the presence of a ``code`` key: with it
    they become a :class:`CodeExecutionRequest`, otherwise a
    :class:`CommandExecutionRequest`.

    Raises
    ------
    SandboxValidationError
        If *data* does not describe a valid request.
    """
    if isinstance(data, (CodeExecutionRequest, CommandExecutionRequest)):
        return data
    if not isinstance(data, Mapping):
        raise SandboxValidationError(
            f"Expected an execution request, got {type(data).__name__}"
        )

    model = CodeExecutionRequest if "code" in data else CommandExecutionRequest
    try:
        return model.model_validate(dict(data))
    except ValidationError as exc:
        raise SandboxValidationError(
            "Invalid execution request",
            details={"errors": exc.errors(include_url=False, include_context=False)},
        ) from exc


def parse_context(data: ExecutionContext | Mapping[str, Any] | None) -> ExecutionContext | None:
    """Return *data* as an :class:`ExecutionContext`, or ``None``."""
    if data is None or isinstance(data, ExecutionContext):
        return data
    try:
        return ExecutionContext.model_validate(dict(data))
    except ValidationError as exc:
        raise SandboxValidationError(
            "Invalid execution context",
            details={"errors": exc.errors(include_url=False, include_context=False)},
        ) from exc
