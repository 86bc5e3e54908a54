"""AuditRecord model emitted once per audited execution."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Literal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from secure_sandbox.models.enums import AuditOutcome, AuditSeverity

_MODEL_CONFIG = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)


class AuditActor(BaseModel):
    model_config = _MODEL_CONFIG

    user_id: str


class AuditResource(BaseModel):
    model_config = _MODEL_CONFIG

    type: Literal["sandbox"] = "sandbox"
    name: str = Field(description="Language of a code request or the command of a command request.")


class AuditDetails(BaseModel):
    model_config = _MODEL_CONFIG

    exit_code: int
    timed_out: bool
    duration_ms: int


class AuditRecord(BaseModel):
    """Structured record of a single sandbox execution."""

    model_config = _MODEL_CONFIG

    event_id: str = Field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    event_type: Literal["sandbox"] = "sandbox"
    severity: AuditSeverity
    actor: AuditActor
    resource: AuditResource
    action: Literal["execute"] = "execute"
    outcome: AuditOutcome
    details: AuditDetails
