"""Pydantic settings for the sandbox subsystem.

Settings are opt-in.  :class:`~secure_sandbox.executor.SandboxExecutor`
and :class:`~secure_sandbox.pool.SandboxPool` never read the environment
themselves; an application that wants ``SANDBOX_*`` variables to apply
passes ``Settings().to_config()`` as their config::

    settings = Settings()
    configure_logging(settings)
    pool = SandboxPool(settings.to_config())
"""

import logging

from pydantic_settings import BaseSettings

from secure_sandbox.models.config import SandboxConfig
from secure_sandbox.models.enums import NetworkMode, RuntimeName


class Settings(BaseSettings):
    """Process-wide defaults loaded from ``SANDBOX_*`` environment variables."""

    model_config = {"env_prefix": "SANDBOX_"}

    runtime: RuntimeName = RuntimeName.AUTO
    pool_size: int = 4
    timeout_ms: int = 30_000
    memory: str = "256Mi"
    cpu: str = "0.5"
    max_output_bytes: int = 1_048_576  # 1 MiB
    network: NetworkMode = NetworkMode.NONE
    read_only: bool = True
    fallback_enabled: bool = True
    image: str = "alpine:latest"
    log_level: str = "INFO"

    def to_config(self) -> SandboxConfig:
        """Build the :class:`SandboxConfig` these settings describe."""
        return SandboxConfig(
            runtime=self.runtime,
            pool_size=self.pool_size,
            timeout_ms=self.timeout_ms,
            memory=self.memory,
            cpu=self.cpu,
            max_output_bytes=self.max_output_bytes,
            network=self.network,
            read_only=self.read_only,
            fallback_enabled=self.fallback_enabled,
            image=self.image,
        )


def configure_logging(settings: Settings | None = None) -> None:
    """Configure root logging from *settings* (defaults: environment)."""
    settings = settings or Settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
