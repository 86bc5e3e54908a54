"""Resource policies and environment filtering shared by all runtimes."""

from __future__ import annotations

import logging
import math
from collections.abc import Mapping
from dataclasses import dataclass, field

from secure_sandbox.models.config import SandboxConfig
from secure_sandbox.models.enums import NetworkMode

logger = logging.getLogger(__name__)

# Environment variable names that must never be forwarded into a sandbox
# because they can alter interpreter behaviour in dangerous ways
# (e.g. executing arbitrary code at startup, loading shared libraries).
_BLOCKED_ENV_VARS: frozenset[str] = frozenset({
    "LD_PRELOAD", "LD_LIBRARY_PATH", "LD_AUDIT", "DYLD_INSERT_LIBRARIES",
    "PYTHONSTARTUP", "PYTHONPATH", "PYTHONINSPECT", "PYTHONBREAKPOINT",
    "RUBYOPT", "PERL5OPT", "NODE_OPTIONS", "JAVA_TOOL_OPTIONS",
    "BASH_ENV", "ENV", "CDPATH", "GLOBIGNORE", "PATH", "HOME",
})

# Environment every sandboxed process starts from.
BASE_ENV: dict[str, str] = {
    "PATH": "/usr/local/sbin:/usr/local/bin:/usr/sbin:/usr/bin:/sbin:/bin",
    "HOME": "/tmp",
    "LANG": "C.UTF-8",
}


def filter_env(env: Mapping[str, str] | None) -> dict[str, str]:
    """Drop blocked variables from *env*, logging each one removed."""
    safe_env: dict[str, str] = {}
    for key, value in (env or {}).items():
        if key.upper() in _BLOCKED_ENV_VARS:
            logger.warning("Blocked dangerous env var: %s", key)
            continue
        safe_env[key] = value
    return safe_env


def build_child_env(env: Mapping[str, str] | None) -> dict[str, str]:
    """Return :data:`BASE_ENV` overlaid with the filtered request env."""
    return {**BASE_ENV, **filter_env(env)}


@dataclass(frozen=True)
class ResourcePolicy:
    """Immutable resource limits derived from a :class:`SandboxConfig`.

    Each runtime translates the same policy into its native mechanism:
    Docker host config, nsjail/firejail rlimits, gVisor flags.
    """

    memory_bytes: int
    cpu_cores: float
    pids_limit: int = 64
    network: NetworkMode = NetworkMode.NONE
    read_only_rootfs: bool = True
    tmpfs_size_mb: int = 64
    max_output_bytes: int = 1024 * 1024
    open_files_limit: int = 128
    no_new_privileges: bool = True
    cap_drop: list[str] = field(default_factory=lambda: ["ALL"])

    def __post_init__(self) -> None:
        if self.memory_bytes <= 0:
            raise ValueError("memory_bytes must be a positive integer.")
        if self.cpu_cores <= 0:
            raise ValueError("cpu_cores must be positive.")
        if self.pids_limit <= 0:
            raise ValueError("pids_limit must be a positive integer.")
        if self.tmpfs_size_mb <= 0:
            raise ValueError("tmpfs_size_mb must be a positive integer.")

    @classmethod
    def from_config(cls, config: SandboxConfig) -> ResourcePolicy:
        return cls(
            memory_bytes=config.memory_bytes,
            cpu_cores=config.cpu_cores,
            pids_limit=config.pids_limit,
            network=config.network,
            read_only_rootfs=config.read_only,
            max_output_bytes=config.max_output_bytes,
        )

    @property
    def memory_mb(self) -> int:
        return max(1, self.memory_bytes // (1024 * 1024))

    @property
    def cpu_seconds(self) -> int:
        """CPU-time rlimit: one minute of CPU per granted core."""
        return math.ceil(self.cpu_cores * 60)

    def to_container_config(self) -> dict:
        """Convert to keyword arguments for the Docker SDK ``containers.create``."""
        return {
            "network_mode": "host" if self.network is NetworkMode.HOST else "none",
            "read_only": self.read_only_rootfs,
            "mem_limit": f"{self.memory_mb}m",
            "memswap_limit": f"{self.memory_mb}m",  # No swap
            "nano_cpus": int(self.cpu_cores * 1_000_000_000),
            "pids_limit": self.pids_limit,
            "security_opt": ["no-new-privileges"] if self.no_new_privileges else [],
            "cap_drop": self.cap_drop,
            "tmpfs": {"/tmp": f"size={self.tmpfs_size_mb}m,nosuid"},
        }

    def to_cli_args(self) -> list[str]:
        """Equivalent limits as ``docker run`` / ``podman run`` flags."""
        args = [
            f"--memory={self.memory_mb}m",
            f"--memory-swap={self.memory_mb}m",
            f"--cpus={self.cpu_cores:g}",
            f"--pids-limit={self.pids_limit}",
            f"--network={'host' if self.network is NetworkMode.HOST else 'none'}",
        ]
        if self.no_new_privileges:
            args.append("--security-opt=no-new-privileges")
        args.extend(f"--cap-drop={cap}" for cap in self.cap_drop)
        if self.read_only_rootfs:
            args.append("--read-only")
            args.append(f"--tmpfs=/tmp:rw,nosuid,size={self.tmpfs_size_mb}m")
        return args
