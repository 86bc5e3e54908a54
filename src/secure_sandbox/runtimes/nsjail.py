"""nsjail runtime configured through a generated protobuf-text config."""

from __future__ import annotations

import asyncio
import math
from pathlib import Path

from secure_sandbox.models.config import MIB, SandboxConfig
from secure_sandbox.models.enums import NetworkMode, RuntimeName
from secure_sandbox.runtimes.base import Invocation, LauncherRuntime


class NsjailRuntime(LauncherRuntime):
    """Runs the payload in fresh Linux namespaces with rlimits via nsjail.

    The config file is written once per adapter; per-execution values
    (working directory, environment) are passed as flags.
    """

    name = RuntimeName.NSJAIL
    binary = "nsjail"
    linux_only = True

    def __init__(self, config: SandboxConfig) -> None:
        super().__init__(config)
        self.config_file: Path | None = None

    async def prepare_workspace(self, workspace: Path) -> None:
        self.config_file = workspace / "nsjail.cfg"
        await asyncio.to_thread(
            self.config_file.write_text, self.render_config(workspace), "utf-8"
        )

    async def cleanup(self) -> None:
        await super().cleanup()
        self.config_file = None

    def render_config(self, workspace: Path) -> str:
        """Render the nsjail config for this adapter's limits."""
        workspace_rw = "false" if self.config.read_only else "true"
        return f"""\
name: "{self.sandbox_id}"
mode: ONCE
hostname: "sandbox"
time_limit: {math.ceil(self.config.timeout_seconds)}

rlimit_as: {self.policy.memory_mb}
rlimit_cpu: {self.policy.cpu_seconds}
rlimit_fsize: {max(1, self.config.max_output_bytes // MIB)}
rlimit_nofile: 32
rlimit_nproc: {self.policy.pids_limit}

clone_newnet: {str(self.config.network is NetworkMode.NONE).lower()}
clone_newuser: true
clone_newns: true
clone_newpid: true
clone_newipc: true
clone_newuts: true

mount {{ src: "/bin" dst: "/bin" is_bind: true rw: false }}
mount {{ src: "/lib" dst: "/lib" is_bind: true rw: false }}
mount {{ src: "/lib64" dst: "/lib64" is_bind: true rw: false mandatory: false }}
mount {{ src: "/usr" dst: "/usr" is_bind: true rw: false }}
mount {{ src: "/etc/alternatives" dst: "/etc/alternatives" is_bind: true rw: false mandatory: false }}
mount {{ dst: "/tmp" fstype: "tmpfs" rw: true }}
mount {{ src: "/dev/null" dst: "/dev/null" is_bind: true rw: true }}
mount {{ src: "{workspace}" dst: "/workspace" is_bind: true rw: {workspace_rw} }}
"""

    def build_argv(self, invocation: Invocation) -> list[str]:
        assert self.config_file is not None
        argv = ["nsjail", "--config", str(self.config_file), "--cwd", invocation.cwd, "--quiet"]
        for key, value in invocation.env.items():
            argv.extend(["--env", f"{key}={value}"])
        # nsjail execs without a PATH lookup.
        argv.extend(["--", "/usr/bin/env", *invocation.argv])
        return argv
