"""Firejail runtime configured through a generated profile."""

from __future__ import annotations

import asyncio
import math
from pathlib import Path

from secure_sandbox.models.config import SandboxConfig
from secure_sandbox.models.enums import NetworkMode, RuntimeName
from secure_sandbox.runtimes.base import Invocation, LauncherRuntime


class FirejailRuntime(LauncherRuntime):
    """Runs the payload under a firejail profile with rlimits and seccomp.

    Firejail keeps host paths, so the workspace is whitelisted and used at
    its host location.
    """

    name = RuntimeName.FIREJAIL
    binary = "firejail"
    linux_only = True
    sandbox_workspace = None

    def __init__(self, config: SandboxConfig) -> None:
        super().__init__(config)
        self.profile_path: Path | None = None

    async def prepare_workspace(self, workspace: Path) -> None:
        self.profile_path = workspace / "sandbox.profile"
        await asyncio.to_thread(
            self.profile_path.write_text, self.render_profile(workspace), "utf-8"
        )

    async def cleanup(self) -> None:
        await super().cleanup()
        self.profile_path = None

    def render_profile(self, workspace: Path) -> str:
        lines = [
            "# Generated sandbox profile",
            "blacklist /boot",
            "blacklist /media",
            "blacklist /mnt",
            "blacklist /opt",
            "blacklist /root",
            "blacklist /srv",
            "blacklist /sys/firmware",
            "private-tmp",
            "private-dev",
            "no-new-privs",
            "seccomp",
            "caps.drop all",
            "nosound",
            "novideo",
            "dbus-user none",
            "dbus-system none",
            f"rlimit-as {self.policy.memory_bytes}",
            f"rlimit-cpu {self.policy.cpu_seconds}",
            f"rlimit-fsize {self.config.max_output_bytes}",
            f"rlimit-nproc {self.policy.pids_limit}",
            "rlimit-nofile 128",
            f"whitelist {workspace}",
        ]
        if self.config.network is NetworkMode.NONE:
            lines.append("net none")
        if self.config.read_only:
            lines.append(f"read-only {workspace}")
        for path in self.config.allowed_paths:
            lines.append(f"whitelist {path}")
            if self.config.read_only:
                lines.append(f"read-only {path}")
        return "\n".join(lines) + "\n"

    def build_argv(self, invocation: Invocation) -> list[str]:
        assert self.profile_path is not None
        seconds = math.ceil(self.config.timeout_seconds)
        hours, remainder = divmod(seconds, 3600)
        minutes, seconds = divmod(remainder, 60)
        argv = [
            "firejail",
            f"--profile={self.profile_path}",
            "--quiet",
            f"--name={self.run_name(invocation)}",
            "--deterministic-exit-code",
            f"--timeout={hours:02d}:{minutes:02d}:{seconds:02d}",
        ]
        for key, value in invocation.env.items():
            argv.append(f"--env={key}={value}")
        argv.extend(["--", *invocation.argv])
        return argv

    def launcher_cwd(self, invocation: Invocation) -> str | None:
        return invocation.cwd
