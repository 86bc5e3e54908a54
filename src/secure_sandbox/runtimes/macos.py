"""macOS runtime using ``sandbox-exec`` and an SBPL profile."""

from __future__ import annotations

import asyncio
import shutil
import sys
from pathlib import Path

from secure_sandbox.models.config import SandboxConfig
from secure_sandbox.models.enums import NetworkMode, RuntimeName
from secure_sandbox.models.result import RuntimeDescriptor
from secure_sandbox.runtimes.base import Invocation, LauncherRuntime


class MacOSRuntime(LauncherRuntime):
    """Runs the payload under Seatbelt with a deny-by-default profile.

    ``sandbox-exec`` has no resource controls, so memory and CPU-time
    limits are applied as ulimits where the kernel honours them.
    """

    name = RuntimeName.MACOS
    binary = "sandbox-exec"
    sandbox_workspace = None

    def __init__(self, config: SandboxConfig) -> None:
        super().__init__(config)
        self.profile_path: Path | None = None

    async def initialize(self) -> None:
        if sys.platform != "darwin":
            raise RuntimeError("macOS sandbox is only available on macOS")
        await super().initialize()

    async def prepare_workspace(self, workspace: Path) -> None:
        self.profile_path = workspace / "sandbox.sb"
        await asyncio.to_thread(
            self.profile_path.write_text, self.render_profile(workspace), "utf-8"
        )

    async def cleanup(self) -> None:
        await super().cleanup()
        self.profile_path = None

    def render_profile(self, workspace: Path) -> str:
        workspace_access = "file-read*" if self.config.read_only else "file-read* file-write*"
        profile = f"""\
(version 1)
(deny default)
(allow process-fork)
(allow process-exec)
(allow file-read*
  (subpath "/usr")
  (subpath "/bin")
  (subpath "/sbin")
  (subpath "/System")
  (subpath "/Library/Frameworks")
  (subpath "/private/var/db/dyld")
  (literal "/dev/null")
  (literal "/dev/zero")
  (literal "/dev/random")
  (literal "/dev/urandom"))
(allow {workspace_access} (subpath "{workspace}"))
(allow file-write* (literal "/dev/null"))
(allow mach-lookup (global-name "com.apple.system.logger"))
(allow sysctl-read)
(allow signal (target self))
"""
        if self.config.network is NetworkMode.NONE:
            profile += "(deny network*)\n"
        else:
            profile += "(allow network*)\n"
        for path in self.config.allowed_paths:
            access = "file-read*" if self.config.read_only else "file-read* file-write*"
            profile += f'(allow {access} (subpath "{path}"))\n'
        return profile

    def build_argv(self, invocation: Invocation) -> list[str]:
        assert self.profile_path is not None
        return ["sandbox-exec", "-f", str(self.profile_path), *self.limited(invocation.argv)]

    def launcher_cwd(self, invocation: Invocation) -> str | None:
        return invocation.cwd

    @classmethod
    async def probe(cls) -> RuntimeDescriptor:
        available = sys.platform == "darwin" and shutil.which("sandbox-exec") is not None
        return RuntimeDescriptor(
            name=cls.name,
            available=available,
            version="built-in" if available else None,
        )
