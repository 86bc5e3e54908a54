"""gVisor runtime driven through ``runsc do``."""

from __future__ import annotations

from secure_sandbox.models.enums import NetworkMode, RuntimeName
from secure_sandbox.runtimes.base import Invocation, LauncherRuntime


class GVisorRuntime(LauncherRuntime):
    """Runs the payload under gVisor's user-space kernel.

    ``runsc do`` presents the host root filesystem through an overlay, so
    writes never reach the host and the workspace is visible at its host
    path.  gVisor has no per-invocation memory or CPU flags in this mode;
    limits are applied to the payload with ulimits inside the sandbox.
    """

    name = RuntimeName.GVISOR
    binary = "runsc"
    linux_only = True
    sandbox_workspace = None

    def build_argv(self, invocation: Invocation) -> list[str]:
        network = "host" if self.config.network is NetworkMode.HOST else "none"
        return [
            "runsc",
            "--rootless",
            f"--network={network}",
            "do",
            f"--cwd={invocation.cwd}",
            "--",
            *self.limited(invocation.argv),
        ]
