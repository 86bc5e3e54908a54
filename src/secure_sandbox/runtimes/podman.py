"""Podman runtime driven through the ``podman`` CLI."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from secure_sandbox.models.config import SandboxConfig
from secure_sandbox.models.enums import RuntimeName
from secure_sandbox.models.request import ExecutionRequest
from secure_sandbox.runtimes.base import Invocation, LauncherRuntime
from secure_sandbox.sandbox.process import run_process

logger = logging.getLogger(__name__)

# Timeout for ``podman kill`` / ``podman rm`` housekeeping calls.
_HOUSEKEEPING_TIMEOUT_S: float = 10.0


class PodmanRuntime(LauncherRuntime):
    """Runs the payload in a rootless, throwaway Podman container.

    The container gets the same limits as the Docker runtime (via
    :meth:`ResourcePolicy.to_cli_args`) and the workspace mounted at
    ``/workspace``.  Each execution runs in its own container named by
    :meth:`run_name`.  On timeout that container is killed by name, since
    its processes live outside the launcher's process group.
    """

    name = RuntimeName.PODMAN
    binary = "podman"

    def __init__(self, config: SandboxConfig) -> None:
        super().__init__(config)
        # Containers of executions that have not finished yet.
        self.active_containers: set[str] = set()

    @asynccontextmanager
    async def invocation(self, request: ExecutionRequest) -> AsyncIterator[Invocation]:
        async with super().invocation(request) as invocation:
            container = self.run_name(invocation)
            self.active_containers.add(container)
            try:
                yield invocation
            finally:
                self.active_containers.discard(container)

    def build_argv(self, invocation: Invocation) -> list[str]:
        assert self.workspace is not None
        mount_mode = "ro" if self.config.read_only else "rw"
        argv = [
            "podman",
            "run",
            "--rm",
            f"--name={self.run_name(invocation)}",
            "--userns=keep-id",
            *self.policy.to_cli_args(),
            f"--volume={self.workspace}:/workspace:Z,{mount_mode}",
            f"--workdir={invocation.cwd}",
        ]
        for path in self.config.allowed_paths:
            argv.append(f"--volume={path}:{path}:ro")
        for key, value in invocation.env.items():
            argv.extend(["--env", f"{key}={value}"])
        if invocation.stdin is not None:
            argv.append("--interactive")
        argv.append(self.container_image(invocation))
        argv.extend(invocation.argv)
        return argv

    def launcher_env(self, invocation: Invocation) -> dict[str, str] | None:
        # The CLI needs the host environment (XDG_RUNTIME_DIR etc.);
        # the payload environment travels as --env flags.
        return None

    async def on_kill(self, invocation: Invocation) -> None:
        container = self.run_name(invocation)
        await self._podman("kill", container)
        await self._podman("rm", "--force", "--ignore", container)

    async def cleanup(self) -> None:
        containers = sorted(self.active_containers)
        self.active_containers.clear()
        if containers:
            await self._podman("rm", "--force", "--ignore", *containers)
        await super().cleanup()

    async def _podman(self, *args: str) -> None:
        outcome = await run_process(
            ["podman", *args],
            env=None,
            timeout_s=_HOUSEKEEPING_TIMEOUT_S,
            max_output_bytes=4096,
        )
        if outcome.exit_code != 0:
            logger.debug("podman %s exited %s: %s", args[0], outcome.exit_code, outcome.stderr.strip())
