"""Bubblewrap (``bwrap``) runtime."""

from __future__ import annotations

from secure_sandbox.models.enums import NetworkMode, RuntimeName
from secure_sandbox.runtimes.base import Invocation, LauncherRuntime


class BubblewrapRuntime(LauncherRuntime):
    """Runs the payload in unprivileged namespaces built by bubblewrap.

    Only system directories are bound (read-only) plus the workspace; the
    environment is cleared and rebuilt from the filtered request env.
    Memory and CPU-time limits are applied as ulimits on the payload.
    """

    name = RuntimeName.BUBBLEWRAP
    binary = "bwrap"
    linux_only = True

    def build_argv(self, invocation: Invocation) -> list[str]:
        assert self.workspace is not None
        workspace_bind = "--ro-bind" if self.config.read_only else "--bind"
        argv = [
            "bwrap",
            "--unshare-all",
            "--die-with-parent",
            "--new-session",
            "--ro-bind", "/usr", "/usr",
            "--ro-bind-try", "/bin", "/bin",
            "--ro-bind-try", "/lib", "/lib",
            "--ro-bind-try", "/lib64", "/lib64",
            "--ro-bind-try", "/etc/alternatives", "/etc/alternatives",
            "--ro-bind-try", "/etc/ssl", "/etc/ssl",
            "--proc", "/proc",
            "--dev", "/dev",
            "--tmpfs", "/tmp",
            workspace_bind, str(self.workspace), "/workspace",
            "--hostname", "sandbox",
            "--clearenv",
        ]
        if self.config.network is NetworkMode.HOST:
            argv.append("--share-net")
            argv.extend(["--ro-bind-try", "/etc/resolv.conf", "/etc/resolv.conf"])
        for path in self.config.allowed_paths:
            argv.extend(["--ro-bind" if self.config.read_only else "--bind", path, path])
        for key, value in invocation.env.items():
            argv.extend(["--setenv", key, value])
        argv.extend(["--chdir", invocation.cwd, "--", *self.limited(invocation.argv)])
        return argv
