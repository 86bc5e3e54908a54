"""Abstract runtime adapter interface and shared invocation plumbing."""

from __future__ import annotations

import asyncio
import functools
import logging
import secrets
import shlex
import shutil
import sys
import tempfile
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path

from secure_sandbox.errors import SandboxValidationError
from secure_sandbox.models.config import SandboxConfig
from secure_sandbox.models.enums import RuntimeName
from secure_sandbox.models.request import (
    CodeExecutionRequest,
    ExecutionRequest,
)
from secure_sandbox.models.result import ExecutionResult, RuntimeDescriptor, merge_output
from secure_sandbox.sandbox.process import ProcessOutcome, redact_host_paths, run_process
from secure_sandbox.sandbox.security import ResourcePolicy, build_child_env

logger = logging.getLogger(__name__)

# Timeout for ``<tool> --version`` availability probes.
PROBE_TIMEOUT_S: float = 5.0

# Interpreter command line per language; the code is appended as the last argument.
_INTERPRETERS: dict[str, list[str]] = {
    "python": ["python3", "-c"],
    "python3": ["python3", "-c"],
    "javascript": ["node", "-e"],
    "js": ["node", "-e"],
    "node": ["node", "-e"],
    "bash": ["bash", "-c"],
    "sh": ["sh", "-c"],
    "shell": ["sh", "-c"],
    "ruby": ["ruby", "-e"],
}


# Container images able to run each language; other requests use ``config.image``.
_LANGUAGE_IMAGES: dict[str, str] = {
    "python": "python:3.12-alpine",
    "python3": "python:3.12-alpine",
    "javascript": "node:20-alpine",
    "js": "node:20-alpine",
    "node": "node:20-alpine",
    "bash": "bash:5",
    "ruby": "ruby:3.3-alpine",
}


def interpreter_for(language: str) -> list[str]:
    """Return the interpreter prefix for *language*.

    Raises
    ------
    SandboxValidationError
        If the language is not supported.
    """
    try:
        return list(_INTERPRETERS[language])
    except KeyError:
        raise SandboxValidationError(
            f"Unsupported language: {language!r}",
            details={"supported": sorted(_INTERPRETERS)},
        ) from None


@dataclass
class Invocation:
    """A request resolved into something a sandbox can launch.

    Attributes
    ----------
    argv:
        Command and arguments as seen *inside* the sandbox.
    env:
        Filtered environment for the sandboxed command.
    cwd:
        Working directory inside the sandbox.
    host_dir:
        Per-execution directory on the host holding the request's files.
    stdin:
        Optional data for the command's stdin.
    files:
        Virtual files written into ``host_dir``.
    language:
        Language of a code request; ``None`` for commands.
    """

    argv: list[str]
    env: dict[str, str]
    cwd: str
    host_dir: Path
    stdin: str | None = None
    files: dict[str, str] = field(default_factory=dict)
    language: str | None = None


class RuntimeAdapter(ABC):
    """Base class for all isolation technology adapters.

    Subclasses set ``name`` and implement :meth:`execute`; technologies
    driven through a launcher binary derive from :class:`LauncherRuntime`
    instead and only describe their command line.

    An adapter owns one private workspace directory for its lifetime,
    created by :meth:`initialize` and removed by :meth:`cleanup`.  Each
    execution gets its own subdirectory so files never leak between
    requests served by the same pooled executor.
    """

    name: RuntimeName
    # Launcher binary probed by :meth:`probe`; ``None`` means no binary check.
    binary: str | None = None
    linux_only: bool = False
    # Where the workspace appears inside the sandbox; ``None`` means the host path.
    sandbox_workspace: str | None = "/workspace"

    def __init__(self, config: SandboxConfig) -> None:
        self.config = config
        self.policy = ResourcePolicy.from_config(config)
        self.sandbox_id = f"{self.name.value}-{secrets.token_hex(8)}"
        self.workspace: Path | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Create the workspace and any runtime-specific files."""
        if self.linux_only and not sys.platform.startswith("linux"):
            raise RuntimeError(f"{self.name.value} is only available on Linux")
        if self.workspace is None:
            path = await asyncio.to_thread(tempfile.mkdtemp, prefix=f"{self.sandbox_id}-")
            self.workspace = Path(path)
            await self.prepare_workspace(self.workspace)
            logger.debug("Workspace created: runtime=%s path=%s", self.name.value, path)

    async def prepare_workspace(self, workspace: Path) -> None:
        """Hook for writing profiles or configs once per adapter."""

    async def cleanup(self) -> None:
        """Remove the workspace.  Never raises."""
        if self.workspace is not None:
            workspace, self.workspace = self.workspace, None
            try:
                await asyncio.to_thread(shutil.rmtree, workspace)
            except OSError as exc:
                logger.error("Failed to remove workspace %s: %s", workspace, exc)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    @abstractmethod
    async def execute(
        self,
        request: ExecutionRequest,
        *,
        cancel: asyncio.Event | None = None,
    ) -> ExecutionResult:
        """Execute *request* inside the sandbox.

        Implementations must kill the entire process tree when the
        configured timeout elapses or *cancel* is set, cap each captured
        stream at ``max_output_bytes``, and return rather than raise for
        timeouts and ordinary non-zero exits.

        Parameters
        ----------
        request:
            Code or command request to run.
        cancel:
            Optional event; setting it aborts the execution.

        Returns
        -------
        ExecutionResult
        """
        ...

    @asynccontextmanager
    async def invocation(self, request: ExecutionRequest) -> AsyncIterator[Invocation]:
        """Materialise *request* in a fresh run directory for one execution."""
        if self.workspace is None:
            await self.initialize()
        assert self.workspace is not None

        run_name = f"run-{secrets.token_hex(4)}"
        host_dir = self.workspace / run_name
        visible_root = self.sandbox_workspace or str(self.workspace)
        visible_dir = f"{visible_root}/{run_name}"

        if isinstance(request, CodeExecutionRequest):
            argv = [*interpreter_for(request.language), request.code]
            files = dict(request.files)
            cwd = visible_dir
            stdin = None
            language = request.language
        else:
            argv = [request.command, *request.args]
            files = {}
            cwd = request.cwd or self.config.work_dir or visible_dir
            stdin = request.stdin
            language = None

        await asyncio.to_thread(_write_files, host_dir, files)
        try:
            yield Invocation(
                argv=argv,
                env=build_child_env(request.env),
                cwd=cwd,
                host_dir=host_dir,
                stdin=stdin,
                files=files,
                language=language,
            )
        finally:
            await asyncio.to_thread(shutil.rmtree, host_dir, True)

    def limited(self, argv: list[str]) -> list[str]:
        """Wrap *argv* in a shell that applies memory and CPU-time ulimits.

        Used by technologies without a native limit mechanism; the limits
        apply to the sandboxed payload only, never to the launcher.
        """
        memory_kb = self.policy.memory_bytes // 1024
        script = (
            f"ulimit -v {memory_kb} 2>/dev/null; "
            f"ulimit -t {self.policy.cpu_seconds} 2>/dev/null; "
            "exec \"$@\""
        )
        return ["/bin/sh", "-c", script, "sh", *argv]

    def run_name(self, invocation: Invocation) -> str:
        """Name unique to one execution, for containers and named jails."""
        return f"{self.sandbox_id}-{invocation.host_dir.name}"

    def container_image(self, invocation: Invocation) -> str:
        """Image for container runtimes: language-specific, else ``config.image``."""
        if invocation.language is not None:
            return _LANGUAGE_IMAGES.get(invocation.language, self.config.image)
        return self.config.image

    def to_result(self, outcome: ProcessOutcome) -> ExecutionResult:
        """Shape a :class:`ProcessOutcome` into a normalised result."""
        hidden = [str(self.workspace) if self.workspace else None]
        stderr = redact_host_paths(outcome.stderr, hidden)
        error = outcome.error
        if outcome.timed_out:
            error = "Execution timeout exceeded"
        elif outcome.cancelled:
            error = "cancelled"
        return ExecutionResult(
            exit_code=outcome.exit_code,
            stdout=outcome.stdout,
            stderr=stderr,
            output=merge_output(outcome.stdout, stderr),
            timed_out=outcome.timed_out,
            killed=outcome.killed,
            duration_ms=outcome.duration_ms,
            error=redact_host_paths(error, hidden) if error else None,
        )

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------

    @classmethod
    async def probe(cls) -> RuntimeDescriptor:
        """Report whether this technology is usable on the current host."""
        if cls.linux_only and not sys.platform.startswith("linux"):
            return RuntimeDescriptor(name=cls.name, available=False)
        if cls.binary is None:
            return RuntimeDescriptor(name=cls.name, available=False)
        path = shutil.which(cls.binary)
        if path is None:
            return RuntimeDescriptor(name=cls.name, available=False)

        outcome = await run_process(
            [path, "--version"],
            env=None,
            timeout_s=PROBE_TIMEOUT_S,
            max_output_bytes=4096,
        )
        if outcome.exit_code != 0 or outcome.timed_out:
            logger.debug(
                "Probe failed: runtime=%s exit=%s", cls.name.value, outcome.exit_code
            )
            return RuntimeDescriptor(name=cls.name, available=False)
        first_line = (outcome.stdout or outcome.stderr).strip().splitlines()
        return RuntimeDescriptor(
            name=cls.name,
            available=True,
            version=first_line[0] if first_line else None,
        )


class LauncherRuntime(RuntimeAdapter):
    """Adapter for technologies driven through a launcher binary.

    Subclasses only describe the host command line via :meth:`build_argv`;
    spawning, timeout enforcement and output capture are shared.
    """

    async def execute(
        self,
        request: ExecutionRequest,
        *,
        cancel: asyncio.Event | None = None,
    ) -> ExecutionResult:
        async with self.invocation(request) as invocation:
            argv = self.build_argv(invocation)
            logger.debug("Launching %s: %s", self.name.value, shlex.join(argv))
            outcome = await run_process(
                argv,
                env=self.launcher_env(invocation),
                cwd=self.launcher_cwd(invocation),
                stdin=invocation.stdin,
                timeout_s=self.config.timeout_seconds,
                max_output_bytes=self.config.max_output_bytes,
                cancel=cancel,
                on_kill=functools.partial(self.on_kill, invocation),
            )
        return self.to_result(outcome)

    @abstractmethod
    def build_argv(self, invocation: Invocation) -> list[str]:
        """Return the host command line that launches *invocation*."""
        ...

    def launcher_env(self, invocation: Invocation) -> dict[str, str] | None:
        """Environment of the launcher process itself."""
        return dict(invocation.env)

    def launcher_cwd(self, invocation: Invocation) -> str | None:
        return str(invocation.host_dir)

    async def on_kill(self, invocation: Invocation) -> None:
        """Extra teardown for *invocation* run before its process group is killed."""


def _write_files(directory: Path, files: dict[str, str]) -> None:
    directory.mkdir(parents=True, exist_ok=True)
    for relative_path, content in files.items():
        dest = directory / relative_path
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_text(content, encoding="utf-8")


