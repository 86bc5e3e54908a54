"""Docker runtime using the Docker SDK for Python."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import secrets
import time

import docker
import docker.errors
import requests.exceptions

from secure_sandbox.models.config import SandboxConfig
from secure_sandbox.models.enums import RuntimeName
from secure_sandbox.models.request import ExecutionRequest
from secure_sandbox.models.result import ExecutionResult, RuntimeDescriptor
from secure_sandbox.runtimes.base import Invocation, RuntimeAdapter
from secure_sandbox.sandbox.process import KILL_GRACE_S, CappedBuffer, ProcessOutcome

logger = logging.getLogger(__name__)

# Errors raised by ``container.wait`` when the timeout elapses or the
# daemon connection drops mid-wait.
_WAIT_ERRORS = (
    docker.errors.APIError,
    ConnectionError,
    requests.exceptions.ReadTimeout,
    requests.exceptions.ConnectionError,
)


class DockerRuntime(RuntimeAdapter):
    """Runs each request in an ephemeral Docker container.

    Each call to :meth:`execute` creates a fresh container, runs the
    payload, collects the logs, and **unconditionally** removes the
    container regardless of success or failure.  The adapter itself owns
    the Docker client and the workspace directory bind-mounted at
    ``/workspace``.

    All blocking Docker SDK calls are dispatched via ``asyncio.to_thread``
    so that the event loop is never blocked.
    """

    name = RuntimeName.DOCKER
    binary = "docker"

    def __init__(
        self,
        config: SandboxConfig,
        docker_client: docker.DockerClient | None = None,
    ) -> None:
        super().__init__(config)
        self._client = docker_client

    async def initialize(self) -> None:
        await super().initialize()
        if self._client is None:
            self._client = await asyncio.to_thread(docker.from_env)

    async def cleanup(self) -> None:
        if self._client is not None:
            client, self._client = self._client, None
            with contextlib.suppress(docker.errors.DockerException):
                await asyncio.to_thread(client.close)
        await super().cleanup()

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute(
        self,
        request: ExecutionRequest,
        *,
        cancel: asyncio.Event | None = None,
    ) -> ExecutionResult:
        if self._client is None:
            await self.initialize()
        async with self.invocation(request) as invocation:
            outcome = await self._run_container(invocation, cancel)
        return self.to_result(outcome)

    def container_config(self, invocation: Invocation) -> dict:
        """Keyword arguments for ``containers.create``."""
        assert self.workspace is not None
        volumes = {
            str(self.workspace): {
                "bind": "/workspace",
                "mode": "ro" if self.config.read_only else "rw",
            },
        }
        for path in self.config.allowed_paths:
            volumes[path] = {"bind": path, "mode": "ro"}
        return {
            "image": self.container_image(invocation),
            "command": invocation.argv,
            "working_dir": invocation.cwd,
            "detach": True,
            "stdin_open": False,
            "tty": False,
            "environment": invocation.env,
            "name": f"{self.sandbox_id}-{secrets.token_hex(4)}",
            "volumes": volumes,
            **self.policy.to_container_config(),
        }

    async def _run_container(
        self,
        invocation: Invocation,
        cancel: asyncio.Event | None,
    ) -> ProcessOutcome:
        assert self._client is not None
        if invocation.stdin is not None:
            logger.warning("stdin is not supported by the docker runtime; ignoring it")

        container = None
        start_time = time.monotonic()
        try:
            # ---- 1. Create and start the container --------------------------
            container = await asyncio.to_thread(
                self._client.containers.create, **self.container_config(invocation)
            )
            logger.info("Container created: id=%s", container.short_id)
            await asyncio.to_thread(container.start)

            # ---- 2. Wait for exit, timeout, or cancellation -----------------
            timeout_s = self.config.timeout_seconds
            wait_task = asyncio.ensure_future(
                asyncio.to_thread(container.wait, timeout=timeout_s)
            )
            cancel_task = asyncio.ensure_future(cancel.wait()) if cancel is not None else None
            waitables = {wait_task} if cancel_task is None else {wait_task, cancel_task}
            try:
                done, _ = await asyncio.wait(
                    waitables,
                    timeout=timeout_s + KILL_GRACE_S,
                    return_when=asyncio.FIRST_COMPLETED,
                )
            finally:
                if cancel_task is not None:
                    cancel_task.cancel()

            timed_out = cancelled = False
            exit_code = -1
            if wait_task in done:
                try:
                    exit_info = wait_task.result()
                    exit_code = int(exit_info.get("StatusCode", -1))
                except _WAIT_ERRORS as exc:
                    # Timeout or communication error: forcefully kill container.
                    logger.warning(
                        "Container %s timed out or errored during wait: %s",
                        container.short_id,
                        exc,
                    )
                    timed_out = True
            elif cancel_task is not None and cancel_task in done:
                cancelled = True
            else:
                timed_out = True

            if timed_out or cancelled:
                with contextlib.suppress(docker.errors.APIError):
                    # Container may have already exited.
                    await asyncio.to_thread(container.kill)

            elapsed_ms = int((time.monotonic() - start_time) * 1000)

            # ---- 3. Capture stdout / stderr (capped) ------------------------
            stdout_buf = CappedBuffer(self.config.max_output_bytes)
            stderr_buf = CappedBuffer(self.config.max_output_bytes)
            stdout_buf.feed(await asyncio.to_thread(container.logs, stdout=True, stderr=False))
            stderr_buf.feed(await asyncio.to_thread(container.logs, stdout=False, stderr=True))

            return ProcessOutcome(
                exit_code=exit_code,
                stdout=stdout_buf.text(),
                stderr=stderr_buf.text(),
                duration_ms=elapsed_ms,
                timed_out=timed_out,
                killed=timed_out or cancelled,
                cancelled=cancelled,
            )

        except docker.errors.ImageNotFound:
            logger.error("Docker image not found: %s", self.container_image(invocation))
            raise
        except docker.errors.APIError:
            logger.exception("Docker API error while running container")
            raise
        finally:
            # ---- 4. ALWAYS remove container ---------------------------------
            if container is not None:
                try:
                    await asyncio.to_thread(container.remove, force=True)
                    logger.info("Container removed: id=%s", container.short_id)
                except docker.errors.APIError as exc:
                    # Log but do not raise: the caller should still get the
                    # original exception (if any).
                    logger.error(
                        "Failed to remove container %s: %s",
                        container.short_id,
                        exc,
                    )

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------

    @classmethod
    async def probe(cls) -> RuntimeDescriptor:
        """Available when the Docker daemon answers a ping."""

        def _ping() -> str | None:
            client = docker.from_env(timeout=5)
            try:
                client.ping()
                return client.version().get("Version")
            finally:
                client.close()

        try:
            version = await asyncio.to_thread(_ping)
        except (docker.errors.DockerException, requests.exceptions.RequestException) as exc:
            logger.debug("Docker daemon unreachable: %s", exc)
            return RuntimeDescriptor(name=cls.name, available=False)
        return RuntimeDescriptor(name=cls.name, available=True, version=version)
