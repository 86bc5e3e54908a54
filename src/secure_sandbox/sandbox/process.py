"""Bounded execution of sandbox launcher processes.

Every process-based runtime (gVisor, nsjail, bubblewrap, firejail,
sandbox-exec, the podman CLI) hands its final argv to :func:`run_process`,
which owns the parts that must behave identically everywhere:

* the child is started in its own session so the *whole* process group
  can be killed on timeout or cancellation, not just the launcher;
* stdout/stderr are drained concurrently and capped at
  ``max_output_bytes`` each, so a chatty child can neither exhaust
  memory nor block on a full pipe;
* the call never outlives ``timeout + KILL_GRACE_S``.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import re
import signal
import time
from collections.abc import Awaitable, Callable, Iterable, Sequence
from dataclasses import dataclass

logger = logging.getLogger(__name__)

# How long to wait for the process tree to exit after SIGKILL.
KILL_GRACE_S: float = 2.0

_READ_CHUNK: int = 64 * 1024

# Regex to strip ANSI escape sequences (colours, cursor movement, etc.).
_ANSI_ESCAPE_RE: re.Pattern[str] = re.compile(r"\x1b\[[0-9;]*[a-zA-Z]")

# Control characters to strip (everything except newline \n, carriage return \r, tab \t).
_CONTROL_CHAR_RE: re.Pattern[str] = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


def sanitize_output(raw: str) -> str:
    """Strip ANSI escape codes and control characters from process output.

    Newlines, carriage returns, and tabs are preserved because they carry
    meaningful formatting for program output.
    """
    text = _ANSI_ESCAPE_RE.sub("", raw)
    return _CONTROL_CHAR_RE.sub("", text)


def redact_host_paths(text: str, paths: Iterable[str | None]) -> str:
    """Replace host-side sandbox paths in *text* with ``<sandbox>``."""
    for path in paths:
        if path:
            text = text.replace(path, "<sandbox>")
    return text


class CappedBuffer:
    """Byte accumulator that silently discards data past ``limit``."""

    def __init__(self, limit: int) -> None:
        self.limit = limit
        self.data = bytearray()
        self.truncated = False

    def feed(self, chunk: bytes) -> None:
        room = self.limit - len(self.data)
        if room > 0:
            self.data += chunk[:room]
        if len(chunk) > room:
            self.truncated = True

    def text(self) -> str:
        return sanitize_output(self.data.decode("utf-8", errors="replace"))


@dataclass(frozen=True)
class ProcessOutcome:
    """Raw outcome of :func:`run_process`, before runtime-level shaping."""

    exit_code: int
    stdout: str
    stderr: str
    duration_ms: int
    timed_out: bool = False
    killed: bool = False
    cancelled: bool = False
    error: str | None = None


def kill_process_tree(proc: asyncio.subprocess.Process) -> None:
    """SIGKILL every process in *proc*'s process group."""
    if hasattr(os, "killpg"):
        with contextlib.suppress(ProcessLookupError, PermissionError):
            os.killpg(proc.pid, signal.SIGKILL)
    with contextlib.suppress(ProcessLookupError):
        proc.kill()


async def _pump(stream: asyncio.StreamReader | None, buffer: CappedBuffer) -> None:
    if stream is None:
        return
    while chunk := await stream.read(_READ_CHUNK):
        buffer.feed(chunk)


async def _feed_stdin(proc: asyncio.subprocess.Process, data: str) -> None:
    assert proc.stdin is not None
    with contextlib.suppress(BrokenPipeError, ConnectionResetError):
        proc.stdin.write(data.encode("utf-8"))
        await proc.stdin.drain()
    proc.stdin.close()


async def _terminate(
    proc: asyncio.subprocess.Process,
    on_kill: Callable[[], Awaitable[None]] | None,
) -> None:
    if on_kill is not None:
        try:
            await on_kill()
        except Exception:
            logger.exception("Runtime kill hook failed for pid %s", proc.pid)
    kill_process_tree(proc)


async def run_process(
    argv: Sequence[str],
    *,
    env: dict[str, str] | None,
    timeout_s: float,
    max_output_bytes: int,
    cwd: str | None = None,
    stdin: str | None = None,
    cancel: asyncio.Event | None = None,
    on_kill: Callable[[], Awaitable[None]] | None = None,
) -> ProcessOutcome:
    """Run *argv* to completion, timeout, or cancellation.

    Parameters
    ----------
    argv:
        Launcher command line, e.g. ``["bwrap", "--unshare-all", ..., "--", "sh"]``.
    env:
        Exact environment of the launcher process.
    timeout_s:
        Wall-clock limit.  When it elapses the process group is killed and
        the outcome reports ``timed_out=True, killed=True``.
    max_output_bytes:
        Per-stream capture limit.
    cwd:
        Host working directory of the launcher.
    stdin:
        Optional text written to the child's stdin.
    cancel:
        When set before the process exits, the process group is killed and
        the outcome reports ``cancelled=True, killed=True``.
    on_kill:
        Extra teardown awaited before the group is killed (e.g. ``docker
        kill`` for runtimes whose payload lives outside the group).

    Spawn failures are returned as an outcome with ``error`` set rather
    than raised.
    """
    start = time.monotonic()
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.PIPE if stdin is not None else asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=env,
            cwd=cwd,
            start_new_session=True,
        )
    except OSError as exc:
        logger.warning("Failed to spawn %s: %s", argv[0], exc)
        return ProcessOutcome(
            exit_code=-1,
            stdout="",
            stderr="",
            duration_ms=int((time.monotonic() - start) * 1000),
            error=f"Failed to spawn {argv[0]}: {exc.strerror or exc}",
        )

    stdout_buf = CappedBuffer(max_output_bytes)
    stderr_buf = CappedBuffer(max_output_bytes)
    tasks = [
        asyncio.create_task(_pump(proc.stdout, stdout_buf)),
        asyncio.create_task(_pump(proc.stderr, stderr_buf)),
    ]
    if stdin is not None:
        tasks.append(asyncio.create_task(_feed_stdin(proc, stdin)))

    async def _finish() -> None:
        await proc.wait()
        await asyncio.gather(*tasks)

    finished = asyncio.ensure_future(_finish())
    cancel_wait = asyncio.ensure_future(cancel.wait()) if cancel is not None else None
    timed_out = cancelled = False

    try:
        waitables = {finished} if cancel_wait is None else {finished, cancel_wait}
        done, _ = await asyncio.wait(
            waitables, timeout=timeout_s, return_when=asyncio.FIRST_COMPLETED
        )
        if finished not in done:
            if cancel_wait is not None and cancel_wait in done:
                cancelled = True
            else:
                timed_out = True
            logger.info(
                "Killing process group %s (%s)",
                proc.pid,
                "cancelled" if cancelled else f"timeout after {timeout_s:.3f}s",
            )
            await _terminate(proc, on_kill)
            try:
                await asyncio.wait_for(asyncio.shield(finished), KILL_GRACE_S)
            except TimeoutError:
                # Something outside the group still holds a pipe open.
                logger.warning("Process %s did not release its pipes after SIGKILL", proc.pid)
                finished.cancel()
                for task in tasks:
                    task.cancel()
    except asyncio.CancelledError:
        await _terminate(proc, on_kill)
        finished.cancel()
        for task in tasks:
            task.cancel()
        raise
    finally:
        if cancel_wait is not None:
            cancel_wait.cancel()

    returncode = proc.returncode
    exit_code = returncode if returncode is not None and returncode >= 0 else -1
    if stdout_buf.truncated or stderr_buf.truncated:
        logger.debug("Output of pid %s truncated at %d bytes", proc.pid, max_output_bytes)

    return ProcessOutcome(
        exit_code=exit_code,
        stdout=stdout_buf.text(),
        stderr=stderr_buf.text(),
        duration_ms=int((time.monotonic() - start) * 1000),
        timed_out=timed_out,
        killed=timed_out or cancelled or returncode == -signal.SIGKILL,
        cancelled=cancelled,
    )
