"""Tests for bounded process execution."""

from __future__ import annotations

import asyncio
import os
import sys
import time

import pytest

from secure_sandbox.sandbox.process import (
    CappedBuffer,
    redact_host_paths,
    run_process,
    sanitize_output,
)

posix_only = pytest.mark.skipif(
    sys.platform == "win32" or not os.path.exists("/bin/sh"),
    reason="requires a POSIX /bin/sh",
)


class TestOutputHelpers:
    def test_sanitize_strips_ansi_and_controls(self):
        assert sanitize_output("\x1b[31mred\x1b[0m\x07\n\tok") == "red\n\tok"

    def test_capped_buffer(self):
        buffer = CappedBuffer(5)
        buffer.feed(b"abc")
        buffer.feed(b"defgh")
        assert buffer.text() == "abcde"
        assert buffer.truncated is True

    def test_capped_buffer_exact_fit(self):
        buffer = CappedBuffer(3)
        buffer.feed(b"abc")
        assert buffer.truncated is False

    def test_redact_host_paths(self):
        text = "error in /tmp/gvisor-abc/run-1/main.py"
        assert redact_host_paths(text, ["/tmp/gvisor-abc", None]) == "error in <sandbox>/run-1/main.py"


@posix_only
class TestRunProcess:
    @pytest.mark.asyncio
    async def test_captures_output_and_exit_code(self):
        outcome = await run_process(
            ["/bin/sh", "-c", "echo out; echo err >&2; exit 3"],
            env={"PATH": "/usr/bin:/bin"},
            timeout_s=5,
            max_output_bytes=1024,
        )
        assert outcome.exit_code == 3
        assert outcome.stdout.strip() == "out"
        assert outcome.stderr.strip() == "err"
        assert outcome.timed_out is False
        assert outcome.killed is False

    @pytest.mark.asyncio
    async def test_stdin(self):
        outcome = await run_process(
            ["/bin/sh", "-c", "cat"],
            env={"PATH": "/usr/bin:/bin"},
            timeout_s=5,
            max_output_bytes=1024,
            stdin="hello",
        )
        assert outcome.stdout == "hello"

    @pytest.mark.asyncio
    async def test_timeout_kills_process_tree(self):
        start = time.monotonic()
        outcome = await run_process(
            ["/bin/sh", "-c", "sleep 30 & sleep 30; wait"],
            env={"PATH": "/usr/bin:/bin"},
            timeout_s=0.2,
            max_output_bytes=1024,
        )
        elapsed = time.monotonic() - start
        assert outcome.timed_out is True
        assert outcome.killed is True
        assert outcome.exit_code == -1
        # The backgrounded grandchild holds stdout open; only a group kill returns quickly.
        assert elapsed < 2.0

    @pytest.mark.asyncio
    async def test_output_is_capped(self):
        outcome = await run_process(
            ["/bin/sh", "-c", "i=0; while [ $i -lt 2000 ]; do echo 0123456789; i=$((i+1)); done"],
            env={"PATH": "/usr/bin:/bin"},
            timeout_s=5,
            max_output_bytes=100,
        )
        assert len(outcome.stdout.encode()) == 100
        assert outcome.exit_code == 0

    @pytest.mark.asyncio
    async def test_cancel_event(self):
        cancel = asyncio.Event()
        asyncio.get_running_loop().call_later(0.1, cancel.set)
        outcome = await run_process(
            ["/bin/sh", "-c", "sleep 30"],
            env={"PATH": "/usr/bin:/bin"},
            timeout_s=10,
            max_output_bytes=1024,
            cancel=cancel,
        )
        assert outcome.cancelled is True
        assert outcome.killed is True
        assert outcome.timed_out is False

    @pytest.mark.asyncio
    async def test_on_kill_hook_runs(self):
        calls = []

        async def hook():
            calls.append("killed")

        await run_process(
            ["/bin/sh", "-c", "sleep 30"],
            env={"PATH": "/usr/bin:/bin"},
            timeout_s=0.1,
            max_output_bytes=1024,
            on_kill=hook,
        )
        assert calls == ["killed"]

    @pytest.mark.asyncio
    async def test_spawn_failure_is_reported(self):
        outcome = await run_process(
            ["/nonexistent/launcher"],
            env=None,
            timeout_s=1,
            max_output_bytes=1024,
        )
        assert outcome.exit_code == -1
        assert outcome.error is not None
        assert "Failed to spawn" in outcome.error
