"""Tests for the deterministic mock runtime."""

from __future__ import annotations

import asyncio
import time

import pytest

from secure_sandbox.models.config import SandboxConfig
from secure_sandbox.models.enums import RuntimeName
from secure_sandbox.models.request import CodeExecutionRequest, CommandExecutionRequest
from secure_sandbox.runtimes.mock import MockRuntime


def _js(code: str, **kwargs) -> CodeExecutionRequest:
    return CodeExecutionRequest(code=code, language="javascript", **kwargs)


class TestMockRuntime:
    def setup_method(self):
        self.runtime = MockRuntime(SandboxConfig(runtime=RuntimeName.MOCK, timeout_ms=100))

    @pytest.mark.asyncio
    async def test_console_log(self):
        result = await self.runtime.execute(_js("console.log('hi')"))
        assert result.success is True
        assert result.stdout == "hi"
        assert result.output == "hi"

    @pytest.mark.asyncio
    async def test_multiple_logs_and_errors(self):
        result = await self.runtime.execute(
            _js('console.log("a"); console.error(`bad`); console.log(\'b\')')
        )
        assert result.stdout == "a\nb"
        assert result.stderr == "bad"
        assert result.output == "a\nb\nbad"

    @pytest.mark.asyncio
    async def test_python_print(self):
        result = await self.runtime.execute(
            CodeExecutionRequest(code="print('hello')", language="python")
        )
        assert result.stdout == "hello"

    @pytest.mark.asyncio
    async def test_env_substitution(self):
        result = await self.runtime.execute(
            _js("console.log(process.env.GREETING)", env={"GREETING": "howdy"})
        )
        assert result.stdout == "howdy"

    @pytest.mark.asyncio
    async def test_env_replaces_undefined(self):
        result = await self.runtime.execute(
            _js("console.log('undefined'); const x = process.env.NAME", env={"NAME": "sam"})
        )
        assert result.stdout == "sam"

    @pytest.mark.asyncio
    async def test_missing_env_is_ignored(self):
        result = await self.runtime.execute(_js("console.log(process.env.MISSING)"))
        assert result.stdout == ""

    @pytest.mark.asyncio
    async def test_virtual_file_read(self):
        result = await self.runtime.execute(
            _js(
                "const fs = require('fs'); fs.readFileSync('input.txt', 'utf8')",
                files={"input.txt": "file contents", "other.txt": "unused"},
            )
        )
        assert result.stdout == "file contents"

    @pytest.mark.asyncio
    async def test_isolation_probe(self):
        code = (
            "const fs = require('fs');"
            "try { fs.readFileSync('/etc/passwd'); console.log('LEAKED') }"
            " catch (e) { console.log('PROPERLY_ISOLATED') }"
        )
        result = await self.runtime.execute(_js(code))
        assert result.stdout == "PROPERLY_ISOLATED"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "code, exit_code",
        [("process.exit(3)", 3), ("import sys; sys.exit(1)", 1), ("process.exit(0)", 0)],
    )
    async def test_exit_code(self, code, exit_code):
        result = await self.runtime.execute(_js(code))
        assert result.exit_code == exit_code
        assert result.success is (exit_code == 0)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("code", ["while(true){}", "while (true) {}", "while True:\n    pass"])
    async def test_busy_loop_times_out(self, code):
        start = time.monotonic()
        result = await self.runtime.execute(_js(code))
        elapsed = time.monotonic() - start
        assert result.timed_out is True
        assert result.killed is True
        assert result.success is False
        assert result.exit_code == -1
        assert result.duration_ms == 100
        assert result.error == "Execution timeout exceeded"
        assert 0.09 <= elapsed < 0.15

    @pytest.mark.asyncio
    async def test_busy_loop_cancelled(self):
        runtime = MockRuntime(SandboxConfig(timeout_ms=5000))
        cancel = asyncio.Event()
        asyncio.get_running_loop().call_later(0.05, cancel.set)
        result = await runtime.execute(_js("while(true){}"), cancel=cancel)
        assert result.killed is True
        assert result.timed_out is False
        assert result.error == "cancelled"

    @pytest.mark.asyncio
    async def test_output_capped(self):
        runtime = MockRuntime(SandboxConfig(max_output_bytes=4))
        result = await runtime.execute(_js("console.log('abcdefgh')"))
        assert result.stdout == "abcd"

    @pytest.mark.asyncio
    async def test_command_request(self):
        result = await self.runtime.execute(
            CommandExecutionRequest(command="echo", args=["hello", "world"])
        )
        assert result.success is True
        assert result.stdout == "Mock execution: echo hello world"

    @pytest.mark.asyncio
    async def test_probe_always_available(self):
        descriptor = await MockRuntime.probe()
        assert descriptor.available is True
        assert descriptor.name is RuntimeName.MOCK

    @pytest.mark.asyncio
    async def test_lifecycle_is_noop(self):
        await self.runtime.initialize()
        assert self.runtime.workspace is None
        await self.runtime.cleanup()
