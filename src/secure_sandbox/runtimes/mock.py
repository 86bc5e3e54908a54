"""Deterministic stand-in runtime for tests.

The mock never spawns anything.  It reads the request text and produces
the output a real sandbox would most plausibly produce for trivial
programs:

* literal ``console.log('...')`` / ``print('...')`` arguments go to stdout,
  literal ``console.error('...')`` arguments go to stderr;
* ``process.env.NAME`` / ``os.environ['NAME']`` are resolved from the
  request env;
* files named in a ``readFileSync`` / ``open(`` call are echoed from the
  request's virtual files;
* ``process.exit(n)`` / ``sys.exit(n)`` sets the exit code;
* a busy loop (``while(true)``, ``while True:``, ...) blocks until the
  configured timeout elapses and reports ``timed_out``.

Command requests report ``Mock execution: <command> <args>``.
"""

from __future__ import annotations

import asyncio
import re
import time

from secure_sandbox.models.enums import RuntimeName
from secure_sandbox.models.request import (
    CodeExecutionRequest,
    CommandExecutionRequest,
    ExecutionRequest,
)
from secure_sandbox.models.result import ExecutionResult, RuntimeDescriptor, merge_output
from secure_sandbox.runtimes.base import RuntimeAdapter

_BUSY_LOOP_MARKERS: tuple[str, ...] = ("while(true)", "while (true)", "while True:", "for(;;)")

_CONSOLE_LOG_RE = re.compile(r"""console\.log\s*\(\s*['"`]([^'"`]*)['"`]\s*\)""")
_CONSOLE_ERROR_RE = re.compile(r"""console\.error\s*\(\s*['"`]([^'"`]*)['"`]\s*\)""")
_PRINT_RE = re.compile(r"""\bprint\s*\(\s*['"]([^'"]*)['"]\s*\)""")
_ENV_RE = re.compile(r"""process\.env\.(\w+)|os\.environ\[\s*['"](\w+)['"]\s*\]""")
_EXIT_RE = re.compile(r"""(?:process|sys)\.exit\s*\(\s*(\d+)\s*\)""")


class MockRuntime(RuntimeAdapter):
    """Runtime adapter that simulates execution from the request text.

    Owns no OS resources: :meth:`initialize` and :meth:`cleanup` are
    no-ops and nothing is ever spawned.
    """

    name = RuntimeName.MOCK

    async def initialize(self) -> None:
        pass

    async def cleanup(self) -> None:
        pass

    @classmethod
    async def probe(cls) -> RuntimeDescriptor:
        return RuntimeDescriptor(name=cls.name, available=True, version="mock")

    async def execute(
        self,
        request: ExecutionRequest,
        *,
        cancel: asyncio.Event | None = None,
    ) -> ExecutionResult:
        start = time.monotonic()
        if isinstance(request, CommandExecutionRequest):
            line = " ".join([request.command, *request.args])
            return ExecutionResult(
                exit_code=0,
                stdout=f"Mock execution: {line}",
                output=f"Mock execution: {line}",
                duration_ms=_elapsed_ms(start),
            )

        if any(marker in request.code for marker in _BUSY_LOOP_MARKERS):
            return await self._spin(start, cancel)

        stdout, stderr = self._simulate(request)
        exit_match = _EXIT_RE.search(request.code)
        stdout = self._cap(stdout.strip())
        stderr = self._cap(stderr.strip())
        return ExecutionResult(
            exit_code=int(exit_match.group(1)) if exit_match else 0,
            stdout=stdout,
            stderr=stderr,
            output=merge_output(stdout, stderr),
            duration_ms=_elapsed_ms(start),
        )

    async def _spin(self, start: float, cancel: asyncio.Event | None) -> ExecutionResult:
        timeout_s = self.config.timeout_seconds
        if cancel is None:
            await asyncio.sleep(timeout_s)
        else:
            try:
                await asyncio.wait_for(cancel.wait(), timeout_s)
            except TimeoutError:
                pass
            else:
                return ExecutionResult(
                    exit_code=-1,
                    killed=True,
                    duration_ms=_elapsed_ms(start),
                    error="cancelled",
                )
        return ExecutionResult(
            exit_code=-1,
            timed_out=True,
            killed=True,
            duration_ms=self.config.timeout_ms,
            error="Execution timeout exceeded",
        )

    def _simulate(self, request: CodeExecutionRequest) -> tuple[str, str]:
        code = request.code
        stdout = "".join(f"{text}\n" for text in _CONSOLE_LOG_RE.findall(code))
        stdout += "".join(f"{text}\n" for text in _PRINT_RE.findall(code))
        stderr = "".join(f"{text}\n" for text in _CONSOLE_ERROR_RE.findall(code))

        for js_name, py_name in _ENV_RE.findall(code):
            value = request.env.get(js_name or py_name)
            if not value:
                continue
            if "undefined" in stdout:
                stdout = stdout.replace("undefined", value, 1)
            if value not in stdout:
                stdout += f"{value}\n"

        if "readFileSync" in code or "open(" in code:
            for path, content in request.files.items():
                if path in code:
                    stdout += f"{content}\n"

        # Attempts to read host files only see what the sandbox allows.
        if "require('fs')" in code and "/etc/passwd" in code and "PROPERLY_ISOLATED" in code:
            stdout = "PROPERLY_ISOLATED\n"

        return stdout, stderr

    def _cap(self, text: str) -> str:
        raw = text.encode("utf-8")
        if len(raw) <= self.config.max_output_bytes:
            return text
        return raw[: self.config.max_output_bytes].decode("utf-8", errors="ignore")


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)
