"""Tests for SandboxExecutor and execute_in_sandbox."""

from __future__ import annotations

import asyncio

import pytest

from secure_sandbox.audit import InMemoryAuditSink
from secure_sandbox.errors import ExecutionFailedError, NotAvailableError, SandboxValidationError
from secure_sandbox.executor import SandboxExecutor, execute_in_sandbox
from secure_sandbox.models.enums import AuditOutcome, AuditSeverity, ExecutorState, RuntimeName
from secure_sandbox.models.request import CodeExecutionRequest, ExecutionContext
from secure_sandbox.models.result import ExecutionResult, RuntimeDescriptor
from secure_sandbox.runtimes.mock import MockRuntime


class _ExplodingRuntime(MockRuntime):
    async def execute(self, request, *, cancel=None):
        raise RuntimeError("daemon connection reset")


class _SilentTimeoutRuntime(MockRuntime):
    async def execute(self, request, *, cancel=None):
        return ExecutionResult(exit_code=-1, stdout="partial", timed_out=True, duration_ms=50)


class _BrokenInitRuntime(MockRuntime):
    cleaned_up = False

    async def initialize(self):
        raise RuntimeError("cannot reach daemon")

    async def cleanup(self):
        type(self).cleaned_up = True


class _FailingSink:
    def log(self, record):
        raise RuntimeError("audit store down")


def _detector(*available: RuntimeName):
    calls = []

    async def detect():
        calls.append(1)
        await asyncio.sleep(0)
        return [RuntimeDescriptor(name=name, available=True) for name in available]

    detect.calls = calls
    return detect


def _factory(adapter_cls=MockRuntime):
    created = []

    def factory(runtime, config):
        adapter = adapter_cls(config)
        created.append((runtime, adapter))
        return adapter

    factory.created = created
    return factory


def _code(code: str = "console.log('hi')") -> dict:
    return {"code": code, "language": "javascript"}


# ======================================================================
# Lifecycle
# ======================================================================


class TestExecutorLifecycle:
    @pytest.mark.asyncio
    async def test_mock_runtime_skips_detection(self):
        detector = _detector()
        executor = SandboxExecutor({"runtime": "mock"}, detector=detector)
        assert executor.state is ExecutorState.UNINITIALIZED
        await executor.initialize()
        assert executor.is_initialized
        assert executor.runtime is RuntimeName.MOCK
        assert detector.calls == []

    @pytest.mark.asyncio
    async def test_initialize_is_idempotent_under_concurrency(self):
        detector = _detector(RuntimeName.DOCKER)
        factory = _factory()
        executor = SandboxExecutor(detector=detector, adapter_factory=factory)
        await asyncio.gather(*(executor.initialize() for _ in range(5)))
        assert len(detector.calls) == 1
        assert [runtime for runtime, _ in factory.created] == [RuntimeName.DOCKER]
        assert executor.runtime is RuntimeName.DOCKER

    @pytest.mark.asyncio
    async def test_fallback_selection(self):
        factory = _factory()
        executor = SandboxExecutor(
            {"runtime": "gvisor"},
            detector=_detector(RuntimeName.PODMAN),
            adapter_factory=factory,
        )
        await executor.initialize()
        assert executor.runtime is RuntimeName.PODMAN

    @pytest.mark.asyncio
    async def test_nothing_available(self):
        executor = SandboxExecutor(detector=_detector(), adapter_factory=_factory())
        with pytest.raises(NotAvailableError):
            await executor.execute(_code())
        assert executor.state is ExecutorState.UNINITIALIZED

    @pytest.mark.asyncio
    async def test_no_fallback(self):
        executor = SandboxExecutor(
            {"runtime": "nsjail", "fallback_enabled": False},
            detector=_detector(RuntimeName.DOCKER),
            adapter_factory=_factory(),
        )
        with pytest.raises(NotAvailableError):
            await executor.initialize()

    @pytest.mark.asyncio
    async def test_adapter_init_failure_becomes_not_available(self):
        executor = SandboxExecutor(
            detector=_detector(RuntimeName.DOCKER),
            adapter_factory=_factory(_BrokenInitRuntime),
        )
        with pytest.raises(NotAvailableError, match="failed to initialize") as exc_info:
            await executor.initialize()
        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert _BrokenInitRuntime.cleaned_up is True
        assert executor.state is ExecutorState.UNINITIALIZED

    @pytest.mark.asyncio
    async def test_cleanup_resets_state(self):
        executor = SandboxExecutor({"runtime": "mock"})
        await executor.execute(_code())
        await executor.cleanup()
        assert executor.state is ExecutorState.UNINITIALIZED
        assert executor.runtime is None
        # Usable again after cleanup.
        result = await executor.execute(_code())
        assert result.success is True

    @pytest.mark.asyncio
    async def test_async_context_manager(self):
        async with SandboxExecutor({"runtime": "mock"}) as executor:
            assert executor.is_initialized
        assert not executor.is_initialized


# ======================================================================
# Execution
# ======================================================================


class TestExecutorExecute:
    @pytest.mark.asyncio
    async def test_lazy_initialisation_and_output(self):
        executor = SandboxExecutor({"runtime": "mock"})
        result = await executor.execute(_code())
        assert executor.is_initialized
        assert result.success is True
        assert result.exit_code == 0
        assert result.output == "hi"

    @pytest.mark.asyncio
    async def test_typed_request(self):
        executor = SandboxExecutor({"runtime": "mock"})
        result = await executor.execute(CodeExecutionRequest(code="print('x')", language="python"))
        assert result.stdout == "x"

    @pytest.mark.asyncio
    async def test_timeout_is_a_result(self):
        executor = SandboxExecutor({"runtime": "mock", "timeout": 50})
        result = await executor.execute(_code("while(true){}"))
        assert result.timed_out is True
        assert result.killed is True
        assert result.success is False
        assert result.error == "Execution timeout exceeded"

    @pytest.mark.asyncio
    async def test_timeout_error_defaults(self):
        executor = SandboxExecutor(
            detector=_detector(RuntimeName.DOCKER),
            adapter_factory=_factory(_SilentTimeoutRuntime),
        )
        result = await executor.execute(_code())
        assert result.error == "timeout"
        assert result.killed is True
        assert result.output == "partial"

    @pytest.mark.asyncio
    async def test_cancel_event(self):
        executor = SandboxExecutor({"runtime": "mock", "timeout_ms": 5000})
        cancel = asyncio.Event()
        asyncio.get_running_loop().call_later(0.05, cancel.set)
        result = await executor.execute(_code("while(true){}"), cancel=cancel)
        assert result.killed is True
        assert result.error == "cancelled"

    @pytest.mark.asyncio
    async def test_adapter_exception_wrapped(self):
        executor = SandboxExecutor(
            detector=_detector(RuntimeName.DOCKER),
            adapter_factory=_factory(_ExplodingRuntime),
        )
        with pytest.raises(ExecutionFailedError, match="daemon connection reset") as exc_info:
            await executor.execute(_code())
        assert exc_info.value.code == "execution_failed"
        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert exc_info.value.details["type"] == "RuntimeError"

    @pytest.mark.asyncio
    async def test_invalid_request(self):
        executor = SandboxExecutor({"runtime": "mock"})
        with pytest.raises(SandboxValidationError):
            await executor.execute({"code": "x"})
        assert executor.state is ExecutorState.UNINITIALIZED

    @pytest.mark.asyncio
    async def test_unsupported_language_propagates(self):
        executor = SandboxExecutor(
            {"runtime": "podman"},
            detector=_detector(RuntimeName.PODMAN),
        )
        try:
            with pytest.raises(SandboxValidationError, match="Unsupported language"):
                await executor.execute({"code": "x", "language": "cobol"})
        finally:
            await executor.cleanup()


# ======================================================================
# Auditing
# ======================================================================


class TestExecutorAudit:
    def setup_method(self):
        self.sink = InMemoryAuditSink()

    @pytest.mark.asyncio
    async def test_no_user_no_record(self):
        executor = SandboxExecutor({"runtime": "mock"}, audit_sink=self.sink)
        await executor.execute(_code())
        await executor.execute(_code(), ExecutionContext(request_id="r1"))
        assert self.sink.records == []

    @pytest.mark.asyncio
    async def test_success_record(self):
        executor = SandboxExecutor({"runtime": "mock"}, audit_sink=self.sink)
        await executor.execute(_code(), {"userId": "u1", "requestId": "req-1"})
        (record,) = self.sink.records
        assert record.event_id == "req-1"
        assert record.actor.user_id == "u1"
        assert record.resource.name == "javascript"
        assert record.severity is AuditSeverity.INFO
        assert record.outcome is AuditOutcome.SUCCESS
        assert record.details.exit_code == 0

    @pytest.mark.asyncio
    async def test_failure_record(self):
        executor = SandboxExecutor({"runtime": "mock", "timeout": 20}, audit_sink=self.sink)
        await executor.execute(_code("while(true){}"), ExecutionContext(user_id="u1"))
        (record,) = self.sink.records
        assert record.severity is AuditSeverity.WARN
        assert record.outcome is AuditOutcome.FAILURE
        assert record.details.timed_out is True
        assert len(record.event_id) == 36

    @pytest.mark.asyncio
    async def test_command_resource_name(self):
        executor = SandboxExecutor({"runtime": "mock"}, audit_sink=self.sink)
        await executor.execute({"command": "ls", "args": ["-la"]}, ExecutionContext(user_id="u1"))
        assert self.sink.records[0].resource.name == "ls"

    @pytest.mark.asyncio
    async def test_error_record(self):
        executor = SandboxExecutor(
            detector=_detector(RuntimeName.DOCKER),
            adapter_factory=_factory(_ExplodingRuntime),
            audit_sink=self.sink,
        )
        with pytest.raises(ExecutionFailedError):
            await executor.execute(_code(), ExecutionContext(user_id="u1"))
        (record,) = self.sink.records
        assert record.severity is AuditSeverity.ERROR
        assert record.outcome is AuditOutcome.ERROR

    @pytest.mark.asyncio
    async def test_sink_failure_does_not_change_result(self):
        executor = SandboxExecutor({"runtime": "mock"}, audit_sink=_FailingSink())
        result = await executor.execute(_code(), ExecutionContext(user_id="u1"))
        assert result.success is True


# ======================================================================
# execute_in_sandbox
# ======================================================================


class TestExecuteInSandbox:
    @pytest.mark.asyncio
    async def test_code_and_language(self):
        result = await execute_in_sandbox("console.log('one-shot')", "javascript")
        assert result.output == "one-shot"

    @pytest.mark.asyncio
    async def test_code_defaults_to_javascript_on_mock(self):
        result = await execute_in_sandbox("console.log('hi')")
        assert result.stdout == "hi"

    @pytest.mark.asyncio
    async def test_request_and_config(self):
        result = await execute_in_sandbox(
            {"command": "echo", "args": ["hi"]},
            {"runtime": "mock"},
        )
        assert result.stdout == "Mock execution: echo hi"
