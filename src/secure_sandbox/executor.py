"""Sandbox executor: one selected runtime adapter behind a stable contract.

A :class:`SandboxExecutor` resolves its configured runtime on first use
(detecting what the host offers and falling back when allowed), builds
the matching adapter, and from then on turns every request into a
normalised :class:`~secure_sandbox.models.result.ExecutionResult`.

Timeouts are results, not exceptions.  The only errors that escape
:meth:`SandboxExecutor.execute` are:

* :class:`~secure_sandbox.errors.SandboxValidationError` for malformed
  requests,
* :class:`~secure_sandbox.errors.NotAvailableError` when no runtime can
  be initialised,
* :class:`~secure_sandbox.errors.ExecutionFailedError` wrapping anything
  an adapter raised unexpectedly.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Mapping, Sequence
from typing import Any

from secure_sandbox.audit import AuditSink, LoggingAuditSink
from secure_sandbox.detection import detect_runtimes, select_runtime
from secure_sandbox.errors import ExecutionFailedError, NotAvailableError, SandboxError
from secure_sandbox.models.audit import AuditActor, AuditDetails, AuditRecord, AuditResource
from secure_sandbox.models.config import SandboxConfig, SandboxOptions, normalize_config
from secure_sandbox.models.enums import AuditOutcome, AuditSeverity, ExecutorState, RuntimeName
from secure_sandbox.models.request import (
    CodeExecutionRequest,
    ExecutionContext,
    ExecutionRequest,
    parse_context,
    parse_request,
)
from secure_sandbox.models.result import ExecutionResult, RuntimeDescriptor, merge_output
from secure_sandbox.runtimes import RuntimeAdapter, create_adapter
from secure_sandbox.sandbox.process import redact_host_paths

logger = logging.getLogger(__name__)

Detector = Callable[[], Awaitable[Sequence[RuntimeDescriptor]]]
AdapterFactory = Callable[[RuntimeName, SandboxConfig], RuntimeAdapter]

ConfigLike = SandboxConfig | SandboxOptions | Mapping[str, Any] | None


class SandboxExecutor:
    """Execute requests through a single runtime adapter.

    Parameters
    ----------
    config:
        Any shape accepted by
        :func:`~secure_sandbox.models.config.normalize_config`.
    detector:
        Coroutine function returning the host's runtime descriptors.
    adapter_factory:
        Builds the adapter for the selected runtime.
    audit_sink:
        Receives one record per execution that carries a ``user_id``.
        Defaults to :class:`~secure_sandbox.audit.LoggingAuditSink`.
    """

    def __init__(
        self,
        config: ConfigLike = None,
        *,
        detector: Detector = detect_runtimes,
        adapter_factory: AdapterFactory = create_adapter,
        audit_sink: AuditSink | None = None,
    ) -> None:
        self.config = normalize_config(config)
        self._detector = detector
        self._adapter_factory = adapter_factory
        self._audit_sink: AuditSink = audit_sink if audit_sink is not None else LoggingAuditSink()
        self._adapter: RuntimeAdapter | None = None
        self._runtime: RuntimeName | None = None
        self._state = ExecutorState.UNINITIALIZED
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> ExecutorState:
        return self._state

    @property
    def is_initialized(self) -> bool:
        return self._state is ExecutorState.READY

    @property
    def runtime(self) -> RuntimeName | None:
        """The runtime actually in use, once initialised."""
        return self._runtime

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Select a runtime and initialise its adapter.

        Idempotent once ready; concurrent callers share one initialisation.

        Raises
        ------
        NotAvailableError
            If no suitable runtime is available or its adapter fails to
            initialise.
        """
        async with self._lock:
            if self._state is ExecutorState.READY:
                return
            self._state = ExecutorState.INITIALIZING
            try:
                runtime = await self._select_runtime()
                adapter = self._adapter_factory(runtime, self.config)
                await self._start_adapter(adapter, runtime)
            except BaseException:
                self._state = ExecutorState.UNINITIALIZED
                raise
            self._adapter = adapter
            self._runtime = runtime
            self._state = ExecutorState.READY

        logger.info("Sandbox executor initialized: runtime=%s", runtime.value)

    async def _select_runtime(self) -> RuntimeName:
        if self.config.runtime is RuntimeName.MOCK:
            return RuntimeName.MOCK
        descriptors = await self._detector()
        return select_runtime(
            self.config.runtime,
            descriptors,
            fallback_enabled=self.config.fallback_enabled,
        )

    async def _start_adapter(self, adapter: RuntimeAdapter, runtime: RuntimeName) -> None:
        try:
            await adapter.initialize()
        except SandboxError:
            await adapter.cleanup()
            raise
        except Exception as exc:
            await adapter.cleanup()
            logger.error("Failed to initialize %s runtime: %s", runtime.value, exc)
            raise NotAvailableError(
                f"Sandbox runtime {runtime.value!r} failed to initialize",
                details={"runtime": runtime.value, "reason": type(exc).__name__},
            ) from exc

    async def cleanup(self) -> None:
        """Release the adapter and return to the uninitialised state."""
        async with self._lock:
            adapter, self._adapter = self._adapter, None
            self._runtime = None
            self._state = ExecutorState.UNINITIALIZED
        if adapter is not None:
            await adapter.cleanup()
            logger.debug("Sandbox executor cleaned up: runtime=%s", adapter.name.value)

    async def __aenter__(self) -> SandboxExecutor:
        await self.initialize()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.cleanup()

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute(
        self,
        request: ExecutionRequest | Mapping[str, Any],
        context: ExecutionContext | Mapping[str, Any] | None = None,
        *,
        cancel: asyncio.Event | None = None,
    ) -> ExecutionResult:
        """Run *request* in the sandbox.

        Parameters
        ----------
        request:
            A typed request or a mapping dispatched on its ``code`` key.
        context:
            Optional caller identity; with a ``user_id`` the execution is
            audited whatever its outcome.
        cancel:
            Setting this event kills the sandboxed process tree; the
            result then reports ``killed=True`` and ``error="cancelled"``.

        Returns
        -------
        ExecutionResult
            Also returned, with ``timed_out=True``, when the timeout elapses.

        Raises
        ------
        SandboxValidationError
            If *request* or *context* is malformed.
        NotAvailableError
            If lazy initialisation finds no runtime.
        ExecutionFailedError
            If the adapter raised.
        """
        request = parse_request(request)
        context = parse_context(context)

        if self._state is not ExecutorState.READY or self._adapter is None:
            await self.initialize()
        adapter = self._adapter
        assert adapter is not None

        if isinstance(request, CodeExecutionRequest):
            logger.debug(
                "Executing %s code (%d chars) via %s",
                request.language,
                len(request.code),
                adapter.name.value,
            )
        else:
            logger.debug(
                "Executing command %s with %d args via %s",
                request.command,
                len(request.args),
                adapter.name.value,
            )

        start = time.monotonic()
        try:
            result = await adapter.execute(request, cancel=cancel)
        except SandboxError:
            self._audit(request, context, None, _elapsed_ms(start))
            raise
        except Exception as exc:
            duration_ms = _elapsed_ms(start)
            message = redact_host_paths(str(exc) or "Execution failed", _host_paths(adapter))
            logger.error("Sandbox execution failed after %d ms: %s", duration_ms, message)
            self._audit(request, context, None, duration_ms)
            raise ExecutionFailedError(
                message,
                details={"runtime": adapter.name.value, "type": type(exc).__name__},
            ) from exc

        result = result.model_copy(update={"output": merge_output(result.stdout, result.stderr)})
        if result.timed_out:
            logger.warning("Sandbox execution timed out after %d ms", result.duration_ms)
            result = result.model_copy(update={"error": result.error or "timeout"})

        self._audit(request, context, result, result.duration_ms)
        return result

    def _audit(
        self,
        request: ExecutionRequest,
        context: ExecutionContext | None,
        result: ExecutionResult | None,
        duration_ms: int,
    ) -> None:
        if context is None or not context.user_id:
            return

        if result is None:
            severity, outcome = AuditSeverity.ERROR, AuditOutcome.ERROR
            details = AuditDetails(exit_code=-1, timed_out=False, duration_ms=duration_ms)
        else:
            if result.success:
                severity, outcome = AuditSeverity.INFO, AuditOutcome.SUCCESS
            else:
                severity, outcome = AuditSeverity.WARN, AuditOutcome.FAILURE
            details = AuditDetails(
                exit_code=result.exit_code,
                timed_out=result.timed_out,
                duration_ms=result.duration_ms,
            )

        fields: dict[str, Any] = {}
        if context.request_id:
            fields["event_id"] = context.request_id
        record = AuditRecord(
            severity=severity,
            actor=AuditActor(user_id=context.user_id),
            resource=AuditResource(name=request.resource_name),
            outcome=outcome,
            details=details,
            **fields,
        )
        try:
            self._audit_sink.log(record)
        except Exception:
            logger.exception("Audit sink failed for event %s", record.event_id)


async def execute_in_sandbox(
    code_or_request: str | ExecutionRequest | Mapping[str, Any],
    language_or_config: str | ConfigLike = None,
) -> ExecutionResult:
    """Run one request on a throwaway executor.

    Two call shapes are supported:

    * ``execute_in_sandbox(code, language="javascript")`` runs source code
      on the mock runtime;
    * ``execute_in_sandbox(request, config)`` runs a full request with any
      accepted configuration shape (default: auto-detected runtime).

    The executor is always cleaned up, even when execution raises.
    """
    if isinstance(code_or_request, str):
        language = language_or_config if isinstance(language_or_config, str) else "javascript"
        request = parse_request({"code": code_or_request, "language": language})
        config = SandboxConfig(runtime=RuntimeName.MOCK)
    else:
        request = parse_request(code_or_request)
        config = normalize_config(
            None if isinstance(language_or_config, str) else language_or_config
        )

    executor = SandboxExecutor(config)
    try:
        return await executor.execute(request)
    finally:
        await executor.cleanup()


def _host_paths(adapter: RuntimeAdapter) -> list[str | None]:
    return [str(adapter.workspace) if adapter.workspace else None]


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)
