"""Fixed-size pool of sandbox executors with FIFO waiting.

Every executor created by the pool is, at any instant, either on the free
list or in the leased set.  An executor promised to a waiter whose future
has been resolved, but who has not resumed yet, stays in the leased set.
Both structures are only mutated between ``await`` points, so each update
is atomic with respect to the event loop.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from collections import deque
from collections.abc import AsyncIterator, Callable, Mapping
from contextlib import asynccontextmanager, suppress
from typing import Any

from secure_sandbox.errors import PoolShutdownError
from secure_sandbox.executor import ConfigLike, SandboxExecutor
from secure_sandbox.models.config import SandboxConfig, normalize_config
from secure_sandbox.models.request import ExecutionContext, ExecutionRequest
from secure_sandbox.models.result import ExecutionResult, PoolStats

logger = logging.getLogger(__name__)

ExecutorFactory = Callable[[SandboxConfig], SandboxExecutor]


class SandboxPool:
    """Share ``config.pool_size`` executors between concurrent callers.

    Executors are created and initialised lazily on the first
    :meth:`acquire`.  When none is free, callers queue and are served in
    arrival order as executors are released.

    Parameters
    ----------
    config:
        Any shape accepted by
        :func:`~secure_sandbox.models.config.normalize_config`; its
        ``pool_size`` sets the capacity.
    executor_factory:
        Builds one executor per slot (default: :class:`SandboxExecutor`).
    """

    def __init__(
        self,
        config: ConfigLike = None,
        *,
        executor_factory: ExecutorFactory = SandboxExecutor,
    ) -> None:
        self.config = normalize_config(config)
        self.max_size = self.config.pool_size
        self._executor_factory = executor_factory
        self._executors: list[SandboxExecutor] = []
        self._free: list[SandboxExecutor] = []
        self._leased: set[SandboxExecutor] = set()
        self._waiters: deque[asyncio.Future[SandboxExecutor]] = deque()
        # Executors of generations torn down by destroy().
        self._retired: weakref.WeakSet[SandboxExecutor] = weakref.WeakSet()
        self._initialized = False
        self._init_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def _initialize(self) -> None:
        async with self._init_lock:
            if self._initialized:
                return
            created: list[SandboxExecutor] = []
            try:
                for _ in range(self.max_size):
                    executor = self._executor_factory(self.config)
                    created.append(executor)
                    await executor.initialize()
            except BaseException:
                logger.error(
                    "Sandbox pool initialization failed; releasing %d executors", len(created)
                )
                await _cleanup_all(created)
                raise

            self._executors = created
            self._free = list(created)
            self._initialized = True
        logger.info("Sandbox pool initialized: size=%d", self.max_size)

    async def destroy(self) -> None:
        """Reject all waiters and clean up every executor.

        Waiters receive :class:`~secure_sandbox.errors.PoolShutdownError`.
        Executor cleanup failures are logged and do not abort the
        shutdown.  The pool may be used again afterwards; it then
        re-initialises lazily.
        """
        logger.info("Destroying sandbox pool: size=%d", len(self._executors))

        waiters, self._waiters = self._waiters, deque()
        for waiter in waiters:
            if not waiter.done():
                waiter.set_exception(PoolShutdownError("Sandbox pool is shutting down"))

        executors, self._executors = self._executors, []
        self._retired.update(executors)
        self._free = []
        self._leased = set()
        self._initialized = False
        await _cleanup_all(executors)

    async def shutdown(self) -> None:
        """Alias of :meth:`destroy`."""
        await self.destroy()

    async def __aenter__(self) -> SandboxPool:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.destroy()

    # ------------------------------------------------------------------
    # Leasing
    # ------------------------------------------------------------------

    async def acquire(self) -> SandboxExecutor:
        """Lease an executor, waiting in FIFO order if none is free.

        Raises
        ------
        PoolShutdownError
            If the pool is destroyed while waiting.
        NotAvailableError
            If lazy initialisation fails.
        """
        if not self._initialized:
            await self._initialize()

        if self._free:
            executor = self._free.pop()
            self._leased.add(executor)
            return executor

        waiter: asyncio.Future[SandboxExecutor] = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            executor = await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled() and waiter.exception() is None:
                # Handed an executor just before being cancelled: pass it on.
                self.release(waiter.result())
            else:
                with suppress(ValueError):
                    self._waiters.remove(waiter)
            raise
        return executor

    def release(self, executor: SandboxExecutor) -> None:
        """Return a leased executor, handing it to the oldest live waiter.

        An executor handed to a waiter stays leased.  Executors leased
        before a :meth:`destroy` are ignored.

        Raises
        ------
        ValueError
            If *executor* is not currently leased from this pool.
        """
        if executor in self._retired:
            logger.warning("Ignoring release of an executor from a destroyed pool")
            return
        if executor not in self._leased:
            raise ValueError("Executor is not leased from this pool")

        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_result(executor)
                return
        self._leased.discard(executor)
        self._free.append(executor)

    @asynccontextmanager
    async def lease(self) -> AsyncIterator[SandboxExecutor]:
        """Acquire an executor for the duration of an ``async with`` block."""
        executor = await self.acquire()
        try:
            yield executor
        finally:
            if executor in self._leased:
                self.release(executor)

    async def execute(
        self,
        request: ExecutionRequest | Mapping[str, Any],
        context: ExecutionContext | Mapping[str, Any] | None = None,
        *,
        cancel: asyncio.Event | None = None,
    ) -> ExecutionResult:
        """Run *request* on a leased executor, always releasing it."""
        async with self.lease() as executor:
            return await executor.execute(request, context, cancel=cancel)

    async def execute_with_pool(
        self,
        request: ExecutionRequest | Mapping[str, Any],
        context: ExecutionContext | Mapping[str, Any] | None = None,
        *,
        cancel: asyncio.Event | None = None,
    ) -> ExecutionResult:
        """Alias of :meth:`execute`."""
        return await self.execute(request, context, cancel=cancel)

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    def get_stats(self) -> PoolStats:
        """Snapshot of the pool.

        Before initialisation ``total`` and ``available`` report the
        configured capacity and ``pool_size`` is zero.
        """
        if not self._initialized:
            return PoolStats(
                total=self.max_size,
                available=self.max_size,
                pool_size=0,
                waiting=0,
            )
        return PoolStats(
            total=len(self._executors),
            available=len(self._free),
            pool_size=len(self._executors),
            waiting=sum(1 for waiter in self._waiters if not waiter.done()),
            in_use=len(self._leased),
        )


async def _cleanup_all(executors: list[SandboxExecutor]) -> None:
    results = await asyncio.gather(
        *(executor.cleanup() for executor in executors),
        return_exceptions=True,
    )
    for result in results:
        if isinstance(result, Exception):
            logger.error("Failed to clean up sandbox executor: %s", result)
