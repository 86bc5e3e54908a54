"""Discovery of the isolation technologies usable on this host."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

from secure_sandbox.errors import NotAvailableError
from secure_sandbox.models.enums import RuntimeName
from secure_sandbox.models.result import RuntimeDescriptor
from secure_sandbox.runtimes import RUNTIME_MAP

logger = logging.getLogger(__name__)

# Strongest isolation first.  ``mock`` is never auto-selected.
RUNTIME_PRIORITY: tuple[RuntimeName, ...] = (
    RuntimeName.GVISOR,
    RuntimeName.NSJAIL,
    RuntimeName.BUBBLEWRAP,
    RuntimeName.FIREJAIL,
    RuntimeName.DOCKER,
    RuntimeName.PODMAN,
    RuntimeName.MACOS,
)


async def _probe(name: RuntimeName) -> RuntimeDescriptor:
    try:
        return await RUNTIME_MAP[name].probe()
    except Exception:
        logger.exception("Probe for runtime %s failed", name.value)
        return RuntimeDescriptor(name=name, available=False)


async def detect_runtimes() -> list[RuntimeDescriptor]:
    """Probe every technology concurrently.

    Returns
    -------
    list[RuntimeDescriptor]
        One descriptor per technology, in :data:`RUNTIME_PRIORITY` order.
        A missing technology is reported as unavailable, never raised.
    """
    descriptors = await asyncio.gather(*(_probe(name) for name in RUNTIME_PRIORITY))
    available = [d.name.value for d in descriptors if d.available]
    logger.info("Detected sandbox runtimes: %s", ", ".join(available) or "none")
    return list(descriptors)


def select_runtime(
    requested: RuntimeName,
    descriptors: Sequence[RuntimeDescriptor],
    *,
    fallback_enabled: bool = True,
) -> RuntimeName:
    """Choose the runtime an executor should use.

    Parameters
    ----------
    requested:
        The configured runtime, possibly ``auto``.
    descriptors:
        Result of :func:`detect_runtimes`.
    fallback_enabled:
        Whether an unavailable explicit runtime may be replaced by the
        highest-priority available one.

    Returns
    -------
    RuntimeName

    Raises
    ------
    NotAvailableError
        If nothing suitable is available.
    """
    available = {d.name for d in descriptors if d.available}
    best = next((name for name in RUNTIME_PRIORITY if name in available), None)

    if requested is RuntimeName.AUTO:
        if best is None:
            raise NotAvailableError(
                "No sandbox runtime available",
                details={"checked": [name.value for name in RUNTIME_PRIORITY]},
            )
        return best

    if requested in available:
        return requested

    if fallback_enabled and best is not None:
        logger.warning(
            "Runtime %s not available, falling back to %s", requested.value, best.value
        )
        return best

    raise NotAvailableError(
        f"Sandbox runtime {requested.value!r} is not available",
        details={
            "requested": requested.value,
            "available": sorted(name.value for name in available),
        },
    )
