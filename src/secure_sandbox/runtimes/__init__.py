"""Runtime adapters for every supported isolation technology.

Each adapter turns an :class:`~secure_sandbox.models.request.ExecutionRequest`
into a run inside its technology and reports a normalised
:class:`~secure_sandbox.models.result.ExecutionResult`.

Use :func:`create_adapter` to obtain the adapter for a concrete
:class:`~secure_sandbox.models.enums.RuntimeName`.
"""

from __future__ import annotations

from secure_sandbox.models.config import SandboxConfig
from secure_sandbox.models.enums import RuntimeName
from secure_sandbox.runtimes.base import Invocation, LauncherRuntime, RuntimeAdapter
from secure_sandbox.runtimes.bubblewrap import BubblewrapRuntime
from secure_sandbox.runtimes.docker import DockerRuntime
from secure_sandbox.runtimes.firejail import FirejailRuntime
from secure_sandbox.runtimes.gvisor import GVisorRuntime
from secure_sandbox.runtimes.macos import MacOSRuntime
from secure_sandbox.runtimes.mock import MockRuntime
from secure_sandbox.runtimes.nsjail import NsjailRuntime
from secure_sandbox.runtimes.podman import PodmanRuntime

__all__ = [
    "BubblewrapRuntime",
    "DockerRuntime",
    "FirejailRuntime",
    "GVisorRuntime",
    "Invocation",
    "LauncherRuntime",
    "MacOSRuntime",
    "MockRuntime",
    "NsjailRuntime",
    "PodmanRuntime",
    "RUNTIME_MAP",
    "RuntimeAdapter",
    "create_adapter",
]

# ---------------------------------------------------------------------------
# Runtime name -> adapter class mapping
# ---------------------------------------------------------------------------

RUNTIME_MAP: dict[RuntimeName, type[RuntimeAdapter]] = {
    RuntimeName.GVISOR: GVisorRuntime,
    RuntimeName.NSJAIL: NsjailRuntime,
    RuntimeName.DOCKER: DockerRuntime,
    RuntimeName.PODMAN: PodmanRuntime,
    RuntimeName.BUBBLEWRAP: BubblewrapRuntime,
    RuntimeName.FIREJAIL: FirejailRuntime,
    RuntimeName.MACOS: MacOSRuntime,
    RuntimeName.MOCK: MockRuntime,
}


def create_adapter(runtime: RuntimeName, config: SandboxConfig) -> RuntimeAdapter:
    """Return an uninitialised adapter for *runtime*.

    Parameters
    ----------
    runtime:
        A concrete runtime; ``auto`` must be resolved by
        :func:`~secure_sandbox.detection.select_runtime` first.
    config:
        Configuration the adapter enforces.

    Returns
    -------
    RuntimeAdapter

    Raises
    ------
    ValueError
        If *runtime* has no adapter.
    """
    adapter_cls = RUNTIME_MAP.get(runtime)
    if adapter_cls is None:
        raise ValueError(
            f"Unsupported runtime: {runtime!r}. "
            f"Supported runtimes: {sorted(RUNTIME_MAP)}"
        )
    return adapter_cls(config)
