"""Tests for runtime detection and selection."""

from __future__ import annotations

import logging

import pytest

from secure_sandbox.detection import RUNTIME_PRIORITY, detect_runtimes, select_runtime
from secure_sandbox.errors import NotAvailableError
from secure_sandbox.models.enums import RuntimeName
from secure_sandbox.models.result import RuntimeDescriptor
from secure_sandbox.runtimes import RUNTIME_MAP


def _descriptors(*available: RuntimeName) -> list[RuntimeDescriptor]:
    return [
        RuntimeDescriptor(name=name, available=name in available)
        for name in RUNTIME_PRIORITY
    ]


def _patch_probes(monkeypatch, available: set[RuntimeName], broken: set[RuntimeName] = frozenset()):
    for name in RUNTIME_PRIORITY:

        async def probe(name=name):
            if name in broken:
                raise OSError("probe exploded")
            return RuntimeDescriptor(name=name, available=name in available)

        monkeypatch.setattr(RUNTIME_MAP[name], "probe", probe)


class TestRuntimePriority:
    def test_order(self):
        assert RUNTIME_PRIORITY == (
            RuntimeName.GVISOR,
            RuntimeName.NSJAIL,
            RuntimeName.BUBBLEWRAP,
            RuntimeName.FIREJAIL,
            RuntimeName.DOCKER,
            RuntimeName.PODMAN,
            RuntimeName.MACOS,
        )

    def test_mock_and_auto_never_probed(self):
        assert RuntimeName.MOCK not in RUNTIME_PRIORITY
        assert RuntimeName.AUTO not in RUNTIME_PRIORITY


class TestDetectRuntimes:
    @pytest.mark.asyncio
    async def test_reports_every_runtime_in_priority_order(self, monkeypatch):
        _patch_probes(monkeypatch, {RuntimeName.DOCKER})
        descriptors = await detect_runtimes()
        assert [d.name for d in descriptors] == list(RUNTIME_PRIORITY)
        assert [d.name for d in descriptors if d.available] == [RuntimeName.DOCKER]

    @pytest.mark.asyncio
    async def test_failing_probe_reported_unavailable(self, monkeypatch):
        _patch_probes(monkeypatch, {RuntimeName.NSJAIL}, broken={RuntimeName.GVISOR})
        descriptors = await detect_runtimes()
        by_name = {d.name: d for d in descriptors}
        assert by_name[RuntimeName.GVISOR].available is False
        assert by_name[RuntimeName.NSJAIL].available is True

    @pytest.mark.asyncio
    async def test_missing_binary_is_unavailable(self, monkeypatch):
        monkeypatch.setattr("shutil.which", lambda name: None)
        descriptor = await RUNTIME_MAP[RuntimeName.PODMAN].probe()
        assert descriptor.available is False


class TestSelectRuntime:
    def test_auto_picks_highest_priority(self):
        descriptors = _descriptors(RuntimeName.DOCKER, RuntimeName.BUBBLEWRAP)
        assert select_runtime(RuntimeName.AUTO, descriptors) is RuntimeName.BUBBLEWRAP

    def test_auto_with_nothing_available(self):
        with pytest.raises(NotAvailableError, match="No sandbox runtime available") as exc_info:
            select_runtime(RuntimeName.AUTO, _descriptors())
        assert exc_info.value.code == "not_available"

    def test_explicit_available(self):
        descriptors = _descriptors(RuntimeName.GVISOR, RuntimeName.DOCKER)
        assert select_runtime(RuntimeName.DOCKER, descriptors) is RuntimeName.DOCKER

    def test_fallback_logs_warning(self, caplog):
        descriptors = _descriptors(RuntimeName.DOCKER, RuntimeName.PODMAN)
        with caplog.at_level(logging.WARNING, logger="secure_sandbox.detection"):
            selected = select_runtime(RuntimeName.GVISOR, descriptors, fallback_enabled=True)
        assert selected is RuntimeName.DOCKER
        assert "falling back to docker" in caplog.text

    def test_no_fallback_raises(self):
        descriptors = _descriptors(RuntimeName.DOCKER)
        with pytest.raises(NotAvailableError) as exc_info:
            select_runtime(RuntimeName.GVISOR, descriptors, fallback_enabled=False)
        assert exc_info.value.details["available"] == ["docker"]

    def test_fallback_with_nothing_available_raises(self):
        with pytest.raises(NotAvailableError):
            select_runtime(RuntimeName.NSJAIL, _descriptors(), fallback_enabled=True)
