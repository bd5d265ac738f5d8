"""Shared pytest fixtures for kube-forward tests."""

import asyncio
from unittest.mock import Mock

import pytest

from kube_forward.forward.config import ForwardSettings, HelperBinaries
from kube_forward.forward.models import ConnectionConfig, ProcessRole
from kube_forward.forward.strategies import EphemeralDirectExec, SimpleRelay, plan_for


class FakeStream:
    """Stand-in for a subprocess stdout StreamReader."""

    def __init__(self, chunks: list[bytes] | None = None):
        self._chunks = list(chunks or [])
        self._closed = asyncio.Event()

    def feed(self, data: bytes) -> None:
        self._chunks.append(data)

    def close(self) -> None:
        self._closed.set()

    async def read(self, n: int = -1) -> bytes:
        if self._chunks:
            return self._chunks.pop(0)
        await self._closed.wait()
        if self._chunks:
            return self._chunks.pop(0)
        return b""


class FakeProcess:
    """Stand-in for asyncio.subprocess.Process.

    Output chunks are served first; the stream then blocks until the process
    exits through ``finish``, ``terminate`` or ``kill``.
    """

    def __init__(self, chunks: list[bytes] | None = None, pid: int = 4242, ignore_term: bool = False):
        self.pid = pid
        self.returncode: int | None = None
        self.stdout = FakeStream(chunks)
        self.ignore_term = ignore_term
        self.terminate_calls = 0
        self.kill_calls = 0
        self._exited = asyncio.Event()

    def finish(self, returncode: int = 0) -> None:
        self.returncode = returncode
        self.stdout.close()
        self._exited.set()

    def terminate(self) -> None:
        self.terminate_calls += 1
        if not self.ignore_term:
            self.finish(-15)

    def kill(self) -> None:
        self.kill_calls += 1
        self.finish(-9)

    async def wait(self) -> int:
        await self._exited.wait()
        assert self.returncode is not None
        return self.returncode


class FakeSupervisor:
    """In-memory ProcessSupervisor double for orchestrator tests.

    Started helpers are "running" until killed or marked dead; ports are
    "open" only when a test opens them.
    """

    def __init__(self) -> None:
        self.events: asyncio.Queue = asyncio.Queue()
        self.calls: list[tuple[str, str]] = []
        self.started_configs: list[ConnectionConfig] = []
        self.running: set[tuple[str, ProcessRole]] = set()
        self.open_ports: set[int] = set()
        self.errors: set[str] = set()
        self.start_error: Exception | None = None
        self.swept = 0

    async def start_connection(self, config: ConnectionConfig) -> None:
        self.calls.append(("start", config.id))
        self.started_configs.append(config)
        if self.start_error is not None:
            raise self.start_error
        plan = plan_for(config)
        if not isinstance(plan, EphemeralDirectExec):
            self.running.add((config.id, ProcessRole.TUNNEL))
        if isinstance(plan, (SimpleRelay, EphemeralDirectExec)):
            self.running.add((config.id, ProcessRole.RELAY))

    async def kill_processes(self, connection_id: str) -> None:
        self.calls.append(("kill", connection_id))
        self.running = {key for key in self.running if key[0] != connection_id}
        self.errors.discard(connection_id)

    async def kill_all_managed_processes(self) -> list[int]:
        self.swept += 1
        self.running.clear()
        return []

    def is_running(self, connection_id: str, role: ProcessRole) -> bool:
        return (connection_id, role) in self.running

    async def is_port_open(self, port: int, timeout: float = 0.5) -> bool:
        return port in self.open_ports

    def has_recent_error(self, connection_id: str, within: float = 10.0) -> bool:
        return connection_id in self.errors

    def clear_error(self, connection_id: str) -> None:
        self.errors.discard(connection_id)

    def process_count(self) -> int:
        return len(self.running)

    def mark_dead(self, connection_id: str, role: ProcessRole = ProcessRole.TUNNEL) -> None:
        self.running.discard((connection_id, role))

    def count(self, action: str, connection_id: str) -> int:
        return sum(1 for call in self.calls if call == (action, connection_id))


@pytest.fixture
def fake_supervisor():
    """Create a FakeSupervisor.

    Returns:
        FakeSupervisor: Supervisor double with no running helpers
    """
    return FakeSupervisor()


@pytest.fixture
def settings():
    """Settings with a long refresh interval so tests drive ticks explicitly."""
    return ForwardSettings(refresh_interval=60.0, conflict_grace_period=0.0)


@pytest.fixture
def notifier():
    """Mock NotificationSink."""
    return Mock()


@pytest.fixture
def api_config():
    """Tunnel-only connection to svc/api in namespace default."""
    return ConnectionConfig(
        id="api",
        name="api",
        namespace="default",
        service="api",
        local_port=8080,
        remote_port=80,
    )


@pytest.fixture
def relay_config():
    """Connection with a socat relay on port 5431."""
    return ConnectionConfig(
        id="db",
        name="postgres",
        namespace="data",
        service="postgres",
        local_port=5432,
        remote_port=5432,
        proxy_port=5431,
    )


@pytest.fixture
def helper_binaries(tmp_path):
    """Executable kubectl and socat placeholders.

    Args:
        tmp_path: pytest's tmp_path fixture

    Returns:
        HelperBinaries: Paths to the placeholder binaries
    """
    kubectl = tmp_path / "kubectl"
    socat = tmp_path / "socat"
    for path in (kubectl, socat):
        path.write_text("#!/bin/sh\n")
        path.chmod(0o755)
    return HelperBinaries(kubectl_path=str(kubectl), socat_path=str(socat))
