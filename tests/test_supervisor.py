"""Test ProcessSupervisor with patched subprocess creation."""

import asyncio
import os
import stat
from types import SimpleNamespace
from unittest.mock import AsyncMock, Mock, patch

import psutil
import pytest
from conftest import FakeProcess

from kube_forward.common.exceptions import DependencyMissingError, SpawnError
from kube_forward.forward.config import HelperBinaries
from kube_forward.forward.events import OutputLine, ProcessExited
from kube_forward.forward.models import ConnectionConfig, ProcessRole
from kube_forward.forward.output import OutputKind
from kube_forward.forward.supervisor import ProcessSupervisor


class SpawnRecorder:
    """Patched create_subprocess_exec that hands out FakeProcesses."""

    def __init__(self):
        self.argvs: list[tuple[str, ...]] = []
        self.processes: list[FakeProcess] = []
        self.outputs: list[list[bytes]] = []
        self.fail_on: str | None = None

    async def __call__(self, *argv, **kwargs):
        if self.fail_on is not None and self.fail_on in argv[0]:
            raise PermissionError("denied")
        self.argvs.append(argv)
        chunks = self.outputs.pop(0) if self.outputs else []
        process = FakeProcess(chunks, pid=1000 + len(self.processes))
        self.processes.append(process)
        return process


@pytest.fixture
def spawner():
    recorder = SpawnRecorder()
    with patch("asyncio.create_subprocess_exec", recorder):
        yield recorder


@pytest.fixture
def supervisor(helper_binaries, tmp_path):
    return ProcessSupervisor(helper_binaries, script_dir=tmp_path / "scripts", stop_timeout=0.1)


async def _next_event(supervisor):
    return await asyncio.wait_for(supervisor.events.get(), timeout=1.0)


class TestStartConnection:
    @pytest.mark.asyncio
    async def test_start_tunnel_only(self, supervisor, spawner, api_config):
        await supervisor.start_connection(api_config)

        assert len(spawner.argvs) == 1
        assert spawner.argvs[0][1:] == (
            "port-forward",
            "-n",
            "default",
            "svc/api",
            "8080:80",
            "--address=127.0.0.1",
        )
        assert supervisor.is_running("api", ProcessRole.TUNNEL)
        assert not supervisor.is_running("api", ProcessRole.RELAY)
        assert supervisor.process_count() == 1

        await supervisor.kill_processes("api")

    @pytest.mark.asyncio
    async def test_start_simple_relay(self, supervisor, spawner, relay_config):
        await supervisor.start_connection(relay_config)

        assert [argv[1] for argv in spawner.argvs] == ["port-forward", "TCP-LISTEN:5431,fork,reuseaddr"]
        assert spawner.argvs[1][2] == "TCP:127.0.0.1:5432"
        assert supervisor.process_count() == 2

        await supervisor.kill_processes("db")
        assert supervisor.process_count() == 0
        assert supervisor.tracked_ids() == []

    @pytest.mark.asyncio
    async def test_relay_failure_kills_tunnel(self, helper_binaries, tmp_path, spawner, relay_config):
        supervisor = ProcessSupervisor(helper_binaries, script_dir=tmp_path, stop_timeout=0.1)
        spawner.fail_on = "socat"

        with pytest.raises(SpawnError):
            await supervisor.start_connection(relay_config)

        assert spawner.processes[0].terminate_calls == 1
        assert supervisor.process_count() == 0

    @pytest.mark.asyncio
    async def test_start_direct_exec_writes_script(self, supervisor, spawner):
        config = ConnectionConfig(
            id="web",
            name="web",
            namespace="prod",
            service="web",
            local_port=9000,
            remote_port=80,
            proxy_port=8999,
            use_direct_exec=True,
        )

        await supervisor.start_connection(config)

        script = supervisor.script_dir / "pf-wrapper-web.sh"
        assert script.exists()
        assert script.stat().st_mode & stat.S_IXUSR
        assert "svc/web" in script.read_text()
        assert spawner.argvs == [
            (supervisor.binaries.socat_path, "TCP-LISTEN:8999,fork,reuseaddr", f"EXEC:{script}")
        ]
        assert supervisor.is_running("web", ProcessRole.RELAY)
        assert not supervisor.is_running("web", ProcessRole.TUNNEL)

        await supervisor.kill_processes("web")
        assert not script.exists()

    @pytest.mark.asyncio
    async def test_missing_kubectl(self, tmp_path, spawner, api_config):
        supervisor = ProcessSupervisor(HelperBinaries(socat_path="/usr/bin/socat"), script_dir=tmp_path)

        with pytest.raises(DependencyMissingError, match="kubectl"):
            await supervisor.start_connection(api_config)

        assert spawner.argvs == []

    @pytest.mark.asyncio
    async def test_restart_replaces_existing_process(self, supervisor, spawner, api_config):
        await supervisor.start_connection(api_config)
        await supervisor.start_connection(api_config)

        assert spawner.processes[0].terminate_calls == 1
        assert supervisor.process_count() == 1

        await supervisor.kill_processes("api")


class TestOutputMonitoring:
    @pytest.mark.asyncio
    async def test_output_lines_are_classified_and_published(self, supervisor, spawner, api_config):
        spawner.outputs.append(
            [
                b"Forwarding from 127.0.0.1:8080 -> 80\n",
                b"Unable to listen on port 8080: bind: address already in use\n",
            ]
        )
        await supervisor.start_connection(api_config)

        first = await _next_event(supervisor)
        second = await _next_event(supervisor)

        assert isinstance(first, OutputLine)
        assert first.classification.kind == OutputKind.NORMAL
        assert second.conflict_port == 8080
        assert second.role == ProcessRole.TUNNEL
        assert supervisor.has_recent_error("api")

        supervisor.clear_error("api")
        assert not supervisor.has_recent_error("api")

        await supervisor.kill_processes("api")

    @pytest.mark.asyncio
    async def test_exit_publishes_process_exited(self, supervisor, spawner, api_config):
        spawner.outputs.append([b"error: lost connection to pod\n"])
        await supervisor.start_connection(api_config)

        line = await _next_event(supervisor)
        spawner.processes[0].finish(1)
        exited = await _next_event(supervisor)

        assert line.classification.is_error
        assert isinstance(exited, ProcessExited)
        assert exited.returncode == 1
        assert not supervisor.is_running("api", ProcessRole.TUNNEL)

    def test_recent_error_window(self, supervisor):
        with patch("time.monotonic", return_value=100.0):
            supervisor._errors["api"] = 90.0
            assert supervisor.has_recent_error("api", within=10.5)
            assert not supervisor.has_recent_error("api", within=10.0)


class TestKillAll:
    @pytest.mark.asyncio
    async def test_kill_all_sweeps_matching_helpers(self, supervisor, spawner, api_config):
        await supervisor.start_connection(api_config)
        procs = [
            Mock(info={"pid": 11, "cmdline": ["kubectl", "port-forward", "svc/x", "1:1"]}),
            Mock(info={"pid": 12, "cmdline": ["socat", "TCP-LISTEN:1,fork", "TCP:127.0.0.1:2"]}),
            Mock(info={"pid": 13, "cmdline": ["kubectl", "get", "pods"]}),
            Mock(info={"pid": 14, "cmdline": None}),
        ]
        procs[1].kill.side_effect = psutil.NoSuchProcess(12)

        with (
            patch("psutil.process_iter", return_value=procs),
            patch("asyncio.sleep", AsyncMock()) as mock_sleep,
        ):
            killed = await supervisor.kill_all_managed_processes()

        assert killed == [11]
        procs[0].kill.assert_called_once()
        procs[2].kill.assert_not_called()
        mock_sleep.assert_awaited_once_with(0.5)
        assert supervisor.tracked_ids() == []
        assert spawner.processes[0].terminate_calls == 1

    @pytest.mark.asyncio
    async def test_kill_all_survives_sweep_failure(self, supervisor):
        with patch("psutil.process_iter", side_effect=psutil.AccessDenied()):
            assert await supervisor.kill_all_managed_processes() == []

    @pytest.mark.asyncio
    async def test_is_port_open_delegates_to_probe(self, supervisor):
        with patch(
            "kube_forward.forward.supervisor.is_port_open", AsyncMock(return_value=True)
        ) as mock_probe:
            assert await supervisor.is_port_open(8080, timeout=0.2)

        mock_probe.assert_awaited_once_with(8080, timeout=0.2)


class TestSweep:
    def test_sweep_skips_own_pid(self, supervisor):
        own = SimpleNamespace(info={"pid": os.getpid(), "cmdline": ["socat", "TCP-LISTEN:1"]}, kill=Mock())
        with patch("psutil.process_iter", return_value=[own]):
            assert supervisor._sweep_helpers() == []
        own.kill.assert_not_called()
