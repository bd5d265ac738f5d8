"""Process supervision for port-forward connections.

The supervisor is the only component that spawns, inspects, or kills helper
processes. All of its maps are guarded by one ``asyncio.Lock``; classified
output is published on ``events`` for the orchestrator to consume.
"""

import asyncio
import os
import stat
import time
from pathlib import Path

import psutil

from ..common.logging import get_logger
from .config import HelperBinaries
from .events import OutputLine, ProcessExited, SupervisorEvent
from .health import is_port_open
from .models import ConnectionConfig, ProcessRole
from .output import classify
from .process import ManagedProcess
from .strategies import (
    EphemeralDirectExec,
    SimpleRelay,
    TunnelOnly,
    direct_exec_relay_command,
    plan_for,
    relay_command,
    render_wrapper_script,
    tunnel_command,
    wrapper_script_path,
)

logger = get_logger(__name__)

# Command-line fragments identifying helpers started by any instance of this tool.
SWEEP_PATTERNS: tuple[tuple[str, str], ...] = (
    ("kubectl", "port-forward"),
    ("socat", "TCP-LISTEN"),
)


class ProcessSupervisor:
    """Owns every helper process, output reader, and error timestamp."""

    def __init__(
        self,
        binaries: HelperBinaries,
        script_dir: str | Path | None = None,
        nc_path: str = "nc",
        stop_timeout: float = 5.0,
    ):
        """Initialize the supervisor.

        Args:
            binaries: Validated helper binary paths
            script_dir: Directory for direct-exec wrapper scripts (temp dir if None)
            nc_path: netcat used by wrapper scripts to probe ports
            stop_timeout: Seconds to wait after SIGTERM before SIGKILL
        """
        self.binaries = binaries
        self.script_dir = script_dir
        self.nc_path = nc_path
        self.stop_timeout = stop_timeout
        self.events: asyncio.Queue[SupervisorEvent] = asyncio.Queue()
        self._processes: dict[str, dict[ProcessRole, ManagedProcess]] = {}
        self._errors: dict[str, float] = {}
        self._lock = asyncio.Lock()

    # Spawning

    async def start_tunnel(
        self,
        connection_id: str,
        namespace: str,
        service: str,
        local_port: int,
        remote_port: int,
    ) -> ManagedProcess:
        """Start ``kubectl port-forward`` bound to loopback ``local_port``.

        Raises:
            DependencyMissingError: If kubectl is unavailable
            SpawnError: If the process cannot be created
        """
        kubectl = self.binaries.require_kubectl()
        argv = tunnel_command(kubectl, namespace, service, local_port, remote_port)
        return await self._spawn(connection_id, ProcessRole.TUNNEL, argv)

    async def start_relay(
        self, connection_id: str, external_port: int, internal_port: int
    ) -> ManagedProcess:
        """Start a forking socat relay from ``external_port`` to loopback ``internal_port``.

        Raises:
            DependencyMissingError: If socat is unavailable
            SpawnError: If the process cannot be created
        """
        socat = self.binaries.require_socat()
        argv = relay_command(socat, external_port, internal_port)
        return await self._spawn(connection_id, ProcessRole.RELAY, argv)

    async def start_direct_exec_relay(
        self,
        connection_id: str,
        namespace: str,
        service: str,
        external_port: int,
        remote_port: int,
    ) -> ManagedProcess:
        """Start a socat listener that launches a private tunnel per accepted connection.

        Raises:
            DependencyMissingError: If kubectl or socat is unavailable
            SpawnError: If the script or process cannot be created
        """
        kubectl = self.binaries.require_kubectl()
        socat = self.binaries.require_socat()

        script_path = wrapper_script_path(connection_id, self.script_dir)
        script = render_wrapper_script(
            kubectl, socat, namespace, service, remote_port, nc_path=self.nc_path
        )
        await asyncio.to_thread(self._write_script, script_path, script)

        argv = direct_exec_relay_command(socat, external_port, script_path)
        try:
            return await self._spawn(
                connection_id, ProcessRole.RELAY, argv, script_path=script_path
            )
        except Exception:
            script_path.unlink(missing_ok=True)
            raise

    async def start_connection(self, config: ConnectionConfig) -> None:
        """Start every helper ``config`` needs, according to its launch plan.

        A relay failure tears down the tunnel that was already started.
        """
        plan = plan_for(config)
        if isinstance(plan, EphemeralDirectExec):
            await self.start_direct_exec_relay(
                config.id,
                config.namespace,
                config.service,
                plan.external_port,
                plan.remote_port,
            )
            return

        await self.start_tunnel(
            config.id,
            config.namespace,
            config.service,
            plan.local_port,
            plan.remote_port,
        )
        if isinstance(plan, SimpleRelay):
            try:
                await self.start_relay(config.id, plan.proxy_port, plan.local_port)
            except Exception:
                await self.kill_processes(config.id)
                raise
        elif not isinstance(plan, TunnelOnly):
            raise TypeError(f"Unsupported launch plan: {plan!r}")

    def _write_script(self, path: Path, content: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IRUSR | stat.S_IWUSR)

    async def _spawn(
        self,
        connection_id: str,
        role: ProcessRole,
        argv: list[str],
        script_path: Path | None = None,
    ) -> ManagedProcess:
        async with self._lock:
            previous = self._processes.get(connection_id, {}).pop(role, None)
        if previous is not None:
            logger.warning(
                "Replacing existing helper process",
                connection_id=connection_id,
                role=role.value,
            )
            await previous.stop(self.stop_timeout)

        managed = await ManagedProcess.spawn(connection_id, role, argv, script_path)
        async with self._lock:
            self._processes.setdefault(connection_id, {})[role] = managed
            managed.reader_task = asyncio.create_task(
                self._monitor_output(managed),
                name=f"output-{role.value}-{connection_id}",
            )
        return managed

    # Output monitoring

    async def _monitor_output(self, managed: ManagedProcess) -> None:
        connection_id = managed.connection_id
        async for line in managed.read_lines():
            classification = classify(line)
            if classification.is_error:
                async with self._lock:
                    self._errors[connection_id] = time.monotonic()
                logger.warning(
                    "Helper reported error",
                    connection_id=connection_id,
                    role=managed.role.value,
                    line=line,
                    kind=classification.kind.value,
                )
            else:
                logger.debug(
                    "Helper output",
                    connection_id=connection_id,
                    role=managed.role.value,
                    line=line,
                )
            await self.events.put(
                OutputLine(connection_id, managed.role, line, classification)
            )

        try:
            returncode = await asyncio.wait_for(managed.process.wait(), timeout=1.0)
        except TimeoutError:
            returncode = None
        logger.info(
            "Helper output closed",
            connection_id=connection_id,
            role=managed.role.value,
            returncode=returncode,
        )
        await self.events.put(ProcessExited(connection_id, managed.role, returncode))

    # Error tracking

    def has_recent_error(self, connection_id: str, within: float = 10.0) -> bool:
        """Whether ``connection_id`` printed an error line in the last ``within`` seconds."""
        marked = self._errors.get(connection_id)
        return marked is not None and time.monotonic() - marked < within

    def clear_error(self, connection_id: str) -> None:
        self._errors.pop(connection_id, None)

    # Lifecycle

    async def kill_processes(self, connection_id: str) -> None:
        """Stop every helper of ``connection_id`` and remove its wrapper script.

        Idempotent; also removes a leftover script when nothing is tracked.
        """
        async with self._lock:
            procs = self._processes.pop(connection_id, {})
            self._errors.pop(connection_id, None)

        for managed in procs.values():
            await managed.stop(self.stop_timeout)

        wrapper_script_path(connection_id, self.script_dir).unlink(missing_ok=True)
        if procs:
            logger.info(
                "Stopped helper processes",
                connection_id=connection_id,
                roles=[role.value for role in procs],
            )

    def is_running(self, connection_id: str, role: ProcessRole) -> bool:
        managed = self._processes.get(connection_id, {}).get(role)
        return managed is not None and managed.is_running()

    def tracked_ids(self) -> list[str]:
        return list(self._processes)

    def process_count(self) -> int:
        """Count of tracked processes that are still running."""
        return sum(
            1
            for procs in self._processes.values()
            for managed in procs.values()
            if managed.is_running()
        )

    async def is_port_open(self, port: int, timeout: float = 0.5) -> bool:
        return await is_port_open(port, timeout=timeout)

    async def kill_all_managed_processes(self) -> list[int]:
        """Force-kill every kubectl port-forward and socat listener on the host.

        Catches helpers left behind by a crashed previous run as well as
        tracked ones. Internal maps are always cleared afterwards.

        Returns:
            PIDs that were sent SIGKILL
        """
        killed: list[int] = []
        try:
            killed = await asyncio.to_thread(self._sweep_helpers)
        except (psutil.Error, OSError) as e:
            logger.error("Helper sweep failed", error=str(e))
        if killed:
            await asyncio.sleep(0.5)

        async with self._lock:
            procs = [m for by_role in self._processes.values() for m in by_role.values()]
            self._processes.clear()
            self._errors.clear()
        for managed in procs:
            await managed.stop(timeout=1.0)

        logger.info("Swept helper processes", killed=len(killed))
        return killed

    def _sweep_helpers(self) -> list[int]:
        own_pid = os.getpid()
        killed = []
        for proc in psutil.process_iter(["pid", "cmdline"]):
            try:
                cmdline = " ".join(proc.info.get("cmdline") or [])
                if proc.info["pid"] == own_pid or not cmdline:
                    continue
                if any(a in cmdline and b in cmdline for a, b in SWEEP_PATTERNS):
                    proc.kill()
                    killed.append(proc.info["pid"])
            except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
                continue
        return killed
