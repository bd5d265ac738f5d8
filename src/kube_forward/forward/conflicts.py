"""Local port conflict resolution."""

import os
import signal
import time

import psutil

from ..common.logging import get_logger
from ..common.utils import validate_port

logger = get_logger(__name__)

DEFAULT_GRACE_PERIOD = 0.3


class ConflictResolver:
    """Frees a local TCP port by terminating whatever process holds it.

    Resolution is best-effort: lookup and signalling failures are logged and
    swallowed. If the port is still taken afterwards the next bind attempt
    fails again and surfaces as an ordinary connection error.
    """

    def __init__(self, grace_period: float = DEFAULT_GRACE_PERIOD):
        self.grace_period = grace_period

    def find_pids(self, port: int) -> list[int]:
        """List PIDs with a TCP socket bound to ``port`` on this host.

        Args:
            port: Local TCP port

        Returns:
            Sorted PIDs, excluding the current process
        """
        try:
            connections = psutil.net_connections(kind="tcp")
        except (psutil.AccessDenied, OSError) as e:
            logger.warning("Port lookup failed", port=port, error=str(e))
            return []

        own_pid = os.getpid()
        pids = {
            conn.pid
            for conn in connections
            if conn.pid and conn.laddr and conn.laddr.port == port and conn.pid != own_pid
        }
        return sorted(pids)

    def resolve_port(self, port: int, grace_period: float | None = None) -> list[int]:
        """Terminate every process bound to ``port``.

        Sends SIGTERM, waits the grace period, then SIGKILLs survivors.

        Args:
            port: Local TCP port to free
            grace_period: Seconds between SIGTERM and SIGKILL (instance default if None)

        Returns:
            PIDs that were signalled
        """
        pids = self.find_pids(validate_port(port))
        if not pids:
            logger.debug("No process holds port", port=port)
            return []

        logger.info("Resolving port conflict", port=port, pids=pids)
        signalled = [pid for pid in pids if self._send(pid, signal.SIGTERM)]

        if signalled:
            time.sleep(self.grace_period if grace_period is None else grace_period)

        for pid in signalled:
            if psutil.pid_exists(pid):
                logger.warning("Process ignored SIGTERM, force killing", port=port, pid=pid)
                self._send(pid, signal.SIGKILL)

        return signalled

    def _send(self, pid: int, sig: signal.Signals) -> bool:
        try:
            os.kill(pid, sig)
            return True
        except ProcessLookupError:
            logger.debug("Process already exited", pid=pid)
            return False
        except PermissionError:
            logger.error("Permission denied signalling process", pid=pid, signal=sig.name)
            return False
