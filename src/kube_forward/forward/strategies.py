"""Launch strategies for a connection's helper processes.

A connection is launched in one of three shapes:

- ``TunnelOnly``: a single ``kubectl port-forward`` on the local port.
- ``SimpleRelay``: the tunnel plus a ``socat`` relay from the proxy port to the
  tunnel's local port.
- ``EphemeralDirectExec``: only a ``socat`` listener; every accepted connection
  runs a generated wrapper script that starts its own tunnel on a free
  ephemeral port. The inner tunnel is managed by the script, not tracked.
"""

import hashlib
import re
import shlex
import tempfile
from dataclasses import dataclass
from pathlib import Path

from ..common.utils import validate_non_empty_string
from .models import ConnectionConfig

LOOPBACK = "127.0.0.1"

EPHEMERAL_PORT_BASE = 30000
EPHEMERAL_PORT_SPAN = 30000
READY_POLL_ATTEMPTS = 10
READY_POLL_INTERVAL = 0.5

WRAPPER_PREFIX = "pf-wrapper-"


@dataclass(frozen=True)
class TunnelOnly:
    local_port: int
    remote_port: int


@dataclass(frozen=True)
class SimpleRelay:
    local_port: int
    remote_port: int
    proxy_port: int


@dataclass(frozen=True)
class EphemeralDirectExec:
    external_port: int
    remote_port: int


LaunchPlan = TunnelOnly | SimpleRelay | EphemeralDirectExec


def plan_for(config: ConnectionConfig) -> LaunchPlan:
    """Pick the launch strategy for ``config``."""
    if config.use_direct_exec:
        return EphemeralDirectExec(
            external_port=config.external_port, remote_port=config.remote_port
        )
    if config.proxy_port is not None:
        return SimpleRelay(
            local_port=config.local_port,
            remote_port=config.remote_port,
            proxy_port=config.proxy_port,
        )
    return TunnelOnly(local_port=config.local_port, remote_port=config.remote_port)


def tunnel_command(
    kubectl_path: str, namespace: str, service: str, local_port: int, remote_port: int
) -> list[str]:
    """Argument vector for a loopback-only ``kubectl port-forward``."""
    return [
        kubectl_path,
        "port-forward",
        "-n",
        namespace,
        f"svc/{service}",
        f"{local_port}:{remote_port}",
        f"--address={LOOPBACK}",
    ]


def relay_command(socat_path: str, external_port: int, internal_port: int) -> list[str]:
    """Argument vector for a forking socat relay to a loopback port."""
    return [
        socat_path,
        f"TCP-LISTEN:{external_port},fork,reuseaddr",
        f"TCP:{LOOPBACK}:{internal_port}",
    ]


def direct_exec_relay_command(
    socat_path: str, external_port: int, script_path: str | Path
) -> list[str]:
    """Argument vector for a socat listener that runs ``script_path`` per connection."""
    return [
        socat_path,
        f"TCP-LISTEN:{external_port},fork,reuseaddr",
        f"EXEC:{script_path}",
    ]


def wrapper_script_path(connection_id: str, script_dir: str | Path | None = None) -> Path:
    """Location of the wrapper script for one connection.

    Ids outside ``[A-Za-z0-9_.-]`` are sanitised and suffixed with a hash of
    the raw id, so distinct ids never share a script.
    """
    connection_id = validate_non_empty_string(connection_id, "connection_id")
    safe_id = re.sub(r"[^A-Za-z0-9_.-]", "_", connection_id)
    if safe_id != connection_id:
        digest = hashlib.sha256(connection_id.encode()).hexdigest()[:12]
        safe_id = f"{safe_id}+{digest}"
    base = Path(script_dir) if script_dir is not None else Path(tempfile.gettempdir())
    return base / f"{WRAPPER_PREFIX}{safe_id}.sh"


def render_wrapper_script(
    kubectl_path: str,
    socat_path: str,
    namespace: str,
    service: str,
    remote_port: int,
    nc_path: str = "nc",
) -> str:
    """Render the per-connection wrapper script for direct-exec mode.

    The script picks a candidate port from its own PID, walks upward until
    the port is free, starts kubectl there in the background and waits for
    it to accept connections, then pipes stdin/stdout to it through socat.
    The backgrounded kubectl is killed when the script exits.
    """
    kubectl = shlex.quote(kubectl_path)
    socat = shlex.quote(socat_path)
    nc = shlex.quote(nc_path)
    target = shlex.quote(f"svc/{service}")
    ns = shlex.quote(namespace)
    return f"""#!/usr/bin/env bash
PORT=$(({EPHEMERAL_PORT_BASE} + ($$ % {EPHEMERAL_PORT_SPAN})))
while {nc} -z {LOOPBACK} "$PORT" 2>/dev/null; do
    PORT=$((PORT + 1))
done
{kubectl} port-forward -n {ns} {target} "$PORT:{remote_port}" --address={LOOPBACK} >/dev/null 2>&1 &
KPID=$!
trap 'kill "$KPID" 2>/dev/null' EXIT
for _ in $(seq 1 {READY_POLL_ATTEMPTS}); do
    if {nc} -z {LOOPBACK} "$PORT" 2>/dev/null; then break; fi
    sleep {READY_POLL_INTERVAL}
done
{socat} - "TCP:{LOOPBACK}:$PORT"
"""
