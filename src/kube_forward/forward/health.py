"""Loopback port reachability checks."""

import asyncio

from ..common.utils import validate_port
from .strategies import LOOPBACK


async def is_port_open(port: int, host: str = LOOPBACK, timeout: float = 0.5) -> bool:
    """Check if ``host:port`` accepts TCP connections.

    Args:
        port: Port to probe
        host: Host to probe (loopback by default)
        timeout: Connect timeout in seconds

    Returns:
        True if a connection could be established
    """
    try:
        _, writer = await asyncio.wait_for(
            asyncio.open_connection(host, validate_port(port)), timeout=timeout
        )
    except (TimeoutError, OSError):
        return False

    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        pass
    return True
