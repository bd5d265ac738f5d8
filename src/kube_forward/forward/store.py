"""In-memory connection store."""

import threading

from ..common.exceptions import StoreWriteError
from ..common.logging import get_logger
from .models import ConnectionConfig

logger = get_logger(__name__)


class InMemoryConnectionStore:
    """Thread-safe ConnectionStore kept entirely in memory.

    Writes may arrive from worker threads, so every access takes a lock.
    """

    def __init__(self, configs: list[ConnectionConfig] | None = None):
        self._lock = threading.Lock()
        self._configs: dict[str, ConnectionConfig] = {}
        for config in configs or []:
            self._configs[config.id] = config

    def list_connections(self) -> list[ConnectionConfig]:
        with self._lock:
            return list(self._configs.values())

    def add_connection(self, config: ConnectionConfig) -> None:
        with self._lock:
            if config.id in self._configs:
                raise StoreWriteError(f"Connection '{config.id}' already stored")
            self._configs[config.id] = config
        logger.debug("Stored connection", connection_id=config.id)

    def update_connection(self, config: ConnectionConfig) -> None:
        with self._lock:
            if config.id not in self._configs:
                raise StoreWriteError(f"Connection '{config.id}' not stored")
            self._configs[config.id] = config

    def remove_connection(self, connection_id: str) -> None:
        with self._lock:
            if self._configs.pop(connection_id, None) is None:
                raise StoreWriteError(f"Connection '{connection_id}' not stored")

    def __len__(self) -> int:
        with self._lock:
            return len(self._configs)
