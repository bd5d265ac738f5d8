"""Registry of connection configs and their runtime state."""

import logging

from .exceptions import ConnectionRegistryError
from .models import ConnectionConfig, ConnectionState

logger = logging.getLogger(__name__)


class ConnectionRegistry:
    """In-memory store of ConnectionState objects in registration order."""

    def __init__(self) -> None:
        self._states: dict[str, ConnectionState] = {}

    def add(self, config: ConnectionConfig) -> ConnectionState:
        """Register a config and create its runtime state.

        Raises:
            ConnectionRegistryError: If a connection with the same id exists
        """
        if config.id in self._states:
            raise ConnectionRegistryError(f"Connection with ID '{config.id}' already exists")

        state = ConnectionState(config=config)
        self._states[config.id] = state
        logger.info(f"Registered connection {config.id} ({config.name})")
        return state

    def remove(self, connection_id: str) -> ConnectionState:
        """Remove and return a connection's state.

        Raises:
            ConnectionRegistryError: If not found
        """
        if connection_id not in self._states:
            raise ConnectionRegistryError(f"Connection '{connection_id}' not found")
        state = self._states.pop(connection_id)
        logger.info(f"Removed connection {connection_id}")
        return state

    def get(self, connection_id: str) -> ConnectionState | None:
        return self._states.get(connection_id)

    def require(self, connection_id: str) -> ConnectionState:
        """Get a state or raise ConnectionRegistryError."""
        state = self._states.get(connection_id)
        if state is None:
            raise ConnectionRegistryError(f"Connection '{connection_id}' not found")
        return state

    def replace_config(self, config: ConnectionConfig) -> ConnectionState:
        """Swap in a new config while keeping the runtime state."""
        state = self.require(config.id)
        state.config = config
        return state

    def list(self) -> list[ConnectionState]:
        return list(self._states.values())

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._states

    def __len__(self) -> int:
        return len(self._states)
