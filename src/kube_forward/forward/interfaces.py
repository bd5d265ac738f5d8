"""Protocol interfaces for the orchestrator's external collaborators."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from .models import ConnectionConfig


class ConnectionStore(Protocol):
    """External CRUD store of connection configs, keyed by id."""

    def list_connections(self) -> list[ConnectionConfig]:
        """Return every stored config."""
        ...

    def add_connection(self, config: ConnectionConfig) -> None:
        """Persist a new config."""
        ...

    def update_connection(self, config: ConnectionConfig) -> None:
        """Replace the stored config with the same id."""
        ...

    def remove_connection(self, connection_id: str) -> None:
        """Delete the config with ``connection_id``."""
        ...


class NotificationSink(Protocol):
    """Receives user-facing notifications."""

    def notify(self, title: str, body: str) -> None:
        """Deliver one notification."""
        ...
