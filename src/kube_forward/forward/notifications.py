"""Connection status notifications."""

from dataclasses import dataclass
from enum import Enum

from ..common.logging import get_logger

logger = get_logger(__name__)


class NotificationKind(str, Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"


@dataclass(frozen=True)
class Notification:
    connection_id: str
    connection_name: str
    kind: NotificationKind

    def render(self) -> tuple[str, str]:
        """Title and body for a notification sink."""
        if self.kind == NotificationKind.CONNECTED:
            return "Port Forward Connected", f"{self.connection_name} is now connected"
        if self.kind == NotificationKind.DISCONNECTED:
            return "Port Forward Disconnected", f"{self.connection_name} disconnected"
        return "Port Forward Error", f"{self.connection_name} encountered an error"


class NotificationQueue:
    """Pending notifications, at most one per connection.

    A newer event for a connection replaces the pending one, so a tick that
    saw error-then-reconnect only reports the latest outcome.
    """

    def __init__(self) -> None:
        self._pending: dict[str, Notification] = {}

    def record(self, connection_id: str, connection_name: str, kind: NotificationKind) -> None:
        self._pending.pop(connection_id, None)
        self._pending[connection_id] = Notification(connection_id, connection_name, kind)

    def discard(self, connection_id: str) -> None:
        self._pending.pop(connection_id, None)

    def drain(self) -> list[Notification]:
        pending = list(self._pending.values())
        self._pending.clear()
        return pending

    def __len__(self) -> int:
        return len(self._pending)


class LoggingNotificationSink:
    """NotificationSink that writes notifications to the log."""

    def notify(self, title: str, body: str) -> None:
        logger.info("Notification", title=title, body=body)
