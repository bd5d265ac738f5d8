"""Port-forward connection components."""

from .config import ForwardSettings, HelperBinaries, SettingsSource
from .conflicts import ConflictResolver
from .discovery import (
    ServiceSelection,
    config_from_selection,
    suggest_local_port,
    suggest_proxy_port,
)
from .events import OutputLine, ProcessExited, SupervisorEvent
from .exceptions import ConnectionRegistryError, OrchestratorError
from .interfaces import ConnectionStore, NotificationSink
from .manager import ConnectionOrchestrator
from .models import ConnectionConfig, ConnectionState, ConnectionStatus, ProcessRole
from .notifications import (
    LoggingNotificationSink,
    Notification,
    NotificationKind,
    NotificationQueue,
)
from .output import OutputClassification, OutputKind, classify
from .process import ManagedProcess
from .registry import ConnectionRegistry
from .store import InMemoryConnectionStore
from .strategies import EphemeralDirectExec, LaunchPlan, SimpleRelay, TunnelOnly, plan_for
from .supervisor import ProcessSupervisor

__all__ = [
    "ConnectionOrchestrator",
    "ProcessSupervisor",
    "ManagedProcess",
    "ConflictResolver",
    "ConnectionRegistry",
    "ConnectionConfig",
    "ConnectionState",
    "ConnectionStatus",
    "ProcessRole",
    "ForwardSettings",
    "HelperBinaries",
    "SettingsSource",
    "ConnectionStore",
    "NotificationSink",
    "InMemoryConnectionStore",
    "LoggingNotificationSink",
    "Notification",
    "NotificationKind",
    "NotificationQueue",
    "OutputLine",
    "ProcessExited",
    "SupervisorEvent",
    "OutputClassification",
    "OutputKind",
    "classify",
    "LaunchPlan",
    "TunnelOnly",
    "SimpleRelay",
    "EphemeralDirectExec",
    "plan_for",
    "ServiceSelection",
    "config_from_selection",
    "suggest_local_port",
    "suggest_proxy_port",
    "ConnectionRegistryError",
    "OrchestratorError",
]
