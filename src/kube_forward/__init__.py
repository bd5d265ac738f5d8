"""kube-forward - Supervised kubectl port-forward connections with socat relays."""

from . import forward  # For test access to forward components

# Common utilities
from .common.exceptions import (
    ConfigurationError,
    DependencyMissingError,
    KubeForwardError,
    PortInUseError,
    ProcessError,
    RuntimeErrorLine,
    SpawnError,
    StoreWriteError,
)
from .common.logging import get_logger, setup_logging
from .common.utils import validate_non_empty_string, validate_port

# Connection management
from .forward import (
    ConflictResolver,
    ConnectionConfig,
    ConnectionOrchestrator,
    ConnectionRegistryError,
    ConnectionState,
    ConnectionStatus,
    ConnectionStore,
    ForwardSettings,
    HelperBinaries,
    InMemoryConnectionStore,
    NotificationSink,
    ProcessRole,
    ProcessSupervisor,
    ServiceSelection,
    config_from_selection,
)

# Setup logging on package initialization
setup_logging()

# Package level logger
logger = get_logger(__name__)

__version__ = "0.1.0"


__all__ = [
    # Orchestration
    "ConnectionOrchestrator",
    "ProcessSupervisor",
    "ConflictResolver",
    # Models and settings
    "ConnectionConfig",
    "ConnectionState",
    "ConnectionStatus",
    "ProcessRole",
    "ForwardSettings",
    "HelperBinaries",
    # Collaborators
    "ConnectionStore",
    "NotificationSink",
    "InMemoryConnectionStore",
    # Discovery hand-off
    "ServiceSelection",
    "config_from_selection",
    # Exceptions
    "KubeForwardError",
    "DependencyMissingError",
    "ProcessError",
    "SpawnError",
    "PortInUseError",
    "RuntimeErrorLine",
    "StoreWriteError",
    "ConfigurationError",
    "ConnectionRegistryError",
    # Utilities
    "get_logger",
    "setup_logging",
    "validate_port",
    "validate_non_empty_string",
    "forward",
]
