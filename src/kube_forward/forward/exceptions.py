"""Custom exceptions for connection management."""

from ..common.exceptions import KubeForwardError


class ConnectionRegistryError(KubeForwardError):
    """Exception raised for connection registry operations."""

    pass


class OrchestratorError(KubeForwardError):
    """Exception raised for orchestrator operations."""

    pass
