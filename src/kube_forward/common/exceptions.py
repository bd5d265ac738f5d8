"""Custom exceptions for kube-forward."""


class KubeForwardError(Exception):
    """Base exception for all kube-forward errors."""
    pass


class DependencyMissingError(KubeForwardError):
    """Raised when a helper binary (kubectl, socat) is unavailable."""
    pass


class ProcessError(KubeForwardError):
    """Raised when helper process operations fail."""
    pass


class SpawnError(ProcessError):
    """Raised when the OS refuses to create a helper process."""
    pass


class PortInUseError(KubeForwardError):
    """Raised when a local port bind fails because the port is taken."""

    def __init__(self, port: int, message: str | None = None):
        self.port = port
        super().__init__(message or f"Port {port} is already in use")


class RuntimeErrorLine(KubeForwardError):
    """Error reported by a helper process on its output stream."""

    def __init__(self, line: str):
        self.line = line
        super().__init__(line)


class StoreWriteError(KubeForwardError):
    """Raised when the external configuration store rejects a write."""
    pass


class ConfigurationError(KubeForwardError):
    """Raised when configuration is invalid."""
    pass
