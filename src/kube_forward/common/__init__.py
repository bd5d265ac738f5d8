"""Common utilities and shared functionality."""

from .exceptions import (
    ConfigurationError,
    DependencyMissingError,
    KubeForwardError,
    PortInUseError,
    ProcessError,
    RuntimeErrorLine,
    SpawnError,
    StoreWriteError,
)
from .logging import connection_logger, get_logger, setup_logging
from .utils import (
    MAX_PORT,
    MIN_PORT,
    is_executable_file,
    split_output_lines,
    validate_non_empty_string,
    validate_port,
)

__all__ = [
    # Exceptions
    "KubeForwardError",
    "DependencyMissingError",
    "ProcessError",
    "SpawnError",
    "PortInUseError",
    "RuntimeErrorLine",
    "StoreWriteError",
    "ConfigurationError",
    # Logging
    "get_logger",
    "setup_logging",
    "connection_logger",
    # Utils
    "validate_port",
    "validate_non_empty_string",
    "is_executable_file",
    "split_output_lines",
    "MIN_PORT",
    "MAX_PORT",
]
