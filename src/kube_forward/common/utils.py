"""Utility functions for kube-forward."""

import os
from pathlib import Path

# Port range constants
MIN_PORT = 1
MAX_PORT = 65535


def validate_port(port: int, port_name: str = "Port") -> int:
    """Validate port number range.

    Args:
        port: Port number to validate
        port_name: Name of the port for error messages

    Returns:
        The validated port

    Raises:
        ValueError: If port is not in valid range (1-65535)
    """
    if isinstance(port, bool) or not isinstance(port, int):
        raise ValueError(f"{port_name} must be an integer")
    if not (MIN_PORT <= port <= MAX_PORT):
        raise ValueError(f"{port_name} must be between {MIN_PORT} and {MAX_PORT}")
    return port


def validate_non_empty_string(value: str, field_name: str) -> str:
    """Validate that a string is not empty or only whitespace.

    Args:
        value: String value to validate
        field_name: Name of the field for error messages

    Returns:
        Stripped string value

    Raises:
        ValueError: If string is empty or only whitespace
    """
    if not value or not value.strip():
        raise ValueError(f"{field_name} cannot be empty")
    return value.strip()


def is_executable_file(path: str | None) -> bool:
    """Return True if ``path`` names an existing executable regular file."""
    if not path:
        return False
    candidate = Path(path)
    return candidate.is_file() and os.access(candidate, os.X_OK)


def split_output_lines(buffer: str) -> tuple[list[str], str]:
    """Split buffered process output into complete lines and a trailing remainder.

    Returns:
        Tuple of (complete non-empty lines stripped of whitespace, unterminated tail)
    """
    *complete, remainder = buffer.replace("\r\n", "\n").replace("\r", "\n").split("\n")
    lines = [line.strip() for line in complete if line.strip()]
    return lines, remainder
