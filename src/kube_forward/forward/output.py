"""Classification of kubectl/socat output lines."""

import re
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from re import Pattern

from ..common.utils import MAX_PORT, MIN_PORT


class OutputKind(str, Enum):
    """Kinds of helper output lines."""

    NORMAL = "normal"
    ERROR = "error"
    PORT_CONFLICT = "port_conflict"


@dataclass(frozen=True)
class OutputClassification:
    """Result of classifying one output line."""

    kind: OutputKind
    port: int | None = None

    @property
    def is_error(self) -> bool:
        """Port conflicts are error lines too."""
        return self.kind != OutputKind.NORMAL

    @property
    def is_port_conflict(self) -> bool:
        return self.kind == OutputKind.PORT_CONFLICT


NORMAL = OutputClassification(OutputKind.NORMAL)
ERROR = OutputClassification(OutputKind.ERROR)


def port_conflict(port: int) -> OutputClassification:
    return OutputClassification(OutputKind.PORT_CONFLICT, port)


_ADDRESS_IN_USE = re.compile(r"address (?:already )?in use", re.IGNORECASE)

# Ordered from most to least specific; the first match wins.
_PORT_PATTERNS: tuple[Pattern[str], ...] = (
    re.compile(r"listen on port (\d{1,5})", re.IGNORECASE),
    re.compile(r"listen tcp[46]? \S*:(\d{1,5})\b", re.IGNORECASE),
    re.compile(
        r"(?:\b\d{1,3}(?:\.\d{1,3}){3}|\[[0-9a-fA-F:]*\]|\blocalhost|\*):(\d{1,5})\b"
    ),
    re.compile(r"\bport (\d{1,5})\b", re.IGNORECASE),
)

_ERROR_PATTERNS: tuple[Pattern[str], ...] = (
    re.compile(r"\berror\b", re.IGNORECASE),
    re.compile(r"\bunable to\b", re.IGNORECASE),
    re.compile(r"\bfailed\b", re.IGNORECASE),
    re.compile(r"\bcouldn't\b|\bcould not\b", re.IGNORECASE),
    re.compile(r"\brefused\b", re.IGNORECASE),
    re.compile(r"\btimed out\b|\btimeout\b", re.IGNORECASE),
    re.compile(r"\blost connection\b", re.IGNORECASE),
    re.compile(r"\bnot found\b", re.IGNORECASE),
    re.compile(r"^E\d{4} "),  # klog error prefix
    re.compile(r"socat\[\d+\] E "),
)


def extract_port(line: str) -> int | None:
    """Extract the most likely port number mentioned in ``line``."""
    for pattern in _PORT_PATTERNS:
        for match in pattern.finditer(line):
            port = int(match.group(1))
            if MIN_PORT <= port <= MAX_PORT:
                return port
    return None


def is_error_line(line: str) -> bool:
    """Check whether ``line`` reports a failure."""
    return any(pattern.search(line) for pattern in _ERROR_PATTERNS)


def detect_port_conflict(line: str) -> int | None:
    """Return the port from an "address already in use" message, if any."""
    if not _ADDRESS_IN_USE.search(line):
        return None
    return extract_port(line)


@lru_cache(maxsize=256)
def classify(line: str) -> OutputClassification:
    """Classify one line of helper output.

    Args:
        line: Raw output line (surrounding whitespace is ignored)

    Returns:
        NORMAL, ERROR, or PORT_CONFLICT carrying the offending port
    """
    text = line.strip()
    if not text:
        return NORMAL

    port = detect_port_conflict(text)
    if port is not None:
        return port_conflict(port)

    if _ADDRESS_IN_USE.search(text) or is_error_line(text):
        return ERROR

    return NORMAL
