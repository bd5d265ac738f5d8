"""Events published by the process supervisor."""

from dataclasses import dataclass, field
from datetime import datetime

from ..common.exceptions import KubeForwardError, PortInUseError, RuntimeErrorLine
from .models import ProcessRole
from .output import OutputClassification


@dataclass(frozen=True)
class OutputLine:
    """One classified line of helper output."""

    connection_id: str
    role: ProcessRole
    line: str
    classification: OutputClassification
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def conflict_port(self) -> int | None:
        return self.classification.port if self.classification.is_port_conflict else None

    def as_error(self) -> KubeForwardError | None:
        """The error this line reports, or None for ordinary output."""
        port = self.conflict_port
        if port is not None:
            return PortInUseError(port)
        if self.classification.is_error:
            return RuntimeErrorLine(self.line)
        return None


@dataclass(frozen=True)
class ProcessExited:
    """A helper's output stream reached EOF."""

    connection_id: str
    role: ProcessRole
    returncode: int | None
    timestamp: datetime = field(default_factory=datetime.now)


SupervisorEvent = OutputLine | ProcessExited
