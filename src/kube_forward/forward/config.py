"""Runtime settings and helper binary configuration."""

from collections.abc import Callable

from pydantic import BaseModel, ConfigDict, Field

from ..common.exceptions import DependencyMissingError
from ..common.utils import is_executable_file


class ForwardSettings(BaseModel):
    """Settings the orchestrator reads on every monitor tick."""

    model_config = ConfigDict(validate_assignment=True, extra="forbid")

    auto_start: bool = Field(default=False, description="Start enabled connections on launch")
    show_notifications: bool = Field(default=True, description="Emit status notifications")
    refresh_interval: float = Field(
        default=3.0, ge=0.1, le=300.0, description="Monitor tick interval in seconds"
    )
    recent_error_window: float = Field(
        default=10.0, ge=0.0, le=600.0, description="Seconds an output error stays relevant"
    )
    conflict_grace_period: float = Field(
        default=0.3, ge=0.0, le=10.0, description="Wait between SIGTERM and SIGKILL"
    )
    probe_timeout: float = Field(
        default=0.5, gt=0.0, le=10.0, description="Timeout for loopback port probes"
    )


SettingsSource = ForwardSettings | Callable[[], ForwardSettings]


class HelperBinaries(BaseModel):
    """Validated filesystem paths to the helper binaries.

    Locating the binaries is the caller's job; this model only checks that the
    paths it was given are usable.
    """

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True, extra="forbid")

    kubectl_path: str | None = Field(default=None, description="Path to kubectl")
    socat_path: str | None = Field(default=None, description="Path to socat")

    def require_kubectl(self) -> str:
        """Return the kubectl path or raise DependencyMissingError."""
        if not is_executable_file(self.kubectl_path):
            raise DependencyMissingError(
                f"kubectl not available at {self.kubectl_path!r}"
                if self.kubectl_path
                else "kubectl not found"
            )
        return str(self.kubectl_path)

    def require_socat(self) -> str:
        """Return the socat path or raise DependencyMissingError."""
        if not is_executable_file(self.socat_path):
            raise DependencyMissingError(
                f"socat not available at {self.socat_path!r}"
                if self.socat_path
                else "socat not found"
            )
        return str(self.socat_path)
