"""Connection models for port forwarding.

``ConnectionConfig`` is the immutable description of one port-forward pipeline,
supplied by the caller or the discovery adapter. ``ConnectionState`` is the
mutable runtime view the orchestrator keeps for each registered config.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class ConnectionStatus(str, Enum):
    """Status of a tunnel or relay process."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


class ProcessRole(str, Enum):
    """Role of a helper process within a connection."""

    TUNNEL = "tunnel"
    RELAY = "relay"


def _new_connection_id() -> str:
    return uuid.uuid4().hex


class ConnectionConfig(BaseModel):
    """Port-forward connection configuration (immutable)."""

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True, extra="forbid")

    id: str = Field(
        default_factory=_new_connection_id,
        min_length=1,
        description="Stable connection identifier",
    )
    name: str = Field(min_length=1, description="Display name")
    namespace: str = Field(min_length=1, description="Kubernetes namespace")
    service: str = Field(min_length=1, description="Kubernetes service name")
    local_port: int = Field(ge=1, le=65535, description="Local port bound by kubectl")
    remote_port: int = Field(ge=1, le=65535, description="Service-side port")
    proxy_port: int | None = Field(
        default=None, ge=1, le=65535, description="Extra port served by the relay"
    )
    is_enabled: bool = Field(default=True, description="Included in start-all")
    auto_reconnect: bool = Field(
        default=True, description="Restart after unintentional failures"
    )
    use_direct_exec: bool = Field(
        default=False, description="Allocate an ephemeral tunnel port per relay connection"
    )

    @field_validator("namespace", "service")
    @classmethod
    def validate_resource_name(cls, v: str) -> str:
        """Reject names kubectl would split into extra arguments."""
        if any(ch.isspace() for ch in v) or v.startswith("-"):
            raise ValueError("Resource names cannot contain whitespace or start with '-'")
        return v

    @model_validator(mode="after")
    def validate_ports(self) -> "ConnectionConfig":
        if self.proxy_port is not None and self.proxy_port == self.local_port:
            raise ValueError("proxy_port must differ from local_port")
        return self

    @property
    def has_relay(self) -> bool:
        """Whether a relay process is part of this connection."""
        return self.proxy_port is not None or self.use_direct_exec

    @property
    def external_port(self) -> int:
        """Port callers connect to: the relay port if any, else the tunnel port."""
        return self.proxy_port if self.proxy_port is not None else self.local_port

    def same_endpoint(self, other: "ConnectionConfig") -> bool:
        """Check whether two configs describe identical process parameters."""
        fields = (
            "namespace",
            "service",
            "local_port",
            "remote_port",
            "proxy_port",
            "use_direct_exec",
        )
        return all(getattr(self, f) == getattr(other, f) for f in fields)


class ConnectionState(BaseModel):
    """Runtime state of a registered connection (mutable, orchestrator-owned)."""

    model_config = ConfigDict(validate_assignment=True)

    config: ConnectionConfig
    tunnel_status: ConnectionStatus = ConnectionStatus.DISCONNECTED
    relay_status: ConnectionStatus = ConnectionStatus.DISCONNECTED
    last_error: str | None = None
    is_intentionally_stopped: bool = False
    connected_at: datetime | None = None

    @property
    def id(self) -> str:
        return self.config.id

    @property
    def is_fully_connected(self) -> bool:
        """Tunnel connected and, when a relay is configured, relay connected."""
        if self.tunnel_status != ConnectionStatus.CONNECTED:
            return False
        if not self.config.has_relay:
            return True
        return self.relay_status == ConnectionStatus.CONNECTED

    @property
    def is_active(self) -> bool:
        """Whether the connection is connecting or connected."""
        return self.tunnel_status in (
            ConnectionStatus.CONNECTING,
            ConnectionStatus.CONNECTED,
        )

    def update(self, **changes: Any) -> list[str]:
        """Assign only the fields whose value actually changes.

        Returns:
            Names of the fields that were modified
        """
        changed = []
        for name, value in changes.items():
            if getattr(self, name) != value:
                setattr(self, name, value)
                changed.append(name)
        if "tunnel_status" in changed:
            if self.tunnel_status == ConnectionStatus.CONNECTED:
                self.connected_at = datetime.now()
            else:
                self.connected_at = None
        return changed

    def summary(self) -> dict[str, Any]:
        """Serializable snapshot for callers."""
        return {
            "id": self.id,
            "name": self.config.name,
            "namespace": self.config.namespace,
            "service": self.config.service,
            "local_port": self.config.local_port,
            "remote_port": self.config.remote_port,
            "proxy_port": self.config.proxy_port,
            "tunnel_status": self.tunnel_status.value,
            "relay_status": self.relay_status.value,
            "last_error": self.last_error,
            "is_intentionally_stopped": self.is_intentionally_stopped,
            "is_fully_connected": self.is_fully_connected,
            "connected_at": self.connected_at.isoformat() if self.connected_at else None,
        }
