"""Turning a browsed service port into a connection config.

Namespace and service listing happen elsewhere; this module only covers the
hand-off from a (namespace, service, port) selection to a ConnectionConfig.
"""

from pydantic import BaseModel, ConfigDict, Field

from .models import ConnectionConfig


class ServiceSelection(BaseModel):
    """A service port chosen while browsing the cluster."""

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    namespace: str = Field(min_length=1)
    service: str = Field(min_length=1)
    remote_port: int = Field(ge=1, le=65535)


def suggest_local_port(remote_port: int) -> int:
    """Pick an unprivileged local port for ``remote_port``."""
    if remote_port == 80:
        return 8080
    if remote_port == 443:
        return 8443
    return remote_port if remote_port > 1024 else remote_port + 8000


def suggest_proxy_port(local_port: int) -> int:
    return local_port - 1


def config_from_selection(
    selection: ServiceSelection, proxy_enabled: bool = True, **overrides: object
) -> ConnectionConfig:
    """Build a ConnectionConfig with suggested ports for ``selection``.

    Args:
        selection: Chosen namespace/service/port
        proxy_enabled: Add a relay on the suggested proxy port
        **overrides: Any ConnectionConfig field to set explicitly

    Returns:
        New connection config
    """
    local_port = suggest_local_port(selection.remote_port)
    fields: dict[str, object] = {
        "name": selection.service,
        "namespace": selection.namespace,
        "service": selection.service,
        "local_port": local_port,
        "remote_port": selection.remote_port,
        "proxy_port": suggest_proxy_port(local_port) if proxy_enabled else None,
    }
    fields.update(overrides)
    return ConnectionConfig.model_validate(fields)
