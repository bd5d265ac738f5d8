"""Test the in-memory store and the connection registry."""

import pytest

from kube_forward.common.exceptions import StoreWriteError
from kube_forward.forward.exceptions import ConnectionRegistryError
from kube_forward.forward.models import ConnectionStatus
from kube_forward.forward.registry import ConnectionRegistry
from kube_forward.forward.store import InMemoryConnectionStore


class TestInMemoryConnectionStore:
    """Test suite for InMemoryConnectionStore."""

    def test_initial_configs(self, api_config, relay_config):
        store = InMemoryConnectionStore([api_config, relay_config])

        assert store.list_connections() == [api_config, relay_config]
        assert len(store) == 2

    def test_add_update_remove(self, api_config):
        store = InMemoryConnectionStore()

        store.add_connection(api_config)
        renamed = api_config.model_copy(update={"name": "renamed"})
        store.update_connection(renamed)
        assert store.list_connections() == [renamed]

        store.remove_connection("api")
        assert len(store) == 0

    def test_add_duplicate_raises(self, api_config):
        store = InMemoryConnectionStore([api_config])

        with pytest.raises(StoreWriteError, match="already stored"):
            store.add_connection(api_config)

    def test_update_missing_raises(self, api_config):
        with pytest.raises(StoreWriteError, match="not stored"):
            InMemoryConnectionStore().update_connection(api_config)

    def test_remove_missing_raises(self):
        with pytest.raises(StoreWriteError, match="not stored"):
            InMemoryConnectionStore().remove_connection("nope")


class TestConnectionRegistry:
    """Test suite for ConnectionRegistry."""

    def test_registry_creation(self):
        registry = ConnectionRegistry()

        assert len(registry) == 0
        assert registry.list() == []

    def test_add_keeps_insertion_order(self, api_config, relay_config):
        registry = ConnectionRegistry()
        registry.add(relay_config)
        registry.add(api_config)

        assert [state.id for state in registry.list()] == ["db", "api"]
        assert "api" in registry

    def test_add_duplicate_id_raises_error(self, api_config):
        registry = ConnectionRegistry()
        registry.add(api_config)

        with pytest.raises(ConnectionRegistryError, match="already exists"):
            registry.add(api_config)

    def test_remove_nonexistent_raises_error(self):
        with pytest.raises(ConnectionRegistryError, match="not found"):
            ConnectionRegistry().remove("nonexistent")

    def test_get_and_require(self, api_config):
        registry = ConnectionRegistry()
        state = registry.add(api_config)

        assert registry.get("api") is state
        assert registry.require("api") is state
        assert registry.get("missing") is None
        with pytest.raises(ConnectionRegistryError):
            registry.require("missing")

    def test_replace_config_keeps_state(self, api_config):
        registry = ConnectionRegistry()
        state = registry.add(api_config)
        state.update(tunnel_status=ConnectionStatus.CONNECTED)

        registry.replace_config(api_config.model_copy(update={"name": "renamed"}))

        assert registry.get("api").config.name == "renamed"
        assert registry.get("api").tunnel_status == ConnectionStatus.CONNECTED
