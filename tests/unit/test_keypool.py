"""
Unit tests for KeyPool and the key stores.

Tests credential handling including:
- Key list parsing
- Emergency key precedence
- Round-robin rotation and cursor persistence
- Client handle caching and invalidation
- Fallback keys
- JSON file persistence
"""

import json
from unittest.mock import MagicMock

import pytest

from lysis.core.types import Role
from lysis.keys.pool import KeyPool, parse_keys
from lysis.keys.store import JsonFileStore, MemoryStore, index_entry, keys_entry
from lysis.utils.errors import MissingAPIKeyError
from lysis.utils.logging import mask_key

# =============================================================================
# Parsing
# =============================================================================


class TestParseKeys:
    """Test comma-separated key parsing."""

    def test_trims_and_drops_blanks(self) -> None:
        assert parse_keys(" a, ,b ,") == ["a", "b"]

    def test_empty_inputs(self) -> None:
        assert parse_keys(None) == []
        assert parse_keys("") == []
        assert parse_keys(" , ") == []


# =============================================================================
# Resolution
# =============================================================================


class TestResolution:
    """Test which key a role uses."""

    def test_keys_in_configured_order(self, key_pool: KeyPool) -> None:
        assert key_pool.keys_for(Role.AGENT) == ["agent-1", "agent-2"]
        assert key_pool.active_key("agent") == "agent-1"

    def test_emergency_key_comes_first(self, key_pool: KeyPool) -> None:
        key_pool.set_emergency_key(Role.AGENT, "  emergency  ")

        assert key_pool.keys_for(Role.AGENT) == ["emergency", "agent-1", "agent-2"]
        assert key_pool.active_key(Role.AGENT) == "emergency"
        assert key_pool.client_for(Role.AGENT) == "emergency"
        assert key_pool.has_emergency_key(Role.AGENT)

    def test_emergency_key_not_duplicated(self, key_pool: KeyPool) -> None:
        key_pool.set_emergency_key(Role.AGENT, "agent-2")
        assert key_pool.keys_for(Role.AGENT) == ["agent-2", "agent-1"]

    def test_emergency_key_never_persisted(self, key_pool: KeyPool, memory_store: MemoryStore) -> None:
        key_pool.set_emergency_key(Role.WORKER1, "secret")
        assert "secret" not in (memory_store.get(keys_entry(Role.WORKER1)) or "")

    def test_clear_emergency_key(self, key_pool: KeyPool) -> None:
        key_pool.set_emergency_key(Role.WORKER2, "tmp")
        key_pool.clear_emergency_key(Role.WORKER2)

        assert not key_pool.has_emergency_key(Role.WORKER2)
        assert key_pool.keys_for(Role.WORKER2) == ["worker2-1"]

    def test_missing_key_raises(self) -> None:
        pool = KeyPool(MemoryStore())
        with pytest.raises(MissingAPIKeyError):
            pool.client_for(Role.WORKER1)
        assert pool.active_key(Role.WORKER1) == ""

    def test_fallback_keys_when_unconfigured(self) -> None:
        pool = KeyPool(MemoryStore(), fallback_keys=["dev-1", "dev-2"])

        assert pool.keys_for(Role.WORKER2) == ["dev-1", "dev-2"]
        assert not pool.has_all_keys()

    def test_configured_keys_override_fallback(self, memory_store: MemoryStore) -> None:
        pool = KeyPool(memory_store, fallback_keys=["dev-1"])
        pool.save_keys(agent="real")
        assert pool.keys_for(Role.AGENT) == ["real"]

    def test_has_all_keys(self, key_pool: KeyPool) -> None:
        assert key_pool.has_all_keys()
        key_pool.save_keys(worker2="")
        assert not key_pool.has_all_keys()


# =============================================================================
# Rotation
# =============================================================================


class TestRotation:
    """Test cursor rotation."""

    def test_round_robin(self, memory_store: MemoryStore) -> None:
        pool = KeyPool(memory_store)
        pool.save_keys(agent="k1,k2,k3")

        seen = []
        for _ in range(4):
            assert pool.rotate(Role.AGENT)
            seen.append(pool.active_key(Role.AGENT))

        assert seen == ["k2", "k3", "k1", "k2"]
        assert memory_store.get(index_entry(Role.AGENT)) == "1"

    def test_single_key_cannot_rotate(self, key_pool: KeyPool) -> None:
        assert key_pool.rotate(Role.WORKER1) is False
        assert key_pool.cursor(Role.WORKER1) == 0

    def test_cursor_restored_from_store(self) -> None:
        store = MemoryStore({keys_entry(Role.AGENT): "k1,k2,k3", index_entry(Role.AGENT): "2"})
        pool = KeyPool(store)

        assert pool.cursor(Role.AGENT) == 2
        assert pool.active_key(Role.AGENT) == "k3"

    def test_corrupt_cursor_defaults_to_zero(self) -> None:
        store = MemoryStore({index_entry(Role.AGENT): "not-a-number"})
        assert KeyPool(store).cursor(Role.AGENT) == 0

    def test_cursor_applied_modulo_key_count(self) -> None:
        store = MemoryStore({keys_entry(Role.AGENT): "k1,k2", index_entry(Role.AGENT): "5"})
        assert KeyPool(store).active_key(Role.AGENT) == "k2"

    def test_set_emergency_key_resets_cursor(self, key_pool: KeyPool) -> None:
        key_pool.rotate(Role.AGENT)
        key_pool.set_emergency_key(Role.AGENT, "E")
        assert key_pool.cursor(Role.AGENT) == 0

    def test_prefer_emergency(self, key_pool: KeyPool) -> None:
        key_pool.set_emergency_key(Role.AGENT, "E")
        key_pool.rotate(Role.AGENT)
        assert key_pool.active_key(Role.AGENT) == "agent-1"

        key_pool.prefer_emergency(Role.AGENT)
        assert key_pool.active_key(Role.AGENT) == "E"


# =============================================================================
# Client Cache
# =============================================================================


class TestClientCache:
    """Test ClientHandle caching."""

    def test_one_client_per_key(self, memory_store: MemoryStore) -> None:
        factory = MagicMock(side_effect=lambda key: f"client:{key}")
        pool = KeyPool(memory_store, client_factory=factory)
        pool.save_keys(agent="k1,k2")

        assert pool.client_for(Role.AGENT) == "client:k1"
        assert pool.client_for(Role.AGENT) == "client:k1"
        assert factory.call_count == 1

        pool.rotate(Role.AGENT)
        assert pool.client_for(Role.AGENT) == "client:k2"
        assert pool.cached_clients == 2

    def test_save_keys_resets_cursors_and_cache(self, memory_store: MemoryStore) -> None:
        factory = MagicMock(side_effect=lambda key: f"client:{key}")
        pool = KeyPool(memory_store, client_factory=factory)
        pool.save_keys(agent="k1,k2", worker1="w1,w2")
        pool.rotate(Role.AGENT)
        pool.rotate(Role.WORKER1)
        pool.client_for(Role.AGENT)

        pool.save_keys(agent="k3,k4")

        assert pool.cached_clients == 0
        assert all(pool.cursor(role) == 0 for role in Role)
        assert pool.active_key(Role.AGENT) == "k3"
        assert pool.keys_for(Role.WORKER1) == ["w1", "w2"]

    def test_set_role_keys_resets_only_that_role(self, key_pool: KeyPool) -> None:
        key_pool.save_keys(worker1="a,b")
        key_pool.rotate(Role.AGENT)
        key_pool.rotate(Role.WORKER1)

        key_pool.set_role_keys(Role.WORKER1, ["x", "y"])

        assert key_pool.cursor(Role.WORKER1) == 0
        assert key_pool.cursor(Role.AGENT) == 1
        assert key_pool.keys_for(Role.WORKER1) == ["x", "y"]

    def test_describe_masks_keys(self, key_pool: KeyPool) -> None:
        rows = {row["role"]: row for row in key_pool.describe()}

        assert rows["agent"]["configured"] == 2
        assert rows["agent"]["active"] == mask_key("agent-1")
        assert "agent-1" != rows["agent"]["active"]


# =============================================================================
# Stores
# =============================================================================


class TestJsonFileStore:
    """Test the JSON-backed key store."""

    def test_persists_between_instances(self, tmp_path) -> None:
        path = tmp_path / "nested" / "keys.json"
        store = JsonFileStore(path)
        store.set("lysis_agent_api_key", "k1,k2")

        reloaded = JsonFileStore(path)
        assert reloaded.get("lysis_agent_api_key") == "k1,k2"
        assert json.loads(path.read_text())["lysis_agent_api_key"] == "k1,k2"

    def test_pool_over_file_store(self, tmp_path) -> None:
        path = tmp_path / "keys.json"
        pool = KeyPool(JsonFileStore(path))
        pool.save_keys(agent="k1,k2", worker1="w1", worker2="w2")
        pool.rotate(Role.AGENT)

        restored = KeyPool(JsonFileStore(path))
        assert restored.has_all_keys()
        assert restored.active_key(Role.AGENT) == "k2"

    def test_unreadable_file_starts_empty(self, tmp_path) -> None:
        path = tmp_path / "keys.json"
        path.write_text("{not json")

        assert JsonFileStore(path).get("anything") is None

    def test_missing_file(self, tmp_path) -> None:
        store = JsonFileStore(tmp_path / "absent.json")
        assert store.get("lysis_agent_api_key") is None
        assert not (tmp_path / "absent.json").exists()
