"""
Per-role credential pool with rotation and a client handle cache.

Each role owns an ordered key list (persisted, comma-separated), a
persisted rotation cursor and an optional in-memory emergency key that is
tried before anything else.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import Any

from lysis.core.types import Role
from lysis.keys.store import KeyValueStore, MemoryStore, index_entry, keys_entry
from lysis.utils.errors import MissingAPIKeyError
from lysis.utils.logging import get_logger, mask_key

logger = get_logger(__name__)

ClientFactory = Callable[[str], Any]


def parse_keys(keys_string: str | None) -> list[str]:
    """Parse a comma-separated key list, trimming blanks."""
    if not keys_string:
        return []
    return [k.strip() for k in keys_string.split(",") if k.strip()]


class KeyPool:
    """
    Credential pool shared by every role-scoped upstream call.

    Only the RetryController rotates keys, between attempts of its own
    retry loop.

    Usage:
        pool = KeyPool(store, client_factory=provider.create_client)
        pool.save_keys(agent="k1,k2", worker1="k3", worker2="k4")
        client = pool.client_for(Role.AGENT)
        pool.rotate(Role.AGENT)
    """

    def __init__(
        self,
        store: KeyValueStore | None = None,
        client_factory: ClientFactory | None = None,
        fallback_keys: Iterable[str] = (),
    ) -> None:
        """
        Initialize the pool.

        Args:
            store: Persistent store for key lists and cursors
            client_factory: Builds a ClientHandle from a credential string
            fallback_keys: Development-only keys used when a role has none
        """
        self._store: KeyValueStore = store if store is not None else MemoryStore()
        self._client_factory: ClientFactory = client_factory or (lambda key: key)
        self._fallback_keys = [k for k in fallback_keys if k]
        self._clients: dict[str, Any] = {}
        self._emergency: dict[Role, str | None] = {role: None for role in Role}
        self._cursors: dict[Role, int] = {role: self._stored_index(role) for role in Role}

    # =========================================================================
    # Persistence
    # =========================================================================

    def _stored_index(self, role: Role) -> int:
        stored = self._store.get(index_entry(role))
        try:
            return int(stored) if stored else 0
        except ValueError:
            return 0

    def _save_index(self, role: Role, index: int) -> None:
        self._store.set(index_entry(role), str(index))
        self._cursors[role] = index

    def configured_keys(self, role: Role | str) -> list[str]:
        """Keys saved for a role, without emergency or fallback keys."""
        return parse_keys(self._store.get(keys_entry(Role(role))))

    # =========================================================================
    # Key Resolution
    # =========================================================================

    def keys_for(self, role: Role | str) -> list[str]:
        """
        Active credential list for a role.

        The emergency key (if set) comes first, then the configured keys in
        order; with nothing configured the fallback set is used.
        """
        role = Role(role)
        keys = self.configured_keys(role)
        emergency = self._emergency[role]
        if emergency:
            return [emergency, *[k for k in keys if k != emergency]]
        if not keys and self._fallback_keys:
            logger.warning("No API keys configured, using fallback keys", role=role.value)
            return list(self._fallback_keys)
        return keys

    def cursor(self, role: Role | str) -> int:
        """Raw rotation cursor (always applied modulo the key count)."""
        return self._cursors[Role(role)]

    def active_key(self, role: Role | str) -> str:
        """Credential at the cursor, or an empty string when none exist."""
        role = Role(role)
        keys = self.keys_for(role)
        if not keys:
            return ""
        return keys[self._cursors[role] % len(keys)]

    def client_for(self, role: Role | str) -> Any:
        """
        Cached ClientHandle for the role's active credential.

        Raises:
            MissingAPIKeyError: If the role has no credential at all
        """
        role = Role(role)
        key = self.active_key(role)
        if not key:
            raise MissingAPIKeyError(role.value)
        if key not in self._clients:
            self._clients[key] = self._client_factory(key)
        return self._clients[key]

    def has_all_keys(self) -> bool:
        """True when every role has at least one configured key."""
        return all(self.configured_keys(role) for role in Role)

    def has_emergency_key(self, role: Role | str) -> bool:
        return bool(self._emergency[Role(role)])

    @property
    def cached_clients(self) -> int:
        return len(self._clients)

    # =========================================================================
    # Mutation
    # =========================================================================

    def rotate(self, role: Role | str) -> bool:
        """
        Advance the role's cursor round-robin.

        Returns:
            False when the role has a single key and cannot rotate
        """
        role = Role(role)
        keys = self.keys_for(role)
        if len(keys) <= 1:
            logger.warning(
                "Only 1 key available, cannot rotate. Add more keys separated by commas.",
                role=role.value,
            )
            return False

        current = self._cursors[role] % len(keys)
        new_index = (current + 1) % len(keys)
        self._save_index(role, new_index)
        logger.warning(
            "Rotating API key",
            role=role.value,
            old=mask_key(keys[current]),
            new=mask_key(keys[new_index]),
        )
        return True

    def prefer_emergency(self, role: Role | str) -> None:
        """Point the cursor at the emergency key, if one is installed."""
        role = Role(role)
        if self._emergency[role] and self._cursors[role] != 0:
            self._save_index(role, 0)

    def save_keys(
        self,
        agent: str | None = None,
        worker1: str | None = None,
        worker2: str | None = None,
    ) -> None:
        """
        Persist comma-separated key lists.

        Every role's cursor is reset to 0 and cached clients are dropped.
        Roles passed as None keep their current list.
        """
        for role, value in ((Role.AGENT, agent), (Role.WORKER1, worker1), (Role.WORKER2, worker2)):
            if value is not None:
                self._store.set(keys_entry(role), value)
        for role in Role:
            self._save_index(role, 0)
        self.invalidate_clients()
        logger.info("API keys updated")

    def set_role_keys(self, role: Role | str, keys: Iterable[str] | str) -> None:
        """Persist one role's key list, resetting only that role's cursor."""
        role = Role(role)
        value = keys if isinstance(keys, str) else ",".join(keys)
        self._store.set(keys_entry(role), value)
        self._save_index(role, 0)
        self.invalidate_clients()
        logger.info("API keys updated", role=role.value, count=len(parse_keys(value)))

    def set_emergency_key(self, role: Role | str, key: str | None) -> None:
        """
        Install (or clear with None) a temporary, never-persisted key.

        The next attempt for the role uses it, regardless of the cursor.
        """
        role = Role(role)
        cleaned = key.strip() if key else None
        self._emergency[role] = cleaned or None
        if cleaned:
            self._save_index(role, 0)
        self.invalidate_clients()
        logger.info("Emergency key updated", role=role.value, state="SET" if cleaned else "CLEARED")

    def clear_emergency_key(self, role: Role | str) -> None:
        self.set_emergency_key(role, None)

    def invalidate_clients(self) -> None:
        """Drop every cached ClientHandle."""
        self._clients.clear()

    def describe(self) -> list[dict[str, Any]]:
        """Masked per-role summary for display."""
        return [
            {
                "role": role.value,
                "configured": len(self.configured_keys(role)),
                "active": mask_key(self.active_key(role)),
                "cursor": self._cursors[role],
                "emergency": self.has_emergency_key(role),
            }
            for role in Role
        ]

    def __repr__(self) -> str:
        return f"KeyPool(store={self._store!r}, cached_clients={len(self._clients)})"
