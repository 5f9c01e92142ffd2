"""Persistence backends for OAuth clients, codes and tokens.

Every backend exposes the same three keyed operations:

    insert(table, row)                 -> stored row
    find_one(table, **filters)         -> row or None
    update_where(table, values, **filters) -> number of rows changed

update_where is a conditional update: it changes only rows matching every
filter and reports how many it changed, so callers can use it as a
compare-and-set (e.g. flip used=False -> True exactly once).
"""

import copy
import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Optional

from supabase import create_client, Client as SupabaseClient

from oauth.errors import StoreError
from oauth.models import ACCESS_TOKENS_TABLE, AUTH_CODES_TABLE, CLIENTS_TABLE, USERS_TABLE

logger = logging.getLogger(__name__)

# Unique key per table
PRIMARY_KEYS = {
    CLIENTS_TABLE: "client_id",
    AUTH_CODES_TABLE: "code",
    ACCESS_TOKENS_TABLE: "token",
    USERS_TABLE: "id",
}


class Store(ABC):
    """Keyed CRUD with a conditional update primitive."""

    @abstractmethod
    def insert(self, table: str, row: dict) -> dict:
        ...

    @abstractmethod
    def find_one(self, table: str, **filters: Any) -> Optional[dict]:
        ...

    @abstractmethod
    def update_where(self, table: str, values: dict, **filters: Any) -> int:
        ...


class MemoryStore(Store):
    """Process-local store guarded by a single lock.

    Used for tests and single-process local runs. Rows are copied on the
    way in and out so callers never share mutable state with the store.
    """

    def __init__(self):
        self._tables: dict[str, list[dict]] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _matches(row: dict, filters: dict) -> bool:
        return all(row.get(key) == value for key, value in filters.items())

    def insert(self, table: str, row: dict) -> dict:
        key = PRIMARY_KEYS.get(table)
        with self._lock:
            rows = self._tables.setdefault(table, [])
            if key and any(r.get(key) == row.get(key) for r in rows):
                raise StoreError(f"Duplicate {key} in {table}")
            stored = copy.deepcopy(row)
            rows.append(stored)
            return copy.deepcopy(stored)

    def find_one(self, table: str, **filters: Any) -> Optional[dict]:
        with self._lock:
            for row in self._tables.get(table, []):
                if self._matches(row, filters):
                    return copy.deepcopy(row)
        return None

    def update_where(self, table: str, values: dict, **filters: Any) -> int:
        changed = 0
        with self._lock:
            for row in self._tables.get(table, []):
                if self._matches(row, filters):
                    row.update(values)
                    changed += 1
        return changed

    def count(self, table: str) -> int:
        with self._lock:
            return len(self._tables.get(table, []))


def _filter_value(value: Any) -> Any:
    # PostgREST filters are strings; keep booleans in Postgres spelling.
    if isinstance(value, bool):
        return "true" if value else "false"
    return value


class SupabaseStore(Store):
    """Store backed by Supabase (PostgREST) tables.

    update_where issues one PATCH filtered on every condition, so the
    database applies the check and the write atomically; the rows it
    returns tell the caller whether its condition still held.
    """

    def __init__(self, client: SupabaseClient):
        self._client = client

    def insert(self, table: str, row: dict) -> dict:
        try:
            response = self._client.table(table).insert(row).execute()
        except Exception as e:
            logger.error(f"[STORE] Insert into {table} failed: {e}")
            raise StoreError(f"Insert into {table} failed") from e
        return response.data[0] if response.data else row

    def find_one(self, table: str, **filters: Any) -> Optional[dict]:
        try:
            query = self._client.table(table).select("*")
            for key, value in filters.items():
                query = query.eq(key, _filter_value(value))
            response = query.limit(1).execute()
        except Exception as e:
            logger.error(f"[STORE] Lookup in {table} failed: {e}")
            raise StoreError(f"Lookup in {table} failed") from e
        return response.data[0] if response.data else None

    def update_where(self, table: str, values: dict, **filters: Any) -> int:
        try:
            query = self._client.table(table).update(values)
            for key, value in filters.items():
                query = query.eq(key, _filter_value(value))
            response = query.execute()
        except Exception as e:
            logger.error(f"[STORE] Update of {table} failed: {e}")
            raise StoreError(f"Update of {table} failed") from e
        return len(response.data or [])


def create_store(config) -> Store:
    """Build the store selected by config.store_backend.

    The memory backend is seeded with any clients and users listed in the
    config file so a local server can run the full flow.
    """
    backend = config.store_backend

    if backend == "supabase":
        if not (config.supabase_url and config.supabase_key):
            raise ValueError("STORE_BACKEND=supabase requires SUPABASE_URL and SUPABASE_SERVICE_KEY")
        logger.info("[STORE] Using Supabase store")
        return SupabaseStore(create_client(config.supabase_url, config.supabase_key))

    if backend != "memory":
        raise ValueError(f"Unknown store backend: {backend}")

    store = MemoryStore()
    for row in config.seed_clients:
        store.insert(CLIENTS_TABLE, row)
    for row in config.seed_users:
        store.insert(USERS_TABLE, row)
    logger.info(
        f"[STORE] Using memory store ({len(config.seed_clients)} clients, "
        f"{len(config.seed_users)} users seeded)"
    )
    return store
