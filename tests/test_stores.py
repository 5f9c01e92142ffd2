"""Tests for oauth/stores.py."""
from unittest.mock import MagicMock, patch

import pytest

from config import Config
from oauth.errors import StoreError
from oauth.models import AUTH_CODES_TABLE, CLIENTS_TABLE, USERS_TABLE
from oauth.stores import MemoryStore, SupabaseStore, create_store


# ---------------------------------------------------------------------------
# MemoryStore
# ---------------------------------------------------------------------------

class TestMemoryStore:
    def test_insert_and_find(self):
        store = MemoryStore()
        store.insert(AUTH_CODES_TABLE, {"code": "c1", "client_id": "abc", "used": False})
        assert store.find_one(AUTH_CODES_TABLE, code="c1")["client_id"] == "abc"

    def test_find_requires_every_filter(self):
        store = MemoryStore()
        store.insert(AUTH_CODES_TABLE, {"code": "c1", "client_id": "abc", "used": False})
        assert store.find_one(AUTH_CODES_TABLE, code="c1", client_id="other") is None

    def test_find_unknown_table(self):
        assert MemoryStore().find_one("nope", id=1) is None

    def test_duplicate_key_rejected(self):
        store = MemoryStore()
        store.insert(CLIENTS_TABLE, {"client_id": "abc"})
        with pytest.raises(StoreError, match="Duplicate"):
            store.insert(CLIENTS_TABLE, {"client_id": "abc"})

    def test_rows_are_copies(self):
        store = MemoryStore()
        row = {"code": "c1", "used": False}
        store.insert(AUTH_CODES_TABLE, row)
        row["used"] = True
        found = store.find_one(AUTH_CODES_TABLE, code="c1")
        found["used"] = True
        assert store.find_one(AUTH_CODES_TABLE, code="c1")["used"] is False

    def test_conditional_update_applies_once(self):
        store = MemoryStore()
        store.insert(AUTH_CODES_TABLE, {"code": "c1", "used": False})
        assert store.update_where(AUTH_CODES_TABLE, {"used": True}, code="c1", used=False) == 1
        assert store.update_where(AUTH_CODES_TABLE, {"used": True}, code="c1", used=False) == 0
        assert store.find_one(AUTH_CODES_TABLE, code="c1")["used"] is True

    def test_count(self):
        store = MemoryStore()
        assert store.count(AUTH_CODES_TABLE) == 0
        store.insert(AUTH_CODES_TABLE, {"code": "c1"})
        assert store.count(AUTH_CODES_TABLE) == 1


# ---------------------------------------------------------------------------
# SupabaseStore
# ---------------------------------------------------------------------------

class TestSupabaseStore:
    def test_insert_returns_stored_row(self):
        client = MagicMock()
        client.table.return_value.insert.return_value.execute.return_value = MagicMock(
            data=[{"code": "c1", "id": 10}]
        )
        store = SupabaseStore(client)

        assert store.insert(AUTH_CODES_TABLE, {"code": "c1"}) == {"code": "c1", "id": 10}
        client.table.assert_called_with(AUTH_CODES_TABLE)

    def test_find_one_filters_and_limits(self):
        client = MagicMock()
        select = client.table.return_value.select.return_value
        select.eq.return_value.limit.return_value.execute.return_value = MagicMock(data=[{"client_id": "abc"}])
        store = SupabaseStore(client)

        assert store.find_one(CLIENTS_TABLE, client_id="abc") == {"client_id": "abc"}
        select.eq.assert_called_once_with("client_id", "abc")
        select.eq.return_value.limit.assert_called_once_with(1)

    def test_find_one_none_when_empty(self):
        client = MagicMock()
        select = client.table.return_value.select.return_value
        select.eq.return_value.limit.return_value.execute.return_value = MagicMock(data=[])
        assert SupabaseStore(client).find_one(CLIENTS_TABLE, client_id="abc") is None

    def test_update_where_counts_returned_rows(self):
        client = MagicMock()
        update = client.table.return_value.update.return_value
        update.eq.return_value.eq.return_value.execute.return_value = MagicMock(data=[{"code": "c1"}])
        store = SupabaseStore(client)

        assert store.update_where(AUTH_CODES_TABLE, {"used": True}, code="c1", used=False) == 1
        client.table.return_value.update.assert_called_once_with({"used": True})
        update.eq.assert_called_once_with("code", "c1")
        update.eq.return_value.eq.assert_called_once_with("used", "false")

    def test_update_where_lost_race(self):
        client = MagicMock()
        update = client.table.return_value.update.return_value
        update.eq.return_value.execute.return_value = MagicMock(data=[])
        assert SupabaseStore(client).update_where(AUTH_CODES_TABLE, {"used": True}, code="c1") == 0

    def test_backend_failure_wrapped(self):
        client = MagicMock()
        client.table.return_value.insert.return_value.execute.side_effect = RuntimeError("boom")
        with pytest.raises(StoreError):
            SupabaseStore(client).insert(AUTH_CODES_TABLE, {"code": "c1"})


# ---------------------------------------------------------------------------
# create_store
# ---------------------------------------------------------------------------

class TestCreateStore:
    def test_memory_store_seeded(self):
        config = Config({
            "clients": [{"client_id": "abc", "client_secret": "s", "name": "A", "redirect_uri": "https://a/cb"}],
            "users": [{"id": 7, "email": "u@example.com"}],
        })
        store = create_store(config)
        assert isinstance(store, MemoryStore)
        assert store.find_one(CLIENTS_TABLE, client_id="abc") is not None
        assert store.find_one(USERS_TABLE, id=7)["email"] == "u@example.com"

    def test_supabase_requires_credentials(self):
        with pytest.raises(ValueError, match="SUPABASE_URL"):
            create_store(Config({"store_backend": "supabase"}))

    def test_supabase_store_built(self):
        config = Config({
            "store_backend": "supabase",
            "supabase_url": "https://x.supabase.co",
            "supabase_key": "service-key",
        })
        with patch("oauth.stores.create_client") as create_client:
            store = create_store(config)
        assert isinstance(store, SupabaseStore)
        create_client.assert_called_once_with("https://x.supabase.co", "service-key")

    def test_unknown_backend(self):
        with pytest.raises(ValueError, match="Unknown store backend"):
            create_store(Config({"store_backend": "mongo"}))
