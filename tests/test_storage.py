"""Tests for the SQLite ledger store itself."""

import pytest

from finledger.services.storage import SQLiteLedgerStore, StorageError


class TestSQLiteLedgerStore:

    @pytest.mark.parametrize("db_path", [":memory:", "", "   "])
    def test_path_must_be_a_file(self, db_path):
        with pytest.raises(ValueError, match="must point to a file"):
            SQLiteLedgerStore(db_path)

    @pytest.mark.asyncio
    async def test_open_creates_parent_directories(self, tmp_path):
        store = SQLiteLedgerStore(tmp_path / "nested" / "ledger.db")
        await store.open()
        try:
            assert store.is_open
            assert (tmp_path / "nested" / "ledger.db").exists()
        finally:
            await store.close()
        assert not store.is_open

    @pytest.mark.asyncio
    async def test_session_on_closed_store(self, tmp_path):
        store = SQLiteLedgerStore(tmp_path / "ledger.db")

        with pytest.raises(StorageError, match="not open"):
            async with store.session():
                pass
