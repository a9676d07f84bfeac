"""写事务与数据库初始化测试"""

import pytest
from taskweave.core.store import get_write_lock, open_connection, verify_wal_mode, write_transaction


class TestWriteTransaction:
    async def test_rollback_on_error(self, core_db):
        with pytest.raises(RuntimeError):
            async with write_transaction(core_db):
                await core_db.execute(
                    "INSERT INTO chat_turns (user_id, role, content, timestamp) "
                    "VALUES ('u', 'user', 'lost', 1)"
                )
                raise RuntimeError("abort")

        cursor = await core_db.execute("SELECT COUNT(*) FROM chat_turns")
        assert (await cursor.fetchone())[0] == 0
        assert not get_write_lock(core_db).locked()

    async def test_commit_on_success(self, core_db):
        async with write_transaction(core_db):
            await core_db.execute(
                "INSERT INTO chat_turns (user_id, role, content, timestamp) "
                "VALUES ('u', 'user', 'kept', 1)"
            )
        cursor = await core_db.execute("SELECT content FROM chat_turns")
        assert (await cursor.fetchone())[0] == "kept"

    async def test_lock_per_connection(self, core_db, tmp_path):
        other = await open_connection(str(tmp_path / "other.db"))
        try:
            assert get_write_lock(core_db) is get_write_lock(core_db)
            assert get_write_lock(core_db) is not get_write_lock(other)
        finally:
            await other.close()


class TestInitDb:
    async def test_wal_enabled(self, core_db):
        assert await verify_wal_mode(core_db) is True

    async def test_creates_parent_dirs(self, tmp_path):
        conn = await open_connection(str(tmp_path / "nested" / "dir" / "db.sqlite"))
        try:
            assert (tmp_path / "nested" / "dir" / "db.sqlite").exists()
        finally:
            await conn.close()
