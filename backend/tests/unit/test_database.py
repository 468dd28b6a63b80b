"""
Tests for database engine configuration.
"""

import pytest

from app.config.settings import Settings
from app.infrastructure.db.database import DatabaseManager, to_async_url
from app.infrastructure.exceptions import ConfigurationError


class TestAsyncUrl:

    @pytest.mark.parametrize(
        "url,expected",
        [
            ("postgresql://u:p@db:5432/app", "postgresql+asyncpg://u:p@db:5432/app"),
            ("postgres://u:p@db/app", "postgresql+asyncpg://u:p@db/app"),
            ("postgresql+asyncpg://u:p@db/app", "postgresql+asyncpg://u:p@db/app"),
        ],
    )
    def test_driver_is_forced_to_asyncpg(self, url, expected):
        assert to_async_url(url) == expected

    def test_only_the_scheme_is_rewritten(self):
        url = "postgresql://u:p@db/app?options=postgresql://x"
        assert to_async_url(url).endswith("?options=postgresql://x")


class TestDatabaseManager:

    def test_missing_url_fails_on_first_use(self):
        manager = DatabaseManager(Settings(database_url=None))

        assert manager.is_configured is False
        with pytest.raises(ConfigurationError) as exc_info:
            _ = manager.engine

        assert exc_info.value.missing_keys == ["DATABASE_URL"]

    def test_engine_is_built_lazily(self):
        manager = DatabaseManager(Settings(database_url="postgresql://u:p@localhost/app"))

        assert manager.is_configured is True
        assert manager._engine is None

    async def test_close_without_engine_is_a_noop(self):
        manager = DatabaseManager(Settings(database_url=None))

        await manager.close()

        assert manager._engine is None
