"""Tests for build_store backend selection."""

from unittest.mock import MagicMock

import pytest

from config.settings import Settings
from src.am_auction.infrastructure.factory import build_store
from src.am_auction.infrastructure.memory_store import MemoryAuctionStore
from src.am_auction.infrastructure.redis_store import RedisAuctionStore
from src.am_auction.infrastructure.rest_store import RestAuctionStore
from src.am_common.errors import StoreUnconfiguredError


def _settings(**kwargs) -> Settings:
    fields = {"REDIS_URL": None, "REST_STORE_URL": None}
    fields.update(kwargs)
    return Settings(**fields)


class TestBuildStore:
    def test_memory(self) -> None:
        assert isinstance(build_store(_settings(STORE_BACKEND="memory")), MemoryAuctionStore)

    def test_backend_name_is_case_insensitive(self) -> None:
        assert isinstance(build_store(_settings(STORE_BACKEND="Memory")), MemoryAuctionStore)

    @pytest.mark.asyncio
    async def test_rest(self) -> None:
        store = build_store(
            _settings(STORE_BACKEND="rest", REST_STORE_URL="http://postgrest.local")
        )
        assert isinstance(store, RestAuctionStore)
        await store.close()

    def test_rest_without_url(self) -> None:
        with pytest.raises(StoreUnconfiguredError):
            build_store(_settings(STORE_BACKEND="rest"))

    def test_redis(self) -> None:
        store = build_store(_settings(STORE_BACKEND="redis"), redis=MagicMock())
        assert isinstance(store, RedisAuctionStore)

    def test_redis_without_client(self) -> None:
        with pytest.raises(StoreUnconfiguredError):
            build_store(_settings(STORE_BACKEND="redis"))

    def test_unknown_backend(self) -> None:
        with pytest.raises(StoreUnconfiguredError) as exc:
            build_store(_settings(STORE_BACKEND="mongo"))
        assert "mongo" in exc.value.message
