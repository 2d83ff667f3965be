"""
Tests for metasync.catalog.cache module.
"""

import json
from unittest.mock import AsyncMock

import pytest

from metasync.catalog.cache import (
    CacheDelDirection,
    CacheScope,
    CatalogCache,
    MemoryCacheManager,
    RedisCacheManager,
    alias_key,
    create_cache,
    entity_key,
    list_key,
)
from metasync.config import CacheConfig
from metasync.exceptions import ConfigurationError


class TestKeys:
    def test_key_shapes(self):
        assert entity_key(CacheScope.COLUMN, "cl_1") == "column:cl_1"
        assert list_key(CacheScope.MODEL, ["base1", "all"]) == "model:list:base1:all"
        assert alias_key(CacheScope.MODEL, ["base1", "Users"]) == "model:alias:base1:Users"


class TestMemoryCacheManager:
    """Test cache semantics on the in-memory backend."""

    @pytest.fixture
    def manager(self):
        return MemoryCacheManager(prefix="t")

    @pytest.mark.asyncio
    async def test_get_set_update(self, manager):
        await manager.set("column:1", {"title": "a", "order": 1})
        await manager.update("column:1", {"title": "b"})
        assert await manager.get("column:1") == {"title": "b", "order": 1}

        # missing entries stay missing
        await manager.update("column:2", {"title": "x"})
        assert await manager.get("column:2") is None

    @pytest.mark.asyncio
    async def test_values_are_copies(self, manager):
        value = {"meta": {"a": 1}}
        await manager.set("column:1", value)
        value["meta"]["a"] = 2
        assert (await manager.get("column:1"))["meta"]["a"] == 1

    @pytest.mark.asyncio
    async def test_list_round_trip(self, manager):
        await manager.set_list(CacheScope.COLUMN, ["md_1"], [{"id": "1"}, {"id": "2"}])

        assert await manager.get_list(CacheScope.COLUMN, ["md_1"]) == [{"id": "1"}, {"id": "2"}]
        assert await manager.get("column:1:parents") == ["column:list:md_1"]

    @pytest.mark.asyncio
    async def test_list_miss_when_member_vanishes(self, manager):
        await manager.set_list(CacheScope.COLUMN, ["md_1"], [{"id": "1"}, {"id": "2"}])
        await manager.delete("column:2")

        assert await manager.get_list(CacheScope.COLUMN, ["md_1"]) is None
        assert await manager.get("column:list:md_1") is None

    @pytest.mark.asyncio
    async def test_append_to_list(self, manager):
        assert await manager.append_to_list(CacheScope.COLUMN, ["md_1"], {"id": "1"}) is False
        assert await manager.get("column:1") is None

        await manager.set_list(CacheScope.COLUMN, ["md_1"], [])
        assert await manager.append_to_list(CacheScope.COLUMN, ["md_1"], {"id": "1"}) is True
        assert await manager.get_list(CacheScope.COLUMN, ["md_1"]) == [{"id": "1"}]

    @pytest.mark.asyncio
    async def test_deep_del_child_to_parent(self, manager):
        await manager.set_list(CacheScope.MODEL, ["b", "all"], [{"id": "1"}, {"id": "2"}])
        await manager.set_list(CacheScope.MODEL, ["b", "s1"], [{"id": "1"}])

        await manager.deep_del("model:1", CacheDelDirection.CHILD_TO_PARENT)

        assert await manager.get("model:1") is None
        assert await manager.get_list(CacheScope.MODEL, ["b", "all"]) == [{"id": "2"}]
        assert await manager.get_list(CacheScope.MODEL, ["b", "s1"]) == []

    @pytest.mark.asyncio
    async def test_deep_del_parent_to_child(self, manager):
        await manager.set_list(CacheScope.VIEW, ["md_1"], [{"id": "1"}, {"id": "2"}])

        await manager.deep_del("view:list:md_1", CacheDelDirection.PARENT_TO_CHILD)

        assert await manager.get("view:list:md_1") is None
        assert await manager.get("view:1") is None
        assert await manager.get("view:2:parents") is None

    @pytest.mark.asyncio
    async def test_destroy_only_touches_prefix(self, manager):
        await manager.set("column:1", {"id": "1"})
        manager._data["other:column:1"] = "{}"

        await manager.destroy()

        assert list(manager._data) == ["other:column:1"]


class TestRedisCacheManager:
    """Test the Redis backend against a mocked client."""

    @pytest.mark.asyncio
    async def test_prefixed_json_values(self, mock_redis_client):
        manager = RedisCacheManager("redis://localhost", prefix="nc", client=mock_redis_client)

        await manager.set("column:1", {"id": "1"})
        mock_redis_client.set.assert_awaited_once_with("nc:column:1", json.dumps({"id": "1"}))

        mock_redis_client.get.return_value = json.dumps({"id": "1"})
        assert await manager.get("column:1") == {"id": "1"}
        mock_redis_client.get.assert_awaited_with("nc:column:1")

        await manager.close()
        mock_redis_client.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_destroy_scans_prefix(self, mock_redis_client):
        async def scan_iter(match):
            for key in ("nc:a", "nc:b"):
                yield key

        mock_redis_client.scan_iter = scan_iter
        manager = RedisCacheManager("redis://localhost", prefix="nc", client=mock_redis_client)

        await manager.destroy()

        mock_redis_client.delete.assert_awaited_once_with("nc:a", "nc:b")


class TestCatalogCache:
    """Test the fault tolerant facade."""

    @pytest.mark.asyncio
    async def test_disabled_cache_always_misses(self):
        cache = CatalogCache(None)
        assert not cache.enabled

        await cache.set(CacheScope.MODEL, "1", {"id": "1"})
        assert await cache.get(CacheScope.MODEL, "1") is None
        assert await cache.get_list(CacheScope.MODEL, ["b"]) is None
        assert await cache.append_to_list(CacheScope.MODEL, ["b"], {"id": "1"}) is False

    @pytest.mark.asyncio
    async def test_backend_failure_is_a_miss(self, caplog):
        manager = MemoryCacheManager()
        manager._raw_get = AsyncMock(side_effect=ConnectionError("redis down"))
        cache = CatalogCache(manager)

        assert await cache.get(CacheScope.MODEL, "1") is None
        assert "Cache get failed" in caplog.text

    @pytest.mark.asyncio
    async def test_alias_round_trip(self, cache):
        await cache.set_alias(CacheScope.MODEL, ["base1", "Users"], "md_1")
        assert await cache.get_alias(CacheScope.MODEL, ["base1", "Users"]) == "md_1"

        await cache.delete_alias(CacheScope.MODEL, ["base1", "Users"])
        assert await cache.get_alias(CacheScope.MODEL, ["base1", "Users"]) is None

    @pytest.mark.asyncio
    async def test_invalidate_list(self, cache):
        await cache.set_list(CacheScope.COLUMN, ["md_1"], [{"id": "1"}])
        await cache.invalidate_list(CacheScope.COLUMN, ["md_1"])
        assert await cache.get_list(CacheScope.COLUMN, ["md_1"]) is None


class TestCreateCache:
    def test_backends(self):
        assert not create_cache(CacheConfig(backend="disabled")).enabled
        assert isinstance(create_cache(CacheConfig()).manager, MemoryCacheManager)
        redis_cache = create_cache(CacheConfig(backend="redis", url="redis://localhost:6379/0"))
        assert isinstance(redis_cache.manager, RedisCacheManager)

    def test_redis_requires_url(self):
        with pytest.raises(ConfigurationError):
            create_cache(CacheConfig(backend="redis"))
