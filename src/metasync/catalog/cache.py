"""
Catalog cache for metasync.

Entities are cached under ``<scope>:<id>``. Scope lists (for example all
columns of a table) are cached under ``<scope>:list:<sub keys>`` and hold
the keys of their members; each member records the lists it belongs to
under ``<key>:parents`` so deleting a member can drop every list that
would otherwise go stale. Alias keys map a title to an id.

The cache is a performance layer only: readers fall back to the store on
a miss and a failing backend never fails a catalog operation.
"""

import json
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence

import redis.asyncio as redis

from ..config import CacheConfig
from ..exceptions import CacheInconsistencyError, ConfigurationError


logger = logging.getLogger(__name__)


class CacheScope(str, Enum):
    """Cache key scopes."""

    MODEL = "model"
    COLUMN = "column"
    COL_RELATION = "colRelation"
    COL_FORMULA = "colFormula"
    COL_BUTTON = "colButton"
    COL_LOOKUP = "colLookup"
    COL_ROLLUP = "colRollup"
    COL_QRCODE = "colQRCode"
    COL_BARCODE = "colBarcode"
    COL_LONG_TEXT = "colLongText"
    VIEW = "view"
    VIEW_COLUMN = "viewColumn"


class CacheDelDirection(str, Enum):
    """Direction a deep delete walks the parent/child links."""

    CHILD_TO_PARENT = "childToParent"
    PARENT_TO_CHILD = "parentToChild"


def _scope(scope) -> str:
    return scope.value if isinstance(scope, Enum) else scope


def entity_key(scope, entity_id: str) -> str:
    return f"{_scope(scope)}:{entity_id}"


def list_key(scope, sub_keys: Sequence[str]) -> str:
    return f"{_scope(scope)}:list:{':'.join(str(k) for k in sub_keys)}"


def alias_key(scope, alias_parts: Sequence[str]) -> str:
    return f"{_scope(scope)}:alias:{':'.join(str(k) for k in alias_parts)}"


class CacheManager(ABC):
    """Cache semantics on top of a raw string key/value backend."""

    def __init__(self, prefix: str = "nc:meta"):
        self.prefix = prefix

    def _full(self, key: str) -> str:
        return f"{self.prefix}:{key}" if self.prefix else key

    @abstractmethod
    async def _raw_get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    async def _raw_set(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    async def _raw_del(self, keys: List[str]) -> None:
        ...

    @abstractmethod
    async def _raw_keys(self, pattern: str) -> List[str]:
        ...

    async def close(self) -> None:
        return None

    async def get(self, key: str) -> Optional[Any]:
        raw = await self._raw_get(self._full(key))
        return json.loads(raw) if raw is not None else None

    async def set(self, key: str, value: Any) -> None:
        await self._raw_set(self._full(key), json.dumps(value))

    async def update(self, key: str, values: Dict[str, Any]) -> None:
        """Merge values into a cached entity; a missing entry is left missing."""
        current = await self.get(key)
        if current is None:
            return
        current.update(values)
        await self.set(key, current)

    async def delete(self, keys) -> None:
        if isinstance(keys, str):
            keys = [keys]
        if keys:
            await self._raw_del([self._full(k) for k in keys])

    async def _add_parent(self, key: str, parent_key: str) -> None:
        parents = await self.get(f"{key}:parents") or []
        if parent_key not in parents:
            parents.append(parent_key)
            await self.set(f"{key}:parents", parents)

    async def get_list(self, scope, sub_keys: Sequence[str]) -> Optional[List[Any]]:
        """Members of a cached scope list, or None when any part is missing."""
        lkey = list_key(scope, sub_keys)
        member_keys = await self.get(lkey)
        if member_keys is None:
            return None
        items = []
        for key in member_keys:
            item = await self.get(key)
            if item is None:
                # a member vanished without its list being invalidated
                await self.delete(lkey)
                return None
            items.append(item)
        return items

    async def set_list(
        self, scope, sub_keys: Sequence[str], items: Iterable[Dict[str, Any]], key_field: str = "id"
    ) -> None:
        lkey = list_key(scope, sub_keys)
        member_keys = []
        for item in items:
            key = entity_key(scope, item[key_field])
            await self.set(key, item)
            await self._add_parent(key, lkey)
            member_keys.append(key)
        await self.set(lkey, member_keys)

    async def append_to_list(
        self, scope, sub_keys: Sequence[str], item: Dict[str, Any], key_field: str = "id"
    ) -> bool:
        """Add a member to a cached list. Returns False when the list isn't cached."""
        lkey = list_key(scope, sub_keys)
        member_keys = await self.get(lkey)
        if member_keys is None:
            return False
        key = entity_key(scope, item[key_field])
        await self.set(key, item)
        await self._add_parent(key, lkey)
        if key not in member_keys:
            member_keys.append(key)
            await self.set(lkey, member_keys)
        return True

    async def deep_del(self, key: str, direction: CacheDelDirection) -> None:
        """Delete a key together with every cache entry linked to it in one direction."""
        if direction == CacheDelDirection.CHILD_TO_PARENT:
            for parent in await self.get(f"{key}:parents") or []:
                members = await self.get(parent)
                if members is None:
                    continue
                if key in members:
                    members.remove(key)
                    await self.set(parent, members)
            await self.delete([key, f"{key}:parents"])
        elif direction == CacheDelDirection.PARENT_TO_CHILD:
            for child in await self.get(key) or []:
                await self.delete([child, f"{child}:parents"])
            await self.delete(key)
        else:
            raise ValueError(f"Unknown cache delete direction: {direction}")

    async def destroy(self) -> None:
        """Drop every key under this cache's prefix."""
        pattern = f"{self.prefix}:*" if self.prefix else "*"
        keys = await self._raw_keys(pattern)
        if keys:
            await self._raw_del(keys)


class MemoryCacheManager(CacheManager):
    """Dictionary backed cache holding JSON strings."""

    def __init__(self, prefix: str = "nc:meta"):
        super().__init__(prefix)
        self._data: Dict[str, str] = {}

    async def _raw_get(self, key):
        return self._data.get(key)

    async def _raw_set(self, key, value):
        self._data[key] = value

    async def _raw_del(self, keys):
        for key in keys:
            self._data.pop(key, None)

    async def _raw_keys(self, pattern):
        if pattern.endswith("*"):
            start = pattern[:-1]
            return [k for k in self._data if k.startswith(start)]
        return [k for k in self._data if k == pattern]


class RedisCacheManager(CacheManager):
    """Cache shared between processes through Redis."""

    def __init__(self, url: str, prefix: str = "nc:meta", client: Optional[redis.Redis] = None):
        super().__init__(prefix)
        self.url = url
        self.client = client or redis.from_url(url, decode_responses=True)

    async def _raw_get(self, key):
        return await self.client.get(key)

    async def _raw_set(self, key, value):
        await self.client.set(key, value)

    async def _raw_del(self, keys):
        await self.client.delete(*keys)

    async def _raw_keys(self, pattern):
        return [key async for key in self.client.scan_iter(match=pattern)]

    async def close(self) -> None:
        await self.client.aclose()


class CatalogCache:
    """
    Fault tolerant facade used by the catalog store.

    Backend failures are logged as cache inconsistencies and reported as
    misses; with no manager every read is a miss and writes are dropped.
    """

    def __init__(self, manager: Optional[CacheManager] = None):
        self.manager = manager

    @property
    def enabled(self) -> bool:
        return self.manager is not None

    async def _guard(self, operation: str, call, default=None):
        if self.manager is None:
            return default
        try:
            return await call()
        except Exception as e:
            error = CacheInconsistencyError(f"Cache {operation} failed", cause=e)
            logger.warning(str(error))
            return default

    async def get(self, scope, entity_id: str) -> Optional[Dict[str, Any]]:
        return await self._guard("get", lambda: self.manager.get(entity_key(scope, entity_id)))

    async def set(self, scope, entity_id: str, value: Dict[str, Any]) -> None:
        await self._guard("set", lambda: self.manager.set(entity_key(scope, entity_id), value))

    async def update(self, scope, entity_id: str, values: Dict[str, Any]) -> None:
        await self._guard(
            "update", lambda: self.manager.update(entity_key(scope, entity_id), values)
        )

    async def get_list(self, scope, sub_keys: Sequence[str]) -> Optional[List[Dict[str, Any]]]:
        return await self._guard("get_list", lambda: self.manager.get_list(scope, sub_keys))

    async def set_list(self, scope, sub_keys: Sequence[str], items: List[Dict[str, Any]]) -> None:
        await self._guard("set_list", lambda: self.manager.set_list(scope, sub_keys, items))

    async def append_to_list(self, scope, sub_keys: Sequence[str], item: Dict[str, Any]) -> bool:
        return await self._guard(
            "append_to_list",
            lambda: self.manager.append_to_list(scope, sub_keys, item),
            default=False,
        )

    async def invalidate_list(self, scope, sub_keys: Sequence[str]) -> None:
        await self._guard(
            "invalidate_list",
            lambda: self.manager.deep_del(
                list_key(scope, sub_keys), CacheDelDirection.PARENT_TO_CHILD
            ),
        )

    async def deep_del(self, scope, entity_id: str, direction: CacheDelDirection) -> None:
        await self._guard(
            "deep_del", lambda: self.manager.deep_del(entity_key(scope, entity_id), direction)
        )

    async def get_alias(self, scope, alias_parts: Sequence[str]) -> Optional[str]:
        return await self._guard("get_alias", lambda: self.manager.get(alias_key(scope, alias_parts)))

    async def set_alias(self, scope, alias_parts: Sequence[str], entity_id: str) -> None:
        await self._guard(
            "set_alias", lambda: self.manager.set(alias_key(scope, alias_parts), entity_id)
        )

    async def delete_alias(self, scope, alias_parts: Sequence[str]) -> None:
        await self._guard(
            "delete_alias", lambda: self.manager.delete(alias_key(scope, alias_parts))
        )

    async def destroy(self) -> None:
        await self._guard("destroy", lambda: self.manager.destroy())

    async def close(self) -> None:
        await self._guard("close", lambda: self.manager.close())


def create_cache(config: CacheConfig) -> CatalogCache:
    """Build the catalog cache described by configuration."""
    if config.backend == "disabled":
        return CatalogCache(None)
    if config.backend == "memory":
        return CatalogCache(MemoryCacheManager(prefix=config.prefix))
    if config.backend == "redis":
        if not config.url:
            raise ConfigurationError("Cache backend 'redis' requires a url")
        return CatalogCache(RedisCacheManager(config.url, prefix=config.prefix))
    raise ConfigurationError(f"Unknown cache backend '{config.backend}'")
