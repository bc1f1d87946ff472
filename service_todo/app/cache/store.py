"""
Cache-aside data access for groups and todo items.

Reads are served from Redis when possible and fall back to PostgreSQL on a
miss, repopulating the cache. Writes go to PostgreSQL first; only after the
write has committed are the affected cache keys deleted. Group snapshots embed
their items, so item writes also evict the owning group's keys.
"""

from datetime import date, datetime, timezone
from typing import Any, Awaitable, Callable, Iterable, List, Optional, TypeVar, TYPE_CHECKING

from pydantic import TypeAdapter, ValidationError as PydanticValidationError

from shared.logging import get_logger
from shared.errors import (
    ConflictError, NotFoundError, RetrievalError, TodoServiceException, ValidationError
)
from ..models import Group, Item, ItemCreateRequest, ItemUpdateRequest
from .redis_cache import RedisCache

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from ..persistence.postgres import PostgreSQLRepository
    from shared.metrics import MetricsCollector


T = TypeVar("T")

GROUPS_KEY = "groups:all"
ITEMS_KEY = "todos:all"

DEFAULT_COLLECTION_TTL = 300
DEFAULT_ENTITY_TTL = 3600

_GROUP_LIST = TypeAdapter(List[Group])
_GROUP = TypeAdapter(Group)
_ITEM_LIST = TypeAdapter(List[Item])
_ITEM = TypeAdapter(Item)


def group_key(group_id: int) -> str:
    return f"group:{group_id}"


def item_key(item_id: int) -> str:
    return f"todo:{item_id}"


def items_by_date_key(day: date) -> str:
    return f"todos:date:{day.isoformat()}"


def item_day(item: Item) -> date:
    created: datetime = item.created_at
    if created.tzinfo is not None:
        created = created.astimezone(timezone.utc)
    return created.date()


class CacheAsideStore:
    """Groups and items behind a read-through, write-invalidate cache."""

    def __init__(
        self,
        repository: "PostgreSQLRepository",
        cache: RedisCache,
        *,
        collection_ttl: int = DEFAULT_COLLECTION_TTL,
        entity_ttl: int = DEFAULT_ENTITY_TTL,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.repository = repository
        self.cache = cache
        self.collection_ttl = collection_ttl
        self.entity_ttl = entity_ttl
        self.metrics = metrics
        self.logger = get_logger("todo.cache.store")

    # Groups

    async def list_groups(self) -> List[Group]:
        return await self._read(GROUPS_KEY, self.collection_ttl, _GROUP_LIST,
                                self.repository.list_groups, "groups")

    async def get_group(self, group_id: int) -> Group:
        group = await self._read(group_key(group_id), self.entity_ttl, _GROUP,
                                 lambda: self.repository.get_group(group_id), "group")
        if group is None:
            raise NotFoundError("Group not found", details={"group_id": group_id})
        return group

    async def create_group(self, name: str) -> Group:
        existing = await self._query(lambda: self.repository.find_group_by_name(name))
        if existing is not None:
            raise ConflictError("Group with this name already exists", details={"name": name})

        group = await self._mutate(lambda: self.repository.create_group(name))
        await self._invalidate(GROUPS_KEY)
        return group

    async def update_group(self, group_id: int, name: str) -> Group:
        existing = await self._query(lambda: self.repository.find_group_by_name(name))
        if existing is not None and existing.id != group_id:
            raise ConflictError("Group with this name already exists", details={"name": name})

        group = await self._mutate(lambda: self.repository.update_group_name(group_id, name))
        if group is None:
            raise NotFoundError("Group not found", details={"group_id": group_id})

        await self._invalidate(GROUPS_KEY, group_key(group_id))
        return group

    async def delete_group(self, group_id: int) -> Group:
        """Delete a group and its items; returns the deleted snapshot."""
        group = await self._mutate(lambda: self.repository.delete_group(group_id))
        if group is None:
            raise NotFoundError("Group not found", details={"group_id": group_id})

        keys = [GROUPS_KEY, group_key(group_id), ITEMS_KEY]
        for item in group.todos:
            keys.append(item_key(item.id))
            keys.append(items_by_date_key(item_day(item)))
        await self._invalidate(*keys)
        return group

    # Items

    async def list_items(self) -> List[Item]:
        return await self._read(ITEMS_KEY, self.collection_ttl, _ITEM_LIST,
                                self.repository.list_items, "todos")

    async def get_item(self, item_id: int) -> Item:
        item = await self._read(item_key(item_id), self.entity_ttl, _ITEM,
                                lambda: self.repository.get_item(item_id), "todo")
        if item is None:
            raise NotFoundError("ToDo not found", details={"todo_id": item_id})
        return item

    async def list_items_by_date(self, day: date) -> List[Item]:
        return await self._read(items_by_date_key(day), self.collection_ttl, _ITEM_LIST,
                                lambda: self.repository.list_items_by_date(day), "todos_by_date")

    async def create_item(self, request: ItemCreateRequest) -> Item:
        await self._require_group(request.group_id)

        item = await self._mutate(
            lambda: self.repository.create_item(request.title, request.status, request.group_id)
        )
        await self._invalidate(*self._item_keys(item))
        return item

    async def update_item(self, item_id: int, request: ItemUpdateRequest) -> Item:
        existing = await self._query(lambda: self.repository.get_item(item_id))
        if existing is None:
            raise NotFoundError("ToDo not found", details={"todo_id": item_id})

        changes = request.model_dump(exclude_unset=True, exclude_none=True)
        if "group_id" in changes and changes["group_id"] != existing.group_id:
            await self._require_group(changes["group_id"])

        updated = existing.model_copy(update=changes)
        saved = await self._mutate(lambda: self.repository.save_item(updated))
        if saved is None:
            raise NotFoundError("ToDo not found", details={"todo_id": item_id})

        await self._invalidate(*self._item_keys(saved), group_key(existing.group_id))
        return saved

    async def delete_item(self, item_id: int) -> Item:
        item = await self._mutate(lambda: self.repository.delete_item(item_id))
        if item is None:
            raise NotFoundError("ToDo not found", details={"todo_id": item_id})

        await self._invalidate(*self._item_keys(item))
        return item

    # Internals

    async def _require_group(self, group_id: int):
        group = await self._query(lambda: self.repository.get_group(group_id))
        if group is None:
            raise ValidationError("GroupID does not exist", details={"group_id": group_id})

    @staticmethod
    def _item_keys(item: Item) -> List[str]:
        return [
            ITEMS_KEY,
            item_key(item.id),
            items_by_date_key(item_day(item)),
            GROUPS_KEY,
            group_key(item.group_id),
        ]

    async def _read(
        self,
        key: str,
        ttl: int,
        adapter: TypeAdapter,
        loader: Callable[[], Awaitable[Optional[T]]],
        cache_type: str,
    ) -> Optional[T]:
        """Cache-aside read. Cache backend errors propagate as CacheUnavailableError."""
        cached = await self.cache.get(key)
        if cached is not None:
            try:
                value = adapter.validate_json(cached)
            except PydanticValidationError as e:
                self.logger.warning("Discarding undecodable cache entry", key=key, error=str(e))
            else:
                if self.metrics:
                    self.metrics.record_cache_hit(cache_type)
                return value

        if self.metrics:
            self.metrics.record_cache_miss(cache_type)

        value = await self._query(loader)
        if value is None:
            return None

        try:
            await self.cache.set(key, adapter.dump_json(value).decode("utf-8"), ttl)
        except TodoServiceException as e:
            self.logger.warning("Failed to populate cache", key=key, error=e.message)
        return value

    async def _query(self, loader: Callable[[], Awaitable[Any]]) -> Any:
        try:
            return await loader()
        except TodoServiceException:
            raise
        except Exception as e:
            self.logger.error("Source of truth query failed", error=str(e))
            raise RetrievalError() from e

    async def _mutate(self, mutation: Callable[[], Awaitable[Any]]) -> Any:
        try:
            return await mutation()
        except TodoServiceException:
            raise
        except Exception as e:
            self.logger.error("Source of truth mutation failed", error=str(e))
            raise RetrievalError("Failed to store data") from e

    async def _invalidate(self, *keys: str):
        """Evict ``keys`` after a committed write; failures never undo the write."""
        unique_keys: Iterable[str] = list(dict.fromkeys(keys))
        try:
            await self.cache.delete(*unique_keys)
        except Exception as e:
            if self.metrics:
                self.metrics.record_invalidation_failure()
            self.logger.error("Cache invalidation failed", keys=list(unique_keys), error=str(e))
