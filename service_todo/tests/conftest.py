"""
Shared fixtures for Todo service tests: in-memory stand-ins for PostgreSQL and Redis.
"""

from datetime import date, datetime, timezone
from typing import Dict, List, Optional

import pytest

from shared.errors import CacheUnavailableError
from service_todo.app.models import Group, Item


class InMemoryRepository:
    """Dict-backed repository mirroring PostgreSQLRepository's interface."""

    def __init__(self):
        self.groups: Dict[int, Group] = {}
        self.items: Dict[int, Item] = {}
        self._next_group_id = 1
        self._next_item_id = 1
        self.calls: Dict[str, int] = {}
        self.healthy = True
        self.fail_with: Optional[Exception] = None

    def _track(self, name: str):
        self.calls[name] = self.calls.get(name, 0) + 1
        if self.fail_with is not None:
            raise self.fail_with

    def _with_items(self, group: Group) -> Group:
        todos = [item for item in self.items.values() if item.group_id == group.id]
        return group.model_copy(update={"todos": sorted(todos, key=lambda i: i.id)})

    async def start(self):
        pass

    async def stop(self):
        pass

    async def health_check(self) -> bool:
        return self.healthy

    async def list_groups(self) -> List[Group]:
        self._track("list_groups")
        return [self._with_items(g) for g in self.groups.values()]

    async def get_group(self, group_id: int) -> Optional[Group]:
        self._track("get_group")
        group = self.groups.get(group_id)
        return self._with_items(group) if group else None

    async def find_group_by_name(self, name: str) -> Optional[Group]:
        self._track("find_group_by_name")
        for group in self.groups.values():
            if group.name == name:
                return group
        return None

    async def create_group(self, name: str) -> Group:
        self._track("create_group")
        group = Group(id=self._next_group_id, name=name, created_at=datetime.now(timezone.utc))
        self.groups[group.id] = group
        self._next_group_id += 1
        return group

    async def update_group_name(self, group_id: int, name: str) -> Optional[Group]:
        self._track("update_group_name")
        if group_id not in self.groups:
            return None
        self.groups[group_id] = self.groups[group_id].model_copy(update={"name": name})
        return self._with_items(self.groups[group_id])

    async def delete_group(self, group_id: int) -> Optional[Group]:
        self._track("delete_group")
        group = self.groups.pop(group_id, None)
        if group is None:
            return None
        todos = [item for item in self.items.values() if item.group_id == group_id]
        for item in todos:
            del self.items[item.id]
        return group.model_copy(update={"todos": todos})

    async def list_items(self) -> List[Item]:
        self._track("list_items")
        return list(self.items.values())

    async def get_item(self, item_id: int) -> Optional[Item]:
        self._track("get_item")
        return self.items.get(item_id)

    async def list_items_by_date(self, day: date) -> List[Item]:
        self._track("list_items_by_date")
        return [i for i in self.items.values() if i.created_at.astimezone(timezone.utc).date() == day]

    async def create_item(self, title: str, status: str, group_id: int) -> Item:
        self._track("create_item")
        item = Item(
            id=self._next_item_id,
            title=title,
            status=status,
            group_id=group_id,
            created_at=datetime.now(timezone.utc)
        )
        self.items[item.id] = item
        self._next_item_id += 1
        return item

    async def save_item(self, item: Item) -> Optional[Item]:
        self._track("save_item")
        if item.id not in self.items:
            return None
        self.items[item.id] = item
        return item

    async def delete_item(self, item_id: int) -> Optional[Item]:
        self._track("delete_item")
        return self.items.pop(item_id, None)


class InMemoryCache:
    """Dict-backed cache mirroring RedisCache's interface, with failure switches."""

    def __init__(self):
        self.data: Dict[str, str] = {}
        self.ttls: Dict[str, int] = {}
        self.fail_get = False
        self.fail_set = False
        self.fail_delete = False
        self.healthy = True

    async def start(self):
        pass

    async def stop(self):
        pass

    async def health_check(self) -> bool:
        return self.healthy

    async def get(self, key: str) -> Optional[str]:
        if self.fail_get:
            raise CacheUnavailableError(details={"operation": "get"})
        return self.data.get(key)

    async def set(self, key: str, value: str, ttl_seconds: int):
        if self.fail_set:
            raise CacheUnavailableError(details={"operation": "set"})
        self.data[key] = value
        self.ttls[key] = ttl_seconds

    async def delete(self, *keys: str) -> int:
        if self.fail_delete:
            raise CacheUnavailableError(details={"operation": "delete"})
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
        return removed


@pytest.fixture
def repository():
    """In-memory repository."""
    return InMemoryRepository()


@pytest.fixture
def cache():
    """In-memory cache."""
    return InMemoryCache()
