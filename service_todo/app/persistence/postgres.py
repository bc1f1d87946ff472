"""
PostgreSQL repository for groups and their todo items.
"""

from typing import Dict, List, Optional
from datetime import date, datetime, timezone

import asyncpg

from shared.logging import get_logger
from shared.errors import ConflictError, ExternalServiceError, ValidationError
from ..models import Group, Item


class PostgreSQLRepository:
    """Source of truth for groups and items."""

    def __init__(self, dsn: str):
        self.dsn = dsn
        self.logger = get_logger("todo.persistence.postgres")
        self.pool: Optional[asyncpg.Pool] = None

    async def start(self):
        """Open the connection pool and make sure the schema exists."""
        try:
            self.pool = await asyncpg.create_pool(
                self.dsn,
                min_size=2,
                max_size=10,
                command_timeout=30
            )

            await self._create_tables()

            self.logger.info("PostgreSQL repository started")

        except Exception as e:
            self.logger.error("Failed to start PostgreSQL repository", error=str(e))
            raise ExternalServiceError("postgres", "repository start failed", details={"error": str(e)})

    async def stop(self):
        """Close the connection pool."""
        if self.pool:
            await self.pool.close()
            self.pool = None
            self.logger.info("PostgreSQL repository stopped")

    async def _create_tables(self):
        """Create database tables."""
        async with self.pool.acquire() as conn:
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS groups (
                    id SERIAL PRIMARY KEY,
                    name VARCHAR(255) NOT NULL UNIQUE,
                    created_at TIMESTAMP WITH TIME ZONE NOT NULL
                );
            """)
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS items (
                    id SERIAL PRIMARY KEY,
                    title VARCHAR(255) NOT NULL,
                    status VARCHAR(64) NOT NULL DEFAULT 'pending',
                    group_id INTEGER NOT NULL REFERENCES groups(id) ON DELETE CASCADE,
                    created_at TIMESTAMP WITH TIME ZONE NOT NULL
                );
            """)
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_items_group ON items(group_id);
            """)
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_items_created_at ON items(created_at);
            """)

    # Groups

    async def list_groups(self) -> List[Group]:
        """All groups with their items, ordered by id."""
        async with self.pool.acquire() as conn:
            group_rows = await conn.fetch("SELECT * FROM groups ORDER BY id")
            item_rows = await conn.fetch("SELECT * FROM items ORDER BY id")

        items_by_group: Dict[int, List[Item]] = {}
        for row in item_rows:
            item = self._row_to_item(row)
            items_by_group.setdefault(item.group_id, []).append(item)

        return [
            self._row_to_group(row, items_by_group.get(row["id"], []))
            for row in group_rows
        ]

    async def get_group(self, group_id: int) -> Optional[Group]:
        """One group with its items."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM groups WHERE id = $1", group_id)
            if not row:
                return None
            item_rows = await conn.fetch(
                "SELECT * FROM items WHERE group_id = $1 ORDER BY id", group_id
            )
        return self._row_to_group(row, [self._row_to_item(r) for r in item_rows])

    async def find_group_by_name(self, name: str) -> Optional[Group]:
        """Group with ``name``, without its items."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM groups WHERE name = $1", name)
        return self._row_to_group(row, []) if row else None

    async def create_group(self, name: str) -> Group:
        created_at = datetime.now(timezone.utc)
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    "INSERT INTO groups (name, created_at) VALUES ($1, $2) RETURNING *",
                    name, created_at
                )
        except asyncpg.UniqueViolationError:
            raise ConflictError("Group with this name already exists", details={"name": name})

        self.logger.info("Group created", group_id=row["id"], name=name)
        return self._row_to_group(row, [])

    async def update_group_name(self, group_id: int, name: str) -> Optional[Group]:
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    "UPDATE groups SET name = $2 WHERE id = $1 RETURNING id",
                    group_id, name
                )
        except asyncpg.UniqueViolationError:
            raise ConflictError("Group with this name already exists", details={"name": name})

        if not row:
            return None
        self.logger.info("Group renamed", group_id=group_id, name=name)
        return await self.get_group(group_id)

    async def delete_group(self, group_id: int) -> Optional[Group]:
        """Delete a group and all of its items in one transaction.

        Returns the deleted group carrying the items removed with it.
        """
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                exists = await conn.fetchval(
                    "SELECT id FROM groups WHERE id = $1 FOR UPDATE", group_id
                )
                if exists is None:
                    return None
                item_rows = await conn.fetch(
                    "DELETE FROM items WHERE group_id = $1 RETURNING *", group_id
                )
                row = await conn.fetchrow(
                    "DELETE FROM groups WHERE id = $1 RETURNING *", group_id
                )

        self.logger.info("Group deleted", group_id=group_id, items_deleted=len(item_rows))
        return self._row_to_group(row, [self._row_to_item(r) for r in item_rows])

    # Items

    async def list_items(self) -> List[Item]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch("SELECT * FROM items ORDER BY id")
        return [self._row_to_item(r) for r in rows]

    async def get_item(self, item_id: int) -> Optional[Item]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM items WHERE id = $1", item_id)
        return self._row_to_item(row) if row else None

    async def list_items_by_date(self, day: date) -> List[Item]:
        """Items created on ``day`` (UTC)."""
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                "SELECT * FROM items WHERE (created_at AT TIME ZONE 'UTC')::date = $1 ORDER BY id",
                day
            )
        return [self._row_to_item(r) for r in rows]

    async def create_item(self, title: str, status: str, group_id: int) -> Item:
        created_at = datetime.now(timezone.utc)
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    """
                    INSERT INTO items (title, status, group_id, created_at)
                    VALUES ($1, $2, $3, $4) RETURNING *
                    """,
                    title, status, group_id, created_at
                )
        except asyncpg.ForeignKeyViolationError:
            raise ValidationError("GroupID does not exist", details={"group_id": group_id})

        self.logger.info("Item created", item_id=row["id"], group_id=group_id)
        return self._row_to_item(row)

    async def save_item(self, item: Item) -> Optional[Item]:
        """Persist every mutable field of ``item``."""
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    """
                    UPDATE items SET title = $2, status = $3, group_id = $4
                    WHERE id = $1 RETURNING *
                    """,
                    item.id, item.title, item.status, item.group_id
                )
        except asyncpg.ForeignKeyViolationError:
            raise ValidationError("GroupID does not exist", details={"group_id": item.group_id})

        return self._row_to_item(row) if row else None

    async def delete_item(self, item_id: int) -> Optional[Item]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("DELETE FROM items WHERE id = $1 RETURNING *", item_id)
        return self._row_to_item(row) if row else None

    async def health_check(self) -> bool:
        """Check PostgreSQL health."""
        if self.pool is None:
            return False
        try:
            async with self.pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
            return True
        except Exception:
            return False

    @staticmethod
    def _row_to_group(row, items: List[Item]) -> Group:
        return Group(id=row["id"], name=row["name"], created_at=row["created_at"], todos=items)

    @staticmethod
    def _row_to_item(row) -> Item:
        return Item(
            id=row["id"],
            title=row["title"],
            status=row["status"],
            group_id=row["group_id"],
            created_at=row["created_at"]
        )
