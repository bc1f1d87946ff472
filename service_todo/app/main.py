"""
Todo service: groups and todo items behind Kafka token verification.
"""

from datetime import date
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends

from shared.base_service import BaseService
from shared.config import ServiceConfig
from shared.retry import RetryConfig

from .cache.redis_cache import RedisCache
from .cache.store import CacheAsideStore
from .kafka.admin import KafkaTopicAdmin
from .kafka.consumer import KafkaConsumerManager
from .kafka.producer import KafkaProducerManager
from .models import (
    Group, GroupCreateRequest, GroupUpdateRequest, Item, ItemCreateRequest,
    ItemUpdateRequest, TopicCreateRequest
)
from .persistence.postgres import PostgreSQLRepository
from .verification import RequestGate, ResponseListener, VerificationCorrelator


API_PREFIX = "/api/v1"


class TodoService(BaseService):
    """Todo service implementation.

    Collaborators are built from configuration unless passed in explicitly.
    """

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        *,
        repository: Optional[PostgreSQLRepository] = None,
        cache: Optional[RedisCache] = None,
        producer: Optional[KafkaProducerManager] = None,
        consumer: Optional[KafkaConsumerManager] = None,
        topic_admin: Optional[KafkaTopicAdmin] = None,
        correlator: Optional[VerificationCorrelator] = None,
    ):
        super().__init__("todo", 8081, api_prefix=API_PREFIX, config=config)

        self.repository = repository or PostgreSQLRepository(self.config.postgres_dsn)
        self.cache = cache or RedisCache(self.config.redis_url)
        self.producer = producer or KafkaProducerManager(self.config.kafka_bootstrap)
        self.consumer = consumer or KafkaConsumerManager(
            self.config.kafka_bootstrap,
            self.config.verification_consumer_group
        )
        self.topic_admin = topic_admin or KafkaTopicAdmin(self.config.kafka_bootstrap)

        self.correlator = correlator or VerificationCorrelator(
            self.producer,
            self.config.verification_request_topic,
            timeout=self.config.verification_timeout_seconds,
            metrics=self.metrics
        )
        self.listener = ResponseListener(
            self.consumer,
            self.correlator,
            self.config.verification_response_topic,
            retry_config=RetryConfig(
                max_attempts=self.config.verification_subscribe_attempts,
                base_delay=self.config.verification_retry_base_delay,
                max_delay=self.config.verification_retry_max_delay
            )
        )
        self.gate = RequestGate(self.correlator)
        self.store = CacheAsideStore(
            self.repository,
            self.cache,
            collection_ttl=self.config.collection_cache_ttl,
            entity_ttl=self.config.entity_cache_ttl,
            metrics=self.metrics
        )

        @self.app.on_event("startup")
        async def _startup():
            await self.start()

        @self.app.on_event("shutdown")
        async def _shutdown():
            await self.stop()

        self._setup_admin_routes()
        self._setup_todo_routes()
        self.app.state.todo_service = self

    def _setup_admin_routes(self):
        """Administrative routes; these bypass the gate and the cache."""

        @self.app.post(f"{API_PREFIX}/createTopic", status_code=201)
        async def create_topic(request: TopicCreateRequest):
            """Create a Kafka topic."""
            await self.topic_admin.create_topic(
                request.topic_name,
                num_partitions=request.num_partitions,
                replication_factor=request.replication_factor
            )
            return {"success": "New topic created", "topic": request.topic_name}

    def _setup_todo_routes(self):
        """Group and todo routes, all behind the request gate."""
        router = APIRouter(prefix=API_PREFIX, dependencies=[Depends(self.gate)])

        @router.get("/groups", response_model=List[Group], tags=["groups"])
        async def get_groups():
            """Retrieve all groups with their todos."""
            return await self.store.list_groups()

        @router.get("/groups/{group_id}", response_model=Group, tags=["groups"])
        async def get_group(group_id: int):
            """Retrieve a group by ID."""
            return await self.store.get_group(group_id)

        @router.post("/groups", response_model=Group, status_code=201, tags=["groups"])
        async def create_group(request: GroupCreateRequest):
            """Create a new group with a unique name."""
            return await self.store.create_group(request.name)

        @router.put("/groups/{group_id}", response_model=Group, tags=["groups"])
        async def update_group(group_id: int, request: GroupUpdateRequest):
            """Rename a group."""
            return await self.store.update_group(group_id, request.name)

        @router.delete("/groups/{group_id}", tags=["groups"])
        async def delete_group(group_id: int):
            """Delete a group and all of its todos."""
            group = await self.store.delete_group(group_id)
            return {
                "message": "Group and associated ToDos deleted",
                "group_id": group.id,
                "todos_deleted": len(group.todos)
            }

        @router.get("/todos", response_model=List[Item], tags=["todos"])
        async def get_todos():
            """Retrieve all todos."""
            return await self.store.list_items()

        @router.get("/todos/date/{day}", response_model=List[Item], tags=["todos"])
        async def get_todos_by_date(day: date):
            """Retrieve todos created on a date (YYYY-MM-DD, UTC)."""
            return await self.store.list_items_by_date(day)

        @router.get("/todos/{todo_id}", response_model=Item, tags=["todos"])
        async def get_todo(todo_id: int):
            """Retrieve a todo by ID."""
            return await self.store.get_item(todo_id)

        @router.post("/todos", response_model=Item, status_code=201, tags=["todos"])
        async def create_todo(request: ItemCreateRequest):
            """Create a todo in an existing group."""
            return await self.store.create_item(request)

        @router.put("/todos/{todo_id}", response_model=Item, tags=["todos"])
        async def update_todo(todo_id: int, request: ItemUpdateRequest):
            """Update a todo's title, status or group."""
            return await self.store.update_item(todo_id, request)

        @router.delete("/todos/{todo_id}", tags=["todos"])
        async def delete_todo(todo_id: int):
            """Delete a todo."""
            await self.store.delete_item(todo_id)
            return {"message": "ToDo deleted", "todo_id": todo_id}

        self.app.include_router(router)

    async def _check_dependencies(self) -> Dict[str, str]:
        """Check todo service dependencies."""
        checks = {
            "database": await self.repository.health_check(),
            "redis": await self.cache.health_check(),
            "kafka": self.producer.health_check(),
            "verification_listener": self.listener.is_healthy(),
        }
        return {name: "up" if ok else "down" for name, ok in checks.items()}

    async def start(self):
        """Start components; readiness waits for the verification subscription."""
        await self.repository.start()
        await self.cache.start()
        await self.producer.start()
        await self.listener.start()

        self.logger.info(
            "Todo service started",
            request_topic=self.config.verification_request_topic,
            response_topic=self.config.verification_response_topic
        )

    async def stop(self):
        """Stop todo service components."""
        await self.listener.stop()
        self.correlator.cancel_all()
        await self.producer.stop()
        await self.cache.stop()
        await self.repository.stop()

        self.logger.info("Todo service stopped")


def create_app():
    """Create todo service application."""
    service = TodoService()
    return service.app


if __name__ == "__main__":
    service = TodoService()
    service.run()
