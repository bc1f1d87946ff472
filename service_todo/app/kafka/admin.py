"""
Kafka topic administration for the Todo Service.
"""

import asyncio

from kafka.admin import KafkaAdminClient, NewTopic
from kafka.errors import TopicAlreadyExistsError

from shared.logging import get_logger
from shared.errors import ConflictError, ExternalServiceError


class KafkaTopicAdmin:
    """Creates topics on demand. Not part of the request path."""

    def __init__(self, bootstrap_servers: str):
        self.bootstrap_servers = bootstrap_servers
        self.logger = get_logger("todo.kafka.admin")

    async def create_topic(self, topic_name: str, num_partitions: int = 1, replication_factor: int = 1):
        """Create ``topic_name``; an existing topic is reported as a conflict."""

        def _create():
            admin = KafkaAdminClient(bootstrap_servers=self.bootstrap_servers)
            try:
                admin.create_topics(
                    [NewTopic(
                        name=topic_name,
                        num_partitions=num_partitions,
                        replication_factor=replication_factor
                    )],
                    validate_only=False
                )
            finally:
                admin.close()

        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, _create)
        except TopicAlreadyExistsError:
            self.logger.warning("Topic already exists", topic=topic_name)
            raise ConflictError("Topic already exists", details={"topic": topic_name})
        except Exception as e:
            self.logger.error("Failed to create topic", topic=topic_name, error=str(e))
            raise ExternalServiceError("kafka", "topic creation failed", details={"topic": topic_name})

        self.logger.info(
            "Topic created",
            topic=topic_name,
            num_partitions=num_partitions,
            replication_factor=replication_factor
        )
