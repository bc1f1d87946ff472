"""
Kafka consumer-group subscriber for the Todo Service.
"""

import asyncio
from typing import Dict, Optional, Callable, Awaitable, List, Sequence
from dataclasses import dataclass
import kafka

from shared.logging import get_logger
from shared.errors import ExternalServiceError


@dataclass
class KafkaMessage:
    """Kafka message wrapper."""
    topic: str
    partition: int
    offset: int
    key: Optional[bytes]
    value: bytes
    timestamp: Optional[int]
    headers: Optional[Dict[str, bytes]]


# Returns True to mark the message consumed, False to leave it for redelivery
MessageHandler = Callable[[KafkaMessage], Awaitable[bool]]


class KafkaConsumerManager:
    """Consumer-group subscriber with explicit, per-message acknowledgment.

    Messages are handed to the handler in partition order. A message is only
    committed once the handler marks it; the first unmarked message of a
    partition rewinds the consumer to its offset so it is polled again.
    """

    def __init__(self, bootstrap_servers: str, group_id: str, poll_timeout_ms: int = 1000):
        self.bootstrap_servers = bootstrap_servers
        self.group_id = group_id
        self.poll_timeout_ms = poll_timeout_ms
        self.logger = get_logger("todo.kafka.consumer")
        self.consumer: Optional[kafka.KafkaConsumer] = None
        self.subscribed_topics: List[str] = []
        self.handler: Optional[MessageHandler] = None

    async def start(self):
        """Connect to the cluster as a member of the consumer group."""
        loop = asyncio.get_running_loop()
        try:
            self.consumer = await loop.run_in_executor(None, self._create_consumer)
            self.logger.info("Kafka consumer started", group_id=self.group_id)

        except Exception as e:
            self.consumer = None
            self.logger.error("Failed to start Kafka consumer", group_id=self.group_id, error=str(e))
            raise ExternalServiceError("kafka", "consumer start failed", details={"error": str(e)})

    def _create_consumer(self) -> kafka.KafkaConsumer:
        return kafka.KafkaConsumer(
            bootstrap_servers=self.bootstrap_servers,
            group_id=self.group_id,
            value_deserializer=lambda x: x,  # decoded by the handler
            key_deserializer=lambda x: x,
            auto_offset_reset='earliest',
            enable_auto_commit=False,
            max_poll_records=100,
            session_timeout_ms=30000,
            heartbeat_interval_ms=10000
        )

    async def stop(self):
        """Close the consumer and leave the group."""
        if self.consumer:
            consumer, self.consumer = self.consumer, None
            loop = asyncio.get_running_loop()
            try:
                await loop.run_in_executor(None, consumer.close)
            except Exception as e:
                self.logger.warning("Error closing Kafka consumer", error=str(e))
            self.logger.info("Kafka consumer stopped", group_id=self.group_id)

    async def subscribe(self, topics: Sequence[str], handler: MessageHandler):
        """Subscribe the group to ``topics`` and route their messages to ``handler``."""
        if not self.consumer:
            raise ExternalServiceError("kafka", "consumer not started")

        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self.consumer.subscribe, list(topics))
        except Exception as e:
            self.logger.error("Failed to subscribe", topics=list(topics), error=str(e))
            raise ExternalServiceError("kafka", "subscribe failed", details={"topics": list(topics)})

        self.subscribed_topics = list(topics)
        self.handler = handler
        self.logger.info("Subscribed to topics", topics=self.subscribed_topics, group_id=self.group_id)

    async def consume_once(self) -> int:
        """Poll one batch, dispatch it and commit what the handler marked.

        Returns the number of messages marked consumed. Broker errors
        propagate to the caller.
        """
        if not self.consumer or not self.handler:
            raise ExternalServiceError("kafka", "consumer not subscribed")

        consumer = self.consumer
        loop = asyncio.get_running_loop()
        message_batch = await loop.run_in_executor(None, consumer.poll, self.poll_timeout_ms)

        if not message_batch:
            return 0

        marked = 0
        for topic_partition, messages in message_batch.items():
            for message in messages:
                kafka_message = KafkaMessage(
                    topic=message.topic,
                    partition=message.partition,
                    offset=message.offset,
                    key=message.key,
                    value=message.value,
                    timestamp=message.timestamp,
                    headers=dict(message.headers) if message.headers else None
                )

                try:
                    acknowledged = await self.handler(kafka_message)
                except Exception as e:
                    self.logger.error(
                        "Error processing message",
                        topic=message.topic,
                        partition=message.partition,
                        offset=message.offset,
                        error=str(e)
                    )
                    acknowledged = False

                if not acknowledged:
                    # Keep partition order: redeliver from this offset on the next poll
                    await loop.run_in_executor(None, consumer.seek, topic_partition, message.offset)
                    break

                marked += 1

        if marked:
            await loop.run_in_executor(None, consumer.commit)

        return marked

    def health_check(self) -> bool:
        """Check whether the consumer still reaches a bootstrap broker."""
        if not self.consumer:
            return False
        try:
            return bool(self.consumer.bootstrap_connected())
        except Exception:
            return False

    def get_subscribed_topics(self) -> List[str]:
        """Get list of subscribed topics."""
        return self.subscribed_topics.copy()
