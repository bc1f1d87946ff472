"""
Kafka producer for the Todo Service.
"""

import asyncio
import json
from typing import Dict, Any, Optional
from kafka import KafkaProducer
from kafka.errors import KafkaError

from shared.logging import get_logger
from shared.errors import ExternalServiceError


class KafkaProducerManager:
    """Publishes JSON messages to Kafka topics."""

    def __init__(self, bootstrap_servers: str, send_timeout: float = 10.0):
        self.bootstrap_servers = bootstrap_servers
        self.send_timeout = send_timeout
        self.logger = get_logger("todo.kafka.producer")
        self.producer: Optional[KafkaProducer] = None

    async def start(self):
        """Start the Kafka producer."""
        loop = asyncio.get_running_loop()
        try:
            self.producer = await loop.run_in_executor(None, self._create_producer)
            self.logger.info("Kafka producer started", bootstrap_servers=self.bootstrap_servers)

        except Exception as e:
            self.logger.error("Failed to start Kafka producer", error=str(e))
            raise ExternalServiceError("kafka", "producer start failed", details={"error": str(e)})

    def _create_producer(self) -> KafkaProducer:
        return KafkaProducer(
            bootstrap_servers=self.bootstrap_servers,
            value_serializer=lambda x: json.dumps(x).encode('utf-8'),
            key_serializer=lambda x: x.encode('utf-8') if x else None,
            acks='all',
            retries=3,
            linger_ms=0,
            max_block_ms=int(self.send_timeout * 1000)
        )

    async def stop(self):
        """Stop the Kafka producer."""
        if self.producer:
            producer, self.producer = self.producer, None
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, producer.flush)
            await loop.run_in_executor(None, producer.close)
            self.logger.info("Kafka producer stopped")

    async def send_message(
        self,
        topic: str,
        message: Dict[str, Any],
        key: Optional[str] = None
    ) -> bool:
        """Send a message and wait for the broker acknowledgment.

        Returns ``False`` instead of raising when the broker is unreachable
        or rejects the record, so callers can decide how to fail.
        """
        if not self.producer:
            self.logger.error("Kafka producer not started", topic=topic)
            return False

        producer = self.producer

        def _send():
            # send() may block on metadata, get() blocks on the ack
            future = producer.send(topic=topic, value=message, key=key)
            return future.get(timeout=self.send_timeout)

        loop = asyncio.get_running_loop()
        try:
            record_metadata = await loop.run_in_executor(None, _send)

            self.logger.debug(
                "Message sent successfully",
                topic=topic,
                key=key,
                partition=record_metadata.partition,
                offset=record_metadata.offset
            )
            return True

        except KafkaError as e:
            self.logger.error("Kafka error sending message", topic=topic, key=key, error=str(e))
            return False

        except Exception as e:
            self.logger.error("Error sending message", topic=topic, key=key, error=str(e))
            return False

    def health_check(self) -> bool:
        """Check whether the producer still reaches a bootstrap broker."""
        if not self.producer:
            return False
        try:
            return bool(self.producer.bootstrap_connected())
        except Exception:
            return False
