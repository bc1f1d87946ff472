"""
Background subscriber routing verification responses to waiting requests.
"""

import asyncio
from typing import Optional

from pydantic import ValidationError as PydanticValidationError

from shared.logging import get_logger
from shared.errors import ExternalServiceError, StartupError
from shared.retry import Backoff, RetryConfig, RetryError, retry_async
from ..kafka.consumer import KafkaConsumerManager, KafkaMessage
from ..models import VerificationResponse
from .correlator import VerificationCorrelator


class ResponseListener:
    """Drains the verification responses topic for the lifetime of the process.

    ``start`` blocks until the first subscription is established, retrying
    with backoff, and raises StartupError once the attempts are exhausted.
    After that, a lost broker connection only triggers a reconnect loop.
    """

    def __init__(
        self,
        consumer: KafkaConsumerManager,
        correlator: VerificationCorrelator,
        topic: str,
        *,
        retry_config: Optional[RetryConfig] = None,
    ):
        self.consumer = consumer
        self.correlator = correlator
        self.topic = topic
        self.retry_config = retry_config or RetryConfig(max_attempts=10, base_delay=5.0, max_delay=60.0)
        self.logger = get_logger("todo.verification.listener")
        self.running = False
        self.subscribed = False
        self._task: Optional[asyncio.Task] = None

    async def start(self):
        """Establish the subscription, then run the consume loop in the background."""
        try:
            await retry_async(
                self._connect,
                exceptions=(ExternalServiceError,),
                config=self.retry_config,
                name="verification_subscribe"
            )
        except RetryError as e:
            self.logger.error(
                "Unable to subscribe to verification responses",
                topic=self.topic,
                group_id=self.consumer.group_id,
                attempts=e.attempts,
                error=str(e.last_exception)
            )
            raise StartupError(
                "Verification response subscription could not be established",
                details={"topic": self.topic, "attempts": e.attempts}
            ) from e

        self.running = True
        self._task = asyncio.create_task(self._run(), name="verification-response-listener")
        self.logger.info("Verification response listener started", topic=self.topic)

    async def stop(self):
        """Stop consuming and release the consumer."""
        self.running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        await self.consumer.stop()
        self.subscribed = False
        self.logger.info("Verification response listener stopped")

    def is_healthy(self) -> bool:
        return self.running and self.subscribed and self._task is not None and not self._task.done()

    async def _connect(self):
        await self.consumer.stop()
        await self.consumer.start()
        await self.consumer.subscribe([self.topic], self.handle_message)
        self.subscribed = True

    async def _run(self):
        """Consume until stopped, reconnecting with backoff on broker errors."""
        backoff = Backoff(self.retry_config)
        while self.running:
            try:
                if not self.subscribed:
                    await self._connect()
                    self.logger.info("Verification response subscription re-established", topic=self.topic)
                await self.consumer.consume_once()
                backoff.reset()

            except asyncio.CancelledError:
                raise

            except Exception as e:
                self.subscribed = False
                delay = backoff.failure()
                self.logger.error(
                    "Verification response consumer failed, reconnecting",
                    topic=self.topic,
                    attempt=backoff.failures,
                    delay=delay,
                    error=str(e)
                )
                await asyncio.sleep(delay)

    async def handle_message(self, message: KafkaMessage) -> bool:
        """Route one response to its waiter. Returns True to mark it consumed."""
        try:
            response = VerificationResponse.model_validate_json(message.value)
        except (PydanticValidationError, ValueError, TypeError) as e:
            # Poison messages are marked so they never stall the partition
            self.logger.error(
                "Error decoding token verification response",
                topic=message.topic,
                partition=message.partition,
                offset=message.offset,
                error=str(e)
            )
            return True

        if self.correlator.deliver(response):
            self.logger.debug(
                "Token verification response delivered",
                topic=message.topic,
                offset=message.offset,
                correlation_id=response.correlation_id,
                valid=response.valid
            )
        else:
            self.logger.info(
                "No pending verification for response, discarding",
                topic=message.topic,
                offset=message.offset,
                correlation_id=response.correlation_id
            )
        return True
