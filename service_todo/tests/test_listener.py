"""
Unit tests for the verification response listener.
"""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from service_todo.app.kafka.consumer import KafkaMessage
from service_todo.app.verification.listener import ResponseListener
from shared.errors import ExternalServiceError, StartupError
from shared.retry import RetryConfig


RESPONSE_TOPIC = "token_verification_responses"


def make_message(value: bytes, offset: int = 0) -> KafkaMessage:
    return KafkaMessage(
        topic=RESPONSE_TOPIC,
        partition=0,
        offset=offset,
        key=None,
        value=value,
        timestamp=1640995200000,
        headers=None
    )


async def idle_poll():
    await asyncio.sleep(0.01)
    return 0


class TestResponseListener:
    """Test cases for ResponseListener."""

    @pytest.fixture
    def consumer(self):
        """Mock consumer manager."""
        consumer = MagicMock()
        consumer.group_id = "todo-service-consumer-group"
        consumer.start = AsyncMock()
        consumer.stop = AsyncMock()
        consumer.subscribe = AsyncMock()
        consumer.consume_once = AsyncMock(side_effect=idle_poll)
        return consumer

    @pytest.fixture
    def correlator(self):
        """Mock correlator."""
        correlator = MagicMock()
        correlator.deliver = MagicMock(return_value=True)
        return correlator

    @pytest.fixture
    def retry_config(self):
        """Retry configuration without waiting."""
        return RetryConfig(max_attempts=3, base_delay=0.0, max_delay=0.0, jitter=False)

    @pytest.fixture
    def listener(self, consumer, correlator, retry_config):
        """Create ResponseListener instance."""
        return ResponseListener(consumer, correlator, RESPONSE_TOPIC, retry_config=retry_config)

    def test_default_retry_policy(self, consumer, correlator):
        """Test startup retries default to ten attempts five seconds apart."""
        listener = ResponseListener(consumer, correlator, RESPONSE_TOPIC)

        assert listener.retry_config.max_attempts == 10
        assert listener.retry_config.base_delay == 5.0

    @pytest.mark.asyncio
    async def test_start_subscribes_and_runs(self, listener, consumer):
        """Test start subscribes before returning and keeps consuming."""
        await listener.start()
        try:
            consumer.subscribe.assert_awaited_once_with([RESPONSE_TOPIC], listener.handle_message)
            assert listener.is_healthy() is True

            await asyncio.sleep(0.05)
            assert consumer.consume_once.await_count >= 1
        finally:
            await listener.stop()

        assert listener.is_healthy() is False
        consumer.stop.assert_awaited()

    @pytest.mark.asyncio
    async def test_start_retries_then_succeeds(self, listener, consumer):
        """Test transient subscription failures are retried."""
        consumer.subscribe.side_effect = [ExternalServiceError("kafka", "subscribe failed"), None]

        await listener.start()
        try:
            assert consumer.subscribe.await_count == 2
            assert listener.subscribed is True
        finally:
            await listener.stop()

    @pytest.mark.asyncio
    async def test_start_fails_after_exhausting_attempts(self, listener, consumer):
        """Test startup is fatal once every attempt has failed."""
        consumer.start.side_effect = ExternalServiceError("kafka", "consumer start failed")

        with pytest.raises(StartupError) as exc_info:
            await listener.start()

        assert exc_info.value.details["attempts"] == 3
        assert consumer.start.await_count == 3
        assert listener.running is False
        assert listener.is_healthy() is False

    @pytest.mark.asyncio
    async def test_reconnects_after_broker_failure(self, listener, consumer):
        """Test a consume failure triggers a fresh subscription."""
        calls = {"count": 0}

        async def flaky_poll():
            calls["count"] += 1
            if calls["count"] == 1:
                raise ExternalServiceError("kafka", "broker unavailable")
            return await idle_poll()

        consumer.consume_once.side_effect = flaky_poll

        await listener.start()
        try:
            await asyncio.sleep(0.05)
            assert consumer.subscribe.await_count >= 2
            assert listener.subscribed is True
        finally:
            await listener.stop()

    @pytest.mark.asyncio
    async def test_handle_message_delivers(self, listener, correlator):
        """Test a decodable response is handed to the correlator."""
        payload = json.dumps({"valid": True, "correlationId": "abc", "user_id": 5}).encode()

        marked = await listener.handle_message(make_message(payload))

        assert marked is True
        response = correlator.deliver.call_args.args[0]
        assert response.correlation_id == "abc"
        assert response.valid is True
        assert response.user_id == 5

    @pytest.mark.asyncio
    async def test_handle_message_without_waiter_is_marked(self, listener, correlator):
        """Test responses nobody waits for are still marked consumed."""
        correlator.deliver.return_value = False
        payload = json.dumps({"valid": False, "correlationId": "stale"}).encode()

        assert await listener.handle_message(make_message(payload)) is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [
        b"not json",
        b'{"valid": true}',
        b'{"valid": true, "correlationId": ""}',
        b"[]",
    ])
    async def test_undecodable_message_is_marked(self, listener, correlator, payload):
        """Test poison messages are marked and never delivered."""
        assert await listener.handle_message(make_message(payload)) is True
        correlator.deliver.assert_not_called()
