"""
Unit tests for the Kafka consumer manager.
"""

import pytest
from unittest.mock import AsyncMock, patch, MagicMock

from service_todo.app.kafka.consumer import KafkaConsumerManager, KafkaMessage
from shared.errors import ExternalServiceError


def make_record(offset: int, value: bytes = b'{"valid": true, "correlationId": "abc"}'):
    record = MagicMock()
    record.topic = "token_verification_responses"
    record.partition = 0
    record.offset = offset
    record.key = None
    record.value = value
    record.timestamp = 1640995200000
    record.headers = [("source", b"auth")]
    return record


class TestKafkaConsumerManager:
    """Test cases for KafkaConsumerManager."""

    @pytest.fixture
    def consumer_manager(self):
        """Create KafkaConsumerManager instance."""
        return KafkaConsumerManager("localhost:9092", "todo-service-consumer-group", poll_timeout_ms=10)

    @pytest.fixture
    def mock_consumer(self):
        """Mock kafka-python consumer."""
        return MagicMock()

    @pytest.fixture
    def topic_partition(self):
        """Mock topic partition key."""
        return ("token_verification_responses", 0)

    @pytest.mark.asyncio
    async def test_start_success(self, consumer_manager, mock_consumer):
        """Test consumer joins the group with manual commits."""
        with patch('kafka.KafkaConsumer', return_value=mock_consumer) as mock_consumer_class:
            await consumer_manager.start()

        assert consumer_manager.consumer is mock_consumer
        kwargs = mock_consumer_class.call_args.kwargs
        assert kwargs["group_id"] == "todo-service-consumer-group"
        assert kwargs["enable_auto_commit"] is False
        assert kwargs["auto_offset_reset"] == "earliest"

    @pytest.mark.asyncio
    async def test_start_failure(self, consumer_manager):
        """Test consumer start failure."""
        with patch('kafka.KafkaConsumer', side_effect=Exception("Connection failed")):
            with pytest.raises(ExternalServiceError) as exc_info:
                await consumer_manager.start()

        assert exc_info.value.code == "EXTERNAL_SERVICE_ERROR"
        assert consumer_manager.consumer is None

    @pytest.mark.asyncio
    async def test_stop_closes_consumer(self, consumer_manager, mock_consumer):
        """Test stop closes the underlying consumer once."""
        with patch('kafka.KafkaConsumer', return_value=mock_consumer):
            await consumer_manager.start()

        await consumer_manager.stop()
        await consumer_manager.stop()

        mock_consumer.close.assert_called_once()
        assert consumer_manager.consumer is None

    @pytest.mark.asyncio
    async def test_subscribe_not_started(self, consumer_manager):
        """Test subscription requires a started consumer."""
        with pytest.raises(ExternalServiceError):
            await consumer_manager.subscribe(["token_verification_responses"], AsyncMock())

    @pytest.mark.asyncio
    async def test_subscribe_success(self, consumer_manager, mock_consumer):
        """Test successful subscription."""
        handler = AsyncMock(return_value=True)
        with patch('kafka.KafkaConsumer', return_value=mock_consumer):
            await consumer_manager.start()
            await consumer_manager.subscribe(["token_verification_responses"], handler)

        mock_consumer.subscribe.assert_called_once_with(["token_verification_responses"])
        assert consumer_manager.get_subscribed_topics() == ["token_verification_responses"]
        assert consumer_manager.handler is handler

    @pytest.mark.asyncio
    async def test_consume_once_requires_subscription(self, consumer_manager):
        """Test polling without a subscription is an error."""
        with pytest.raises(ExternalServiceError):
            await consumer_manager.consume_once()

    @pytest.mark.asyncio
    async def test_consume_once_commits_marked_messages(self, consumer_manager, mock_consumer, topic_partition):
        """Test every marked message is committed."""
        handler = AsyncMock(return_value=True)
        mock_consumer.poll.return_value = {topic_partition: [make_record(10), make_record(11)]}

        with patch('kafka.KafkaConsumer', return_value=mock_consumer):
            await consumer_manager.start()
            await consumer_manager.subscribe(["token_verification_responses"], handler)

        marked = await consumer_manager.consume_once()

        assert marked == 2
        assert handler.await_count == 2
        delivered = handler.await_args_list[0].args[0]
        assert isinstance(delivered, KafkaMessage)
        assert delivered.offset == 10
        assert delivered.headers == {"source": b"auth"}
        mock_consumer.commit.assert_called_once()
        mock_consumer.seek.assert_not_called()

    @pytest.mark.asyncio
    async def test_unmarked_message_is_redelivered(self, consumer_manager, mock_consumer, topic_partition):
        """Test an unmarked message rewinds its partition and stops the batch there."""
        handler = AsyncMock(side_effect=[True, False, True])
        mock_consumer.poll.return_value = {
            topic_partition: [make_record(10), make_record(11), make_record(12)]
        }

        with patch('kafka.KafkaConsumer', return_value=mock_consumer):
            await consumer_manager.start()
            await consumer_manager.subscribe(["token_verification_responses"], handler)

        marked = await consumer_manager.consume_once()

        assert marked == 1
        assert handler.await_count == 2
        mock_consumer.seek.assert_called_once_with(topic_partition, 11)
        mock_consumer.commit.assert_called_once()

    @pytest.mark.asyncio
    async def test_handler_exception_leaves_message_unmarked(self, consumer_manager, mock_consumer, topic_partition):
        """Test a raising handler does not mark its message."""
        handler = AsyncMock(side_effect=RuntimeError("boom"))
        mock_consumer.poll.return_value = {topic_partition: [make_record(10)]}

        with patch('kafka.KafkaConsumer', return_value=mock_consumer):
            await consumer_manager.start()
            await consumer_manager.subscribe(["token_verification_responses"], handler)

        marked = await consumer_manager.consume_once()

        assert marked == 0
        mock_consumer.seek.assert_called_once_with(topic_partition, 10)
        mock_consumer.commit.assert_not_called()

    @pytest.mark.asyncio
    async def test_empty_poll(self, consumer_manager, mock_consumer):
        """Test an empty poll commits nothing."""
        mock_consumer.poll.return_value = {}

        with patch('kafka.KafkaConsumer', return_value=mock_consumer):
            await consumer_manager.start()
            await consumer_manager.subscribe(["token_verification_responses"], AsyncMock())

        assert await consumer_manager.consume_once() == 0
        mock_consumer.commit.assert_not_called()

    @pytest.mark.asyncio
    async def test_poll_failure_propagates(self, consumer_manager, mock_consumer):
        """Test broker errors reach the caller."""
        mock_consumer.poll.side_effect = Exception("broker down")

        with patch('kafka.KafkaConsumer', return_value=mock_consumer):
            await consumer_manager.start()
            await consumer_manager.subscribe(["token_verification_responses"], AsyncMock())

        with pytest.raises(Exception, match="broker down"):
            await consumer_manager.consume_once()

    def test_health_check(self, consumer_manager, mock_consumer):
        """Test health reflects broker connectivity."""
        assert consumer_manager.health_check() is False

        consumer_manager.consumer = mock_consumer
        mock_consumer.bootstrap_connected.return_value = True
        assert consumer_manager.health_check() is True

        mock_consumer.bootstrap_connected.side_effect = Exception("gone")
        assert consumer_manager.health_check() is False
