"""
Request/response correlation for token verification over Kafka.

A verification is a fire-and-forget publish to the requests topic; the verdict
arrives later on the responses topic, consumed by the ResponseListener. The
correlator turns that exchange into one awaitable call per request by keying
each waiter on a fresh correlation id.
"""

import asyncio
import time
import uuid
from typing import Dict, Optional, TYPE_CHECKING

from shared.logging import get_logger, set_correlation_id
from ..models import (
    Identity, VerificationOutcome, VerificationRequest, VerificationResponse, VerificationResult
)

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from ..kafka.producer import KafkaProducerManager
    from shared.metrics import MetricsCollector


DEFAULT_VERIFICATION_TIMEOUT = 10.0
DEFAULT_REQUEST_KEY = "verify"


class VerificationCorrelator:
    """Bridges a credential to a verdict through the message bus.

    The registry of pending waiters is only touched from the event loop:
    request tasks insert and remove, the listener's handler pops. Whichever of
    delivery or timeout settles a waiter first wins; the other becomes a no-op.
    """

    def __init__(
        self,
        producer: "KafkaProducerManager",
        request_topic: str,
        *,
        timeout: float = DEFAULT_VERIFICATION_TIMEOUT,
        request_key: str = DEFAULT_REQUEST_KEY,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.producer = producer
        self.request_topic = request_topic
        self.timeout = timeout
        self.request_key = request_key
        self.metrics = metrics
        self.logger = get_logger("todo.verification.correlator")
        self._pending: Dict[str, asyncio.Future] = {}

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def is_pending(self, correlation_id: str) -> bool:
        return correlation_id in self._pending

    async def verify(self, credential: str) -> VerificationResult:
        """Publish a verification request and wait for its verdict."""
        correlation_id = uuid.uuid4().hex
        set_correlation_id(correlation_id)
        started = time.monotonic()

        waiter = asyncio.get_running_loop().create_future()
        self._register(correlation_id, waiter)
        try:
            envelope = VerificationRequest(token=credential, correlation_id=correlation_id)
            try:
                published = await self.producer.send_message(
                    self.request_topic,
                    envelope.model_dump(by_alias=True),
                    key=self.request_key
                )
            except Exception as e:
                self.logger.error("Verification publish raised", correlation_id=correlation_id, error=str(e))
                published = False

            if not published:
                self.logger.error(
                    "Failed to publish verification request",
                    topic=self.request_topic,
                    correlation_id=correlation_id
                )
                return self._finish(correlation_id, VerificationOutcome.TRANSPORT_ERROR, started)

            try:
                response: VerificationResponse = await asyncio.wait_for(waiter, timeout=self.timeout)
            except asyncio.TimeoutError:
                self.logger.warning(
                    "Timeout waiting for token verification response",
                    topic=self.request_topic,
                    correlation_id=correlation_id,
                    timeout=self.timeout
                )
                return self._finish(correlation_id, VerificationOutcome.TIMED_OUT, started)

            if not response.valid:
                return self._finish(correlation_id, VerificationOutcome.DENIED, started)

            identity = Identity(user_id=response.user_id, name=response.name, email=response.email)
            return self._finish(correlation_id, VerificationOutcome.AUTHORIZED, started, identity)

        except asyncio.CancelledError:
            self.logger.info("Verification cancelled by caller", correlation_id=correlation_id)
            raise
        finally:
            self._deregister(correlation_id)

    def deliver(self, response: VerificationResponse) -> bool:
        """Hand a response to its waiter.

        Returns False when nobody is waiting for the correlation id: the
        waiter already timed out, was cancelled, was already answered, or
        the id was never issued by this process.
        """
        waiter = self._pending.pop(response.correlation_id, None)
        self._update_pending_gauge()
        if waiter is None or waiter.done():
            return False
        waiter.set_result(response)
        return True

    def cancel_all(self):
        """Cancel every outstanding waiter, used on shutdown."""
        for waiter in self._pending.values():
            if not waiter.done():
                waiter.cancel()
        self._pending.clear()
        self._update_pending_gauge()

    def _register(self, correlation_id: str, waiter: asyncio.Future):
        self._pending[correlation_id] = waiter
        self._update_pending_gauge()

    def _deregister(self, correlation_id: str):
        waiter = self._pending.pop(correlation_id, None)
        if waiter is not None and not waiter.done():
            waiter.cancel()
        self._update_pending_gauge()

    def _finish(
        self,
        correlation_id: str,
        outcome: VerificationOutcome,
        started: float,
        identity: Optional[Identity] = None
    ) -> VerificationResult:
        duration = time.monotonic() - started
        if self.metrics:
            self.metrics.record_verification(outcome.value, duration)
        self.logger.info(
            "Token verification finished",
            correlation_id=correlation_id,
            outcome=outcome.value,
            duration_ms=round(duration * 1000, 2)
        )
        return VerificationResult(outcome=outcome, correlation_id=correlation_id, identity=identity)

    def _update_pending_gauge(self):
        if self.metrics:
            self.metrics.set_pending_verifications(len(self._pending))
