"""
Request gate enforcing Kafka-backed token verification on entity routes.
"""

from typing import Optional

from fastapi import Request

from shared.logging import get_logger, set_user_context
from shared.errors import AuthenticationError, VerificationUnavailableError
from ..models import Identity, VerificationOutcome
from .correlator import VerificationCorrelator


BEARER_PREFIX = "Bearer "


class RequestGate:
    """FastAPI dependency that admits a request only after its token verifies.

    Missing or malformed credentials are rejected without contacting the
    verifier. A verdict that cannot be obtained is treated as a server-side
    failure, so the caller is never let through unchecked.
    """

    def __init__(self, correlator: VerificationCorrelator):
        self.correlator = correlator
        self.logger = get_logger("todo.verification.gate")

    async def __call__(self, request: Request) -> Identity:
        return await self.authenticate_request(request)

    async def authenticate_request(self, request: Request) -> Identity:
        token = self.extract_token(request.headers.get("Authorization"))

        result = await self.correlator.verify(token)

        if result.outcome == VerificationOutcome.AUTHORIZED:
            identity = result.identity or Identity(user_id=None)
            request.state.identity = identity
            if identity.user_id is not None:
                set_user_context(str(identity.user_id))
            self.logger.info(
                "Request authenticated",
                user_id=identity.user_id,
                correlation_id=result.correlation_id
            )
            return identity

        if result.outcome == VerificationOutcome.DENIED:
            self.logger.warning("Invalid token", correlation_id=result.correlation_id)
            raise AuthenticationError("Invalid token")

        self.logger.error(
            "Token could not be verified",
            outcome=result.outcome.value,
            correlation_id=result.correlation_id
        )
        if result.outcome == VerificationOutcome.TIMED_OUT:
            raise VerificationUnavailableError("Timeout waiting for token verification response")
        raise VerificationUnavailableError("Failed to send token for verification")

    @staticmethod
    def extract_token(auth_header: Optional[str]) -> str:
        """Return the bearer token or raise AuthenticationError."""
        if not auth_header:
            raise AuthenticationError("Authorization header is required")

        if not auth_header.startswith(BEARER_PREFIX):
            raise AuthenticationError("Invalid authorization header format")

        token = auth_header[len(BEARER_PREFIX):].strip()
        if not token or " " in token:
            raise AuthenticationError("Invalid authorization header format")

        return token
