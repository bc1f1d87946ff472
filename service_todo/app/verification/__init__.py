"""
Token verification over Kafka.

- correlator: per-request correlation of verification requests and responses
- listener: background consumer of the verification responses topic
- gate: FastAPI dependency admitting only verified requests
"""

from .correlator import VerificationCorrelator
from .gate import RequestGate
from .listener import ResponseListener

__all__ = ["VerificationCorrelator", "RequestGate", "ResponseListener"]
