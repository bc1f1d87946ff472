"""
Data models for the Todo Service.
"""

from typing import List, Optional
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Item(BaseModel):
    """A todo item owned by a group."""
    id: int
    title: str
    status: str = "pending"
    group_id: int
    created_at: datetime


class Group(BaseModel):
    """A named group of todo items."""
    id: int
    name: str
    created_at: datetime
    todos: List[Item] = Field(default_factory=list)


class GroupCreateRequest(BaseModel):
    """Request model for group creation."""
    name: str = Field(..., min_length=1, max_length=255, description="Unique group name")

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("name must not be blank")
        return value


class GroupUpdateRequest(GroupCreateRequest):
    """Request model for renaming a group."""


class ItemCreateRequest(BaseModel):
    """Request model for item creation."""
    title: str = Field(..., min_length=1, max_length=255)
    status: str = Field(default="pending", max_length=64)
    group_id: int = Field(..., gt=0)


class ItemUpdateRequest(BaseModel):
    """Request model for item updates; omitted fields keep their value."""
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    status: Optional[str] = Field(None, max_length=64)
    group_id: Optional[int] = Field(None, gt=0)


class TopicCreateRequest(BaseModel):
    """Request model for administrative topic creation."""
    model_config = ConfigDict(populate_by_name=True)

    topic_name: str = Field(..., alias="topicName", min_length=1, max_length=249)
    num_partitions: int = Field(1, alias="numPartitions", ge=1)
    replication_factor: int = Field(1, alias="replicationFactor", ge=1)


class VerificationRequest(BaseModel):
    """Envelope published to the verification requests topic."""
    model_config = ConfigDict(populate_by_name=True)

    token: str
    correlation_id: str = Field(..., alias="correlationId")


class VerificationResponse(BaseModel):
    """Envelope consumed from the verification responses topic."""
    model_config = ConfigDict(populate_by_name=True)

    valid: bool
    correlation_id: str = Field(..., alias="correlationId", min_length=1)
    user_id: Optional[int] = None
    name: Optional[str] = None
    email: Optional[str] = None


class VerificationOutcome(str, Enum):
    """Result classes of a verification round-trip."""
    AUTHORIZED = "authorized"
    DENIED = "denied"
    TIMED_OUT = "timed_out"
    TRANSPORT_ERROR = "transport_error"


@dataclass
class Identity:
    """Caller identity resolved by the verifier."""
    user_id: Optional[int]
    name: Optional[str] = None
    email: Optional[str] = None


@dataclass
class VerificationResult:
    """Verdict handed back to the request gate."""
    outcome: VerificationOutcome
    correlation_id: str
    identity: Optional[Identity] = None

    @property
    def authorized(self) -> bool:
        return self.outcome == VerificationOutcome.AUTHORIZED
