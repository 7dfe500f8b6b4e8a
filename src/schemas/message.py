"""
Data models for SMS message logs and gateway callbacks.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel


class MessageType(str, Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class MessageStatus(str, Enum):
    QUEUED = "queued"
    SENT = "sent"
    DELIVERED = "delivered"
    RECEIVED = "received"
    FAILED = "failed"
    UNDELIVERED = "undelivered"
    RETRIED = "retried"
    SUPERSEDED = "superseded"


FAILED_STATUSES = (MessageStatus.FAILED.value, MessageStatus.UNDELIVERED.value)


class SentMessage(BaseModel):
    """What the gateway reports back for a successful send."""
    sid: str
    status: str = MessageStatus.QUEUED.value
    to: Optional[str] = None
