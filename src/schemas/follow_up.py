"""
Data models for dashboard actions on surveys and follow-up items.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel


class FollowUpStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"


class CallbackUpdate(BaseModel):
    """Marks the human callback for a survey as done (or not)."""
    callback_completed: bool
    callback_notes: Optional[str] = None


class FollowUpItemUpdate(BaseModel):
    status: FollowUpStatus
    assigned_to: Optional[str] = None
    resolved_at: Optional[datetime] = None
