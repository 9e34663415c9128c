"""
casedesk Notification Model

In-app inbox entries plus the domain events that produce them.
"""

from datetime import datetime
from enum import Enum
from typing import Optional, Union
from uuid import UUID, uuid4
from pydantic import BaseModel, Field

from .case import Case, CaseKind, CaseStatus, utcnow


class NotificationType(str, Enum):
    CASE_CREATED = "CASE_CREATED"
    CASE_UPDATED = "CASE_UPDATED"
    CASE_COMPLETED = "CASE_COMPLETED"
    CASE_ASSIGNED = "CASE_ASSIGNED"
    SYSTEM_ALERT = "SYSTEM_ALERT"
    LONG_TERM_CASE = "LONG_TERM_CASE"  # Stale case escalation


class Notice(BaseModel):
    """Content of a notification before it is addressed to a recipient."""
    title: str
    message: str
    type: NotificationType
    case_id: Optional[UUID] = None
    case_kind: Optional[CaseKind] = None


class Notification(BaseModel):
    """A notice delivered to one recipient's inbox."""
    id: UUID = Field(default_factory=uuid4)
    recipient_id: UUID

    title: str
    message: str
    type: NotificationType

    # Back-reference to the case, if any
    case_id: Optional[UUID] = None
    case_kind: Optional[CaseKind] = None

    is_read: bool = False
    created_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def for_recipient(cls, recipient_id: UUID, notice: Notice) -> "Notification":
        return cls(recipient_id=recipient_id, **notice.model_dump())


# =============================================================================
# DOMAIN EVENTS
# =============================================================================

class CaseCreated(BaseModel):
    case: Case
    requester_name: str
    handler_name: Optional[str] = None


class CaseTransitioned(BaseModel):
    case: Case
    previous_status: CaseStatus


class StaleCaseDetected(BaseModel):
    case: Case
    recipient_id: UUID  # Handler's linked login identity
    handler_name: Optional[str] = None


CaseEvent = Union[CaseCreated, CaseTransitioned, StaleCaseDetected]
