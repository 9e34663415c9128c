"""
casedesk Case Model

Seven parallel case kinds sharing one shape:
1. Case = a unit of IT work raised by a requester, worked by a handler
2. Status moves forward only (RECEIVED -> IN_PROGRESS -> COMPLETED)
3. CANCELLED is reachable from any non-terminal status
4. Two independent assessments (USER self-score, ADMIN review score)
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional, List
from uuid import UUID, uuid4
from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMS
# =============================================================================

class CaseKind(str, Enum):
    INTERNAL = "internal"
    DEPLOYMENT = "deployment"
    MAINTENANCE = "maintenance"
    WARRANTY = "warranty"
    DELIVERY = "delivery"
    RECEIVING = "receiving"
    INCIDENT = "incident"

    @property
    def label(self) -> str:
        return _KIND_LABELS[self]

    @property
    def emoji(self) -> str:
        return _KIND_EMOJI[self]

    @property
    def type_field(self) -> Optional[str]:
        """Name of the kind-specific required reference, if any."""
        return _KIND_TYPE_FIELDS[self]

    def status_label(self, status: "CaseStatus") -> str:
        overrides = _KIND_STATUS_LABELS.get(self, {})
        return overrides.get(status, _STATUS_LABELS[status])


class CaseStatus(str, Enum):
    RECEIVED = "RECEIVED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({CaseStatus.COMPLETED, CaseStatus.CANCELLED})


class Perspective(str, Enum):
    USER = "USER"      # Submitter's self-assessment
    ADMIN = "ADMIN"    # Reviewer's independent assessment


class Criterion(str, Enum):
    DIFFICULTY = "DIFFICULTY"
    TIME = "TIME"
    IMPACT = "IMPACT"
    URGENCY = "URGENCY"
    FORM = "FORM"      # USER perspective only


class Role(str, Enum):
    USER = "USER"
    IT_STAFF = "IT_STAFF"
    IT_LEAD = "IT_LEAD"
    ADMIN = "ADMIN"


ELEVATED_ROLES = frozenset({Role.ADMIN, Role.IT_LEAD})


_KIND_LABELS = {
    CaseKind.INTERNAL: "Case nội bộ",
    CaseKind.DEPLOYMENT: "Case triển khai",
    CaseKind.MAINTENANCE: "Case bảo trì",
    CaseKind.WARRANTY: "Case bảo hành",
    CaseKind.DELIVERY: "Case giao hàng",
    CaseKind.RECEIVING: "Case nhận hàng",
    CaseKind.INCIDENT: "Case sự cố",
}

_KIND_EMOJI = {
    CaseKind.INTERNAL: "🏢",
    CaseKind.DEPLOYMENT: "🚀",
    CaseKind.MAINTENANCE: "🔧",
    CaseKind.WARRANTY: "🛡️",
    CaseKind.DELIVERY: "🚚",
    CaseKind.RECEIVING: "📦",
    CaseKind.INCIDENT: "⚠️",
}

_KIND_TYPE_FIELDS = {
    CaseKind.INTERNAL: "case_type",
    CaseKind.DEPLOYMENT: "deployment_type_id",
    CaseKind.MAINTENANCE: "maintenance_type_id",
    CaseKind.WARRANTY: "warranty_type_id",
    CaseKind.INCIDENT: "incident_type_id",
    CaseKind.DELIVERY: None,
    CaseKind.RECEIVING: None,
}

_STATUS_LABELS = {
    CaseStatus.RECEIVED: "Tiếp nhận",
    CaseStatus.IN_PROGRESS: "Đang xử lý",
    CaseStatus.COMPLETED: "Hoàn thành",
    CaseStatus.CANCELLED: "Hủy",
}

# Incident and warranty screens use reporting vocabulary
_KIND_STATUS_LABELS = {
    CaseKind.INCIDENT: {
        CaseStatus.RECEIVED: "Báo cáo",
        CaseStatus.IN_PROGRESS: "Đang điều tra",
        CaseStatus.COMPLETED: "Đã giải quyết",
    },
    CaseKind.WARRANTY: {
        CaseStatus.RECEIVED: "Báo cáo",
        CaseStatus.IN_PROGRESS: "Đang điều tra",
        CaseStatus.COMPLETED: "Đã giải quyết",
    },
}


# =============================================================================
# CORE MODELS
# =============================================================================

class Assessment(BaseModel):
    """
    One perspective's score block.

    Values are raw integer snapshots of the option points chosen at
    assessment time; later vocabulary edits do not rewrite them.
    """
    difficulty: Optional[int] = None
    estimated_time: Optional[int] = None
    impact: Optional[int] = None
    urgency: Optional[int] = None
    form: Optional[int] = None  # USER perspective only
    assessed_at: Optional[datetime] = None

    def values(self) -> dict:
        return {
            Criterion.DIFFICULTY: self.difficulty,
            Criterion.TIME: self.estimated_time,
            Criterion.IMPACT: self.impact,
            Criterion.URGENCY: self.urgency,
            Criterion.FORM: self.form,
        }

    @property
    def is_empty(self) -> bool:
        return all(v is None for v in self.values().values())


class Case(BaseModel):
    """
    A case of any kind.

    Kinds are disjoint but structurally parallel, so one model carries
    them all; `kind` is the discriminator and `type_ref` holds the
    kind-specific reference (deployment type, warranty type, ...).
    """
    id: UUID = Field(default_factory=uuid4)
    kind: CaseKind

    title: str
    description: str

    # Associations (Person ids, owned by the directory)
    requester_id: UUID
    handler_id: Optional[UUID] = None
    counterparty_id: Optional[UUID] = None
    counterparty_name: Optional[str] = None  # Denormalized for pre-linkage cases

    type_ref: Optional[str] = None
    form: str = "Onsite"
    notes: Optional[str] = None

    status: CaseStatus = CaseStatus.RECEIVED
    start_date: datetime
    end_date: Optional[datetime] = None  # Set on COMPLETED only

    user_assessment: Assessment = Field(default_factory=Assessment)
    admin_assessment: Assessment = Field(default_factory=Assessment)

    # Optimistic concurrency token, bumped on every write
    version: int = 1

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def status_label(self) -> str:
        return self.kind.status_label(self.status)


class CaseInput(BaseModel):
    """
    Fields submitted when a case is created.

    Everything is optional here; which fields are required depends on the
    kind and is checked by the lifecycle service so the caller gets one
    consistent validation error.
    """
    title: Optional[str] = None
    description: Optional[str] = None

    requester_id: Optional[UUID] = None
    handler_id: Optional[UUID] = None
    counterparty_id: Optional[UUID] = None
    counterparty_name: Optional[str] = None

    # Kind-specific references (see CaseKind.type_field)
    case_type: Optional[str] = None
    deployment_type_id: Optional[str] = None
    maintenance_type_id: Optional[str] = None
    warranty_type_id: Optional[str] = None
    incident_type_id: Optional[str] = None

    form: Optional[str] = None
    notes: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

    # User self-assessment, scored at submission time
    user_difficulty_level: Optional[int] = None
    user_estimated_time: Optional[int] = None
    user_impact_level: Optional[int] = None
    user_urgency_level: Optional[int] = None
    user_form_score: Optional[int] = None

    def user_scores(self) -> dict:
        return {
            Criterion.DIFFICULTY: self.user_difficulty_level,
            Criterion.TIME: self.user_estimated_time,
            Criterion.IMPACT: self.user_impact_level,
            Criterion.URGENCY: self.user_urgency_level,
            Criterion.FORM: self.user_form_score,
        }


class AssessmentInput(BaseModel):
    """Scores submitted for one perspective."""
    difficulty: Optional[int] = None
    estimated_time: Optional[int] = None
    impact: Optional[int] = None
    urgency: Optional[int] = None
    form: Optional[int] = None

    def values(self) -> dict:
        return {
            Criterion.DIFFICULTY: self.difficulty,
            Criterion.TIME: self.estimated_time,
            Criterion.IMPACT: self.impact,
            Criterion.URGENCY: self.urgency,
            Criterion.FORM: self.form,
        }


# =============================================================================
# SUPPORTING MODELS
# =============================================================================

class Person(BaseModel):
    """Employee record (requester or handler)."""
    id: UUID = Field(default_factory=uuid4)

    full_name: str
    position: Optional[str] = None
    department: Optional[str] = None

    # Login identity, if this person has an account
    user_id: Optional[UUID] = None


class User(BaseModel):
    """Login identity."""
    id: UUID = Field(default_factory=uuid4)

    name: str
    email: Optional[str] = None
    roles: List[Role] = Field(default_factory=lambda: [Role.USER])

    @property
    def is_elevated(self) -> bool:
        return any(role in ELEVATED_ROLES for role in self.roles)


class Page(BaseModel):
    """One page of a listing."""
    items: list
    page: int
    limit: int
    total: int

    @property
    def total_pages(self) -> int:
        if self.limit <= 0:
            return 0
        return (self.total + self.limit - 1) // self.limit
