"""
casedesk Models

Cases, evaluation vocabularies, notifications and the events between them.
"""

from .case import (
    # Enums
    CaseKind,
    CaseStatus,
    Perspective,
    Criterion,
    Role,
    TERMINAL_STATUSES,
    ELEVATED_ROLES,

    # Core models
    Case,
    Assessment,
    CaseInput,
    AssessmentInput,

    # Supporting models
    Person,
    User,
    Page,
    utcnow,
)
from .evaluation import EvaluationConfig, EvaluationOption, OptionInput
from .notification import (
    NotificationType,
    Notice,
    Notification,
    CaseCreated,
    CaseTransitioned,
    StaleCaseDetected,
    CaseEvent,
)

__all__ = [
    "CaseKind", "CaseStatus", "Perspective", "Criterion", "Role",
    "TERMINAL_STATUSES", "ELEVATED_ROLES",
    "Case", "Assessment", "CaseInput", "AssessmentInput",
    "Person", "User", "Page", "utcnow",
    "EvaluationConfig", "EvaluationOption", "OptionInput",
    "NotificationType", "Notice", "Notification",
    "CaseCreated", "CaseTransitioned", "StaleCaseDetected", "CaseEvent",
]
