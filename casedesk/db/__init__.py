"""
casedesk Database

SQLAlchemy storage behind the repositories:

    from casedesk.db import Database

    database = Database("sqlite:///./casedesk.db")
    database.create_all()
"""

from .models import (
    Base,
    CaseRecord,
    EvaluationConfigRecord,
    EvaluationOptionRecord,
    NotificationRecord,
)
from .session import Database

__all__ = [
    "Base",
    "Database",
    "CaseRecord",
    "EvaluationConfigRecord",
    "EvaluationOptionRecord",
    "NotificationRecord",
]
