"""
casedesk Repositories

Storage behind the services. Cases, evaluation configs and notifications
live in the SQLAlchemy database; the person and user directories are
owned by the wider portal and looked up in memory.
"""

from .cases import CaseRepository, CaseRepositories
from .evaluation import EvaluationConfigRepository
from .notifications import NotificationRepository
from .people import PersonDirectory, UserDirectory

__all__ = [
    "CaseRepository", "CaseRepositories",
    "EvaluationConfigRepository",
    "NotificationRepository",
    "PersonDirectory", "UserDirectory",
]
