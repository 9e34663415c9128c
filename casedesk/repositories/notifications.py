"""
casedesk Notification Repository

Durable inbox entries in the `notifications` table. Stale-case
escalations carry a unique (recipient, case, type) index, so a racing
duplicate insert fails in the database instead of creating a second
escalation.
"""

from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError

from ..db import Database, NotificationRecord
from ..errors import ConflictError
from ..models.notification import Notification, NotificationType


def _to_notification(record: NotificationRecord) -> Notification:
    return Notification.model_validate(record, from_attributes=True)


class NotificationRepository:

    def __init__(self, database: Database):
        self.database = database

    async def add(self, notification: Notification) -> Notification:
        try:
            with self.database.session() as db:
                record = NotificationRecord(**notification.model_dump())
                db.add(record)
                db.flush()
                return _to_notification(record)
        except IntegrityError as e:
            raise ConflictError(
                f"{notification.type.value} already exists for case "
                f"{notification.case_id} and recipient {notification.recipient_id}"
            ) from e

    async def get(self, notification_id: UUID) -> Optional[Notification]:
        with self.database.session() as db:
            record = db.get(NotificationRecord, notification_id)
            return _to_notification(record) if record else None

    async def save(self, notification: Notification) -> Notification:
        with self.database.session() as db:
            record = db.merge(NotificationRecord(**notification.model_dump()))
            db.flush()
            return _to_notification(record)

    async def delete(self, notification_id: UUID) -> None:
        with self.database.session() as db:
            db.execute(delete(NotificationRecord).where(NotificationRecord.id == notification_id))

    async def list_for(
        self,
        recipient_id: UUID,
        is_read: Optional[bool] = None,
        offset: int = 0,
        limit: int = 10,
        type: Optional[NotificationType] = None
    ) -> Tuple[List[Notification], int]:
        """Newest first."""
        conditions = self._conditions(recipient_id, is_read, type)
        with self.database.session() as db:
            total = db.scalar(
                select(func.count()).select_from(NotificationRecord).where(*conditions)
            )
            records = db.scalars(
                select(NotificationRecord)
                .where(*conditions)
                .order_by(NotificationRecord.created_at.desc())
                .offset(offset)
                .limit(limit)
            ).all()
            return [_to_notification(r) for r in records], total or 0

    async def count_for(self, recipient_id: UUID, is_read: Optional[bool] = None) -> int:
        with self.database.session() as db:
            return db.scalar(
                select(func.count())
                .select_from(NotificationRecord)
                .where(*self._conditions(recipient_id, is_read))
            ) or 0

    async def mark_all_read(self, recipient_id: UUID) -> int:
        with self.database.session() as db:
            result = db.execute(
                update(NotificationRecord)
                .where(*self._conditions(recipient_id, is_read=False))
                .values(is_read=True)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount

    async def find_first(
        self,
        recipient_id: UUID,
        case_id: UUID,
        title_contains: str
    ) -> Optional[Notification]:
        with self.database.session() as db:
            record = db.scalars(
                select(NotificationRecord).where(
                    NotificationRecord.recipient_id == recipient_id,
                    NotificationRecord.case_id == case_id,
                    NotificationRecord.title.contains(title_contains, autoescape=True),
                )
            ).first()
            return _to_notification(record) if record else None

    @staticmethod
    def _conditions(
        recipient_id: UUID,
        is_read: Optional[bool],
        type: Optional[NotificationType] = None
    ) -> list:
        conditions = [NotificationRecord.recipient_id == recipient_id]
        if is_read is not None:
            conditions.append(NotificationRecord.is_read.is_(is_read))
        if type is not None:
            conditions.append(NotificationRecord.type == NotificationType(type))
        return conditions
